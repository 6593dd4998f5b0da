"""WebSocket framing, opening handshake and threaded server-side connection handling."""

__version__ = "0.1.0"