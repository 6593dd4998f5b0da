"""Echo handlers for incoming WebSocket messages."""

from __future__ import annotations

import logging

from .connection import FragmentOption, WebSocketAction, WebSocketConnection
from .protocol import FrameError, Message

logger = logging.getLogger(__name__)

_LOG_TEXT_LIMIT = 200


def _log_message(message: Message) -> None:
    length = len(message.data)
    if not message.is_text:
        logger.info("Received BIN message of length %d", length)
    elif length >= _LOG_TEXT_LIMIT:
        logger.info("Received TEXT message of length %d", length)
    else:
        text = bytes(message.data).decode("utf-8", errors="replace")
        logger.info("Received TEXT message: '%s'", text)


def echo(connection: WebSocketConnection, message: Message) -> WebSocketAction:
    """Send the message back unchanged in a single frame."""
    _log_message(message)
    try:
        connection.send_message(message)
    except (OSError, FrameError, ValueError):
        return WebSocketAction.ERROR
    return WebSocketAction.CONTINUE


def echo_fragmented(connection: WebSocketConnection, message: Message) -> WebSocketAction:
    """Send the message back split into frames sized to the socket's send buffer."""
    _log_message(message)
    try:
        connection.send_message_fragmented(message, FragmentOption.AUTO)
    except (OSError, FrameError, ValueError):
        return WebSocketAction.ERROR
    return WebSocketAction.CONTINUE