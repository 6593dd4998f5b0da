"""Bookkeeping for live WebSocket connections and their listener threads."""

from __future__ import annotations

import logging
import socket
import threading
from typing import Dict, List

from .connection import Handler, WebSocketConnection

logger = logging.getLogger(__name__)


class ThreadManager:
    """Tracks connections, each served by its own listener thread."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._connections: List[WebSocketConnection] = []
        self._threads: Dict[int, threading.Thread] = {}
        self._closed = False

    def __len__(self) -> int:
        with self._lock:
            return len(self._connections)

    def __contains__(self, connection: object) -> bool:
        with self._lock:
            return any(item is connection for item in self._connections)

    def add_connection(self, sock: socket.socket, handler: Handler) -> WebSocketConnection:
        """Register a new connection and start its listener thread."""
        with self._lock:
            if self._closed:
                raise RuntimeError("the thread manager is closed")
            connection = WebSocketConnection(sock, handler, self)
            self._connections.append(connection)
            thread = threading.Thread(
                target=connection.run,
                name="ws listener",
                daemon=True,
            )
            try:
                thread.start()
            except RuntimeError:
                self._connections.remove(connection)
                raise
            self._threads[id(connection)] = thread
        return connection

    def remove_connection(self, connection: WebSocketConnection) -> None:
        """Release a connection and forget it; LookupError if it is not managed here."""
        if connection is None:
            raise ValueError("no connection given")
        with self._lock:
            for index, item in enumerate(self._connections):
                if item is connection:
                    break
            else:
                raise LookupError("connection is not managed by this thread manager")
            connection.shutdown(False)
            del self._connections[index]
            self._threads.pop(id(connection), None)

    def remove_all_connections(self) -> None:
        """Tell every peer the server goes away and release all connections."""
        with self._lock:
            connections = self._connections
            self._connections = []
            self._threads.clear()
        for connection in connections:
            connection.shutdown(True)

    def close(self) -> None:
        """Shut the manager down; RuntimeError if connections are still registered."""
        with self._lock:
            if self._connections:
                logger.error("Not all connections got removed")
                raise RuntimeError("connections are still registered")
            self._closed = True