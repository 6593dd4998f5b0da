"""A server-side WebSocket connection and its receive loop."""

from __future__ import annotations

import logging
import socket
import threading
from enum import IntEnum
from typing import Any, Callable, Optional, Union

from .protocol import (
    MAX_CONTROL_FRAME_PAYLOAD,
    MAXIMUM_HEADER_LENGTH,
    CloseCode,
    CloseReason,
    Frame,
    FrameError,
    Message,
    Opcode,
    Utf8Error,
    decode_utf8,
    encode_close_payload,
    encode_frame,
    fragment_message,
    is_control_opcode,
    is_valid_close_code,
    parse_close_reason,
    read_frame,
)

logger = logging.getLogger(__name__)

DEFAULT_AUTO_FRAGMENT_SIZE = 4096


class WebSocketAction(IntEnum):
    """What the receive loop does after the handler has seen a message."""

    CONTINUE = 0
    ERROR = 1
    CLOSE = 2


class FragmentOption(IntEnum):
    """Special fragment sizes for sending."""

    OFF = 0
    AUTO = 1


class ConnectionClosed(EOFError):
    """The peer closed the connection before the expected bytes arrived."""


class _Closing(Exception):
    """Internal signal: end the receive loop and close with this reason."""

    def __init__(self, reason: CloseReason) -> None:
        super().__init__(reason.message)
        self.reason = reason


def _closing(code: CloseCode, message: str) -> _Closing:
    return _Closing(CloseReason(code=code, message=message))


Handler = Callable[["WebSocketConnection", Message], WebSocketAction]


class WebSocketConnection:
    """One upgraded connection: sends frames and runs the receive loop."""

    def __init__(self, sock: socket.socket, handler: Handler, manager: Any = None) -> None:
        self._sock = sock
        self._handler = handler
        self._manager = manager
        self._send_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self.closed = False

    def __repr__(self) -> str:
        return f"{type(self).__name__}(closed={self.closed})"

    # -- reading -----------------------------------------------------------

    def read_exact(self, size: int) -> bytes:
        """Read exactly size bytes, raising ConnectionClosed at end of stream."""
        chunks = []
        remaining = size
        while remaining > 0:
            chunk = self._sock.recv(remaining)
            if not chunk:
                raise ConnectionClosed(f"connection closed with {remaining} of {size} bytes missing")
            chunks.append(chunk)
            remaining -= len(chunk)
        return b"".join(chunks)

    # -- sending -----------------------------------------------------------

    def send_frame(self, frame: Frame, mask: bool = False) -> None:
        """Encode and send a single frame."""
        data = encode_frame(frame, mask)
        with self._send_lock:
            self._sock.sendall(data)

    def send_message(self, message: Message) -> None:
        """Send a message as one unfragmented frame."""
        opcode = Opcode.TEXT if message.is_text else Opcode.BIN
        self.send_frame(Frame(fin=True, opcode=opcode, payload=bytes(message.data)))

    def send_message_fragmented(
        self, message: Message, fragment_size: Union[int, FragmentOption] = FragmentOption.AUTO
    ) -> None:
        """Send a message split into frames; AUTO or a non-positive size picks one from the socket."""
        if fragment_size == FragmentOption.OFF:
            self.send_message(message)
            return
        if fragment_size == FragmentOption.AUTO or fragment_size <= 0:
            size = self.auto_fragment_size()
        else:
            size = int(fragment_size)
        for frame in fragment_message(message, size):
            self.send_frame(frame)

    def auto_fragment_size(self) -> int:
        """Choose a fragment size that fits the socket's send buffer together with a header."""
        chosen = DEFAULT_AUTO_FRAGMENT_SIZE - MAXIMUM_HEADER_LENGTH
        try:
            buffer_size = self._sock.getsockopt(socket.SOL_SOCKET, socket.SO_SNDBUF)
        except (OSError, AttributeError) as exc:
            logger.warning("Couldn't get sockopt SO_SNDBUF, using default value: %s", exc)
            return chosen
        if buffer_size >= MAXIMUM_HEADER_LENGTH:
            chosen = buffer_size - MAXIMUM_HEADER_LENGTH
        return chosen

    def send_close(self, reason: CloseReason) -> None:
        """Send a close frame carrying the given reason."""
        payload = encode_close_payload(reason)
        self.send_frame(Frame(fin=True, opcode=Opcode.CLOSE, payload=payload))

    # -- closing -----------------------------------------------------------

    def close(self, reason: CloseReason) -> None:
        """Send a close frame, then remove the connection; raise ConnectionError if either failed."""
        logger.debug(
            "Closing the websocket connection: %s",
            reason.message if reason.message is not None else "(no message)",
        )
        send_error: Optional[BaseException] = None
        try:
            self.send_close(reason)
        except (OSError, FrameError, ValueError) as exc:
            send_error = exc

        remove_error: Optional[BaseException] = None
        try:
            if self._manager is None:
                self.shutdown(False)
            else:
                self._manager.remove_connection(self)
        except (LookupError, OSError) as exc:
            remove_error = exc

        if send_error is not None:
            raise ConnectionError("send error") from send_error
        if remove_error is not None:
            raise ConnectionError("thread manager remove error") from remove_error

    def shutdown(self, send_going_away: bool = False) -> None:
        """Release the socket, first telling the peer the server goes away if asked."""
        with self._state_lock:
            if self.closed:
                return
            self.closed = True
        if send_going_away:
            try:
                self.send_close(
                    CloseReason(code=CloseCode.GOING_AWAY, message="Server is shutting down")
                )
            except (OSError, FrameError, ValueError):
                logger.error(
                    "Error while closing the websocket connection: "
                    "close reason: server shutting down"
                )
        try:
            self._sock.close()
        except OSError:
            pass

    # -- receive loop ------------------------------------------------------

    def run(self) -> None:
        """Receive messages and hand them to the handler until the connection closes."""
        logger.debug("Starting WS Listener")
        try:
            while True:
                message = self._receive_message()
                action = self._handler(self, message)
                if action == WebSocketAction.CLOSE:
                    raise _closing(CloseCode.NORMAL_CLOSURE, "ServerApplication requested shutdown")
                if action == WebSocketAction.ERROR:
                    raise _closing(CloseCode.PROTOCOL_ERROR, "ServerApplication callback has an error")
        except _Closing as closing:
            try:
                self.close(closing.reason)
            except ConnectionError as exc:
                logger.error("Error while closing the websocket connection: %s", exc)

    def _receive_message(self) -> Message:
        is_text: Optional[bool] = None
        parts: list = []

        while True:
            try:
                frame = read_frame(self.read_exact)
            except FrameError as exc:
                text = f"Error while reading the needed bytes for a frame: {exc}"
                logger.info("%s", text)
                raise _closing(CloseCode.PROTOCOL_ERROR, text) from exc

            if is_control_opcode(frame.opcode):
                self._check_control_frame(frame)

            opcode = frame.opcode
            if opcode == Opcode.CONT:
                if is_text is None:
                    raise _closing(
                        CloseCode.PROTOCOL_ERROR,
                        "Received Opcode CONTINUATION, but no start frame received",
                    )
                parts.append(frame.payload)
                if not frame.fin:
                    continue
                return self._finish(is_text, parts, "fragmented message")

            if opcode in (Opcode.TEXT, Opcode.BIN):
                if is_text is not None:
                    raise _closing(
                        CloseCode.PROTOCOL_ERROR,
                        "Received other opCode than CONTINUATION after the first fragment",
                    )
                is_text = opcode == Opcode.TEXT
                parts = [frame.payload]
                if not frame.fin:
                    continue
                return self._finish(is_text, parts, "un-fragmented message")

            if opcode == Opcode.CLOSE:
                reason = CloseReason(code=CloseCode.NORMAL_CLOSURE, message="Planned close")
                if frame.payload:
                    parsed = parse_close_reason(frame, True)
                    if parsed is not None:
                        if not is_valid_close_code(parsed.code):
                            raise _closing(CloseCode.PROTOCOL_ERROR, "Invalid Close Code")
                        reason = parsed
                raise _Closing(reason)

            if opcode == Opcode.PING:
                try:
                    self.send_frame(Frame(fin=True, opcode=Opcode.PONG, payload=frame.payload))
                except (OSError, FrameError) as exc:
                    raise _closing(CloseCode.PROTOCOL_ERROR, "Couldn't send PONG opCode") from exc
                continue

            if opcode == Opcode.PONG:
                continue

            raise _closing(CloseCode.PROTOCOL_ERROR, "Received Opcode that is not supported")

    @staticmethod
    def _check_control_frame(frame: Frame) -> None:
        if not frame.fin:
            raise _closing(CloseCode.PROTOCOL_ERROR, "Received fragmented control frame")
        if len(frame.payload) > MAX_CONTROL_FRAME_PAYLOAD:
            raise _closing(CloseCode.PROTOCOL_ERROR, "Control frame payload to large")
        if frame.opcode == Opcode.CLOSE and frame.payload:
            if len(frame.payload) < 2:
                raise _closing(
                    CloseCode.PROTOCOL_ERROR,
                    "Close data has invalid code, it has to be at least 2 bytes long",
                )
            try:
                decode_utf8(frame.payload[2:])
            except Utf8Error as exc:
                raise _closing(
                    CloseCode.INVALID_FRAME_PAYLOAD_DATA,
                    f"Invalid utf8 payload in control frame: {exc}",
                ) from exc

    @staticmethod
    def _finish(is_text: bool, parts: list, kind: str) -> Message:
        data = b"".join(parts)
        if is_text:
            try:
                decode_utf8(data)
            except Utf8Error as exc:
                raise _closing(
                    CloseCode.INVALID_FRAME_PAYLOAD_DATA,
                    f"Invalid utf8 payload in {kind}: {exc}",
                ) from exc
        return Message(is_text=is_text, data=data)