"""Server side of the WebSocket opening handshake."""

from __future__ import annotations

import base64
import binascii
import hashlib
import logging
from dataclasses import dataclass, field
from enum import IntFlag
from http import HTTPStatus
from typing import Iterable, Mapping, Optional, Tuple, Union

logger = logging.getLogger(__name__)

KEY_ACCEPT_GUID = "258EAFA5-E914-47DA-95CA-C5AB0DC85B11"
EXPECTED_SEC_KEY_LENGTH = 16
SUPPORTED_VERSION = "13"
TEXT_MIME_TYPE = "text/plain"

_ERROR_PREFIX = "Error: The client handshake was invalid: "
_UPGRADE_REQUIRED_TEXT = "This endpoint requires an upgrade to the WebSocket protocol"

# Answer a missing or wrong upgrade with 426 rather than a plain 400.
_SEND_UPGRADE_REQUIRED = True

HeaderPairs = Union[Mapping[str, str], Iterable[Tuple[str, str]]]


class _Needed(IntFlag):
    NONE = 0
    HOST = 0b1
    UPGRADE = 0b10
    CONNECTION = 0b100
    SEC_WEBSOCKET_KEY = 0b1000
    SEC_WEBSOCKET_VERSION = 0b10000
    ALL = 0b11111


@dataclass(frozen=True)
class HandshakeResponse:
    """The HTTP response the server sends to a handshake request."""

    status: HTTPStatus
    headers: Tuple[Tuple[str, str], ...] = ()
    body: Optional[str] = None
    content_type: Optional[str] = None
    error: Optional[str] = field(default=None, compare=False)

    @property
    def accepted(self) -> bool:
        """Whether the connection switches to the WebSocket protocol."""
        return self.status == HTTPStatus.SWITCHING_PROTOCOLS

    def to_bytes(self) -> bytes:
        """Serialise the response as HTTP/1.1 wire bytes."""
        lines = [f"HTTP/1.1 {self.status.value} {self.status.phrase}"]
        lines.extend(f"{key}: {value}" for key, value in self.headers)
        body = b""
        if self.body is not None:
            body = self.body.encode("utf-8")
            if self.content_type is not None:
                lines.append(f"Content-Type: {self.content_type}")
            lines.append(f"Content-Length: {len(body)}")
        head = "\r\n".join(lines) + "\r\n\r\n"
        return head.encode("latin-1") + body


def is_valid_sec_key(key: str) -> bool:
    """Tell whether a Sec-WebSocket-Key is base64 of exactly 16 bytes."""
    try:
        decoded = base64.b64decode(key.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError, ValueError):
        return False
    return len(decoded) == EXPECTED_SEC_KEY_LENGTH


def generate_key_answer(sec_key: str) -> str:
    """Compute the Sec-WebSocket-Accept value for a client key."""
    digest = hashlib.sha1((sec_key + KEY_ACCEPT_GUID).encode("utf-8")).digest()
    return base64.b64encode(digest).decode("ascii")


def _failed(reason: str) -> HandshakeResponse:
    logger.debug("Failed WS handshake: %s", reason)
    return HandshakeResponse(
        status=HTTPStatus.BAD_REQUEST,
        body=_ERROR_PREFIX + reason,
        content_type=TEXT_MIME_TYPE,
        error=reason,
    )


def _upgrade_required() -> HandshakeResponse:
    logger.debug("Failed WS handshake: Upgrade required")
    return HandshakeResponse(
        status=HTTPStatus.UPGRADE_REQUIRED,
        headers=(("Upgrade", "WebSocket"), ("Connection", "Upgrade")),
        body=_ERROR_PREFIX + _UPGRADE_REQUIRED_TEXT,
        content_type=TEXT_MIME_TYPE,
        error="upgrade required",
    )


def _pairs(headers: HeaderPairs) -> Iterable[Tuple[str, str]]:
    if isinstance(headers, Mapping):
        return headers.items()
    return headers


def handle_handshake(headers: HeaderPairs) -> HandshakeResponse:
    """Check the request headers of a handshake and build the response to send."""
    found = _Needed.NONE
    sec_key: Optional[str] = None

    for key, value in _pairs(headers):
        name = key.lower()
        if name == "host":
            found |= _Needed.HOST
        elif name == "upgrade":
            found |= _Needed.UPGRADE
            if "websocket" not in value.lower():
                return _failed("upgrade does not contain 'websocket'")
        elif name == "connection":
            found |= _Needed.CONNECTION
            if "upgrade" not in value.lower():
                if _SEND_UPGRADE_REQUIRED:
                    return _upgrade_required()
                return _failed("connection does not contain 'upgrade'")
        elif name == "sec-websocket-key":
            found |= _Needed.SEC_WEBSOCKET_KEY
            if not is_valid_sec_key(value):
                return _failed("sec-websocket-key is invalid")
            sec_key = value
        elif name == "sec-websocket-version":
            found |= _Needed.SEC_WEBSOCKET_VERSION
            if value != SUPPORTED_VERSION:
                return _failed("sec-websocket-version has invalid value")

    if found & _Needed.ALL != _Needed.ALL or sec_key is None:
        if _SEND_UPGRADE_REQUIRED and not found & _Needed.UPGRADE:
            return _upgrade_required()
        return _failed("missing required headers")

    return HandshakeResponse(
        status=HTTPStatus.SWITCHING_PROTOCOLS,
        headers=(
            ("Upgrade", "WebSocket"),
            ("Connection", "Upgrade"),
            ("Sec-WebSocket-Accept", generate_key_answer(sec_key)),
        ),
    )