"""WebSocket frame encoding and decoding (RFC 6455)."""

from __future__ import annotations

import os
import struct
from dataclasses import dataclass
from enum import IntEnum
from typing import Callable, Iterator, Optional, Union

HEADER_SIZE = 2
EXTENDED_LENGTH_16_SIZE = 2
EXTENDED_LENGTH_64_SIZE = 8
MASK_KEY_SIZE = 4
MAXIMUM_HEADER_LENGTH = HEADER_SIZE + EXTENDED_LENGTH_64_SIZE + MASK_KEY_SIZE

MAX_CONTROL_FRAME_PAYLOAD = 125
EXTENDED_PAYLOAD_16 = 126
EXTENDED_PAYLOAD_64 = 127

MINIMUM_FRAGMENT_SIZE = 16


class Opcode(IntEnum):
    """Frame opcodes defined by the protocol."""

    CONT = 0x0
    TEXT = 0x1
    BIN = 0x2
    CLOSE = 0x8
    PING = 0x9
    PONG = 0xA


class CloseCode(IntEnum):
    """Close status codes used by the server."""

    NORMAL_CLOSURE = 1000
    GOING_AWAY = 1001
    PROTOCOL_ERROR = 1002
    UNSUPPORTED_DATA = 1003
    INVALID_FRAME_PAYLOAD_DATA = 1007
    POLICY_VIOLATION = 1008
    MESSAGE_TOO_BIG = 1009
    MANDATORY_EXTENSION = 1010
    INTERNAL_SERVER_ERROR = 1011


class FrameError(Exception):
    """A frame could not be read, parsed or encoded."""


class Utf8Error(ValueError):
    """A payload is not valid UTF-8."""


@dataclass(frozen=True)
class FrameHeader:
    """The first two bytes of a frame, decoded."""

    fin: bool
    opcode: int
    mask: bool
    payload_len: int


@dataclass(frozen=True)
class Frame:
    """A single frame with its payload already unmasked."""

    fin: bool
    opcode: int
    payload: bytes = b""


@dataclass(frozen=True)
class Message:
    """A complete application message."""

    is_text: bool
    data: bytes = b""


@dataclass(frozen=True)
class CloseReason:
    """The status code and optional message of a close frame."""

    code: int
    message: Optional[Union[str, bytes]] = None


def _as_opcode(value: int) -> int:
    try:
        return Opcode(value)
    except ValueError:
        return value


def parse_header(data: bytes) -> FrameHeader:
    """Decode the two fixed header bytes of a frame."""
    if len(data) != HEADER_SIZE:
        raise FrameError(f"a frame header is {HEADER_SIZE} bytes long")
    first, second = data[0], data[1]
    if (first >> 4) & 0b111:
        raise FrameError("only 0 allowed for the rsv bytes")
    return FrameHeader(
        fin=bool(first >> 7 & 1),
        opcode=_as_opcode(first & 0b1111),
        mask=bool(second >> 7 & 1),
        payload_len=second & 0x7F,
    )


def is_control_opcode(opcode: int) -> bool:
    """Tell whether an opcode denotes a control frame."""
    if opcode > 0xF:
        return False
    return (opcode & 0b1000) != 0


def apply_mask(data: bytes, key: bytes) -> bytes:
    """XOR data with a repeating four-byte masking key."""
    if len(key) != MASK_KEY_SIZE:
        raise ValueError(f"a masking key is {MASK_KEY_SIZE} bytes long")
    size = len(data)
    if size == 0:
        return b""
    stream = (bytes(key) * (size // MASK_KEY_SIZE + 1))[:size]
    value = int.from_bytes(data, "big") ^ int.from_bytes(stream, "big")
    return value.to_bytes(size, "big")


def _read(read_exact: Callable[[int], bytes], size: int, error: str) -> bytes:
    try:
        data = read_exact(size)
    except (OSError, EOFError) as exc:
        raise FrameError(error) from exc
    if data is None or len(data) != size:
        raise FrameError(error)
    return bytes(data)


def read_frame(read_exact: Callable[[int], bytes]) -> Frame:
    """Read one frame using a callable that returns exactly the requested bytes."""
    header = parse_header(_read(read_exact, HEADER_SIZE, "couldn't read header bytes (2)"))

    payload_len = header.payload_len
    if payload_len == EXTENDED_PAYLOAD_16:
        raw = _read(
            read_exact,
            EXTENDED_LENGTH_16_SIZE,
            "couldn't read extended payload length bytes (2)",
        )
        payload_len = int.from_bytes(raw, "big")
    elif payload_len == EXTENDED_PAYLOAD_64:
        raw = _read(
            read_exact,
            EXTENDED_LENGTH_64_SIZE,
            "couldn't read extended payload length bytes (8)",
        )
        payload_len = int.from_bytes(raw, "big")

    key = b""
    if header.mask:
        key = _read(read_exact, MASK_KEY_SIZE, "couldn't read mask bytes (4)")

    payload = b""
    if payload_len:
        payload = _read(read_exact, payload_len, "couldn't read payload bytes")

    if header.mask:
        payload = apply_mask(payload, key)

    return Frame(fin=header.fin, opcode=header.opcode, payload=payload)


def encode_frame(frame: Frame, mask: bool = False) -> bytes:
    """Serialise a frame, masking the payload with a random key if asked."""
    payload = bytes(frame.payload or b"")
    length = len(payload)

    if is_control_opcode(frame.opcode):
        if not frame.fin:
            raise FrameError("Control frame payload is fragmented, that isn't allowed")
        if length > MAX_CONTROL_FRAME_PAYLOAD:
            raise FrameError(
                f"Control frame payload length is too large: {length} > "
                f"{MAX_CONTROL_FRAME_PAYLOAD}"
            )

    header_one = (int(bool(frame.fin)) << 7) | (int(frame.opcode) & 0b1111)
    mask_bit = int(bool(mask)) << 7

    if length < EXTENDED_PAYLOAD_16:
        head = bytes([header_one, mask_bit | length])
    elif length < 0x10000:
        head = bytes([header_one, mask_bit | EXTENDED_PAYLOAD_16]) + struct.pack("!H", length)
    else:
        head = bytes([header_one, mask_bit | EXTENDED_PAYLOAD_64]) + struct.pack("!Q", length)

    if mask:
        key = os.urandom(MASK_KEY_SIZE)
        return head + key + apply_mask(payload, key)
    return head + payload


def parse_close_reason(frame: Frame, with_message: bool = True) -> Optional[CloseReason]:
    """Extract the close reason of a close frame, or None if it carries none."""
    if frame.opcode != Opcode.CLOSE:
        return None
    payload = frame.payload
    if len(payload) < 2 or len(payload) > MAX_CONTROL_FRAME_PAYLOAD:
        return None
    code = int.from_bytes(payload[:2], "big")
    if len(payload) > 2 and with_message:
        return CloseReason(code=code, message=bytes(payload[2:]))
    return CloseReason(code=code)


def is_valid_close_code(code: int) -> bool:
    """Tell whether a received close code is allowed on the wire."""
    if code <= 999:
        return False
    if 3000 <= code <= 4999:
        return True
    if 1000 <= code <= 2999:
        if 1004 <= code <= 1006:
            return False
        if code >= 1015:
            return False
        return True
    return False


def encode_close_payload(reason: CloseReason) -> bytes:
    """Build the payload of a close frame: the code in network order, then the message."""
    if not 0 <= reason.code <= 0xFFFF:
        raise ValueError(f"close code out of range: {reason.code}")
    message = reason.message
    if message is None:
        body = b""
    elif isinstance(message, str):
        body = message.encode("utf-8")
    else:
        body = bytes(message)
    return struct.pack("!H", reason.code) + body


def decode_utf8(data: bytes) -> str:
    """Decode strict UTF-8, raising Utf8Error on invalid input."""
    try:
        return bytes(data).decode("utf-8")
    except UnicodeDecodeError as exc:
        raise Utf8Error(f"Invalid UTF-8 string: {exc.reason}") from exc


def fragment_message(message: Message, fragment_size: int) -> Iterator[Frame]:
    """Split a message into frames of at most fragment_size payload bytes."""
    fragment_size = max(fragment_size, MINIMUM_FRAGMENT_SIZE)
    first_opcode = Opcode.TEXT if message.is_text else Opcode.BIN
    data = bytes(message.data)

    if len(data) < fragment_size:
        yield Frame(fin=True, opcode=first_opcode, payload=data)
        return

    for start in range(0, len(data), fragment_size):
        end = start + fragment_size
        yield Frame(
            fin=end >= len(data),
            opcode=first_opcode if start == 0 else Opcode.CONT,
            payload=data[start:end],
        )