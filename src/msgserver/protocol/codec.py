"""
=============================================================================
WIRE CODEC
=============================================================================

Turns message objects into length-prefixed binary frames and back.

=============================================================================
FRAME LAYOUT
=============================================================================

TCP is a byte stream, so every message is wrapped in a frame that says
how long it is:

    ┌────────────────────┬─────────────────────────────────────────────┐
    │  LENGTH (4 bytes)  │  PAYLOAD (LENGTH bytes)                     │
    │  uint32, big-endian│                                             │
    └────────────────────┴─────────────────────────────────────────────┘

The payload starts with a one-byte tag that names the message type:

    ┌──────┬────────────────┬──────────────────────────────────────────┐
    │ TAG  │ MESSAGE        │ BODY                                     │
    ├──────┼────────────────┼──────────────────────────────────────────┤
    │ 0x01 │ EchoMessage    │ string content                           │
    │ 0x02 │ AddRequest     │ int32 a, int32 b                         │
    │ 0x81 │ EchoResponse   │ string content                           │
    │ 0x82 │ AddResult      │ int32 value                              │
    │ 0x83 │ ErrorResponse  │ string detail                            │
    └──────┴────────────────┴──────────────────────────────────────────┘

    string = uint32 byte length + UTF-8 bytes
    int32  = signed, big-endian

Example, EchoMessage("hi"):

    00 00 00 07   01   00 00 00 02   68 69
    └─ length ┘   tag  └─ str len ┘  "hi"

=============================================================================
WHAT COUNTS AS MALFORMED
=============================================================================

decode() raises DecodeError when:
    - the frame is shorter than its own declared length
    - a string is shorter than its own declared length
    - the tag is unknown
    - the body has bytes left over after the last field
    - a string is not valid UTF-8
    - a numeric field does not fit its declared width

Bytes AFTER the declared frame length are never looked at; they belong
to the next frame.

This module does no I/O. Reading frames off a socket is the job of
core.connection.
=============================================================================
"""

import struct
from typing import Optional, Tuple, Union

from .messages import (
    AddRequest,
    AddResult,
    ClientMessage,
    EchoMessage,
    EchoResponse,
    ErrorResponse,
    ServerMessage,
)


Message = Union[ClientMessage, ServerMessage]

HEADER = struct.Struct("!I")
HEADER_SIZE = HEADER.size

_TAG = struct.Struct("!B")
_INT32 = struct.Struct("!i")
_INT32_PAIR = struct.Struct("!ii")
_STR_LEN = struct.Struct("!I")

TAG_ECHO = 0x01
TAG_ADD = 0x02
TAG_ECHO_RESPONSE = 0x81
TAG_ADD_RESULT = 0x82
TAG_ERROR = 0x83


class DecodeError(ValueError):
    """Raised when bytes do not form a valid message."""


class IncompleteFrameError(DecodeError):
    """The peer stopped sending before a frame was complete."""


class FrameTooLargeError(DecodeError):
    """A frame header declares more bytes than the receiver accepts."""

    def __init__(self, length: int, limit: int):
        super().__init__(f"frame of {length} bytes exceeds limit of {limit} bytes")
        self.length = length
        self.limit = limit


# =============================================================================
# ENCODING
# =============================================================================

def _pack_str(value: str) -> bytes:
    raw = value.encode("utf-8")
    return _STR_LEN.pack(len(raw)) + raw


def encode_payload(message: Message) -> bytes:
    """Serialize a message without the length prefix."""
    if isinstance(message, EchoMessage):
        return _TAG.pack(TAG_ECHO) + _pack_str(message.content)
    if isinstance(message, AddRequest):
        return _TAG.pack(TAG_ADD) + _INT32_PAIR.pack(message.a, message.b)
    if isinstance(message, EchoResponse):
        return _TAG.pack(TAG_ECHO_RESPONSE) + _pack_str(message.content)
    if isinstance(message, AddResult):
        return _TAG.pack(TAG_ADD_RESULT) + _INT32.pack(message.value)
    if isinstance(message, ErrorResponse):
        return _TAG.pack(TAG_ERROR) + _pack_str(message.detail)
    raise TypeError(f"Cannot encode {type(message).__name__}")


def encode(message: Message) -> bytes:
    """Serialize a message into a complete frame (prefix + payload)."""
    payload = encode_payload(message)
    return HEADER.pack(len(payload)) + payload


# =============================================================================
# DECODING
# =============================================================================

class _Reader:
    """Cursor over a payload that raises DecodeError instead of IndexError."""

    def __init__(self, data: bytes):
        self._data = data
        self._pos = 0

    def take(self, n: int, what: str) -> bytes:
        end = self._pos + n
        if end > len(self._data):
            raise DecodeError(
                f"truncated {what}: need {n} bytes, have {len(self._data) - self._pos}"
            )
        chunk = self._data[self._pos:end]
        self._pos = end
        return chunk

    def int32(self, what: str) -> int:
        return _INT32.unpack(self.take(_INT32.size, what))[0]

    def string(self, what: str) -> str:
        (length,) = _STR_LEN.unpack(self.take(_STR_LEN.size, f"{what} length"))
        raw = self.take(length, what)
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecodeError(f"{what} is not valid UTF-8") from e

    def finish(self, what: str) -> None:
        leftover = len(self._data) - self._pos
        if leftover:
            raise DecodeError(f"{leftover} unexpected trailing bytes after {what}")


def decode_payload(payload: bytes) -> Message:
    """Deserialize a payload (no length prefix) into a message."""
    if not payload:
        raise DecodeError("empty payload")

    reader = _Reader(payload)
    tag = _TAG.unpack(reader.take(_TAG.size, "tag"))[0]

    if tag == TAG_ECHO:
        message = EchoMessage(content=reader.string("content"))
    elif tag == TAG_ADD:
        a = reader.int32("operand a")
        b = reader.int32("operand b")
        message = AddRequest(a=a, b=b)
    elif tag == TAG_ECHO_RESPONSE:
        message = EchoResponse(content=reader.string("content"))
    elif tag == TAG_ADD_RESULT:
        message = AddResult(value=reader.int32("value"))
    elif tag == TAG_ERROR:
        message = ErrorResponse(detail=reader.string("detail"))
    else:
        raise DecodeError(f"unknown message tag 0x{tag:02x}")

    reader.finish(type(message).__name__)
    return message


def frame_length(header: bytes) -> int:
    """Parse the 4-byte length prefix."""
    if len(header) < HEADER_SIZE:
        raise DecodeError(f"truncated frame header: {len(header)} of {HEADER_SIZE} bytes")
    return HEADER.unpack_from(header)[0]


def split_frame(buffer: bytes) -> Optional[Tuple[bytes, bytes]]:
    """
    Cut one complete frame off the front of a buffer.

    Returns:
        (frame, rest), or None if the buffer does not yet hold a whole frame.
    """
    if len(buffer) < HEADER_SIZE:
        return None
    end = HEADER_SIZE + frame_length(buffer)
    if len(buffer) < end:
        return None
    return buffer[:end], buffer[end:]


def decode(frame: bytes) -> Message:
    """
    Deserialize a complete frame.

    Raises:
        DecodeError: If the frame is truncated or its payload is malformed.
    """
    length = frame_length(frame)
    available = len(frame) - HEADER_SIZE
    if available < length:
        raise DecodeError(f"truncated frame: declared {length} bytes, have {available}")
    return decode_payload(frame[HEADER_SIZE:HEADER_SIZE + length])
