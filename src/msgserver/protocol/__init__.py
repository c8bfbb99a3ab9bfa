"""
=============================================================================
PROTOCOL
=============================================================================

Message types and the binary codec that carries them over TCP.

    messages.py    EchoMessage, AddRequest, and the ServerMessage variants
    codec.py       encode()/decode() between messages and framed bytes

Nothing in here touches a socket.
=============================================================================
"""

from .messages import (
    INT32_MAX,
    INT32_MIN,
    AddRequest,
    AddResult,
    ClientMessage,
    EchoMessage,
    EchoResponse,
    ErrorResponse,
    ServerMessage,
    wrap_int32,
)
from .codec import (
    HEADER_SIZE,
    DecodeError,
    FrameTooLargeError,
    IncompleteFrameError,
    decode,
    decode_payload,
    encode,
    encode_payload,
    frame_length,
    split_frame,
)

__all__ = [
    "INT32_MAX",
    "INT32_MIN",
    "AddRequest",
    "AddResult",
    "ClientMessage",
    "EchoMessage",
    "EchoResponse",
    "ErrorResponse",
    "ServerMessage",
    "wrap_int32",
    "HEADER_SIZE",
    "DecodeError",
    "FrameTooLargeError",
    "IncompleteFrameError",
    "decode",
    "decode_payload",
    "encode",
    "encode_payload",
    "frame_length",
    "split_frame",
]
