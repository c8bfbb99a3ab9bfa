"""
Unit tests for the wire codec.
"""

import struct

import pytest

from msgserver.protocol import (
    INT32_MAX,
    INT32_MIN,
    AddRequest,
    AddResult,
    DecodeError,
    EchoMessage,
    EchoResponse,
    ErrorResponse,
    decode,
    decode_payload,
    encode,
    encode_payload,
    frame_length,
    split_frame,
)


class TestEncode:
    """Tests for the pinned byte layout."""

    def test_echo_message_layout(self):
        assert encode(EchoMessage("hi")) == (
            b"\x00\x00\x00\x07"   # frame length
            b"\x01"               # tag
            b"\x00\x00\x00\x02"   # string length
            b"hi"
        )

    def test_add_request_layout(self):
        assert encode_payload(AddRequest(2, -3)) == b"\x02" + struct.pack("!ii", 2, -3)

    def test_server_tags(self):
        assert encode_payload(EchoResponse("x"))[0] == 0x81
        assert encode_payload(AddResult(5))[0] == 0x82
        assert encode_payload(ErrorResponse("bad"))[0] == 0x83

    def test_length_prefix_is_big_endian(self):
        frame = encode(EchoMessage("a" * 300))
        assert frame_length(frame) == len(frame) - 4
        assert frame[:4] == struct.pack("!I", len(frame) - 4)

    def test_unknown_type_rejected(self):
        with pytest.raises(TypeError):
            encode("not a message")


class TestRoundTrip:
    """decode(encode(m)) == m for every message shape."""

    @pytest.mark.parametrize("message", [
        EchoMessage(""),
        EchoMessage("Hello, World!"),
        EchoMessage("héllo wörld ✓ 你好"),
        AddRequest(INT32_MIN, INT32_MAX),
        EchoResponse("Goodbye!"),
        AddResult(-1),
        ErrorResponse("unknown message tag 0x7f"),
    ])
    def test_round_trip(self, message):
        assert decode(encode(message)) == message

    def test_large_content(self):
        message = EchoMessage("x" * 100_000)
        assert decode(encode(message)) == message

    def test_bytes_after_frame_are_ignored(self):
        frame = encode(EchoMessage("first"))
        assert decode(frame + b"\xff\xff garbage") == EchoMessage("first")


class TestDecodeErrors:
    """Tests for malformed input."""

    def test_frame_shorter_than_declared(self):
        frame = encode(EchoMessage("hello"))
        with pytest.raises(DecodeError, match="truncated frame"):
            decode(frame[:-1])

    def test_short_header(self):
        with pytest.raises(DecodeError):
            decode(b"\x00\x00")

    def test_empty_payload(self):
        with pytest.raises(DecodeError, match="empty payload"):
            decode(b"\x00\x00\x00\x00")

    def test_unknown_tag(self):
        with pytest.raises(DecodeError, match="unknown message tag 0x7f"):
            decode_payload(b"\x7f")

    def test_string_shorter_than_declared(self):
        payload = b"\x01" + struct.pack("!I", 10) + b"abc"
        with pytest.raises(DecodeError, match="truncated content"):
            decode_payload(payload)

    def test_truncated_integer(self):
        with pytest.raises(DecodeError, match="truncated operand b"):
            decode_payload(b"\x02" + struct.pack("!i", 1) + b"\x00")

    def test_trailing_bytes(self):
        with pytest.raises(DecodeError, match="trailing"):
            decode_payload(encode_payload(AddResult(1)) + b"\x00")

    def test_invalid_utf8(self):
        payload = b"\x01" + struct.pack("!I", 2) + b"\xff\xfe"
        with pytest.raises(DecodeError, match="UTF-8"):
            decode_payload(payload)

    def test_decode_error_is_value_error(self):
        assert issubclass(DecodeError, ValueError)


class TestSplitFrame:
    """Tests for cutting frames off a byte buffer."""

    def test_incomplete_header(self):
        assert split_frame(b"\x00\x00") is None

    def test_incomplete_payload(self):
        frame = encode(EchoMessage("abc"))
        assert split_frame(frame[:-1]) is None

    def test_exact_frame(self):
        frame = encode(AddRequest(1, 2))
        assert split_frame(frame) == (frame, b"")

    def test_keeps_remainder(self):
        first = encode(EchoMessage("one"))
        second = encode(EchoMessage("two"))
        frame, rest = split_frame(first + second)
        assert decode(frame) == EchoMessage("one")
        assert rest == second
