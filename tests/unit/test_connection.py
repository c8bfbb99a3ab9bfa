"""
Unit tests for Connection and ConnectionHandler over a socketpair.
"""

import socket
import struct
import threading

import pytest

from msgserver import ServerConfig
from msgserver.core import Connection, ConnectionState, RunningFlag
from msgserver.handler import ConnectionHandler
from msgserver.protocol import (
    AddRequest,
    AddResult,
    EchoMessage,
    EchoResponse,
    ErrorResponse,
    FrameTooLargeError,
    IncompleteFrameError,
    decode,
    encode,
)


@pytest.fixture
def pair():
    server_side, client_side = socket.socketpair()
    client_side.settimeout(2.0)
    yield server_side, client_side
    server_side.close()
    client_side.close()


def make_conn(sock: socket.socket, **kwargs) -> Connection:
    kwargs.setdefault("timeout", 1.0)
    return Connection(socket=sock, address=("peer", 0), **kwargs)


def recv_reply(sock: socket.socket):
    data = b""
    while len(data) < 4:
        chunk = sock.recv(4096)
        assert chunk, "connection closed before a reply"
        data += chunk
    (length,) = struct.unpack("!I", data[:4])
    while len(data) < 4 + length:
        chunk = sock.recv(4096)
        assert chunk, "connection closed mid-reply"
        data += chunk
    return decode(data)


class TestConnectionReadFrame:
    """Tests for buffered frame reading."""

    def test_reads_frame_sent_in_pieces(self, pair):
        server_side, client_side = pair
        conn = make_conn(server_side)
        frame = encode(EchoMessage("split across writes"))

        def send_slowly():
            for i in range(len(frame)):
                client_side.sendall(frame[i:i + 1])

        sender = threading.Thread(target=send_slowly)
        sender.start()
        assert conn.read_frame() == frame
        sender.join()

    def test_keeps_leftover_bytes(self, pair):
        server_side, client_side = pair
        conn = make_conn(server_side)
        first, second = encode(EchoMessage("one")), encode(AddRequest(1, 2))
        client_side.sendall(first + second)

        assert conn.read_frame() == first
        assert conn.read_frame() == second
        assert conn.frames_handled == 2

    def test_clean_close_returns_none(self, pair):
        server_side, client_side = pair
        conn = make_conn(server_side)
        client_side.close()
        assert conn.read_frame() is None

    def test_close_mid_frame(self, pair):
        server_side, client_side = pair
        conn = make_conn(server_side)
        client_side.sendall(encode(EchoMessage("hello"))[:-2])
        client_side.shutdown(socket.SHUT_WR)
        with pytest.raises(IncompleteFrameError):
            conn.read_frame()

    def test_partial_frame_times_out(self, pair):
        server_side, client_side = pair
        conn = make_conn(server_side, timeout=0.2)
        client_side.sendall(b"\x00\x00\x00\x10\x01")
        with pytest.raises(TimeoutError):
            conn.read_frame()

    def test_frame_too_large(self, pair):
        server_side, client_side = pair
        conn = make_conn(server_side, max_frame_size=16)
        client_side.sendall(struct.pack("!I", 17))
        with pytest.raises(FrameTooLargeError):
            conn.read_frame()

    def test_no_frame_limit_by_default(self, pair):
        server_side, client_side = pair
        conn = make_conn(server_side)
        frame = encode(EchoMessage("x" * 100_000))

        sender = threading.Thread(target=client_side.sendall, args=(frame,))
        sender.start()
        assert conn.read_frame() == frame
        sender.join()

    def test_close_is_idempotent(self, pair):
        server_side, _ = pair
        conn = make_conn(server_side)
        with conn:
            pass
        assert conn.state == ConnectionState.CLOSED
        conn.close()
        assert conn.is_closed


class TestWaitReadable:
    """Tests for the idle wait between frames."""

    def test_returns_when_data_arrives(self, pair):
        server_side, client_side = pair
        conn = make_conn(server_side)
        client_side.sendall(b"\x00")
        assert conn.wait_readable(timeout=1.0, poll_interval=0.05, keep_waiting=lambda: True)

    def test_gives_up_after_timeout(self, pair):
        server_side, _ = pair
        conn = make_conn(server_side)
        assert not conn.wait_readable(timeout=0.1, poll_interval=0.05, keep_waiting=lambda: True)

    def test_stops_when_told(self, pair):
        server_side, _ = pair
        conn = make_conn(server_side)
        assert not conn.wait_readable(timeout=5.0, poll_interval=0.05, keep_waiting=lambda: False)


class TestConnectionHandler:
    """Tests for request/response cycles on one connection."""

    @pytest.fixture
    def handler(self):
        config = ServerConfig(port=0, poll_interval=0.05, io_timeout=0.5, idle_timeout=1.0)
        return ConnectionHandler(config, RunningFlag())

    def run_handler(self, handler, sock) -> threading.Thread:
        thread = threading.Thread(target=handler, args=(make_conn(sock, timeout=0.5),))
        thread.start()
        return thread

    def test_echo_then_add_on_one_connection(self, handler, pair):
        server_side, client_side = pair
        thread = self.run_handler(handler, server_side)

        client_side.sendall(encode(EchoMessage("hello")))
        assert recv_reply(client_side) == EchoResponse("hello")

        client_side.sendall(encode(AddRequest(2, 3)))
        assert recv_reply(client_side) == AddResult(5)

        client_side.shutdown(socket.SHUT_WR)
        thread.join(timeout=2.0)
        assert not thread.is_alive()

    def test_garbage_gets_error_then_close(self, handler, pair):
        server_side, client_side = pair
        thread = self.run_handler(handler, server_side)

        client_side.sendall(b"\x00\x00\x00\x03\x7f\x00\x00")
        reply = recv_reply(client_side)
        assert isinstance(reply, ErrorResponse)
        assert "unknown message tag" in reply.detail

        thread.join(timeout=2.0)
        assert not thread.is_alive()
        assert client_side.recv(1) == b""

    def test_server_message_from_client_is_an_error(self, handler, pair):
        server_side, client_side = pair
        thread = self.run_handler(handler, server_side)

        client_side.sendall(encode(AddResult(1)))
        reply = recv_reply(client_side)
        assert isinstance(reply, ErrorResponse)

        thread.join(timeout=2.0)
        assert not thread.is_alive()

    def test_stalled_frame_times_out_with_error(self, handler, pair):
        server_side, client_side = pair
        thread = self.run_handler(handler, server_side)

        client_side.sendall(b"\x00\x00\x00\x10")
        reply = recv_reply(client_side)
        assert isinstance(reply, ErrorResponse)
        assert "timed out" in reply.detail

        thread.join(timeout=2.0)
        assert not thread.is_alive()

    def test_peer_gone_before_reply(self, handler, pair):
        server_side, client_side = pair
        client_side.sendall(encode(EchoMessage("bye")))
        client_side.close()

        thread = self.run_handler(handler, server_side)
        thread.join(timeout=2.0)
        assert not thread.is_alive()

    def test_idle_connection_closed_once_stopping(self, pair):
        server_side, client_side = pair
        running = RunningFlag()
        config = ServerConfig(port=0, poll_interval=0.05, io_timeout=0.5, idle_timeout=30.0)
        handler = ConnectionHandler(config, running)
        thread = threading.Thread(target=handler, args=(make_conn(server_side),))
        thread.start()

        client_side.sendall(encode(EchoMessage("first")))
        assert recv_reply(client_side) == EchoResponse("first")

        running.clear()
        thread.join(timeout=2.0)
        assert not thread.is_alive()
