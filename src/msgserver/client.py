"""
Blocking client for the message server.

    with Client("127.0.0.1", 7878, timeout=1.0) as client:
        reply = client.send_and_receive(EchoMessage("hello"))
        assert reply == EchoResponse("hello")

Errors:
    ConnectError   server unreachable or connect timed out
    DecodeError    reply was not a valid server message
    TimeoutError   no (complete) reply within the timeout
"""

import socket
import logging
from typing import Optional, Tuple

from .protocol import codec
from .protocol.codec import HEADER_SIZE, DecodeError, IncompleteFrameError
from .protocol.messages import ClientMessage, ServerMessage


logger = logging.getLogger(__name__)


class ConnectError(ConnectionError):
    """Could not establish a connection to the server."""


class Client:
    """
    One TCP connection to the server, one request at a time.

    Args:
        host: Server host.
        port: Server port.
        timeout: Seconds for connect and for each send/receive.
    """

    def __init__(self, host: str, port: int, timeout: Optional[float] = 1.0):
        self.host = host
        self.port = port
        self.timeout = timeout
        self._socket: Optional[socket.socket] = None
        self._buffer = b""

    @property
    def is_connected(self) -> bool:
        return self._socket is not None

    def connect(self) -> None:
        if self._socket is not None:
            return
        try:
            self._socket = socket.create_connection((self.host, self.port), timeout=self.timeout)
        except OSError as e:
            raise ConnectError(f"cannot connect to {self.host}:{self.port}: {e}") from e
        self._socket.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        logger.debug(f"Connected to {self.host}:{self.port}")

    def disconnect(self) -> None:
        """Close the connection. Safe to call when not connected."""
        if self._socket is None:
            return
        try:
            self._socket.close()
        finally:
            self._socket = None
            self._buffer = b""
        logger.debug(f"Disconnected from {self.host}:{self.port}")

    def _require_socket(self) -> socket.socket:
        if self._socket is None:
            raise ConnectError("not connected")
        return self._socket

    def send(self, message: ClientMessage) -> None:
        self.send_raw(codec.encode(message))

    def send_raw(self, data: bytes) -> None:
        """Write bytes as-is. Mostly useful for feeding the server bad input."""
        self._require_socket().sendall(data)

    def receive(self) -> ServerMessage:
        """
        Read one framed reply.

        Raises:
            DecodeError: Malformed frame, or the server closed mid-frame.
            ConnectionError: The server closed before sending anything.
            TimeoutError: No complete frame within the timeout.
        """
        sock = self._require_socket()
        try:
            header = self._read_exact(sock, HEADER_SIZE, mid_frame=False)
            payload = self._read_exact(sock, codec.frame_length(header), mid_frame=True)
        except socket.timeout:
            raise TimeoutError(f"no reply from {self.host}:{self.port} within {self.timeout}s")

        message = codec.decode_payload(payload)
        if not isinstance(message, ServerMessage):
            raise DecodeError(f"expected a server message, got {type(message).__name__}")
        return message

    def _read_exact(self, sock: socket.socket, n: int, mid_frame: bool) -> bytes:
        while len(self._buffer) < n:
            chunk = sock.recv(max(n - len(self._buffer), 4096))
            if not chunk:
                if mid_frame or self._buffer:
                    raise IncompleteFrameError("server closed the connection mid-frame")
                raise ConnectionError("server closed the connection")
            self._buffer += chunk
        data, self._buffer = self._buffer[:n], self._buffer[n:]
        return data

    def send_and_receive(self, message: ClientMessage) -> ServerMessage:
        self.send(message)
        return self.receive()

    def __enter__(self) -> "Client":
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.disconnect()
        return False

    def __del__(self):
        # Release the socket if the caller forgot to
        if self._socket is not None:
            self._socket.close()


def connect(address: Tuple[str, int], timeout: Optional[float] = 1.0) -> Client:
    """Open a connected Client to (host, port)."""
    client = Client(address[0], address[1], timeout=timeout)
    client.connect()
    return client
