"""
Per-connection request handling.

    read frame → decode → dispatch → encode → write → (next frame?)

Each cycle is independent; nothing is remembered between cycles or shared
with other connections. The socket is closed on every way out.
"""

import logging
from typing import Callable, Optional

from .config import ServerConfig
from .core.connection import Connection, ConnectionState
from .core.socket_server import RunningFlag
from .protocol import codec
from .protocol.codec import DecodeError, Message
from .protocol.messages import (
    AddRequest,
    AddResult,
    EchoMessage,
    EchoResponse,
    ErrorResponse,
    ServerMessage,
)


logger = logging.getLogger(__name__)

Dispatcher = Callable[[Message], ServerMessage]


def dispatch(message: Message) -> ServerMessage:
    """Compute the reply for one decoded request."""
    if isinstance(message, EchoMessage):
        return EchoResponse(content=message.content)
    if isinstance(message, AddRequest):
        return AddResult(value=message.result())
    return ErrorResponse(detail=f"unsupported message type: {type(message).__name__}")


class ConnectionHandler:
    """
    Runs request/response cycles on one connection until the peer hangs up.

    The first frame on a connection is always served. After that the
    handler waits up to `idle_timeout` for another frame, and stops waiting
    as soon as the server is shutting down.
    """

    def __init__(
        self,
        config: ServerConfig,
        running: RunningFlag,
        dispatcher: Optional[Dispatcher] = None,
    ):
        self.config = config
        self.running = running
        self.dispatcher = dispatcher or dispatch

    def __call__(self, conn: Connection) -> None:
        self.handle(conn)

    def handle(self, conn: Connection) -> None:
        with conn:
            while True:
                if conn.frames_handled and not conn.wait_readable(
                    timeout=self.config.idle_timeout,
                    poll_interval=self.config.poll_interval,
                    keep_waiting=self.running.is_set,
                ):
                    break
                if not self._handle_one(conn):
                    break

    def _handle_one(self, conn: Connection) -> bool:
        """
        One decode-compute-encode-write cycle.

        Returns:
            True if the connection can carry another cycle.
        """
        # ─────────────────────────────────────────────────────────────────
        # READ
        # ─────────────────────────────────────────────────────────────────
        try:
            frame = conn.read_frame()
        except DecodeError as e:
            # Truncated or oversized: the stream cannot be resynchronized
            logger.warning(f"[{conn.id}] Malformed frame: {e}")
            self._send_error(conn, str(e))
            return False
        except TimeoutError as e:
            logger.warning(f"[{conn.id}] {e}")
            self._send_error(conn, "timed out waiting for a complete frame")
            return False
        except OSError as e:
            logger.warning(f"[{conn.id}] Read failed: {e}")
            return False

        if frame is None:
            logger.debug(f"[{conn.id}] Peer closed the connection")
            return False

        # ─────────────────────────────────────────────────────────────────
        # DECODE
        # ─────────────────────────────────────────────────────────────────
        try:
            request = codec.decode(frame)
        except DecodeError as e:
            logger.warning(f"[{conn.id}] Failed to decode message: {e}")
            self._send_error(conn, str(e))
            return False

        # ─────────────────────────────────────────────────────────────────
        # COMPUTE
        # ─────────────────────────────────────────────────────────────────
        conn.state = ConnectionState.PROCESSING
        logger.debug(f"[{conn.id}] Received {request!r}")
        reply = self.dispatcher(request)

        # ─────────────────────────────────────────────────────────────────
        # WRITE
        # ─────────────────────────────────────────────────────────────────
        if not conn.send_frame(codec.encode(reply)):
            return False

        return not isinstance(reply, ErrorResponse)

    def _send_error(self, conn: Connection, detail: str) -> None:
        conn.send_frame(codec.encode(ErrorResponse(detail=detail)))
