"""
=============================================================================
CONNECTION MANAGEMENT
=============================================================================

Wraps one accepted client socket with a frame-oriented API.

=============================================================================
TCP IS A BYTE STREAM, NOT A MESSAGE PROTOCOL!
=============================================================================

TCP does NOT preserve message boundaries. A client that sends one frame
might be seen by the server as:

    recv() → whole frame
    recv() → first 3 bytes of the header      (partial!)
    recv() → header + half the payload         (partial!)
    recv() → one frame + the start of the next (too much!)

So the connection keeps a buffer:

    1. recv() until at least 4 header bytes are buffered
    2. Parse the declared payload length
    3. recv() until the whole payload is buffered
    4. Cut the frame off the front, keep the leftovers for the next call

A partial frame is NOT an error. We keep reading until the frame is
complete or the socket timeout fires.

=============================================================================
CONNECTION STATE MACHINE
=============================================================================

    NEW ──────► READING ──────► PROCESSING ──────► WRITING ────────┐
     │             │                                    │           │
     │             │                                    │           ▼
     │             │                                    │         IDLE
     │             ▼                                    │           │
     └──────────► CLOSING ◄─────────────────────────────┴───────────┘
                    │
                    ▼
                  CLOSED

=============================================================================
"""

import select
import socket
import time
import logging
import uuid
from enum import Enum
from dataclasses import dataclass, field
from typing import Callable, Optional

from ..protocol.codec import (
    HEADER_SIZE,
    FrameTooLargeError,
    IncompleteFrameError,
    frame_length,
)


logger = logging.getLogger(__name__)


class ConnectionState(Enum):
    """Connection lifecycle states, used for logging and debugging."""

    NEW = "new"                # Just accepted, nothing read yet
    READING = "reading"        # Reading a frame
    PROCESSING = "processing"  # Frame decoded, computing the reply
    WRITING = "writing"        # Sending the reply
    IDLE = "idle"              # Reply sent, waiting for the next frame
    CLOSING = "closing"        # Shutdown sequence in progress
    CLOSED = "closed"          # Socket released


@dataclass
class Connection:
    """
    Represents a client connection.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    Connection Responsibilities                       │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │  1. BUFFERED FRAME READING                                           │
    │     └── _buffer holds partial data between recv() calls              │
    │                                                                      │
    │  2. TIMEOUTS                                                         │
    │     └── io_timeout bounds every blocking read and write              │
    │     └── wait_readable() bounds the gap between frames                │
    │                                                                      │
    │  3. STATE TRACKING                                                   │
    │     └── What phase the connection is in, for logs                    │
    │                                                                      │
    │  4. GRACEFUL CLOSE                                                   │
    │     └── Close exactly once, on every exit path                       │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

    Attributes:
        socket: The client socket.
        address: Client's (ip, port) tuple.
        id: Short unique identifier, used as a log prefix.
        state: Current connection state.
        frames_handled: Number of frames read on this connection.
    """

    socket: socket.socket
    address: tuple

    id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])
    state: ConnectionState = ConnectionState.NEW
    created_at: float = field(default_factory=time.time)
    last_activity: float = field(default_factory=time.time)
    frames_handled: int = 0

    # Configuration (passed from ServerConfig)
    buffer_size: int = 8192
    timeout: Optional[float] = 30.0
    max_frame_size: Optional[int] = None

    _buffer: bytes = field(default=b"", repr=False)

    # Upper bound on reading leftovers during close()
    DRAIN_TIMEOUT = 0.1

    def __post_init__(self):
        # Accepted sockets can inherit the listener's timeout on some
        # platforms; reset to blocking and apply our own.
        self.socket.setblocking(True)
        self.socket.settimeout(self.timeout)

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def is_closed(self) -> bool:
        return self.state == ConnectionState.CLOSED

    # =========================================================================
    # READING
    # =========================================================================

    def wait_readable(
        self,
        timeout: float,
        poll_interval: float,
        keep_waiting: Callable[[], bool],
    ) -> bool:
        """
        Wait for the next frame to start arriving.

        Used between request cycles. Instead of one long blocking recv(),
        we wake up every poll_interval and ask keep_waiting() whether it
        is still worth waiting (the server may be shutting down).

        Returns:
            True if data (or EOF) is ready to read, False if we gave up.
        """
        self.state = ConnectionState.IDLE
        if self._buffer:
            return True

        deadline = time.monotonic() + timeout
        while keep_waiting():
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                logger.debug(f"[{self.id}] Idle timeout")
                return False
            try:
                readable, _, _ = select.select(
                    [self.socket], [], [], min(remaining, poll_interval)
                )
            except (OSError, ValueError):
                # Socket closed underneath us
                return False
            if readable:
                return True
        return False

    def read_frame(self) -> Optional[bytes]:
        """
        Read one complete frame (header + payload) from the socket.

        Returns:
            The frame bytes, or None if the peer closed cleanly between frames.

        Raises:
            IncompleteFrameError: Peer closed in the middle of a frame.
            FrameTooLargeError: Declared length exceeds max_frame_size.
            TimeoutError: The socket timed out mid-frame.
            OSError: The connection failed.
        """
        self.state = ConnectionState.READING
        self.last_activity = time.time()

        try:
            # ─────────────────────────────────────────────────────────────
            # STEP 1: Read the length prefix
            # ─────────────────────────────────────────────────────────────
            if not self._fill(HEADER_SIZE):
                if not self._buffer:
                    return None  # Clean close between frames
                raise IncompleteFrameError(
                    f"connection closed after {len(self._buffer)} of {HEADER_SIZE} header bytes"
                )

            length = frame_length(self._buffer)
            if self.max_frame_size is not None and length > self.max_frame_size:
                raise FrameTooLargeError(length, self.max_frame_size)

            # ─────────────────────────────────────────────────────────────
            # STEP 2: Read the payload
            # ─────────────────────────────────────────────────────────────
            end = HEADER_SIZE + length
            if not self._fill(end):
                raise IncompleteFrameError(
                    f"connection closed after {len(self._buffer) - HEADER_SIZE} "
                    f"of {length} payload bytes"
                )

            # ─────────────────────────────────────────────────────────────
            # STEP 3: Cut the frame, keep leftovers for the next call
            # ─────────────────────────────────────────────────────────────
            frame = self._buffer[:end]
            self._buffer = self._buffer[end:]

            self.frames_handled += 1
            self.last_activity = time.time()
            return frame

        except socket.timeout:
            raise TimeoutError(f"Frame read timed out after {self.timeout}s")

    def _fill(self, size: int) -> bool:
        """recv() until the buffer holds `size` bytes. False on EOF."""
        while len(self._buffer) < size:
            chunk = self.socket.recv(self.buffer_size)
            if not chunk:
                return False
            self._buffer += chunk
        return True

    # =========================================================================
    # WRITING
    # =========================================================================

    def send_frame(self, data: bytes) -> bool:
        """
        Send one encoded frame.

        Uses sendall() so a large frame is not cut short by a full
        kernel buffer.

        Returns:
            True if sent, False if the peer is gone.
        """
        self.state = ConnectionState.WRITING
        try:
            self.socket.sendall(data)
            self.last_activity = time.time()
            return True
        except (socket.timeout, OSError) as e:
            logger.debug(f"[{self.id}] Send failed: {e}")
            return False

    # =========================================================================
    # CLOSING
    # =========================================================================

    def close(self):
        """
        Close the connection. Safe to call more than once.

        ┌─────────────────────────────────────────────────────────────────┐
        │  1. shutdown(SHUT_WR)  peer sees FIN after our last reply      │
        │  2. drain briefly      unread bytes would turn close() into    │
        │                        an RST, which can destroy that reply    │
        │  3. close()            release the file descriptor             │
        └─────────────────────────────────────────────────────────────────┘
        """
        if self.state == ConnectionState.CLOSED:
            return

        self.state = ConnectionState.CLOSING

        try:
            self.socket.shutdown(socket.SHUT_WR)
        except OSError:
            pass  # Peer already gone

        try:
            self.socket.settimeout(self.DRAIN_TIMEOUT)
            deadline = time.monotonic() + self.DRAIN_TIMEOUT
            while time.monotonic() < deadline and self.socket.recv(self.buffer_size):
                pass
        except OSError:
            pass  # Timeout or reset, we're closing anyway

        try:
            self.socket.close()
        except OSError:
            pass

        self.state = ConnectionState.CLOSED
        logger.debug(
            f"[{self.id}] Connection closed after {self.frames_handled} frames "
            f"in {time.time() - self.created_at:.3f}s"
        )

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
