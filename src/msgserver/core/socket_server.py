"""
=============================================================================
LOW-LEVEL TCP SOCKET SERVER
=============================================================================

Owns the listening socket and runs the accept loop. Every accepted client
is wrapped in a Connection and handed to a callback (the server submits
it to the worker pool).

=============================================================================
SOCKET LIFECYCLE (Server Side)
=============================================================================

    1. socket()    Create a socket file descriptor
    2. bind()      Associate the socket with an IP:PORT
                   └─ Fails with BindError if the port is taken
    3. listen()    OS starts queueing incoming connections
    4. accept()    Wait for a connection (with a timeout, see below)
                   └─ Returns a NEW socket just for that client
    5. close()     Release the listening socket

                    ┌───────────────────────┐
                    │   Listening Socket    │ ◄── bind() in start(),
                    │                       │     closed by accept loop
                    └───────────┬───────────┘
                                │
        ┌───────────────────────┼───────────────────────┐
        ▼                       ▼                       ▼
    ┌───────────┐         ┌───────────┐         ┌───────────┐
    │ Client    │         │ Client    │         │ Client    │
    │ Socket 1  │         │ Socket 2  │         │ Socket 3  │
    └───────────┘         └───────────┘         └───────────┘

=============================================================================
THE RUNNING FLAG AND THE POLLING ACCEPT
=============================================================================

accept() on a blocking socket waits forever. To be able to stop, the
listening socket gets a timeout of `poll_interval`:

    while running:
        try:
            accept()          # Blocks for poll_interval max
        except timeout:
            continue          # Check running flag, loop again

Stopping is just clearing the flag; the loop notices within one
poll_interval, closes the socket and returns. This trades a small fixed
shutdown latency for a loop that needs no wake-up tricks.

=============================================================================
PORT REUSE
=============================================================================

SO_REUSEADDR lets a fresh server bind right after an old one on the same
port closed (skipping TIME_WAIT). SO_REUSEPORT is deliberately NOT set:
two live servers on one port must fail with BindError.

=============================================================================
"""

import os
import socket
import logging
import threading
from typing import Callable, Optional, Tuple

from ..config import ServerConfig
from .connection import Connection


logger = logging.getLogger(__name__)


class BindError(OSError):
    """The listening socket could not be bound (port in use, no permission, ...)."""


class RunningFlag:
    """
    Thread-safe "keep going" flag shared by the accept loop, the handlers
    and whoever asks the server to stop.

    Starts set. clear() happens at most once; there is no way to set it
    again. wait_cleared() lets a thread sleep until stop is requested.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._running = True
        self._stopped = threading.Event()

    def is_set(self) -> bool:
        with self._lock:
            return self._running

    def clear(self) -> bool:
        """
        Request stop.

        Returns:
            True for the call that actually cleared the flag, False after.
        """
        with self._lock:
            if not self._running:
                return False
            self._running = False
        self._stopped.set()
        return True

    def wait_cleared(self, timeout: Optional[float] = None) -> bool:
        return self._stopped.wait(timeout)

    def __bool__(self) -> bool:
        return self.is_set()


class SocketServer:
    """
    Low-level TCP socket server.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                      SocketServer Internals                          │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │    bind()             Caller thread                                  │
    │        ├──► _create_socket()   socket() + setsockopt()              │
    │        ├──► bind()             BindError on failure                  │
    │        └──► listen()                                                 │
    │                                                                      │
    │    serve(callback)    Accept thread (blocks here!)                  │
    │        └──► while running:                                          │
    │                accept()        poll_interval timeout                 │
    │                Connection()    wrap client socket                   │
    │                callback(conn)  hand off to worker pool              │
    │        └──► _cleanup()        close listening socket                │
    │                                                                      │
    │    running.clear()    Any thread                                    │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘
    """

    def __init__(self, config: ServerConfig, running: Optional[RunningFlag] = None):
        self.config = config
        self.running = running or RunningFlag()
        self._socket: Optional[socket.socket] = None
        self._address: Optional[Tuple[str, int]] = None

    @property
    def address(self) -> Tuple[str, int]:
        """The bound (host, port); reflects the real port when 0 was asked for."""
        if self._address is not None:
            return self._address
        return (self.config.host, self.config.port)

    def _create_socket(self) -> socket.socket:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)

        # On Windows SO_REUSEADDR would let a second server steal the port
        if os.name == "posix":
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)

        # Small request/response frames: send immediately
        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)

        # Accept timeout = how often the running flag is checked
        sock.settimeout(self.config.poll_interval)
        return sock

    def bind(self) -> Tuple[str, int]:
        """
        Create, bind and listen.

        Runs on the caller's thread so a busy port is reported right away.

        Returns:
            The bound (host, port).

        Raises:
            BindError: If the address cannot be bound.
        """
        if self._socket is not None:
            raise RuntimeError("Socket server is already bound")

        sock = self._create_socket()
        try:
            sock.bind((self.config.host, self.config.port))
            sock.listen(self.config.backlog)
        except OSError as e:
            sock.close()
            logger.error(f"Failed to bind to {self.config.host}:{self.config.port}: {e}")
            raise BindError(
                e.errno, f"cannot bind {self.config.host}:{self.config.port}: {e.strerror or e}"
            ) from e

        self._socket = sock
        self._address = sock.getsockname()[:2]
        logger.info(f"Listening on {self._address[0]}:{self._address[1]}")
        return self._address

    def serve(self, connection_handler: Callable[[Connection], None]):
        """
        Run the accept loop until the running flag is cleared.

        The listening socket is closed before this returns, whatever the
        reason for returning.
        """
        if self._socket is None:
            raise RuntimeError("bind() must be called before serve()")

        try:
            self._accept_loop(connection_handler)
        finally:
            self._cleanup()

    def _accept_loop(self, connection_handler: Callable[[Connection], None]):
        while self.running.is_set():
            try:
                client_socket, client_address = self._socket.accept()
            except socket.timeout:
                # Normal: nobody connected during this poll interval
                continue
            except OSError as e:
                if not self.running.is_set():
                    break
                # EMFILE, ECONNABORTED, ... back off one interval and retry
                logger.error(f"Accept error: {e}")
                self.running.wait_cleared(self.config.poll_interval)
                continue

            # Flag may have been cleared while we sat in accept()
            if not self.running.is_set():
                client_socket.close()
                break

            conn = Connection(
                socket=client_socket,
                address=client_address,
                buffer_size=self.config.buffer_size,
                timeout=self.config.io_timeout,
                max_frame_size=self.config.max_frame_size,
            )
            logger.debug(f"[{conn.id}] Accepted connection from {client_address[0]}:{client_address[1]}")

            try:
                connection_handler(conn)
            except Exception as e:
                logger.exception(f"[{conn.id}] Failed to dispatch connection: {e}")
                conn.close()

    def _cleanup(self):
        if self._socket is not None:
            try:
                self._socket.close()
            except OSError:
                pass
            self._socket = None
        logger.info("Socket server stopped")
