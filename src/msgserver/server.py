"""
=============================================================================
MESSAGE SERVER
=============================================================================

The orchestrator that ties the socket server, the worker pool and the
connection handler together, and the handle callers use to stop it.

=============================================================================
ARCHITECTURE OVERVIEW
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                                                                      │
    │                        ┌─────────────────┐                          │
    │                        │     Server      │ start() → ServerHandle   │
    │                        └────────┬────────┘                          │
    │            ┌────────────────────┼────────────────────┐              │
    │            ▼                    ▼                    ▼              │
    │    ┌──────────────┐    ┌──────────────┐    ┌──────────────────┐     │
    │    │ SocketServer │    │  ThreadPool  │    │ConnectionHandler │     │
    │    │ (accept loop)│───►│  (workers)   │───►│ (decode/reply)   │     │
    │    └──────────────┘    └──────────────┘    └──────────────────┘     │
    │                                                                      │
    │            RunningFlag shared by all three and the handle           │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
LIFECYCLE
=============================================================================

    STOPPED ──► STARTING ──► RUNNING ──► STOPPING ──► STOPPED (terminal)
                   │
                   └── BindError ──► STOPPED (start() raises)

    start()                 bind on the caller thread, start workers,
                            spawn the accept thread, return a handle
    handle.stop()           clear the running flag (any number of times)
    accept thread notices   stop accepting, close the listening socket,
                            drain in-flight work (≤ drain_timeout),
                            stop workers
    wait_until_stopped()    returns once the accept thread has exited

A Server instance runs once. Build a new one to run again.

=============================================================================
"""

import logging
import threading
import time
from enum import Enum
from typing import Optional, Tuple

from .config import ServerConfig
from .core import Connection, RunningFlag, SocketServer, ThreadPool
from .core.thread_pool import Task
from .handler import ConnectionHandler, dispatch
from .protocol.codec import Message
from .protocol.messages import ServerMessage


logger = logging.getLogger(__name__)


class ServerState(Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"


class ServerHandle:
    """
    What start() gives back: a way to stop the server and wait for it.

    The handle does not own the listening socket; the accept thread
    closes that on its way out.

    Usage:
        handle = Server(ServerConfig(port=0)).start()
        host, port = handle.address
        ...
        handle.stop()
        handle.wait_until_stopped(timeout=5)

    Or:
        with Server(ServerConfig(port=0)).start() as handle:
            ...
    """

    def __init__(
        self,
        running: RunningFlag,
        stopped: threading.Event,
        thread: threading.Thread,
        address: Tuple[str, int],
    ):
        self._running = running
        self._stopped = stopped
        self._thread = thread
        self.address = address

    @property
    def is_running(self) -> bool:
        return self._running.is_set()

    @property
    def is_stopped(self) -> bool:
        return self._stopped.is_set()

    def stop(self) -> None:
        """Ask the server to stop. Further calls are no-ops."""
        if self._running.clear():
            logger.info("Shutdown requested")
        else:
            logger.debug("Shutdown already requested")

    def wait_until_stopped(self, timeout: Optional[float] = None) -> bool:
        """
        Block until the accept loop has returned and shutdown finished.

        Returns:
            True if the server has stopped, False if the timeout expired.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        if not self._stopped.wait(timeout):
            return False
        remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
        self._thread.join(remaining)
        return not self._thread.is_alive()

    def __enter__(self) -> "ServerHandle":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()
        self.wait_until_stopped()
        return False


class Server:
    """
    Echo/add request server.

    Usage:
        server = Server(ServerConfig(host="127.0.0.1", port=7878))
        handle = server.start()        # BindError if the port is taken
        ...
        handle.stop()
        handle.wait_until_stopped()

    Subclasses can override dispatch() to change how replies are computed.
    """

    def __init__(self, config: Optional[ServerConfig] = None):
        self.config = config or ServerConfig()
        self.config.validate()

        self.running = RunningFlag()
        self.state = ServerState.STOPPED
        self._state_lock = threading.Lock()
        self._used = False

        self._socket_server = SocketServer(self.config, self.running)
        self._pool = ThreadPool(workers=self.config.pool_size)
        self._handler = ConnectionHandler(self.config, self.running, dispatcher=self.dispatch)
        self._stopped = threading.Event()
        self._handle: Optional[ServerHandle] = None

    @property
    def pool(self) -> ThreadPool:
        return self._pool

    @property
    def address(self) -> Tuple[str, int]:
        return self._socket_server.address

    def dispatch(self, message: Message) -> ServerMessage:
        return dispatch(message)

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def _set_state(self, state: ServerState) -> None:
        with self._state_lock:
            logger.debug(f"Server state {self.state.value} -> {state.value}")
            self.state = state

    def start(self) -> ServerHandle:
        """
        Bind, start the workers and the accept thread.

        Returns:
            A ServerHandle for stopping and waiting.

        Raises:
            BindError: The address is unavailable. Not retried.
            RuntimeError: This instance was already started once.
        """
        with self._state_lock:
            if self._used:
                raise RuntimeError("Server instances are single-use; create a new one")
            self._used = True

        self._set_state(ServerState.STARTING)
        try:
            address = self._socket_server.bind()
        except Exception:
            self.running.clear()
            self._stopped.set()
            self._set_state(ServerState.STOPPED)
            raise

        self._pool.start()

        thread = threading.Thread(
            target=self._run,
            name=f"msgserver-accept-{address[1]}",
            daemon=True,
        )
        self._handle = ServerHandle(self.running, self._stopped, thread, address)
        self._set_state(ServerState.RUNNING)
        thread.start()

        logger.info(
            f"Server running on {address[0]}:{address[1]} "
            f"with {self.config.pool_size} workers"
        )
        return self._handle

    def _run(self) -> None:
        """Accept thread body: serve, then drain and shut down."""
        try:
            self._socket_server.serve(self._submit)
        except Exception as e:
            logger.exception(f"Accept loop crashed: {e}")
            self.running.clear()
        finally:
            self._set_state(ServerState.STOPPING)
            try:
                self._shutdown()
            except Exception as e:
                logger.exception(f"Shutdown failed: {e}")
            finally:
                self._set_state(ServerState.STOPPED)
                self._stopped.set()

    def _submit(self, conn: Connection) -> None:
        self._pool.submit(self._handler, args=(conn,))

    def _shutdown(self) -> None:
        """
        Graceful shutdown, on the accept thread after the loop has exited.

        1. Listening socket is already closed (no new connections)
        2. Wait for in-flight connections, at most drain_timeout
        3. Close connections still queued; they are never served
        4. Stop the workers
        """
        if not self._pool.wait_for_drain(self.config.drain_timeout):
            logger.warning(
                f"{self._pool.pending} connection(s) still pending after "
                f"{self.config.drain_timeout}s drain"
            )
        self._pool.shutdown(wait=False, cancel=self._close_queued)
        logger.info("Server stopped")

    def _close_queued(self, task: Task) -> None:
        conn = task.args[0]
        logger.debug(f"[{conn.id}] Closing unserved connection from {conn.address}")
        conn.close()
