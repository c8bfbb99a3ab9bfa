"""
=============================================================================
SERVER CONFIGURATION
=============================================================================

Centralized configuration for the message server.

=============================================================================
WHY A CONFIG CLASS?
=============================================================================

Configuration should be:
1. Centralized - One place to see all options
2. Typed - IDE autocomplete and error detection
3. Validated - Catch errors early

A dataclass gives all three with almost no code.

=============================================================================
TIMEOUTS AT A GLANCE
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                                                                      │
    │   poll_interval   How often the accept loop looks at the running    │
    │                   flag. Upper bound on "stop() → loop exits".       │
    │                                                                      │
    │   io_timeout      How long a single read/write on a client socket   │
    │                   may stall before the connection is dropped.        │
    │                                                                      │
    │   idle_timeout    How long a connection may sit between requests    │
    │                   before the handler gives up on it.                │
    │                                                                      │
    │   drain_timeout   How long shutdown waits for in-flight handlers.   │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

    Worst case stop latency ≈ poll_interval + drain_timeout

=============================================================================
"""

from dataclasses import dataclass
from typing import Optional


@dataclass
class ServerConfig:
    """
    Configuration for the message server.

    Development / tests:
        ServerConfig(
            port=0,               # Let the OS pick a free port
            pool_size=4,
            poll_interval=0.05,   # Fast shutdown
            io_timeout=2.0,
        )

    Long-running:
        ServerConfig(
            host="0.0.0.0",
            port=7878,
            pool_size=32,
        )
    """

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    host: str = "127.0.0.1"
    """The IP address to bind to."""

    port: int = 8080
    """
    The port number to listen on.
    0 asks the OS for any free port; the real one is on ServerHandle.address.
    """

    backlog: int = 128
    """Maximum number of connections queued by the OS before accept()."""

    buffer_size: int = 8192
    """Bytes requested per recv() call."""

    # ─────────────────────────────────────────────────────────────────────
    # WORKER POOL
    # ─────────────────────────────────────────────────────────────────────

    pool_size: int = 16
    """Number of worker threads. Bounds concurrently handled connections."""

    # ─────────────────────────────────────────────────────────────────────
    # TIMING
    # ─────────────────────────────────────────────────────────────────────

    poll_interval: float = 0.1
    """Accept timeout in seconds; the running flag is checked this often."""

    io_timeout: Optional[float] = 30.0
    """
    Per-connection read/write timeout in seconds.
    None = blocking (a stalled peer can hold a worker forever).
    """

    idle_timeout: float = 5.0
    """Seconds a connection may wait between requests before it is closed."""

    drain_timeout: float = 5.0
    """Seconds shutdown waits for in-flight connections to finish."""

    # ─────────────────────────────────────────────────────────────────────
    # PROTOCOL
    # ─────────────────────────────────────────────────────────────────────

    max_frame_size: Optional[int] = None
    """
    Largest payload a client may declare. None = no limit, so an echo of
    any length is served. When set, a bigger length prefix gets an error
    response instead of the server trying to buffer it.
    """

    # ─────────────────────────────────────────────────────────────────────
    # LOGGING
    # ─────────────────────────────────────────────────────────────────────

    log_level: str = "INFO"
    """Logging level used by the command-line runner."""

    def validate(self) -> None:
        """
        Validate configuration values.

        Called by Server.__init__ so a bad value fails at construction,
        not in the middle of the accept loop.
        """
        if not 0 <= self.port < 65536:
            raise ValueError(f"Invalid port: {self.port}. Must be 0-65535.")

        if self.backlog < 1:
            raise ValueError("backlog must be >= 1")

        if self.buffer_size < 1:
            raise ValueError("buffer_size must be >= 1")

        if self.pool_size < 1:
            raise ValueError("pool_size must be >= 1")

        if self.poll_interval <= 0:
            raise ValueError("poll_interval must be > 0")

        if self.io_timeout is not None and self.io_timeout <= 0:
            raise ValueError("io_timeout must be > 0 or None")

        if self.idle_timeout <= 0:
            raise ValueError("idle_timeout must be > 0")

        if self.drain_timeout < 0:
            raise ValueError("drain_timeout must be >= 0")

        if self.max_frame_size is not None and self.max_frame_size < 1:
            raise ValueError("max_frame_size must be >= 1 or None")
