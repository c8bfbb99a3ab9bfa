"""
=============================================================================
CORE SERVER COMPONENTS
=============================================================================

The networking plumbing under the message server.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                         SOCKET SERVER                                │
    │  • Binds the listening socket (BindError if the port is taken)      │
    │  • Runs the accept loop, polling the RunningFlag                    │
    │  • Closes the listening socket when the loop ends                   │
    └─────────────────────────────────────────────────────────────────────┘
                                    │ hands off new connections
                                    ▼
    ┌─────────────────────────────────────────────────────────────────────┐
    │                          THREAD POOL                                 │
    │  • Fixed number of worker threads                                   │
    │  • Unbounded FIFO of pending connections                            │
    │  • A failing unit never kills its worker                            │
    └─────────────────────────────────────────────────────────────────────┘
                                    │ worker processes connection
                                    ▼
    ┌─────────────────────────────────────────────────────────────────────┐
    │                          CONNECTION                                  │
    │  • Buffered, length-prefixed frame reading                          │
    │  • Timeouts on every read and write                                 │
    │  • Closed exactly once                                              │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
"""

from .socket_server import BindError, RunningFlag, SocketServer
from .connection import Connection, ConnectionState
from .thread_pool import ThreadPool

__all__ = [
    "BindError",
    "RunningFlag",
    "SocketServer",
    "Connection",
    "ConnectionState",
    "ThreadPool",
]
