"""
=============================================================================
MSGSERVER - Framed Request/Response Server over TCP
=============================================================================

Clients connect, send a typed request (echo or addition) in a compact
length-prefixed binary frame, and get a typed response back.

=============================================================================
PACKAGE STRUCTURE
=============================================================================

    msgserver/
    ├── __init__.py          # This file - package exports
    ├── __main__.py          # CLI runner (python -m msgserver)
    ├── server.py            # Server, ServerHandle, lifecycle
    ├── handler.py           # Per-connection request/response cycles
    ├── client.py            # Blocking client
    ├── config.py            # ServerConfig dataclass
    ├── core/                # Low-level components
    │   ├── socket_server.py # Listening socket, accept loop, RunningFlag
    │   ├── connection.py    # Buffered frame reading per client
    │   └── thread_pool.py   # Fixed-size worker pool
    └── protocol/            # Wire format
        ├── messages.py      # EchoMessage, AddRequest, ServerMessage variants
        └── codec.py         # encode()/decode()

=============================================================================
QUICK START
=============================================================================

    from msgserver import Server, ServerConfig, Client
    from msgserver.protocol import AddRequest, AddResult

    handle = Server(ServerConfig(port=0)).start()
    host, port = handle.address

    with Client(host, port) as client:
        assert client.send_and_receive(AddRequest(2, 3)) == AddResult(5)

    handle.stop()
    handle.wait_until_stopped()

=============================================================================
"""

__version__ = "1.0.0"

from .config import ServerConfig
from .server import Server, ServerHandle, ServerState
from .client import Client, ConnectError, connect
from .core import BindError
from .protocol import DecodeError

__all__ = [
    "Server",
    "ServerHandle",
    "ServerState",
    "ServerConfig",
    "Client",
    "ConnectError",
    "connect",
    "BindError",
    "DecodeError",
    "__version__",
]
