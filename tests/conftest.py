"""
pytest configuration and fixtures.
"""

import socket
from typing import Callable, Generator

import pytest

# Add src to path for imports
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from msgserver import Client, Server, ServerConfig, ServerHandle


@pytest.fixture
def config() -> ServerConfig:
    """Test server configuration: OS-assigned port, fast shutdown."""
    return ServerConfig(
        host="127.0.0.1",
        port=0,  # Let OS pick a free port
        pool_size=4,
        poll_interval=0.05,
        io_timeout=2.0,
        idle_timeout=2.0,
        drain_timeout=3.0,
        max_frame_size=1024 * 1024,
    )


@pytest.fixture
def free_port() -> int:
    """Get a free port for testing."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


@pytest.fixture
def server_handle(config: ServerConfig) -> Generator[ServerHandle, None, None]:
    """A running server; stopped and awaited after the test."""
    handle = Server(config).start()

    yield handle

    handle.stop()
    assert handle.wait_until_stopped(timeout=10.0), "server did not stop"


@pytest.fixture
def make_client(server_handle: ServerHandle) -> Generator[Callable[[], Client], None, None]:
    """Factory for connected clients; all are disconnected after the test."""
    clients = []

    def factory(timeout: float = 2.0) -> Client:
        host, port = server_handle.address
        client = Client(host, port, timeout=timeout)
        client.connect()
        clients.append(client)
        return client

    yield factory

    for client in clients:
        client.disconnect()


@pytest.fixture
def raw_socket(server_handle: ServerHandle) -> Generator[socket.socket, None, None]:
    """A plain socket connected to the running server, for sending bad bytes."""
    sock = socket.create_connection(server_handle.address, timeout=2.0)

    yield sock

    sock.close()
