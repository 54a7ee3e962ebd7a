"""
Pytest Configuration and Fixtures

This module provides shared fixtures and configuration for all tests.
"""

import asyncio
import socket
from contextlib import closing
from typing import AsyncGenerator

import pytest
import pytest_asyncio

from miniredis.cache.blocking import BlockingCoordinator
from miniredis.cache.store import KVStore
from miniredis.dispatcher import CommandDispatcher
from miniredis.errors import IncompleteFrameError
from miniredis.network.tcp_server import KVServer
from miniredis.protocol.resp import encode_request, parse_reply


def find_free_port() -> int:
    """Find an available port for testing."""
    with closing(socket.socket(socket.AF_INET, socket.SOCK_STREAM)) as s:
        s.bind(('', 0))
        s.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        return s.getsockname()[1]


class FakeClock:
    """Manually advanced clock for deterministic expiry tests."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# ============================================================================
# Store Fixtures
# ============================================================================

@pytest.fixture
def store() -> KVStore:
    """Create a fresh KVStore on the wall clock."""
    return KVStore()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def timed_store(clock: FakeClock) -> KVStore:
    """Create a KVStore driven by the fake clock."""
    return KVStore(clock=clock)


# ============================================================================
# Blocking / Dispatch Fixtures
# ============================================================================

@pytest.fixture
def coordinator(store: KVStore) -> BlockingCoordinator:
    return BlockingCoordinator(store)


@pytest.fixture
def dispatcher(store: KVStore, coordinator: BlockingCoordinator) -> CommandDispatcher:
    return CommandDispatcher(store, coordinator)


# ============================================================================
# Server Fixtures
# ============================================================================

@pytest.fixture
def server_port() -> int:
    """Get a free port for server testing."""
    return find_free_port()


@pytest_asyncio.fixture
async def server(server_port: int) -> AsyncGenerator[KVServer, None]:
    """
    Create and start a server instance for testing.

    This fixture:
    1. Creates a KVServer on a random free port
    2. Starts it in a background task
    3. Yields the server for testing
    4. Cleans up after the test
    """
    srv = KVServer(host='127.0.0.1', port=server_port, cleanup_interval=0)

    # Start server in background task
    server_task = asyncio.create_task(srv.start())

    # Wait for server to be ready
    await asyncio.sleep(0.1)

    yield srv

    # Cleanup
    await srv.stop()
    server_task.cancel()
    try:
        await server_task
    except asyncio.CancelledError:
        pass


# ============================================================================
# Client Fixtures
# ============================================================================

class AsyncClient:
    """
    Helper class for testing server interactions over RESP.

    Usage:
        async with AsyncClient('127.0.0.1', port) as client:
            assert await client.call("SET", "key", "value") == "+OK"
            assert await client.call("GET", "key") == b"value"
    """

    def __init__(self, host: str, port: int):
        self.host = host
        self.port = port
        self.reader = None
        self.writer = None
        self._buffer = bytearray()

    async def connect(self) -> None:
        """Establish connection to server."""
        self.reader, self.writer = await asyncio.open_connection(
            self.host, self.port
        )

    async def disconnect(self) -> None:
        """Close connection to server."""
        if self.writer:
            self.writer.close()
            try:
                await self.writer.wait_closed()
            except ConnectionError:
                pass

    async def send(self, *args) -> None:
        """Send a command without waiting for its reply."""
        self.writer.write(encode_request(args))
        await self.writer.drain()

    async def send_raw(self, data: bytes) -> None:
        self.writer.write(data)
        await self.writer.drain()

    async def read_reply(self, timeout: float = 5.0):
        """
        Read one reply value.

        Raises:
            asyncio.TimeoutError: No complete reply arrived in time
            ConnectionError: The server closed the connection
        """
        async def _read():
            while True:
                try:
                    value, end = parse_reply(self._buffer)
                except IncompleteFrameError:
                    chunk = await self.reader.read(4096)
                    if not chunk:
                        raise ConnectionError("connection closed by server")
                    self._buffer.extend(chunk)
                    continue
                del self._buffer[:end]
                return value

        return await asyncio.wait_for(_read(), timeout)

    async def call(self, *args):
        """Send a command and return its decoded reply."""
        await self.send(*args)
        return await self.read_reply()

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.disconnect()


@pytest.fixture
def client_factory(server_port: int):
    """
    Factory fixture to create test clients.

    Usage:
        async def test_something(server, client_factory):
            async with client_factory() as client:
                reply = await client.call("GET", "key")
    """
    def factory() -> AsyncClient:
        return AsyncClient('127.0.0.1', server_port)
    return factory


# ============================================================================
# Pytest Configuration
# ============================================================================

def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
