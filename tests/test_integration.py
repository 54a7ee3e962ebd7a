"""
Integration Tests

End-to-end tests that verify the complete system works together, with
an emphasis on expiry and BLPOP across several connections.

Run with: python -m pytest tests/test_integration.py -v
"""

import asyncio
import socket
import struct
import time

import pytest

from miniredis.cache.store import ExpiryMode
from miniredis.network.tcp_server import KVServer
from miniredis.protocol.resp import encode_request


@pytest.mark.asyncio
@pytest.mark.integration
class TestExpiryEndToEnd:

    async def test_px_expiry_through_server(self, server: KVServer, client_factory):
        async with client_factory() as client:
            assert await client.call("SET", "temp", "value", "PX", "100") == "+OK"
            assert await client.call("GET", "temp") == b"value"

            await asyncio.sleep(0.15)

            assert await client.call("GET", "temp") is None
            assert server.store.exists(b"temp") is False

    async def test_cleanup_sweep_removes_expired_keys(self, server_port):
        srv = KVServer(host='127.0.0.1', port=server_port, cleanup_interval=0.05)
        task = asyncio.create_task(srv.start())
        await asyncio.sleep(0.1)
        try:
            srv.store.set(b"gone", b"1", ExpiryMode.MILLISECONDS, 10)
            await asyncio.sleep(0.15)
            assert srv.store.size() == 0
        finally:
            await srv.stop()
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass


@pytest.mark.asyncio
@pytest.mark.integration
class TestBlockingPopEndToEnd:

    async def test_blpop_times_out_with_null(self, server: KVServer, client_factory):
        async with client_factory() as client:
            started = time.monotonic()
            assert await client.call("BLPOP", "empty", "0.1") is None
            elapsed = time.monotonic() - started
            assert 0.08 <= elapsed < 1.0

            # Exactly one reply: the connection is immediately usable again
            assert await client.call("PING") == "+PONG"

    async def test_blpop_woken_by_other_client(self, server: KVServer, client_factory):
        async with client_factory() as blocked, client_factory() as pusher:
            await blocked.send("BLPOP", "jobs", "0")
            await asyncio.sleep(0.05)
            assert server.coordinator.waiting(b"jobs") == 1

            assert await pusher.call("RPUSH", "jobs", "x") == 1

            assert await blocked.read_reply() == [b"jobs", b"x"]
            assert server.coordinator.waiting(b"jobs") == 0
            assert await pusher.call("LLEN", "jobs") == 0

    async def test_blpop_immediate_when_data_present(self, server: KVServer, client_factory):
        async with client_factory() as client:
            await client.call("RPUSH", "jobs", "a", "b")
            assert await client.call("BLPOP", "jobs", "1") == [b"jobs", b"a"]
            assert await client.call("LRANGE", "jobs", "0", "-1") == [b"b"]

    async def test_waiters_served_fifo(self, server: KVServer, client_factory):
        async with client_factory() as first, client_factory() as second, \
                client_factory() as pusher:
            await first.send("BLPOP", "q", "0")
            await asyncio.sleep(0.05)
            await second.send("BLPOP", "q", "0")
            await asyncio.sleep(0.05)

            assert await pusher.call("RPUSH", "q", "one", "two", "three") == 3

            assert await first.read_reply() == [b"q", b"one"]
            assert await second.read_reply() == [b"q", b"two"]
            assert await pusher.call("LRANGE", "q", "0", "-1") == [b"three"]

    async def test_blocked_connection_queues_later_requests(self, server: KVServer, client_factory):
        async with client_factory() as blocked, client_factory() as pusher:
            await blocked.send("BLPOP", "q", "0")
            await blocked.send("PING")
            await asyncio.sleep(0.05)

            with pytest.raises(asyncio.TimeoutError):
                await blocked.read_reply(timeout=0.1)

            await pusher.call("RPUSH", "q", "x")

            assert await blocked.read_reply() == [b"q", b"x"]
            assert await blocked.read_reply() == "+PONG"

    async def test_disconnect_cancels_waiter(self, server: KVServer, client_factory):
        async with client_factory() as pusher:
            blocked = client_factory()
            await blocked.connect()
            await blocked.send("BLPOP", "q", "0")
            await asyncio.sleep(0.05)
            assert server.coordinator.waiting(b"q") == 1

            await blocked.disconnect()
            await asyncio.sleep(0.1)
            assert server.coordinator.waiting(b"q") == 0

            # The pushed element is not swallowed by the departed client
            assert await pusher.call("RPUSH", "q", "x") == 1
            assert await pusher.call("LRANGE", "q", "0", "-1") == [b"x"]

    async def test_reset_connection_cancels_waiter(self, server: KVServer, client_factory):
        reader, writer = await asyncio.open_connection('127.0.0.1', server.port)
        writer.write(encode_request(["BLPOP", "q", "0"]))
        await writer.drain()
        await asyncio.sleep(0.05)
        assert server.coordinator.waiting(b"q") == 1

        # Zero linger turns the close into an RST instead of a FIN
        sock = writer.get_extra_info('socket')
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_LINGER, struct.pack('ii', 1, 0))
        writer.transport.abort()
        await asyncio.sleep(0.2)

        assert server.coordinator.waiting(b"q") == 0
        async with client_factory() as pusher:
            assert await pusher.call("RPUSH", "q", "x") == 1
            assert await pusher.call("LRANGE", "q", "0", "-1") == [b"x"]

    async def test_stop_releases_blocked_clients(self, server: KVServer, client_factory):
        async with client_factory() as blocked:
            await blocked.send("BLPOP", "q", "0")
            await asyncio.sleep(0.05)

            await server.stop()
            assert server.coordinator.get_stats()["blocked_clients"] == 0
