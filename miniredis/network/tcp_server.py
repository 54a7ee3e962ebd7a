"""
Async TCP Server Module

This module implements the asynchronous TCP server for Mini-Redis.

Each client connection gets a ClientConnection that owns its input buffer.
Requests are framed out of the buffer, executed by the shared
CommandDispatcher, and their replies encoded back onto the stream.

BLPOP may suspend a connection. While suspended the connection keeps
reading into its buffer (without executing anything) so that it notices
the client going away and can cancel its waiter.
"""

import asyncio
import logging
from asyncio import StreamReader, StreamWriter
from typing import Any, Optional, Set

from ..cache.blocking import BlockingCoordinator, Waiter
from ..cache.store import KVStore
from ..config.settings import settings
from ..dispatcher import CommandDispatcher
from ..errors import IncompleteFrameError, ProtocolError
from ..protocol.commands import Deferred
from ..protocol.resp import encode, parse_frame

logger = logging.getLogger(__name__)


class ClientConnection:
    """
    Per-connection state: the socket streams and unparsed input bytes.

    Attributes:
        reader: StreamReader for the client socket
        writer: StreamWriter for the client socket
        dispatcher: Shared CommandDispatcher
        buffer: Bytes received but not yet executed
        waiter: The BLPOP waiter this connection is suspended on, if any
    """

    def __init__(self, reader: StreamReader, writer: StreamWriter, dispatcher: CommandDispatcher):
        self.reader = reader
        self.writer = writer
        self.dispatcher = dispatcher
        self.buffer = bytearray()
        self.waiter: Optional[Waiter] = None
        self.addr = writer.get_extra_info('peername')

    def deliver(self, reply: Any) -> None:
        """Write a reply produced outside the request/response cycle."""
        if not self.writer.is_closing():
            self.writer.write(encode(reply))

    async def _fill(self) -> bool:
        """Read more bytes into the buffer; False once the client is gone."""
        data = await self.reader.read(settings.READ_BUFFER_SIZE)
        if not data:
            return False
        self.buffer.extend(data)
        return True

    async def serve(self) -> int:
        """
        Execute requests until the client disconnects.

        Returns:
            Number of requests executed

        Raises:
            ProtocolError: The client sent malformed framing
        """
        requests = 0
        while True:
            try:
                request, consumed = parse_frame(self.buffer)
            except IncompleteFrameError:
                if not await self._fill():
                    return requests
                continue

            del self.buffer[:consumed]
            requests += 1

            reply = self.dispatcher.dispatch(request, self.deliver)
            if isinstance(reply, Deferred):
                if not await self._suspend(reply.waiter):
                    return requests
            else:
                self.writer.write(encode(reply))
            await self.writer.drain()

    async def _suspend(self, waiter: Waiter) -> bool:
        """
        Wait for waiter to settle while watching the socket for a close.

        Returns:
            True once the waiter settled, False if the client disconnected
        """
        self.waiter = waiter
        settled = asyncio.ensure_future(waiter.wait())
        incoming: Optional[asyncio.Future] = None
        try:
            while not waiter.settled:
                incoming = asyncio.ensure_future(self.reader.read(settings.READ_BUFFER_SIZE))
                await asyncio.wait({settled, incoming}, return_when=asyncio.FIRST_COMPLETED)

                if not incoming.done():
                    # Unread bytes stay in the StreamReader buffer
                    incoming.cancel()
                    continue

                data = incoming.result()
                if data:
                    self.buffer.extend(data)
                elif not waiter.settled:
                    logger.debug(f"Client {self.addr} closed while blocked on {waiter.key!r}")
                    return False
            return True
        finally:
            settled.cancel()
            if incoming is not None and not incoming.done():
                incoming.cancel()
            # EOF, a reset or a read error all leave the waiter unsettled
            if not waiter.settled:
                self.dispatcher.coordinator.cancel(waiter)
            self.waiter = None

    def release(self) -> None:
        """Cancel any pending waiter so no reply targets a dead connection."""
        if self.waiter is not None:
            self.dispatcher.coordinator.cancel(self.waiter)
            self.waiter = None


class KVServer:
    """
    Asynchronous TCP server for Mini-Redis.

    This server handles multiple concurrent clients using asyncio. All
    connections share one KVStore and one BlockingCoordinator; since
    command handlers never await, the event loop itself serializes every
    mutation.

    Usage:
        server = KVServer(host='127.0.0.1', port=6379)
        await server.start()  # Runs forever

    Attributes:
        host: Server bind address
        port: Server port number
        store: The KVStore instance shared by all connections
        coordinator: The BlockingCoordinator for BLPOP
        dispatcher: The CommandDispatcher routing requests
        cleanup_interval: Seconds between active expiry sweeps (0 disables)
    """

    def __init__(
            self,
            host: str = None,
            port: int = None,
            store: KVStore = None,
            cleanup_interval: float = None,
    ):
        self.host = host if host is not None else settings.HOST
        self.port = port if port is not None else settings.PORT
        self.store = store if store is not None else KVStore()
        self.coordinator = BlockingCoordinator(self.store)
        self.dispatcher = CommandDispatcher(self.store, self.coordinator)
        self.cleanup_interval = (
            cleanup_interval if cleanup_interval is not None else settings.CLEANUP_INTERVAL
        )

        # Server state
        self._server: Optional[asyncio.Server] = None
        self._cleanup_task: Optional[asyncio.Task] = None
        self._clients: Set[ClientConnection] = set()
        self._running = False
        self._connection_count = 0
        self._total_requests = 0

    async def handle_client(self, reader: StreamReader, writer: StreamWriter) -> None:
        """
        Handle a single client connection.

        Protocol errors are answered with an error reply and the connection
        is closed, since the stream cannot be resynchronized. Any other
        failure is logged and only this connection is dropped.
        """
        connection = ClientConnection(reader, writer, self.dispatcher)
        addr = connection.addr
        self._clients.add(connection)
        self._connection_count += 1
        logger.debug(f"Client connected: {addr}")

        try:
            self._total_requests += await connection.serve()
            logger.debug(f"Client disconnected: {addr}")

        except ProtocolError as exc:
            logger.debug(f"Protocol error from {addr}: {exc}")
            writer.write(encode(f"-ERR Protocol error: {exc}"))
            try:
                await writer.drain()
            except ConnectionError:
                pass
        except ConnectionResetError:
            logger.debug(f"Connection reset by client: {addr}")
        except Exception as exc:  # Log unexpected errors but keep server alive
            logger.exception(f"Error handling client {addr}: {exc}")
        finally:
            connection.release()
            self._clients.discard(connection)
            writer.close()
            try:
                await writer.wait_closed()
            except ConnectionError:
                pass

    async def _cleanup_loop(self) -> None:
        """Periodically remove expired keys."""
        while True:
            await asyncio.sleep(self.cleanup_interval)
            removed = self.store.cleanup_expired()
            if removed:
                logger.debug(f"Expired {removed} key(s)")

    async def start(self) -> None:
        """
        Start the server and begin accepting connections.

        Runs forever (or until cancelled). Call from asyncio.run() or
        within an existing event loop.
        """
        if self._running:
            return

        self._server = await asyncio.start_server(
            self.handle_client,
            self.host,
            self.port,
        )
        self._running = True

        if self.cleanup_interval > 0:
            self._cleanup_task = asyncio.create_task(self._cleanup_loop())

        addrs = ', '.join(str(sock.getsockname()) for sock in self._server.sockets or [])
        logger.info(f"Serving on {addrs}")

        try:
            async with self._server:
                await self._server.serve_forever()
        except asyncio.CancelledError:
            # Expected during shutdown/fixture cleanup
            logger.debug("Server start cancelled")
        finally:
            self._running = False

    async def stop(self) -> None:
        """
        Stop the server gracefully.

        Closes the listener, stops the expiry sweep and releases every
        blocked client.
        """
        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            self._cleanup_task = None

        self.coordinator.close()

        if self._server is None:
            return

        for connection in list(self._clients):
            connection.writer.close()

        self._server.close()
        try:
            await self._server.wait_closed()
        finally:
            self._server = None
            self._running = False

    def is_running(self) -> bool:
        """Check if the server is currently running."""
        return self._running

    def get_stats(self) -> dict:
        """
        Get server statistics.

        Returns:
            Dictionary with connection counts, request counts, store and
            blocking statistics.
        """
        return {
            "running": self._running,
            "host": self.host,
            "port": self.port,
            "total_connections": self._connection_count,
            "active_connections": len(self._clients),
            "total_requests": self._total_requests,
            "store_stats": self.store.get_stats(),
            "blocking_stats": self.coordinator.get_stats(),
        }


async def run_server(host: str = None, port: int = None) -> None:
    """
    Convenience function to create and run the server.

    Usage:
        asyncio.run(run_server(port=6379))
    """
    server = KVServer(host=host, port=port)

    try:
        await server.start()
    except asyncio.CancelledError:
        logger.info("Server shutdown requested")
    finally:
        await server.stop()
