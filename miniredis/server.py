#!/usr/bin/env python3
"""
Mini-Redis Server Entry Point

This is the main entry point for starting the Mini-Redis server.

Usage:
    python -m miniredis.server                         # Default settings (127.0.0.1:6379)
    python -m miniredis.server --port 6380             # Custom port
    python -m miniredis.server --host 0.0.0.0          # Custom host
    python -m miniredis.server --cleanup-interval 10   # Sweep expired keys every 10s
    python -m miniredis.server --debug                 # Enable debug logging

Environment Variables:
    MINIREDIS_HOST              - Server bind address
    MINIREDIS_PORT              - Server port
    MINIREDIS_CLEANUP_INTERVAL  - Seconds between expiry sweeps (0 disables)
    MINIREDIS_DEBUG             - Enable debug mode (true/false)
    MINIREDIS_LOG_LEVEL         - Log level when not in debug mode
"""

import argparse
import asyncio
import logging
import signal
import sys

from .config.settings import settings
from .network.tcp_server import KVServer


def parse_args(argv=None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Mini-Redis: In-Memory Data Engine Server",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument(
        "--host",
        type=str,
        default=settings.HOST,
        help="Host address to bind to",
    )

    parser.add_argument(
        "--port",
        type=int,
        default=settings.PORT,
        help="Port number to listen on",
    )

    parser.add_argument(
        "--cleanup-interval",
        type=float,
        default=settings.CLEANUP_INTERVAL,
        help="Seconds between active expiry sweeps (0 disables)",
    )

    parser.add_argument(
        "--debug",
        action="store_true",
        default=settings.DEBUG,
        help="Enable debug logging",
    )

    return parser.parse_args(argv)


def setup_logging(debug: bool = False) -> None:
    """Configure logging based on debug flag."""
    level = logging.DEBUG if debug else getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stdout),
        ]
    )


def main() -> None:
    """Main entry point for the server."""
    args = parse_args()

    setup_logging(debug=args.debug)
    logger = logging.getLogger(__name__)

    server = KVServer(
        host=args.host,
        port=args.port,
        cleanup_interval=args.cleanup_interval,
    )

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    async def shutdown(sig: signal.Signals) -> None:
        """Handle shutdown signal."""
        logger.info(f"Received signal {sig.name}, initiating shutdown...")
        await server.stop()

    # Register signal handlers (Unix only)
    if sys.platform != 'win32':
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(
                sig,
                lambda s=sig: asyncio.create_task(shutdown(s))
            )

    logger.info("Starting Mini-Redis server")
    logger.info(f"  Host: {args.host}")
    logger.info(f"  Port: {args.port}")
    logger.info(f"  Cleanup interval: {args.cleanup_interval}s")
    logger.info(f"  Debug: {args.debug}")

    try:
        loop.run_until_complete(server.start())
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received")
        loop.run_until_complete(server.stop())
    except Exception as e:
        logger.error(f"Server error: {e}")
        raise
    finally:
        loop.run_until_complete(loop.shutdown_asyncgens())
        loop.close()
        logger.info("Server shutdown complete")


if __name__ == "__main__":
    main()
