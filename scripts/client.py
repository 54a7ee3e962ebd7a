#!/usr/bin/env python3
"""
Interactive Test Client for Mini-Redis

A simple command-line client for manually testing the Mini-Redis server.
Commands are typed like in redis-cli and sent as RESP arrays.

Usage:
    python scripts/client.py                  # Connect to localhost:6379
    python scripts/client.py --host 1.2.3.4   # Connect to specific host
    python scripts/client.py --port 6380      # Connect to specific port

Client commands:
    help                      - Show this help
    exit                      - Exit client
"""

import argparse
import shlex
import socket
import sys

from miniredis.errors import IncompleteFrameError, ProtocolError
from miniredis.protocol.resp import encode_request, parse_reply

# Enable command history with arrow keys (works on Unix systems)
try:
    import readline  # noqa: F401
except ImportError:
    pass  # readline not available on Windows by default


class MiniRedisClient:
    """Simple blocking TCP client speaking RESP."""

    def __init__(self, host: str, port: int, timeout: float = None):
        self.host = host
        self.port = port
        self.timeout = timeout
        self.socket = None
        self._buffer = bytearray()

    def connect(self) -> bool:
        """Connect to the server."""
        try:
            self.socket = socket.create_connection((self.host, self.port), timeout=self.timeout)
            return True
        except OSError as e:
            print(f"Connection error: {e}")
            return False

    def disconnect(self):
        """Disconnect from the server."""
        if self.socket:
            self.socket.close()
            self.socket = None
        self._buffer.clear()

    def call(self, *args):
        """Send a command and wait for its reply value."""
        self.socket.sendall(encode_request(args))
        while True:
            try:
                value, end = parse_reply(self._buffer)
            except IncompleteFrameError:
                chunk = self.socket.recv(4096)
                if not chunk:
                    raise ConnectionError("connection closed by server")
                self._buffer.extend(chunk)
                continue
            del self._buffer[:end]
            return value

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.disconnect()


def format_reply(value, indent: int = 0) -> str:
    """Render a reply the way redis-cli does."""
    if value is None:
        return "(nil)"
    if isinstance(value, int):
        return f"(integer) {value}"
    if isinstance(value, bytes):
        return '"' + value.decode("utf-8", errors="backslashreplace") + '"'
    if isinstance(value, str):
        return value[1:] if value.startswith("+") else f"(error) {value[1:]}"
    if not value:
        return "(empty array)"
    pad = " " * indent
    lines = []
    for i, item in enumerate(value, 1):
        prefix = f"{i}) "
        lines.append(f"{pad if i > 1 else ''}{prefix}{format_reply(item, indent + len(prefix))}")
    return "\n".join(lines)


def print_help():
    """Print help message."""
    print("""
Mini-Redis Commands:
--------------------
  PING [message]                  Check the connection
  ECHO <message>                  Echo a message back
  SET <key> <value> [EX s|PX ms]  Store a string (optional expiry)
  GET <key>                       Retrieve a string
  INCR <key>                      Increment an integer string
  RPUSH/LPUSH <key> <value>...    Append / prepend to a list
  LRANGE <key> <start> <end>      Read a slice of a list (end inclusive)
  LLEN <key>                      Length of a list
  LPOP <key> [count]              Remove elements from the head of a list
  BLPOP <key> <timeout>           Pop, waiting up to timeout seconds (0 = forever)

Client Commands:
----------------
  help                      Show this help message
  exit                      Exit the client

Examples:
---------
  SET greeting "hello world" EX 60
  RPUSH queue a b c
  LRANGE queue 0 -1
""")


def main():
    parser = argparse.ArgumentParser(
        description="Interactive test client for Mini-Redis"
    )
    parser.add_argument(
        "--host",
        type=str,
        default="localhost",
        help="Server host (default: localhost)"
    )
    parser.add_argument(
        "--port",
        type=int,
        default=6379,
        help="Server port (default: 6379)"
    )

    args = parser.parse_args()

    print(f"Connecting to {args.host}:{args.port}...")

    client = MiniRedisClient(args.host, args.port)

    if not client.connect():
        print("Failed to connect. Is the server running?")
        print(f"  Try: python -m miniredis.server --port {args.port}")
        sys.exit(1)

    print("Connected! Type 'help' for commands.\n")

    try:
        while True:
            try:
                line = input(f"{args.host}:{args.port}> ").strip()
            except EOFError:
                print("\nGoodbye!")
                break

            if not line:
                continue

            if line.lower() == "help":
                print_help()
                continue

            if line.lower() in ("exit", "quit"):
                print("Goodbye!")
                break

            try:
                parts = shlex.split(line)
            except ValueError as e:
                print(f"Invalid input: {e}")
                continue

            try:
                print(format_reply(client.call(*parts)))
            except (ConnectionError, ProtocolError) as e:
                print(f"Connection lost: {e}")
                break

    except KeyboardInterrupt:
        print("\n\nInterrupted. Goodbye!")
    finally:
        client.disconnect()


if __name__ == "__main__":
    main()
