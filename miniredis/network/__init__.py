"""Network module for Mini-Redis."""

from .tcp_server import ClientConnection, KVServer, run_server

__all__ = ["ClientConnection", "KVServer", "run_server"]
