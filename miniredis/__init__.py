"""
Mini-Redis: In-Memory Data Engine

A small Redis-compatible server built with Python asyncio. It speaks the
RESP wire protocol over raw TCP sockets and supports strings with expiry,
lists, and blocking list pops.
"""

__version__ = "1.0.0"
