"""Cache module for Mini-Redis."""

from .blocking import BlockingCoordinator, Waiter, WaiterState
from .store import Entry, EntryKind, ExpiryMode, KVStore

__all__ = [
    "BlockingCoordinator",
    "Entry",
    "EntryKind",
    "ExpiryMode",
    "KVStore",
    "Waiter",
    "WaiterState",
]
