"""
Key-Value Store Module

This module implements the key space shared by every connection.

Each key maps to exactly one entry, either a string or a list. Strings may
carry an absolute expiry timestamp; lists never expire. Expiry is lazy: a
lookup that finds an expired entry removes it and reports the key as absent.
cleanup_expired() offers an optional active sweep for memory reclamation.

All methods run to completion without yielding, so on a single asyncio
event loop every operation is atomic with respect to other connections.
"""

import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from itertools import islice
from typing import Any, Callable, Deque, Dict, List, Optional, Union

from ..errors import InvalidExpireError, NotAnIntegerError, WrongTypeError


class EntryKind(Enum):
    """Type tag of a stored entry."""
    STRING = "string"
    LIST = "list"


class ExpiryMode(Enum):
    """Unit of the relative expiry given to SET."""
    NONE = "none"
    SECONDS = "EX"
    MILLISECONDS = "PX"


@dataclass
class Entry:
    """
    A single value in the key space.

    Attributes:
        kind: STRING or LIST
        value: bytes for strings, a deque of bytes for lists
        expires_at: Absolute expiry timestamp in seconds (0 = no expiration)
    """
    kind: EntryKind
    value: Union[bytes, Deque[bytes]]
    expires_at: float = 0


def parse_int(raw: Union[bytes, str, int]) -> int:
    """
    Strictly parse a decimal integer.

    Rejects the surrounding whitespace and underscores that int() would
    otherwise accept.

    Raises:
        NotAnIntegerError: If raw is not an integer
    """
    if isinstance(raw, int) and not isinstance(raw, bool):
        return raw
    if not isinstance(raw, (bytes, bytearray, str)):
        raise NotAnIntegerError()
    if isinstance(raw, str):
        raw = raw.encode("utf-8")
    digits = raw[1:] if raw[:1] == b"-" else raw
    if not digits.isdigit():
        raise NotAnIntegerError()
    return int(raw)


class KVStore:
    """
    In-memory key space holding strings and lists.

    Usage:
        store = KVStore()
        store.set(b"greeting", b"hello", ExpiryMode.SECONDS, 10)
        store.get(b"greeting")          # b"hello"
        store.rpush(b"queue", b"a", b"b")
        store.lrange(b"queue", 0, -1)   # [b"a", b"b"]

    Attributes:
        clock: Callable returning the current time in seconds
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self.clock = clock
        self._data: Dict[bytes, Entry] = {}

    # ------------------------------------------------------------------
    # Lookup helpers
    # ------------------------------------------------------------------

    def _lookup(self, key: bytes) -> Optional[Entry]:
        """Return the live entry for key, deleting it if it has expired."""
        entry = self._data.get(key)
        if entry is None:
            return None

        if entry.expires_at and entry.expires_at <= self.clock():
            # Lazy expiration
            del self._data[key]
            return None

        return entry

    def _lookup_list(self, key: bytes) -> Optional[Deque[bytes]]:
        entry = self._lookup(key)
        if entry is None:
            return None
        if entry.kind is not EntryKind.LIST:
            raise WrongTypeError()
        return entry.value

    # ------------------------------------------------------------------
    # Strings
    # ------------------------------------------------------------------

    def set(
            self,
            key: bytes,
            value: bytes,
            expiry_mode: ExpiryMode = ExpiryMode.NONE,
            amount: Any = None,
    ) -> None:
        """
        Store a string, replacing whatever the key held before.

        Args:
            key: The key to store
            value: The string value
            expiry_mode: NONE, SECONDS or MILLISECONDS
            amount: Relative expiry in the unit given by expiry_mode

        Raises:
            InvalidExpireError: If amount is non-numeric or not positive
        """
        expires_at = 0.0
        if expiry_mode is not ExpiryMode.NONE:
            try:
                ttl = parse_int(amount)
            except NotAnIntegerError:
                raise InvalidExpireError() from None
            if ttl <= 0:
                raise InvalidExpireError()
            if expiry_mode is ExpiryMode.MILLISECONDS:
                ttl = ttl / 1000
            expires_at = self.clock() + ttl

        self._data[key] = Entry(EntryKind.STRING, value, expires_at)

    def get(self, key: bytes) -> Optional[bytes]:
        """
        Retrieve a string value.

        Returns:
            The value, or None if the key is missing or expired

        Raises:
            WrongTypeError: If the key holds a list
        """
        entry = self._lookup(key)
        if entry is None:
            return None
        if entry.kind is not EntryKind.STRING:
            raise WrongTypeError()
        return entry.value

    def incr(self, key: bytes) -> int:
        """
        Increment the integer stored at key by one.

        A missing key counts as 0. The result is stored without expiry.

        Raises:
            WrongTypeError: If the key holds a list
            NotAnIntegerError: If the current value is not an integer
        """
        current = self.get(key)
        number = parse_int(current) + 1 if current is not None else 1
        self._data[key] = Entry(EntryKind.STRING, str(number).encode())
        return number

    # ------------------------------------------------------------------
    # Lists
    # ------------------------------------------------------------------

    def _list_for_push(self, key: bytes) -> Deque[bytes]:
        items = self._lookup_list(key)
        if items is None:
            items = deque()
            self._data[key] = Entry(EntryKind.LIST, items)
        return items

    def rpush(self, key: bytes, *values: bytes) -> int:
        """Append values to the tail of the list; returns the new length."""
        items = self._list_for_push(key)
        items.extend(values)
        return len(items)

    def lpush(self, key: bytes, *values: bytes) -> int:
        """
        Insert values at the head of the list; returns the new length.

        Each value is pushed in turn, so LPUSH l a b c leaves c at the head.
        """
        items = self._list_for_push(key)
        items.extendleft(values)
        return len(items)

    def lrange(self, key: bytes, start: int, end: int) -> List[bytes]:
        """
        Return the elements between start and end, both inclusive.

        Negative indices count from the tail and are clamped at 0 after
        normalization (index -> max(length + index, 0)).
        """
        items = self._lookup_list(key)
        if items is None:
            return []

        length = len(items)
        if start < 0:
            start = max(length + start, 0)
        if end < 0:
            end = max(length + end, 0)

        if start >= length or start > end:
            return []

        end = min(length - 1, end)
        return list(islice(items, start, end + 1))

    def llen(self, key: bytes) -> int:
        """Return the length of the list, 0 if the key is missing."""
        items = self._lookup_list(key)
        return len(items) if items is not None else 0

    def lpop(self, key: bytes, count: Optional[int] = None) -> Union[None, bytes, List[bytes]]:
        """
        Remove elements from the head of the list.

        Args:
            key: The list key
            count: None to pop a single element, otherwise the maximum
                number of elements to pop

        Returns:
            Without count: the popped element, or None if the list is missing.
            With count: a list of up to count elements, or None if missing.
        """
        items = self._lookup_list(key)
        if not items:
            return None

        if count is None:
            popped = items.popleft()
        else:
            popped = [items.popleft() for _ in range(min(count, len(items)))]

        if not items:
            del self._data[key]
        return popped

    # ------------------------------------------------------------------
    # Generic key operations
    # ------------------------------------------------------------------

    def delete(self, key: bytes) -> bool:
        """Remove a key; returns False if it did not exist or had expired."""
        if self._lookup(key) is None:
            return False
        del self._data[key]
        return True

    def exists(self, key: bytes) -> bool:
        """Check if a key exists (and is not expired)."""
        return self._lookup(key) is not None

    def type_of(self, key: bytes) -> str:
        """Return "string", "list" or "none"."""
        entry = self._lookup(key)
        return entry.kind.value if entry is not None else "none"

    def size(self) -> int:
        """
        Get the current number of keys in the store.

        Note: This may include expired keys that haven't been cleaned up yet.
        """
        return len(self._data)

    def clear(self) -> None:
        """Remove all keys from the store."""
        self._data.clear()

    def cleanup_expired(self) -> int:
        """
        Remove all expired keys from the store (active expiration).

        Returns:
            Number of keys removed
        """
        now = self.clock()
        to_delete = [
            k for k, entry in self._data.items()
            if entry.expires_at and entry.expires_at <= now
        ]
        for key in to_delete:
            del self._data[key]
        return len(to_delete)

    def get_stats(self) -> Dict[str, Any]:
        """
        Get statistics about the store.

        Returns:
            Dictionary containing:
            - total_keys: Total keys in store
            - expired_keys: Count of expired (but not yet cleaned) keys
            - string_keys / list_keys: Counts per entry kind
        """
        now = self.clock()
        entries = list(self._data.values())
        return {
            "total_keys": len(entries),
            "expired_keys": sum(1 for e in entries if 0 < e.expires_at <= now),
            "string_keys": sum(1 for e in entries if e.kind is EntryKind.STRING),
            "list_keys": sum(1 for e in entries if e.kind is EntryKind.LIST),
        }
