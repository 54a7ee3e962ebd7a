"""
Command Definitions

The fixed set of commands the dispatcher knows about, and the marker a
handler returns when its reply will be delivered later.
"""

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from ..cache.blocking import Waiter


class CommandType(Enum):
    """Enumeration of supported commands, valued by their wire name."""
    PING = "PING"
    ECHO = "ECHO"
    SET = "SET"
    GET = "GET"
    INCR = "INCR"
    RPUSH = "RPUSH"
    LPUSH = "LPUSH"
    LRANGE = "LRANGE"
    LLEN = "LLEN"
    LPOP = "LPOP"
    BLPOP = "BLPOP"

    @classmethod
    def from_name(cls, name: bytes) -> Optional["CommandType"]:
        """Resolve a command name case-insensitively; None if unknown."""
        try:
            return cls(name.decode("utf-8", errors="replace").upper())
        except ValueError:
            return None


@dataclass
class Deferred:
    """
    Returned by a handler that produced no immediate reply.

    The reply is written later by the waiter's delivery callback.

    Attributes:
        waiter: The suspended waiter whose settlement ends the wait
    """
    waiter: "Waiter"
