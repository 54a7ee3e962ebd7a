"""
Blocking Pop Coordinator Module

Lets a client suspend on an empty list until another client pushes to it.

Each key has its own FIFO queue of Waiter handles. A waiter starts in
WAITING and settles exactly once into SATISFIED, TIMED_OUT or CANCELLED.
Settling cancels the waiter's deadline timer, and any later attempt to
settle it (a timer racing a push, a push racing a disconnect) is a no-op.

Wake protocol, run after every successful push:
    while the key's queue and the list are both non-empty:
        take the oldest waiting waiter
        pop one element from the list head
        deliver [key, element] to that waiter

So a single push of N elements can satisfy up to N waiters in arrival order.
"""

import asyncio
import logging
from collections import deque
from enum import Enum
from typing import Any, Callable, Deque, Dict, Optional

from .store import KVStore

logger = logging.getLogger(__name__)

Deliver = Callable[[Any], None]


class WaiterState(Enum):
    """Lifecycle of a blocked client."""
    WAITING = "waiting"
    SATISFIED = "satisfied"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


class Waiter:
    """
    One client blocked on one key.

    Attributes:
        key: The list key being waited on
        state: Current WaiterState
        deadline: Absolute loop time at which the wait times out, or None
    """

    def __init__(self, key: bytes, deliver: Deliver, deadline: Optional[float] = None):
        self.key = key
        self.deadline = deadline
        self.state = WaiterState.WAITING
        self._deliver = deliver
        self._timer: Optional[asyncio.TimerHandle] = None
        self._settled = asyncio.Event()

    def arm_timer(self, handle: asyncio.TimerHandle) -> None:
        self._timer = handle

    @property
    def settled(self) -> bool:
        return self.state is not WaiterState.WAITING

    def settle(self, state: WaiterState, reply: Any = None) -> bool:
        """
        Move to a terminal state and deliver reply (unless cancelled).

        Returns:
            False if the waiter had already settled, True otherwise
        """
        if self.settled:
            return False

        self.state = state
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._settled.set()

        if state is not WaiterState.CANCELLED:
            self._deliver(reply)
        return True

    async def wait(self) -> WaiterState:
        """Wait until the waiter settles and return its final state."""
        await self._settled.wait()
        return self.state

    def __repr__(self) -> str:
        return f"Waiter(key={self.key!r}, state={self.state.name})"


class BlockingCoordinator:
    """
    Owns the per-key waiter queues for BLPOP.

    Timers are scheduled on the running event loop, so block() must be
    called from within it.

    Attributes:
        store: The KVStore popped from when waiters are woken
    """

    def __init__(self, store: KVStore):
        self.store = store
        self._queues: Dict[bytes, Deque[Waiter]] = {}

    def block(self, key: bytes, deliver: Deliver, timeout: float = 0) -> Waiter:
        """
        Enqueue a new waiter on key.

        Args:
            key: The list key to wait on
            deliver: Called once with the reply when the waiter is
                satisfied or times out
            timeout: Seconds to wait; 0 waits forever

        Returns:
            The queued Waiter
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout if timeout > 0 else None

        waiter = Waiter(key, deliver, deadline)
        self._queues.setdefault(key, deque()).append(waiter)

        if deadline is not None:
            waiter.arm_timer(loop.call_at(deadline, self._expire, waiter))

        logger.debug(f"Client blocked on {key!r} (timeout={timeout})")
        return waiter

    def wake(self, key: bytes) -> int:
        """
        Hand list elements to queued waiters after a push.

        Returns:
            Number of waiters satisfied
        """
        queue = self._queues.get(key)
        served = 0

        while queue and self.store.llen(key) > 0:
            waiter = queue.popleft()
            if waiter.settled:
                continue
            value = self.store.lpop(key)
            waiter.settle(WaiterState.SATISFIED, [key, value])
            served += 1

        if queue is not None and not queue:
            del self._queues[key]

        if served:
            logger.debug(f"Woke {served} waiter(s) on {key!r}")
        return served

    def cancel(self, waiter: Waiter) -> bool:
        """
        Drop a waiter without replying, e.g. because its connection closed.

        Returns:
            False if the waiter had already settled
        """
        if not waiter.settle(WaiterState.CANCELLED):
            return False
        self._discard(waiter)
        logger.debug(f"Cancelled waiter on {waiter.key!r}")
        return True

    def _expire(self, waiter: Waiter) -> None:
        if waiter.settle(WaiterState.TIMED_OUT, None):
            self._discard(waiter)
            logger.debug(f"Waiter on {waiter.key!r} timed out")

    def _discard(self, waiter: Waiter) -> None:
        queue = self._queues.get(waiter.key)
        if queue is None:
            return
        try:
            queue.remove(waiter)
        except ValueError:
            pass
        if not queue:
            del self._queues[waiter.key]

    def waiting(self, key: bytes) -> int:
        """Number of clients currently blocked on key."""
        queue = self._queues.get(key)
        return len(queue) if queue else 0

    def close(self) -> None:
        """Cancel every pending waiter; used on server shutdown."""
        for queue in list(self._queues.values()):
            for waiter in list(queue):
                waiter.settle(WaiterState.CANCELLED)
        self._queues.clear()

    def get_stats(self) -> Dict[str, Any]:
        return {
            "blocked_keys": len(self._queues),
            "blocked_clients": sum(len(q) for q in self._queues.values()),
        }
