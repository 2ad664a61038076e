"""
Bounded inbound channel for pipeline stages.

Each stage owns one channel. The bus thread is the only producer and the
stage thread the only consumer, so frames come out in arrival order.
What happens when the channel is full is decided by ``OverflowPolicy``:

    BLOCK        the producer (the bus dispatch thread) waits for room
    DROP_OLDEST  the oldest queued frame is evicted to make room
    UNBOUNDED    no limit at all; a slow stage grows memory without bound
"""
import threading
from collections import deque
from enum import Enum
from typing import Deque, Generic, Optional, TypeVar

from clearview.core.cancellation import CancellationToken
from clearview.utils.failures import ConfigError
from clearview.utils.logger import Logger

T = TypeVar("T")


class OverflowPolicy(str, Enum):
    BLOCK = "block"
    DROP_OLDEST = "drop_oldest"
    UNBOUNDED = "unbounded"

    @classmethod
    def parse(cls, value) -> "OverflowPolicy":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            choices = ", ".join(p.value for p in cls)
            raise ConfigError(f"Unknown overflow policy {value!r} (expected one of: {choices})")


class FrameChannel(Generic[T]):
    """Single-producer, single-consumer FIFO guarded by one condition."""

    def __init__(self, maxsize: int = 4, policy: OverflowPolicy = OverflowPolicy.DROP_OLDEST,
                 name: str = "channel"):
        policy = OverflowPolicy.parse(policy)
        if policy is not OverflowPolicy.UNBOUNDED and maxsize < 1:
            raise ConfigError(f"Channel '{name}' needs maxsize >= 1, got {maxsize}")

        self.name = name
        self.maxsize = maxsize
        self.policy = policy
        self.dropped = 0
        self.logger = Logger(f"FrameChannel[{name}]")

        self._items: Deque[T] = deque()
        self._cond = threading.Condition()
        self._closed = False

    def __len__(self) -> int:
        with self._cond:
            return len(self._items)

    @property
    def closed(self) -> bool:
        with self._cond:
            return self._closed

    def _full(self) -> bool:
        return self.policy is not OverflowPolicy.UNBOUNDED and len(self._items) >= self.maxsize

    def put(self, item: T, timeout: Optional[float] = None) -> bool:
        """
        Enqueue an item according to the overflow policy.

        Returns:
            False if the item was not accepted (channel closed, or a BLOCK
            put timed out).
        """
        with self._cond:
            if self._closed:
                return False

            if self._full():
                if self.policy is OverflowPolicy.DROP_OLDEST:
                    self._items.popleft()
                    self.dropped += 1
                    self.logger.debug(f"Channel full, dropped oldest frame ({self.dropped} total)")
                else:
                    ready = self._cond.wait_for(lambda: self._closed or not self._full(), timeout)
                    if not ready or self._closed:
                        return False

            self._items.append(item)
            self._cond.notify_all()
            return True

    def get(self, token: Optional[CancellationToken] = None,
            timeout: Optional[float] = None) -> Optional[T]:
        """
        Block until an item is available.

        Returns:
            The oldest item, or None if the channel was closed, the token
            cancelled, or the timeout expired.
        """
        def stop_requested() -> bool:
            return self._closed or (token is not None and token.cancelled)

        with self._cond:
            ready = self._cond.wait_for(lambda: stop_requested() or bool(self._items), timeout)
            if not ready or stop_requested():
                return None
            item = self._items.popleft()
            self._cond.notify_all()
            return item

    def close(self) -> None:
        """Reject further puts and wake every waiter. Queued items are discarded."""
        with self._cond:
            self._closed = True
            self._items.clear()
            self._cond.notify_all()

    def wake(self) -> None:
        """Wake waiters so they re-check their cancellation token."""
        with self._cond:
            self._cond.notify_all()
