"""Rate limited work queue of reconcile requests.

The queue guarantees that a request is handed to at most one worker at a time.
A request added while it is being processed is held back and queued again once
the worker is done with it, so no change notification is lost.
"""

import asyncio
from collections.abc import Hashable
import logging

from model_operator.config import WorkQueueConfig

__all__ = [
    "WorkQueue",
]

_LOGGER = logging.getLogger(__name__)


class WorkQueue:
    """Deduplicating work queue with delayed and rate limited adds."""

    def __init__(self, config: WorkQueueConfig | None = None) -> None:
        """Initialize the WorkQueue."""
        self._config = config or WorkQueueConfig()
        self._queue: asyncio.Queue[Hashable] = asyncio.Queue()
        self._dirty: set[Hashable] = set()
        self._processing: set[Hashable] = set()
        self._failures: dict[Hashable, int] = {}
        self._timers: dict[Hashable, asyncio.TimerHandle] = {}
        self._idle = asyncio.Event()
        self._idle.set()
        self._shutdown = False

    def add(self, key: Hashable) -> None:
        """Mark the key as needing processing."""
        if self._shutdown or key in self._dirty:
            return
        self._dirty.add(key)
        self._idle.clear()
        if key in self._processing:
            return
        self._queue.put_nowait(key)

    def add_after(self, key: Hashable, delay: float) -> None:
        """Add the key once the delay has passed.

        An earlier pending add for the same key wins over a later one.
        """
        if self._shutdown:
            return
        if delay <= 0:
            self.add(key)
            return
        loop = asyncio.get_running_loop()
        when = loop.time() + delay
        if (timer := self._timers.get(key)) is not None:
            if timer.when() <= when:
                return
            timer.cancel()
        _LOGGER.debug("Scheduling %s in %0.3fs", key, delay)
        self._timers[key] = loop.call_at(when, self._fire_timer, key)
        self._idle.clear()

    def add_rate_limited(self, key: Hashable) -> None:
        """Add the key after a delay that grows with each consecutive failure."""
        failures = self._failures.get(key, 0)
        self._failures[key] = failures + 1
        delay = min(
            self._config.backoff_base * (2**failures), self._config.backoff_max
        )
        self.add_after(key, delay)

    def forget(self, key: Hashable) -> None:
        """Reset the failure count of the key."""
        self._failures.pop(key, None)

    def num_requeues(self, key: Hashable) -> int:
        """Return the number of consecutive failures recorded for the key."""
        return self._failures.get(key, 0)

    async def get(self) -> Hashable:
        """Wait for the next key to process.

        The caller must call `done` with the key once processing finished.
        """
        key = await self._queue.get()
        self._processing.add(key)
        self._dirty.discard(key)
        return key

    def done(self, key: Hashable) -> None:
        """Mark processing of the key as finished."""
        self._processing.discard(key)
        if key in self._dirty:
            self._queue.put_nowait(key)
        self._update_idle()

    def __len__(self) -> int:
        """Return the number of keys waiting to be processed."""
        return self._queue.qsize()

    @property
    def idle(self) -> bool:
        """Return True if nothing is queued, processing or scheduled."""
        return not (self._dirty or self._processing or self._timers)

    async def wait_idle(self) -> None:
        """Wait until the queue becomes idle."""
        await self._idle.wait()

    def shutdown(self) -> None:
        """Stop accepting keys and drop any scheduled adds."""
        self._shutdown = True
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
        self._update_idle()

    def _fire_timer(self, key: Hashable) -> None:
        self._timers.pop(key, None)
        self.add(key)
        self._update_idle()

    def _update_idle(self) -> None:
        if self.idle:
            self._idle.set()
        else:
            self._idle.clear()
