"""Work queue of Dataset keys.

Guarantees a key is handed to at most one worker at a time:
- adding a queued key is a no-op
- adding a key that is being processed marks it dirty; it is queued again
  when the worker calls ``done``

Delayed adds and per-key exponential backoff sit on top of that. The queue
is driven from a single event loop, so plain sets guard the state.
"""

from __future__ import annotations

import asyncio

import structlog

logger = structlog.get_logger()

Key = tuple[str, str]


class WorkQueue:
    """De-duplicating, rate-limited queue of ``(namespace, name)`` keys."""

    def __init__(self, base_delay: float = 1.0, max_delay: float = 300.0) -> None:
        self._base_delay = base_delay
        self._max_delay = max_delay

        self._queue: asyncio.Queue[Key] = asyncio.Queue()
        self._dirty: set[Key] = set()
        self._processing: set[Key] = set()
        self._failures: dict[Key, int] = {}
        self._delayed: dict[Key, asyncio.TimerHandle] = {}
        self._shutting_down = False

    def __len__(self) -> int:
        return self._queue.qsize()

    @property
    def shutting_down(self) -> bool:
        return self._shutting_down

    def add(self, key: Key) -> None:
        if self._shutting_down or key in self._dirty:
            return
        self._dirty.add(key)
        if key in self._processing:
            return
        self._queue.put_nowait(key)

    async def get(self) -> Key:
        """Wait for the next key and mark it as processing."""
        key = await self._queue.get()
        self._dirty.discard(key)
        self._processing.add(key)
        return key

    def done(self, key: Key) -> None:
        """Finish processing ``key``; re-queue it if it was added meanwhile."""
        self._processing.discard(key)
        if key in self._dirty and not self._shutting_down:
            self._queue.put_nowait(key)

    def add_after(self, key: Key, delay: float) -> None:
        """Add ``key`` once ``delay`` seconds have passed.

        When a delayed add is already pending, the earlier one wins.
        """
        if self._shutting_down:
            return
        if delay <= 0:
            self.add(key)
            return

        loop = asyncio.get_running_loop()
        when = loop.time() + delay
        pending = self._delayed.get(key)
        if pending is not None:
            if pending.when() <= when:
                return
            pending.cancel()
        self._delayed[key] = loop.call_at(when, self._fire, key)

    def _fire(self, key: Key) -> None:
        self._delayed.pop(key, None)
        self.add(key)

    def add_rate_limited(self, key: Key) -> float:
        """Re-add ``key`` after a backoff that doubles with each failure.

        Returns:
            The delay applied
        """
        failures = self._failures.get(key, 0)
        self._failures[key] = failures + 1
        delay = min(self._base_delay * (2**failures), self._max_delay)
        self.add_after(key, delay)
        return delay

    def forget(self, key: Key) -> None:
        """Reset the backoff for ``key``."""
        self._failures.pop(key, None)

    def num_requeues(self, key: Key) -> int:
        return self._failures.get(key, 0)

    def shutdown(self) -> None:
        """Stop accepting keys and cancel pending delayed adds."""
        self._shutting_down = True
        for handle in self._delayed.values():
            handle.cancel()
        self._delayed.clear()
        logger.debug("queue.shutdown", pending=self._queue.qsize())
