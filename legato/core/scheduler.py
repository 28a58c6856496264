"""
Debounced write scheduling.

Rapid mutations of the same table are coalesced into a single write that
runs after a quiet period. The scheduler implements "latest wins":

1. Scheduling a key that already has a pending timer cancels that timer and
   arms a new one, so a superseded write never executes.
2. The write callback reads the table's *current* in-memory value when it
   runs, never a payload captured at scheduling time.
3. Writes for the same key are serialized with a per-key lock; writes for
   different keys are independent and may finish in any order.

There is no retry: a failed write is logged, and the next mutation of the
table schedules a fresh one.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Any

logger = logging.getLogger(__name__)

# Default quiet period before a scheduled write runs
DEFAULT_SAVE_TIMEOUT_SECONDS = 0.1

WriteCallback = Callable[[], Awaitable[None]]


class DebouncedWriteScheduler:
    """
    Coalesces repeated write requests per key.

    Usage:
        scheduler = DebouncedWriteScheduler(delay=0.1)
        scheduler.schedule("settings", write_settings)
        ...
        await scheduler.flush_all()  # on shutdown

    A delay of 0 still defers the write to the next loop iteration, which
    keeps mutation synchronous for the caller.
    """

    def __init__(self, delay: float = DEFAULT_SAVE_TIMEOUT_SECONDS) -> None:
        if delay < 0:
            raise ValueError(f"delay must be >= 0, got {delay}")
        self.delay = delay

        # Per-key pending timers and the callback each will run
        self._timers: dict[str, asyncio.TimerHandle] = {}
        self._callbacks: dict[str, WriteCallback] = {}

        # Per-key locks to serialize writes of the same key, with their holder
        # and waiter counts; a lock is discarded when nobody uses it
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}

        # Writes currently executing
        self._running: dict[str, set[asyncio.Task[Any]]] = {}

    def _get_lock(self, key: str) -> asyncio.Lock:
        """Get or create a lock for a key."""
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    @asynccontextmanager
    async def lock(self, key: str) -> AsyncIterator[None]:
        """
        Hold the write lock of key.

        Entering waits for a write of key that is executing; no write of key
        starts while the lock is held.
        """
        lock = self._get_lock(key)
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[key] -= 1
            if not self._lock_users[key]:
                del self._lock_users[key]
                self._locks.pop(key, None)

    def cancel(self, key: str) -> bool:
        """
        Drop a write of key that is still waiting for its timer.

        Returns:
            True if a waiting write was dropped.
        """
        timer = self._timers.pop(key, None)
        self._callbacks.pop(key, None)
        if timer is None:
            return False
        timer.cancel()
        logger.debug("Write for %s cancelled", key)
        return True

    def schedule(self, key: str, callback: WriteCallback, *, delay: float | None = None) -> None:
        """
        Schedule a write for key, replacing any write still waiting for its timer.

        Args:
            key: Coalescing key (the table name).
            callback: Coroutine function performing the write.
            delay: Override for this scheduling; defaults to the scheduler delay.

        Raises:
            RuntimeError: No event loop is running.
        """
        loop = asyncio.get_running_loop()

        existing = self._timers.pop(key, None)
        if existing is not None:
            existing.cancel()
            logger.debug("Write for %s superseded before it ran", key)

        self._callbacks[key] = callback
        self._timers[key] = loop.call_later(
            self.delay if delay is None else delay, self._fire, key
        )

    def _fire(self, key: str) -> None:
        self._timers.pop(key, None)
        callback = self._callbacks.pop(key, None)
        if callback is None:
            return
        self._start(key, callback)

    def _start(self, key: str, callback: WriteCallback) -> asyncio.Task[Any]:
        task = asyncio.get_running_loop().create_task(self._run(key, callback))
        running = self._running.setdefault(key, set())
        running.add(task)

        def _done(t: asyncio.Task[Any]) -> None:
            running.discard(t)
            if not running and self._running.get(key) is running:
                del self._running[key]

        task.add_done_callback(_done)
        return task

    async def _run(self, key: str, callback: WriteCallback) -> None:
        async with self.lock(key):
            try:
                await callback()
            except Exception as e:
                logger.exception("Scheduled write for %s failed: %s", key, e)

    def is_pending(self, key: str) -> bool:
        """True if a write for key is waiting for its timer or is executing."""
        return key in self._timers or bool(self._running.get(key))

    def has_waiting(self, key: str) -> bool:
        """True if a write for key is still waiting for its timer."""
        return key in self._timers

    def pending_keys(self) -> list[str]:
        """Keys with a write waiting for its timer or executing."""
        return sorted(set(self._timers) | set(self._running))

    async def flush(self, key: str) -> None:
        """Run a waiting write for key now, and wait for any write of key in flight."""
        timer = self._timers.pop(key, None)
        if timer is not None:
            timer.cancel()
            callback = self._callbacks.pop(key, None)
            if callback is not None:
                self._start(key, callback)

        running = list(self._running.get(key, ()))
        if running:
            await asyncio.gather(*running, return_exceptions=True)

    async def flush_all(self) -> None:
        """Run every waiting write now and wait until all writes finished."""
        for key in list(self._timers):
            await self.flush(key)
        await self.wait_idle()

    async def wait_idle(self) -> None:
        """Wait for writes already executing (does not trigger waiting timers)."""
        while self._running:
            tasks = [t for tasks in self._running.values() for t in tasks]
            await asyncio.gather(*tasks, return_exceptions=True)

