"""
Tests for DebouncedWriteScheduler.

Tests the latest-wins coalescing, flushing and failure isolation.
"""

import asyncio

import pytest

from legato.core.scheduler import DebouncedWriteScheduler


class TestDebouncedWriteScheduler:
    """Tests for DebouncedWriteScheduler class."""

    def test_negative_delay_rejected(self) -> None:
        with pytest.raises(ValueError):
            DebouncedWriteScheduler(delay=-1)

    def test_schedule_requires_running_loop(self) -> None:
        """Scheduling outside an event loop is a programming error."""
        scheduler = DebouncedWriteScheduler(delay=0)

        async def write() -> None:
            pass

        with pytest.raises(RuntimeError):
            scheduler.schedule("k", write)

    async def test_three_schedules_one_write(self) -> None:
        """Three schedules inside the window run only the latest callback, once."""
        scheduler = DebouncedWriteScheduler(delay=0.05)
        calls: list[int] = []

        def make(n: int):
            async def write() -> None:
                calls.append(n)

            return write

        scheduler.schedule("settings", make(1))
        scheduler.schedule("settings", make(2))
        scheduler.schedule("settings", make(3))
        assert scheduler.is_pending("settings")

        await asyncio.sleep(0.15)

        assert calls == [3]
        assert not scheduler.is_pending("settings")

    async def test_reschedule_resets_timer(self) -> None:
        """A new schedule pushes the write back by a full quiet period."""
        scheduler = DebouncedWriteScheduler(delay=0.1)
        calls: list[str] = []

        async def write() -> None:
            calls.append("w")

        scheduler.schedule("k", write)
        await asyncio.sleep(0.06)
        scheduler.schedule("k", write)
        await asyncio.sleep(0.06)

        # 0.12s after the first schedule, but only 0.06s after the second
        assert calls == []

        await asyncio.sleep(0.1)
        assert calls == ["w"]

    async def test_zero_delay_defers_to_loop(self) -> None:
        """A zero delay still runs after the caller returns."""
        scheduler = DebouncedWriteScheduler(delay=0)
        calls: list[str] = []

        async def write() -> None:
            calls.append("w")

        scheduler.schedule("k", write)
        assert calls == []

        await scheduler.wait_idle()
        await asyncio.sleep(0.01)
        assert calls == ["w"]

    async def test_keys_are_independent(self) -> None:
        scheduler = DebouncedWriteScheduler(delay=0.01)
        calls: list[str] = []

        def make(key: str):
            async def write() -> None:
                calls.append(key)

            return write

        scheduler.schedule("a", make("a"))
        scheduler.schedule("b", make("b"))
        await asyncio.sleep(0.05)

        assert sorted(calls) == ["a", "b"]

    async def test_flush_runs_immediately(self) -> None:
        scheduler = DebouncedWriteScheduler(delay=10)
        calls: list[str] = []

        async def write() -> None:
            calls.append("w")

        scheduler.schedule("k", write)
        await scheduler.flush("k")

        assert calls == ["w"]
        assert scheduler.pending_keys() == []

    async def test_flush_all(self) -> None:
        scheduler = DebouncedWriteScheduler(delay=10)
        calls: list[str] = []

        def make(key: str):
            async def write() -> None:
                calls.append(key)

            return write

        for key in ("x", "y", "z"):
            scheduler.schedule(key, make(key))
        assert scheduler.pending_keys() == ["x", "y", "z"]

        await scheduler.flush_all()

        assert sorted(calls) == ["x", "y", "z"]
        assert scheduler.pending_keys() == []

    async def test_failed_write_is_logged_not_raised(self, caplog: pytest.LogCaptureFixture) -> None:
        """A failing write does not propagate and does not block later writes."""
        scheduler = DebouncedWriteScheduler(delay=0)
        calls: list[str] = []

        async def failing() -> None:
            raise OSError("disk full")

        async def working() -> None:
            calls.append("ok")

        scheduler.schedule("k", failing)
        await asyncio.sleep(0.01)
        await scheduler.wait_idle()

        assert "Scheduled write for k failed" in caplog.text

        scheduler.schedule("k", working)
        await scheduler.flush("k")
        assert calls == ["ok"]

    async def test_same_key_writes_are_serialized(self) -> None:
        """A write of a key does not start while another write of that key runs."""
        scheduler = DebouncedWriteScheduler(delay=0)
        active = 0
        max_active = 0

        async def slow() -> None:
            nonlocal active, max_active
            active += 1
            max_active = max(max_active, active)
            await asyncio.sleep(0.02)
            active -= 1

        scheduler.schedule("k", slow)
        await asyncio.sleep(0.005)
        scheduler.schedule("k", slow)
        await asyncio.sleep(0.005)
        await scheduler.flush_all()

        assert max_active == 1

    async def test_cancel_drops_waiting_write(self) -> None:
        scheduler = DebouncedWriteScheduler(delay=0.02)
        calls: list[str] = []

        async def write() -> None:
            calls.append("w")

        scheduler.schedule("k", write)
        assert scheduler.cancel("k") is True
        assert scheduler.cancel("k") is False

        await asyncio.sleep(0.06)
        assert calls == []
        assert not scheduler.is_pending("k")

    async def test_lock_waits_for_running_write(self) -> None:
        """Holding a key's lock waits for its executing write to finish."""
        scheduler = DebouncedWriteScheduler(delay=0)
        order: list[str] = []

        async def slow() -> None:
            await asyncio.sleep(0.03)
            order.append("write")

        scheduler.schedule("k", slow)
        await asyncio.sleep(0.005)

        async with scheduler.lock("k"):
            order.append("locked")

        assert order == ["write", "locked"]

    async def test_idle_keys_do_not_keep_locks(self) -> None:
        scheduler = DebouncedWriteScheduler(delay=0)

        async def write() -> None:
            await asyncio.sleep(0)

        for i in range(20):
            scheduler.schedule(f"doc{i}", write)
        await scheduler.flush_all()
        async with scheduler.lock("other"):
            pass

        assert scheduler._locks == {}
