"""
File-backed table store.

The store is the authoritative mapping from table name to value for one
backend (one directory, one format). It keeps every loaded table in memory;
mutations are applied to the in-memory value synchronously and become visible
to readers immediately, while the write to disk is debounced.

Lifecycle:
    store = TableStore(FileBackend(directory, StorageFormat.JSON), preload=["settings"])
    await store.initialize()          # eager load of preload tables
    await store.load_table("other")   # lazy load of anything else
    store.set("settings", [set_at(("volume",), 0.5)])
    await store.aclose()              # flush pending writes

Failure handling:
- A table that fails to load is logged and treated as absent; other tables
  are unaffected.
- A failed write is logged and published as `table.save_failed`; the next
  mutation schedules a new write.
- Invalid table names raise `InvalidTableNameError` (caller bug).
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Sequence
from typing import Any, Callable

from legato.core.backend import FileBackend, metadata_table, validate_table_name
from legato.core.changes import Change, apply_changes, set_at
from legato.core.events import (
    EventBus,
    EventHandler,
    TableChangedEvent,
    TableDeletedEvent,
    TableSavedEvent,
    TableSaveFailedEvent,
)
from legato.core.scheduler import DEFAULT_SAVE_TIMEOUT_SECONDS, DebouncedWriteScheduler

logger = logging.getLogger(__name__)

Preload = bool | Sequence[str]

# Maps the value read from disk (None when absent) to the base that deferred changes apply to
Rebase = Callable[[Any], Any]


def _unchanged(raw: Any) -> Any:
    return raw


class TableStore:
    """
    Keyed tables over a directory of files.

    Notes:
    - This class is designed to be injected into other components.
    - The store is the only writer of its directory; no file locking is done.
    """

    def __init__(
        self,
        backend: FileBackend,
        *,
        save_timeout: float = DEFAULT_SAVE_TIMEOUT_SECONDS,
        preload: Preload = False,
        events: EventBus | None = None,
    ) -> None:
        """
        Initialize the store.

        Args:
            backend: File backend (directory + format).
            save_timeout: Debounce quiet period in seconds (0 = next loop turn).
            preload: Tables to load in `initialize()`; True loads every table on disk.
            events: Event bus for change notifications; a private one by default.
        """
        self.backend = backend
        self.preload = preload
        self.events = events if events is not None else EventBus()
        self.scheduler = DebouncedWriteScheduler(save_timeout)

        self._data: dict[str, Any] = {}
        self._loaded: set[str] = set()
        self._loading: dict[str, asyncio.Task[Any]] = {}
        # Partial changes made before the table was read, replayed over the disk value
        self._deferred: dict[str, list[Change]] = {}
        self._rebase: dict[str, Rebase] = {}
        self._release_after_flush: set[str] = set()
        self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def save_timeout(self) -> float:
        return self.scheduler.delay

    # ===========================================================================
    # Loading
    # ===========================================================================

    async def initialize(self, preload: Preload | None = None) -> None:
        """
        Prepare the directory and eagerly load the preload tables.

        Each preloaded table's metadata companion is loaded with it.
        """
        try:
            await self.backend.initialize()
        except OSError as e:
            logger.error("Failed to create storage directory %s: %s", self.backend.directory, e)

        wanted = self.preload if preload is None else preload
        if wanted is True:
            tables = await self.backend.list_tables()
        elif wanted is False:
            tables = []
        else:
            tables = list(wanted)

        if tables:
            await asyncio.gather(*(self.load_table(name) for name in tables))
            logger.debug("Preloaded %d tables from %s", len(tables), self.backend.directory)

        self._initialized = True

    def is_loaded(self, name: str) -> bool:
        return name in self._loaded

    async def load_table(self, name: str) -> Any:
        """
        Load a table from disk unless it is already in memory.

        Concurrent callers share one read. A main table is read together with
        its metadata companion. A table replaced wholesale while the read was
        in flight keeps its in-memory value; partial changes made before the
        read finished are applied on top of what was read.

        Returns:
            The in-memory value (None when absent).
        """
        validate_table_name(name)
        if name in self._loaded:
            return self._data.get(name)
        return await self._start_load(name)

    def _start_load(self, name: str) -> asyncio.Task[Any]:
        task = self._loading.get(name)
        if task is None:
            task = asyncio.get_running_loop().create_task(self._load(name))
            self._loading[name] = task
        return task

    async def _load(self, name: str) -> Any:
        companion = metadata_table(name)
        try:
            if companion != name and companion not in self._loaded:
                value, _ = await asyncio.gather(self._read(name), self.load_table(companion))
            else:
                value = await self._read(name)
        finally:
            self._loading.pop(name, None)

        if name not in self._loaded:
            deferred = self._deferred.pop(name, None)
            rebase = self._rebase.pop(name, _unchanged)
            if deferred:
                value = apply_changes(rebase(value), deferred)
            before = self._data.get(name)
            if value is None:
                self._data.pop(name, None)
            else:
                self._data[name] = value
            self._loaded.add(name)
            if deferred and value != before:
                self.events.publish(TableChangedEvent(table=name, changes=(set_at((), value),)))

        return self._data.get(name)

    async def _read(self, name: str) -> Any:
        try:
            return await self.backend.load(name)
        except Exception as e:
            logger.warning(
                "Failed to load table %s from %s, treating as absent: %s",
                name,
                self.backend.path_for(name),
                e,
            )
            return None

    # ===========================================================================
    # Reads
    # ===========================================================================

    def get_table(self, name: str, default: Any = None) -> Any:
        """In-memory value of a table, or default when it has none."""
        value = self._data.get(name)
        return default if value is None else value

    def get_metadata(self, name: str) -> dict[str, Any]:
        """Metadata companion record of a table ({} when absent)."""
        value = self._data.get(metadata_table(name))
        return value if isinstance(value, dict) else {}

    def tables(self) -> list[str]:
        """Names of tables currently held in memory."""
        return sorted(self._data)

    # ===========================================================================
    # Writes
    # ===========================================================================

    def set(self, name: str, changes: Iterable[Change], *, base: Rebase | None = None) -> Any:
        """
        Apply changes to a table's in-memory value and schedule a write.

        A change at the root path replaces the table, which then needs no read.
        Partial changes to a table not read yet are visible at once and are
        also kept, then applied again over the disk value when the read
        finishes; the write waits for that read.

        Args:
            name: Table name.
            changes: Changes applied in order.
            base: Maps the value read from disk to the value partial changes
                apply to (e.g. filling defaults). Used only for a table not read yet.

        Returns:
            The new in-memory value.
        """
        validate_table_name(name)
        changes = tuple(changes)
        if not changes:
            return self._data.get(name)

        if name in self._loaded or any(not change.path for change in changes):
            value = apply_changes(self._data.get(name), changes)
            self._loaded.add(name)
            self._deferred.pop(name, None)
            self._rebase.pop(name, None)
        else:
            rebase = base or _unchanged
            self._deferred.setdefault(name, []).extend(changes)
            self._rebase[name] = rebase
            self._start_load(name)
            value = apply_changes(rebase(self._data.get(name)), changes)

        if value is None:
            self._data.pop(name, None)
        else:
            self._data[name] = value
        self._release_after_flush.discard(name)

        self.events.publish(TableChangedEvent(table=name, changes=changes))
        self.scheduler.schedule(name, lambda: self._save(name))
        return value

    def set_value(self, name: str, value: Any) -> Any:
        """Replace a table's whole value (None deletes the file on flush)."""
        return self.set(name, [set_at((), value)])

    def set_metadata(self, name: str, value: dict[str, Any]) -> Any:
        """Replace the metadata companion record of a table."""
        return self.set_value(metadata_table(name), value)

    async def _save(self, name: str) -> None:
        if name not in self._loaded:
            await self.load_table(name)
        value = self._data.get(name)
        try:
            size = await self.backend.save(name, value)
        except Exception as e:
            logger.exception("Failed to write table %s: %s", name, e)
            self.events.publish(TableSaveFailedEvent(table=name, error=str(e)))
        else:
            self.events.publish(TableSavedEvent(table=name, size=size))

        if name in self._release_after_flush and not self.scheduler.has_waiting(name):
            self._drop(name)

    async def delete_table(self, name: str) -> bool:
        """
        Delete a table: the in-memory value now, then the file (not debounced).

        A write still waiting for its timer is cancelled; a write already
        running finishes first, so it cannot bring the file back.

        Returns:
            True if a file was removed.
        """
        validate_table_name(name)
        self.scheduler.cancel(name)
        self._data.pop(name, None)
        self._deferred.pop(name, None)
        self._rebase.pop(name, None)
        self._release_after_flush.discard(name)
        # Absent from here on; a read still in flight must not restore it
        self._loaded.add(name)

        async with self.scheduler.lock(name):
            removed = await self.backend.delete(name)
        self.events.publish(TableDeletedEvent(table=name))
        return removed

    async def delete_metadata(self, name: str) -> bool:
        return await self.delete_table(metadata_table(name))

    def release(self, name: str) -> None:
        """
        Forget the in-memory copy of a table (and of its metadata companion)
        so the next load reads the disk.

        A write still pending for the table is not cancelled; the copy is
        dropped after that write finishes.
        """
        if self.scheduler.is_pending(name):
            self._release_after_flush.add(name)
        else:
            self._drop(name)

        companion = metadata_table(name)
        if companion != name:
            self.release(companion)

    def _drop(self, name: str) -> None:
        self._data.pop(name, None)
        self._loaded.discard(name)
        self._deferred.pop(name, None)
        self._rebase.pop(name, None)
        self._release_after_flush.discard(name)

    # ===========================================================================
    # Subscriptions & lifecycle
    # ===========================================================================

    def subscribe(self, name: str, handler: EventHandler) -> Callable[[], bool]:
        """
        Call handler after each in-memory change of one table.

        Returns:
            A callable that removes the subscription.
        """

        def _for_table(event: Any) -> Any:
            if event.table == name:
                return handler(event)
            return None

        return self.events.subscribe("table.changed", _for_table)

    async def flush(self, name: str | None = None) -> None:
        """Run pending writes now (one table, or all) and wait for them."""
        if name is None:
            await self.scheduler.flush_all()
        else:
            await self.scheduler.flush(name)

    async def aclose(self) -> None:
        """Flush every pending write and wait for reads and async subscribers."""
        if self._loading:
            await asyncio.gather(*self._loading.values(), return_exceptions=True)
        await self.scheduler.flush_all()
        await self.events.drain()
        logger.debug("Closed table store for %s", self.backend.directory)
