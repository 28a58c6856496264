"""
Typed table handles.

A `PersistedTable` is the object application code holds for one table. It
exposes `get`, `set`, `subscribe` and keeps a typed view of the value, while
the `TableStore` underneath owns the persisted (raw) shape and the write
timing.

A `TableTransform` lets a table persist a shape different from its runtime
shape: a playlist document is a `M3UPlaylist` in memory but M3U text on disk,
the hotkey map holds key codes in memory but key names on disk.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, Callable, Generic, Iterable, Protocol, TypeVar

from legato.core import StorageError
from legato.core.changes import Change, PathKey, delete_at, set_at
from legato.core.codecs import StorageFormat
from legato.core.events import Event
from legato.core.store import TableStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Default quiet period of application tables (seconds)
DEFAULT_TABLE_SAVE_TIMEOUT = 0.3


class TableTransform(Protocol[T]):
    """Converts between the persisted (raw) and the runtime (typed) shape."""

    def load(self, raw: Any) -> T: ...

    def save(self, value: T) -> Any: ...


@dataclass(frozen=True, slots=True)
class TableConfig:
    """
    Configuration of one persisted table.

    `preload` follows the store convention: False for lazy loading, True to
    preload this table, or an explicit list of tables to preload with it.
    """

    filename: str
    initial_value: Any
    format: StorageFormat = StorageFormat.JSON
    preload: bool | Sequence[str] = True
    save_timeout: float = DEFAULT_TABLE_SAVE_TIMEOUT
    transform: TableTransform[Any] | None = None

    @property
    def preload_tables(self) -> list[str]:
        if self.preload is True:
            return [self.filename]
        if self.preload is False:
            return []
        return list(self.preload)


def merge_defaults(defaults: Any, value: Any) -> Any:
    """
    Fill keys missing from value with those of defaults, recursively.

    Only dicts are merged; any other persisted value wins as-is.
    """
    if not isinstance(defaults, dict) or not isinstance(value, dict):
        return value
    merged = copy.deepcopy(defaults)
    for key, item in value.items():
        merged[key] = merge_defaults(defaults.get(key), item) if key in defaults else item
    return merged


class PersistedTable(Generic[T]):
    """
    A live, auto-persisting table value.

    Usage:
        settings = PersistedTable(store, TableConfig("settings", {"volume": 1.0}))
        await settings.load()
        settings.assign(("volume",), 0.5)     # fine-grained update
        settings.subscribe(lambda value: print(value))

    Mutations update memory immediately and notify subscribers; the store
    writes to disk after its debounce window.
    """

    def __init__(self, store: TableStore, config: TableConfig) -> None:
        self.store = store
        self.config = config
        self._value: T = self._initial()
        self._loaded = False
        self._load_task: asyncio.Task[T] | None = None
        self._writing = False
        self._unsubscribe: Callable[[], bool] | None = store.subscribe(
            config.filename, self._on_store_change
        )

    @property
    def name(self) -> str:
        return self.config.filename

    @property
    def loaded(self) -> bool:
        return self._loaded

    def _initial(self) -> T:
        return copy.deepcopy(self.config.initial_value)

    def _from_raw(self, raw: Any) -> T:
        if raw is None:
            return self._initial()

        transform = self.config.transform
        if transform is not None:
            try:
                return transform.load(raw)
            except Exception as e:
                logger.warning("Failed to transform table %s on load: %s", self.name, e)
                return self._initial()

        return self._with_defaults(raw)

    async def load(self) -> T:
        """Load the table from disk once; later calls return the current value."""
        if self._loaded:
            return self._value
        if self._load_task is None or self._load_task.done():
            self._load_task = asyncio.get_running_loop().create_task(self._load())
        return await self._load_task

    async def _load(self) -> T:
        raw = await self.store.load_table(self.name)
        if not self._loaded:
            self._value = self._from_raw(raw)
            self._loaded = True
        return self._value

    def get(self) -> T:
        """Current in-memory value (the initial value until loaded)."""
        return self._value

    def set(self, value: T) -> None:
        """Replace the whole value."""
        raw: Any = value
        if self.config.transform is not None:
            try:
                raw = self.config.transform.save(value)
            except Exception as e:
                logger.exception("Failed to transform table %s on save: %s", self.name, e)
                return

        self._value = value
        self._loaded = True
        self._apply([set_at((), raw)])

    def assign(self, path: Iterable[PathKey], value: Any) -> None:
        """Set one nested location, e.g. `assign(("window", "width"), 800)`."""
        self._apply_typed([set_at(path, value)])

    def delete(self, path: Iterable[PathKey]) -> None:
        """Delete one nested location."""
        self._apply_typed([delete_at(path)])

    def _with_defaults(self, raw: Any) -> Any:
        if raw is None:
            return self._initial()
        return merge_defaults(self.config.initial_value, raw)

    def _apply_typed(self, changes: list[Change]) -> None:
        if self.config.transform is not None:
            raise StorageError(
                f"Table {self.name} uses a transform; replace its value with set() instead"
            )
        if self.store.is_loaded(self.name):
            raw = self.store.get_table(self.name)
            defaulted = self._with_defaults(raw)
            if defaulted != raw:
                changes = [set_at((), defaulted), *changes]
        # Not read yet: the store replays the changes over the defaulted disk value.
        # _on_store_change refreshes the typed value before other subscribers run
        self.store.set(self.name, changes, base=self._with_defaults)

    def _apply(self, changes: list[Change]) -> None:
        self._writing = True
        try:
            self.store.set(self.name, changes)
        finally:
            self._writing = False

    def _on_store_change(self, event: Event) -> None:
        # Changes made through another handle (or the store directly)
        if self._writing:
            return
        self._value = self._from_raw(self.store.get_table(self.name))
        self._loaded = self.store.is_loaded(self.name)

    def subscribe(self, handler: Callable[[T], Any]) -> Callable[[], bool]:
        """
        Call handler with the new value after every in-memory change.

        Notifications do not wait for the value to be written to disk.

        Returns:
            A callable that removes the subscription.
        """
        return self.store.subscribe(self.name, lambda event: handler(self._value))

    async def delete_table(self) -> bool:
        """
        Delete the persisted table and reset to the initial value.

        Returns:
            True if a file was removed.
        """
        removed = await self.store.delete_table(self.name)
        self._value = self._initial()
        return removed

    async def flush(self) -> None:
        """Write any pending change now."""
        await self.store.flush(self.name)

    def detach(self) -> None:
        """Stop following store changes (the handle is being discarded)."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
