"""
Application storage.

`Storage` is the one object that owns everything persisted by the player:
the table stores (one per format and write timing), the typed table handles,
the library and queue snapshot caches, the playlist document cache and the
local playlists. It is constructed explicitly at startup and passed to
whatever needs it.

Usage:
    storage = Storage(get_storage_config())
    await storage.start()
    settings = storage.table(SETTINGS_TABLE)
    settings.assign(("general", "playlistStyle"), "compact")
    ...
    await storage.close()

Or as an async context manager:
    async with Storage(config) as storage:
        ...
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from pathlib import Path
from typing import Any, Callable

from legato.config import StorageConfig, get_storage_config
from legato.core import TableNotFoundError
from legato.core.backend import FileBackend
from legato.core.codecs import StorageFormat
from legato.core.events import EventBus, EventHandler
from legato.core.store import TableStore
from legato.core.table import PersistedTable, TableConfig
from legato.playlists.content import PlaylistDocumentCache
from legato.playlists.local import LocalPlaylists
from legato.snapshots.library import LEGACY_LIBRARY_CACHE_FILES, LibraryCache
from legato.snapshots.queue import QueueCache

logger = logging.getLogger(__name__)

PLAYLISTS_DIR = "playlists"


class Storage:
    """
    Owns the stores and caches of one application directory.

    Notes:
    - Tables sharing a format and save timeout share one `TableStore`.
    - All stores publish on one `EventBus`, so `subscribe("table.*", ...)`
      observes every table.
    """

    def __init__(self, config: StorageConfig | None = None, *, directory: Path | None = None) -> None:
        """
        Initialize storage.

        Args:
            config: Storage configuration (the global one by default).
            directory: Application directory; overrides the configured one.
        """
        self.config = config if config is not None else get_storage_config()
        self.directory = Path(directory) if directory is not None else self.config.storage_dir
        self.events = EventBus()

        self._stores: dict[tuple[StorageFormat, float], TableStore] = {}
        self._tables: dict[str, PersistedTable[Any]] = {}
        self._started = False

        self.documents = PlaylistDocumentCache(
            self.store_for(StorageFormat.M3U, self.config.playlist_save_timeout),
            capacity=self.config.playlist_cache_capacity,
            save_timeout=self.config.playlist_save_timeout,
        )
        self.playlists = LocalPlaylists(self.directory / PLAYLISTS_DIR, self.documents)
        self.library = LibraryCache(self.table(LibraryCache.table_config()))
        self.queue = QueueCache(self.table(QueueCache.table_config()))

    async def __aenter__(self) -> Storage:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    @property
    def started(self) -> bool:
        return self._started

    # ===========================================================================
    # Stores & tables
    # ===========================================================================

    def store_for(self, fmt: StorageFormat, save_timeout: float | None = None) -> TableStore:
        """Get or create the store for a format and save timeout."""
        timeout = self.config.save_timeout if save_timeout is None else save_timeout
        key = (fmt, timeout)
        store = self._stores.get(key)
        if store is None:
            store = TableStore(
                FileBackend(self.directory, fmt),
                save_timeout=timeout,
                events=self.events,
            )
            self._stores[key] = store
            logger.debug("Created %s store (save timeout %.3fs)", fmt.value, timeout)
        return store

    def _effective_config(self, config: TableConfig) -> TableConfig:
        override = self.config.override_for(config.filename)
        if override is None:
            return config
        changes: dict[str, Any] = {}
        if override.format is not None:
            changes["format"] = override.format
        if override.preload is not None:
            changes["preload"] = override.preload
        if override.save_timeout is not None:
            changes["save_timeout"] = override.save_timeout
        return replace(config, **changes) if changes else config

    def table(self, config: TableConfig) -> PersistedTable[Any]:
        """
        Get the handle of a table, creating it on first use.

        One handle exists per table name; later calls return it regardless
        of the config passed.
        """
        handle = self._tables.get(config.filename)
        if handle is not None:
            return handle

        effective = self._effective_config(config)
        store = self.store_for(effective.format, effective.save_timeout)
        handle = PersistedTable(store, effective)
        self._tables[config.filename] = handle
        return handle

    def get_table(self, name: str) -> PersistedTable[Any]:
        """
        Handle of a table registered earlier.

        Raises:
            TableNotFoundError: No table with this name was registered.
        """
        try:
            return self._tables[name]
        except KeyError:
            raise TableNotFoundError(name) from None

    def table_names(self) -> list[str]:
        return sorted(self._tables)

    def subscribe(self, event_type: str, handler: EventHandler) -> Callable[[], bool]:
        """Subscribe to store events of every table (e.g. "table.saved", "table.*")."""
        return self.events.subscribe(event_type, handler)

    # ===========================================================================
    # Lifecycle
    # ===========================================================================

    async def start(self) -> None:
        """
        Prepare the directory, preload tables and remove obsolete files.

        Calling start twice is a no-op.
        """
        if self._started:
            return

        preload: dict[TableStore, list[str]] = {store: [] for store in self._stores.values()}
        for handle in self._tables.values():
            preload[handle.store].extend(handle.config.preload_tables)

        await asyncio.gather(
            *(store.initialize(preload=names) for store, names in preload.items())
        )
        await asyncio.gather(
            *(h.load() for h in self._tables.values() if h.config.preload_tables)
        )
        await self._remove_legacy_files()

        self._started = True
        logger.info("Storage ready in %s (%d tables)", self.directory, len(self._tables))

    async def _remove_legacy_files(self) -> None:
        json_backend = self.store_for(StorageFormat.JSON).backend
        for filename in LEGACY_LIBRARY_CACHE_FILES:
            table = filename.removesuffix(f".{json_backend.codec.extension}")
            # Only remove the JSON file; the current cache may be stored under the same name
            if json_backend.format is self.table_format(table):
                continue
            if await json_backend.delete(table):
                logger.info("Removed legacy cache file %s", filename)

    def table_format(self, name: str) -> StorageFormat | None:
        handle = self._tables.get(name)
        return handle.config.format if handle is not None else None

    async def flush(self) -> None:
        """Write every pending change now."""
        await asyncio.gather(*(store.flush() for store in self._stores.values()))

    async def close(self) -> None:
        """Flush pending writes and wait for subscribers."""
        for store in list(self._stores.values()):
            await store.aclose()
        self._started = False
        logger.debug("Storage closed")

    async def delete_table(self, name: str) -> bool:
        """
        Delete a registered table and its metadata companion.

        Raises:
            TableNotFoundError: No table with this name was registered.
        """
        handle = self.get_table(name)
        await handle.store.delete_metadata(name)
        return await handle.delete_table()
