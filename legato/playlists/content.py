"""
Playlist document cache.

Each playlist file the UI opens gets exactly one live document: a
`PersistedTable[M3UPlaylist]` stored as M3U text in the playlist store. The
cache keeps at most `capacity` documents, evicting the least recently used
one when a new path is opened.

Design decisions:
- `get()` returns the same object for a path while it stays cached, so
  subscriptions made on a document keep observing it.
- Eviction only drops references. A pending debounced write of an evicted
  document still flushes; the store forgets its in-memory copy afterwards so
  the next `get()` reads the file again.
"""

from __future__ import annotations

import hashlib
import logging
import re
from collections import OrderedDict

from legato.core.codecs import StorageFormat
from legato.core.m3u import M3UPlaylist, parse_m3u, write_m3u
from legato.core.store import TableStore
from legato.core.table import PersistedTable, TableConfig

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 8
DOCUMENT_SAVE_TIMEOUT = 0.5
TABLE_PREFIX = "playlist_"
KEY_DIGEST_LENGTH = 10

_UNSAFE_CHARS = re.compile(r"[^a-z0-9]", re.IGNORECASE)


def cache_key(path: str) -> str:
    """
    Filesystem-safe table name for a playlist path.

    The readable part keeps ASCII letters and digits; the digest of the full
    path keeps names that differ only in other characters apart.

    Example: "/Users/me/Music/Road Trip.m3u" -> "playlist_users_me_music_road_trip_m3u_<digest>"
    """
    key = _UNSAFE_CHARS.sub("_", path).strip("_").lower()
    digest = hashlib.sha256(path.encode("utf-8", "surrogatepass")).hexdigest()[:KEY_DIGEST_LENGTH]
    return f"{TABLE_PREFIX}{key}_{digest}" if key else f"{TABLE_PREFIX}{digest}"


class M3UTransform:
    """Persists a playlist document as M3U text."""

    def load(self, raw: object) -> M3UPlaylist:
        if isinstance(raw, str) and raw.strip():
            try:
                return parse_m3u(raw)
            except Exception as e:
                logger.warning("Failed to parse M3U content: %s", e)
        return M3UPlaylist()

    def save(self, value: M3UPlaylist) -> str:
        try:
            return write_m3u(value)
        except Exception as e:
            logger.error("Failed to write M3U content: %s", e)
            return ""


class PlaylistDocumentCache:
    """
    LRU-bounded map from playlist path to live document.

    Usage:
        cache = PlaylistDocumentCache(m3u_store, capacity=8)
        doc = await cache.get("/music/road trip.m3u")
        doc.set(M3UPlaylist(songs=[...]))
    """

    def __init__(
        self,
        store: TableStore,
        *,
        capacity: int = DEFAULT_CAPACITY,
        save_timeout: float = DOCUMENT_SAVE_TIMEOUT,
    ) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        if store.backend.format is not StorageFormat.M3U:
            raise ValueError("playlist documents need an M3U store")
        self.store = store
        self.capacity = capacity
        self.save_timeout = save_timeout
        self._transform = M3UTransform()
        self._documents: OrderedDict[str, PersistedTable[M3UPlaylist]] = OrderedDict()

    def __len__(self) -> int:
        return len(self._documents)

    def __contains__(self, path: object) -> bool:
        return path in self._documents

    def config_for(self, path: str) -> TableConfig:
        return TableConfig(
            filename=cache_key(path),
            initial_value=M3UPlaylist(),
            format=StorageFormat.M3U,
            preload=False,
            save_timeout=self.save_timeout,
            transform=self._transform,
        )

    async def get(self, path: str) -> PersistedTable[M3UPlaylist]:
        """
        Get or create the live document for a playlist path.

        The entry is inserted before loading, so concurrent callers for the
        same path share one document.
        """
        doc = self._documents.get(path)
        if doc is not None:
            self._documents.move_to_end(path)
            await doc.load()
            return doc

        doc = PersistedTable(self.store, self.config_for(path))
        self._documents[path] = doc
        logger.debug("Opened playlist document %s as %s", path, doc.name)

        while len(self._documents) > self.capacity:
            evicted_path, evicted = self._documents.popitem(last=False)
            logger.debug("Evicting playlist document %s", evicted_path)
            self._forget(evicted)

        await doc.load()
        return doc

    def _forget(self, doc: PersistedTable[M3UPlaylist]) -> None:
        doc.detach()
        self.store.release(doc.name)

    def clear(self, path: str) -> bool:
        """
        Drop one document from the cache. Backing files are untouched.

        Returns:
            True if the path was cached.
        """
        doc = self._documents.pop(path, None)
        if doc is None:
            return False
        self._forget(doc)
        return True

    def clear_all(self) -> None:
        while self._documents:
            _, doc = self._documents.popitem(last=False)
            self._forget(doc)

    def cached_paths(self) -> list[str]:
        """Cached playlist paths, least recently used first."""
        return list(self._documents)
