"""
Library index snapshot.

The library snapshot caches the result of scanning the user's music folders
so the library is available instantly at startup:

    {version, updatedAt, roots, tracks, isScanning, lastScanTime}

Tracks are stored relative to one of the `roots` (`rootIndex` +
`relativePath`), which keeps the snapshot small and lets a moved music folder
be re-rooted without rewriting every track.

Schema history:
- v2 stored absolute `filePath` (or `id`) per track and no roots.
- v3 stores `roots` and `rootIndex`/`relativePath` per track; some v3
  writers used the short keys `root`/`rel`.

The sanitizer accepts all of these and always returns v3.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any

from legato.core.codecs import StorageFormat
from legato.core.table import PersistedTable, TableConfig
from legato.snapshots import (
    DEFAULT_DURATION,
    UNKNOWN_ARTIST,
    as_mapping,
    duration_text,
    file_name_of,
    int_or_none,
    now_ms,
    text_or_none,
    timestamp_or_none,
)

logger = logging.getLogger(__name__)

LIBRARY_CACHE_VERSION = 3
LIBRARY_CACHE_TABLE = "libraryCache"

# Files written by older releases that are no longer read
LEGACY_LIBRARY_CACHE_FILES: tuple[str, ...] = ("libraryCache.json",)


@dataclass(frozen=True, slots=True)
class LibraryTrack:
    """A track of the library index, addressed relative to a library root."""

    root_index: int
    relative_path: str
    file_name: str
    title: str
    artist: str
    duration: str = DEFAULT_DURATION
    album: str | None = None
    thumbnail: str | None = None
    thumbnail_key: str | None = None

    def absolute_path(self, roots: tuple[str, ...] | list[str]) -> str:
        """Join the track's root and relative path."""
        if self.relative_path.startswith("/"):
            return self.relative_path
        if not 0 <= self.root_index < len(roots):
            return self.relative_path
        root = roots[self.root_index]
        if root.endswith("/"):
            return f"{root}{self.relative_path}"
        return f"{root}/{self.relative_path}"

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "rootIndex": self.root_index,
            "relativePath": self.relative_path,
            "fileName": self.file_name,
            "title": self.title,
            "artist": self.artist,
            "duration": self.duration,
        }
        if self.album is not None:
            result["album"] = self.album
        if self.thumbnail is not None:
            result["thumbnail"] = self.thumbnail
        if self.thumbnail_key is not None:
            result["thumbnailKey"] = self.thumbnail_key
        return result


@dataclass(frozen=True, slots=True)
class LibrarySnapshot:
    version: int
    updated_at: int
    roots: tuple[str, ...] = ()
    tracks: tuple[LibraryTrack, ...] = ()
    is_scanning: bool = False
    last_scan_time: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "updatedAt": self.updated_at,
            "roots": list(self.roots),
            "tracks": [t.to_dict() for t in self.tracks],
            "isScanning": self.is_scanning,
            "lastScanTime": self.last_scan_time,
        }


def default_library_snapshot(updated_at: int = 0) -> LibrarySnapshot:
    return LibrarySnapshot(version=LIBRARY_CACHE_VERSION, updated_at=updated_at)


def derive_thumbnail_key(thumbnail: str | None) -> str | None:
    """
    Best-effort thumbnail cache key from a thumbnail URI.

    Uses the last path component without its final extension, so
    "file:///cache/thumbnails/ab12.png" gives "ab12". Names with several dots
    keep everything before the last one.
    """
    if not thumbnail:
        return None
    name = thumbnail.split("?", 1)[0].rstrip("/").rsplit("/", 1)[-1]
    key = re.sub(r"\.[^.]*$", "", name)
    return key or None


def _normalize_root(root: str) -> str:
    return root.rstrip("/") or "/"


def _relative_to_roots(path: str, roots: tuple[str, ...]) -> tuple[int, str] | None:
    """Locate an absolute path under one of the roots (longest root wins)."""
    best: tuple[int, str] | None = None
    best_len = -1
    for index, root in enumerate(roots):
        prefix = _normalize_root(root)
        prefix = prefix if prefix.endswith("/") else f"{prefix}/"
        if path.startswith(prefix) and len(prefix) > best_len:
            best = (index, path[len(prefix) :])
            best_len = len(prefix)
    return best


def sanitize_library_track(raw: Any, roots: tuple[str, ...]) -> LibraryTrack | None:
    """
    Normalize one track record.

    Returns:
        The track, or None when no relative path can be established.
    """
    data = as_mapping(raw)

    relative_path = text_or_none(data.get("relativePath")) or text_or_none(data.get("rel"))
    root_index = int_or_none(data.get("rootIndex"))
    if root_index is None:
        root_index = int_or_none(data.get("root"))

    if relative_path is None:
        # v2 records carried an absolute path
        legacy_path = text_or_none(data.get("filePath")) or text_or_none(data.get("id"))
        located = _relative_to_roots(legacy_path, roots) if legacy_path else None
        if located is None:
            return None
        root_index, relative_path = located
        if not relative_path:
            return None

    if root_index is None or not 0 <= root_index < len(roots):
        root_index = 0

    file_name = text_or_none(data.get("fileName")) or file_name_of(relative_path)
    thumbnail = text_or_none(data.get("thumbnail"))
    thumbnail_key = text_or_none(data.get("thumbnailKey")) or derive_thumbnail_key(thumbnail)

    return LibraryTrack(
        root_index=root_index,
        relative_path=relative_path,
        file_name=file_name,
        title=text_or_none(data.get("title")) or file_name,
        artist=text_or_none(data.get("artist")) or UNKNOWN_ARTIST,
        duration=duration_text(data.get("duration")),
        album=text_or_none(data.get("album")),
        thumbnail=thumbnail,
        thumbnail_key=thumbnail_key,
    )


def sanitize_library_snapshot(raw: Any) -> LibrarySnapshot:
    """
    Turn arbitrary input into a current-version library snapshot.

    Idempotent: sanitizing a sanitized snapshot returns an equal snapshot.
    Unknown fields are dropped; tracks without a path are discarded.
    """
    data = as_mapping(raw)

    raw_roots = data.get("roots")
    roots: tuple[str, ...] = ()
    if isinstance(raw_roots, list | tuple):
        roots = tuple(r for r in raw_roots if isinstance(r, str) and r)

    raw_tracks = data.get("tracks")
    tracks: list[LibraryTrack] = []
    if isinstance(raw_tracks, list | tuple):
        for item in raw_tracks:
            track = sanitize_library_track(item, roots)
            if track is not None:
                tracks.append(track)

    updated_at = timestamp_or_none(data.get("updatedAt"))

    return LibrarySnapshot(
        version=LIBRARY_CACHE_VERSION,
        updated_at=now_ms() if updated_at is None else updated_at,
        roots=roots,
        tracks=tuple(tracks),
        is_scanning=bool(data.get("isScanning")),
        last_scan_time=timestamp_or_none(data.get("lastScanTime")),
    )


class LibraryCache:
    """
    Entry points for reading and persisting the library snapshot.

    The snapshot is stored as MessagePack, written without debounce delay
    (it is large and rarely written) and loaded lazily.
    """

    def __init__(self, table: PersistedTable[Any]) -> None:
        self.table = table

    @staticmethod
    def table_config() -> TableConfig:
        return TableConfig(
            filename=LIBRARY_CACHE_TABLE,
            initial_value=default_library_snapshot().to_dict(),
            format=StorageFormat.MSGPACK,
            preload=False,
            save_timeout=0,
        )

    async def load(self) -> LibrarySnapshot:
        await self.table.load()
        return self.get_snapshot()

    def get_snapshot(self) -> LibrarySnapshot:
        """Current persisted snapshot, sanitized."""
        raw = self.table.get()
        if not raw:
            return default_library_snapshot()
        return sanitize_library_snapshot(raw)

    def persist_snapshot(self, snapshot: Any = None, **fields: Any) -> LibrarySnapshot:
        """
        Replace the persisted snapshot.

        Fields are merged over the defaults (not over the current snapshot)
        and `updatedAt` is always stamped with the current time.

        Args:
            snapshot: A LibrarySnapshot or mapping with the fields to persist.
            **fields: Persisted-shape fields overriding `snapshot`
                (e.g. `tracks=[...]`, `isScanning=False`).

        Returns:
            The sanitized snapshot that was written.
        """
        merged = default_library_snapshot().to_dict()
        merged.update(as_mapping(snapshot))
        merged.update(fields)
        merged["updatedAt"] = now_ms()

        sanitized = sanitize_library_snapshot(merged)
        self.table.set(sanitized.to_dict())
        logger.debug(
            "Persisted library snapshot: %d tracks in %d roots",
            len(sanitized.tracks),
            len(sanitized.roots),
        )
        return sanitized

    def clear_cache(self) -> LibrarySnapshot:
        """Reset the snapshot to the versioned defaults with a fresh timestamp."""
        snapshot = default_library_snapshot(updated_at=now_ms())
        self.table.set(snapshot.to_dict())
        return snapshot

    def has_cached_data(self) -> bool:
        return len(self.get_snapshot().tracks) > 0
