"""
Play queue snapshot.

Persisted shape:

    {version, updatedAt, queue: [{filePath, title, artist, duration, album?, thumbnail?}],
     currentIndex, isPlaying}

Entries written by v1 used `id` for the file path; it is still accepted.
"""

from __future__ import annotations

import logging
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

QUEUE_CACHE_VERSION = 2
QUEUE_CACHE_TABLE = "playlistCache"


@dataclass(frozen=True, slots=True)
class QueueEntry:
    file_path: str
    title: str
    artist: str = UNKNOWN_ARTIST
    duration: str = DEFAULT_DURATION
    album: str | None = None
    thumbnail: str | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "filePath": self.file_path,
            "title": self.title,
            "artist": self.artist,
            "duration": self.duration,
        }
        if self.album is not None:
            result["album"] = self.album
        if self.thumbnail is not None:
            result["thumbnail"] = self.thumbnail
        return result


@dataclass(frozen=True, slots=True)
class QueueSnapshot:
    version: int
    updated_at: int
    queue: tuple[QueueEntry, ...] = ()
    current_index: int = -1
    is_playing: bool = False

    @property
    def current(self) -> QueueEntry | None:
        if 0 <= self.current_index < len(self.queue):
            return self.queue[self.current_index]
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "updatedAt": self.updated_at,
            "queue": [e.to_dict() for e in self.queue],
            "currentIndex": self.current_index,
            "isPlaying": self.is_playing,
        }


def default_queue_snapshot(updated_at: int = 0) -> QueueSnapshot:
    return QueueSnapshot(version=QUEUE_CACHE_VERSION, updated_at=updated_at)


def sanitize_queue_entry(raw: Any) -> QueueEntry | None:
    """Normalize one queue entry; None when it has no file path."""
    data = as_mapping(raw)
    file_path = text_or_none(data.get("filePath")) or text_or_none(data.get("id"))
    if file_path is None:
        return None

    return QueueEntry(
        file_path=file_path,
        title=text_or_none(data.get("title")) or file_name_of(file_path),
        artist=text_or_none(data.get("artist")) or UNKNOWN_ARTIST,
        duration=duration_text(data.get("duration")),
        album=text_or_none(data.get("album")),
        thumbnail=text_or_none(data.get("thumbnail")),
    )


def _clamp_index(value: Any, length: int) -> int:
    if length == 0:
        return -1
    index = int_or_none(value)
    if index is None:
        return 0
    return min(max(index, 0), length - 1)


def sanitize_queue_snapshot(raw: Any) -> QueueSnapshot:
    """
    Turn arbitrary input into a current-version queue snapshot.

    Invariants of the result:
    - `currentIndex` is within the queue, or -1 when the queue is empty.
    - `isPlaying` is False whenever the queue is empty.
    """
    data = as_mapping(raw)

    raw_queue = data.get("queue")
    entries: list[QueueEntry] = []
    if isinstance(raw_queue, list | tuple):
        for item in raw_queue:
            entry = sanitize_queue_entry(item)
            if entry is not None:
                entries.append(entry)

    updated_at = timestamp_or_none(data.get("updatedAt"))

    return QueueSnapshot(
        version=QUEUE_CACHE_VERSION,
        updated_at=now_ms() if updated_at is None else updated_at,
        queue=tuple(entries),
        current_index=_clamp_index(data.get("currentIndex"), len(entries)),
        is_playing=bool(data.get("isPlaying")) and len(entries) > 0,
    )


class QueueCache:
    """
    Entry points for reading and persisting the play queue snapshot.

    Stored as MessagePack, written on the next loop turn, loaded lazily.
    """

    def __init__(self, table: PersistedTable[Any]) -> None:
        self.table = table

    @staticmethod
    def table_config() -> TableConfig:
        return TableConfig(
            filename=QUEUE_CACHE_TABLE,
            initial_value=default_queue_snapshot().to_dict(),
            format=StorageFormat.MSGPACK,
            preload=False,
            save_timeout=0,
        )

    async def load(self) -> QueueSnapshot:
        await self.table.load()
        return self.get_snapshot()

    def get_snapshot(self) -> QueueSnapshot:
        raw = self.table.get()
        if not raw:
            return default_queue_snapshot()
        return sanitize_queue_snapshot(raw)

    def persist_snapshot(self, snapshot: Any = None, **fields: Any) -> QueueSnapshot:
        """
        Replace the persisted queue.

        Args:
            snapshot: A QueueSnapshot or mapping (`queue`, `currentIndex`, `isPlaying`).
            **fields: Persisted-shape fields overriding `snapshot`.

        Returns:
            The sanitized snapshot that was written.
        """
        merged = default_queue_snapshot().to_dict()
        merged.update(as_mapping(snapshot))
        merged.update(fields)
        merged["updatedAt"] = now_ms()

        sanitized = sanitize_queue_snapshot(merged)
        self.table.set(sanitized.to_dict())
        logger.debug(
            "Persisted queue snapshot: %d entries, index %d",
            len(sanitized.queue),
            sanitized.current_index,
        )
        return sanitized

    def clear_cache(self) -> QueueSnapshot:
        snapshot = default_queue_snapshot(updated_at=now_ms())
        self.table.set(snapshot.to_dict())
        return snapshot

    def has_cached_data(self) -> bool:
        return len(self.get_snapshot().queue) > 0
