"""
Tests for the library and play queue snapshots.

These tests verify:
- Sanitizers accept legacy and malformed input and are idempotent
- Queue index and playing-state invariants
- Persisting, clearing and reloading through MessagePack tables
"""

from __future__ import annotations

from pathlib import Path

import msgpack
import pytest

from legato.core.backend import FileBackend
from legato.core.codecs import StorageFormat
from legato.core.store import TableStore
from legato.core.table import PersistedTable
from legato.snapshots import duration_text, timestamp_or_none
from legato.snapshots.library import (
    LIBRARY_CACHE_VERSION,
    LibraryCache,
    LibraryTrack,
    derive_thumbnail_key,
    sanitize_library_snapshot,
)
from legato.snapshots.queue import (
    QUEUE_CACHE_VERSION,
    QueueCache,
    QueueEntry,
    sanitize_queue_snapshot,
)

# =============================================================================
# Helpers
# =============================================================================


class TestHelpers:
    def test_duration_text(self) -> None:
        assert duration_text("3:45") == "3:45"
        assert duration_text(225) == "3:45"
        assert duration_text(None) == "0:00"
        assert duration_text("") == "0:00"
        assert duration_text(-5) == "0:00"

    def test_timestamp(self) -> None:
        assert timestamp_or_none(1700000000000.7) == 1700000000000
        assert timestamp_or_none(True) is None
        assert timestamp_or_none("123") is None
        assert timestamp_or_none(float("nan")) is None


# =============================================================================
# Library snapshot
# =============================================================================


class TestLibrarySanitizer:
    """Tests for sanitize_library_snapshot."""

    def test_garbage_input_gives_empty_snapshot(self) -> None:
        for raw in (None, 42, "text", [1, 2]):
            snapshot = sanitize_library_snapshot(raw)
            assert snapshot.version == LIBRARY_CACHE_VERSION
            assert snapshot.roots == ()
            assert snapshot.tracks == ()
            assert snapshot.is_scanning is False
            assert snapshot.last_scan_time is None

    def test_current_schema(self) -> None:
        snapshot = sanitize_library_snapshot(
            {
                "version": 3,
                "updatedAt": 1000,
                "roots": ["/music", "", 7, "/other"],
                "tracks": [
                    {
                        "rootIndex": 1,
                        "relativePath": "a/b.mp3",
                        "title": "B",
                        "artist": "X",
                        "duration": "2:00",
                        "album": "Alb",
                    }
                ],
                "isScanning": 1,
                "lastScanTime": 900,
                "unknown": "dropped",
            }
        )

        assert snapshot.roots == ("/music", "/other")
        assert snapshot.updated_at == 1000
        assert snapshot.is_scanning is True
        assert snapshot.last_scan_time == 900
        assert snapshot.tracks == (
            LibraryTrack(
                root_index=1,
                relative_path="a/b.mp3",
                file_name="b.mp3",
                title="B",
                artist="X",
                duration="2:00",
                album="Alb",
            ),
        )
        assert "unknown" not in snapshot.to_dict()

    def test_tracks_without_relative_path_are_dropped(self) -> None:
        """A track with an empty relative path is discarded; the others are kept."""
        snapshot = sanitize_library_snapshot(
            {
                "roots": ["/music"],
                "tracks": [
                    {"rootIndex": 0, "relativePath": "keep.mp3"},
                    {"rootIndex": 0, "relativePath": ""},
                    {"title": "no path at all"},
                    "not a record",
                ],
            }
        )

        assert [t.relative_path for t in snapshot.tracks] == ["keep.mp3"]

    def test_short_keys(self) -> None:
        snapshot = sanitize_library_snapshot(
            {"roots": ["/a", "/b"], "tracks": [{"root": 1, "rel": "x.flac"}]}
        )
        track = snapshot.tracks[0]

        assert (track.root_index, track.relative_path) == (1, "x.flac")
        assert track.title == "x.flac"
        assert track.artist == "Unknown Artist"
        assert track.duration == "0:00"

    def test_legacy_absolute_paths(self) -> None:
        """v2 tracks with absolute paths are re-rooted; the longest root wins."""
        snapshot = sanitize_library_snapshot(
            {
                "roots": ["/music", "/music/rock/"],
                "tracks": [
                    {"filePath": "/music/jazz/a.mp3"},
                    {"id": "/music/rock/b.mp3"},
                    {"filePath": "/elsewhere/c.mp3"},
                ],
            }
        )

        assert [(t.root_index, t.relative_path) for t in snapshot.tracks] == [
            (0, "jazz/a.mp3"),
            (1, "b.mp3"),
        ]
        assert snapshot.tracks[1].absolute_path(snapshot.roots) == "/music/rock/b.mp3"

    def test_out_of_range_root_index_resets(self) -> None:
        snapshot = sanitize_library_snapshot(
            {"roots": ["/music"], "tracks": [{"rootIndex": 5, "relativePath": "a.mp3"}]}
        )
        assert snapshot.tracks[0].root_index == 0

    def test_thumbnail_key_is_derived(self) -> None:
        snapshot = sanitize_library_snapshot(
            {
                "roots": ["/m"],
                "tracks": [{"relativePath": "a.mp3", "thumbnail": "file:///cache/ab12.png"}],
            }
        )
        assert snapshot.tracks[0].thumbnail_key == "ab12"

    def test_missing_timestamp_is_stamped(self) -> None:
        assert sanitize_library_snapshot({}).updated_at > 0

    def test_idempotent(self) -> None:
        raw = {
            "updatedAt": 5,
            "roots": ["/music"],
            "tracks": [{"filePath": "/music/a.mp3", "duration": 61, "thumbnail": "x/y.jpg"}],
            "isScanning": "yes",
        }
        once = sanitize_library_snapshot(raw)
        twice = sanitize_library_snapshot(once.to_dict())

        assert twice == once


class TestDeriveThumbnailKey:
    @pytest.mark.parametrize(
        ("uri", "expected"),
        [
            ("file:///cache/thumbnails/ab12.png", "ab12"),
            ("/cache/cover.art.jpg", "cover.art"),
            ("https://host/img/abc.webp?size=2", "abc"),
            ("noext", "noext"),
            ("", None),
            (None, None),
        ],
    )
    def test_derive(self, uri: str | None, expected: str | None) -> None:
        assert derive_thumbnail_key(uri) == expected


# =============================================================================
# Queue snapshot
# =============================================================================


class TestQueueSanitizer:
    """Tests for sanitize_queue_snapshot."""

    def test_empty_queue_is_not_playing(self) -> None:
        snapshot = sanitize_queue_snapshot({"queue": [], "currentIndex": 3, "isPlaying": True})

        assert snapshot.current_index == -1
        assert snapshot.is_playing is False
        assert snapshot.current is None

    def test_index_is_clamped(self) -> None:
        queue = [{"filePath": "/a.mp3"}, {"filePath": "/b.mp3"}]

        assert sanitize_queue_snapshot({"queue": queue, "currentIndex": 9}).current_index == 1
        assert sanitize_queue_snapshot({"queue": queue, "currentIndex": -4}).current_index == 0
        assert sanitize_queue_snapshot({"queue": queue, "currentIndex": "x"}).current_index == 0

    def test_legacy_id_and_defaults(self) -> None:
        snapshot = sanitize_queue_snapshot(
            {"queue": [{"id": "/music/Song.mp3"}, {"title": "no path"}], "isPlaying": True}
        )

        assert snapshot.queue == (QueueEntry(file_path="/music/Song.mp3", title="Song.mp3"),)
        assert snapshot.is_playing is True
        assert snapshot.current == snapshot.queue[0]

    def test_idempotent(self) -> None:
        once = sanitize_queue_snapshot(
            {
                "updatedAt": 1,
                "queue": [{"filePath": "/a.mp3", "duration": 100, "album": "A"}],
                "currentIndex": 7,
                "isPlaying": 1,
            }
        )
        assert sanitize_queue_snapshot(once.to_dict()) == once
        assert once.version == QUEUE_CACHE_VERSION


# =============================================================================
# Persistence
# =============================================================================


@pytest.fixture
async def msgpack_store(tmp_path: Path) -> TableStore:
    store = TableStore(FileBackend(tmp_path, StorageFormat.MSGPACK), save_timeout=0)
    await store.initialize()
    yield store
    await store.aclose()


class TestLibraryCache:
    async def test_empty_cache(self, msgpack_store: TableStore) -> None:
        cache = LibraryCache(PersistedTable(msgpack_store, LibraryCache.table_config()))

        snapshot = await cache.load()

        assert snapshot.tracks == ()
        assert not cache.has_cached_data()

    async def test_persist_and_reload(self, msgpack_store: TableStore, tmp_path: Path) -> None:
        cache = LibraryCache(PersistedTable(msgpack_store, LibraryCache.table_config()))

        written = cache.persist_snapshot(
            roots=["/music"],
            tracks=[{"rootIndex": 0, "relativePath": "a.mp3", "title": "A"}],
        )
        await msgpack_store.flush()

        assert cache.has_cached_data()
        assert written.updated_at > 0

        raw = msgpack.unpackb((tmp_path / "libraryCache.lgh").read_bytes(), raw=False)
        assert raw["version"] == LIBRARY_CACHE_VERSION
        assert raw["tracks"][0]["relativePath"] == "a.mp3"

        fresh = TableStore(FileBackend(tmp_path, StorageFormat.MSGPACK))
        reloaded = await LibraryCache(PersistedTable(fresh, LibraryCache.table_config())).load()
        assert reloaded == written

    async def test_persist_merges_over_defaults(self, msgpack_store: TableStore) -> None:
        """Fields not given fall back to defaults, not to the previous snapshot."""
        cache = LibraryCache(PersistedTable(msgpack_store, LibraryCache.table_config()))
        cache.persist_snapshot(roots=["/music"], isScanning=True)

        snapshot = cache.persist_snapshot(lastScanTime=5)

        assert snapshot.roots == ()
        assert snapshot.is_scanning is False
        assert snapshot.last_scan_time == 5

    async def test_clear_cache(self, msgpack_store: TableStore) -> None:
        cache = LibraryCache(PersistedTable(msgpack_store, LibraryCache.table_config()))
        cache.persist_snapshot(roots=["/m"], tracks=[{"relativePath": "a.mp3"}])

        cleared = cache.clear_cache()

        assert not cache.has_cached_data()
        assert cleared.updated_at > 0
        assert cache.get_snapshot().version == LIBRARY_CACHE_VERSION


class TestQueueCache:
    async def test_persist_snapshot_object(self, msgpack_store: TableStore, tmp_path: Path) -> None:
        cache = QueueCache(PersistedTable(msgpack_store, QueueCache.table_config()))
        source = sanitize_queue_snapshot(
            {"queue": [{"filePath": "/a.mp3"}, {"filePath": "/b.mp3"}], "currentIndex": 1}
        )

        written = cache.persist_snapshot(source, isPlaying=True)
        await msgpack_store.flush()

        assert written.current_index == 1
        assert written.is_playing is True
        assert (tmp_path / "playlistCache.lgh").exists()

        fresh = TableStore(FileBackend(tmp_path, StorageFormat.MSGPACK))
        reloaded = await QueueCache(PersistedTable(fresh, QueueCache.table_config())).load()
        assert reloaded.current == QueueEntry(file_path="/b.mp3", title="b.mp3")

    async def test_corrupt_file_loads_defaults(self, tmp_path: Path) -> None:
        (tmp_path / "playlistCache.lgh").write_bytes(b"\xc1garbage")
        store = TableStore(FileBackend(tmp_path, StorageFormat.MSGPACK))

        snapshot = await QueueCache(PersistedTable(store, QueueCache.table_config())).load()

        assert snapshot.queue == ()
        assert snapshot.current_index == -1

    async def test_clear(self, msgpack_store: TableStore) -> None:
        cache = QueueCache(PersistedTable(msgpack_store, QueueCache.table_config()))
        cache.persist_snapshot(queue=[{"filePath": "/a.mp3"}])
        assert cache.has_cached_data()

        cache.clear_cache()
        assert not cache.has_cached_data()
