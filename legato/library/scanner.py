from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable, Iterable, Sequence
from dataclasses import dataclass, replace
from pathlib import Path
from typing import TYPE_CHECKING, Any

from mutagen import File as mutagen_file

from legato.core.m3u import format_seconds_to_duration
from legato.snapshots import DEFAULT_DURATION, UNKNOWN_ARTIST, now_ms
from legato.snapshots.library import LibrarySnapshot, LibraryTrack

if TYPE_CHECKING:
    from legato.snapshots.library import LibraryCache

logger = logging.getLogger(__name__)


# Formats the player can decode; extension-based filtering only.
DEFAULT_AUDIO_EXTENSIONS: frozenset[str] = frozenset(
    {
        ".mp3",
        ".flac",
        ".ogg",
        ".opus",
        ".m4a",
        ".aac",
        ".wav",
        ".aiff",
        ".aif",
    }
)


@dataclass(frozen=True, slots=True)
class TrackTags:
    """
    Metadata read from an audio file.

    Only what the library index shows: title, artist, album and duration.
    """

    title: str
    artist: str | None = None
    album: str | None = None
    duration_seconds: float | None = None


@dataclass(frozen=True, slots=True)
class ScanIssue:
    path: Path
    message: str


@dataclass(frozen=True, slots=True)
class ScanResult:
    roots: tuple[str, ...]
    tracks: list[LibraryTrack]
    issues: list[ScanIssue]
    reused: int = 0


TagExtractor = Callable[[Path], TrackTags]


def _clean_str(value: str | None) -> str | None:
    if value is None:
        return None
    s = value.strip()
    return s if s else None


def _first_text(value: Any) -> str | None:
    """
    Mutagen returns different shapes depending on container/tag type:
    - ID3 frames
    - lists of strings
    - plain strings
    - objects with `.text`
    We normalize to a single string (first item if multiple).
    """
    if value is None:
        return None

    if isinstance(value, (list, tuple)):
        if not value:
            return None
        return _first_text(value[0])

    # ID3 frames carry a `.text` list
    text = getattr(value, "text", None)
    if text is not None:
        return _first_text(text)

    val = getattr(value, "value", None)
    if val is not None:
        return _first_text(val)

    try:
        s = str(value)
    except Exception:
        return None

    return _clean_str(s)


def _tags_get(tags: dict[str, Any] | None, keys: Iterable[str]) -> Any:
    if not tags:
        return None
    for k in keys:
        if k in tags:
            return tags.get(k)
    return None


def extract_tags(path: Path) -> TrackTags:
    """
    Read tags using mutagen.

    Synchronous; the scanner runs it in a worker thread.

    Raises:
        ValueError: mutagen does not recognize the file.
    """
    audio = mutagen_file(path)
    if audio is None:
        raise ValueError("unsupported or unreadable audio file")

    tags: dict[str, Any] | None = None
    if getattr(audio, "tags", None) is not None:
        try:
            tags = dict(audio.tags)
        except Exception:
            # Some tag containers are not directly castable
            tags = audio.tags  # type: ignore[assignment]

    duration: float | None = None
    info = getattr(audio, "info", None)
    length = getattr(info, "length", None)
    if isinstance(length, (int, float)) and length > 0:
        duration = float(length)

    # Keys: ID3=TIT2, Vorbis=title, MP4=©nam
    title = _first_text(_tags_get(tags, ("TIT2", "title", "TITLE", "©nam"))) or path.stem
    # Keys: ID3=TPE1, Vorbis=artist, MP4=©ART
    artist = _first_text(_tags_get(tags, ("TPE1", "artist", "ARTIST", "©ART")))
    # Keys: ID3=TALB, Vorbis=album, MP4=©alb
    album = _first_text(_tags_get(tags, ("TALB", "album", "ALBUM", "©alb")))

    return TrackTags(title=title, artist=artist, album=album, duration_seconds=duration)


async def iter_audio_files(
    root: Path,
    extensions: frozenset[str] = DEFAULT_AUDIO_EXTENSIONS,
    follow_symlinks: bool = False,
) -> AsyncIterator[Path]:
    """
    Asynchronously yields audio file paths under `root`.

    The directory walk runs in a thread to avoid blocking the event loop on
    large trees.

    Raises:
        FileNotFoundError / NotADirectoryError: root is unusable.
    """
    if not root.exists():
        raise FileNotFoundError(root)
    if not root.is_dir():
        raise NotADirectoryError(root)

    def _walk() -> list[Path]:
        paths: list[Path] = []
        for p in root.rglob("*"):
            try:
                if not follow_symlinks and p.is_symlink():
                    continue
                if not p.is_file():
                    continue
                if p.suffix.lower() not in extensions:
                    continue
                paths.append(p)
            except OSError:
                # Unreadable entries are skipped
                continue
        return paths

    paths = await asyncio.to_thread(_walk)
    for p in paths:
        yield p


def _duration_text(seconds: float | None) -> str:
    if seconds is None:
        return DEFAULT_DURATION
    return format_seconds_to_duration(seconds) or DEFAULT_DURATION


def _track_from_tags(root_index: int, relative_path: str, tags: TrackTags) -> LibraryTrack:
    file_name = relative_path.rsplit("/", 1)[-1]
    return LibraryTrack(
        root_index=root_index,
        relative_path=relative_path,
        file_name=file_name,
        title=_clean_str(tags.title) or file_name,
        artist=_clean_str(tags.artist) or UNKNOWN_ARTIST,
        duration=_duration_text(tags.duration_seconds),
        album=_clean_str(tags.album),
    )


async def scan_library_roots(
    roots: Sequence[str | Path],
    *,
    cached: LibrarySnapshot | None = None,
    extensions: frozenset[str] = DEFAULT_AUDIO_EXTENSIONS,
    max_concurrency: int = 8,
    extract: TagExtractor = extract_tags,
) -> ScanResult:
    """
    Scan library roots for audio files and build library track records.

    Tracks already present in `cached` (same root path and relative path)
    are reused without reading their tags again.

    Concurrency:
    - filesystem walk: runs in a thread
    - tag extraction: bounded concurrency using threads via asyncio.to_thread

    Per-file and per-root failures are collected as issues, never raised.
    """
    root_paths = [Path(r) for r in roots]
    root_names = tuple(str(r) for r in root_paths)

    known: dict[tuple[str, str], LibraryTrack] = {}
    if cached is not None:
        for track in cached.tracks:
            if 0 <= track.root_index < len(cached.roots):
                known[(str(Path(cached.roots[track.root_index])), track.relative_path)] = track

    semaphore = asyncio.Semaphore(max(1, max_concurrency))
    tracks: list[LibraryTrack] = []
    issues: list[ScanIssue] = []
    reused = 0

    async def _process(root_index: int, path: Path, relative_path: str) -> None:
        async with semaphore:
            try:
                tags = await asyncio.to_thread(extract, path)
            except Exception as e:  # noqa: BLE001 - one bad file must not stop the scan
                msg = f"{type(e).__name__}: {e}"
                issues.append(ScanIssue(path=path, message=msg))
                logger.debug("Scan issue for %s: %s", path, msg)
                return
            tracks.append(_track_from_tags(root_index, relative_path, tags))

    tasks: list[asyncio.Task[None]] = []
    for root_index, root in enumerate(root_paths):
        try:
            async for path in iter_audio_files(root, extensions):
                relative_path = path.relative_to(root).as_posix()
                previous = known.get((root_names[root_index], relative_path))
                if previous is not None:
                    if previous.root_index != root_index:
                        previous = replace(previous, root_index=root_index)
                    tracks.append(previous)
                    reused += 1
                    continue
                tasks.append(asyncio.create_task(_process(root_index, path, relative_path)))
        except OSError as e:
            issues.append(ScanIssue(path=root, message=f"{type(e).__name__}: {e}"))
            logger.warning("Cannot scan library root %s: %s", root, e)

    if tasks:
        await asyncio.gather(*tasks)

    tracks.sort(key=lambda t: (t.root_index, t.relative_path.lower()))
    logger.info(
        "Scanned %d roots: %d tracks (%d reused), %d issues",
        len(root_paths),
        len(tracks),
        reused,
        len(issues),
    )
    return ScanResult(roots=root_names, tracks=tracks, issues=issues, reused=reused)


async def rescan_library(
    cache: LibraryCache,
    roots: Sequence[str | Path],
    **options: Any,
) -> ScanResult:
    """
    Scan the roots and persist the result as the library snapshot.

    The snapshot is marked as scanning while the scan runs.
    """
    previous = await cache.load()
    cache.persist_snapshot(previous, isScanning=True)

    try:
        result = await scan_library_roots(roots, cached=previous, **options)
    except BaseException:
        cache.persist_snapshot(previous, isScanning=False)
        raise

    cache.persist_snapshot(
        roots=list(result.roots),
        tracks=[t.to_dict() for t in result.tracks],
        isScanning=False,
        lastScanTime=now_ms(),
    )
    return result
