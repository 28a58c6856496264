"""
Local playlist files.

User playlists are plain `.m3u` files in the application's playlists
directory. Files registered from elsewhere (e.g. opened from the file
manager) are listed too, but are read-only.

Design decisions:
- The directory is the source of truth; `refresh()` re-reads it and the
  in-memory list is only a view.
- Playlist ids are file paths, so a rename changes the id.
- Track paths are compared case-insensitively when de-duplicating.
- All file I/O runs in a worker thread via `asyncio.to_thread`.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Literal
from urllib.parse import unquote, urlparse

from legato.core import PlaylistError, PlaylistNotFoundError, PlaylistReadOnlyError
from legato.core.backend import ensure_directory_chain
from legato.core.m3u import UNKNOWN_DURATION, M3UPlaylist, M3UTrack, parse_m3u, write_m3u

if TYPE_CHECKING:
    from legato.playlists.content import PlaylistDocumentCache

logger = logging.getLogger(__name__)

PLAYLIST_EXTENSION = ".m3u"
DEFAULT_PLAYLIST_NAME = "New Playlist"
MAX_NAME_ATTEMPTS = 50

PlaylistSource = Literal["cache", "external"]

_UNSAFE_FILE_CHARS = re.compile(r'[\\/:*?"<>|\x00-\x1f]')


@dataclass(frozen=True, slots=True)
class LocalPlaylist:
    """A playlist file and the track paths it lists."""

    id: str
    name: str
    file_path: str
    track_paths: tuple[str, ...] = ()
    source: PlaylistSource = "cache"

    @property
    def track_count(self) -> int:
        return len(self.track_paths)

    @property
    def editable(self) -> bool:
        return self.source == "cache" and bool(self.file_path)


def to_file_path(value: str) -> str:
    """Convert a `file://` URI to a plain path; other values pass through."""
    if not value.startswith("file://"):
        return value
    parsed = urlparse(value)
    if parsed.scheme != "file":
        return value
    return unquote(parsed.path)


def sanitize_playlist_file_name(name: str) -> str:
    """File name stem for a playlist name (characters invalid in file names replaced)."""
    cleaned = _UNSAFE_FILE_CHARS.sub("_", name).strip().strip(".")
    return cleaned or DEFAULT_PLAYLIST_NAME


def read_playlist_file(path: Path, source: PlaylistSource = "cache") -> LocalPlaylist:
    """Read a playlist file (blocking)."""
    content = path.read_text(encoding="utf-8", errors="replace")
    document = parse_m3u(content)
    track_paths = tuple(
        to_file_path(track.file_path) for track in (*document.songs, *document.suggestions)
    )
    file_path = str(path)
    return LocalPlaylist(
        id=file_path,
        name=re.sub(r"\.m3u$", "", path.name, flags=re.IGNORECASE),
        file_path=file_path,
        track_paths=track_paths,
        source=source,
    )


def write_playlist_file(path: Path, track_paths: Iterable[str]) -> None:
    """Write track paths as an M3U playlist (blocking)."""
    songs = [
        M3UTrack(duration=UNKNOWN_DURATION, title=p.rsplit("/", 1)[-1] or p, file_path=p)
        for p in track_paths
    ]
    ensure_directory_chain(path.parent)
    path.write_text(write_m3u(M3UPlaylist(songs=songs)), encoding="utf-8")


class LocalPlaylists:
    """
    Manages the playlist files of one playlists directory.

    Usage:
        playlists = LocalPlaylists(cache_dir / "playlists")
        await playlists.refresh()
        created = await playlists.create("Road Trip")
        await playlists.add_tracks(created.id, ["/music/a.mp3"])
    """

    def __init__(
        self,
        directory: Path,
        documents: PlaylistDocumentCache | None = None,
    ) -> None:
        self.directory = Path(directory)
        self.documents = documents
        self._external: list[Path] = []
        self._playlists: list[LocalPlaylist] = []

    @property
    def playlists(self) -> list[LocalPlaylist]:
        """Playlists found by the last refresh, sorted by name."""
        return list(self._playlists)

    def register_external(self, path: str | Path) -> None:
        """List a playlist file from outside the playlists directory (read-only)."""
        resolved = Path(to_file_path(str(path)))
        if resolved not in self._external:
            self._external.append(resolved)

    # ===========================================================================
    # Listing
    # ===========================================================================

    async def refresh(self) -> list[LocalPlaylist]:
        """Re-read the playlists directory and registered external files."""
        self._playlists = await asyncio.to_thread(self._scan)
        logger.debug("Loaded %d playlists from %s", len(self._playlists), self.directory)
        return self.playlists

    def _scan(self) -> list[LocalPlaylist]:
        try:
            ensure_directory_chain(self.directory)
            entries = list(self.directory.iterdir())
        except OSError as e:
            logger.error("Failed to list playlists directory %s: %s", self.directory, e)
            entries = []

        found: list[LocalPlaylist] = []
        candidates: list[tuple[Path, PlaylistSource]] = [
            (entry, "cache")
            for entry in entries
            if entry.is_file() and entry.name.lower().endswith(PLAYLIST_EXTENSION)
        ]
        candidates.extend((path, "external") for path in self._external if path.is_file())

        for path, source in candidates:
            try:
                found.append(read_playlist_file(path, source))
            except OSError as e:
                logger.warning("Failed to read playlist %s: %s", path, e)

        found.sort(key=lambda p: p.name.casefold())
        return found

    def get(self, playlist_id: str) -> LocalPlaylist:
        """
        Look up a playlist by id.

        Raises:
            PlaylistNotFoundError: No playlist has this id.
        """
        wanted = unquote(to_file_path(playlist_id))
        for playlist in self._playlists:
            if unquote(playlist.id) == wanted:
                return playlist
        raise PlaylistNotFoundError("Playlist not found")

    def _editable(self, playlist_id: str) -> LocalPlaylist:
        playlist = self.get(playlist_id)
        if not playlist.editable:
            raise PlaylistReadOnlyError("Playlist is read-only")
        return playlist

    # ===========================================================================
    # Mutations
    # ===========================================================================

    def _unique_file(
        self, directory: Path, desired_name: str, current: Path | None = None
    ) -> tuple[Path, str]:
        base_name = desired_name.strip() or DEFAULT_PLAYLIST_NAME
        for attempt in range(MAX_NAME_ATTEMPTS):
            resolved_name = base_name if attempt == 0 else f"{base_name} ({attempt + 1})"
            candidate = directory / f"{sanitize_playlist_file_name(resolved_name)}{PLAYLIST_EXTENSION}"
            if not candidate.exists() or (current is not None and candidate == current):
                return candidate, resolved_name
        raise PlaylistError(
            f'Unable to create playlist: too many existing playlists named "{base_name}"'
        )

    async def create(self, name: str, track_paths: Iterable[str] = ()) -> LocalPlaylist:
        """Create a new playlist file with a unique name."""
        paths = [to_file_path(p) for p in track_paths if p]

        def _create() -> Path:
            ensure_directory_chain(self.directory)
            path, _ = self._unique_file(self.directory, name)
            write_playlist_file(path, paths)
            return path

        path = await asyncio.to_thread(_create)
        logger.info("Created playlist %s", path)
        await self.refresh()
        return self.get(str(path))

    async def add_tracks(
        self, playlist_id: str, track_paths: Iterable[str], *, dedupe: bool = True
    ) -> tuple[list[str], LocalPlaylist]:
        """
        Append tracks to an editable playlist.

        Returns:
            (paths actually added, the refreshed playlist)

        Raises:
            PlaylistNotFoundError, PlaylistReadOnlyError
        """
        playlist = self._editable(playlist_id)

        existing = {to_file_path(p).lower() for p in playlist.track_paths}
        next_paths = list(playlist.track_paths)
        added: list[str] = []
        for raw_path in track_paths:
            path = to_file_path(raw_path)
            if not path:
                continue
            key = path.lower()
            if dedupe and key in existing:
                continue
            existing.add(key)
            next_paths.append(path)
            added.append(path)

        if added:
            await asyncio.to_thread(write_playlist_file, Path(playlist.file_path), next_paths)
            self._forget_document(playlist.file_path)
            await self.refresh()

        return added, self.get(playlist.id)

    async def rename(self, playlist_id: str, name: str) -> LocalPlaylist | None:
        """
        Rename an editable playlist (its file, and therefore its id).

        Returns:
            The renamed playlist, or None when nothing changed.
        """
        playlist = self._editable(playlist_id)
        trimmed = name.strip()
        if not trimmed or trimmed == playlist.name:
            return None

        current = Path(playlist.file_path)

        def _rename() -> Path | None:
            if not current.exists():
                raise PlaylistNotFoundError("Playlist file not found")
            target, _ = self._unique_file(current.parent, trimmed, current)
            if target == current:
                return None
            content = current.read_bytes()
            target.write_bytes(content)
            current.unlink()
            return target

        target = await asyncio.to_thread(_rename)
        if target is None:
            return None

        logger.info("Renamed playlist %s -> %s", current, target)
        self._forget_document(playlist.file_path)
        await self.refresh()
        return self.get(str(target))

    async def delete(self, playlist_id: str) -> None:
        playlist = self._editable(playlist_id)
        path = Path(playlist.file_path)

        def _unlink() -> None:
            try:
                path.unlink()
            except FileNotFoundError:
                pass

        await asyncio.to_thread(_unlink)
        logger.info("Deleted playlist %s", path)
        self._forget_document(playlist.file_path)
        await self.refresh()

    async def export(self, playlist_id: str, directory: Path | None = None) -> Path:
        """Write a playlist (editable or not) to `<directory>/<name>.m3u`."""
        playlist = self.get(playlist_id)
        target_dir = Path(directory) if directory is not None else self.directory
        target = target_dir / f"{sanitize_playlist_file_name(playlist.name)}{PLAYLIST_EXTENSION}"
        await asyncio.to_thread(write_playlist_file, target, playlist.track_paths)
        logger.info("Exported playlist %s to %s", playlist.name, target)
        return target

    async def duplicate(self, playlist_id: str, name: str | None = None) -> LocalPlaylist:
        """Copy any playlist into the playlists directory as a new editable playlist."""
        playlist = self.get(playlist_id)
        new_name = (name or "").strip() or playlist.name
        return await self.create(new_name, playlist.track_paths)

    def _forget_document(self, file_path: str) -> None:
        if self.documents is not None:
            self.documents.clear(file_path)
