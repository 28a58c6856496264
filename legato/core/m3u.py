"""
Extended M3U playlist codec.

Playlists are stored on disk (and exchanged with other players) in the
extended M3U format:

    #EXTM3U
    #EXTINF:180,Artist A - Song A
    /music/a.mp3

    #EXTGRP:suggestions

    #EXTINF:-1,Song B
    /music/b.mp3

Entries after the `#EXTGRP:` marker belong to the suggestions section.

Design decisions:
- Parsing never raises: malformed lines are skipped, best effort.
- Only the fields we model (duration, artist, title, path) survive a round trip.
- Durations are integer seconds; -1 means "unknown" and is never a valid zero.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import unquote

logger = logging.getLogger(__name__)

HEADER = "#EXTM3U"
EXTINF_PREFIX = "#EXTINF:"
EXTGRP_PREFIX = "#EXTGRP:"
SUGGESTIONS_MARKER = f"{EXTGRP_PREFIX}suggestions"

# Sentinel for "duration not known"
UNKNOWN_DURATION = -1

_EXTINF_RE = re.compile(r"^#EXTINF:(-?[0-9]+),(.*)$")
_DURATION_RE = re.compile(r"([0-9]+):([0-9]{2})")
_ARTIST_SEPARATOR = " - "


@dataclass(frozen=True, slots=True)
class M3UTrack:
    """A single playlist entry."""

    duration: int
    title: str
    file_path: str
    artist: str | None = None

    @property
    def display_title(self) -> str:
        """The `Artist - Title` text written after the duration."""
        if self.artist:
            return f"{self.artist}{_ARTIST_SEPARATOR}{self.title}"
        return self.title

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "duration": self.duration,
            "title": self.title,
            "filePath": self.file_path,
        }
        if self.artist is not None:
            result["artist"] = self.artist
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> M3UTrack:
        duration = data.get("duration", UNKNOWN_DURATION)
        artist = data.get("artist")
        return cls(
            duration=duration if isinstance(duration, int) else UNKNOWN_DURATION,
            title=str(data.get("title", "")),
            file_path=str(data.get("filePath", "")),
            artist=str(artist) if artist is not None else None,
        )


@dataclass
class M3UPlaylist:
    """A playlist document: the main song list plus suggestions."""

    songs: list[M3UTrack] = field(default_factory=list)
    suggestions: list[M3UTrack] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.songs)

    @property
    def is_empty(self) -> bool:
        return not self.songs and not self.suggestions

    def to_dict(self) -> dict[str, Any]:
        return {
            "songs": [t.to_dict() for t in self.songs],
            "suggestions": [t.to_dict() for t in self.suggestions],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> M3UPlaylist:
        return cls(
            songs=[M3UTrack.from_dict(t) for t in data.get("songs", []) if isinstance(t, dict)],
            suggestions=[
                M3UTrack.from_dict(t) for t in data.get("suggestions", []) if isinstance(t, dict)
            ],
        )


def title_from_path(file_path: str) -> str:
    """
    Derive a display title from a file path.

    Takes the last `/` component, drops the final extension and
    percent-decodes the result. Undecodable names are returned as-is.
    """
    filename = file_path.rsplit("/", 1)[-1] or file_path
    name = re.sub(r"\.[^.]*$", "", filename)
    try:
        return unquote(name, errors="strict")
    except UnicodeDecodeError:
        return name


def _split_title_info(info: str) -> tuple[str | None, str]:
    if _ARTIST_SEPARATOR in info:
        artist, title = info.split(_ARTIST_SEPARATOR, 1)
        return artist.strip(), title.strip()
    return None, info


def parse_m3u(content: str) -> M3UPlaylist:
    """
    Parse M3U text into a playlist document.

    Args:
        content: Arbitrary text. Nothing in it can make this function raise.

    Returns:
        The parsed playlist; entries after `#EXTGRP:` go to `suggestions`.
    """
    lines = [line.strip() for line in content.split("\n")]
    lines = [line for line in lines if line]

    playlist = M3UPlaylist()
    target = playlist.songs

    i = 0
    while i < len(lines):
        line = lines[i]

        if line.startswith(EXTGRP_PREFIX):
            target = playlist.suggestions
            i += 1
            continue

        if line.startswith(EXTINF_PREFIX):
            match = _EXTINF_RE.match(line)
            if match is None or i + 1 >= len(lines):
                logger.debug("Skipping malformed EXTINF line %d: %r", i, line)
                i += 1
                continue

            artist, title = _split_title_info(match.group(2).strip())
            target.append(
                M3UTrack(
                    duration=int(match.group(1)),
                    title=title,
                    file_path=lines[i + 1],
                    artist=artist,
                )
            )
            i += 2
            continue

        if line.startswith("#"):
            i += 1
            continue

        # Bare path without EXTINF info
        target.append(
            M3UTrack(duration=UNKNOWN_DURATION, title=title_from_path(line), file_path=line)
        )
        i += 1

    return playlist


def _entry_lines(track: M3UTrack) -> list[str]:
    return [f"{EXTINF_PREFIX}{track.duration},{track.display_title}", track.file_path, ""]


def write_m3u(playlist: M3UPlaylist) -> str:
    """Serialize a playlist document to extended M3U text (always newline-terminated)."""
    lines: list[str] = [HEADER]

    for track in playlist.songs:
        lines.extend(_entry_lines(track))

    if playlist.suggestions:
        lines.append(SUGGESTIONS_MARKER)
        lines.append("")
        for track in playlist.suggestions:
            lines.extend(_entry_lines(track))

    return "\n".join(lines) + "\n"


def is_valid_m3u(content: str) -> bool:
    """Check that content is non-blank and names at least one file."""
    if not content.strip():
        return False
    return any(
        line.strip() and not line.strip().startswith("#") for line in content.split("\n")
    )


def parse_duration_to_seconds(duration: Any) -> int:
    """
    Parse an `M:SS` duration string into seconds.

    Only the exact shape is accepted (two-digit seconds below 60), e.g.
    "3:45" -> 225. Anything else returns UNKNOWN_DURATION.
    """
    if not isinstance(duration, str) or not duration:
        return UNKNOWN_DURATION

    match = _DURATION_RE.fullmatch(duration)
    if match is None:
        return UNKNOWN_DURATION

    minutes = int(match.group(1))
    seconds = int(match.group(2))
    if seconds >= 60:
        return UNKNOWN_DURATION

    return minutes * 60 + seconds


def format_seconds_to_duration(seconds: float | int | None) -> str:
    """
    Format seconds as `M:SS`.

    Unknown durations (None or negative) format as an empty string so they
    can never be mistaken for "0:00".
    """
    if seconds is None or seconds < 0:
        return ""
    total = int(seconds)
    return f"{total // 60}:{total % 60:02d}"
