"""
Versioned snapshot schemas.

A snapshot is a whole-value record (library index, play queue) persisted as
one table. Reading always goes through a sanitizer that turns whatever is on
disk (older schema versions, hand-edited files, garbage) into a well-formed
snapshot of the current version. Persisting re-sanitizes and replaces the
whole snapshot; snapshots are never partially updated.
"""

from __future__ import annotations

import dataclasses
import time
from collections.abc import Mapping
from typing import Any

__all__ = [
    "UNKNOWN_ARTIST",
    "DEFAULT_DURATION",
    "now_ms",
    "as_mapping",
    "text_or_none",
    "int_or_none",
    "file_name_of",
    "timestamp_or_none",
    "duration_text",
]

UNKNOWN_ARTIST = "Unknown Artist"
DEFAULT_DURATION = "0:00"


def now_ms() -> int:
    """Current time in milliseconds since the epoch."""
    return int(time.time() * 1000)


def as_mapping(raw: Any) -> dict[str, Any]:
    """
    View raw input as a dict.

    Accepts mappings and snapshot dataclasses (via `to_dict()`); anything
    else is treated as an empty record.
    """
    if dataclasses.is_dataclass(raw) and not isinstance(raw, type):
        to_dict = getattr(raw, "to_dict", None)
        return to_dict() if callable(to_dict) else dataclasses.asdict(raw)
    if isinstance(raw, Mapping):
        return dict(raw)
    return {}


def text_or_none(value: Any) -> str | None:
    """Non-empty string or None."""
    return value if isinstance(value, str) and value else None


def int_or_none(value: Any) -> int | None:
    """Integer (bools excluded) or None. Integral floats are accepted."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return None


def file_name_of(path: str) -> str:
    """Last `/` component of a path."""
    return path.rsplit("/", 1)[-1] or path


def timestamp_or_none(value: Any) -> int | None:
    """Millisecond timestamp (any finite number, truncated) or None."""
    if isinstance(value, bool) or not isinstance(value, int | float):
        return None
    if value != value or value in (float("inf"), float("-inf")):
        return None
    return int(value)


def duration_text(value: Any) -> str:
    """Display duration: non-empty text as-is, seconds as "M:SS", else "0:00"."""
    if isinstance(value, str) and value:
        return value
    seconds = int_or_none(value)
    if seconds is not None and seconds >= 0:
        return f"{seconds // 60}:{seconds % 60:02d}"
    return DEFAULT_DURATION
