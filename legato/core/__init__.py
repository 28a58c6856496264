"""
Core storage package.

This package contains the storage engine which should be independent of any
UI layer: codecs, the file-backed table store, the write scheduler and the
typed table handles built on top of them.

We intentionally keep exports minimal; consumers should usually import from
the specific module they need (e.g. `legato.core.store`).
"""

from __future__ import annotations

__all__: list[str] = [
    "StorageError",
    "InvalidTableNameError",
    "TableNotFoundError",
    "PlaylistError",
    "PlaylistNotFoundError",
    "PlaylistReadOnlyError",
]


class StorageError(Exception):
    """Base class for storage-layer exceptions."""


class InvalidTableNameError(StorageError, ValueError):
    """Raised when a table name cannot be mapped to a file in the store directory."""


class TableNotFoundError(StorageError, KeyError):
    """Raised when a table is referenced in a context that requires it to exist."""


class PlaylistError(StorageError):
    """Base class for playlist management errors."""


class PlaylistNotFoundError(PlaylistError):
    """Raised when a playlist id does not match any known playlist."""


class PlaylistReadOnlyError(PlaylistError):
    """Raised when attempting to modify a playlist that is not editable."""
