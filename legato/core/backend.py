"""
File persistence backend.

A backend maps table names to files in one directory, in one format:

    <directory>/<table>.<ext>        main table file
    <directory>/<table>__m.<ext>     metadata companion

The backend is the small persistence interface the table store talks to:
`initialize`, `load`, `save`, `delete`. One class serves every format family;
the format only selects the codec (and therefore the file extension).

All file I/O runs in a worker thread via `asyncio.to_thread` so the event
loop stays responsive. Writes are atomic by replacement: the payload goes to
a temporary sibling file which is then moved over the target.
"""

from __future__ import annotations

import asyncio
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

from legato.core import InvalidTableNameError, StorageError
from legato.core.codecs import Codec, StorageFormat, get_codec, safe_encode

logger = logging.getLogger(__name__)

METADATA_SUFFIX = "__m"


def metadata_table(table: str) -> str:
    """Name of the metadata companion table for a table."""
    return table if table.endswith(METADATA_SUFFIX) else f"{table}{METADATA_SUFFIX}"


def validate_table_name(table: str) -> str:
    """
    Reject names that cannot be stored as a single file in the directory.

    Raises:
        InvalidTableNameError: Empty name, path separators, or dot-only names.
    """
    if not isinstance(table, str) or not table.strip():
        raise InvalidTableNameError(f"Invalid table name: {table!r}")
    if "/" in table or "\\" in table or os.sep in table or table in (".", ".."):
        raise InvalidTableNameError(f"Table name must not contain path separators: {table!r}")
    return table


def ensure_directory_chain(directory: Path) -> list[Path]:
    """
    Make sure directory and all its ancestors exist.

    Walks upward from directory collecting missing directories, then creates
    them root-to-leaf, one level at a time. Never asks the OS to create a
    directory whose parent is missing.

    Returns:
        The directories that were created, in creation order.
    """
    missing: list[Path] = []
    current = directory
    while not current.exists():
        missing.insert(0, current)
        parent = current.parent
        if parent == current:
            break
        current = parent

    for d in missing:
        try:
            d.mkdir()
        except FileExistsError:
            # Created concurrently by another writer
            pass
    return missing


class FileBackend:
    """
    Persists table payloads as files in a directory.

    Usage:
        backend = FileBackend(cache_dir / "Legato", StorageFormat.JSON)
        await backend.initialize()
        await backend.save("settings", {"volume": 0.5})
        value = await backend.load("settings")   # None when absent
    """

    def __init__(self, directory: Path, fmt: StorageFormat | str = StorageFormat.JSON) -> None:
        self.directory = Path(directory)
        self.codec: Codec = get_codec(fmt)

    @property
    def format(self) -> StorageFormat:
        return self.codec.format

    def path_for(self, table: str) -> Path:
        """File path backing a table."""
        validate_table_name(table)
        return self.directory / f"{table}.{self.codec.extension}"

    async def initialize(self) -> None:
        """Create the backend directory (and any missing ancestors)."""
        created = await asyncio.to_thread(ensure_directory_chain, self.directory)
        if created:
            logger.info("Created storage directory %s", self.directory)

    async def exists(self, table: str) -> bool:
        return await asyncio.to_thread(self.path_for(table).exists)

    async def load(self, table: str) -> Any:
        """
        Read and decode a table.

        Returns:
            The decoded value, or None when no file exists ("absent").

        Raises:
            OSError / decode errors: the caller decides how to recover.
        """
        path = self.path_for(table)

        def _read() -> bytes | None:
            try:
                return path.read_bytes()
            except FileNotFoundError:
                return None

        payload = await asyncio.to_thread(_read)
        if payload is None:
            return None
        return self.codec.decode(payload)

    async def save(self, table: str, value: Any) -> int:
        """
        Encode and atomically write a table. A None value removes the file.

        Returns:
            Number of bytes written (0 when the file was removed).

        Raises:
            StorageError: The value could not be encoded; the file is left as it was.
        """
        path = self.path_for(table)
        if value is None:
            await self.delete(table)
            return 0

        payload = safe_encode(self.codec, value, table)
        if payload is None:
            raise StorageError(f"Table {table} could not be encoded as {self.codec.format.value}")
        await asyncio.to_thread(self._write_atomic, path, payload)
        logger.debug("Wrote %s (%d bytes)", path.name, len(payload))
        return len(payload)

    @staticmethod
    def _write_atomic(path: Path, payload: bytes) -> None:
        ensure_directory_chain(path.parent)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(payload)
            os.replace(tmp_name, path)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            raise

    async def delete(self, table: str) -> bool:
        """
        Remove a table file.

        Returns:
            True if a file was removed.
        """
        path = self.path_for(table)

        def _unlink() -> bool:
            try:
                path.unlink()
                return True
            except FileNotFoundError:
                return False

        removed = await asyncio.to_thread(_unlink)
        if removed:
            logger.debug("Deleted %s", path.name)
        return removed

    async def list_tables(self) -> list[str]:
        """Names of main tables stored in the directory (metadata companions excluded)."""
        suffix = f".{self.codec.extension}"

        def _scan() -> list[str]:
            if not self.directory.is_dir():
                return []
            names = []
            for entry in self.directory.iterdir():
                if not entry.is_file() or not entry.name.endswith(suffix):
                    continue
                if entry.name.startswith("."):
                    continue
                name = entry.name[: -len(suffix)]
                if name and not name.endswith(METADATA_SUFFIX):
                    names.append(name)
            return sorted(names)

        return await asyncio.to_thread(_scan)
