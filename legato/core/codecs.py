"""
Serialization codecs for persisted tables.

Each table is stored in one of three formats:

- JSON (`.json`): readable structured text, used for settings-like tables.
- MessagePack (`.lgh`): compact binary, used for large snapshots that are
  rewritten often (library index, play queue).
- M3U (`.m3u`): opaque text that a table transform has already produced;
  the codec only moves bytes.

Contract:
- `decode` may raise; the store treats a failed decode as "absent".
- `safe_encode` never raises; it logs and returns an empty payload instead.
"""

from __future__ import annotations

import dataclasses
import json
import logging
from enum import Enum
from pathlib import PurePath
from typing import Any

import msgpack

logger = logging.getLogger(__name__)


class StorageFormat(Enum):
    """On-disk format of a table."""

    JSON = "json"
    MSGPACK = "msgpack"
    M3U = "m3u"

    @property
    def extension(self) -> str:
        return _EXTENSIONS[self]


_EXTENSIONS: dict[StorageFormat, str] = {
    StorageFormat.JSON: "json",
    StorageFormat.MSGPACK: "lgh",
    StorageFormat.M3U: "m3u",
}


def _json_default(value: Any) -> Any:
    """Map values JSON cannot express onto ones it can."""
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        if hasattr(value, "to_dict"):
            return value.to_dict()
        return dataclasses.asdict(value)
    if isinstance(value, PurePath):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    # Anything else has no persisted representation
    return None


class Codec:
    """Converts a table value to and from its on-disk payload."""

    format: StorageFormat

    def encode(self, value: Any) -> bytes:
        raise NotImplementedError

    def decode(self, payload: bytes) -> Any:
        raise NotImplementedError

    @property
    def extension(self) -> str:
        return self.format.extension


class JsonCodec(Codec):
    format = StorageFormat.JSON

    def encode(self, value: Any) -> bytes:
        return json.dumps(value, default=_json_default, ensure_ascii=False).encode("utf-8")

    def decode(self, payload: bytes) -> Any:
        return json.loads(payload.decode("utf-8"))


class MsgpackCodec(Codec):
    format = StorageFormat.MSGPACK

    def encode(self, value: Any) -> bytes:
        return msgpack.packb(value, use_bin_type=True, default=_json_default)

    def decode(self, payload: bytes) -> Any:
        return msgpack.unpackb(payload, raw=False, strict_map_key=False)


class M3UTextCodec(Codec):
    """Raw text passthrough; the table transform owns the structure."""

    format = StorageFormat.M3U

    def encode(self, value: Any) -> bytes:
        text = value if isinstance(value, str) else str(value)
        return text.encode("utf-8")

    def decode(self, payload: bytes) -> Any:
        return payload.decode("utf-8", errors="replace")


_CODECS: dict[StorageFormat, Codec] = {
    StorageFormat.JSON: JsonCodec(),
    StorageFormat.MSGPACK: MsgpackCodec(),
    StorageFormat.M3U: M3UTextCodec(),
}


def get_codec(fmt: StorageFormat | str) -> Codec:
    """
    Select the codec for a configured format.

    Args:
        fmt: StorageFormat or its string value ("json", "msgpack", "m3u").

    Returns:
        The shared codec instance for that format.
    """
    if isinstance(fmt, str):
        fmt = StorageFormat(fmt.lower())
    return _CODECS[fmt]


def safe_encode(codec: Codec, value: Any, table: str) -> bytes | None:
    """
    Encode a value without ever raising.

    A failing encode is logged and yields None, so a bad value cannot break
    the write chain of other tables and the caller can keep the last good file.
    """
    try:
        return codec.encode(value)
    except Exception as e:
        logger.exception("Failed to encode table %s as %s: %s", table, codec.format.value, e)
        return None
