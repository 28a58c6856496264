"""
Configuration management for Legato.

This module loads storage configuration (where state lives, write timing,
per-table overrides) from TOML files.
"""

from __future__ import annotations

import logging
import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from legato.core.codecs import StorageFormat

logger = logging.getLogger(__name__)

# Path to the config directory
CONFIG_DIR = Path(__file__).parent

CACHE_DIR_ENV = "LEGATO_CACHE_DIR"
DEFAULT_APP_DIR = "Legato"


@dataclass
class TableOverride:
    """Per-table settings that replace the table's built-in configuration."""

    format: StorageFormat | None = None
    preload: bool | None = None
    save_timeout_ms: int | None = None

    @property
    def save_timeout(self) -> float | None:
        return None if self.save_timeout_ms is None else self.save_timeout_ms / 1000


@dataclass
class StorageConfig:
    """Loaded storage configuration."""

    app_dir: str = DEFAULT_APP_DIR
    cache_root: Path | None = None
    save_timeout_ms: int = 100
    playlist_cache_capacity: int = 8
    playlist_save_timeout_ms: int = 500
    tables: dict[str, TableOverride] = field(default_factory=dict)

    @property
    def save_timeout(self) -> float:
        return self.save_timeout_ms / 1000

    @property
    def playlist_save_timeout(self) -> float:
        return self.playlist_save_timeout_ms / 1000

    @property
    def storage_dir(self) -> Path:
        """Application directory all tables live in."""
        return resolve_cache_root(self.cache_root) / self.app_dir

    def override_for(self, table: str) -> TableOverride | None:
        return self.tables.get(table)


def resolve_cache_root(configured: Path | None = None) -> Path:
    """
    Resolve the cache root.

    Order: explicit configuration, `LEGATO_CACHE_DIR`, `XDG_CACHE_HOME`,
    then `~/.cache`.
    """
    if configured is not None:
        return Path(configured).expanduser()
    env = os.environ.get(CACHE_DIR_ENV)
    if env:
        return Path(env).expanduser()
    xdg = os.environ.get("XDG_CACHE_HOME")
    if xdg:
        return Path(xdg).expanduser()
    return Path.home() / ".cache"


def _parse_format(value: Any, where: str) -> StorageFormat | None:
    if value is None:
        return None
    try:
        return StorageFormat(str(value).lower())
    except ValueError:
        logger.warning("Ignoring unknown storage format %r for %s", value, where)
        return None


def _parse_int(value: Any, default: int | None, where: str) -> int | None:
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        logger.warning("Ignoring invalid value %r for %s", value, where)
        return default
    return value


def _parse_tables(data: dict[str, Any]) -> dict[str, TableOverride]:
    tables: dict[str, TableOverride] = {}
    for name, section in data.items():
        if not isinstance(section, dict):
            logger.warning("Ignoring non-table entry tables.%s", name)
            continue
        preload = section.get("preload")
        tables[name] = TableOverride(
            format=_parse_format(section.get("format"), f"tables.{name}"),
            preload=preload if isinstance(preload, bool) else None,
            save_timeout_ms=_parse_int(
                section.get("save_timeout_ms"), None, f"tables.{name}.save_timeout_ms"
            ),
        )
    return tables


def load_storage_config(config_path: Path | None = None) -> StorageConfig:
    """
    Load storage configuration from TOML file.

    Args:
        config_path: Path to storage.toml. If None, uses default location.

    Returns:
        Loaded StorageConfig instance.
    """
    if config_path is None:
        config_path = CONFIG_DIR / "storage.toml"

    logger.debug("Loading storage config from %s", config_path)

    with config_path.open("rb") as f:
        data = tomllib.load(f)

    storage = data.get("storage", {})
    playlists = data.get("playlists", {})

    cache_root = storage.get("cache_root") or None

    return StorageConfig(
        app_dir=str(storage.get("app_dir") or DEFAULT_APP_DIR),
        cache_root=Path(cache_root) if cache_root else None,
        save_timeout_ms=_parse_int(storage.get("save_timeout_ms"), 100, "storage.save_timeout_ms"),
        playlist_cache_capacity=max(
            1, _parse_int(playlists.get("cache_capacity"), 8, "playlists.cache_capacity") or 1
        ),
        playlist_save_timeout_ms=_parse_int(
            playlists.get("save_timeout_ms"), 500, "playlists.save_timeout_ms"
        ),
        tables=_parse_tables(data.get("tables", {})),
    )


# Global singleton instance (lazy loaded)
_storage_config: StorageConfig | None = None


def get_storage_config() -> StorageConfig:
    """
    Get the global storage configuration (lazy loaded singleton).

    Returns:
        The StorageConfig instance.
    """
    global _storage_config

    if _storage_config is None:
        _storage_config = load_storage_config()

    return _storage_config


def reload_storage_config() -> StorageConfig:
    """
    Force reload of storage configuration.

    Returns:
        The newly loaded StorageConfig instance.
    """
    global _storage_config
    _storage_config = load_storage_config()
    return _storage_config
