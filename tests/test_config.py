"""
Tests for storage configuration loading.
"""

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from legato.config import (
    CACHE_DIR_ENV,
    StorageConfig,
    load_storage_config,
    resolve_cache_root,
)
from legato.core.codecs import StorageFormat


def _write(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "storage.toml"
    path.write_text(text)
    return path


class TestLoadStorageConfig:
    """Tests for load_storage_config."""

    def test_bundled_config(self) -> None:
        config = load_storage_config()

        assert config.app_dir == "Legato"
        assert config.save_timeout == 0.1
        assert config.playlist_cache_capacity == 8
        assert config.playlist_save_timeout == 0.5

        library = config.override_for("libraryCache")
        assert library is not None
        assert library.format is StorageFormat.MSGPACK
        assert library.preload is False
        assert library.save_timeout == 0

    def test_empty_file_uses_defaults(self, tmp_path: Path) -> None:
        config = load_storage_config(_write(tmp_path, ""))

        assert config == StorageConfig()

    def test_custom_values(self, tmp_path: Path) -> None:
        path = _write(
            tmp_path,
            """
[storage]
app_dir = "Other"
cache_root = "/srv/cache"
save_timeout_ms = 250

[playlists]
cache_capacity = 3
save_timeout_ms = 1000

[tables.settings]
format = "MSGPACK"
save_timeout_ms = 50
""",
        )

        config = load_storage_config(path)

        assert config.storage_dir == Path("/srv/cache/Other")
        assert config.save_timeout == 0.25
        assert config.playlist_cache_capacity == 3
        assert config.playlist_save_timeout == 1.0
        override = config.override_for("settings")
        assert override is not None
        assert override.format is StorageFormat.MSGPACK
        assert override.preload is None
        assert override.save_timeout == 0.05
        assert config.override_for("stateSaved") is None

    def test_invalid_values_are_ignored(self, tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
        path = _write(
            tmp_path,
            """
[storage]
save_timeout_ms = -5

[playlists]
cache_capacity = "many"

[tables]
stray = 1

[tables.settings]
format = "yaml"
preload = "yes"
""",
        )

        with caplog.at_level(logging.WARNING):
            config = load_storage_config(path)

        assert config.save_timeout_ms == 100
        assert config.playlist_cache_capacity == 8
        assert "stray" not in config.tables
        override = config.override_for("settings")
        assert override is not None
        assert override.format is None
        assert override.preload is None
        assert "Ignoring unknown storage format" in caplog.text

    def test_zero_capacity_is_raised_to_one(self, tmp_path: Path) -> None:
        config = load_storage_config(_write(tmp_path, "[playlists]\ncache_capacity = 0\n"))
        assert config.playlist_cache_capacity == 1


class TestResolveCacheRoot:
    def test_configured_wins(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv(CACHE_DIR_ENV, "/env")
        assert resolve_cache_root(Path("/configured")) == Path("/configured")

    def test_environment_variable(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv(CACHE_DIR_ENV, "/env")
        monkeypatch.setenv("XDG_CACHE_HOME", "/xdg")
        assert resolve_cache_root() == Path("/env")

    def test_xdg_cache_home(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv(CACHE_DIR_ENV, raising=False)
        monkeypatch.setenv("XDG_CACHE_HOME", "/xdg")
        assert resolve_cache_root() == Path("/xdg")

    def test_home_fallback(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
        monkeypatch.delenv(CACHE_DIR_ENV, raising=False)
        monkeypatch.delenv("XDG_CACHE_HOME", raising=False)
        monkeypatch.setenv("HOME", str(tmp_path))
        assert resolve_cache_root() == tmp_path / ".cache"
