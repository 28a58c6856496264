"""
Tests for the application tables and the hotkey key-name mapping.
"""

from __future__ import annotations

import json
from pathlib import Path

from legato.config import StorageConfig
from legato.settings import (
    DEFAULT_HOTKEYS,
    HOTKEY_DESCRIPTIONS,
    HOTKEYS_TABLE,
    KEY_CODES,
    SAVED_STATE_TABLE,
    SETTINGS_TABLE,
    HotkeyTransform,
    hotkey_from_text,
    hotkey_to_text,
    preload_persistence,
)
from legato.storage import Storage


class TestHotkeyText:
    """Tests for key code <-> key name conversion."""

    def test_to_text(self) -> None:
        command = KEY_CODES["MODIFIER_COMMAND"]
        assert hotkey_to_text(f"{command}+38") == "⌘+J"
        assert hotkey_to_text("49") == "Space"
        assert hotkey_to_text("1000") == "PlayPause"

    def test_from_text(self) -> None:
        shift = KEY_CODES["MODIFIER_SHIFT"]
        assert hotkey_from_text("⇧+F5") == f"{shift}+96"
        assert hotkey_from_text("↑") == "126"

    def test_unknown_parts_are_kept(self) -> None:
        assert hotkey_to_text("9999+x") == "9999+x"
        assert hotkey_from_text("Hyper+J") == "Hyper+38"

    def test_every_default_round_trips(self) -> None:
        for hotkey in DEFAULT_HOTKEYS.values():
            assert hotkey_from_text(hotkey_to_text(hotkey)) == hotkey

    def test_every_hotkey_is_described(self) -> None:
        assert set(HOTKEY_DESCRIPTIONS) == set(DEFAULT_HOTKEYS)


class TestHotkeyTransform:
    def test_load_merges_over_defaults(self) -> None:
        hotkeys = HotkeyTransform().load({"Search": "⌘+F", "Custom": "K", "Bad": None})

        assert hotkeys["Search"] == f"{KEY_CODES['MODIFIER_COMMAND']}+3"
        assert hotkeys["Custom"] == "40"
        assert hotkeys["Up"] == DEFAULT_HOTKEYS["Up"]
        assert "Bad" not in hotkeys

    def test_load_garbage(self) -> None:
        assert HotkeyTransform().load("nope") == DEFAULT_HOTKEYS

    def test_save_writes_key_names(self) -> None:
        assert HotkeyTransform().save({"Search": "38", "Up": "126"}) == {"Search": "J", "Up": "↑"}


class TestApplicationTables:
    async def test_preload_persistence(self, tmp_path: Path) -> None:
        (tmp_path / "stateSaved.json").write_text('{"playbackIndex": 3}')
        (tmp_path / "hotkeys.json").write_text('{"Search": "⌘+J"}')

        async with Storage(StorageConfig(), directory=tmp_path) as storage:
            handles = await preload_persistence(storage)

            assert set(handles) == {"settings", "stateSaved", "visualizerSettings", "hotkeys"}
            assert handles["stateSaved"].get()["playbackIndex"] == 3
            assert handles["stateSaved"].get()["playlist"] is None
            assert handles["hotkeys"].get()["Search"] == f"{KEY_CODES['MODIFIER_COMMAND']}+38"
            assert handles["settings"].get() == SETTINGS_TABLE.initial_value

            handles["settings"].assign(("general", "playlistStyle"), "compact")
            hotkeys = dict(handles["hotkeys"].get())
            hotkeys["Search"] = "3"
            handles["hotkeys"].set(hotkeys)

        settings = json.loads((tmp_path / "settings.json").read_text())
        assert settings["general"] == {"playlistStyle": "compact"}
        assert settings["state"]["sidebarWidth"] == 140
        assert json.loads((tmp_path / "hotkeys.json").read_text())["Search"] == "F"

    async def test_tables_registered_before_start_are_preloaded(self, tmp_path: Path) -> None:
        (tmp_path / "stateSaved.json").write_text('{"playbackTime": 12.5}')
        storage = Storage(StorageConfig(), directory=tmp_path)
        handle = storage.table(SAVED_STATE_TABLE)

        await storage.start()
        try:
            assert handle.loaded
            assert handle.get()["playbackTime"] == 12.5
            assert storage.table(HOTKEYS_TABLE) is storage.get_table("hotkeys")
        finally:
            await storage.close()
