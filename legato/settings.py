"""
Application tables.

Defaults and table configurations for the small JSON tables the player keeps:

- `settings`: user settings (sidebar layout, playlist style, integrations)
- `stateSaved`: UI state restored at startup (open playlist, playback position)
- `visualizerSettings`: visualizer window and analyser preferences
- `hotkeys`: key bindings, stored as readable key names

All of them are preloaded at startup so the UI never waits for them.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from legato.core.codecs import StorageFormat
from legato.core.table import PersistedTable, TableConfig

if TYPE_CHECKING:
    from legato.storage import Storage

logger = logging.getLogger(__name__)


# =============================================================================
# Defaults
# =============================================================================

SETTINGS_DEFAULTS: dict[str, Any] = {
    "state": {
        "sidebarWidth": 140,
        "isSidebarOpen": True,
        "panels": {},
    },
    "general": {
        "playlistStyle": "comfortable",
    },
    "youtubeMusic": {
        "enabled": True,
    },
    "uniqueId": "",
    "isAuthed": False,
}

SAVED_STATE_DEFAULTS: dict[str, Any] = {
    "playlist": None,
    "playlistType": "file",
    "libraryIsOpen": False,
    "libraryWindowSize": {"width": 0, "height": 0},
    "playbackIndex": -1,
    "playbackTime": 0,
}

VISUALIZER_DEFAULTS: dict[str, Any] = {
    "window": {
        "width": 780,
        "height": 420,
        "autoClose": True,
    },
    "visualizer": {
        "mode": "spectrum",
        "binCount": 64,
        "smoothing": 0.6,
        "fftSize": 1024,
        "throttleMs": 33,
    },
}


# =============================================================================
# Hotkeys
# =============================================================================

# macOS virtual key codes
KEY_CODES: dict[str, int] = {
    # Function keys
    "KEY_F1": 122,
    "KEY_F2": 120,
    "KEY_F3": 99,
    "KEY_F4": 118,
    "KEY_F5": 96,
    "KEY_F6": 97,
    "KEY_F7": 98,
    "KEY_F8": 100,
    "KEY_F9": 101,
    "KEY_F10": 109,
    "KEY_F11": 103,
    "KEY_F12": 111,
    # Letters
    "KEY_A": 0,
    "KEY_B": 11,
    "KEY_C": 8,
    "KEY_D": 2,
    "KEY_E": 14,
    "KEY_F": 3,
    "KEY_G": 5,
    "KEY_H": 4,
    "KEY_I": 34,
    "KEY_J": 38,
    "KEY_K": 40,
    "KEY_L": 37,
    "KEY_M": 46,
    "KEY_N": 45,
    "KEY_O": 31,
    "KEY_P": 35,
    "KEY_Q": 12,
    "KEY_R": 15,
    "KEY_S": 1,
    "KEY_T": 17,
    "KEY_U": 32,
    "KEY_V": 9,
    "KEY_W": 13,
    "KEY_X": 7,
    "KEY_Y": 16,
    "KEY_Z": 6,
    # Digits
    "KEY_0": 29,
    "KEY_1": 18,
    "KEY_2": 19,
    "KEY_3": 20,
    "KEY_4": 21,
    "KEY_5": 23,
    "KEY_6": 22,
    "KEY_7": 26,
    "KEY_8": 28,
    "KEY_9": 25,
    "KEY_MINUS": 27,
    "KEY_EQUALS": 24,
    # Special keys
    "KEY_RETURN": 36,
    "KEY_TAB": 48,
    "KEY_SPACE": 49,
    "KEY_DELETE": 51,
    "KEY_ESCAPE": 53,
    "KEY_HOME": 115,
    "KEY_PAGE_UP": 116,
    "KEY_PAGE_DOWN": 121,
    "KEY_END": 119,
    "KEY_LEFT": 123,
    "KEY_RIGHT": 124,
    "KEY_DOWN": 125,
    "KEY_UP": 126,
    "KEY_COMMA": 43,
    "KEY_PERIOD": 47,
    "KEY_SLASH": 44,
    # Media keys have no virtual key code; these sit above the keyboard range
    "KEY_MEDIA_PLAY_PAUSE": 1000,
    "KEY_MEDIA_NEXT": 1001,
    "KEY_MEDIA_PREVIOUS": 1002,
    # Modifiers
    "MODIFIER_COMMAND": 1 << 20,
    "MODIFIER_SHIFT": 1 << 17,
    "MODIFIER_OPTION": 1 << 19,
    "MODIFIER_CONTROL": 1 << 18,
}

_KEY_TEXT_OVERRIDES: dict[str, str] = {
    "KEY_RETURN": "↩",
    "KEY_TAB": "⇥",
    "KEY_SPACE": "Space",
    "KEY_DELETE": "⌫",
    "KEY_ESCAPE": "Esc",
    "KEY_LEFT": "←",
    "KEY_RIGHT": "→",
    "KEY_DOWN": "↓",
    "KEY_UP": "↑",
    "KEY_MINUS": "-",
    "KEY_EQUALS": "=",
    "KEY_COMMA": ",",
    "KEY_PERIOD": ".",
    "KEY_SLASH": "/",
    "KEY_MEDIA_PLAY_PAUSE": "PlayPause",
    "KEY_MEDIA_NEXT": "NextTrack",
    "KEY_MEDIA_PREVIOUS": "PreviousTrack",
    "MODIFIER_COMMAND": "⌘",
    "MODIFIER_SHIFT": "⇧",
    "MODIFIER_OPTION": "⌥",
    "MODIFIER_CONTROL": "⌃",
}


def _build_key_text() -> dict[int, str]:
    text: dict[int, str] = {}
    for name, code in KEY_CODES.items():
        if name in _KEY_TEXT_OVERRIDES:
            text[code] = _KEY_TEXT_OVERRIDES[name]
            continue
        if name.startswith("MODIFIER_"):
            continue
        short = name.removeprefix("KEY_")
        text[code] = short if len(short) == 1 else short.capitalize()
    return text


# key code -> display name, e.g. 38 -> "J", 1 << 20 -> "⌘"
KEY_TEXT: dict[int, str] = _build_key_text()
_TEXT_KEY: dict[str, int] = {text: code for code, text in KEY_TEXT.items()}

HOTKEY_SEPARATOR = "+"

DEFAULT_HOTKEYS: dict[str, str] = {
    "Search": str(KEY_CODES["KEY_J"]),
    "ToggleLibrary": str(KEY_CODES["KEY_L"]),
    "ToggleVisualizer": str(KEY_CODES["KEY_V"]),
    "PlayPause": str(KEY_CODES["KEY_MEDIA_PLAY_PAUSE"]),
    "PlayPauseSpace": str(KEY_CODES["KEY_SPACE"]),
    "NextTrack": str(KEY_CODES["KEY_MEDIA_NEXT"]),
    "PreviousTrack": str(KEY_CODES["KEY_MEDIA_PREVIOUS"]),
    "Up": str(KEY_CODES["KEY_UP"]),
    "Down": str(KEY_CODES["KEY_DOWN"]),
    "Enter": str(KEY_CODES["KEY_RETURN"]),
    "Space": str(KEY_CODES["KEY_SPACE"]),
    "Delete": str(KEY_CODES["KEY_DELETE"]),
}

HOTKEY_DESCRIPTIONS: dict[str, str] = {
    "Search": "Search files",
    "ToggleLibrary": "Toggle media library",
    "ToggleVisualizer": "Toggle visualizer window",
    "PlayPause": "Toggle playback",
    "PlayPauseSpace": "Toggle playback (space bar)",
    "NextTrack": "Play next track",
    "PreviousTrack": "Play previous track",
    "Up": "Move selection up",
    "Down": "Move selection down",
    "Enter": "Activate selection",
    "Space": "Activate selection",
    "Delete": "Delete selected items",
}


def hotkey_to_text(hotkey: str) -> str:
    """
    Render a key-code hotkey as key names.

    Example: "1048576+38" -> "⌘+J". Unknown parts are kept as-is.
    """
    parts = []
    for part in str(hotkey).split(HOTKEY_SEPARATOR):
        try:
            parts.append(KEY_TEXT.get(int(part), part))
        except ValueError:
            parts.append(part)
    return HOTKEY_SEPARATOR.join(parts)


def hotkey_from_text(text: str) -> str:
    """
    Parse key names back into a key-code hotkey.

    Example: "⌘+J" -> "1048576+38". Unknown parts are kept as-is.
    """
    parts = []
    for part in str(text).split(HOTKEY_SEPARATOR):
        code = _TEXT_KEY.get(part)
        parts.append(str(code) if code is not None else part)
    return HOTKEY_SEPARATOR.join(parts)


class HotkeyTransform:
    """Stores hotkeys as readable key names; holds key codes in memory."""

    def load(self, raw: Any) -> dict[str, str]:
        hotkeys = dict(DEFAULT_HOTKEYS)
        if isinstance(raw, dict):
            for name, value in raw.items():
                if isinstance(value, str | int) and not isinstance(value, bool):
                    hotkeys[str(name)] = hotkey_from_text(str(value))
        return hotkeys

    def save(self, value: dict[str, str]) -> dict[str, str]:
        return {name: hotkey_to_text(hotkey) for name, hotkey in value.items()}


# =============================================================================
# Table configurations
# =============================================================================

SETTINGS_TABLE = TableConfig(filename="settings", initial_value=SETTINGS_DEFAULTS)
SAVED_STATE_TABLE = TableConfig(filename="stateSaved", initial_value=SAVED_STATE_DEFAULTS)
VISUALIZER_TABLE = TableConfig(filename="visualizerSettings", initial_value=VISUALIZER_DEFAULTS)
HOTKEYS_TABLE = TableConfig(
    filename="hotkeys",
    initial_value=DEFAULT_HOTKEYS,
    format=StorageFormat.JSON,
    transform=HotkeyTransform(),
)

APPLICATION_TABLES: tuple[TableConfig, ...] = (
    SETTINGS_TABLE,
    SAVED_STATE_TABLE,
    VISUALIZER_TABLE,
    HOTKEYS_TABLE,
)


async def preload_persistence(storage: Storage) -> dict[str, PersistedTable[Any]]:
    """
    Load the application tables so their values are ready before the UI reads them.

    Returns:
        Table name -> loaded handle.
    """
    handles = {config.filename: storage.table(config) for config in APPLICATION_TABLES}
    await asyncio.gather(*(handle.load() for handle in handles.values()))
    logger.debug("Preloaded application tables: %s", ", ".join(handles))
    return handles
