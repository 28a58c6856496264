"""
Legato - on-device persistence and caching for a desktop music player.

Legato stores application state (library index, play queue, playlists,
settings, visualizer preferences, hotkeys) in an app-private cache
directory, using debounced asynchronous writes, sanitizing snapshot
schemas and an LRU-bounded cache of M3U playlist documents.
"""

__version__ = "0.1.0"
__author__ = "Legato Contributors"
__license__ = "GPL-2.0"

from legato.storage import Storage

__all__ = ["Storage", "__version__"]
