"""
Music library scanning.

Builds the library index (see `legato.snapshots.library`) from the user's
music folders.
"""
