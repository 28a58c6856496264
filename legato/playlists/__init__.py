"""
Playlists: live M3U documents and the user's local playlist files.
"""
