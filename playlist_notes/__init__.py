"""
playlist-notes: Annotate playlists with notes and tags, synced across devices.

Notes and tags are attached to the tracks of an imported playlist and kept
consistent across every device that shares an anonymous identity. All
edits apply locally first; the sync layer propagates them when the server
is reachable and merges in what other devices wrote.

Architecture:
    identity/   Anonymous device identity (bootstrap, restore, rotate)
    state/      Data models, tag rules, pure reducer and union-merge
    sync/       Remote client, offline queues, undo, race guard, orchestrator
    adapters/   Playlist import (Spotify, read-only demo)
    core/       Configuration, storage, migrations, logging, exceptions
    app.py      Object graph wiring
    cli.py      Command-line interface (pnotes)

Usage:
    Command Line:
        pnotes init
        pnotes import "https://open.spotify.com/playlist/..."
        pnotes note <track_id> "sampled here" --at 130000
        pnotes tag <track_id> bass
        pnotes sync
    
    Python API:
        from playlist_notes.core import load_config, setup_logging
        from playlist_notes.app import Application
        
        config = load_config()
        setup_logging(config.storage.directory)
        with Application(config) as app:
            app.identity.bootstrap()
            app.imports.import_initial(playlist_url)
            app.orchestrator.add_tag(track_id, "bass")
            app.orchestrator.on_reconnect()

Configuration:
    Optional config.yaml in the current directory (see README.md), plus
    environment overrides loaded from .env:
    
        PLAYLIST_NOTES_API_URL, PLAYLIST_NOTES_STORAGE_DIR,
        SPOTIFY_CLIENT_ID, SPOTIFY_CLIENT_SECRET

Dependencies:
    - requests: Notes/identity server client
    - spotipy: Spotify playlist import
    - click / rich-click: CLI
    - tqdm: Progress-bar-safe console logging
    - pyyaml: Configuration file parsing
    - python-dotenv: .env support
"""

__version__ = "0.1.0"
__author__ = "playlist-notes"
__license__ = "MIT"

# Convenience imports for common usage
from playlist_notes.core import (
    Config,
    ConfigError,
    PlaylistNotesError,
    StorageError,
    ValidationError,
    get_logger,
    load_config,
    setup_logging,
)
from playlist_notes.state import Note, PersistedState, PlaylistStateMachine, Track

__all__ = [
    # Version
    "__version__",
    # Core
    "Config",
    "load_config",
    "setup_logging",
    "get_logger",
    # Exceptions
    "PlaylistNotesError",
    "ConfigError",
    "StorageError",
    "ValidationError",
    # Models
    "Note",
    "PersistedState",
    "PlaylistStateMachine",
    "Track",
]
