"""
Core module for playlist-notes.

This module provides the foundational components used throughout the application:
    - exceptions: Custom exception classes for error handling
    - config: Configuration loading and validation
    - storage: Thread-safe SQLite key-value store for durable slots
    - logger: Logging system with multiple outputs

The state snapshot layer (state_store, migrations) depends on the state
models and is imported from its own modules:
    from playlist_notes.core.state_store import LocalStateStore

Usage:
    from playlist_notes.core import (
        Config, load_config,
        KeyValueStore,
        setup_logging, get_logger,
        PlaylistNotesError, ConfigError, StorageError
    )
"""

from playlist_notes.core.config import (
    Config,
    IdentityConfig,
    RemoteConfig,
    SpotifyConfig,
    StorageConfig,
    SyncConfig,
    load_config,
)
from playlist_notes.core.exceptions import (
    AdapterError,
    AuthError,
    ConfigError,
    CsrfError,
    InvalidRecoveryCode,
    MigrationError,
    NotFoundError,
    PermanentClientError,
    PlaylistNotesError,
    RateLimited,
    RemoteError,
    RequestCancelled,
    StorageError,
    TransientError,
    ValidationError,
)
from playlist_notes.core.logger import (
    get_logger,
    log_sync_failure,
    setup_logging,
    shutdown_logging,
)
from playlist_notes.core.storage import KeyValueStore

__all__ = [
    # Config
    "Config",
    "IdentityConfig",
    "RemoteConfig",
    "SpotifyConfig",
    "StorageConfig",
    "SyncConfig",
    "load_config",
    # Storage
    "KeyValueStore",
    # Exceptions
    "PlaylistNotesError",
    "ConfigError",
    "StorageError",
    "MigrationError",
    "ValidationError",
    "AdapterError",
    "RequestCancelled",
    "RemoteError",
    "AuthError",
    "InvalidRecoveryCode",
    "CsrfError",
    "TransientError",
    "PermanentClientError",
    "NotFoundError",
    "RateLimited",
    # Logging
    "setup_logging",
    "get_logger",
    "log_sync_failure",
    "shutdown_logging",
]
