"""
Configuration management for playlist-notes.

This module handles loading, validating, and providing access to the
application configuration stored in config.yaml, with environment
variable overrides for deployment-specific values.

The configuration file contains:
    - Remote store base URL and request timeout
    - Local storage directory (key-value store and logs)
    - Sync tuning (tag debounce window, deletion queue bound, undo window)
    - Recovery-code restore throttling
    - Optional Spotify API credentials for the import adapter

Configuration File Location:
    The config.yaml file is looked up in the current working directory
    unless an explicit path is given. A missing file is NOT an error:
    every section has defaults, so the tool works out of the box.

Environment Overrides (a .env file is honoured via python-dotenv):
    PLAYLIST_NOTES_API_URL      -> remote.base_url
    PLAYLIST_NOTES_STORAGE_DIR  -> storage.directory
    SPOTIFY_CLIENT_ID           -> spotify.client_id
    SPOTIFY_CLIENT_SECRET       -> spotify.client_secret

Example config.yaml:
    remote:
      base_url: "https://notes.example.com"
      timeout: 15
    
    storage:
      directory: "~/.playlist-notes"
    
    sync:
      tag_debounce_ms: 350
      max_pending_deletions: 200
      undo_window_seconds: 600
    
    identity:
      restore_max_attempts: 5
      restore_window_seconds: 60
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from playlist_notes.core.exceptions import ConfigError


# Default configuration file name (looked up in current working directory)
CONFIG_FILENAME = "config.yaml"

DEFAULT_BASE_URL = "http://localhost:8787"
DEFAULT_STORAGE_DIR = "~/.playlist-notes"


@dataclass(frozen=True)
class RemoteConfig:
    """
    Remote note/tag/device API configuration.
    
    Attributes:
        base_url: Root URL of the remote store, without trailing slash.
        timeout: Per-request timeout in seconds.
    """
    base_url: str = DEFAULT_BASE_URL
    timeout: float = 15.0


@dataclass(frozen=True)
class StorageConfig:
    """
    Local persistence configuration.
    
    Attributes:
        directory: Directory holding state.db and the logs/ subdirectory.
                   ~ is expanded. Created on first use.
    """
    directory: Path = Path(DEFAULT_STORAGE_DIR).expanduser()


@dataclass(frozen=True)
class SyncConfig:
    """
    Sync engine tuning.
    
    Attributes:
        tag_debounce_ms: Quiet period after the last tag edit on a track
                         before the single coalesced upsert fires.
        max_pending_deletions: Bound of the durable note-deletion queue.
                               Oldest entries are evicted beyond this.
        undo_window_seconds: How long a deleted note can be restored.
    """
    tag_debounce_ms: int = 350
    max_pending_deletions: int = 200
    undo_window_seconds: float = 600.0


@dataclass(frozen=True)
class IdentityConfig:
    """
    Recovery-code restore throttling.
    
    Attributes:
        restore_max_attempts: Attempts allowed inside the window.
        restore_window_seconds: Sliding window length.
    """
    restore_max_attempts: int = 5
    restore_window_seconds: float = 60.0


@dataclass(frozen=True)
class SpotifyConfig:
    """
    Spotify API credentials for the import adapter (optional).
    
    Attributes:
        client_id: Spotify application client ID, empty when not configured.
        client_secret: Spotify application client secret.
    """
    client_id: str = ""
    client_secret: str = ""
    
    @property
    def configured(self) -> bool:
        return bool(self.client_id and self.client_secret)


@dataclass(frozen=True)
class Config:
    """
    Complete application configuration.
    
    Created by load_config() and treated as immutable (frozen dataclass).
    
    Example:
        config = load_config()
        print(f"Remote: {config.remote.base_url}")
        print(f"Debounce: {config.sync.tag_debounce_ms} ms")
    """
    remote: RemoteConfig = RemoteConfig()
    storage: StorageConfig = StorageConfig()
    sync: SyncConfig = SyncConfig()
    identity: IdentityConfig = IdentityConfig()
    spotify: SpotifyConfig = SpotifyConfig()


def load_config(config_path: Path | None = None) -> Config:
    """
    Load and validate configuration from config.yaml and the environment.
    
    Args:
        config_path: Optional explicit path to config file.
                     If None, looks for config.yaml in current working directory.
                     An explicit path that does not exist is an error; an
                     implicit one that does not exist means "use defaults".
    
    Returns:
        Config: A frozen dataclass containing all configuration values.
    
    Raises:
        ConfigError: If the file has invalid YAML syntax, is not a mapping,
                     or contains invalid values.
    
    Behavior:
        1. Load .env into the process environment (python-dotenv)
        2. Locate and parse the YAML file, if any
        3. Parse each section with defaults
        4. Apply environment overrides
        5. Return frozen Config object
    """
    load_dotenv()
    
    explicit = config_path is not None
    if config_path is None:
        config_path = Path.cwd() / CONFIG_FILENAME
    
    raw_config: dict[str, Any] = {}
    if config_path.exists():
        raw_config = _read_yaml(config_path)
    elif explicit:
        raise ConfigError(
            f"Configuration file not found: {config_path}",
            details={"file_path": str(config_path)}
        )
    
    for section in ("remote", "storage", "sync", "identity", "spotify"):
        value = raw_config.get(section)
        if value is not None and not isinstance(value, dict):
            raise ConfigError(
                f"Section '{section}' must be a dictionary",
                details={"section": section}
            )
    
    remote = _parse_remote_config(raw_config.get("remote") or {})
    storage = _parse_storage_config(raw_config.get("storage") or {})
    sync = _parse_sync_config(raw_config.get("sync") or {})
    identity = _parse_identity_config(raw_config.get("identity") or {})
    spotify = _parse_spotify_config(raw_config.get("spotify") or {})
    
    return Config(
        remote=remote,
        storage=storage,
        sync=sync,
        identity=identity,
        spotify=spotify
    )


def _read_yaml(config_path: Path) -> dict[str, Any]:
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            content = f.read()
    except IOError as e:
        raise ConfigError(
            f"Failed to read configuration file: {e}",
            details={"file_path": str(config_path), "original_error": str(e)}
        ) from e
    
    try:
        raw_config = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ConfigError(
            f"Invalid YAML syntax in configuration file: {e}",
            details={"file_path": str(config_path), "original_error": str(e)}
        ) from e
    
    if raw_config is None:
        return {}
    
    if not isinstance(raw_config, dict):
        raise ConfigError(
            "Configuration file must contain a YAML dictionary",
            details={"file_path": str(config_path)}
        )
    
    return raw_config


def _parse_remote_config(section: dict[str, Any]) -> RemoteConfig:
    base_url = os.getenv("PLAYLIST_NOTES_API_URL") or section.get("base_url", DEFAULT_BASE_URL)
    if not isinstance(base_url, str) or not base_url.strip():
        raise ConfigError(
            "'remote.base_url' must be a non-empty string",
            details={"field": "remote.base_url"}
        )
    
    timeout = section.get("timeout", 15.0)
    if not isinstance(timeout, (int, float)) or isinstance(timeout, bool) or timeout <= 0:
        raise ConfigError(
            "'remote.timeout' must be a positive number",
            details={"field": "remote.timeout", "value": timeout}
        )
    
    return RemoteConfig(base_url=base_url.strip().rstrip("/"), timeout=float(timeout))


def _parse_storage_config(section: dict[str, Any]) -> StorageConfig:
    directory = os.getenv("PLAYLIST_NOTES_STORAGE_DIR") or section.get("directory", DEFAULT_STORAGE_DIR)
    if not isinstance(directory, str) or not directory.strip():
        raise ConfigError(
            "'storage.directory' must be a non-empty string",
            details={"field": "storage.directory"}
        )
    
    # Expand ~ and make absolute
    return StorageConfig(directory=Path(directory.strip()).expanduser().resolve())


def _parse_sync_config(section: dict[str, Any]) -> SyncConfig:
    tag_debounce_ms = _positive_int(section, "tag_debounce_ms", 350, "sync")
    max_pending = _positive_int(section, "max_pending_deletions", 200, "sync")
    
    undo_window = section.get("undo_window_seconds", 600.0)
    if not isinstance(undo_window, (int, float)) or isinstance(undo_window, bool) or undo_window <= 0:
        raise ConfigError(
            "'sync.undo_window_seconds' must be a positive number",
            details={"field": "sync.undo_window_seconds", "value": undo_window}
        )
    
    return SyncConfig(
        tag_debounce_ms=tag_debounce_ms,
        max_pending_deletions=max_pending,
        undo_window_seconds=float(undo_window)
    )


def _parse_identity_config(section: dict[str, Any]) -> IdentityConfig:
    max_attempts = _positive_int(section, "restore_max_attempts", 5, "identity")
    
    window = section.get("restore_window_seconds", 60.0)
    if not isinstance(window, (int, float)) or isinstance(window, bool) or window <= 0:
        raise ConfigError(
            "'identity.restore_window_seconds' must be a positive number",
            details={"field": "identity.restore_window_seconds", "value": window}
        )
    
    return IdentityConfig(restore_max_attempts=max_attempts, restore_window_seconds=float(window))


def _parse_spotify_config(section: dict[str, Any]) -> SpotifyConfig:
    client_id = os.getenv("SPOTIFY_CLIENT_ID") or section.get("client_id") or ""
    client_secret = os.getenv("SPOTIFY_CLIENT_SECRET") or section.get("client_secret") or ""
    
    if not isinstance(client_id, str) or not isinstance(client_secret, str):
        raise ConfigError(
            "'spotify.client_id' and 'spotify.client_secret' must be strings",
            details={"field": "spotify"}
        )
    
    return SpotifyConfig(client_id=client_id.strip(), client_secret=client_secret.strip())


def _positive_int(section: dict[str, Any], key: str, default: int, section_name: str) -> int:
    value = section.get(key)
    if value is None:
        return default
    if not isinstance(value, int) or isinstance(value, bool) or value < 1:
        raise ConfigError(
            f"'{section_name}.{key}' must be a positive integer",
            details={"field": f"{section_name}.{key}", "value": value}
        )
    return value
