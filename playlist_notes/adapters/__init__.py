"""
Adapters module for playlist-notes.

Provider adapters and the registry that picks one for a URL:
    - base: PlaylistAdapter, ImportOptions, AdapterResult
    - spotify: SpotifyAdapter (spotipy, client credentials)
    - demo: DemoAdapter (read-only "Notable Samples" playlist)
"""

from playlist_notes.adapters.base import AdapterResult, ImportOptions, PlaylistAdapter
from playlist_notes.adapters.demo import (
    DEMO_PLAYLIST_ID,
    DEMO_PLAYLIST_URL,
    DemoAdapter,
    is_demo_playlist_id,
)
from playlist_notes.adapters.spotify import SpotifyAdapter, parse_playlist_id
from playlist_notes.core.config import Config
from playlist_notes.core.exceptions import AdapterError
from playlist_notes.state.models import READ_ONLY_PROVIDER


SUPPORTED_PROVIDERS = ("spotify", READ_ONLY_PROVIDER)


def detect_provider(url: str) -> str | None:
    """
    Guess the provider of a playlist URL.
    
    Returns:
        Provider name, or None if no adapter recognizes the URL.
    """
    if not url:
        return None
    if DemoAdapter().matches(url.strip()):
        return READ_ONLY_PROVIDER
    if SpotifyAdapter().matches(url):
        return "spotify"
    return None


def build_adapter(provider: str, config: Config) -> PlaylistAdapter:
    """
    Create the adapter for a provider.
    
    Raises:
        AdapterError: If the provider is not supported.
    """
    if provider == "spotify":
        return SpotifyAdapter(config.spotify.client_id, config.spotify.client_secret)
    if provider == READ_ONLY_PROVIDER:
        source = build_adapter("spotify", config) if config.spotify.configured else None
        return DemoAdapter(source)
    raise AdapterError(
        f"Unsupported provider: {provider}",
        details={"supported": list(SUPPORTED_PROVIDERS)}
    )


__all__ = [
    "AdapterError",
    "AdapterResult",
    "DEMO_PLAYLIST_ID",
    "DEMO_PLAYLIST_URL",
    "DemoAdapter",
    "ImportOptions",
    "PlaylistAdapter",
    "SUPPORTED_PROVIDERS",
    "SpotifyAdapter",
    "build_adapter",
    "detect_provider",
    "is_demo_playlist_id",
    "parse_playlist_id",
]
