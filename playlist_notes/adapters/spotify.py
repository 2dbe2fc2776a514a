"""
Spotify playlist adapter.

Uses spotipy with client-credentials auth (public playlists only).
Playlists are imported one page at a time; the load-more cursor is the
offset of the next page.
"""

import re

import requests
import spotipy
from spotipy.oauth2 import SpotifyClientCredentials

from playlist_notes.adapters.base import AdapterResult, ImportOptions, PlaylistAdapter
from playlist_notes.core.exceptions import AdapterError
from playlist_notes.core.logger import get_logger
from playlist_notes.state.models import Track


logger = get_logger(__name__)


PLAYLIST_URL_PATTERN = re.compile(r"open\.spotify\.com/(?:[a-z-]+/)?playlist/([A-Za-z0-9]+)")
PLAYLIST_URI_PATTERN = re.compile(r"^spotify:playlist:([A-Za-z0-9]+)$")
PLAYLIST_ID_PATTERN = re.compile(r"^[A-Za-z0-9]{22}$")

MAX_PAGE_SIZE = 100


def parse_playlist_id(url_or_id: str) -> str | None:
    """
    Extract a Spotify playlist id from a URL, URI or bare id.
    
    Example:
        >>> parse_playlist_id("https://open.spotify.com/playlist/3sX5G9KAfZG0DRQnCfIxd8?si=6c96")
        '3sX5G9KAfZG0DRQnCfIxd8'
    """
    if not url_or_id:
        return None
    value = url_or_id.strip()
    for pattern in (PLAYLIST_URL_PATTERN, PLAYLIST_URI_PATTERN):
        match = pattern.search(value)
        if match:
            return match.group(1)
    if PLAYLIST_ID_PATTERN.match(value):
        return value
    return None


def track_from_item(item: dict) -> Track | None:
    """Normalize a playlist item; None for local files and removed tracks."""
    data = item.get("track") if isinstance(item, dict) else None
    if not isinstance(data, dict) or not data.get("id") or data.get("is_local"):
        return None
    
    if data.get("type") == "episode":
        show = data.get("show") or {}
        return Track(
            id=data["id"],
            title=data.get("name") or "",
            artist=show.get("name") or show.get("publisher") or "",
            kind="episode",
        )
    
    artists = ", ".join(a.get("name", "") for a in data.get("artists") or [] if a.get("name"))
    return Track(id=data["id"], title=data.get("name") or "", artist=artists, kind="track")


class SpotifyAdapter(PlaylistAdapter):
    """
    Import public Spotify playlists.
    
    Args:
        client_id / client_secret: Spotify app credentials.
        client: Prebuilt spotipy.Spotify (tests); created lazily otherwise.
    """
    
    provider = "spotify"
    
    def __init__(
        self,
        client_id: str = "",
        client_secret: str = "",
        client: spotipy.Spotify | None = None
    ) -> None:
        self._client_id = client_id
        self._client_secret = client_secret
        self._client = client
    
    def matches(self, url: str) -> bool:
        return parse_playlist_id(url) is not None and "spotify" in url
    
    @property
    def client(self) -> spotipy.Spotify:
        if self._client is None:
            if not self._client_id or not self._client_secret:
                raise AdapterError(
                    "Spotify credentials are not configured",
                    details={"hint": "Set SPOTIFY_CLIENT_ID and SPOTIFY_CLIENT_SECRET"}
                )
            auth_manager = SpotifyClientCredentials(
                client_id=self._client_id,
                client_secret=self._client_secret,
            )
            self._client = spotipy.Spotify(auth_manager=auth_manager)
        return self._client
    
    def import_playlist(self, options: ImportOptions) -> AdapterResult:
        playlist_id = options.playlist_id or parse_playlist_id(options.url or "")
        if not playlist_id:
            raise AdapterError("Not a Spotify playlist URL", details={"url": options.url})
        
        try:
            offset = int(options.cursor) if options.cursor is not None else 0
        except ValueError as e:
            raise AdapterError("Invalid load-more cursor", details={"cursor": options.cursor}) from e
        
        try:
            title = ""
            source_url = options.url or f"https://open.spotify.com/playlist/{playlist_id}"
            if offset == 0:
                meta = self.client.playlist(playlist_id, fields="id,name,external_urls")
                if meta is None:
                    raise AdapterError("Playlist not found", details={"playlist_id": playlist_id})
                title = meta.get("name") or ""
                source_url = options.url or meta.get("external_urls", {}).get("spotify", source_url)
                options.raise_if_cancelled()
            
            page = self.client.playlist_items(
                playlist_id,
                limit=min(options.page_size, MAX_PAGE_SIZE),
                offset=offset,
                additional_types=("track", "episode"),
            )
        except spotipy.SpotifyException as e:
            if e.http_status == 404:
                raise AdapterError(
                    f"Playlist not found: {playlist_id}",
                    details={"playlist_id": playlist_id, "http_status": 404}
                ) from e
            raise AdapterError(
                f"Failed to fetch playlist: {e}",
                details={"playlist_id": playlist_id, "http_status": e.http_status}
            ) from e
        except requests.exceptions.RequestException as e:
            raise AdapterError(
                f"Network error while fetching playlist: {e}",
                details={"playlist_id": playlist_id, "original_error": str(e)}
            ) from e
        
        options.raise_if_cancelled()
        
        items = (page or {}).get("items") or []
        tracks = []
        for item in items:
            track = track_from_item(item)
            if track is not None:
                tracks.append(track)
        
        skipped = len(items) - len(tracks)
        if skipped:
            logger.debug(f"Skipped {skipped} local or unavailable items")
        
        has_more = bool((page or {}).get("next"))
        cursor = str(offset + len(items)) if has_more else None
        
        return AdapterResult(
            provider=self.provider,
            playlist_id=playlist_id,
            title=title,
            source_url=source_url,
            tracks=tuple(tracks),
            cursor=cursor,
            has_more=has_more,
        )
