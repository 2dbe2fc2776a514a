"""
Playlist import adapter interface.

An adapter turns a provider URL (or a load-more cursor) into canonical
Track objects. Everything provider-specific stays behind this boundary;
the rest of the application only sees AdapterResult.
"""

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from playlist_notes.core.exceptions import RequestCancelled
from playlist_notes.state.models import ImportMeta, Note, Track, now_ms


@dataclass(frozen=True)
class ImportOptions:
    """
    Parameters of one import request.
    
    Attributes:
        url: Playlist URL (initial import / reimport).
        playlist_id: Provider playlist id (load-more, when no URL is at hand).
        cursor: Load-more cursor from the previous page; None for the first page.
        page_size: Tracks per page.
        cancel_event: Set by the race guard when the request is superseded.
    """
    url: str | None = None
    playlist_id: str | None = None
    cursor: str | None = None
    page_size: int = 100
    cancel_event: threading.Event | None = None
    
    def raise_if_cancelled(self) -> None:
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise RequestCancelled("Import request superseded", details={"url": self.url})


@dataclass(frozen=True)
class AdapterResult:
    """
    One page of an imported playlist, normalized to canonical shapes.
    
    notes_by_track / tags_by_track carry annotations the provider ships
    with the playlist (only the demo adapter does).
    """
    provider: str
    playlist_id: str
    title: str
    source_url: str
    tracks: tuple[Track, ...]
    cursor: str | None = None
    has_more: bool = False
    notes_by_track: dict[str, tuple[Note, ...]] = field(default_factory=dict)
    tags_by_track: dict[str, tuple[str, ...]] = field(default_factory=dict)
    
    def import_meta(self, imported_at: int | None = None) -> ImportMeta:
        return ImportMeta(
            provider=self.provider,
            playlist_id=self.playlist_id,
            playlist_title=self.title,
            source_url=self.source_url,
            imported_at=imported_at if imported_at is not None else now_ms(),
            cursor=self.cursor,
            has_more=self.has_more,
        )


class PlaylistAdapter(ABC):
    """Base class for provider adapters."""
    
    provider: str = ""
    read_only: bool = False
    
    @abstractmethod
    def import_playlist(self, options: ImportOptions) -> AdapterResult:
        """
        Fetch one page of a playlist.
        
        Raises:
            AdapterError: Provider failure or unsupported URL.
            RequestCancelled: options.cancel_event was set mid-import.
        """
    
    def matches(self, url: str) -> bool:
        """True if this adapter can import `url`."""
        return False
