"""
Data models for playlist annotation state.

This module defines the dataclasses that make up the application state:
tracks imported from a provider, notes and tags attached to them, import
metadata and the recent-playlists list. All models are frozen; the
reducer produces new instances instead of mutating old ones.

Persisted and wire form uses camelCase keys (trackId, timestampMs, ...);
to_dict()/from_dict() convert between the two.

Design Decisions:
    - Lists are stored as tuples so states compare by value
    - notesByTrack / tagsByTrack are plain dicts keyed by track id, copied
      (never mutated in place) by the reducer
    - from_dict() raises ValueError/TypeError on malformed input; the
      migration layer catches it and drops the entry
"""

import math
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Iterable

from playlist_notes.state.tags import canonicalize_tags


# Current PersistedState schema version
STATE_VERSION = 3

# Provider marker that makes a playlist read-only
READ_ONLY_PROVIDER = "demo"

MAX_RECENT_PLAYLISTS = 8

TRACK_KINDS = ("track", "episode")


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def new_note_id() -> str:
    """Client-generated note id, sent with the create request."""
    return uuid.uuid4().hex


def _tag_list(value: Any) -> tuple[str, ...]:
    if not isinstance(value, (list, tuple)):
        return ()
    return canonicalize_tags(value)


def _optional_int(value: Any, name: str) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise TypeError(f"{name} must be a number")
    if isinstance(value, float) and not math.isfinite(value):
        raise ValueError(f"{name} must be finite")
    return int(value)


@dataclass(frozen=True)
class Track:
    """
    Immutable representation of an imported track.
    
    Attributes:
        id: Provider track id (e.g. a 22-character Spotify id).
        title: Track title.
        artist: Display artist string (comma-joined for multiple artists).
        kind: "track" or "episode".
    """
    id: str
    title: str
    artist: str = ""
    kind: str = "track"
    
    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "title": self.title, "artist": self.artist, "kind": self.kind}
    
    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Track":
        if not isinstance(data, dict):
            raise TypeError("track must be an object")
        track_id = data.get("id")
        if not isinstance(track_id, str) or not track_id:
            raise ValueError("track id missing")
        kind = data.get("kind") or "track"
        if kind not in TRACK_KINDS:
            kind = "track"
        return cls(
            id=track_id,
            title=str(data.get("title") or ""),
            artist=str(data.get("artist") or ""),
            kind=kind,
        )


@dataclass(frozen=True)
class Note:
    """
    A timestamped annotation on a track.
    
    Remote rows are append-only; a local copy is mutable (via UPDATE_NOTE)
    until it has been synced.
    
    Attributes:
        id: Note id (client-generated uuid4 hex, or server id).
        track_id: Track the note belongs to.
        body: Note text.
        timestamp_ms: Optional position in the track the note points at.
        timestamp_end_ms: Optional end of the annotated range.
        tags: Canonical tag tuple carried by the note row.
        created_at: Creation time in epoch milliseconds.
        device_id: Device that authored the note.
    """
    id: str
    track_id: str
    body: str
    timestamp_ms: int | None = None
    timestamp_end_ms: int | None = None
    tags: tuple[str, ...] = ()
    created_at: int = 0
    device_id: str = ""
    
    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "trackId": self.track_id,
            "body": self.body,
            "tags": list(self.tags),
            "createdAt": self.created_at,
            "deviceId": self.device_id,
        }
        if self.timestamp_ms is not None:
            data["timestampMs"] = self.timestamp_ms
        if self.timestamp_end_ms is not None:
            data["timestampEndMs"] = self.timestamp_end_ms
        return data
    
    @classmethod
    def from_dict(cls, data: dict[str, Any], track_id: str | None = None) -> "Note":
        """
        Build a Note from its camelCase form.
        
        Args:
            data: Persisted or remote note object.
            track_id: Fallback track id when the object does not carry one
                      (persisted notes are grouped by track already).
        
        Raises:
            ValueError / TypeError: On missing id, missing body or wrong types.
        """
        if not isinstance(data, dict):
            raise TypeError("note must be an object")
        
        note_id = data.get("id")
        if isinstance(note_id, int) and not isinstance(note_id, bool):
            note_id = str(note_id)
        if not isinstance(note_id, str) or not note_id:
            raise ValueError("note id missing")
        
        owner = data.get("trackId") or track_id
        if not isinstance(owner, str) or not owner:
            raise ValueError("note track id missing")
        
        body = data.get("body")
        if not isinstance(body, str):
            raise ValueError("note body missing")
        
        created_at = _optional_int(data.get("createdAt"), "createdAt") or 0
        
        return cls(
            id=note_id,
            track_id=owner,
            body=body,
            timestamp_ms=_optional_int(data.get("timestampMs"), "timestampMs"),
            timestamp_end_ms=_optional_int(data.get("timestampEndMs"), "timestampEndMs"),
            tags=_tag_list(data.get("tags")),
            created_at=created_at,
            device_id=str(data.get("deviceId") or ""),
        )


@dataclass(frozen=True)
class ImportMeta:
    """
    Where the active playlist came from.
    
    Attributes:
        provider: Adapter provider name ("spotify", "demo", ...), None before import.
        playlist_id: Provider playlist id.
        playlist_title: Display title.
        source_url: URL the playlist was imported from.
        imported_at: Epoch milliseconds of the last (re)import.
        cursor: Opaque load-more cursor, None when everything is loaded.
        has_more: Whether load-more can fetch further tracks.
    """
    provider: str | None = None
    playlist_id: str | None = None
    playlist_title: str = ""
    source_url: str = ""
    imported_at: int | None = None
    cursor: str | None = None
    has_more: bool = False
    
    @property
    def read_only(self) -> bool:
        return self.provider == READ_ONLY_PROVIDER
    
    def to_dict(self) -> dict[str, Any]:
        return {
            "provider": self.provider,
            "playlistId": self.playlist_id,
            "playlistTitle": self.playlist_title,
            "sourceUrl": self.source_url,
            "importedAt": self.imported_at,
            "cursor": self.cursor,
            "hasMore": self.has_more,
        }
    
    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "ImportMeta":
        if not isinstance(data, dict):
            return cls()
        provider = data.get("provider")
        playlist_id = data.get("playlistId")
        cursor = data.get("cursor")
        return cls(
            provider=provider if isinstance(provider, str) else None,
            playlist_id=playlist_id if isinstance(playlist_id, str) else None,
            playlist_title=str(data.get("playlistTitle") or ""),
            source_url=str(data.get("sourceUrl") or ""),
            imported_at=_optional_int(data.get("importedAt"), "importedAt"),
            cursor=str(cursor) if cursor is not None else None,
            has_more=bool(data.get("hasMore", False)),
        )


@dataclass(frozen=True)
class RecentPlaylist:
    """Entry in the recent-playlists list."""
    provider: str
    playlist_id: str
    title: str = ""
    source_url: str = ""
    last_used_at: int = 0
    
    @property
    def key(self) -> tuple[str, str]:
        return (self.provider, self.playlist_id)
    
    def to_dict(self) -> dict[str, Any]:
        return {
            "provider": self.provider,
            "playlistId": self.playlist_id,
            "title": self.title,
            "sourceUrl": self.source_url,
            "lastUsedAt": self.last_used_at,
        }
    
    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RecentPlaylist":
        if not isinstance(data, dict):
            raise TypeError("recent playlist must be an object")
        provider = data.get("provider")
        playlist_id = data.get("playlistId")
        if not isinstance(provider, str) or not provider:
            raise ValueError("recent playlist provider missing")
        if not isinstance(playlist_id, str) or not playlist_id:
            raise ValueError("recent playlist id missing")
        return cls(
            provider=provider,
            playlist_id=playlist_id,
            title=str(data.get("title") or ""),
            source_url=str(data.get("sourceUrl") or ""),
            last_used_at=_optional_int(data.get("lastUsedAt"), "lastUsedAt") or 0,
        )


def upsert_recent(
    recent: Iterable[RecentPlaylist],
    item: RecentPlaylist,
    limit: int = MAX_RECENT_PLAYLISTS
) -> tuple[RecentPlaylist, ...]:
    """
    Move or insert `item` at the front of the recent-playlists list.
    
    The read-only demo provider never appears in the list; entries are
    unique per (provider, playlist_id) and the list holds at most `limit`.
    """
    others = [r for r in recent if r.key != item.key and r.provider != READ_ONLY_PROVIDER]
    if item.provider == READ_ONLY_PROVIDER:
        return tuple(others[:limit])
    return tuple([item, *others][:limit])


@dataclass(frozen=True)
class PersistedState:
    """
    Complete annotation state for the active playlist.
    
    Attributes:
        version: Schema version (STATE_VERSION for in-memory states).
        tracks: Imported tracks in playlist order.
        notes_by_track: track id -> notes tuple.
        tags_by_track: track id -> canonical tag tuple.
        import_meta: Provider/playlist the state belongs to.
        recent_playlists: Most recent first, demo excluded, at most 8.
    """
    version: int = STATE_VERSION
    tracks: tuple[Track, ...] = ()
    notes_by_track: dict[str, tuple[Note, ...]] = field(default_factory=dict)
    tags_by_track: dict[str, tuple[str, ...]] = field(default_factory=dict)
    import_meta: ImportMeta = ImportMeta()
    recent_playlists: tuple[RecentPlaylist, ...] = ()
    
    @property
    def read_only(self) -> bool:
        return self.import_meta.read_only
    
    def notes_for(self, track_id: str) -> tuple[Note, ...]:
        return self.notes_by_track.get(track_id, ())
    
    def tags_for(self, track_id: str) -> tuple[str, ...]:
        return self.tags_by_track.get(track_id, ())
    
    def find_note(self, note_id: str) -> tuple[str, int, Note] | None:
        """Locate a note by id. Returns (track_id, index, note) or None."""
        for track_id, notes in self.notes_by_track.items():
            for index, note in enumerate(notes):
                if note.id == note_id:
                    return track_id, index, note
        return None
    
    def all_notes(self) -> list[Note]:
        return [note for notes in self.notes_by_track.values() for note in notes]
    
    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "tracks": [t.to_dict() for t in self.tracks],
            "notesByTrack": {
                track_id: [n.to_dict() for n in notes]
                for track_id, notes in self.notes_by_track.items()
            },
            "tagsByTrack": {track_id: list(tags) for track_id, tags in self.tags_by_track.items()},
            "importMeta": self.import_meta.to_dict(),
            "recentPlaylists": [r.to_dict() for r in self.recent_playlists],
        }
    
    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PersistedState":
        """
        Build a state from an already-normalized current-version snapshot.
        
        Use playlist_notes.core.migrations.migrate_snapshot() for anything
        read from storage; this constructor assumes clean input and raises
        on malformed entries.
        """
        notes_by_track = {
            track_id: tuple(Note.from_dict(n, track_id=track_id) for n in notes)
            for track_id, notes in (data.get("notesByTrack") or {}).items()
        }
        tags_by_track = {
            track_id: canonicalize_tags(tags)
            for track_id, tags in (data.get("tagsByTrack") or {}).items()
        }
        return cls(
            version=STATE_VERSION,
            tracks=tuple(Track.from_dict(t) for t in data.get("tracks") or ()),
            notes_by_track=notes_by_track,
            tags_by_track={k: v for k, v in tags_by_track.items() if v},
            import_meta=ImportMeta.from_dict(data.get("importMeta")),
            recent_playlists=tuple(
                RecentPlaylist.from_dict(r) for r in data.get("recentPlaylists") or ()
            ),
        )


@dataclass(frozen=True)
class PendingDeletion:
    """Durable note-deletion queue entry."""
    note_id: str
    track_id: str
    queued_at: int
    
    def to_dict(self) -> dict[str, Any]:
        return {"noteId": self.note_id, "trackId": self.track_id, "queuedAt": self.queued_at}
    
    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PendingDeletion":
        if not isinstance(data, dict):
            raise TypeError("pending deletion must be an object")
        note_id = data.get("noteId")
        if not isinstance(note_id, str) or not note_id:
            raise ValueError("pending deletion note id missing")
        return cls(
            note_id=note_id,
            track_id=str(data.get("trackId") or ""),
            queued_at=_optional_int(data.get("queuedAt"), "queuedAt") or 0,
        )


@dataclass(frozen=True)
class PendingTagSync:
    """Durable tag-sync queue entry: the full tag set last edited for a track."""
    track_id: str
    tags: tuple[str, ...]
    queued_at: int
    
    def to_dict(self) -> dict[str, Any]:
        return {"trackId": self.track_id, "tags": list(self.tags), "queuedAt": self.queued_at}
    
    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PendingTagSync":
        if not isinstance(data, dict):
            raise TypeError("pending tag sync must be an object")
        track_id = data.get("trackId")
        if not isinstance(track_id, str) or not track_id:
            raise ValueError("pending tag sync track id missing")
        return cls(
            track_id=track_id,
            tags=_tag_list(data.get("tags")),
            queued_at=_optional_int(data.get("queuedAt"), "queuedAt") or 0,
        )


@dataclass(frozen=True)
class UndoEntry:
    """A pending undo registration; meta is handed back on undo()."""
    id: str
    meta: Any
    expires_at: float
