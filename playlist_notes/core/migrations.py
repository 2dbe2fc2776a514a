"""
Forward-only migrations for the persisted state snapshot.

Snapshots are plain JSON documents carrying a `version` field. Loading a
snapshot runs every migration step between its version and STATE_VERSION,
then normalizes the result into a PersistedState. Migration steps are
pure functions from dict to dict; they never touch storage.

Version history:
    1: notesByTrack values may be plain strings; no tagsByTrack
    2: notes are objects; provider/playlistId stored at top level
    3: importMeta object, recentPlaylists, canonical tag sets (current)

Malformed entries (tracks without id, notes without id or body, containers
of the wrong type) are dropped with a warning instead of failing the load.
Only a snapshot that cannot be interpreted at all raises MigrationError.
"""

import uuid
from typing import Any, Callable

from playlist_notes.core.exceptions import MigrationError
from playlist_notes.core.logger import get_logger
from playlist_notes.state.models import (
    STATE_VERSION,
    ImportMeta,
    Note,
    PersistedState,
    RecentPlaylist,
    Track,
    upsert_recent,
)
from playlist_notes.state.tags import canonicalize_tags


logger = get_logger(__name__)


def _legacy_note_id(track_id: str, index: int, body: str) -> str:
    # Deterministic so that re-running the migration yields the same ids
    return uuid.uuid5(uuid.NAMESPACE_URL, f"legacy-note:{track_id}:{index}:{body}").hex


def _migrate_v1_to_v2(data: dict[str, Any]) -> dict[str, Any]:
    """Plain-string notes become note objects; tagsByTrack is added."""
    notes_by_track = data.get("notesByTrack")
    upgraded: dict[str, Any] = {}
    
    if isinstance(notes_by_track, dict):
        for track_id, notes in notes_by_track.items():
            if isinstance(notes, str):
                notes = [notes]
            if not isinstance(notes, list):
                logger.warning(f"Dropping notes for track {track_id}: not a list")
                continue
            converted = []
            for index, note in enumerate(notes):
                if isinstance(note, str):
                    note = {
                        "id": _legacy_note_id(track_id, index, note),
                        "trackId": track_id,
                        "body": note,
                        "createdAt": 0,
                        "deviceId": "",
                    }
                converted.append(note)
            upgraded[track_id] = converted
    
    result = dict(data)
    result["notesByTrack"] = upgraded
    result.setdefault("tagsByTrack", {})
    result["version"] = 2
    return result


def _migrate_v2_to_v3(data: dict[str, Any]) -> dict[str, Any]:
    """Move provider/playlistId into importMeta and add recentPlaylists."""
    result = dict(data)
    meta = result.get("importMeta")
    meta = dict(meta) if isinstance(meta, dict) else {}
    
    for key in ("provider", "playlistId", "playlistTitle", "importedAt"):
        if key in result:
            value = result.pop(key)
            meta.setdefault(key, value)
    
    result["importMeta"] = meta
    if not isinstance(result.get("recentPlaylists"), list):
        result["recentPlaylists"] = []
    result["version"] = 3
    return result


# version -> step that upgrades a snapshot of that version by one
MIGRATIONS: dict[int, Callable[[dict[str, Any]], dict[str, Any]]] = {
    1: _migrate_v1_to_v2,
    2: _migrate_v2_to_v3,
}


def _normalize_recent(raw_recent: Any) -> tuple[RecentPlaylist, ...]:
    """Parse recentPlaylists, keeping the first entry per playlist and no demo."""
    if not isinstance(raw_recent, list):
        if raw_recent is not None:
            logger.warning("Dropping recentPlaylists: not a list")
        return ()
    
    parsed = []
    for raw in raw_recent:
        try:
            parsed.append(RecentPlaylist.from_dict(raw))
        except (TypeError, ValueError, OverflowError) as e:
            logger.warning(f"Dropping malformed recent playlist: {e}")
    
    # Stored most recent first; re-inserting oldest first restores that order
    recent: tuple[RecentPlaylist, ...] = ()
    for item in reversed(parsed):
        recent = upsert_recent(recent, item)
    return recent


def _normalize(data: dict[str, Any]) -> PersistedState:
    """Build a PersistedState from a current-version dict, dropping bad entries."""
    tracks = []
    raw_tracks = data.get("tracks")
    if not isinstance(raw_tracks, list):
        if raw_tracks is not None:
            logger.warning("Dropping tracks: not a list")
        raw_tracks = []
    for raw in raw_tracks:
        try:
            tracks.append(Track.from_dict(raw))
        except (TypeError, ValueError, OverflowError) as e:
            logger.warning(f"Dropping malformed track: {e}")
    
    notes_by_track: dict[str, tuple[Note, ...]] = {}
    raw_notes = data.get("notesByTrack")
    if not isinstance(raw_notes, dict):
        if raw_notes is not None:
            logger.warning("Dropping notesByTrack: not an object")
        raw_notes = {}
    for track_id, notes in raw_notes.items():
        if not isinstance(notes, list):
            logger.warning(f"Dropping notes for track {track_id}: not a list")
            continue
        kept = []
        for raw in notes:
            try:
                note = Note.from_dict(raw, track_id=track_id)
            except (TypeError, ValueError, OverflowError) as e:
                logger.warning(f"Dropping malformed note on track {track_id}: {e}")
                continue
            if not note.body.strip():
                logger.warning(f"Dropping empty note {note.id} on track {track_id}")
                continue
            kept.append(note)
        if kept:
            notes_by_track[track_id] = tuple(kept)
    
    tags_by_track: dict[str, tuple[str, ...]] = {}
    raw_tags = data.get("tagsByTrack")
    if not isinstance(raw_tags, dict):
        if raw_tags is not None:
            logger.warning("Dropping tagsByTrack: not an object")
        raw_tags = {}
    for track_id, tags in raw_tags.items():
        if not isinstance(tags, list):
            logger.warning(f"Dropping tags for track {track_id}: not a list")
            continue
        canonical = canonicalize_tags(t for t in tags if isinstance(t, str))
        if canonical:
            tags_by_track[track_id] = canonical
    
    recent = _normalize_recent(data.get("recentPlaylists"))
    
    try:
        import_meta = ImportMeta.from_dict(data.get("importMeta"))
    except (TypeError, ValueError, OverflowError) as e:
        logger.warning(f"Dropping malformed importMeta: {e}")
        import_meta = ImportMeta()
    
    return PersistedState(
        version=STATE_VERSION,
        tracks=tuple(tracks),
        notes_by_track=notes_by_track,
        tags_by_track=tags_by_track,
        import_meta=import_meta,
        recent_playlists=recent,
    )


def snapshot_version(data: Any) -> int:
    """
    Read the schema version of a raw snapshot.
    
    A snapshot without a version field is treated as version 1.
    
    Raises:
        MigrationError: If the snapshot is not an object or the version is
                        not a positive integer.
    """
    if not isinstance(data, dict):
        raise MigrationError(
            "Persisted state is not a JSON object",
            details={"type": type(data).__name__}
        )
    version = data.get("version", 1)
    if isinstance(version, bool) or not isinstance(version, int) or version < 1:
        raise MigrationError("Invalid state version", details={"version": version})
    return version


def migrate_snapshot(data: Any) -> tuple[PersistedState, bool]:
    """
    Migrate a raw snapshot forward to STATE_VERSION.
    
    Args:
        data: Parsed JSON snapshot.
    
    Returns:
        (state, migrated) where migrated is True if any migration step ran.
    
    Raises:
        MigrationError: If the snapshot is unreadable or from a future version.
    """
    version = snapshot_version(data)
    if version > STATE_VERSION:
        raise MigrationError(
            "Persisted state was written by a newer version",
            details={"version": version, "supported": STATE_VERSION}
        )
    
    migrated = version < STATE_VERSION
    try:
        while version < STATE_VERSION:
            logger.info(f"Migrating persisted state from version {version} to {version + 1}")
            data = MIGRATIONS[version](data)
            version += 1
        state = _normalize(data)
    except (TypeError, ValueError, OverflowError) as e:
        raise MigrationError(
            "Persisted state could not be interpreted",
            details={"version": version, "original_error": str(e)}
        ) from e
    
    return state, migrated
