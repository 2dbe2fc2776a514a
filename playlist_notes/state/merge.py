"""
Union-merge of a remote notes snapshot into local state.

Notes merge by id (remote wins on conflict), tags merge by per-track set
union, and near-duplicate notes authored independently on different
devices collapse to a single copy. The function is pure and idempotent:
merging the same snapshot twice yields the same state as merging it once.
"""

import re
from dataclasses import replace
from typing import Any, Iterable

from playlist_notes.core.logger import get_logger
from playlist_notes.state.models import Note, PersistedState
from playlist_notes.state.tags import canonicalize_tags


logger = get_logger(__name__)

# Same-body notes on different devices are one annotation when their
# timestamps differ by at most DUPLICATE_WINDOW_MS and they were created
# at most DUPLICATE_CREATED_WINDOW_MS apart
DUPLICATE_WINDOW_MS = 2000
DUPLICATE_CREATED_WINDOW_MS = 60_000

_WHITESPACE = re.compile(r"\s+")


def normalize_body(body: str) -> str:
    """Content signature of a note body: trimmed, collapsed, case-folded."""
    return _WHITESPACE.sub(" ", body.strip()).casefold()


def _same_device(a: Note, b: Note) -> bool:
    # Legacy notes carry no device id and may come from anywhere
    return bool(a.device_id) and a.device_id == b.device_id


def is_near_duplicate(a: Note, b: Note) -> bool:
    """
    True if two notes are independent copies of the same annotation.
    
    Both must sit on the same track with the same normalized body and
    matching timestamps, and must have been created close in time on
    different devices. Two notes written on one device are always kept.
    """
    if a.track_id != b.track_id:
        return False
    if _same_device(a, b):
        return False
    if abs(a.created_at - b.created_at) > DUPLICATE_CREATED_WINDOW_MS:
        return False
    if normalize_body(a.body) != normalize_body(b.body):
        return False
    if a.timestamp_ms is None and b.timestamp_ms is None:
        return True
    if a.timestamp_ms is None or b.timestamp_ms is None:
        return False
    return abs(a.timestamp_ms - b.timestamp_ms) <= DUPLICATE_WINDOW_MS


def parse_remote_rows(rows: Iterable[Any]) -> tuple[list[Note], dict[str, set[str]]]:
    """
    Split remote rows into notes and per-track tag contributions.
    
    Rows with an empty body are tag-representative rows: they carry a
    track's tags but are not notes. Malformed rows are skipped.
    
    Returns:
        (notes, tags_by_track) where tags_by_track includes the tags of
        every row, note rows included.
    """
    notes: list[Note] = []
    tags: dict[str, set[str]] = {}
    
    for row in rows:
        if isinstance(row, Note):
            note = row
        else:
            try:
                note = Note.from_dict(row)
            except (TypeError, ValueError) as e:
                logger.debug(f"Skipping malformed remote row: {e}")
                continue
        
        if note.tags:
            tags.setdefault(note.track_id, set()).update(note.tags)
        if note.body.strip():
            notes.append(note)
    
    return notes, tags


def _dedupe(candidates: list[tuple[Note, bool]]) -> list[Note]:
    """Drop near-duplicates: remote first, then earliest createdAt, then smallest id."""
    ordered = sorted(
        candidates,
        key=lambda item: (0 if item[1] else 1, item[0].created_at, item[0].id)
    )
    kept: list[Note] = []
    for note, _ in ordered:
        if any(is_near_duplicate(note, other) for other in kept):
            continue
        kept.append(note)
    return kept


def merge_remote_notes(
    state: PersistedState,
    rows: Iterable[Any],
    exclude_note_ids: Iterable[str] = ()
) -> PersistedState:
    """
    Union-merge remote note rows into `state`.
    
    Args:
        state: Current local state.
        rows: Remote rows (dicts in wire form, or Note instances).
        exclude_note_ids: Ids queued for deletion; never resurrected.
    
    Returns:
        The merged state. Notes per track are ordered by (createdAt, id);
        tag sets are canonical.
    """
    excluded = set(exclude_note_ids)
    remote_notes, remote_tags = parse_remote_rows(rows)
    
    # id -> (note, from_remote); remote rows replace local copies
    by_id: dict[str, tuple[Note, bool]] = {}
    for note in state.all_notes():
        if note.id not in excluded:
            by_id[note.id] = (note, False)
    for note in remote_notes:
        if note.id not in excluded:
            by_id[note.id] = (note, True)
    
    per_track: dict[str, list[tuple[Note, bool]]] = {}
    for note, from_remote in by_id.values():
        per_track.setdefault(note.track_id, []).append((note, from_remote))
    
    notes_by_track: dict[str, tuple[Note, ...]] = {}
    for track_id, candidates in per_track.items():
        kept = _dedupe(candidates)
        kept.sort(key=lambda n: (n.created_at, n.id))
        notes_by_track[track_id] = tuple(kept)
    
    tags_by_track: dict[str, tuple[str, ...]] = {}
    for track_id in set(state.tags_by_track) | set(remote_tags):
        union = set(state.tags_for(track_id)) | remote_tags.get(track_id, set())
        merged = canonicalize_tags(union)
        if merged:
            tags_by_track[track_id] = merged
    
    return replace(state, notes_by_track=notes_by_track, tags_by_track=tags_by_track)
