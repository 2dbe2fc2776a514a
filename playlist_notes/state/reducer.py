"""
Pure state-transition core for playlist annotations.

reduce(state, action) never mutates its input and never raises for
domain problems: rejected actions return the unchanged state with the
problem reported in ReduceResult.warning (read-only guard) or
ReduceResult.error (validation). PlaylistStateMachine wraps the reducer
with the current state, a re-entrant lock and change listeners.

Optimistic updates:
    Dispatch applies immediately. Callers that learn the remote side
    rejected a change dispatch a compensating action with the prior
    value (e.g. DeleteNote after a failed AddNote).
"""

import threading
from dataclasses import dataclass, replace
from typing import Callable

from playlist_notes.core.exceptions import ValidationError
from playlist_notes.core.logger import get_logger
from playlist_notes.state.actions import (
    Action,
    AddNote,
    AddTag,
    DeleteNote,
    LoadPlaylist,
    MergeRemote,
    RemoveTag,
    RestoreNote,
    SetProvider,
    SetTracks,
    UpdateNote,
)
from playlist_notes.state.merge import merge_remote_notes
from playlist_notes.state.models import (
    Note,
    PersistedState,
    RecentPlaylist,
    now_ms,
    upsert_recent,
)
from playlist_notes.state import tags as tag_rules


logger = get_logger(__name__)

MAX_NOTE_LENGTH = 2000


@dataclass(frozen=True)
class RemovedNote:
    """A note removed by DELETE_NOTE, with its position for undo."""
    track_id: str
    index: int
    note: Note


@dataclass(frozen=True)
class ReduceResult:
    """
    Outcome of a single reduce() call.
    
    Attributes:
        state: New state (the same object when nothing changed).
        warning: Side-channel message for ignored actions (read-only guard).
        error: Validation error for rejected actions.
        removed: Set by DELETE_NOTE.
    """
    state: PersistedState
    warning: str | None = None
    error: ValidationError | None = None
    removed: RemovedNote | None = None
    
    @property
    def ok(self) -> bool:
        return self.error is None and self.warning is None


def validate_note(note: Note) -> Note:
    """
    Validate a note for ADD_NOTE / UPDATE_NOTE.
    
    Returns:
        The note with its body trimmed.
    
    Raises:
        ValidationError: If the body is empty or too long, or the
                         timestamps are inconsistent.
    """
    body = note.body.strip() if isinstance(note.body, str) else ""
    if not body:
        raise ValidationError("Note body cannot be empty", details={"note_id": note.id})
    if len(body) > MAX_NOTE_LENGTH:
        raise ValidationError(
            f"Note body exceeds {MAX_NOTE_LENGTH} characters",
            details={"note_id": note.id, "length": len(body)}
        )
    
    start, end = note.timestamp_ms, note.timestamp_end_ms
    if start is not None and (not isinstance(start, int) or start < 0):
        raise ValidationError("timestampMs must be a non-negative integer", details={"timestamp_ms": start})
    if end is not None:
        if start is None:
            raise ValidationError("timestampEndMs requires timestampMs")
        if not isinstance(end, int) or end < start:
            raise ValidationError(
                "timestampEndMs must be greater than or equal to timestampMs",
                details={"timestamp_ms": start, "timestamp_end_ms": end}
            )
    
    if body != note.body:
        note = replace(note, body=body)
    return note


def _with_notes(state: PersistedState, track_id: str, notes: list[Note]) -> PersistedState:
    notes_by_track = dict(state.notes_by_track)
    if notes:
        notes_by_track[track_id] = tuple(notes)
    else:
        notes_by_track.pop(track_id, None)
    return replace(state, notes_by_track=notes_by_track)


def _with_tags(state: PersistedState, track_id: str, tags: tuple[str, ...]) -> PersistedState:
    tags_by_track = dict(state.tags_by_track)
    if tags:
        tags_by_track[track_id] = tags
    else:
        tags_by_track.pop(track_id, None)
    return replace(state, tags_by_track=tags_by_track)


def _reject(state: PersistedState, error: ValidationError) -> ReduceResult:
    return ReduceResult(state=state, error=error)


def _add_note(state: PersistedState, action: AddNote) -> ReduceResult:
    try:
        note = validate_note(action.note)
    except ValidationError as e:
        return _reject(state, e)
    
    if state.find_note(note.id) is not None:
        return ReduceResult(state=state)
    
    notes = list(state.notes_for(note.track_id))
    notes.append(note)
    return ReduceResult(state=_with_notes(state, note.track_id, notes))


def _update_note(state: PersistedState, action: UpdateNote) -> ReduceResult:
    found = state.find_note(action.note.id)
    if found is None:
        return _reject(state, ValidationError("Note not found", details={"note_id": action.note.id}))
    
    try:
        note = validate_note(action.note)
    except ValidationError as e:
        return _reject(state, e)
    
    track_id, index, current = found
    # Identity fields never change on update
    note = replace(note, track_id=track_id, created_at=current.created_at)
    notes = list(state.notes_for(track_id))
    notes[index] = note
    return ReduceResult(state=_with_notes(state, track_id, notes))


def _delete_note(state: PersistedState, action: DeleteNote) -> ReduceResult:
    notes = list(state.notes_for(action.track_id))
    for index, note in enumerate(notes):
        if note.id == action.note_id:
            del notes[index]
            return ReduceResult(
                state=_with_notes(state, action.track_id, notes),
                removed=RemovedNote(track_id=action.track_id, index=index, note=note),
            )
    return _reject(state, ValidationError("Note not found", details={"note_id": action.note_id}))


def _restore_note(state: PersistedState, action: RestoreNote) -> ReduceResult:
    if state.find_note(action.note.id) is not None:
        return ReduceResult(state=state)
    
    track_id = action.note.track_id
    notes = list(state.notes_for(track_id))
    index = len(notes) if action.index is None else max(0, min(action.index, len(notes)))
    notes.insert(index, action.note)
    return ReduceResult(state=_with_notes(state, track_id, notes))


def _add_tag(state: PersistedState, action: AddTag) -> ReduceResult:
    current = state.tags_for(action.track_id)
    try:
        updated = tag_rules.add_tag(current, action.tag)
    except ValidationError as e:
        return _reject(state, e)
    if updated == current:
        return ReduceResult(state=state)
    return ReduceResult(state=_with_tags(state, action.track_id, updated))


def _remove_tag(state: PersistedState, action: RemoveTag) -> ReduceResult:
    current = state.tags_for(action.track_id)
    updated = tag_rules.remove_tag(current, action.tag)
    if updated == current:
        return ReduceResult(state=state)
    return ReduceResult(state=_with_tags(state, action.track_id, updated))


def _set_tracks(state: PersistedState, action: SetTracks) -> ReduceResult:
    meta = replace(state.import_meta, cursor=action.cursor, has_more=action.has_more)
    return ReduceResult(state=replace(state, tracks=tuple(action.tracks), import_meta=meta))


def _set_provider(state: PersistedState, action: SetProvider) -> ReduceResult:
    meta = replace(state.import_meta, provider=action.provider)
    return ReduceResult(state=replace(state, import_meta=meta))


def _load_playlist(state: PersistedState, action: LoadPlaylist) -> ReduceResult:
    meta = action.import_meta
    same_playlist = (
        meta.provider is not None
        and meta.provider == state.import_meta.provider
        and meta.playlist_id == state.import_meta.playlist_id
    )
    
    if same_playlist:
        notes_by_track = dict(state.notes_by_track)
        tags_by_track = dict(state.tags_by_track)
    else:
        notes_by_track = {k: tuple(v) for k, v in action.notes_by_track.items() if v}
        tags_by_track = {}
        for track_id, raw in action.tags_by_track.items():
            canonical = tag_rules.canonicalize_tags(raw)
            if canonical:
                tags_by_track[track_id] = canonical
    
    recent = state.recent_playlists
    if meta.provider and meta.playlist_id:
        recent = upsert_recent(recent, RecentPlaylist(
            provider=meta.provider,
            playlist_id=meta.playlist_id,
            title=meta.playlist_title,
            source_url=meta.source_url,
            last_used_at=meta.imported_at or now_ms(),
        ))
    
    return ReduceResult(state=replace(
        state,
        tracks=tuple(action.tracks),
        notes_by_track=notes_by_track,
        tags_by_track=tags_by_track,
        import_meta=meta,
        recent_playlists=recent,
    ))


def _merge_remote(state: PersistedState, action: MergeRemote) -> ReduceResult:
    merged = merge_remote_notes(state, action.rows, action.exclude_note_ids)
    if merged == state:
        return ReduceResult(state=state)
    return ReduceResult(state=merged)


_HANDLERS: dict[type, Callable[[PersistedState, Action], ReduceResult]] = {
    AddNote: _add_note,
    UpdateNote: _update_note,
    DeleteNote: _delete_note,
    RestoreNote: _restore_note,
    AddTag: _add_tag,
    RemoveTag: _remove_tag,
    SetTracks: _set_tracks,
    SetProvider: _set_provider,
    LoadPlaylist: _load_playlist,
    MergeRemote: _merge_remote,
}


def reduce(state: PersistedState, action: Action) -> ReduceResult:
    """
    Apply `action` to `state`.
    
    The read-only guard runs before any validation: while the active
    playlist belongs to the read-only provider every mutating action
    returns the same state object plus a warning.
    """
    if action.mutating and state.read_only:
        return ReduceResult(
            state=state,
            warning=f"{action.type} ignored: playlist is read-only"
        )
    
    handler = _HANDLERS.get(type(action))
    if handler is None:
        raise TypeError(f"Unknown action: {action!r}")
    return handler(state, action)


Listener = Callable[[PersistedState, PersistedState, Action], None]


class PlaylistStateMachine:
    """
    Holder of the current state, serializing dispatch.
    
    Dispatched actions apply in dispatch order under a re-entrant lock,
    so timer callbacks and CLI commands can dispatch from any thread.
    Listeners are called (inside the lock) after each state change with
    (previous, current, action).
    
    Example:
        >>> machine = PlaylistStateMachine()
        >>> result = machine.dispatch(AddTag("t1", "Rock"))
        >>> machine.state.tags_for("t1")
        ('rock',)
    """
    
    def __init__(self, state: PersistedState | None = None):
        self._state = state or PersistedState()
        self._lock = threading.RLock()
        self._listeners: list[Listener] = []
    
    @property
    def state(self) -> PersistedState:
        with self._lock:
            return self._state
    
    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a change listener. Returns a function that unsubscribes it."""
        with self._lock:
            self._listeners.append(listener)
        
        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)
        
        return unsubscribe
    
    def dispatch(self, action: Action) -> ReduceResult:
        with self._lock:
            previous = self._state
            result = reduce(previous, action)
            
            if result.warning:
                logger.warning(result.warning)
            if result.error:
                logger.debug(f"{action.type} rejected: {result.error.message}")
            
            if result.state is not previous:
                self._state = result.state
                for listener in list(self._listeners):
                    listener(previous, result.state, action)
            return result
    
    def replace_state(self, state: PersistedState) -> None:
        """Swap the whole state (startup load, crash recovery)."""
        with self._lock:
            self._state = state
