"""
Actions accepted by the playlist state machine.

Each action is a frozen dataclass; the reducer dispatches on its type.
`type` mirrors the action name used in logs and warnings.
"""

from dataclasses import dataclass, field
from typing import Any

from playlist_notes.state.models import ImportMeta, Note, Track


@dataclass(frozen=True)
class Action:
    """Base class for all actions."""
    
    # Mutating actions are rejected while a read-only playlist is active
    mutating = True
    
    @property
    def type(self) -> str:
        return _ACTION_NAMES.get(type(self), type(self).__name__)


@dataclass(frozen=True)
class AddNote(Action):
    note: Note


@dataclass(frozen=True)
class UpdateNote(Action):
    """Replace an existing note (matched by id) with `note`."""
    note: Note


@dataclass(frozen=True)
class DeleteNote(Action):
    track_id: str
    note_id: str


@dataclass(frozen=True)
class RestoreNote(Action):
    """Reinsert a deleted note; `index` is clamped to the track's note list."""
    note: Note
    index: int | None = None


@dataclass(frozen=True)
class AddTag(Action):
    track_id: str
    tag: str


@dataclass(frozen=True)
class RemoveTag(Action):
    track_id: str
    tag: str


@dataclass(frozen=True)
class SetTracks(Action):
    tracks: tuple[Track, ...]
    cursor: str | None = None
    has_more: bool = False


@dataclass(frozen=True)
class SetProvider(Action):
    provider: str | None


@dataclass(frozen=True)
class LoadPlaylist(Action):
    """
    Replace the active playlist with an import result.
    
    Not subject to the read-only guard: this is how the demo playlist is
    entered and left.
    """
    tracks: tuple[Track, ...]
    import_meta: ImportMeta
    notes_by_track: dict[str, tuple[Note, ...]] = field(default_factory=dict)
    tags_by_track: dict[str, tuple[str, ...]] = field(default_factory=dict)
    
    mutating = False


@dataclass(frozen=True)
class MergeRemote(Action):
    """Union-merge a remote notes snapshot into local state."""
    rows: tuple[Any, ...]
    exclude_note_ids: frozenset[str] = frozenset()


_ACTION_NAMES = {
    AddNote: "ADD_NOTE",
    UpdateNote: "UPDATE_NOTE",
    DeleteNote: "DELETE_NOTE",
    RestoreNote: "RESTORE_NOTE",
    AddTag: "ADD_TAG",
    RemoveTag: "REMOVE_TAG",
    SetTracks: "SET_TRACKS",
    SetProvider: "SET_PROVIDER",
    LoadPlaylist: "LOAD_PLAYLIST",
    MergeRemote: "MERGE_REMOTE",
}
