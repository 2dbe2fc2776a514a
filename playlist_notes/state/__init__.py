"""
State module for playlist-notes.

Pure data models, tag rules, the reducer and the remote union-merge:
    - models: Track, Note, ImportMeta, RecentPlaylist, PersistedState
    - tags: Tag normalization and validation
    - actions: Actions accepted by the reducer
    - reducer: reduce() and PlaylistStateMachine
    - merge: merge_remote_notes()
"""

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
    READ_ONLY_PROVIDER,
    STATE_VERSION,
    ImportMeta,
    Note,
    PendingDeletion,
    PendingTagSync,
    PersistedState,
    RecentPlaylist,
    Track,
    UndoEntry,
    new_note_id,
    now_ms,
    upsert_recent,
)
from playlist_notes.state.reducer import (
    PlaylistStateMachine,
    ReduceResult,
    RemovedNote,
    reduce,
)
from playlist_notes.state.tags import canonicalize_tags, normalize_tag, validate_tag

__all__ = [
    # Actions
    "Action",
    "AddNote",
    "AddTag",
    "DeleteNote",
    "LoadPlaylist",
    "MergeRemote",
    "RemoveTag",
    "RestoreNote",
    "SetProvider",
    "SetTracks",
    "UpdateNote",
    # Models
    "READ_ONLY_PROVIDER",
    "STATE_VERSION",
    "ImportMeta",
    "Note",
    "PendingDeletion",
    "PendingTagSync",
    "PersistedState",
    "RecentPlaylist",
    "Track",
    "UndoEntry",
    "new_note_id",
    "now_ms",
    "upsert_recent",
    # Reducer
    "PlaylistStateMachine",
    "ReduceResult",
    "RemovedNote",
    "reduce",
    "merge_remote_notes",
    # Tags
    "canonicalize_tags",
    "normalize_tag",
    "validate_tag",
]
