"""
Sync orchestration: optimistic edits, offline queues and remote merge.

SyncOrchestrator is the entry point for every user edit. Each edit is
applied to local state first (optimistic update) and then propagated:

    add_note     -> remote create; compensating DELETE_NOTE if the server
                    rejects it for good
    add/remove tag -> tag sync queue (debounced, full-set upsert)
    delete_note  -> deletion queue + undo window
    sync_remote  -> fetch all rows, back up local state, union-merge

ImportFlow loads playlists through the adapters. Both go through the
request sequencer so that a slow, superseded response never overwrites
the result of a newer request.

State persistence happens through LocalStateStore.attach(): every state
change dispatched here is saved as a side effect.
"""

from dataclasses import dataclass, replace
from typing import Callable

from playlist_notes.adapters import DEMO_PLAYLIST_URL, detect_provider
from playlist_notes.adapters.base import AdapterResult, ImportOptions, PlaylistAdapter
from playlist_notes.core.config import SyncConfig
from playlist_notes.core.exceptions import (
    AdapterError,
    AuthError,
    NotFoundError,
    PermanentClientError,
    RemoteError,
    RequestCancelled,
    TransientError,
)
from playlist_notes.core.logger import get_logger
from playlist_notes.core.state_store import LocalStateStore
from playlist_notes.core.storage import KeyValueStore
from playlist_notes.identity.device import IdentityContext
from playlist_notes.state.actions import (
    AddNote,
    AddTag,
    DeleteNote,
    LoadPlaylist,
    MergeRemote,
    RemoveTag,
    RestoreNote,
    SetTracks,
    UpdateNote,
)
from playlist_notes.state.models import READ_ONLY_PROVIDER, Note, new_note_id, now_ms
from playlist_notes.state.reducer import PlaylistStateMachine, ReduceResult, RemovedNote
from playlist_notes.sync.queues import (
    DeletionFlushStats,
    DeletionQueue,
    TagFlushStats,
    TagSyncQueue,
)
from playlist_notes.sync.remote import RemoteStore
from playlist_notes.sync.scheduler import Scheduler
from playlist_notes.sync.sequencer import IMPORT, LOAD_MORE, SYNC, RequestSequencer
from playlist_notes.sync.undo import UndoManager


logger = get_logger(__name__)

_UNSET = object()


@dataclass(frozen=True)
class ReconnectReport:
    """What on_reconnect()/on_foreground() did."""
    tags: TagFlushStats
    deletions: DeletionFlushStats
    merged: bool
    sync_error: str | None = None


def _raise_on_error(result: ReduceResult) -> ReduceResult:
    if result.error is not None:
        raise result.error
    return result


class SyncOrchestrator:
    """
    Coordinates local state, the two offline queues and the remote store.
    
    Args:
        machine: State machine holding the active playlist.
        state_store: Used for the pre-merge backup.
        remote: Notes/tags HTTP client.
        context: Current device identity.
        kv: Store the queues persist to.
        scheduler: Timer source for debounce and undo windows.
        sequencer: Race guard shared with ImportFlow.
        config: Debounce, queue bound and undo window.
    """
    
    def __init__(
        self,
        machine: PlaylistStateMachine,
        state_store: LocalStateStore,
        remote: RemoteStore,
        context: IdentityContext,
        kv: KeyValueStore,
        scheduler: Scheduler,
        sequencer: RequestSequencer | None = None,
        config: SyncConfig | None = None
    ) -> None:
        config = config or SyncConfig()
        self.machine = machine
        self.state_store = state_store
        self.remote = remote
        self.context = context
        self.sequencer = sequencer or RequestSequencer()
        
        self.tag_queue = TagSyncQueue(
            kv, scheduler, self._send_tags, debounce_ms=config.tag_debounce_ms
        )
        self.deletion_queue = DeletionQueue(
            kv, remote.delete_note, max_items=config.max_pending_deletions
        )
        self.undo_manager = UndoManager(
            scheduler,
            window_seconds=config.undo_window_seconds,
            on_expire=self._on_undo_expired,
        )
    
    @property
    def playlist_id(self) -> str | None:
        return self.machine.state.import_meta.playlist_id
    
    @property
    def online(self) -> bool:
        """True once this installation has a device identity."""
        return self.context.identity is not None
    
    # =========================================================================
    # Notes
    # =========================================================================
    
    def add_note(
        self,
        track_id: str,
        body: str,
        timestamp_ms: int | None = None,
        timestamp_end_ms: int | None = None
    ) -> Note | None:
        """
        Add a note locally, then create it remotely.
        
        Returns:
            The stored note, or None if the playlist is read-only.
        
        Raises:
            ValidationError: The note was rejected locally.
            AuthError / PermanentClientError: The server rejected the note;
                the local copy has been removed again.
            RateLimited: The server refused the request; the local copy is kept.
        """
        draft = Note(
            id=new_note_id(),
            track_id=track_id,
            body=body,
            timestamp_ms=timestamp_ms,
            timestamp_end_ms=timestamp_end_ms,
            created_at=now_ms(),
            device_id=self.context.device_id,
        )
        result = _raise_on_error(self.machine.dispatch(AddNote(draft)))
        if result.warning:
            return None
        
        found = result.state.find_note(draft.id)
        note = found[2] if found else draft
        
        if not self.online:
            logger.debug(f"Note {note.id} kept local: no device identity yet")
            return note
        
        try:
            self.remote.create_note(note, self.playlist_id)
        except (AuthError, PermanentClientError, NotFoundError) as e:
            logger.warning(f"Server rejected note {note.id}, reverting: {e.message}")
            self.machine.dispatch(DeleteNote(track_id=note.track_id, note_id=note.id))
            raise
        except TransientError as e:
            logger.info(f"Note {note.id} kept local, server unreachable: {e.message}")
        
        return note
    
    def update_note(
        self,
        note_id: str,
        body: str | None = None,
        timestamp_ms: int | None | object = _UNSET,
        timestamp_end_ms: int | None | object = _UNSET
    ) -> Note | None:
        """
        Edit a local note. Fields left unset keep their current value.
        
        Raises:
            ValidationError: Unknown note id or invalid new values.
        """
        found = self.machine.state.find_note(note_id)
        if found is None:
            # Let the reducer report the unknown id
            current = Note(id=note_id, track_id="", body=body or "")
        else:
            current = found[2]
        
        changes: dict = {}
        if body is not None:
            changes["body"] = body
        if timestamp_ms is not _UNSET:
            changes["timestamp_ms"] = timestamp_ms
        if timestamp_end_ms is not _UNSET:
            changes["timestamp_end_ms"] = timestamp_end_ms
        
        result = _raise_on_error(self.machine.dispatch(UpdateNote(replace(current, **changes))))
        if result.warning:
            return None
        updated = result.state.find_note(note_id)
        return updated[2] if updated else None
    
    def delete_note(self, track_id: str, note_id: str) -> RemovedNote | None:
        """
        Delete a note locally, queue the remote delete and open an undo window.
        
        The queued delete is not sent while the undo window is open
        (unless a flush is forced).
        """
        result = _raise_on_error(self.machine.dispatch(DeleteNote(track_id=track_id, note_id=note_id)))
        if result.removed is None:
            return None
        
        self.deletion_queue.enqueue(note_id, track_id)
        self.undo_manager.schedule_undo(note_id, result.removed)
        return result.removed
    
    def undo_delete(self, note_id: str) -> bool:
        """
        Reverse a delete within its undo window.
        
        Returns:
            False if there is nothing to undo (expired or never deleted).
        """
        removed: RemovedNote | None = self.undo_manager.undo(note_id)
        if removed is None:
            return False
        
        self.machine.dispatch(RestoreNote(note=removed.note, index=removed.index))
        
        if self.deletion_queue.remove(note_id):
            return True
        
        # The delete already reached the server (forced flush)
        if self.online:
            try:
                self.remote.create_note(removed.note, self.playlist_id)
            except RemoteError as e:
                logger.warning(f"Restored note {note_id} could not be re-created remotely: {e.message}")
        return True
    
    def _on_undo_expired(self, note_id: str, removed: RemovedNote) -> None:
        logger.debug(f"Undo window closed for note {note_id}")
        if self.online:
            self.flush_deletions()
    
    # =========================================================================
    # Tags
    # =========================================================================
    
    def _enqueue_tags(self, result: ReduceResult, previous_state, track_id: str) -> None:
        state = result.state
        if state is previous_state or state.read_only:
            return
        self.tag_queue.enqueue(track_id, state.tags_for(track_id), read_only=state.read_only)
    
    def add_tag(self, track_id: str, tag: str) -> ReduceResult:
        """Add a tag locally and schedule the debounced upsert."""
        previous = self.machine.state
        result = _raise_on_error(self.machine.dispatch(AddTag(track_id=track_id, tag=tag)))
        self._enqueue_tags(result, previous, track_id)
        return result
    
    def remove_tag(self, track_id: str, tag: str) -> ReduceResult:
        previous = self.machine.state
        result = _raise_on_error(self.machine.dispatch(RemoveTag(track_id=track_id, tag=tag)))
        self._enqueue_tags(result, previous, track_id)
        return result
    
    def _send_tags(self, track_id: str, tags: tuple[str, ...]) -> None:
        if not self.online:
            raise TransientError("No device identity yet", details={"track_id": track_id})
        self.remote.upsert_tags(track_id, tags, self.playlist_id)
    
    # =========================================================================
    # Flush and merge
    # =========================================================================
    
    def flush_tags(self) -> TagFlushStats:
        if not self.online:
            return TagFlushStats(retryable=len(self.tag_queue))
        return self.tag_queue.flush()
    
    def flush_deletions(self, force: bool = False) -> DeletionFlushStats:
        """Send queued deletes; notes with a live undo window wait unless forced."""
        if not self.online:
            return DeletionFlushStats(deferred=len(self.deletion_queue))
        stats = self.deletion_queue.flush(should_defer=self.undo_manager.is_pending, force=force)
        if stats.results:
            logger.info(
                f"Deletions: {stats.completed} completed ({stats.already_gone} already gone), "
                f"{stats.retryable} retryable, {stats.unauthorized} unauthorized, "
                f"{stats.failed} failed, {stats.deferred} deferred"
            )
        return stats
    
    def sync_remote(self) -> bool:
        """
        Fetch the playlist's remote rows and union-merge them into local state.
        
        Returns:
            True if a merge was applied; False when there was nothing to
            sync or a newer sync superseded this one.
        """
        state = self.machine.state
        playlist_id = state.import_meta.playlist_id
        if not playlist_id or state.read_only or not self.online:
            return False
        
        ticket = self.sequencer.begin(SYNC)
        rows = self.remote.fetch_notes(playlist_id)
        
        if not self.sequencer.is_current(ticket) or ticket.cancelled:
            logger.debug(f"Discarding stale sync response #{ticket.sequence}")
            return False
        
        current = self.machine.state
        if current.import_meta.playlist_id != playlist_id:
            logger.debug("Discarding sync response for a playlist that is no longer active")
            return False
        
        self.state_store.write_backup(current)
        result = self.machine.dispatch(MergeRemote(
            rows=tuple(rows),
            exclude_note_ids=self.deletion_queue.note_ids(),
        ))
        if result.warning:
            return False
        logger.info(f"Merged {len(rows)} remote rows for playlist {playlist_id}")
        return True
    
    def on_reconnect(self) -> ReconnectReport:
        """
        Flush both queues, then merge the remote snapshot.
        
        A transient failure of the merge is reported in the result; the
        flush counts of the queues are kept either way.
        """
        tags = self.flush_tags()
        deletions = self.flush_deletions()
        try:
            merged = self.sync_remote()
        except TransientError as e:
            logger.warning(f"Remote merge skipped, server unreachable: {e.message}")
            return ReconnectReport(tags=tags, deletions=deletions, merged=False, sync_error=e.message)
        return ReconnectReport(tags=tags, deletions=deletions, merged=merged)
    
    def on_foreground(self) -> ReconnectReport:
        return self.on_reconnect()
    
    def shutdown(self) -> None:
        """Stop timers. Queued items stay persisted for the next run."""
        self.tag_queue.cancel_timers()
        self.undo_manager.cancel_all()
        self.sequencer.cancel_all()


class ImportFlow:
    """
    Load playlists through the adapters under the race guard.
    
    Args:
        machine: State machine receiving LOAD_PLAYLIST / SET_TRACKS.
        state_store: Used for the demo-viewed marker.
        adapter_factory: provider name -> adapter.
        sequencer: Shared with the orchestrator.
    """
    
    def __init__(
        self,
        machine: PlaylistStateMachine,
        state_store: LocalStateStore,
        adapter_factory: Callable[[str], PlaylistAdapter],
        sequencer: RequestSequencer | None = None
    ) -> None:
        self.machine = machine
        self.state_store = state_store
        self.adapter_factory = adapter_factory
        self.sequencer = sequencer or RequestSequencer()
    
    def _load(self, provider: str, options_factory: Callable[..., ImportOptions]) -> AdapterResult | None:
        adapter = self.adapter_factory(provider)
        # A new playlist makes any in-flight load-more meaningless
        self.sequencer.cancel(LOAD_MORE)
        ticket = self.sequencer.begin(IMPORT)
        
        try:
            result = adapter.import_playlist(options_factory(cancel_event=ticket.cancel_event))
        except RequestCancelled:
            logger.debug(f"Import #{ticket.sequence} cancelled")
            return None
        
        if not self.sequencer.is_current(ticket):
            logger.debug(f"Discarding stale import response #{ticket.sequence}")
            return None
        
        self.machine.dispatch(LoadPlaylist(
            tracks=result.tracks,
            import_meta=result.import_meta(),
            notes_by_track=dict(result.notes_by_track),
            tags_by_track=dict(result.tags_by_track),
        ))
        if result.provider == READ_ONLY_PROVIDER:
            self.state_store.mark_demo_viewed()
        
        logger.info(f"Loaded {len(result.tracks)} tracks from {result.provider}: {result.title}")
        return result
    
    def import_initial(self, url: str) -> AdapterResult | None:
        """
        Import a playlist from its URL.
        
        Returns:
            The adapter result, or None if a newer import superseded it.
        
        Raises:
            AdapterError: Unsupported URL or provider failure.
        """
        provider = detect_provider(url)
        if provider is None:
            raise AdapterError("Unsupported playlist URL", details={"url": url})
        return self._load(provider, lambda **kw: ImportOptions(url=url, **kw))
    
    def reimport(self) -> AdapterResult | None:
        """Re-fetch the active playlist, keeping its annotations."""
        meta = self.machine.state.import_meta
        if not meta.provider or not meta.playlist_id:
            raise AdapterError("No playlist loaded to reimport")
        return self._load(
            meta.provider,
            lambda **kw: ImportOptions(url=meta.source_url or None, playlist_id=meta.playlist_id, **kw)
        )
    
    def load_demo(self) -> AdapterResult | None:
        """Load the read-only demo playlist."""
        return self._load(READ_ONLY_PROVIDER, lambda **kw: ImportOptions(url=DEMO_PLAYLIST_URL, **kw))
    
    def import_more(self) -> int | None:
        """
        Fetch the next page of the active playlist.
        
        Returns:
            Number of tracks added (0 when everything is loaded), or None
            if the response was superseded.
        """
        state = self.machine.state
        meta = state.import_meta
        if not meta.provider or not meta.has_more or meta.cursor is None:
            return 0
        
        adapter = self.adapter_factory(meta.provider)
        ticket = self.sequencer.begin(LOAD_MORE)
        try:
            result = adapter.import_playlist(ImportOptions(
                url=meta.source_url or None,
                playlist_id=meta.playlist_id,
                cursor=meta.cursor,
                cancel_event=ticket.cancel_event,
            ))
        except RequestCancelled:
            return None
        
        current = self.machine.state
        if not self.sequencer.is_current(ticket) or current.import_meta.playlist_id != meta.playlist_id:
            logger.debug(f"Discarding stale load-more response #{ticket.sequence}")
            return None
        
        known = {track.id for track in current.tracks}
        added = tuple(track for track in result.tracks if track.id not in known)
        self.machine.dispatch(SetTracks(
            tracks=current.tracks + added,
            cursor=result.cursor,
            has_more=result.has_more,
        ))
        return len(added)
