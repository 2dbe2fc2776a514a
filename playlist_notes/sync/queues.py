"""
Durable offline queues: tag sync and note deletion.

Both queues persist their full contents to the key-value store on every
mutation, so a crash never loses or duplicates a queued item.

Tag sync queue:
    One live entry per track holding the full tag set last edited. Each
    edit replaces the entry and restarts the track's quiet-period timer;
    when the timer elapses exactly one upsert is sent with the latest set.

Note deletion queue:
    Bounded FIFO of note ids to delete remotely. Flushing classifies each
    server response into a DeletionOutcome instead of raising, so one bad
    item never stops the rest of the flush.
"""

import threading
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Callable, Iterable

from playlist_notes.core.exceptions import (
    AuthError,
    RateLimited,
    RemoteError,
    StorageError,
    TransientError,
)
from playlist_notes.core.logger import get_logger, log_sync_failure
from playlist_notes.core.storage import (
    PENDING_DELETIONS_KEY,
    PENDING_TAG_SYNCS_KEY,
    KeyValueStore,
)
from playlist_notes.state.models import PendingDeletion, PendingTagSync, now_ms
from playlist_notes.state.tags import canonicalize_tags
from playlist_notes.sync.scheduler import Scheduler


logger = get_logger(__name__)

TAG_QUEUE = "tag-sync"
DELETION_QUEUE = "note-deletion"

DEFAULT_TAG_DEBOUNCE_MS = 350
DEFAULT_MAX_PENDING_DELETIONS = 200


def _load_entries(kv: KeyValueStore, key: str, factory: Callable) -> list:
    """Read a persisted queue, skipping malformed entries."""
    try:
        raw = kv.get_json(key)
    except StorageError as e:
        logger.warning(f"Discarding unreadable queue '{key}': {e.message}")
        return []
    if raw is None:
        return []
    if not isinstance(raw, list):
        logger.warning(f"Discarding queue '{key}': not a list")
        return []
    
    entries = []
    for item in raw:
        try:
            entries.append(factory(item))
        except (TypeError, ValueError) as e:
            logger.warning(f"Dropping malformed entry from '{key}': {e}")
    return entries


# =============================================================================
# Tag Sync Queue
# =============================================================================

TagSender = Callable[[str, tuple[str, ...]], None]


@dataclass
class TagFlushStats:
    sent: int = 0
    retryable: int = 0
    dropped: int = 0


class TagSyncQueue:
    """
    Debounced, coalescing queue of per-track tag upserts.
    
    Args:
        kv: Store the queue is persisted to.
        scheduler: Timer source for the quiet period.
        sender: Called with (track_id, tags) to send one upsert; raises
                RemoteError subclasses on failure.
        debounce_ms: Quiet period after the last edit of a track.
    """
    
    def __init__(
        self,
        kv: KeyValueStore,
        scheduler: Scheduler,
        sender: TagSender,
        debounce_ms: int = DEFAULT_TAG_DEBOUNCE_MS
    ) -> None:
        self._kv = kv
        self._scheduler = scheduler
        self._sender = sender
        self.debounce_seconds = debounce_ms / 1000.0
        self._lock = threading.RLock()
        self._entries: dict[str, PendingTagSync] = {
            entry.track_id: entry
            for entry in _load_entries(kv, PENDING_TAG_SYNCS_KEY, PendingTagSync.from_dict)
        }
    
    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
    
    def pending(self) -> list[PendingTagSync]:
        with self._lock:
            return list(self._entries.values())
    
    def get(self, track_id: str) -> PendingTagSync | None:
        with self._lock:
            return self._entries.get(track_id)
    
    def _persist(self) -> None:
        self._kv.set_json(
            PENDING_TAG_SYNCS_KEY,
            [entry.to_dict() for entry in self._entries.values()]
        )
    
    @staticmethod
    def _timer_key(track_id: str) -> tuple[str, str]:
        return (TAG_QUEUE, track_id)
    
    def enqueue(self, track_id: str, tags: Iterable[str], read_only: bool = False) -> bool:
        """
        Replace the track's queued tag set and restart its quiet period.
        
        Returns:
            False if the track belongs to a read-only playlist (nothing queued).
        """
        if read_only:
            logger.debug(f"Not queueing tags for read-only track {track_id}")
            return False
        
        entry = PendingTagSync(track_id=track_id, tags=canonicalize_tags(tags), queued_at=now_ms())
        with self._lock:
            self._entries[track_id] = entry
            self._persist()
        
        self._scheduler.schedule(
            self._timer_key(track_id),
            self.debounce_seconds,
            lambda: self.flush_track(track_id)
        )
        return True
    
    def _clear_if_unchanged(self, entry: PendingTagSync) -> None:
        # An edit made while the request was in flight stays queued
        with self._lock:
            if self._entries.get(entry.track_id) is entry:
                del self._entries[entry.track_id]
                self._persist()
    
    def flush_track(self, track_id: str, stats: TagFlushStats | None = None) -> bool:
        """
        Send the queued tag set of one track.
        
        Returns:
            True if the track has nothing left to send.
        """
        stats = stats if stats is not None else TagFlushStats()
        entry = self.get(track_id)
        if entry is None:
            return True
        
        try:
            self._sender(entry.track_id, entry.tags)
        except (TransientError, RateLimited) as e:
            stats.retryable += 1
            logger.info(f"Tag sync for {track_id} deferred: {e.message}")
            return False
        except RemoteError as e:
            stats.dropped += 1
            self._clear_if_unchanged(entry)
            reason = "unauthorized" if isinstance(e, AuthError) else "rejected"
            log_sync_failure(logger, TAG_QUEUE, track_id, track_id, reason, e.status_code)
            return True
        
        stats.sent += 1
        self._clear_if_unchanged(entry)
        return True
    
    def flush(self) -> TagFlushStats:
        """Send every queued entry now, cancelling their quiet-period timers."""
        stats = TagFlushStats()
        for entry in self.pending():
            self._scheduler.cancel(self._timer_key(entry.track_id))
            self.flush_track(entry.track_id, stats)
        return stats
    
    def cancel_timers(self) -> None:
        """Stop pending quiet-period timers; queued entries stay persisted."""
        for entry in self.pending():
            self._scheduler.cancel(self._timer_key(entry.track_id))


# =============================================================================
# Note Deletion Queue
# =============================================================================

class DeletionOutcome(Enum):
    """Per-item result of a deletion flush."""
    DELETED = auto()        # 2xx - removed
    ALREADY_GONE = auto()   # 404 - removed, counted as completed
    UNAUTHORIZED = auto()   # 401/403 - removed, logged
    RETRYABLE = auto()      # 5xx / network - kept for the next flush
    FAILED = auto()         # other 4xx - removed, logged


def classify_delete_status(status_code: int) -> DeletionOutcome:
    """Classify the HTTP status of a note delete."""
    if 200 <= status_code < 300:
        return DeletionOutcome.DELETED
    if status_code == 404:
        return DeletionOutcome.ALREADY_GONE
    if status_code in (401, 403):
        return DeletionOutcome.UNAUTHORIZED
    if status_code >= 500 or status_code == 429:
        return DeletionOutcome.RETRYABLE
    return DeletionOutcome.FAILED


@dataclass(frozen=True)
class DeletionResult:
    note_id: str
    outcome: DeletionOutcome
    reason: str | None = None
    status_code: int | None = None


@dataclass
class DeletionFlushStats:
    """
    Counters returned by DeletionQueue.flush().
    
    completed counts DELETED and ALREADY_GONE items; already_gone counts
    the latter on its own as well.
    """
    completed: int = 0
    already_gone: int = 0
    unauthorized: int = 0
    retryable: int = 0
    failed: int = 0
    deferred: int = 0
    results: list[DeletionResult] = field(default_factory=list)


class DeletionQueue:
    """
    Bounded, durable FIFO of remote note deletions.
    
    When the queue is full the oldest entry is evicted with a warning.
    Enqueueing a note id that is already queued is a no-op.
    """
    
    def __init__(
        self,
        kv: KeyValueStore,
        deleter: Callable[[str], int],
        max_items: int = DEFAULT_MAX_PENDING_DELETIONS
    ) -> None:
        self._kv = kv
        self._deleter = deleter
        self.max_items = max_items
        self._lock = threading.RLock()
        self._entries: list[PendingDeletion] = _load_entries(
            kv, PENDING_DELETIONS_KEY, PendingDeletion.from_dict
        )[-max_items:]
    
    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
    
    def __contains__(self, note_id: object) -> bool:
        with self._lock:
            return any(entry.note_id == note_id for entry in self._entries)
    
    def pending(self) -> list[PendingDeletion]:
        with self._lock:
            return list(self._entries)
    
    def note_ids(self) -> frozenset[str]:
        with self._lock:
            return frozenset(entry.note_id for entry in self._entries)
    
    def _persist(self) -> None:
        self._kv.set_json(PENDING_DELETIONS_KEY, [entry.to_dict() for entry in self._entries])
    
    def enqueue(self, note_id: str, track_id: str) -> bool:
        """
        Queue a note for remote deletion.
        
        Returns:
            False if the note id was already queued.
        """
        with self._lock:
            if any(entry.note_id == note_id for entry in self._entries):
                return False
            
            self._entries.append(PendingDeletion(note_id=note_id, track_id=track_id, queued_at=now_ms()))
            evicted = []
            while len(self._entries) > self.max_items:
                evicted.append(self._entries.pop(0))
            self._persist()
        
        for entry in evicted:
            log_sync_failure(logger, DELETION_QUEUE, entry.note_id, entry.track_id, "evicted")
        return True
    
    def remove(self, note_id: str) -> bool:
        """Drop a queued deletion (undo). Returns True if it was queued."""
        with self._lock:
            remaining = [entry for entry in self._entries if entry.note_id != note_id]
            if len(remaining) == len(self._entries):
                return False
            self._entries = remaining
            self._persist()
            return True
    
    def _delete_one(self, entry: PendingDeletion) -> DeletionResult:
        try:
            status = self._deleter(entry.note_id)
        except TransientError as e:
            return DeletionResult(entry.note_id, DeletionOutcome.RETRYABLE, reason=e.message)
        
        outcome = classify_delete_status(status)
        reason = None if outcome is DeletionOutcome.DELETED else f"HTTP {status}"
        return DeletionResult(entry.note_id, outcome, reason=reason, status_code=status)
    
    def flush(
        self,
        should_defer: Callable[[str], bool] | None = None,
        force: bool = False
    ) -> DeletionFlushStats:
        """
        Send every queued deletion.
        
        Args:
            should_defer: Returns True for note ids that must not be sent
                          yet (a live undo window).
            force: Send deferred items too.
        
        Returns:
            DeletionFlushStats with one DeletionResult per attempted item.
        """
        stats = DeletionFlushStats()
        
        for entry in self.pending():
            if not force and should_defer is not None and should_defer(entry.note_id):
                stats.deferred += 1
                continue
            
            result = self._delete_one(entry)
            stats.results.append(result)
            
            if result.outcome is DeletionOutcome.RETRYABLE:
                stats.retryable += 1
                continue
            
            self.remove(entry.note_id)
            
            if result.outcome is DeletionOutcome.DELETED:
                stats.completed += 1
            elif result.outcome is DeletionOutcome.ALREADY_GONE:
                stats.completed += 1
                stats.already_gone += 1
            elif result.outcome is DeletionOutcome.UNAUTHORIZED:
                stats.unauthorized += 1
                log_sync_failure(
                    logger, DELETION_QUEUE, entry.note_id, entry.track_id,
                    "unauthorized", result.status_code
                )
            else:
                stats.failed += 1
                log_sync_failure(
                    logger, DELETION_QUEUE, entry.note_id, entry.track_id,
                    "rejected", result.status_code
                )
        
        return stats
