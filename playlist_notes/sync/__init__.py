"""
Sync module for playlist-notes.

Multi-device synchronization:
    - remote: HTTP client for the notes/identity server
    - queues: Durable tag sync and note deletion queues
    - scheduler: Keyed cancel-and-replace timers
    - sequencer: Race guard for overlapping requests
    - undo: Time-bounded undo windows
    - orchestrator: SyncOrchestrator and ImportFlow
"""

from playlist_notes.sync.orchestrator import ImportFlow, ReconnectReport, SyncOrchestrator
from playlist_notes.sync.queues import (
    DeletionFlushStats,
    DeletionOutcome,
    DeletionQueue,
    DeletionResult,
    TagFlushStats,
    TagSyncQueue,
    classify_delete_status,
)
from playlist_notes.sync.remote import RemoteStore, error_for_status
from playlist_notes.sync.scheduler import Scheduler, TaskScheduler
from playlist_notes.sync.sequencer import IMPORT, LOAD_MORE, SYNC, RequestSequencer, RequestTicket
from playlist_notes.sync.undo import UndoManager

__all__ = [
    "ImportFlow",
    "ReconnectReport",
    "SyncOrchestrator",
    "DeletionFlushStats",
    "DeletionOutcome",
    "DeletionQueue",
    "DeletionResult",
    "TagFlushStats",
    "TagSyncQueue",
    "classify_delete_status",
    "RemoteStore",
    "error_for_status",
    "Scheduler",
    "TaskScheduler",
    "IMPORT",
    "LOAD_MORE",
    "SYNC",
    "RequestSequencer",
    "RequestTicket",
    "UndoManager",
]
