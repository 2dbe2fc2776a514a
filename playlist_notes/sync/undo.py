"""
Time-bounded undo registrations.

Deleting a note registers an undo entry holding whatever the caller needs
to reverse the deletion. Within the window undo() hands that metadata
back; once the window elapses the on_expire callback fires exactly once
and the entry is gone.
"""

import threading
import time
from typing import Any, Callable

from playlist_notes.core.logger import get_logger
from playlist_notes.state.models import UndoEntry
from playlist_notes.sync.scheduler import Scheduler


logger = get_logger(__name__)

DEFAULT_UNDO_WINDOW_SECONDS = 600.0

ExpireCallback = Callable[[str, Any], None]


class UndoManager:
    """
    Independent undo timers keyed by id.
    
    Example:
        >>> undo = UndoManager(scheduler)
        >>> undo.schedule_undo("d1", {"note": note, "index": 0})
        >>> undo.undo("d1")
        {'note': ..., 'index': 0}
        >>> undo.undo("d1") is None
        True
    """
    
    def __init__(
        self,
        scheduler: Scheduler,
        window_seconds: float = DEFAULT_UNDO_WINDOW_SECONDS,
        on_expire: ExpireCallback | None = None,
        clock: Callable[[], float] = time.monotonic
    ) -> None:
        self._scheduler = scheduler
        self.window_seconds = window_seconds
        self.on_expire = on_expire
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[str, UndoEntry] = {}
    
    @staticmethod
    def _timer_key(undo_id: str) -> tuple[str, str]:
        return ("undo", undo_id)
    
    def schedule_undo(self, undo_id: str, meta: Any) -> UndoEntry:
        """Register (or re-register) an undo window for `undo_id`."""
        entry = UndoEntry(id=undo_id, meta=meta, expires_at=self._clock() + self.window_seconds)
        with self._lock:
            self._entries[undo_id] = entry
        
        self._scheduler.schedule(
            self._timer_key(undo_id),
            self.window_seconds,
            lambda: self._expire(entry)
        )
        return entry
    
    def _expire(self, entry: UndoEntry) -> None:
        with self._lock:
            if self._entries.get(entry.id) is not entry:
                return
            del self._entries[entry.id]
        
        logger.debug(f"Undo window for {entry.id} expired")
        if self.on_expire is not None:
            self.on_expire(entry.id, entry.meta)
    
    def undo(self, undo_id: str) -> Any:
        """
        Cancel the window and return its metadata.
        
        Returns None if the id was never registered, already undone or
        already expired.
        """
        with self._lock:
            entry = self._entries.pop(undo_id, None)
        if entry is None:
            return None
        
        self._scheduler.cancel(self._timer_key(undo_id))
        return entry.meta
    
    def is_pending(self, undo_id: str) -> bool:
        with self._lock:
            return undo_id in self._entries
    
    def pending_ids(self) -> list[str]:
        with self._lock:
            return list(self._entries)
    
    def cancel_all(self) -> None:
        """Drop every window without firing on_expire."""
        with self._lock:
            ids = list(self._entries)
            self._entries.clear()
        for undo_id in ids:
            self._scheduler.cancel(self._timer_key(undo_id))
