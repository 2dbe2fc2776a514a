"""
Race guard for overlapping requests of the same operation class.

Every import, load-more and sync request takes a ticket before it starts.
Taking a ticket supersedes the previous one of the same class: its cancel
event is set so it can stop early, and its result will be discarded
because its sequence number is no longer the latest.

Usage:
    ticket = sequencer.begin(IMPORT)
    result = adapter.import_playlist(options, cancel_event=ticket.cancel_event)
    if not sequencer.is_current(ticket):
        return None  # a newer import already started
"""

import threading
from dataclasses import dataclass, field

from playlist_notes.core.exceptions import RequestCancelled


# Operation classes
IMPORT = "import"
LOAD_MORE = "load-more"
SYNC = "sync"


@dataclass
class RequestTicket:
    """One in-flight request."""
    operation: str
    sequence: int
    cancel_event: threading.Event = field(default_factory=threading.Event)
    
    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()
    
    def raise_if_cancelled(self) -> None:
        """Checkpoint for long-running work."""
        if self.cancel_event.is_set():
            raise RequestCancelled(
                f"{self.operation} request superseded",
                details={"operation": self.operation, "sequence": self.sequence}
            )


class RequestSequencer:
    """Issues monotonically increasing tickets per operation class."""
    
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._latest: dict[str, RequestTicket] = {}
        self._counters: dict[str, int] = {}
    
    def begin(self, operation: str) -> RequestTicket:
        """Start a request, cancelling the previous one of the same class."""
        with self._lock:
            sequence = self._counters.get(operation, 0) + 1
            self._counters[operation] = sequence
            
            previous = self._latest.get(operation)
            ticket = RequestTicket(operation=operation, sequence=sequence)
            self._latest[operation] = ticket
        
        if previous is not None:
            previous.cancel_event.set()
        return ticket
    
    def is_current(self, ticket: RequestTicket) -> bool:
        """True if no newer request of the ticket's class has started."""
        with self._lock:
            latest = self._latest.get(ticket.operation)
            return latest is not None and latest.sequence == ticket.sequence
    
    def cancel(self, operation: str) -> None:
        """Cancel the in-flight request of a class without starting a new one."""
        with self._lock:
            ticket = self._latest.get(operation)
            if ticket is not None:
                # Bump the counter so a late result is discarded
                self._counters[operation] = ticket.sequence + 1
                self._latest[operation] = RequestTicket(operation, ticket.sequence + 1)
        if ticket is not None:
            ticket.cancel_event.set()
    
    def cancel_all(self) -> None:
        with self._lock:
            operations = list(self._latest)
        for operation in operations:
            self.cancel(operation)
