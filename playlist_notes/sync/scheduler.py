"""
Keyed, cancel-and-replace timers for debounce and undo windows.

Scheduling a key that already has a timer cancels the old timer first,
so at most one timer per key is ever live. Each timer carries a
generation token: a timer that fires after it was replaced (the cancel
raced with the fire) sees a stale token and does nothing.
"""

import threading
from abc import ABC, abstractmethod
from typing import Callable, Hashable

from playlist_notes.core.logger import get_logger


logger = get_logger(__name__)


class Scheduler(ABC):
    """Interface shared by the threaded scheduler and test doubles."""
    
    @abstractmethod
    def schedule(self, key: Hashable, delay: float, fn: Callable[[], None]) -> None:
        """Run fn after delay seconds, replacing any pending timer for key."""
    
    @abstractmethod
    def cancel(self, key: Hashable) -> bool:
        """Cancel the timer for key. Returns True if one was pending."""
    
    @abstractmethod
    def cancel_all(self) -> None:
        """Cancel every pending timer."""
    
    @abstractmethod
    def is_pending(self, key: Hashable) -> bool:
        ...


class TaskScheduler(Scheduler):
    """
    Scheduler backed by daemon threading.Timer instances.
    
    Callbacks run on the timer thread. Errors raised by a callback are
    logged; there is no caller to propagate them to.
    """
    
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._timers: dict[Hashable, tuple[int, threading.Timer]] = {}
        self._generation = 0
    
    def schedule(self, key: Hashable, delay: float, fn: Callable[[], None]) -> None:
        with self._lock:
            previous = self._timers.pop(key, None)
            if previous is not None:
                previous[1].cancel()
            
            self._generation += 1
            token = self._generation
            timer = threading.Timer(max(0.0, delay), self._fire, args=(key, token, fn))
            timer.daemon = True
            self._timers[key] = (token, timer)
            timer.start()
    
    def _fire(self, key: Hashable, token: int, fn: Callable[[], None]) -> None:
        with self._lock:
            current = self._timers.get(key)
            if current is None or current[0] != token:
                return
            del self._timers[key]
        
        try:
            fn()
        except Exception as e:
            logger.error(f"Scheduled task {key!r} failed: {e}", exc_info=True)
    
    def cancel(self, key: Hashable) -> bool:
        with self._lock:
            entry = self._timers.pop(key, None)
        if entry is None:
            return False
        entry[1].cancel()
        return True
    
    def cancel_all(self) -> None:
        with self._lock:
            entries = list(self._timers.values())
            self._timers.clear()
        for _, timer in entries:
            timer.cancel()
    
    def is_pending(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._timers
