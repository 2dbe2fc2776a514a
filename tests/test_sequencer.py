"""Test the request race guard and the timer scheduler"""

import threading

import pytest

from playlist_notes.core.exceptions import RequestCancelled
from playlist_notes.sync.scheduler import TaskScheduler
from playlist_notes.sync.sequencer import IMPORT, LOAD_MORE, SYNC, RequestSequencer


class TestRequestSequencer:
    """Test RequestSequencer"""
    
    def test_newer_ticket_supersedes(self):
        """Test only the latest ticket of a class is current"""
        sequencer = RequestSequencer()
        first = sequencer.begin(IMPORT)
        second = sequencer.begin(IMPORT)
        assert second.sequence > first.sequence
        assert not sequencer.is_current(first)
        assert sequencer.is_current(second)
        assert first.cancelled
        assert not second.cancelled
    
    def test_classes_are_independent(self):
        """Test a sync does not cancel an import"""
        sequencer = RequestSequencer()
        ticket = sequencer.begin(IMPORT)
        sequencer.begin(SYNC)
        assert sequencer.is_current(ticket)
        assert not ticket.cancelled
    
    def test_cancel_without_new_request(self):
        """Test cancel() makes the in-flight ticket stale"""
        sequencer = RequestSequencer()
        ticket = sequencer.begin(LOAD_MORE)
        sequencer.cancel(LOAD_MORE)
        assert ticket.cancelled
        assert not sequencer.is_current(ticket)
        assert sequencer.begin(LOAD_MORE).sequence > ticket.sequence + 1
    
    def test_cancel_all(self):
        """Test every class is cancelled"""
        sequencer = RequestSequencer()
        tickets = [sequencer.begin(op) for op in (IMPORT, LOAD_MORE, SYNC)]
        sequencer.cancel_all()
        assert all(t.cancelled for t in tickets)
    
    def test_raise_if_cancelled(self):
        """Test the cancellation checkpoint"""
        sequencer = RequestSequencer()
        ticket = sequencer.begin(SYNC)
        ticket.raise_if_cancelled()
        sequencer.begin(SYNC)
        with pytest.raises(RequestCancelled):
            ticket.raise_if_cancelled()


class TestTaskScheduler:
    """Test TaskScheduler with real timers"""
    
    def test_task_runs(self):
        """Test a scheduled task fires"""
        scheduler = TaskScheduler()
        fired = threading.Event()
        scheduler.schedule("k", 0.01, fired.set)
        assert fired.wait(2)
        assert not scheduler.is_pending("k")
    
    def test_reschedule_replaces(self):
        """Test only the latest task of a key runs"""
        scheduler = TaskScheduler()
        calls = []
        done = threading.Event()
        scheduler.schedule("k", 0.5, lambda: calls.append("old"))
        scheduler.schedule("k", 0.01, lambda: (calls.append("new"), done.set()))
        assert done.wait(2)
        scheduler.cancel_all()
        assert calls == ["new"]
    
    def test_cancel(self):
        """Test a cancelled task never runs"""
        scheduler = TaskScheduler()
        fired = threading.Event()
        scheduler.schedule("k", 0.05, fired.set)
        assert scheduler.cancel("k")
        assert not scheduler.cancel("k")
        assert not fired.wait(0.2)
    
    def test_failing_task_is_logged(self):
        """Test a raising callback does not break later tasks"""
        scheduler = TaskScheduler()
        fired = threading.Event()
        
        def boom():
            raise RuntimeError("boom")
        
        scheduler.schedule("bad", 0.01, boom)
        scheduler.schedule("good", 0.05, fired.set)
        assert fired.wait(2)
