"""Test time-bounded undo"""

from playlist_notes.sync.undo import UndoManager


class TestUndoManager:
    """Test UndoManager with a manual scheduler"""
    
    def test_undo_within_window(self, scheduler):
        """Test undo returns meta, cancels expiry and is idempotent"""
        expired = []
        undo = UndoManager(scheduler, on_expire=lambda i, m: expired.append(i), clock=scheduler.clock)
        meta = {"note": "n1", "index": 0}
        
        undo.schedule_undo("d1", meta)
        scheduler.advance(60)
        assert undo.undo("d1") == meta
        assert undo.undo("d1") is None
        
        scheduler.advance(600)
        assert expired == []
    
    def test_expiry_fires_once(self, scheduler):
        """Test on_expire fires exactly once and removes the entry"""
        expired = []
        undo = UndoManager(scheduler, on_expire=lambda i, m: expired.append((i, m)))
        undo.schedule_undo("d1", "meta")
        
        scheduler.advance(599)
        assert expired == []
        scheduler.advance(1)
        scheduler.advance(600)
        assert expired == [("d1", "meta")]
        assert not undo.is_pending("d1")
        assert undo.undo("d1") is None
    
    def test_independent_timers(self, scheduler):
        """Test several ids expire on their own schedules"""
        expired = []
        undo = UndoManager(scheduler, on_expire=lambda i, m: expired.append(i))
        undo.schedule_undo("a", 1)
        scheduler.advance(300)
        undo.schedule_undo("b", 2)
        
        scheduler.advance(300)
        assert expired == ["a"]
        assert undo.pending_ids() == ["b"]
        scheduler.advance(300)
        assert expired == ["a", "b"]
    
    def test_reschedule_replaces_timer(self, scheduler):
        """Test scheduling the same id again restarts its window"""
        expired = []
        undo = UndoManager(scheduler, on_expire=lambda i, m: expired.append(m))
        undo.schedule_undo("d1", "first")
        scheduler.advance(500)
        entry = undo.schedule_undo("d1", "second")
        assert entry.meta == "second"
        
        scheduler.advance(500)
        assert expired == []
        scheduler.advance(100)
        assert expired == ["second"]
    
    def test_expires_at_uses_clock(self, scheduler):
        """Test the entry records its expiry time"""
        scheduler.advance(10)
        undo = UndoManager(scheduler, window_seconds=5, clock=scheduler.clock)
        assert undo.schedule_undo("d1", None).expires_at == 15
    
    def test_cancel_all_does_not_fire(self, scheduler):
        """Test cancel_all drops windows silently"""
        expired = []
        undo = UndoManager(scheduler, on_expire=lambda i, m: expired.append(i))
        undo.schedule_undo("a", 1)
        undo.cancel_all()
        scheduler.advance(1000)
        assert expired == []
        assert undo.pending_ids() == []
