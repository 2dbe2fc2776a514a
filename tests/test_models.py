"""Test state data models"""

import pytest

from playlist_notes.state.models import (
    MAX_RECENT_PLAYLISTS,
    ImportMeta,
    Note,
    PersistedState,
    RecentPlaylist,
    Track,
    upsert_recent,
)


class TestNote:
    """Test Note serialization"""
    
    def test_to_dict_uses_camel_case(self):
        """Test persisted keys"""
        note = Note("n1", "t1", "hi", timestamp_ms=1000, tags=("x",), created_at=5, device_id="d")
        data = note.to_dict()
        assert data["trackId"] == "t1"
        assert data["timestampMs"] == 1000
        assert "timestampEndMs" not in data
        assert data["createdAt"] == 5
    
    def test_from_dict_roundtrip(self):
        """Test a note survives to_dict/from_dict"""
        note = Note("n1", "t1", "hi", timestamp_ms=1000, timestamp_end_ms=2000, tags=("a", "b"))
        assert Note.from_dict(note.to_dict()) == note
    
    def test_from_dict_uses_fallback_track(self):
        """Test persisted notes grouped by track"""
        note = Note.from_dict({"id": "n1", "body": "hi"}, track_id="t9")
        assert note.track_id == "t9"
    
    @pytest.mark.parametrize("data", [
        {"trackId": "t1", "body": "hi"},
        {"id": "n1", "body": "hi"},
        {"id": "n1", "trackId": "t1"},
        {"id": "n1", "trackId": "t1", "body": "hi", "timestampMs": "soon"},
        "not a dict",
    ])
    def test_from_dict_rejects_malformed(self, data):
        """Test malformed notes raise"""
        with pytest.raises((TypeError, ValueError)):
            Note.from_dict(data)
    
    def test_string_tags_are_ignored(self):
        """Test a string is not treated as a list of tags"""
        note = Note.from_dict({"id": "n1", "trackId": "t1", "body": "hi", "tags": "rock"})
        assert note.tags == ()


class TestRecentPlaylists:
    """Test recent playlist bookkeeping"""
    
    def test_upsert_moves_to_front(self):
        """Test most recent first and dedupe by (provider, playlistId)"""
        recent = (RecentPlaylist("spotify", "a"), RecentPlaylist("spotify", "b"))
        result = upsert_recent(recent, RecentPlaylist("spotify", "b", title="B"))
        assert [r.playlist_id for r in result] == ["b", "a"]
        assert result[0].title == "B"
    
    def test_upsert_excludes_demo(self):
        """Test the read-only provider never enters the list"""
        recent = (RecentPlaylist("spotify", "a"),)
        result = upsert_recent(recent, RecentPlaylist("demo", "demo-notable-samples"))
        assert result == recent
    
    def test_upsert_caps_list(self):
        """Test the list holds at most eight entries"""
        recent = ()
        for i in range(12):
            recent = upsert_recent(recent, RecentPlaylist("spotify", f"p{i}"))
        assert len(recent) == MAX_RECENT_PLAYLISTS
        assert recent[0].playlist_id == "p11"


class TestPersistedState:
    """Test PersistedState helpers"""
    
    def test_read_only_follows_provider(self):
        """Test the demo provider marks state read-only"""
        assert PersistedState(import_meta=ImportMeta(provider="demo")).read_only
        assert not PersistedState(import_meta=ImportMeta(provider="spotify")).read_only
    
    def test_find_note(self):
        """Test locating a note by id"""
        note = Note("n2", "t1", "second")
        state = PersistedState(notes_by_track={"t1": (Note("n1", "t1", "first"), note)})
        assert state.find_note("n2") == ("t1", 1, note)
        assert state.find_note("missing") is None
    
    def test_dict_roundtrip(self):
        """Test to_dict/from_dict"""
        state = PersistedState(
            tracks=(Track("t1", "Song", "Artist"),),
            notes_by_track={"t1": (Note("n1", "t1", "hi", created_at=3),)},
            tags_by_track={"t1": ("bass",)},
            import_meta=ImportMeta(provider="spotify", playlist_id="p"),
            recent_playlists=(RecentPlaylist("spotify", "p"),),
        )
        assert PersistedState.from_dict(state.to_dict()) == state
