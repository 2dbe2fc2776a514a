"""Test key-value storage, snapshot migrations and the state store"""

import json

import pytest

from playlist_notes.core.exceptions import MigrationError, StorageError
from playlist_notes.core.migrations import migrate_snapshot, snapshot_version
from playlist_notes.core.state_store import LocalStateStore
from playlist_notes.core.storage import (
    APP_STATE_KEY,
    BACKUP_KEY,
    PENDING_MIGRATION_KEY,
    KeyValueStore,
)
from playlist_notes.state.actions import AddTag
from playlist_notes.state.models import STATE_VERSION, ImportMeta, PersistedState
from playlist_notes.state.reducer import PlaylistStateMachine


class TestKeyValueStore:
    """Test KeyValueStore"""
    
    def test_json_roundtrip(self, kv_store):
        """Test set_json / get_json"""
        kv_store.set_json("k", {"a": [1, 2]})
        assert kv_store.get_json("k") == {"a": [1, 2]}
        assert kv_store.get_json("missing") is None
    
    def test_replace_and_delete(self, kv_store):
        """Test values are replaced whole and can be deleted"""
        kv_store.set_raw("k", "1")
        kv_store.set_raw("k", "2")
        assert kv_store.get_raw("k") == "2"
        assert kv_store.keys() == ["k"]
        kv_store.delete("k")
        assert kv_store.get_raw("k") is None
    
    def test_invalid_json_raises(self, kv_store):
        """Test get_json on non-JSON text"""
        kv_store.set_raw("k", "{not json")
        with pytest.raises(StorageError):
            kv_store.get_json("k")
    
    def test_missing_parent_directory(self, temp_dir):
        """Test opening a store in a missing directory"""
        with pytest.raises(StorageError):
            KeyValueStore(temp_dir / "missing" / "state.db")
    
    def test_persists_across_connections(self, temp_dir):
        """Test data survives reopening the database"""
        store = KeyValueStore(temp_dir / "state.db")
        store.set_json("k", "v")
        store.close()
        reopened = KeyValueStore(temp_dir / "state.db")
        assert reopened.get_json("k") == "v"
        reopened.close()


class TestMigrations:
    """Test forward-only snapshot migrations"""
    
    def test_v1_string_notes(self):
        """Test plain-string notes become note objects"""
        state, migrated = migrate_snapshot({
            "tracks": [{"id": "t1", "title": "A"}],
            "notesByTrack": {"t1": ["first", "second"]},
        })
        assert migrated
        assert [n.body for n in state.notes_for("t1")] == ["first", "second"]
        assert all(n.track_id == "t1" for n in state.notes_for("t1"))
    
    def test_v1_legacy_ids_are_deterministic(self):
        """Test migrating the same snapshot twice yields the same ids"""
        data = {"version": 1, "notesByTrack": {"t1": ["same"]}}
        first, _ = migrate_snapshot(data)
        second, _ = migrate_snapshot(data)
        assert first.notes_for("t1")[0].id == second.notes_for("t1")[0].id
    
    def test_v2_import_meta(self):
        """Test top-level provider fields move into importMeta"""
        state, migrated = migrate_snapshot({
            "version": 2,
            "provider": "spotify",
            "playlistId": "p1",
            "playlistTitle": "Mine",
            "tagsByTrack": {"t1": ["Rock", "rock", "bad!"]},
        })
        assert migrated
        assert state.import_meta.provider == "spotify"
        assert state.import_meta.playlist_id == "p1"
        assert state.import_meta.playlist_title == "Mine"
        assert state.tags_for("t1") == ("rock",)
        assert state.recent_playlists == ()
    
    @pytest.mark.parametrize("recent", [5, "text", {"provider": "spotify"}])
    def test_recent_playlists_not_a_list(self, recent):
        """Test a recentPlaylists value of the wrong type loads as empty"""
        state, _ = migrate_snapshot({"version": STATE_VERSION, "recentPlaylists": recent})
        assert state.recent_playlists == ()
    
    def test_recent_playlists_deduped_without_demo(self):
        """Test loaded recent playlists keep the first entry per playlist and skip the demo"""
        state, _ = migrate_snapshot({
            "version": STATE_VERSION,
            "recentPlaylists": [
                {"provider": "spotify", "playlistId": "p1", "title": "newest"},
                {"provider": "spotify", "playlistId": "p1", "title": "stale"},
                {"provider": "demo", "playlistId": "demo-notable-samples"},
                {"provider": "spotify", "playlistId": "p2"},
            ],
        })
        assert [r.key for r in state.recent_playlists] == [("spotify", "p1"), ("spotify", "p2")]
        assert state.recent_playlists[0].title == "newest"
    
    def test_recent_playlists_capped(self):
        """Test only the most recent entries are kept"""
        state, _ = migrate_snapshot({
            "version": STATE_VERSION,
            "recentPlaylists": [{"provider": "spotify", "playlistId": f"p{i}"} for i in range(12)],
        })
        assert [r.playlist_id for r in state.recent_playlists] == [f"p{i}" for i in range(8)]
    
    def test_non_finite_numbers_dropped(self):
        """Test infinite or NaN numbers drop the entry that holds them"""
        data = json.loads(
            '{"version": 3, "importMeta": {"provider": "spotify", "importedAt": 1e400},'
            ' "notesByTrack": {"t1": [{"id": "n1", "body": "a", "createdAt": NaN},'
            ' {"id": "n2", "body": "b", "timestampMs": -Infinity}, {"id": "n3", "body": "c"}]}}'
        )
        state, _ = migrate_snapshot(data)
        assert state.import_meta == ImportMeta()
        assert [n.id for n in state.notes_for("t1")] == ["n3"]
    
    def test_current_version_not_migrated(self):
        """Test a current snapshot loads without migration"""
        state, migrated = migrate_snapshot(PersistedState().to_dict())
        assert not migrated
        assert state == PersistedState()
    
    def test_malformed_entries_dropped(self):
        """Test bad entries are dropped instead of failing the load"""
        state, _ = migrate_snapshot({
            "version": STATE_VERSION,
            "tracks": [{"id": "t1", "title": "A"}, {"title": "no id"}, 42],
            "notesByTrack": {
                "t1": [{"id": "n1", "body": "ok"}, {"body": "no id"}, {"id": "n3", "body": "  "}],
                "t2": "not a list",
            },
            "recentPlaylists": [{"provider": "spotify"}],
        })
        assert [t.id for t in state.tracks] == ["t1"]
        assert [n.id for n in state.notes_for("t1")] == ["n1"]
        assert "t2" not in state.notes_by_track
        assert state.recent_playlists == ()
    
    def test_future_version_rejected(self):
        """Test snapshots from a newer version raise MigrationError"""
        with pytest.raises(MigrationError):
            migrate_snapshot({"version": STATE_VERSION + 1})
    
    @pytest.mark.parametrize("data", [[], "text", {"version": "3"}, {"version": 0}, {"version": True}])
    def test_invalid_snapshot_version(self, data):
        """Test unreadable snapshots raise MigrationError"""
        with pytest.raises(MigrationError):
            snapshot_version(data)


class TestLocalStateStore:
    """Test LocalStateStore"""
    
    def test_load_empty(self, state_store):
        """Test nothing stored"""
        assert state_store.load() is None
    
    def test_save_and_load(self, state_store, loaded_state):
        """Test saved state loads back unchanged"""
        state_store.save(loaded_state)
        assert state_store.load() == loaded_state
    
    @pytest.mark.parametrize("raw", ["{broken", "[1, 2]", json.dumps({"version": 99})])
    def test_unreadable_snapshot_degrades(self, kv_store, state_store, raw):
        """Test corrupt snapshots load as None instead of raising"""
        kv_store.set_raw(APP_STATE_KEY, raw)
        assert state_store.load() is None
    
    @pytest.mark.parametrize("raw", [
        '{"version": 3, "recentPlaylists": 5}',
        '{"version": 3, "importMeta": {"importedAt": 1e400}}',
        '{"version": 3, "tracks": 7, "notesByTrack": [], "tagsByTrack": "x"}',
    ])
    def test_malformed_snapshot_still_loads(self, kv_store, state_store, raw):
        """Test a snapshot with malformed fields loads with those fields dropped"""
        kv_store.set_raw(APP_STATE_KEY, raw)
        state = state_store.load()
        assert state is not None
        assert state.recent_playlists == ()
        assert state.import_meta == ImportMeta()
    
    def test_migration_rewrites_canonical_slot(self, kv_store, state_store):
        """Test a migrated snapshot is saved at the current version"""
        kv_store.set_json(APP_STATE_KEY, {"version": 1, "notesByTrack": {"t1": ["old"]}})
        state = state_store.load()
        assert state.notes_for("t1")[0].body == "old"
        assert kv_store.get_json(APP_STATE_KEY)["version"] == STATE_VERSION
        assert kv_store.get_raw(PENDING_MIGRATION_KEY) is None
    
    def test_recover_from_pending_migration(self, kv_store, state_store, loaded_state):
        """Test a leftover pending-migration snapshot is promoted"""
        kv_store.set_json(PENDING_MIGRATION_KEY, loaded_state.to_dict())
        assert state_store.get_pending_migration_snapshot() == loaded_state
        
        recovered = state_store.recover_from_pending_migration()
        assert recovered == loaded_state
        assert state_store.load() == loaded_state
        assert state_store.get_pending_migration_snapshot() is None
        assert state_store.recover_from_pending_migration() is None
    
    def test_backup_slot(self, kv_store, state_store, loaded_state):
        """Test backups are written to their own slot"""
        state_store.write_backup(loaded_state)
        assert "backedUpAt" in kv_store.get_json(BACKUP_KEY)
        assert kv_store.get_raw(APP_STATE_KEY) is None
        assert state_store.load_backup() == loaded_state
    
    def test_demo_marker(self, state_store):
        """Test the demo-viewed marker"""
        assert not state_store.has_demo_been_viewed()
        state_store.mark_demo_viewed()
        assert state_store.has_demo_been_viewed()
    
    def test_attach_persists_changes(self, state_store, loaded_state):
        """Test every dispatched change is saved"""
        machine = PlaylistStateMachine(loaded_state)
        detach = state_store.attach(machine)
        machine.dispatch(AddTag("t1", "soul"))
        assert state_store.load().tags_for("t1") == ("soul",)
        
        detach()
        machine.dispatch(AddTag("t1", "funk"))
        assert state_store.load().tags_for("t1") == ("soul",)
    
    def test_read_only_state_roundtrip(self, state_store):
        """Test the demo provider survives persistence"""
        state = PersistedState(import_meta=ImportMeta(provider="demo", playlist_id="demo-notable-samples"))
        state_store.save(state)
        assert state_store.load().read_only
