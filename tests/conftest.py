"""Test configuration and fixtures"""

import pytest
import tempfile
import uuid
from pathlib import Path
from typing import Any, Callable, Hashable

from playlist_notes.core.exceptions import RemoteError
from playlist_notes.core.state_store import LocalStateStore
from playlist_notes.core.storage import KeyValueStore
from playlist_notes.identity.device import DeviceIdentity, IdentityContext
from playlist_notes.identity.recovery import (
    generate_recovery_code,
    hash_recovery_code,
    verify_recovery_code,
)
from playlist_notes.state.models import ImportMeta, PersistedState, Track
from playlist_notes.state.reducer import PlaylistStateMachine
from playlist_notes.sync.orchestrator import SyncOrchestrator
from playlist_notes.sync.remote import error_for_status
from playlist_notes.sync.scheduler import Scheduler


class ManualScheduler(Scheduler):
    """Deterministic scheduler: time only moves when a test calls advance()."""
    
    def __init__(self):
        self.now = 0.0
        self._tasks: dict[Hashable, tuple[float, int, Callable[[], None]]] = {}
        self._counter = 0
    
    def schedule(self, key, delay, fn):
        self._counter += 1
        self._tasks[key] = (self.now + delay, self._counter, fn)
    
    def cancel(self, key):
        return self._tasks.pop(key, None) is not None
    
    def cancel_all(self):
        self._tasks.clear()
    
    def is_pending(self, key):
        return key in self._tasks
    
    def advance(self, seconds: float) -> None:
        """Move the clock forward, firing due tasks in due order."""
        target = self.now + seconds
        while True:
            due = [(when, order, key) for key, (when, order, _) in self._tasks.items() if when <= target]
            if not due:
                break
            when, _, key = min(due)
            self.now = max(self.now, when)
            _, _, fn = self._tasks.pop(key)
            fn()
        self.now = target
    
    def clock(self) -> float:
        return self.now


class FakeRemote:
    """
    In-memory stand-in for RemoteStore emulating the server contract.
    
    Recovery codes are stored as salted hashes, like the real server.
    Set `fail[method] = status` to make the next call of a method fail
    with the mapped RemoteError (or pass an exception instance).
    """
    
    def __init__(self, context: IdentityContext | None = None):
        self.context = context
        self.accounts: dict[str, str] = {}  # anon id -> recovery code hash
        self.rows: list[dict[str, Any]] = []
        self.tag_calls: list[tuple[str, tuple[str, ...], str | None]] = []
        self.created: list[dict[str, Any]] = []
        self.deleted: list[str] = []
        self.delete_status: dict[str, int] = {}
        self.fail: dict[str, Any] = {}
        self.csrf_token = "csrf-token"
    
    def _maybe_fail(self, method: str) -> None:
        failure = self.fail.pop(method, None)
        if failure is None:
            return
        if isinstance(failure, Exception):
            raise failure
        raise error_for_status(failure, f"{method} failed")
    
    def _current_anon(self) -> str | None:
        identity = self.context.identity if self.context else None
        return identity.anon_id if identity else None
    
    # Identity endpoints
    
    def bootstrap(self):
        self._maybe_fail("bootstrap")
        code = generate_recovery_code()
        anon_id = f"anon-{uuid.uuid4().hex[:8]}"
        self.accounts[anon_id] = hash_recovery_code(code)
        return {"deviceId": f"dev-{uuid.uuid4().hex[:8]}", "anonId": anon_id, "recoveryCode": code}
    
    def restore(self, recovery_code):
        self._maybe_fail("restore")
        for anon_id, stored in self.accounts.items():
            if verify_recovery_code(recovery_code, stored):
                return {"deviceId": f"dev-{uuid.uuid4().hex[:8]}", "anonId": anon_id}
        raise error_for_status(401, "Recovery code not recognized")
    
    def fetch_csrf_token(self):
        self._maybe_fail("fetch_csrf_token")
        return self.csrf_token
    
    def rotate_recovery_code(self, csrf_token):
        self._maybe_fail("rotate_recovery_code")
        if csrf_token != self.csrf_token:
            raise error_for_status(403, "CSRF token rejected")
        anon_id = self._current_anon()
        code = generate_recovery_code()
        self.accounts[anon_id] = hash_recovery_code(code)
        return {"recoveryCode": code, "rotatedAt": 1700000000000}
    
    # Notes and tags
    
    def fetch_notes(self, playlist_id):
        self._maybe_fail("fetch_notes")
        return [dict(row) for row in self.rows]
    
    def create_note(self, note, playlist_id):
        self._maybe_fail("create_note")
        row = note.to_dict()
        row["playlistId"] = playlist_id
        self.created.append(row)
        self.rows.append(row)
        return row
    
    def delete_note(self, note_id):
        failure = self.fail.pop("delete_note", None)
        if isinstance(failure, RemoteError):
            raise failure
        self.deleted.append(note_id)
        status = self.delete_status.get(note_id, 204)
        if status < 300:
            self.rows = [row for row in self.rows if row.get("id") != note_id]
        return status
    
    def upsert_tags(self, track_id, tags, playlist_id):
        self._maybe_fail("upsert_tags")
        self.tag_calls.append((track_id, tuple(tags), playlist_id))
        return {"trackId": track_id, "tags": list(tags)}


@pytest.fixture
def temp_dir():
    """Create temporary directory for tests"""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield Path(temp_dir)


@pytest.fixture
def kv_store(temp_dir):
    """Key-value store backed by a temporary SQLite file"""
    store = KeyValueStore(temp_dir / "state.db")
    yield store
    store.close()


@pytest.fixture
def state_store(kv_store):
    return LocalStateStore(kv_store)


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def context(kv_store):
    """Identity context with a bootstrapped identity"""
    context = IdentityContext(kv_store)
    context.set_identity(DeviceIdentity(device_id="dev-local", anon_id="anon-1"))
    return context


@pytest.fixture
def fake_remote(context):
    return FakeRemote(context)


@pytest.fixture
def remote_factory():
    """Build extra FakeRemote instances for a given identity context"""
    return FakeRemote


@pytest.fixture
def sample_tracks():
    return (
        Track("t1", "Rubber Band", "The Trammps"),
        Track("t2", "Today", "Tom Scott"),
        Track("t3", "Heaven & Hell", "El Michels Affair"),
    )


@pytest.fixture
def loaded_state(sample_tracks):
    """State with a Spotify playlist loaded and no annotations"""
    return PersistedState(
        tracks=sample_tracks,
        import_meta=ImportMeta(provider="spotify", playlist_id="pl-1", playlist_title="Samples"),
    )


@pytest.fixture
def machine(loaded_state):
    return PlaylistStateMachine(loaded_state)


@pytest.fixture
def orchestrator(machine, state_store, fake_remote, context, kv_store, scheduler):
    """Orchestrator wired to the fake remote and manual scheduler, auto-persisting"""
    state_store.attach(machine)
    return SyncOrchestrator(machine, state_store, fake_remote, context, kv_store, scheduler)

