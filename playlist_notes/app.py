"""
Application wiring.

Builds the object graph once per process:

    config -> storage -> identity context -> remote store
           -> state machine (loaded or recovered state, auto-persisted)
           -> sync orchestrator + import flow

The CLI creates one Application per command; library users can create
one and keep it for the lifetime of their process.
"""

from pathlib import Path
from typing import Callable

import requests

from playlist_notes.adapters import build_adapter
from playlist_notes.adapters.base import PlaylistAdapter
from playlist_notes.core.config import Config
from playlist_notes.core.exceptions import StorageError
from playlist_notes.core.logger import get_logger
from playlist_notes.core.state_store import LocalStateStore
from playlist_notes.core.storage import KeyValueStore
from playlist_notes.identity.device import IdentityContext, IdentityManager, RestoreRateLimiter
from playlist_notes.state.models import PersistedState
from playlist_notes.state.reducer import PlaylistStateMachine
from playlist_notes.sync.orchestrator import ImportFlow, SyncOrchestrator
from playlist_notes.sync.remote import RemoteStore
from playlist_notes.sync.scheduler import Scheduler, TaskScheduler
from playlist_notes.sync.sequencer import RequestSequencer


logger = get_logger(__name__)

STATE_DB_FILENAME = "state.db"


def ensure_storage_directory(directory: Path) -> Path:
    try:
        directory.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise StorageError(
            f"Cannot create storage directory: {directory}",
            details={"path": str(directory), "original_error": str(e)}
        ) from e
    return directory


class Application:
    """
    Fully wired playlist-notes application.
    
    Args:
        config: Loaded configuration.
        scheduler: Timer source (tests pass a manual scheduler).
        session: requests.Session for the remote store (tests pass a mock).
        adapter_factory: provider -> adapter; defaults to build_adapter().
    """
    
    def __init__(
        self,
        config: Config,
        scheduler: Scheduler | None = None,
        session: requests.Session | None = None,
        adapter_factory: Callable[[str], PlaylistAdapter] | None = None
    ) -> None:
        self.config = config
        storage_dir = ensure_storage_directory(config.storage.directory)
        
        self.kv = KeyValueStore(storage_dir / STATE_DB_FILENAME)
        self.state_store = LocalStateStore(self.kv)
        
        self.context = IdentityContext(self.kv)
        self.remote = RemoteStore(
            config.remote.base_url,
            self.context,
            timeout=config.remote.timeout,
            session=session,
        )
        self.identity = IdentityManager(
            self.context,
            self.remote,
            RestoreRateLimiter(
                max_attempts=config.identity.restore_max_attempts,
                window_seconds=config.identity.restore_window_seconds,
            ),
        )
        
        self.machine = PlaylistStateMachine(self._initial_state())
        self._detach = self.state_store.attach(self.machine)
        
        self.scheduler = scheduler or TaskScheduler()
        self.sequencer = RequestSequencer()
        self.orchestrator = SyncOrchestrator(
            self.machine,
            self.state_store,
            self.remote,
            self.context,
            self.kv,
            self.scheduler,
            sequencer=self.sequencer,
            config=config.sync,
        )
        self.imports = ImportFlow(
            self.machine,
            self.state_store,
            adapter_factory or (lambda provider: build_adapter(provider, config)),
            sequencer=self.sequencer,
        )
    
    def _initial_state(self) -> PersistedState:
        recovered = self.state_store.recover_from_pending_migration()
        if recovered is not None:
            return recovered
        return self.state_store.load() or PersistedState()
    
    def restore_backup(self) -> bool:
        """Replace the current state with the pre-merge backup, if any."""
        backup = self.state_store.load_backup()
        if backup is None:
            return False
        self.machine.replace_state(backup)
        self.state_store.save(backup)
        logger.info("State restored from backup")
        return True
    
    def close(self) -> None:
        self.orchestrator.shutdown()
        self._detach()
        self.remote.close()
        self.kv.close()
    
    def __enter__(self) -> "Application":
        return self
    
    def __exit__(self, *exc_info) -> None:
        self.close()
