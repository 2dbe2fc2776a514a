"""
Versioned persistence of the application state snapshot.

LocalStateStore owns three slots in the key-value store:
    - canonical:          the current PersistedState
    - pending-migration:  written before a migrated snapshot replaces the
                          canonical slot, cleared after the canonical write
    - backup:             written by the sync orchestrator before every
                          remote merge

A pending-migration snapshot that survives a restart means the process
died between the two writes; recover_from_pending_migration() finishes
the job.
"""

import json
from typing import TYPE_CHECKING, Any, Callable

from playlist_notes.core.exceptions import MigrationError, StorageError
from playlist_notes.core.logger import get_logger
from playlist_notes.core.migrations import migrate_snapshot
from playlist_notes.core.storage import (
    APP_STATE_KEY,
    BACKUP_KEY,
    DEMO_VIEWED_KEY,
    PENDING_MIGRATION_KEY,
    KeyValueStore,
)
from playlist_notes.state.models import PersistedState, now_ms

if TYPE_CHECKING:
    from playlist_notes.state.reducer import PlaylistStateMachine


logger = get_logger(__name__)


class LocalStateStore:
    """
    Load, migrate and save the persisted state snapshot.
    
    load() never raises for bad data: a corrupt, non-JSON or future-version
    snapshot degrades to None (empty state) with a warning.
    
    Example:
        >>> store = LocalStateStore(KeyValueStore(tmp / "state.db"))
        >>> store.load() is None
        True
        >>> store.save(PersistedState())
        >>> store.load()
        PersistedState(version=3, ...)
    """
    
    def __init__(self, kv: KeyValueStore) -> None:
        self._kv = kv
    
    def _read_snapshot(self, key: str) -> tuple[PersistedState, bool] | None:
        raw = self._kv.get_raw(key)
        if raw is None:
            return None
        try:
            data: Any = json.loads(raw)
        except json.JSONDecodeError as e:
            raise MigrationError(
                "Persisted state is not valid JSON",
                details={"key": key, "original_error": str(e)}
            ) from e
        return migrate_snapshot(data)
    
    def load(self) -> PersistedState | None:
        """
        Load the canonical snapshot, migrating it forward if needed.
        
        Returns:
            The current state, or None if nothing is stored or the stored
            snapshot cannot be interpreted.
        """
        try:
            loaded = self._read_snapshot(APP_STATE_KEY)
        except MigrationError as e:
            logger.warning(f"Discarding persisted state: {e.message}")
            logger.debug(f"Details: {e.details}")
            return None
        
        if loaded is None:
            return None
        
        state, migrated = loaded
        if migrated:
            self._kv.set_json(PENDING_MIGRATION_KEY, state.to_dict())
            self._kv.set_json(APP_STATE_KEY, state.to_dict())
            self.clear_pending_migration_snapshot()
            logger.info("Persisted state migrated")
        return state
    
    def save(self, state: PersistedState) -> None:
        self._kv.set_json(APP_STATE_KEY, state.to_dict())
    
    def clear(self) -> None:
        self._kv.delete(APP_STATE_KEY)
    
    # Pending-migration slot
    
    def get_pending_migration_snapshot(self) -> PersistedState | None:
        try:
            loaded = self._read_snapshot(PENDING_MIGRATION_KEY)
        except MigrationError as e:
            logger.warning(f"Ignoring unreadable pending-migration snapshot: {e.message}")
            return None
        return loaded[0] if loaded else None
    
    def clear_pending_migration_snapshot(self) -> None:
        self._kv.delete(PENDING_MIGRATION_KEY)
    
    def recover_from_pending_migration(self) -> PersistedState | None:
        """
        Promote a leftover pending-migration snapshot to the canonical slot.
        
        Returns:
            The recovered state, or None if there was nothing to recover.
        """
        state = self.get_pending_migration_snapshot()
        if state is None:
            return None
        
        self.save(state)
        self.clear_pending_migration_snapshot()
        logger.info("Recovered state from pending-migration snapshot")
        return state
    
    # Backup slot
    
    def write_backup(self, state: PersistedState) -> None:
        """Write a backup snapshot before a merge-heavy write."""
        data = state.to_dict()
        data["backedUpAt"] = now_ms()
        try:
            self._kv.set_json(BACKUP_KEY, data)
        except StorageError as e:
            # A failed backup must not block the merge itself
            logger.warning(f"Failed to write state backup: {e.message}")
    
    def load_backup(self) -> PersistedState | None:
        try:
            loaded = self._read_snapshot(BACKUP_KEY)
        except MigrationError as e:
            logger.warning(f"Ignoring unreadable backup snapshot: {e.message}")
            return None
        return loaded[0] if loaded else None
    
    # Demo marker
    
    def has_demo_been_viewed(self) -> bool:
        return self._kv.get_raw(DEMO_VIEWED_KEY) is not None
    
    def mark_demo_viewed(self) -> None:
        self._kv.set_json(DEMO_VIEWED_KEY, {"viewedAt": now_ms()})
    
    def attach(self, machine: "PlaylistStateMachine") -> Callable[[], None]:
        """
        Persist every state change of `machine` to the canonical slot.
        
        Returns:
            Function that detaches the store again.
        """
        return machine.subscribe(lambda previous, current, action: self.save(current))
