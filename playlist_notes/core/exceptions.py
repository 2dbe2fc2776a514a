"""
Exception classes for playlist-notes.

This module defines all custom exceptions used throughout the application.
Each exception carries a human-readable message plus an optional details
dictionary, and the class itself tells the caller how the failure should
be treated (retry, drop, surface to the user).

Exception Hierarchy:
    PlaylistNotesError (base)
        ConfigError - Configuration file issues
        StorageError - Local key-value store issues
        MigrationError - Corrupt or unreadable persisted snapshot
        ValidationError - Input rejected locally, never reaches the network
        AdapterError - Playlist import adapter failures
        RequestCancelled - A superseded request observed its cancel signal
        RemoteError - Base for RemoteStore failures
            AuthError - Identity no longer owns the resource (terminal)
                InvalidRecoveryCode - Recovery code hash mismatch
                CsrfError - CSRF token missing or rejected
            TransientError - Network failure or 5xx (retryable)
            PermanentClientError - Other 4xx (dropped, not retried)
            NotFoundError - 404
            RateLimited - Too many attempts (surfaced, no auto-retry)
"""


class PlaylistNotesError(Exception):
    """
    Base exception for all playlist-notes errors.
    
    All custom exceptions in this project inherit from this class,
    allowing callers to catch all playlist-notes errors with a single
    except clause if desired.
    
    Attributes:
        message: Human-readable error description.
        details: Optional dictionary with additional context (e.g., track id, status code).
    
    Example:
        try:
            orchestrator.sync_remote()
        except PlaylistNotesError as e:
            logger.error(f"Sync failed: {e.message}")
            if e.details:
                logger.debug(f"Details: {e.details}")
    """
    
    def __init__(self, message: str, details: dict | None = None) -> None:
        """
        Initialize the base exception.
        
        Args:
            message: Human-readable error description that will be shown to the user.
            details: Optional dictionary containing additional context about the error.
                     Common keys include:
                     - 'track_id': Track involved in the error
                     - 'note_id': Note involved in the error
                     - 'status_code': HTTP status returned by the remote store
                     - 'original_error': The underlying exception if wrapping another error
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}
    
    def __str__(self) -> str:
        """Return the error message for display."""
        return self.message


class ConfigError(PlaylistNotesError):
    """
    Raised when there's an issue with the configuration file.
    
    This is a CRITICAL error that should stop program execution.
    
    Common causes:
        - config.yaml has invalid YAML syntax
        - Invalid field values (e.g., negative debounce window)
    """
    pass


class StorageError(PlaylistNotesError):
    """
    Raised when the local key-value store cannot be opened or written.
    
    This is a CRITICAL error: without the store, queues and identity
    cannot be kept durable.
    
    Common causes:
        - Storage directory missing or not writable
        - SQLite file locked by another process for too long
        - Disk full
    """
    pass


class MigrationError(PlaylistNotesError):
    """
    Raised when a persisted snapshot cannot be migrated to the current version.
    
    NEVER propagated out of LocalStateStore.load(): the store logs it and
    degrades to an empty state so startup never fails.
    
    Common causes:
        - Snapshot is not valid JSON / not a JSON object
        - Snapshot version is newer than this build understands
    """
    pass


class ValidationError(PlaylistNotesError):
    """
    Raised (or returned from the dispatch path) when input is rejected locally.
    
    A validation error never reaches the network. The reducer reports it
    in ReduceResult.error instead of raising; the identity layer raises it
    for malformed recovery codes.
    
    Example:
        ValidationError(
            "Tag contains disallowed characters",
            details={'tag': 'rock&roll', 'track_id': 't1'}
        )
    """
    pass


class AdapterError(PlaylistNotesError):
    """
    Raised when a playlist import adapter fails.
    
    Common causes:
        - URL does not belong to a supported provider
        - Provider API credentials missing or rejected
        - Playlist private or not found
    """
    pass


class RequestCancelled(PlaylistNotesError):
    """
    Raised when a request notices it was superseded by a newer one.
    
    The race guard cancels the previous in-flight request of an operation
    class when a new one starts; the cancelled request raises this at its
    next checkpoint and its result is discarded.
    """
    pass


class RemoteError(PlaylistNotesError):
    """
    Base class for RemoteStore failures.
    
    Attributes:
        status_code: HTTP status code, or None for network-level failures.
    """
    
    def __init__(
        self,
        message: str,
        details: dict | None = None,
        status_code: int | None = None
    ) -> None:
        super().__init__(message, details)
        self.status_code = status_code


class AuthError(RemoteError):
    """
    Raised on 401/403: the identity no longer owns the resource.
    
    Terminal: retrying would never succeed, so queued items hitting this
    are dropped and logged.
    """
    pass


class InvalidRecoveryCode(AuthError):
    """
    Raised when a recovery code does not match any stored hash.
    
    Example:
        raise InvalidRecoveryCode(
            "Recovery code not recognized",
            details={'fingerprint': 'a1b2c3d4e5f60718'},
            status_code=401
        )
    """
    pass


class CsrfError(AuthError):
    """Raised when the rotation endpoint rejects or cannot issue a CSRF token."""
    pass


class TransientError(RemoteError):
    """
    Raised on network failures and 5xx responses.
    
    Retryable: queued items hitting this stay queued for the next flush
    trigger (reconnect, foreground, explicit flush).
    """
    pass


class PermanentClientError(RemoteError):
    """
    Raised on 4xx responses other than 401/403/404/429.
    
    Not retried: the request itself is wrong and would fail again.
    """
    pass


class NotFoundError(RemoteError):
    """
    Raised on 404 responses.
    
    For deletions a 404 means the note is already gone, which the
    deletion queue treats as success.
    """
    pass


class RateLimited(RemoteError):
    """
    Raised when attempt frequency exceeds the allowed threshold.
    
    Surfaced to the user; never retried automatically.
    
    Attributes:
        retry_after: Seconds until another attempt is allowed, if known.
    """
    
    def __init__(
        self,
        message: str,
        details: dict | None = None,
        status_code: int | None = 429,
        retry_after: float | None = None
    ) -> None:
        super().__init__(message, details, status_code=status_code)
        self.retry_after = retry_after
