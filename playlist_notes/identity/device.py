"""
Anonymous device identity: bootstrap, restore and recovery-code rotation.

Each installation has a device id; devices that share an anon id share
notes and tags. A new installation bootstraps a fresh identity and is
shown a recovery code once. Typing that code on another device restores
the anon association there. Rotating the code invalidates the old one.

IdentityContext is the single holder of the current identity. It is
constructed once at startup and injected into the remote client (which
sends its headers and feeds every response back through adopt()) and
into the identity manager.
"""

import threading
import time
from collections import deque
from dataclasses import dataclass, replace
from typing import Any, Callable, Mapping, Protocol

from playlist_notes.core.exceptions import (
    AuthError,
    CsrfError,
    InvalidRecoveryCode,
    NotFoundError,
    PermanentClientError,
    RateLimited,
    StorageError,
    ValidationError,
)
from playlist_notes.core.logger import get_logger
from playlist_notes.core.storage import DEVICE_IDENTITY_KEY, KeyValueStore
from playlist_notes.identity.recovery import fingerprint_recovery_code, normalize_recovery_code
from playlist_notes.state.models import now_ms


logger = get_logger(__name__)

DEVICE_ID_HEADER = "X-Device-Id"
ANON_ID_HEADER = "X-Anon-Id"


@dataclass(frozen=True)
class DeviceIdentity:
    """
    Identity stored on this installation.
    
    Attributes:
        device_id: Per-installation id.
        anon_id: Anonymous account id shared by restored devices.
        recovery_code_fingerprint: Fingerprint of the last code shown here.
    """
    device_id: str
    anon_id: str
    recovery_code_fingerprint: str = ""
    
    def to_dict(self) -> dict[str, str]:
        return {
            "deviceId": self.device_id,
            "anonId": self.anon_id,
            "recoveryCodeFingerprint": self.recovery_code_fingerprint,
        }
    
    @classmethod
    def from_dict(cls, data: Any) -> "DeviceIdentity":
        if not isinstance(data, dict):
            raise TypeError("device identity must be an object")
        device_id = data.get("deviceId")
        anon_id = data.get("anonId")
        if not isinstance(device_id, str) or not device_id:
            raise ValueError("deviceId missing")
        if not isinstance(anon_id, str) or not anon_id:
            raise ValueError("anonId missing")
        return cls(
            device_id=device_id,
            anon_id=anon_id,
            recovery_code_fingerprint=str(data.get("recoveryCodeFingerprint") or ""),
        )


@dataclass(frozen=True)
class BootstrapResult:
    """Result of bootstrap(); recovery_code is None when the identity already existed."""
    device_id: str
    anon_id: str
    recovery_code: str | None


@dataclass(frozen=True)
class RotationResult:
    recovery_code: str
    rotated_at: int


def _header(headers: Mapping[str, str], name: str) -> str | None:
    # requests uses a case-insensitive mapping; plain dicts are matched by hand
    value = headers.get(name)
    if value is None:
        lowered = name.lower()
        for key, candidate in headers.items():
            if key.lower() == lowered:
                value = candidate
                break
    return value or None


class IdentityContext:
    """
    Process-wide holder of the current device identity.
    
    Every change is persisted to the key-value store immediately.
    """
    
    def __init__(self, kv: KeyValueStore) -> None:
        self._kv = kv
        self._lock = threading.Lock()
        self._identity = self._load()
    
    def _load(self) -> DeviceIdentity | None:
        try:
            raw = self._kv.get_json(DEVICE_IDENTITY_KEY)
        except StorageError as e:
            logger.warning(f"Ignoring unreadable stored device identity: {e.message}")
            return None
        if raw is None:
            return None
        try:
            return DeviceIdentity.from_dict(raw)
        except (TypeError, ValueError) as e:
            logger.warning(f"Ignoring malformed stored device identity: {e}")
            return None
    
    @property
    def identity(self) -> DeviceIdentity | None:
        with self._lock:
            return self._identity
    
    @property
    def device_id(self) -> str:
        identity = self.identity
        return identity.device_id if identity else ""
    
    def set_identity(self, identity: DeviceIdentity) -> None:
        with self._lock:
            self._kv.set_json(DEVICE_IDENTITY_KEY, identity.to_dict())
            self._identity = identity
    
    def clear(self) -> None:
        with self._lock:
            self._kv.delete(DEVICE_IDENTITY_KEY)
            self._identity = None
    
    def headers(self) -> dict[str, str]:
        """Identity headers for an outbound request (empty before bootstrap)."""
        identity = self.identity
        if identity is None:
            return {}
        return {DEVICE_ID_HEADER: identity.device_id, ANON_ID_HEADER: identity.anon_id}
    
    def adopt(self, headers: Mapping[str, str] | None = None, body: Any = None) -> bool:
        """
        Adopt an identity echoed by a response.
        
        Headers take precedence over body fields. A partial echo (only one
        of the two ids) updates an existing identity but cannot create one.
        
        Returns:
            True if the stored identity changed.
        """
        device_id = _header(headers, DEVICE_ID_HEADER) if headers else None
        anon_id = _header(headers, ANON_ID_HEADER) if headers else None
        if isinstance(body, dict):
            if device_id is None and isinstance(body.get("deviceId"), str):
                device_id = body["deviceId"] or None
            if anon_id is None and isinstance(body.get("anonId"), str):
                anon_id = body["anonId"] or None
        
        if device_id is None and anon_id is None:
            return False
        
        with self._lock:
            current = self._identity
            if current is None:
                if device_id is None or anon_id is None:
                    return False
                updated = DeviceIdentity(device_id=device_id, anon_id=anon_id)
            else:
                updated = replace(
                    current,
                    device_id=device_id or current.device_id,
                    anon_id=anon_id or current.anon_id,
                )
                if updated == current:
                    return False
            
            self._kv.set_json(DEVICE_IDENTITY_KEY, updated.to_dict())
            self._identity = updated
        
        logger.info(f"Adopted device identity from server (device {updated.device_id})")
        return True


class RestoreRateLimiter:
    """
    Sliding-window limit on recovery-code restore attempts.
    
    Enforced locally before any network call, so a user (or script)
    hammering restore never reaches the server.
    """
    
    def __init__(
        self,
        max_attempts: int = 5,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic
    ) -> None:
        self.max_attempts = max_attempts
        self.window_seconds = window_seconds
        self._clock = clock
        self._attempts: deque[float] = deque()
        self._lock = threading.Lock()
    
    def acquire(self) -> None:
        """
        Record an attempt.
        
        Raises:
            RateLimited: If the window already holds max_attempts attempts.
        """
        with self._lock:
            now = self._clock()
            while self._attempts and now - self._attempts[0] >= self.window_seconds:
                self._attempts.popleft()
            
            if len(self._attempts) >= self.max_attempts:
                retry_after = self.window_seconds - (now - self._attempts[0])
                raise RateLimited(
                    "Too many restore attempts, try again later",
                    details={"max_attempts": self.max_attempts, "window_seconds": self.window_seconds},
                    retry_after=max(0.0, retry_after),
                )
            self._attempts.append(now)
    
    def reset(self) -> None:
        with self._lock:
            self._attempts.clear()


class IdentityRemote(Protocol):
    """Remote calls the identity manager needs (implemented by RemoteStore)."""
    
    def bootstrap(self) -> dict[str, Any]: ...
    
    def restore(self, recovery_code: str) -> dict[str, Any]: ...
    
    def fetch_csrf_token(self) -> str: ...
    
    def rotate_recovery_code(self, csrf_token: str) -> dict[str, Any]: ...


class IdentityManager:
    """
    Bootstrap, restore and rotate the device identity.
    
    Example:
        >>> manager = IdentityManager(context, remote)
        >>> result = manager.bootstrap()
        >>> result.recovery_code   # shown once, never stored
        '7K3M-Q9XA-2B4C-D5EF'
        >>> manager.bootstrap().recovery_code is None
        True
    """
    
    def __init__(
        self,
        context: IdentityContext,
        remote: IdentityRemote,
        limiter: RestoreRateLimiter | None = None
    ) -> None:
        self.context = context
        self.remote = remote
        self.limiter = limiter or RestoreRateLimiter()
    
    def bootstrap(self) -> BootstrapResult:
        """
        Create this installation's identity, or return the existing one.
        
        Safe to call on every startup: once an identity is stored no
        network call is made and recovery_code is None.
        """
        existing = self.context.identity
        if existing is not None:
            return BootstrapResult(existing.device_id, existing.anon_id, None)
        
        data = self.remote.bootstrap()
        device_id = data.get("deviceId") if isinstance(data, dict) else None
        anon_id = data.get("anonId") if isinstance(data, dict) else None
        code = data.get("recoveryCode") if isinstance(data, dict) else None
        if not (device_id and anon_id and code):
            raise PermanentClientError(
                "Bootstrap response is missing identity fields",
                details={"keys": sorted(data) if isinstance(data, dict) else []}
            )
        
        self.context.set_identity(DeviceIdentity(
            device_id=device_id,
            anon_id=anon_id,
            recovery_code_fingerprint=fingerprint_recovery_code(code),
        ))
        logger.info(f"Bootstrapped device {device_id}")
        return BootstrapResult(device_id, anon_id, code)
    
    def restore(self, recovery_code: str) -> DeviceIdentity:
        """
        Associate this device with the anon identity owning `recovery_code`.
        
        Raises:
            ValidationError: Malformed code (no network call, no attempt counted).
            RateLimited: Too many attempts, locally or per the server.
            InvalidRecoveryCode: The server does not recognize the code.
        """
        normalized = normalize_recovery_code(recovery_code)
        self.limiter.acquire()
        
        try:
            data = self.remote.restore(normalized)
        except (AuthError, NotFoundError) as e:
            if isinstance(e, InvalidRecoveryCode):
                raise
            raise InvalidRecoveryCode(
                "Recovery code not recognized",
                details={"fingerprint": fingerprint_recovery_code(normalized)},
                status_code=e.status_code,
            ) from e
        
        current = self.context.identity
        anon_id = data.get("anonId") if isinstance(data, dict) else None
        device_id = (data.get("deviceId") if isinstance(data, dict) else None) or (
            current.device_id if current else None
        )
        if not anon_id or not device_id:
            raise PermanentClientError(
                "Restore response is missing identity fields",
                details={"keys": sorted(data) if isinstance(data, dict) else []}
            )
        
        identity = DeviceIdentity(
            device_id=device_id,
            anon_id=anon_id,
            recovery_code_fingerprint=fingerprint_recovery_code(normalized),
        )
        self.context.set_identity(identity)
        logger.info(f"Restored anon identity on device {device_id}")
        return identity
    
    def rotate(self) -> RotationResult:
        """
        Issue a new recovery code; the previous one stops working.
        
        Raises:
            ValidationError: No identity yet (bootstrap first).
            CsrfError: CSRF token missing or rejected.
            RateLimited: Server refused the rotation (429).
        """
        current = self.context.identity
        if current is None:
            raise ValidationError("No device identity; run bootstrap first")
        
        token = self.remote.fetch_csrf_token()
        if not token:
            raise CsrfError("Server did not issue a CSRF token")
        
        try:
            data = self.remote.rotate_recovery_code(token)
        except AuthError as e:
            if e.status_code == 403 and not isinstance(e, CsrfError):
                raise CsrfError(
                    "Recovery code rotation rejected",
                    details=e.details,
                    status_code=403,
                ) from e
            raise
        
        code = data.get("recoveryCode") if isinstance(data, dict) else None
        if not code:
            raise PermanentClientError("Rotation response is missing the recovery code")
        rotated_at = data.get("rotatedAt")
        if isinstance(rotated_at, bool) or not isinstance(rotated_at, int):
            rotated_at = now_ms()
        
        latest = self.context.identity or current
        self.context.set_identity(
            replace(latest, recovery_code_fingerprint=fingerprint_recovery_code(code))
        )
        logger.info("Recovery code rotated")
        return RotationResult(recovery_code=code, rotated_at=rotated_at)
