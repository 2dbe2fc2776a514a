"""
Identity module for playlist-notes.

Anonymous device identity and recovery codes:
    - device: DeviceIdentity, IdentityContext, IdentityManager
    - recovery: Recovery code generation, normalization and hashing
"""

from playlist_notes.identity.device import (
    ANON_ID_HEADER,
    DEVICE_ID_HEADER,
    BootstrapResult,
    DeviceIdentity,
    IdentityContext,
    IdentityManager,
    RestoreRateLimiter,
    RotationResult,
)
from playlist_notes.identity.recovery import (
    fingerprint_recovery_code,
    format_recovery_code,
    generate_recovery_code,
    hash_recovery_code,
    normalize_recovery_code,
    verify_recovery_code,
)

__all__ = [
    "ANON_ID_HEADER",
    "DEVICE_ID_HEADER",
    "BootstrapResult",
    "DeviceIdentity",
    "IdentityContext",
    "IdentityManager",
    "RestoreRateLimiter",
    "RotationResult",
    "fingerprint_recovery_code",
    "format_recovery_code",
    "generate_recovery_code",
    "hash_recovery_code",
    "normalize_recovery_code",
    "verify_recovery_code",
]
