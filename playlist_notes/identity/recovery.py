"""
Recovery code generation, normalization and hashing.

A recovery code is 16 symbols from the Crockford base32 alphabet, shown to
the user as four dash-separated groups (e.g. "7K3M-Q9XA-2B4C-D5EF").
Users retype codes by hand, so normalization is forgiving: case is
ignored, separators are dropped and the ambiguous letters I/L and O are
read as 1 and 0.

The plaintext code is never persisted. The server keeps a salted scrypt
hash for verification plus a fingerprint (truncated SHA-256) for fast
lookup; the client keeps only the fingerprint of the last code it was
shown.
"""

import hashlib
import hmac
import secrets

from playlist_notes.core.exceptions import ValidationError


CROCKFORD_ALPHABET = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"

CODE_LENGTH = 16
GROUP_SIZE = 4

FINGERPRINT_LENGTH = 16

# scrypt cost parameters (~16 MB of memory per hash)
SCRYPT_N = 2 ** 14
SCRYPT_R = 8
SCRYPT_P = 1
SCRYPT_DKLEN = 32
SALT_BYTES = 16

_AMBIGUOUS = str.maketrans({"I": "1", "L": "1", "O": "0"})
_SEPARATORS = str.maketrans("", "", "- _")


def generate_recovery_code() -> str:
    """Generate a new random recovery code in display form."""
    symbols = "".join(secrets.choice(CROCKFORD_ALPHABET) for _ in range(CODE_LENGTH))
    return format_recovery_code(symbols)


def format_recovery_code(code: str) -> str:
    """Format a normalized code as dash-separated groups."""
    normalized = normalize_recovery_code(code)
    return "-".join(
        normalized[i:i + GROUP_SIZE] for i in range(0, CODE_LENGTH, GROUP_SIZE)
    )


def normalize_recovery_code(raw: str) -> str:
    """
    Normalize user input to the canonical 16-symbol form.
    
    Args:
        raw: Code as typed by the user.
    
    Returns:
        Uppercase code without separators.
    
    Raises:
        ValidationError: If the input is not a well-formed recovery code.
    """
    if not isinstance(raw, str):
        raise ValidationError("Recovery code must be a string")
    
    code = raw.strip().upper().translate(_SEPARATORS).translate(_AMBIGUOUS)
    
    if len(code) != CODE_LENGTH:
        raise ValidationError(
            f"Recovery code must have {CODE_LENGTH} characters",
            details={"length": len(code)}
        )
    invalid = sorted({ch for ch in code if ch not in CROCKFORD_ALPHABET})
    if invalid:
        raise ValidationError(
            "Recovery code contains invalid characters",
            details={"characters": "".join(invalid)}
        )
    return code


def fingerprint_recovery_code(code: str) -> str:
    """Fast-lookup fingerprint: truncated SHA-256 of the normalized code."""
    normalized = normalize_recovery_code(code)
    return hashlib.sha256(normalized.encode("ascii")).hexdigest()[:FINGERPRINT_LENGTH]


def _scrypt(normalized: str, salt: bytes) -> bytes:
    return hashlib.scrypt(
        normalized.encode("ascii"),
        salt=salt,
        n=SCRYPT_N,
        r=SCRYPT_R,
        p=SCRYPT_P,
        dklen=SCRYPT_DKLEN,
    )


def hash_recovery_code(code: str, salt: bytes | None = None) -> str:
    """
    Salted hash of a recovery code, encoded as "scrypt$<salt>$<hash>".
    
    Args:
        code: Recovery code (any accepted input form).
        salt: Optional salt; a random one is generated when omitted.
    """
    normalized = normalize_recovery_code(code)
    salt = salt if salt is not None else secrets.token_bytes(SALT_BYTES)
    return f"scrypt${salt.hex()}${_scrypt(normalized, salt).hex()}"


def verify_recovery_code(code: str, stored_hash: str) -> bool:
    """
    Constant-time check of a recovery code against a stored hash.
    
    Malformed codes and malformed hashes both verify as False.
    """
    try:
        normalized = normalize_recovery_code(code)
    except ValidationError:
        return False
    
    parts = stored_hash.split("$") if isinstance(stored_hash, str) else []
    if len(parts) != 3 or parts[0] != "scrypt":
        return False
    try:
        salt = bytes.fromhex(parts[1])
        expected = bytes.fromhex(parts[2])
    except ValueError:
        return False
    
    return hmac.compare_digest(_scrypt(normalized, salt), expected)
