"""Test device identity, recovery codes and the identity manager"""

import pytest

from playlist_notes.core.exceptions import (
    CsrfError,
    InvalidRecoveryCode,
    PermanentClientError,
    RateLimited,
    ValidationError,
)
from playlist_notes.core.storage import DEVICE_IDENTITY_KEY
from playlist_notes.identity.device import (
    DeviceIdentity,
    IdentityContext,
    IdentityManager,
    RestoreRateLimiter,
)
from playlist_notes.identity.recovery import (
    CROCKFORD_ALPHABET,
    fingerprint_recovery_code,
    format_recovery_code,
    generate_recovery_code,
    hash_recovery_code,
    normalize_recovery_code,
    verify_recovery_code,
)


class TestRecoveryCodes:
    """Test recovery code helpers"""
    
    def test_generated_code_shape(self):
        """Test display form and alphabet"""
        code = generate_recovery_code()
        groups = code.split("-")
        assert len(groups) == 4
        assert all(len(group) == 4 for group in groups)
        assert all(ch in CROCKFORD_ALPHABET for ch in "".join(groups))
    
    def test_codes_are_random(self):
        """Test two codes differ"""
        assert generate_recovery_code() != generate_recovery_code()
    
    def test_normalize_accepts_user_typing(self):
        """Test case, separators and ambiguous letters"""
        assert normalize_recovery_code(" abcd-efgh_jkmn pqrs ") == "ABCDEFGHJKMNPQRS"
        assert normalize_recovery_code("oooo-iiii-llll-2222") == "0000111111112222"
        assert format_recovery_code("ABCDEFGHJKMNPQRS") == "ABCD-EFGH-JKMN-PQRS"
    
    @pytest.mark.parametrize("raw", ["", "ABC", "ABCD-EFGH-JKMN-PQRSX", "UUUU-UUUU-UUUU-UUUU", None])
    def test_normalize_rejects_malformed(self, raw):
        """Test malformed codes raise ValidationError"""
        with pytest.raises(ValidationError):
            normalize_recovery_code(raw)
    
    def test_hash_and_verify(self):
        """Test the salted hash verifies only the right code"""
        code = generate_recovery_code()
        stored = hash_recovery_code(code)
        assert code not in stored
        assert verify_recovery_code(code, stored)
        assert verify_recovery_code(code.lower().replace("-", " "), stored)
        assert not verify_recovery_code(generate_recovery_code(), stored)
    
    def test_hash_is_salted(self):
        """Test hashing the same code twice gives different hashes"""
        code = generate_recovery_code()
        assert hash_recovery_code(code) != hash_recovery_code(code)
    
    @pytest.mark.parametrize("stored", ["", "plain", "md5$00$00", "scrypt$zz$zz"])
    def test_verify_malformed_hash(self, stored):
        """Test malformed hashes never verify"""
        assert not verify_recovery_code(generate_recovery_code(), stored)
    
    def test_fingerprint_ignores_formatting(self):
        """Test the fingerprint is computed on the normalized code"""
        code = generate_recovery_code()
        assert fingerprint_recovery_code(code) == fingerprint_recovery_code(code.replace("-", "").lower())
        assert len(fingerprint_recovery_code(code)) == 16


class TestIdentityContext:
    """Test IdentityContext"""
    
    def test_identity_persisted(self, kv_store):
        """Test identities survive a restart"""
        IdentityContext(kv_store).set_identity(DeviceIdentity("d1", "a1"))
        assert IdentityContext(kv_store).identity == DeviceIdentity("d1", "a1")
    
    def test_headers(self, kv_store):
        """Test identity headers"""
        context = IdentityContext(kv_store)
        assert context.headers() == {}
        context.set_identity(DeviceIdentity("d1", "a1"))
        assert context.headers() == {"X-Device-Id": "d1", "X-Anon-Id": "a1"}
    
    def test_adopt_from_headers(self, kv_store):
        """Test echoed headers create an identity"""
        context = IdentityContext(kv_store)
        assert context.adopt({"x-device-id": "d1", "x-anon-id": "a1"})
        assert context.identity == DeviceIdentity("d1", "a1")
        assert not context.adopt({"X-Device-Id": "d1"})
    
    def test_adopt_headers_win_over_body(self, kv_store):
        """Test header values take precedence"""
        context = IdentityContext(kv_store)
        context.adopt({"X-Device-Id": "from-header"}, {"deviceId": "from-body", "anonId": "a1"})
        assert context.identity.device_id == "from-header"
        assert context.identity.anon_id == "a1"
    
    def test_partial_echo_cannot_create(self, kv_store):
        """Test a single id never creates an identity"""
        context = IdentityContext(kv_store)
        assert not context.adopt({"X-Device-Id": "d1"})
        assert context.identity is None
    
    def test_partial_echo_updates(self, context):
        """Test a single id updates an existing identity"""
        assert context.adopt(body={"deviceId": "dev-new"})
        assert context.identity == DeviceIdentity("dev-new", "anon-1")
    
    def test_malformed_stored_identity_ignored(self, kv_store):
        """Test bad stored data loads as no identity"""
        kv_store.set_json(DEVICE_IDENTITY_KEY, {"deviceId": "d1"})
        assert IdentityContext(kv_store).identity is None
    
    def test_unreadable_stored_identity_ignored(self, kv_store):
        """Test a corrupt identity slot loads as no identity and can be replaced"""
        kv_store.set_raw(DEVICE_IDENTITY_KEY, "{not json")
        context = IdentityContext(kv_store)
        assert context.identity is None
        context.set_identity(DeviceIdentity("d1", "a1"))
        assert IdentityContext(kv_store).identity == DeviceIdentity("d1", "a1")


class TestRestoreRateLimiter:
    """Test the sliding-window limiter"""
    
    def test_limit_and_recovery(self):
        """Test attempts are refused until the window slides"""
        now = [0.0]
        limiter = RestoreRateLimiter(max_attempts=2, window_seconds=10, clock=lambda: now[0])
        limiter.acquire()
        limiter.acquire()
        with pytest.raises(RateLimited) as exc_info:
            limiter.acquire()
        assert exc_info.value.retry_after == 10
        
        now[0] = 10.0
        limiter.acquire()


class TestIdentityManager:
    """Test bootstrap, restore and rotate against the fake server"""
    
    @pytest.fixture
    def fresh_context(self, kv_store):
        return IdentityContext(kv_store)
    
    def test_bootstrap_is_idempotent(self, fresh_context, remote_factory):
        """Test a second bootstrap returns the stored identity without a code"""
        remote = remote_factory(fresh_context)
        manager = IdentityManager(fresh_context, remote)
        
        first = manager.bootstrap()
        assert first.recovery_code
        assert fresh_context.identity.anon_id == first.anon_id
        assert fresh_context.identity.recovery_code_fingerprint == fingerprint_recovery_code(first.recovery_code)
        
        remote.fail["bootstrap"] = 500
        second = manager.bootstrap()
        assert second.recovery_code is None
        assert second.anon_id == first.anon_id
        assert len(remote.accounts) == 1
    
    def test_bootstrap_incomplete_response(self, fresh_context, remote_factory):
        """Test a response without all fields is rejected"""
        remote = remote_factory(fresh_context)
        remote.bootstrap = lambda: {"deviceId": "d1"}
        with pytest.raises(PermanentClientError):
            IdentityManager(fresh_context, remote).bootstrap()
        assert fresh_context.identity is None
    
    def test_restore_on_second_device(self, kv_store, remote_factory):
        """Test a recovery code moves another device onto the same anon id"""
        first_context = IdentityContext(kv_store)
        remote = remote_factory(first_context)
        code = IdentityManager(first_context, remote).bootstrap().recovery_code
        
        second_context = IdentityContext(kv_store)
        second_context.clear()
        restored = IdentityManager(second_context, remote).restore(code.lower())
        assert restored.anon_id == first_context.identity.anon_id
        assert second_context.identity == restored
    
    def test_restore_invalid_code(self, fresh_context, remote_factory):
        """Test an unknown code raises InvalidRecoveryCode"""
        remote = remote_factory(fresh_context)
        with pytest.raises(InvalidRecoveryCode):
            IdentityManager(fresh_context, remote).restore(generate_recovery_code())
        assert fresh_context.identity is None
    
    def test_restore_malformed_code_not_counted(self, fresh_context, remote_factory):
        """Test malformed input fails locally without using an attempt"""
        limiter = RestoreRateLimiter(max_attempts=1)
        manager = IdentityManager(fresh_context, remote_factory(fresh_context), limiter)
        with pytest.raises(ValidationError):
            manager.restore("nope")
        with pytest.raises(InvalidRecoveryCode):
            manager.restore(generate_recovery_code())
    
    def test_restore_rate_limited(self, fresh_context, remote_factory):
        """Test repeated attempts hit the limiter before the network"""
        remote = remote_factory(fresh_context)
        manager = IdentityManager(fresh_context, remote, RestoreRateLimiter(max_attempts=2))
        for _ in range(2):
            with pytest.raises(InvalidRecoveryCode):
                manager.restore(generate_recovery_code())
        
        remote.fail["restore"] = AssertionError("network must not be reached")
        with pytest.raises(RateLimited):
            manager.restore(generate_recovery_code())
    
    def test_rotate_invalidates_old_code(self, fresh_context, remote_factory, kv_store):
        """Test the previous code stops working after rotation"""
        remote = remote_factory(fresh_context)
        manager = IdentityManager(fresh_context, remote)
        old_code = manager.bootstrap().recovery_code
        
        rotation = manager.rotate()
        assert rotation.recovery_code != old_code
        assert rotation.rotated_at == 1700000000000
        assert fresh_context.identity.recovery_code_fingerprint == fingerprint_recovery_code(rotation.recovery_code)
        
        other = IdentityContext(kv_store)
        other.clear()
        other_manager = IdentityManager(other, remote)
        with pytest.raises(InvalidRecoveryCode):
            other_manager.restore(old_code)
        assert other_manager.restore(rotation.recovery_code).anon_id == fresh_context.identity.anon_id
    
    def test_rotate_requires_identity(self, fresh_context, remote_factory):
        """Test rotation before bootstrap"""
        with pytest.raises(ValidationError):
            IdentityManager(fresh_context, remote_factory(fresh_context)).rotate()
    
    def test_rotate_rejected_csrf(self, context, remote_factory):
        """Test a rejected CSRF token raises CsrfError"""
        remote = remote_factory(context)
        remote.fetch_csrf_token = lambda: "stale"
        with pytest.raises(CsrfError):
            IdentityManager(context, remote).rotate()
    
    def test_rotate_missing_csrf(self, context, remote_factory):
        """Test a missing CSRF token raises CsrfError"""
        remote = remote_factory(context)
        remote.csrf_token = ""
        with pytest.raises(CsrfError):
            IdentityManager(context, remote).rotate()
