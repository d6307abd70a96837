"""Session lifecycle at the service layer, without HTTP."""

import math
import time

import pytest

from warden.config import get_settings
from warden.service.auth import AuthenticatedUser, AuthService
from warden.service.authenticator import RequestAuthenticator
from warden.service.errors import (
    ConflictError,
    InternalError,
    UnauthorizedError,
    ValidationError,
)
from warden.service.tokens import TokenCodec
from warden.storage.memory import MemoryStore
from warden.storage.revocation import LocalRevocationClient, RevocationStore


class FakeClock:
    def __init__(self):
        self.now = time.time()

    def __call__(self):
        return self.now


class BrokenRevocationClient:
    async def exists(self, key):
        raise OSError("redis down")

    async def set(self, key, value, px=None):
        raise OSError("redis down")


class RecordingRevocationClient(LocalRevocationClient):
    def __init__(self):
        super().__init__()
        self.expiries = []

    async def set(self, key, value, px=None):
        self.expiries.append(px)
        return await super().set(key, value, px=px)


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def revocations():
    return RevocationStore(LocalRevocationClient())


@pytest.fixture
def codec():
    return TokenCodec("service-test-secret")


@pytest.fixture
def auth(store, revocations, codec):
    return AuthService(store, revocations, get_settings(), codec=codec)


@pytest.fixture
def authenticator(codec, revocations):
    return RequestAuthenticator(codec, revocations)


async def _register_alice(auth, **kwargs):
    return await auth.register(
        "alice", "alice@x.com", "password123", full_name="Alice Liddell", **kwargs
    )


class TestRegister:
    async def test_register_defaults_to_user_role(self, auth, store):
        user = await _register_alice(auth)
        assert user.role == "user"
        stored_hash = store.get_password_hash(user.id)
        assert stored_hash.startswith("$argon2id$")
        assert "password123" not in stored_hash

    async def test_matching_admin_code_grants_admin(self, auth):
        user = await _register_alice(auth, admin_code=get_settings().admin_registration_code)
        assert user.role == "admin"

    async def test_wrong_admin_code_rejects_and_creates_nothing(self, auth, store):
        with pytest.raises(UnauthorizedError):
            await _register_alice(auth, admin_code="wrong-code")
        assert store.count_users() == 0

    async def test_duplicate_email_is_conflict(self, auth):
        await _register_alice(auth)
        with pytest.raises(ConflictError):
            await auth.register(
                "alice2", "alice@x.com", "password123", full_name="Alice Again"
            )

    async def test_username_with_at_sign_is_rejected(self, auth, store):
        with pytest.raises(ValidationError):
            await auth.register(
                "bob@x.com", "bob@x.com", "password123", full_name="Bob Example"
            )
        assert store.count_users() == 0


class TestLogin:
    async def test_login_by_username_or_email(self, auth, codec):
        user = await _register_alice(auth)
        token, logged_in = await auth.login("alice", "password123")
        assert logged_in.id == user.id
        claims = codec.verify(token)
        assert claims.user_id == user.id
        assert claims.role == "user"
        token, _ = await auth.login("alice@x.com", "password123")
        assert codec.verify(token).user_id == user.id

    async def test_login_records_last_login(self, auth, store):
        user = await _register_alice(auth)
        await auth.login("alice", "password123")
        assert store.get_user(user.id).last_login is not None

    async def test_unknown_user_and_wrong_password_fail_alike(self, auth):
        await _register_alice(auth)
        with pytest.raises(UnauthorizedError) as unknown:
            await auth.login("nobody", "password123")
        with pytest.raises(UnauthorizedError) as mismatch:
            await auth.login("alice", "wrong-password")
        assert unknown.value.message == mismatch.value.message == "invalid credentials"

    async def test_deactivated_account_cannot_login(self, auth, store):
        user = await _register_alice(auth)
        store.set_user_active(user.id, False)
        with pytest.raises(UnauthorizedError) as exc_info:
            await auth.login("alice", "password123")
        assert exc_info.value.message == "invalid credentials"

    async def test_token_keeps_role_snapshot_after_demotion(self, auth, store, authenticator):
        """A role change applies to tokens issued after it, not before."""
        await _register_alice(auth, admin_code=get_settings().admin_registration_code)
        token, user = await auth.login("alice", "password123")
        store.update_user_role(user.id, "user")
        identity = await authenticator.authenticate(f"Bearer {token}")
        assert identity.role == "admin"


class TestAuthenticatorAndLogout:
    async def test_valid_token_resolves_identity(self, auth, authenticator):
        await _register_alice(auth)
        token, user = await auth.login("alice", "password123")
        identity = await authenticator.authenticate(f"Bearer {token}")
        assert isinstance(identity, AuthenticatedUser)
        assert identity.user_id == user.id
        assert identity.token == token
        assert identity.claims.user_id == user.id

    @pytest.mark.parametrize(
        "header", [None, "", "Bearer", "Bearer ", "Basic abc", "Token x.y.z", "Bearer a b"]
    )
    async def test_missing_or_malformed_header(self, authenticator, header):
        with pytest.raises(UnauthorizedError) as exc_info:
            await authenticator.authenticate(header)
        assert exc_info.value.message == "invalid authentication token"

    async def test_expired_and_invalid_tokens_look_the_same(self, revocations):
        clock = FakeClock()
        codec = TokenCodec("service-test-secret", clock=clock)
        authenticator = RequestAuthenticator(codec, revocations)
        expired = codec.issue(1, "user")
        clock.now += 25 * 3600
        with pytest.raises(UnauthorizedError) as expired_exc:
            await authenticator.authenticate(f"Bearer {expired}")
        with pytest.raises(UnauthorizedError) as invalid_exc:
            await authenticator.authenticate("Bearer not.a.token")
        assert expired_exc.value.message == invalid_exc.value.message
        assert type(expired_exc.value) is UnauthorizedError
        assert type(invalid_exc.value) is UnauthorizedError

    async def test_logout_revokes_token(self, auth, authenticator):
        await _register_alice(auth)
        token, _ = await auth.login("alice", "password123")
        identity = await authenticator.authenticate(f"Bearer {token}")
        assert await auth.logout(identity) is True
        with pytest.raises(UnauthorizedError):
            await authenticator.authenticate(f"Bearer {token}")

    async def test_logout_after_expiry_skips_write(self, auth, revocations):
        now = int(time.time())
        codec = TokenCodec("service-test-secret", clock=lambda: now - 90_000)
        token = codec.issue(1, "user")
        claims = TokenCodec("service-test-secret", clock=lambda: now - 90_000).verify(token)
        identity = AuthenticatedUser(user_id=1, role="user", claims=claims, token=token)
        assert await auth.logout(identity) is False
        assert await revocations.is_blacklisted(token) is False

    async def test_logout_near_expiry_revokes_for_the_remaining_fraction(self, auth, codec):
        """A token with under two seconds left is still revoked, to the millisecond."""
        client = RecordingRevocationClient()
        revocations = RevocationStore(client)
        auth.revocations = revocations
        lifetime = int(codec.lifetime.total_seconds())
        issued_at = math.floor(time.time()) + 2 - lifetime
        token = TokenCodec("service-test-secret", clock=lambda: issued_at).issue(1, "user")
        claims = codec.verify(token)
        identity = AuthenticatedUser(user_id=1, role="user", claims=claims, token=token)

        before = time.time()
        assert await auth.logout(identity) is True
        after = time.time()

        (px,) = client.expiries
        assert int((claims.exp - after) * 1000) <= px <= (claims.exp - before) * 1000
        with pytest.raises(UnauthorizedError):
            await RequestAuthenticator(codec, revocations).authenticate(f"Bearer {token}")

    async def test_revocation_outage_fails_closed(self, auth, codec):
        await _register_alice(auth)
        token, _ = await auth.login("alice", "password123")
        authenticator = RequestAuthenticator(codec, RevocationStore(BrokenRevocationClient()))
        with pytest.raises(InternalError):
            await authenticator.authenticate(f"Bearer {token}")
