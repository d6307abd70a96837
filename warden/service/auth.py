from __future__ import annotations

import time
from dataclasses import dataclass
from typing import List, Optional, Protocol, Tuple

from warden.config import Settings
from warden.logging import get_logger
from warden.service.blocking import run_cpu_bound, run_store_call
from warden.service.compare import constant_time_equals
from warden.service.errors import ConflictError, UnauthorizedError, ValidationError
from warden.service.passwords import CredentialHasher
from warden.service.tokens import Claims, TokenCodec
from warden.storage.errors import ConstraintViolation
from warden.storage.models import User, UserRole
from warden.storage.revocation import RevocationStore

logger = get_logger(__name__)

INVALID_CREDENTIALS = "invalid credentials"


class UserStore(Protocol):
    def create_user(
        self,
        username: str,
        email: str,
        password_hash: str,
        *,
        full_name: str,
        phone_number: Optional[str] = None,
        role: str = "user",
    ) -> User: ...

    def get_user(self, user_id: int) -> Optional[User]: ...

    def get_user_by_email(self, email: str) -> Optional[User]: ...

    def get_user_by_login(self, identifier: str) -> Optional[User]: ...

    def get_password_hash(self, user_id: int) -> Optional[str]: ...

    def list_users(self, limit: int = 20, offset: int = 0) -> List[User]: ...

    def count_users(self) -> int: ...

    def search_users(self, query: str, limit: int = 20, offset: int = 0) -> List[User]: ...

    def list_recent_users(self, days: int, limit: int = 10) -> List[User]: ...

    def update_user(self, user_id: int, **fields: Optional[str]) -> Optional[User]: ...

    def update_password(self, user_id: int, password_hash: str) -> bool: ...

    def update_user_role(self, user_id: int, role: str) -> Optional[User]: ...

    def set_user_active(self, user_id: int, active: bool) -> Optional[User]: ...

    def set_email_verified(self, user_id: int, verified: bool = True) -> Optional[User]: ...

    def update_last_login(self, user_id: int) -> None: ...

    def verify_connection(self) -> None: ...

    def close(self) -> None: ...


@dataclass(frozen=True)
class AuthenticatedUser:
    """Identity resolved from a verified, non-revoked bearer token."""

    user_id: int
    role: str
    claims: Claims
    token: str

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN.value


class AuthService:
    """Registration, login and logout."""

    def __init__(
        self,
        store: UserStore,
        revocations: RevocationStore,
        settings: Settings,
        *,
        hasher: Optional[CredentialHasher] = None,
        codec: Optional[TokenCodec] = None,
    ) -> None:
        self.store = store
        self.revocations = revocations
        self.settings = settings
        self.hasher = hasher or CredentialHasher()
        self.codec = codec or TokenCodec(settings.jwt_secret)
        self.logger = logger
        self._store_timeout = settings.store_timeout_seconds
        self._dummy_hash: Optional[str] = None

    async def _equalize_lookup_miss(self, password: str) -> None:
        # Spend one verify on a miss so unknown users cost the same as wrong passwords
        if self._dummy_hash is None:
            self._dummy_hash = await run_cpu_bound(self.hasher.hash, "warden-dummy-password")
        await run_cpu_bound(self.hasher.verify, password, self._dummy_hash)

    async def register(
        self,
        username: str,
        email: str,
        password: str,
        *,
        full_name: str,
        phone_number: Optional[str] = None,
        admin_code: Optional[str] = None,
    ) -> User:
        """Create an account; a matching ``admin_code`` grants the admin role.

        A supplied code that does not match fails the whole registration.
        """
        if "@" in username:
            # Login treats any identifier with "@" as an email
            raise ValidationError("username must not contain '@'")
        role = UserRole.USER.value
        if admin_code:
            if not constant_time_equals(admin_code, self.settings.admin_registration_code):
                self.logger.info("register_admin_code_rejected", username=username)
                raise UnauthorizedError("Invalid admin code")
            role = UserRole.ADMIN.value

        password_hash = await run_cpu_bound(self.hasher.hash, password)
        try:
            user = await run_store_call(
                "create_user",
                self.store.create_user,
                username,
                email,
                password_hash,
                full_name=full_name,
                phone_number=phone_number,
                role=role,
                timeout=self._store_timeout,
            )
        except ConstraintViolation as exc:
            self.logger.debug("register_conflict", field=exc.detail.get("field"))
            raise ConflictError("Username or email already exists", detail=exc.detail) from exc
        self.logger.info("user_registered", user_id=user.id, role=user.role)
        return user

    async def login(self, identifier: str, password: str) -> Tuple[str, User]:
        """Verify credentials and issue a token carrying the current role.

        Unknown identifiers, wrong passwords and deactivated accounts all fail
        with the same ``UnauthorizedError``.
        """
        user = await run_store_call(
            "get_user_by_login",
            self.store.get_user_by_login,
            identifier,
            timeout=self._store_timeout,
        )
        if user is None:
            await self._equalize_lookup_miss(password)
            self.logger.debug("login_failed", reason="unknown_user")
            raise UnauthorizedError(INVALID_CREDENTIALS)

        password_hash = await run_store_call(
            "get_password_hash",
            self.store.get_password_hash,
            user.id,
            timeout=self._store_timeout,
        )
        if not password_hash:
            await self._equalize_lookup_miss(password)
            self.logger.warning("login_missing_password_hash", user_id=user.id)
            raise UnauthorizedError(INVALID_CREDENTIALS)

        if not await run_cpu_bound(self.hasher.verify, password, password_hash):
            self.logger.debug("login_failed", reason="password_mismatch", user_id=user.id)
            raise UnauthorizedError(INVALID_CREDENTIALS)
        if not user.is_active:
            self.logger.info("login_failed", reason="inactive", user_id=user.id)
            raise UnauthorizedError(INVALID_CREDENTIALS)

        await run_store_call(
            "update_last_login",
            self.store.update_last_login,
            user.id,
            timeout=self._store_timeout,
        )
        token = self.codec.issue(user.id, user.role)
        self.logger.info("login_succeeded", user_id=user.id, role=user.role)
        return token, user

    async def logout(self, identity: AuthenticatedUser) -> bool:
        """Blacklist the caller's token for the rest of its lifetime.

        Returns False when the token had no lifetime left and nothing was written.
        """
        ttl = identity.claims.remaining_seconds(time.time())
        written = await self.revocations.blacklist(identity.token, identity.user_id, ttl)
        self.logger.info("logout", user_id=identity.user_id, revoked=written)
        return written
