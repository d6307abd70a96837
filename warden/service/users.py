from __future__ import annotations

from typing import List, Optional, Tuple

from warden.config import Settings
from warden.logging import get_logger
from warden.service.auth import UserStore
from warden.service.blocking import run_cpu_bound, run_store_call
from warden.service.errors import (
    ConflictError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from warden.service.passwords import CredentialHasher
from warden.storage.errors import ConstraintViolation
from warden.storage.models import User, UserRole

logger = get_logger(__name__)


class UserService:
    """Administrative and self-service operations on user records.

    Access policy (admin-only, self-or-admin) is applied by the HTTP layer;
    these methods assume the caller is already allowed.
    """

    def __init__(
        self,
        store: UserStore,
        settings: Settings,
        *,
        hasher: Optional[CredentialHasher] = None,
    ) -> None:
        self.store = store
        self.hasher = hasher or CredentialHasher()
        self._store_timeout = settings.store_timeout_seconds

    async def _call(self, label: str, func, *args, **kwargs):
        return await run_store_call(
            label, func, *args, timeout=self._store_timeout, **kwargs
        )

    async def get_user(self, user_id: int) -> User:
        user = await self._call("get_user", self.store.get_user, user_id)
        if user is None:
            raise NotFoundError(f"User with id {user_id} not found")
        return user

    async def get_user_by_email(self, email: str) -> User:
        user = await self._call("get_user_by_email", self.store.get_user_by_email, email)
        if user is None:
            raise NotFoundError(f"User with email {email} not found")
        return user

    async def list_users(self, page: int = 0, page_size: int = 20) -> Tuple[List[User], int]:
        """Return one zero-based page of users, newest first, plus the total count."""
        users = await self._call(
            "list_users", self.store.list_users, page_size, page * page_size
        )
        total = await self._call("count_users", self.store.count_users)
        return users, total

    async def search_users(self, query: str, page: int = 0, page_size: int = 20) -> List[User]:
        return await self._call(
            "search_users", self.store.search_users, query, page_size, page * page_size
        )

    async def recent_users(self, days: int = 7, limit: int = 10) -> List[User]:
        return await self._call("list_recent_users", self.store.list_recent_users, days, limit)

    async def update_profile(
        self,
        user_id: int,
        *,
        username: Optional[str] = None,
        full_name: Optional[str] = None,
        email: Optional[str] = None,
        password: Optional[str] = None,
        phone_number: Optional[str] = None,
    ) -> User:
        await self.get_user(user_id)
        password_hash = None
        if password is not None:
            password_hash = await run_cpu_bound(self.hasher.hash, password)
        try:
            user = await self._call(
                "update_user",
                self.store.update_user,
                user_id,
                username=username,
                full_name=full_name,
                email=email,
                phone_number=phone_number,
                password_hash=password_hash,
            )
        except ConstraintViolation as exc:
            raise ConflictError("Username or email already exists", detail=exc.detail) from exc
        if user is None:
            raise NotFoundError(f"User with id {user_id} not found")
        logger.info(
            "user_profile_updated",
            user_id=user_id,
            password_changed=password_hash is not None,
        )
        return user

    async def change_password(
        self, user_id: int, current_password: str, new_password: str
    ) -> None:
        await self.get_user(user_id)
        stored = await self._call("get_password_hash", self.store.get_password_hash, user_id)
        if not stored or not await run_cpu_bound(self.hasher.verify, current_password, stored):
            logger.info("password_change_rejected", user_id=user_id)
            raise UnauthorizedError("Current password is incorrect")
        new_hash = await run_cpu_bound(self.hasher.hash, new_password)
        if not await self._call("update_password", self.store.update_password, user_id, new_hash):
            raise NotFoundError(f"User with id {user_id} not found")
        logger.info("password_changed", user_id=user_id)

    async def set_role(self, user_id: int, role: UserRole | str) -> User:
        role_value = UserRole(role).value
        await self.get_user(user_id)
        user = await self._call("update_user_role", self.store.update_user_role, user_id, role_value)
        if user is None:
            raise NotFoundError(f"User with id {user_id} not found")
        # Outstanding tokens keep their role snapshot until they expire or are revoked
        logger.info("user_role_updated", user_id=user_id, role=role_value)
        return user

    async def deactivate(self, actor_id: int, user_id: int) -> User:
        if actor_id == user_id:
            raise ValidationError("Cannot deactivate your own account")
        return await self._set_active(user_id, False)

    async def reactivate(self, user_id: int) -> User:
        return await self._set_active(user_id, True)

    async def _set_active(self, user_id: int, active: bool) -> User:
        await self.get_user(user_id)
        user = await self._call("set_user_active", self.store.set_user_active, user_id, active)
        if user is None:
            raise NotFoundError(f"User with id {user_id} not found")
        logger.info("user_active_changed", user_id=user_id, is_active=active)
        return user

    async def verify_email(self, user_id: int) -> User:
        await self.get_user(user_id)
        user = await self._call("set_email_verified", self.store.set_email_verified, user_id, True)
        if user is None:
            raise NotFoundError(f"User with id {user_id} not found")
        logger.info("user_email_verified", user_id=user_id)
        return user
