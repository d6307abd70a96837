from __future__ import annotations

import threading
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from warden.logging import get_logger
from warden.storage.errors import ConstraintViolation
from warden.storage.models import User, UserRole


_UPDATABLE_FIELDS = {"username", "full_name", "email", "phone_number"}


class MemoryStore:
    """In-process user store for local development and tests."""

    def __init__(self) -> None:
        self.logger = get_logger(__name__)
        self.users: Dict[int, User] = {}
        self.password_hashes: Dict[int, str] = {}
        self._next_id: int = 1
        # RLock for all data operations; nested acquisitions happen in update paths
        self._data_lock = threading.RLock()

    def verify_connection(self) -> None:
        """Nothing to probe for the in-process store."""

    def close(self) -> None:
        pass

    def _check_unique(
        self,
        *,
        username: Optional[str] = None,
        email: Optional[str] = None,
        exclude_id: Optional[int] = None,
    ) -> None:
        for existing in self.users.values():
            if existing.id == exclude_id:
                continue
            if username is not None and existing.username == username:
                raise ConstraintViolation(
                    "username already exists", {"field": "username"}
                )
            if email is not None and existing.email.lower() == email.lower():
                raise ConstraintViolation("email already exists", {"field": "email"})

    # users
    def create_user(
        self,
        username: str,
        email: str,
        password_hash: str,
        *,
        full_name: str,
        phone_number: Optional[str] = None,
        role: str = UserRole.USER.value,
    ) -> User:
        with self._data_lock:
            self._check_unique(username=username, email=email)
            user_id = self._next_id
            self._next_id += 1
            now = datetime.utcnow()
            user = User(
                id=user_id,
                username=username,
                email=email,
                full_name=full_name,
                phone_number=phone_number,
                role=role,
                created_at=now,
                updated_at=now,
            )
            self.users[user_id] = user
            self.password_hashes[user_id] = password_hash
            return replace(user)

    def get_user(self, user_id: int) -> Optional[User]:
        with self._data_lock:
            user = self.users.get(user_id)
            return replace(user) if user else None

    def get_user_by_email(self, email: str) -> Optional[User]:
        with self._data_lock:
            lowered = email.lower()
            user = next(
                (u for u in self.users.values() if u.email.lower() == lowered), None
            )
            return replace(user) if user else None

    def get_user_by_login(self, identifier: str) -> Optional[User]:
        """Resolve a login identifier: emails contain ``@``, usernames never do."""
        if "@" in identifier:
            return self.get_user_by_email(identifier)
        with self._data_lock:
            user = next(
                (u for u in self.users.values() if u.username == identifier), None
            )
            return replace(user) if user else None

    def get_password_hash(self, user_id: int) -> Optional[str]:
        with self._data_lock:
            return self.password_hashes.get(user_id)

    def _ordered(self) -> List[User]:
        return sorted(
            self.users.values(), key=lambda u: (u.created_at, u.id), reverse=True
        )

    def list_users(self, limit: int = 20, offset: int = 0) -> List[User]:
        with self._data_lock:
            return [replace(u) for u in self._ordered()[offset : offset + limit]]

    def count_users(self) -> int:
        with self._data_lock:
            return len(self.users)

    def search_users(self, query: str, limit: int = 20, offset: int = 0) -> List[User]:
        needle = query.lower()
        with self._data_lock:
            matches = [
                u
                for u in self._ordered()
                if needle in u.username.lower()
                or needle in u.email.lower()
                or needle in u.full_name.lower()
            ]
            return [replace(u) for u in matches[offset : offset + limit]]

    def list_recent_users(self, days: int, limit: int = 10) -> List[User]:
        cutoff = datetime.utcnow() - timedelta(days=days)
        with self._data_lock:
            recent = [u for u in self._ordered() if u.created_at >= cutoff]
            return [replace(u) for u in recent[:limit]]

    def update_user(self, user_id: int, **fields: Optional[str]) -> Optional[User]:
        """Apply non-None profile fields; a ``password_hash`` key replaces the credential."""
        password_hash = fields.pop("password_hash", None)
        unknown = set(fields) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"unsupported user fields: {sorted(unknown)}")
        changes = {name: value for name, value in fields.items() if value is not None}
        with self._data_lock:
            user = self.users.get(user_id)
            if not user:
                return None
            self._check_unique(
                username=changes.get("username"),
                email=changes.get("email"),
                exclude_id=user_id,
            )
            for name, value in changes.items():
                setattr(user, name, value)
            if password_hash is not None:
                self.password_hashes[user_id] = password_hash
            user.updated_at = datetime.utcnow()
            return replace(user)

    def update_password(self, user_id: int, password_hash: str) -> bool:
        with self._data_lock:
            user = self.users.get(user_id)
            if not user:
                return False
            self.password_hashes[user_id] = password_hash
            user.updated_at = datetime.utcnow()
            return True

    def _set_fields(self, user_id: int, **values) -> Optional[User]:
        with self._data_lock:
            user = self.users.get(user_id)
            if not user:
                return None
            for name, value in values.items():
                setattr(user, name, value)
            user.updated_at = datetime.utcnow()
            return replace(user)

    def update_user_role(self, user_id: int, role: str) -> Optional[User]:
        return self._set_fields(user_id, role=role)

    def set_user_active(self, user_id: int, active: bool) -> Optional[User]:
        return self._set_fields(user_id, is_active=active)

    def set_email_verified(self, user_id: int, verified: bool = True) -> Optional[User]:
        return self._set_fields(user_id, email_verified=verified)

    def update_last_login(self, user_id: int) -> None:
        with self._data_lock:
            user = self.users.get(user_id)
            if user:
                user.last_login = datetime.utcnow()
