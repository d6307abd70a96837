from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


class UserRole(str, Enum):
    USER = "user"
    ADMIN = "admin"
    GUEST = "guest"


@dataclass
class User:
    """Credential record as exposed outside the store.

    The password hash lives beside the record in the store and is only
    reachable through ``get_password_hash``.
    """

    id: int
    username: str
    email: str
    full_name: str
    phone_number: Optional[str] = None
    role: str = UserRole.USER.value
    is_active: bool = True
    email_verified: bool = False
    phone_verified: bool = False
    last_login: Optional[datetime] = None
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)
