from __future__ import annotations

import re
import unicodedata
from datetime import datetime
from typing import Any, List, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from warden.storage.models import UserRole


def _normalize_unicode(value: str) -> str:
    """NFKC-normalize and strip zero-width and bidi override characters."""
    zero_width = "​‌‍﻿"
    cleaned = "".join(c for c in value if c not in zero_width)
    bidi_overrides = set(chr(c) for c in range(0x202A, 0x202F))
    bidi_overrides.update(chr(c) for c in range(0x2066, 0x206A))
    cleaned = "".join(c for c in cleaned if c not in bidi_overrides)
    return unicodedata.normalize("NFKC", cleaned)


class ErrorResponse(BaseModel):
    """Body of every error response."""

    status_code: int
    error: str
    message: str


class Envelope(BaseModel):
    """Wrapper for successful responses."""

    status: Literal["success"] = "success"
    message: Optional[str] = None
    data: Optional[Any] = None


_EMAIL_LOCAL_PART = re.compile(r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+$")
_EMAIL_DOMAIN_LABEL = re.compile(r"^[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?$")


def _validate_email(value: str) -> str:
    if not isinstance(value, str):
        raise ValueError("email must be a string")
    normalized = _normalize_unicode(value.strip().lower())
    if len(normalized) > 254:
        raise ValueError("email address too long")
    if len(normalized) < 3:
        raise ValueError("email address too short")
    local, sep, domain = normalized.partition("@")
    if not sep or not local or not domain:
        raise ValueError("invalid email address")
    if len(local) > 64:
        raise ValueError("email local part too long")
    if not _EMAIL_LOCAL_PART.match(local):
        raise ValueError("invalid email address format")
    domain_parts = domain.split(".")
    if len(domain_parts) < 2:
        raise ValueError("invalid email address format")
    for label in domain_parts:
        if len(label) > 63 or not _EMAIL_DOMAIN_LABEL.match(label):
            raise ValueError("invalid email address format")
    return normalized


def _validate_password_strength(value: str) -> str:
    if len(value) < 8:
        raise ValueError("password must be at least 8 characters")
    if len(value) > 128:
        raise ValueError("password must be at most 128 characters")
    return value


def _validate_username(value: str) -> str:
    normalized = _normalize_unicode(value.strip())
    if len(normalized) < 3:
        raise ValueError("username must be at least 3 characters")
    if len(normalized) > 50:
        raise ValueError("username must be at most 50 characters")
    if "@" in normalized:
        raise ValueError("username must not contain '@'")
    return normalized


def _validate_full_name(value: str) -> str:
    normalized = _normalize_unicode(value.strip())
    if len(normalized) < 3:
        raise ValueError("full_name must be at least 3 characters")
    if len(normalized) > 80:
        raise ValueError("full_name must be at most 80 characters")
    return normalized


def _validate_phone(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    if len(value) != 10:
        raise ValueError("phone_number must be exactly 10 characters")
    return value


class RegisterRequest(BaseModel):
    username: str
    email: str
    password: str
    full_name: str
    phone_number: Optional[str] = None
    admin_code: Optional[str] = None

    @field_validator("username")
    @classmethod
    def _check_username(cls, value: str) -> str:
        return _validate_username(value)

    @field_validator("email")
    @classmethod
    def _check_email(cls, value: str) -> str:
        return _validate_email(value)

    @field_validator("password")
    @classmethod
    def _check_password(cls, value: str) -> str:
        return _validate_password_strength(value)

    @field_validator("full_name")
    @classmethod
    def _check_full_name(cls, value: str) -> str:
        return _validate_full_name(value)

    @field_validator("phone_number")
    @classmethod
    def _check_phone(cls, value: Optional[str]) -> Optional[str]:
        return _validate_phone(value)


class LoginRequest(BaseModel):
    """Credentials for login; the identifier may be a username or an email."""

    username_or_email: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("username_or_email", "email", "username"),
    )
    password: str = Field(..., min_length=1)

    @field_validator("username_or_email")
    @classmethod
    def _normalize_identifier(cls, value: str) -> str:
        return _normalize_unicode(value.strip())


class AuthResponse(BaseModel):
    token: str
    token_type: str = "bearer"
    user_id: int
    username: str
    role: str


class UserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    username: str
    full_name: str
    email: str
    phone_number: Optional[str] = None
    role: str
    is_active: bool
    email_verified: bool
    phone_verified: bool
    last_login: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class UserListResponse(BaseModel):
    users: List[UserResponse]
    total: int
    page: int
    page_size: int


class UserUpdateRequest(BaseModel):
    id: int
    username: Optional[str] = None
    full_name: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None
    phone_number: Optional[str] = None

    @field_validator("username")
    @classmethod
    def _check_username(cls, value: Optional[str]) -> Optional[str]:
        return None if value is None else _validate_username(value)

    @field_validator("full_name")
    @classmethod
    def _check_full_name(cls, value: Optional[str]) -> Optional[str]:
        return None if value is None else _validate_full_name(value)

    @field_validator("email")
    @classmethod
    def _check_email(cls, value: Optional[str]) -> Optional[str]:
        return None if value is None else _validate_email(value)

    @field_validator("password")
    @classmethod
    def _check_password(cls, value: Optional[str]) -> Optional[str]:
        return None if value is None else _validate_password_strength(value)

    @field_validator("phone_number")
    @classmethod
    def _check_phone(cls, value: Optional[str]) -> Optional[str]:
        return _validate_phone(value)


class PasswordChangeRequest(BaseModel):
    current_password: str = Field(..., min_length=1)
    new_password: str

    @field_validator("new_password")
    @classmethod
    def _check_new_password(cls, value: str) -> str:
        return _validate_password_strength(value)


class UpdateUserRoleRequest(BaseModel):
    role: UserRole
