from __future__ import annotations

import os
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from warden.logging import get_logger

logger = get_logger(__name__)


class ConfigurationError(RuntimeError):
    """Raised at startup when required environment configuration is absent or invalid."""

    def __init__(self, message: str, missing: list[str] | None = None) -> None:
        super().__init__(message)
        self.missing = missing or []


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Process configuration, built once at startup and shared read-only."""

    database_url: str = env_field(..., "DATABASE_URL", min_length=1)
    redis_url: str = env_field(..., "REDIS_URL", min_length=1)
    jwt_secret: str = env_field(..., "JWT_SECRET", min_length=1)
    host: str = env_field(..., "HOST", min_length=1)
    port: int = env_field(..., "PORT", ge=1, le=65535)
    admin_registration_code: str = env_field(
        ...,
        "ADMIN_REGISTRATION_CODE",
        min_length=1,
        description="Secret that promotes a registering account to admin",
    )

    use_memory_store: bool = env_field(
        False,
        "USE_MEMORY_STORE",
        description="Keep user records in process memory instead of Postgres",
    )
    test_mode: bool = env_field(
        False,
        "TEST_MODE",
        description="Allow in-process revocation fallback when Redis is unreachable",
    )
    store_timeout_seconds: float = env_field(
        3.0,
        "STORE_TIMEOUT_SECONDS",
        gt=0,
        description="Upper bound for a single user store or revocation store round-trip",
    )
    redis_socket_timeout: float = env_field(5.0, "REDIS_SOCKET_TIMEOUT", gt=0)
    db_pool_min_size: int = env_field(2, "DB_POOL_MIN_SIZE", ge=1)
    db_pool_max_size: int = env_field(10, "DB_POOL_MAX_SIZE", ge=1)
    cors_allow_origins: list[str] = env_field([], "CORS_ALLOW_ORIGINS")

    model_config = ConfigDict(extra="ignore", frozen=True)

    @classmethod
    def from_env(cls) -> "Settings":
        env_file_values = dotenv_values(".env")
        merged: dict[str, str] = {}
        for name, field in cls.model_fields.items():
            extra = field.json_schema_extra or {}
            env_key = extra.get("env") if isinstance(extra, dict) else None
            env_name = env_key or name.upper()
            if env_name in os.environ:
                merged[name] = os.environ[env_name]
            elif env_file_values.get(env_name) is not None:
                merged[name] = env_file_values[env_name]
        try:
            return cls(**merged)
        except ValidationError as exc:
            missing = sorted(
                cls._env_name(str(err["loc"][0]))
                for err in exc.errors()
                if err["loc"] and err["type"] in {"missing", "string_too_short"}
            )
            invalid = sorted(
                cls._env_name(str(err["loc"][0]))
                for err in exc.errors()
                if err["loc"] and err["type"] not in {"missing", "string_too_short"}
            )
            logger.error("settings_invalid", missing=missing, invalid=invalid)
            if missing:
                message = "missing required configuration: " + ", ".join(missing)
            else:
                message = "invalid configuration: " + ", ".join(invalid)
            raise ConfigurationError(message, missing=missing) from exc

    @classmethod
    def _env_name(cls, field_name: str) -> str:
        field = cls.model_fields.get(field_name)
        extra = (field.json_schema_extra if field else None) or {}
        if isinstance(extra, dict) and extra.get("env"):
            return str(extra["env"])
        return field_name.upper()

    @field_validator("cors_allow_origins", mode="before")
    @classmethod
    def _split_origins(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings.from_env()
    return _settings_cache


_settings_cache: Settings | None = None


def reset_settings_cache() -> None:
    """Clear cached settings so future calls re-read the environment."""

    global _settings_cache
    _settings_cache = None
