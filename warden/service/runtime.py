from __future__ import annotations

import asyncio
import threading
from typing import Optional

from warden.config import get_settings, reset_settings_cache
from warden.logging import get_logger, mask_url_password
from warden.service.auth import AuthService, UserStore
from warden.service.authenticator import RequestAuthenticator
from warden.service.passwords import CredentialHasher
from warden.service.tokens import TokenCodec
from warden.service.users import UserService
from warden.storage.memory import MemoryStore
from warden.storage.postgres import PostgresStore
from warden.storage.revocation import (
    LocalRevocationClient,
    RevocationStore,
    sync_revocation_store,
)

logger = get_logger(__name__)


class Runtime:
    """Holds singleton service instances for the FastAPI app."""

    def __init__(self):
        self.settings = get_settings()
        logger.info(
            "runtime_init_started",
            use_memory_store=self.settings.use_memory_store,
            test_mode=self.settings.test_mode,
        )

        store_type = "memory" if self.settings.use_memory_store else "postgres"
        try:
            self.store: UserStore = (
                MemoryStore()
                if self.settings.use_memory_store
                else PostgresStore(
                    self.settings.database_url,
                    min_size=self.settings.db_pool_min_size,
                    max_size=self.settings.db_pool_max_size,
                    timeout=self.settings.store_timeout_seconds,
                )
            )
            logger.info("runtime_store_initialized", store_type=store_type)
        except Exception as exc:
            logger.error(
                "runtime_store_init_failed",
                store_type=store_type,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise

        self.revocations = self._build_revocation_store()

        self.hasher = CredentialHasher()
        self.codec = TokenCodec(self.settings.jwt_secret)
        self.auth = AuthService(
            self.store,
            self.revocations,
            self.settings,
            hasher=self.hasher,
            codec=self.codec,
        )
        self.users = UserService(self.store, self.settings, hasher=self.hasher)
        self.authenticator = RequestAuthenticator(self.codec, self.revocations)
        logger.info("runtime_init_completed", revocation_store=self.revocations.describe())

    def _build_revocation_store(self) -> RevocationStore:
        settings = self.settings
        redis_error: Exception | None = None
        try:
            # Sync client in test mode; TestClient requests may each run on a new loop
            if settings.test_mode:
                revocations = sync_revocation_store(
                    settings.redis_url,
                    socket_timeout=settings.redis_socket_timeout,
                    operation_timeout=settings.store_timeout_seconds,
                )
            else:
                revocations = RevocationStore.from_url(
                    settings.redis_url,
                    socket_timeout=settings.redis_socket_timeout,
                    operation_timeout=settings.store_timeout_seconds,
                )
            revocations.verify_connection()
            return revocations
        except Exception as exc:
            redis_error = exc

        if not settings.test_mode:
            logger.error(
                "redis_unavailable",
                redis_url=mask_url_password(settings.redis_url),
                error=str(redis_error),
            )
            raise RuntimeError(
                "Redis is required for token revocation; start Redis or set "
                "TEST_MODE=true for an in-process fallback."
            ) from redis_error

        logger.warning(
            "redis_disabled_fallback",
            redis_url=mask_url_password(settings.redis_url),
            error=str(redis_error),
            message="Running without Redis under TEST_MODE; revoked tokens are tracked in-process only.",
            mode="TEST_MODE",
        )
        return RevocationStore(
            LocalRevocationClient(),
            operation_timeout=settings.store_timeout_seconds,
        )

    async def aclose(self) -> None:
        await self.revocations.close()
        self.store.close()
        logger.info("runtime_closed")


runtime: Optional[Runtime] = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    """Get or create the Runtime singleton in a thread-safe manner.

    Double-checked locking: the fast path skips the lock once the runtime exists.
    """
    global runtime
    if runtime is not None:
        return runtime
    with _runtime_lock:
        if runtime is None:
            runtime = Runtime()
        return runtime


async def close_runtime() -> None:
    global runtime
    with _runtime_lock:
        current, runtime = runtime, None
    if current is not None:
        await current.aclose()


def reset_runtime_for_tests() -> Runtime:
    """Reinitialize the runtime singleton for isolated test runs."""
    global runtime

    with _runtime_lock:
        if runtime is not None:
            try:
                asyncio.run(runtime.aclose())
            except RuntimeError as exc:
                # Called from inside a running loop; release the store synchronously
                logger.warning("runtime_reset_close_failed", error=str(exc))
                runtime.store.close()

        reset_settings_cache()
        settings = get_settings()
        if not settings.test_mode:
            raise RuntimeError("runtime reset is only allowed in TEST_MODE")
        runtime = Runtime()
        return runtime
