from __future__ import annotations

import asyncio
import hashlib
import threading
import time
from typing import Any, Awaitable, Dict, Optional, Tuple

import redis.asyncio as aioredis
from redis import Redis
from redis.asyncio.retry import Retry as AsyncRetry
from redis.backoff import NoBackoff
from redis.exceptions import RedisError
from redis.exceptions import TimeoutError as RedisTimeoutError
from redis.retry import Retry

from warden.logging import get_logger, mask_url_password
from warden.service.errors import InternalError, StoreTimeoutError

logger = get_logger(__name__)

BLACKLIST_PREFIX = "blacklisted_jwt:"


def token_fingerprint(token: str) -> str:
    """One-way fingerprint of a raw token, used as the revocation key suffix."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class RevocationStore:
    """Redis-backed blacklist of revoked bearer tokens.

    Entries map ``blacklisted_jwt:<sha256(token)>`` to the revoking subject id and
    expire with the token. Any store failure or timeout raises ``InternalError``
    so callers fail closed instead of treating the token as live.
    """

    def __init__(
        self,
        client: Any,
        *,
        operation_timeout: float = 3.0,
        redis_url: Optional[str] = None,
    ) -> None:
        self.client = client
        self.operation_timeout = operation_timeout
        self.redis_url = redis_url

    @classmethod
    def from_url(
        cls,
        redis_url: str,
        *,
        socket_timeout: float = 5.0,
        operation_timeout: float = 3.0,
    ) -> "RevocationStore":
        client = aioredis.from_url(
            redis_url,
            decode_responses=True,
            retry=AsyncRetry(NoBackoff(), 0),
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        return cls(client, operation_timeout=operation_timeout, redis_url=redis_url)

    @staticmethod
    def key_for(token: str) -> str:
        return f"{BLACKLIST_PREFIX}{token_fingerprint(token)}"

    async def _bounded(self, operation: str, awaitable: Awaitable[Any]) -> Any:
        try:
            return await asyncio.wait_for(awaitable, self.operation_timeout)
        except (asyncio.TimeoutError, RedisTimeoutError) as exc:
            logger.error(
                "revocation_store_timeout",
                operation=operation,
                timeout=self.operation_timeout,
            )
            raise StoreTimeoutError("revocation store timed out") from exc
        except (RedisError, OSError) as exc:
            logger.error(
                "revocation_store_unavailable",
                operation=operation,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise InternalError("revocation store unavailable") from exc

    async def blacklist(self, token: str, subject_id: int | str, ttl_seconds: float) -> bool:
        """Record ``token`` as revoked for ``ttl_seconds``.

        The entry expiry is written in whole milliseconds, rounded down, so it
        ends with the token's own lifetime and never after it. Returns False
        without touching the store when less than a millisecond remains.
        """
        ttl_ms = int(ttl_seconds * 1000)
        if ttl_ms <= 0:
            logger.debug("revocation_skipped_expired_token", subject_id=subject_id)
            return False
        await self._bounded(
            "blacklist", self.client.set(self.key_for(token), str(subject_id), px=ttl_ms)
        )
        logger.debug("token_blacklisted", subject_id=subject_id, ttl_ms=ttl_ms)
        return True

    async def is_blacklisted(self, token: str) -> bool:
        return bool(await self._bounded("exists", self.client.exists(self.key_for(token))))

    async def ping(self) -> bool:
        return bool(await self._bounded("ping", self.client.ping()))

    def verify_connection(self) -> None:
        """Assert Redis connectivity before serving requests."""
        if isinstance(self.client, (_SyncClientAdapter, LocalRevocationClient)):
            self.client.ping_sync()
            return
        if not self.redis_url:
            return
        # Short-lived sync client keeps the async pool off the startup event loop
        sync_client = Redis.from_url(
            self.redis_url,
            decode_responses=True,
            retry=Retry(NoBackoff(), 0),
            socket_timeout=self.operation_timeout,
            socket_connect_timeout=self.operation_timeout,
        )
        try:
            sync_client.ping()
        finally:
            sync_client.close()

    async def close(self) -> None:
        closer = getattr(self.client, "aclose", None) or getattr(self.client, "close", None)
        if closer is None:
            return
        result = closer()
        if asyncio.iscoroutine(result):
            await result

    def describe(self) -> str:
        return mask_url_password(self.redis_url) or type(self.client).__name__


class _SyncClientAdapter:
    """Wraps a sync Redis client with async method signatures.

    Used in TEST_MODE, where each TestClient request may run on a fresh event
    loop and a pooled async client would stay bound to the first one. Each
    blocking call runs on a worker thread.
    """

    def __init__(self, sync_client: Redis):
        self._sync = sync_client

    async def set(self, key: str, value: str, px: Optional[int] = None) -> bool:
        return bool(await asyncio.to_thread(self._sync.set, key, value, px=px))

    async def exists(self, key: str) -> int:
        return int(await asyncio.to_thread(self._sync.exists, key))

    async def ping(self) -> bool:
        return bool(await asyncio.to_thread(self._sync.ping))

    def ping_sync(self) -> None:
        self._sync.ping()

    async def aclose(self) -> None:
        await asyncio.to_thread(self._sync.close)


def sync_revocation_store(
    redis_url: str, *, socket_timeout: float = 5.0, operation_timeout: float = 3.0
) -> RevocationStore:
    """Build a RevocationStore over a synchronous Redis client."""
    sync_client = Redis.from_url(
        redis_url,
        decode_responses=True,
        retry=Retry(NoBackoff(), 0),
        socket_timeout=socket_timeout,
        socket_connect_timeout=socket_timeout,
    )
    return RevocationStore(
        _SyncClientAdapter(sync_client),
        operation_timeout=operation_timeout,
        redis_url=redis_url,
    )


class LocalRevocationClient:
    """Process-local stand-in for the Redis commands the blacklist uses.

    Only wired up in TEST_MODE when Redis is unreachable; entries are not shared
    across processes.
    """

    def __init__(self) -> None:
        self._entries: Dict[str, Tuple[str, Optional[float]]] = {}
        self._lock = threading.Lock()

    def _live(self, key: str) -> Optional[str]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and expires_at <= time.monotonic():
            self._entries.pop(key, None)
            return None
        return value

    async def set(self, key: str, value: str, px: Optional[int] = None) -> bool:
        expires_at = time.monotonic() + px / 1000 if px else None
        with self._lock:
            self._entries[key] = (value, expires_at)
        return True

    async def exists(self, key: str) -> int:
        with self._lock:
            return 1 if self._live(key) is not None else 0

    async def ping(self) -> bool:
        return True

    def ping_sync(self) -> None:
        pass

    async def aclose(self) -> None:
        with self._lock:
            self._entries.clear()
