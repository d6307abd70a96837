from __future__ import annotations

import asyncio
from typing import Any, Callable, Optional, TypeVar

from warden.logging import get_logger
from warden.service.errors import InternalError, StoreTimeoutError
from warden.storage.errors import ConstraintViolation

logger = get_logger(__name__)

T = TypeVar("T")


async def run_cpu_bound(func: Callable[..., T], *args: Any) -> T:
    """Run hashing and other CPU-heavy work on the default thread pool."""
    return await asyncio.to_thread(func, *args)


async def run_store_call(
    label: str,
    func: Callable[..., T],
    *args: Any,
    timeout: Optional[float] = None,
    **kwargs: Any,
) -> T:
    """Run a blocking user store call off the event loop with a time bound.

    Timeouts surface as StoreTimeoutError. Driver exceptions other than the
    store's own ConstraintViolation become InternalError; service errors pass
    through untouched.
    """
    call = asyncio.to_thread(func, *args, **kwargs)
    try:
        if timeout is None:
            return await call
        return await asyncio.wait_for(call, timeout)
    except asyncio.TimeoutError as exc:
        logger.error("user_store_timeout", operation=label, timeout=timeout)
        raise StoreTimeoutError("user store timed out") from exc
    except (ConstraintViolation, InternalError):
        raise
    except Exception as exc:
        logger.error(
            "user_store_failed",
            operation=label,
            error_type=type(exc).__name__,
            error=str(exc),
        )
        raise InternalError("user store unavailable") from exc
