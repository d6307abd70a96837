from __future__ import annotations

from typing import Optional


class ServiceError(Exception):
    """Base class for service-layer exceptions mapped to HTTP responses.

    Each subclass carries the HTTP status_code rendered at the request boundary
    and an error_code used in logs:
    - validation_error (400)
    - unauthorized (401)
    - forbidden (403)
    - not_found (404)
    - conflict (409)
    - server_error (500)
    """

    status_code: int = 400
    error_code: str = "validation_error"

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        detail: Optional[dict] = None,
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        self.detail = detail or {}


class ValidationError(ServiceError):
    """Request validation failed (400)."""
    status_code = 400
    error_code = "validation_error"


class UnauthorizedError(ServiceError):
    """Authentication failed or missing (401)."""
    status_code = 401
    error_code = "unauthorized"


class TokenError(UnauthorizedError):
    """A bearer token failed verification.

    ``reason`` is for logs only; callers render every token failure identically.
    """

    reason: str = "invalid"


class TokenExpiredError(TokenError):
    reason = "expired"


class TokenInvalidError(TokenError):
    reason = "invalid"


class ForbiddenError(ServiceError):
    """Authenticated but lacking the required role or ownership (403)."""
    status_code = 403
    error_code = "forbidden"


class NotFoundError(ServiceError):
    """Requested resource not found (404)."""
    status_code = 404
    error_code = "not_found"


class ConflictError(ServiceError):
    """Duplicate unique field (409)."""
    status_code = 409
    error_code = "conflict"


class InternalError(ServiceError):
    """Store, crypto, or signing failure (500)."""
    status_code = 500
    error_code = "server_error"


class CryptoError(InternalError):
    """Password hashing library failure or corrupt stored hash."""
    error_code = "crypto_error"


class StoreTimeoutError(InternalError):
    """A store round-trip exceeded its time bound."""
    error_code = "store_timeout"


__all__ = [
    "ServiceError",
    "ValidationError",
    "UnauthorizedError",
    "TokenError",
    "TokenExpiredError",
    "TokenInvalidError",
    "ForbiddenError",
    "NotFoundError",
    "ConflictError",
    "InternalError",
    "CryptoError",
    "StoreTimeoutError",
]
