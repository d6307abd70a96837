from __future__ import annotations

import asyncio
from typing import Optional

from warden.logging import get_logger
from warden.service.auth import AuthenticatedUser
from warden.service.errors import TokenError, UnauthorizedError
from warden.service.tokens import TokenCodec
from warden.storage.revocation import RevocationStore

logger = get_logger(__name__)

INVALID_TOKEN = "invalid authentication token"


class RequestAuthenticator:
    """Resolves the ``Authorization`` header of a protected request to an identity."""

    def __init__(self, codec: TokenCodec, revocations: RevocationStore) -> None:
        self.codec = codec
        self.revocations = revocations

    @staticmethod
    def _extract_bearer(authorization: Optional[str]) -> Optional[str]:
        if not authorization:
            return None
        scheme, _, token = authorization.strip().partition(" ")
        if scheme.lower() != "bearer":
            return None
        token = token.strip()
        if not token or " " in token:
            return None
        return token

    async def authenticate(self, authorization: Optional[str]) -> AuthenticatedUser:
        token = self._extract_bearer(authorization)
        if token is None:
            logger.debug("auth_header_rejected", present=bool(authorization))
            raise UnauthorizedError(INVALID_TOKEN)

        try:
            claims = await asyncio.to_thread(self.codec.verify, token)
        except TokenError as exc:
            logger.debug("token_rejected", reason=exc.reason, detail=exc.message)
            raise UnauthorizedError(INVALID_TOKEN) from exc

        # Store failures propagate as InternalError rather than admitting the token
        if await self.revocations.is_blacklisted(token):
            logger.info("token_revoked_rejected", user_id=claims.user_id)
            raise UnauthorizedError(INVALID_TOKEN)

        return AuthenticatedUser(
            user_id=claims.user_id, role=claims.role, claims=claims, token=token
        )
