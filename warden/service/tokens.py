from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
import time
from dataclasses import asdict, dataclass
from datetime import timedelta
from typing import Any, Callable, Optional

from warden.logging import get_logger
from warden.service.errors import InternalError, TokenExpiredError, TokenInvalidError

logger = get_logger(__name__)

TOKEN_LIFETIME = timedelta(hours=24)

_HEADER = {"alg": "HS256", "typ": "JWT"}


@dataclass(frozen=True)
class Claims:
    """Identity payload carried inside a signed token."""

    user_id: int
    role: str
    iat: int
    exp: int

    def remaining_seconds(self, now: Optional[float] = None) -> float:
        current = time.time() if now is None else now
        return self.exp - current

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _encode_segment(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")


def _decode_segment(segment: str) -> bytes:
    padding = "=" * ((4 - len(segment) % 4) % 4)
    return base64.urlsafe_b64decode(segment + padding)


class TokenCodec:
    """Issues and verifies HS256-signed bearer tokens.

    Tokens live for ``TOKEN_LIFETIME`` from issuance. Issuer and audience are
    not part of the claims and are not checked.
    """

    def __init__(
        self,
        secret: str,
        *,
        lifetime: timedelta = TOKEN_LIFETIME,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if not secret:
            raise ValueError("token signing secret must not be empty")
        self._secret = secret.encode("utf-8")
        self.lifetime = lifetime
        self._clock = clock

    def _sign(self, signing_input: str) -> str:
        digest = hmac.new(self._secret, signing_input.encode(), hashlib.sha256).digest()
        return _encode_segment(digest)

    def issue(self, subject_id: int, role: str) -> str:
        now = int(self._clock())
        payload = {
            "user_id": subject_id,
            "role": role,
            "iat": now,
            "exp": now + int(self.lifetime.total_seconds()),
        }
        try:
            header_enc = _encode_segment(json.dumps(_HEADER, separators=(",", ":")).encode())
            payload_enc = _encode_segment(json.dumps(payload, separators=(",", ":")).encode())
        except (TypeError, ValueError) as exc:
            logger.error("jwt_encode_failed", error=str(exc))
            raise InternalError("token signing failed") from exc
        signing_input = f"{header_enc}.{payload_enc}"
        return f"{signing_input}.{self._sign(signing_input)}"

    def verify(self, token: str) -> Claims:
        """Validate signature, structure, and expiry of ``token``.

        Raises TokenInvalidError for any signature or structure problem and
        TokenExpiredError once the current time is past ``exp``.
        """
        try:
            header_b64, payload_b64, sig_b64 = token.split(".")
        except ValueError:
            raise TokenInvalidError("malformed token")

        # Pin the algorithm before trusting the signature
        try:
            header = json.loads(_decode_segment(header_b64))
        except (ValueError, binascii.Error):
            logger.debug("jwt_header_decode_failed")
            raise TokenInvalidError("malformed token header")
        if not isinstance(header, dict) or header.get("alg") != "HS256":
            logger.warning(
                "jwt_invalid_algorithm",
                alg=header.get("alg") if isinstance(header, dict) else None,
            )
            raise TokenInvalidError("unsupported token algorithm")

        expected_sig = self._sign(f"{header_b64}.{payload_b64}")
        if not hmac.compare_digest(expected_sig, sig_b64):
            raise TokenInvalidError("bad token signature")

        try:
            payload = json.loads(_decode_segment(payload_b64))
        except (ValueError, binascii.Error) as exc:
            logger.warning("jwt_payload_decode_failed", error=str(exc))
            raise TokenInvalidError("malformed token payload")
        claims = self._claims_from_payload(payload)

        if self._clock() > claims.exp:
            raise TokenExpiredError("token expired")
        return claims

    @staticmethod
    def _claims_from_payload(payload: Any) -> Claims:
        if not isinstance(payload, dict):
            raise TokenInvalidError("malformed token payload")
        user_id = payload.get("user_id")
        role = payload.get("role")
        iat = payload.get("iat")
        exp = payload.get("exp")
        # bool is an int subclass; reject it explicitly
        numeric = all(
            isinstance(value, int) and not isinstance(value, bool)
            for value in (user_id, iat, exp)
        )
        if not numeric or not isinstance(role, str):
            raise TokenInvalidError("missing or mistyped claims")
        if exp <= iat:
            raise TokenInvalidError("token expiry precedes issuance")
        return Claims(user_id=user_id, role=role, iat=iat, exp=exp)
