from __future__ import annotations

from argon2 import PasswordHasher, Type
from argon2.exceptions import (
    HashingError,
    InvalidHashError,
    VerificationError,
    VerifyMismatchError,
)

from warden.logging import get_logger
from warden.service.errors import CryptoError

logger = get_logger(__name__)


class CredentialHasher:
    """Argon2id hashing for account passwords.

    Hashes are self-describing PHC strings (parameters, salt and digest), so
    ``verify`` needs nothing besides the stored value.
    """

    algorithm = "argon2id"

    def __init__(self, hasher: PasswordHasher | None = None) -> None:
        self._pwd_hasher = hasher or PasswordHasher(type=Type.ID)

    def hash(self, password: str) -> str:
        try:
            return self._pwd_hasher.hash(password)
        except HashingError as exc:
            logger.error("password_hash_failed", error=str(exc))
            raise CryptoError("password hashing failed") from exc

    def verify(self, password: str, password_hash: str) -> bool:
        """Return True when ``password`` matches ``password_hash``.

        Raises CryptoError only when the stored hash cannot be parsed.
        """
        try:
            return self._pwd_hasher.verify(password_hash, password)
        except VerifyMismatchError:
            return False
        except InvalidHashError as exc:
            logger.error("password_hash_malformed", error=str(exc))
            raise CryptoError("stored password hash is malformed") from exc
        except VerificationError:
            return False
