from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from psycopg import errors
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from warden.logging import get_logger, mask_url_password
from warden.storage.errors import ConstraintViolation
from warden.storage.models import User, UserRole


_USER_COLUMNS = """
    id, username, full_name, email, phone_number, user_role, is_active,
    email_verified, phone_verified, last_login, created_at, updated_at
"""

_UPDATABLE_COLUMNS = ("username", "full_name", "email", "phone_number")

_SCHEMA = """
CREATE TABLE IF NOT EXISTS user_info (
    id SERIAL PRIMARY KEY,
    username VARCHAR(50) NOT NULL UNIQUE,
    full_name VARCHAR(80) NOT NULL,
    email VARCHAR(254) NOT NULL UNIQUE,
    password_hash TEXT NOT NULL,
    phone_number VARCHAR(10),
    user_role VARCHAR(16) NOT NULL DEFAULT 'user',
    is_active BOOLEAN NOT NULL DEFAULT TRUE,
    email_verified BOOLEAN NOT NULL DEFAULT FALSE,
    phone_verified BOOLEAN NOT NULL DEFAULT FALSE,
    last_login TIMESTAMP,
    created_at TIMESTAMP NOT NULL DEFAULT (now() AT TIME ZONE 'utc'),
    updated_at TIMESTAMP NOT NULL DEFAULT (now() AT TIME ZONE 'utc')
)
"""


def _unique_violation(exc: errors.UniqueViolation) -> ConstraintViolation:
    constraint = getattr(getattr(exc, "diag", None), "constraint_name", None) or ""
    field = "username" if "username" in constraint else "email"
    return ConstraintViolation(f"{field} already exists", {"field": field})


class PostgresStore:
    """Postgres-backed user store over a psycopg connection pool."""

    def __init__(
        self,
        dsn: str,
        *,
        min_size: int = 2,
        max_size: int = 10,
        timeout: float = 3.0,
    ) -> None:
        self.dsn = dsn
        self.logger = get_logger(__name__)
        self.pool = ConnectionPool(
            self.dsn,
            min_size=min_size,
            max_size=max_size,
            timeout=timeout,
            kwargs={
                "row_factory": dict_row,
                "autocommit": False,
                "connect_timeout": max(1, int(timeout)),
            },
        )
        self._ensure_schema()
        self.logger.info("postgres_store_ready", dsn=mask_url_password(dsn))

    def _connect(self):
        return self.pool.connection()

    def _ensure_schema(self) -> None:
        """Create the ``user_info`` table if it is missing."""

        with self._connect() as conn:
            conn.execute(_SCHEMA)

    def verify_connection(self) -> None:
        with self._connect() as conn:
            conn.execute("SELECT 1").fetchone()

    def close(self) -> None:
        self.pool.close()

    @staticmethod
    def _row_to_user(row: Dict[str, Any]) -> User:
        return User(
            id=int(row["id"]),
            username=row["username"],
            email=row["email"],
            full_name=row["full_name"],
            phone_number=row.get("phone_number"),
            role=row.get("user_role") or UserRole.USER.value,
            is_active=bool(row.get("is_active", True)),
            email_verified=bool(row.get("email_verified", False)),
            phone_verified=bool(row.get("phone_verified", False)),
            last_login=row.get("last_login"),
            created_at=row.get("created_at") or datetime.utcnow(),
            updated_at=row.get("updated_at") or datetime.utcnow(),
        )

    def _fetch_one(self, sql: str, params: tuple) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(sql, params).fetchone()
        if not row:
            return None
        return self._row_to_user(row)

    def _fetch_all(self, sql: str, params: tuple) -> List[User]:
        with self._connect() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [self._row_to_user(row) for row in rows]

    # users
    def create_user(
        self,
        username: str,
        email: str,
        password_hash: str,
        *,
        full_name: str,
        phone_number: Optional[str] = None,
        role: str = UserRole.USER.value,
    ) -> User:
        try:
            with self._connect() as conn:
                row = conn.execute(
                    f"""
                    INSERT INTO user_info (username, full_name, email, password_hash, phone_number, user_role)
                    VALUES (%s, %s, %s, %s, %s, %s)
                    RETURNING {_USER_COLUMNS}
                    """,
                    (username, full_name, email, password_hash, phone_number, role),
                ).fetchone()
        except errors.UniqueViolation as exc:
            raise _unique_violation(exc) from exc
        return self._row_to_user(row)

    def get_user(self, user_id: int) -> Optional[User]:
        return self._fetch_one(
            f"SELECT {_USER_COLUMNS} FROM user_info WHERE id = %s", (user_id,)
        )

    def get_user_by_email(self, email: str) -> Optional[User]:
        return self._fetch_one(
            f"SELECT {_USER_COLUMNS} FROM user_info WHERE lower(email) = lower(%s)",
            (email,),
        )

    def get_user_by_login(self, identifier: str) -> Optional[User]:
        """Resolve a login identifier: emails contain ``@``, usernames never do."""
        if "@" in identifier:
            return self.get_user_by_email(identifier)
        return self._fetch_one(
            f"SELECT {_USER_COLUMNS} FROM user_info WHERE username = %s", (identifier,)
        )

    def get_password_hash(self, user_id: int) -> Optional[str]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT password_hash FROM user_info WHERE id = %s", (user_id,)
            ).fetchone()
        if not row:
            return None
        return str(row["password_hash"])

    def list_users(self, limit: int = 20, offset: int = 0) -> List[User]:
        return self._fetch_all(
            f"""
            SELECT {_USER_COLUMNS} FROM user_info
            ORDER BY created_at DESC, id DESC
            LIMIT %s OFFSET %s
            """,
            (limit, offset),
        )

    def count_users(self) -> int:
        with self._connect() as conn:
            row = conn.execute("SELECT COUNT(*) AS total FROM user_info").fetchone()
        return int(row["total"]) if row else 0

    def search_users(self, query: str, limit: int = 20, offset: int = 0) -> List[User]:
        pattern = f"%{query}%"
        return self._fetch_all(
            f"""
            SELECT {_USER_COLUMNS} FROM user_info
            WHERE username ILIKE %s OR email ILIKE %s OR full_name ILIKE %s
            ORDER BY created_at DESC, id DESC
            LIMIT %s OFFSET %s
            """,
            (pattern, pattern, pattern, limit, offset),
        )

    def list_recent_users(self, days: int, limit: int = 10) -> List[User]:
        return self._fetch_all(
            f"""
            SELECT {_USER_COLUMNS} FROM user_info
            WHERE created_at >= (now() AT TIME ZONE 'utc') - make_interval(days => %s)
            ORDER BY created_at DESC, id DESC
            LIMIT %s
            """,
            (days, limit),
        )

    def update_user(self, user_id: int, **fields: Optional[str]) -> Optional[User]:
        """Apply non-None profile fields; a ``password_hash`` key replaces the credential."""
        allowed = _UPDATABLE_COLUMNS + ("password_hash",)
        unknown = set(fields) - set(allowed)
        if unknown:
            raise ValueError(f"unsupported user fields: {sorted(unknown)}")
        # Column names come from the fixed allow-list above, never from callers
        assignments = [
            (column, fields[column]) for column in allowed if fields.get(column) is not None
        ]
        if not assignments:
            return self.get_user(user_id)
        set_clause = ", ".join(f"{column} = %s" for column, _ in assignments)
        params = tuple(value for _, value in assignments) + (user_id,)
        try:
            return self._fetch_one(
                f"""
                UPDATE user_info
                SET {set_clause}, updated_at = now() AT TIME ZONE 'utc'
                WHERE id = %s
                RETURNING {_USER_COLUMNS}
                """,
                params,
            )
        except errors.UniqueViolation as exc:
            raise _unique_violation(exc) from exc

    def update_password(self, user_id: int, password_hash: str) -> bool:
        with self._connect() as conn:
            result = conn.execute(
                """
                UPDATE user_info
                SET password_hash = %s, updated_at = now() AT TIME ZONE 'utc'
                WHERE id = %s
                """,
                (password_hash, user_id),
            )
            return result.rowcount > 0

    def update_user_role(self, user_id: int, role: str) -> Optional[User]:
        return self._fetch_one(
            f"""
            UPDATE user_info SET user_role = %s, updated_at = now() AT TIME ZONE 'utc'
            WHERE id = %s RETURNING {_USER_COLUMNS}
            """,
            (role, user_id),
        )

    def set_user_active(self, user_id: int, active: bool) -> Optional[User]:
        return self._fetch_one(
            f"""
            UPDATE user_info SET is_active = %s, updated_at = now() AT TIME ZONE 'utc'
            WHERE id = %s RETURNING {_USER_COLUMNS}
            """,
            (active, user_id),
        )

    def set_email_verified(self, user_id: int, verified: bool = True) -> Optional[User]:
        return self._fetch_one(
            f"""
            UPDATE user_info SET email_verified = %s, updated_at = now() AT TIME ZONE 'utc'
            WHERE id = %s RETURNING {_USER_COLUMNS}
            """,
            (verified, user_id),
        )

    def update_last_login(self, user_id: int) -> None:
        with self._connect() as conn:
            conn.execute(
                "UPDATE user_info SET last_login = now() AT TIME ZONE 'utc' WHERE id = %s",
                (user_id,),
            )
