#!/usr/bin/env python3
"""Create an admin account, or promote an existing one.

Usage:
    ADMIN_USERNAME=root ADMIN_EMAIL=admin@example.com ADMIN_PASSWORD=change-me-now \
        python scripts/bootstrap_admin.py

    python scripts/bootstrap_admin.py --username root --email admin@example.com \
        --password change-me-now --full-name "Site Admin"

Environment Variables:
    ADMIN_USERNAME, ADMIN_EMAIL, ADMIN_PASSWORD, ADMIN_FULL_NAME: account fields
    DATABASE_URL: PostgreSQL connection string (in-memory store if unset)
    REDIS_URL: revocation store (in-process fallback if unreachable)
"""
from __future__ import annotations

import argparse
import asyncio
import os
import secrets
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


async def bootstrap_admin(
    username: str,
    email: str,
    password: str,
    full_name: str,
    dry_run: bool = False,
) -> dict:
    """Create or promote an admin.

    Returns:
        dict with user_id, email, and status ('created', 'promoted',
        'already_admin' or 'dry_run')
    """
    # Imported late so the env defaults below are in place before settings load
    from warden.service.runtime import get_runtime
    from warden.storage.models import UserRole

    runtime = get_runtime()
    existing = runtime.store.get_user_by_email(email)

    if existing:
        if existing.role == UserRole.ADMIN.value:
            print(f"User {email} already exists as admin (id: {existing.id})")
            return {"user_id": existing.id, "email": email, "status": "already_admin"}
        if dry_run:
            print(f"[DRY RUN] Would promote existing user {email} to admin")
            return {"user_id": existing.id, "email": email, "status": "dry_run"}
        await runtime.users.set_role(existing.id, UserRole.ADMIN)
        print(f"Promoted existing user {email} to admin (id: {existing.id})")
        return {"user_id": existing.id, "email": email, "status": "promoted"}

    if dry_run:
        print(f"[DRY RUN] Would create admin user: {username} <{email}>")
        return {"user_id": None, "email": email, "status": "dry_run"}

    user = await runtime.auth.register(
        username,
        email,
        password,
        full_name=full_name,
        admin_code=runtime.settings.admin_registration_code,
    )
    print(f"Created admin user: {username} <{email}> (id: {user.id})")
    return {"user_id": user.id, "email": email, "status": "created"}


def main():
    parser = argparse.ArgumentParser(
        description="Bootstrap an admin user for Warden",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--username", default=os.environ.get("ADMIN_USERNAME"))
    parser.add_argument("--email", default=os.environ.get("ADMIN_EMAIL"))
    parser.add_argument("--password", default=os.environ.get("ADMIN_PASSWORD"))
    parser.add_argument(
        "--full-name",
        default=os.environ.get("ADMIN_FULL_NAME", "Administrator"),
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be done without making changes",
    )
    args = parser.parse_args()

    for flag, value in (("--username", args.username), ("--email", args.email), ("--password", args.password)):
        if not value:
            print(f"Error: {flag} or the matching ADMIN_* environment variable is required")
            sys.exit(1)
    if len(args.password) < 8:
        print("Error: password must be at least 8 characters")
        sys.exit(1)

    if not os.environ.get("DATABASE_URL"):
        os.environ["USE_MEMORY_STORE"] = "true"
        os.environ["DATABASE_URL"] = "memory://"
        print("Note: Using in-memory store (set DATABASE_URL for persistence)")
    os.environ.setdefault("JWT_SECRET", secrets.token_urlsafe(48))
    os.environ.setdefault("ADMIN_REGISTRATION_CODE", secrets.token_urlsafe(24))
    os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")
    os.environ.setdefault("HOST", "127.0.0.1")
    os.environ.setdefault("PORT", "8000")
    os.environ.setdefault("TEST_MODE", "true")

    try:
        result = asyncio.run(
            bootstrap_admin(
                args.username, args.email, args.password, args.full_name, args.dry_run
            )
        )
    except Exception as e:
        print(f"Error: {e}")
        sys.exit(1)

    if result["status"] == "created":
        print("\nAdmin user created successfully!")
        print(f"  Email: {result['email']}")
        print(f"  User ID: {result['user_id']}")
    elif result["status"] == "promoted":
        print("\nExisting user promoted to admin!")
    elif result["status"] == "already_admin":
        print("\nNo changes needed - user is already an admin.")


if __name__ == "__main__":
    main()
