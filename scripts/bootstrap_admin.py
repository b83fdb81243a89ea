#!/usr/bin/env python3
"""Create or promote the admin account.

Usage:
    # Using environment variables:
    ADMIN_EMAIL=admin@example.com ADMIN_NAME=Admin ADMIN_PASSWORD=SecurePassword123! python scripts/bootstrap_admin.py

    # Or with command line args:
    python scripts/bootstrap_admin.py --email admin@example.com --name Admin --password SecurePassword123!

    # Create the tables on a fresh database first:
    python scripts/bootstrap_admin.py --install-schema --email ... --password ...

Environment Variables:
    ADMIN_EMAIL: Email for the admin account
    ADMIN_NAME: Display name for the admin account (defaults to "Administrator")
    ADMIN_PASSWORD: Password for the admin account (must meet complexity requirements)
    DATABASE_URL: PostgreSQL connection string (optional, uses memory store if not set)
"""
from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

# Add project root to path for imports
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from dotenv import dotenv_values  # noqa: E402

ADMIN_ROLE = "admin"


def validate_password(password: str) -> bool:
    """Check password meets complexity requirements."""
    if len(password) < 12:
        return False
    has_upper = any(c.isupper() for c in password)
    has_lower = any(c.islower() for c in password)
    has_digit = any(c.isdigit() for c in password)
    has_special = any(c in "!@#$%^&*()_+-=[]{}|;':\",./<>?" for c in password)
    return sum([has_upper, has_lower, has_digit, has_special]) >= 3


def bootstrap_admin(runtime, email: str, name: str, password: str, dry_run: bool = False) -> dict:
    """Create or promote an admin account.

    Returns:
        dict with account_id, email, and status ('created', 'promoted',
        'already_admin' or 'dry_run')
    """
    existing = runtime.accounts.get_account_by_email(email)

    if existing:
        if existing.role == ADMIN_ROLE:
            print(f"Account {email} already exists as admin (id: {existing.id})")
            return {"account_id": existing.id, "email": email, "status": "already_admin"}

        if dry_run:
            print(f"[DRY RUN] Would promote existing account {email} to admin")
            return {"account_id": existing.id, "email": email, "status": "dry_run"}

        runtime.accounts.update_account_profile(
            existing.id, existing.name, existing.email, ADMIN_ROLE
        )
        print(f"Promoted existing account {email} to admin (id: {existing.id})")
        return {"account_id": existing.id, "email": email, "status": "promoted"}

    if runtime.accounts.get_deleted_account_by_email(email):
        raise RuntimeError(
            f"{email} belongs to a deleted account; resurrect or purge it first"
        )

    if dry_run:
        print(f"[DRY RUN] Would create admin account: {email}")
        return {"account_id": None, "email": email, "status": "dry_run"}

    account = runtime.accounts.create_account(
        name, email, runtime.hasher.hash(password), ADMIN_ROLE
    )
    print(f"Created admin account: {email} (id: {account.id})")
    return {"account_id": account.id, "email": email, "status": "created"}


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Bootstrap the raceauth admin account",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--email", help="Admin email (or set ADMIN_EMAIL)")
    parser.add_argument("--name", help="Admin display name (or set ADMIN_NAME)")
    parser.add_argument("--password", help="Admin password (or set ADMIN_PASSWORD)")
    parser.add_argument(
        "--install-schema",
        action="store_true",
        help="Create the Postgres tables before bootstrapping",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be done without making changes",
    )

    args = parser.parse_args(argv)

    # Use memory store if no database configured in the environment or .env
    if not os.environ.get("DATABASE_URL") and not dotenv_values(".env").get(
        "DATABASE_URL"
    ):
        os.environ["USE_MEMORY_STORE"] = "true"
        print("Note: Using in-memory store (set DATABASE_URL for persistence)")

    # Import here to avoid loading config before env vars are set
    from raceauth.config import Settings
    from raceauth.service.errors import ServiceError
    from raceauth.service.runtime import Runtime
    from raceauth.storage.postgres import PostgresStore

    settings = Settings.from_env()
    email = args.email or settings.admin_email
    name = args.name or settings.admin_name or "Administrator"
    password = args.password or settings.admin_password

    if not email:
        print("Error: --email or ADMIN_EMAIL environment variable required")
        sys.exit(1)

    if not password:
        print("Error: --password or ADMIN_PASSWORD environment variable required")
        sys.exit(1)

    if not validate_password(password):
        print("Error: Password must be at least 12 characters with 3+ character classes")
        print("       (uppercase, lowercase, digits, special characters)")
        sys.exit(1)

    if args.install_schema and settings.use_memory_store:
        print("Warning: --install-schema ignored, no database is configured")

    try:
        if args.install_schema and not settings.use_memory_store:
            store = PostgresStore(
                settings.database_url,
                timeout_seconds=settings.store_timeout_seconds,
                min_size=1,
                max_size=settings.db_pool_max_size,
                verify_schema=False,
            )
            try:
                store.install_schema()
            finally:
                store.close()
            print("Schema installed")

        with Runtime(settings) as runtime:
            result = bootstrap_admin(runtime, email, name, password, args.dry_run)
    except (ServiceError, RuntimeError) as e:
        print(f"Error: {e}")
        sys.exit(1)

    if result["status"] == "created":
        print("\nAdmin account created successfully!")
        print(f"  Email: {result['email']}")
        print(f"  Account ID: {result['account_id']}")
    elif result["status"] == "promoted":
        print("\nExisting account promoted to admin!")
    elif result["status"] == "already_admin":
        print("\nNo changes needed - account is already an admin.")
    return result


if __name__ == "__main__":
    main()
