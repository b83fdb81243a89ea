from __future__ import annotations

import math
import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Iterator, List, Optional, Sequence, Tuple

import psycopg
from psycopg import errors
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool, PoolTimeout

from raceauth.logging import get_logger
from raceauth.storage.errors import (
    ConstraintViolation,
    RowCountMismatch,
    StoreUnavailable,
    expect_one,
)
from raceauth.storage.models import Account, ApiKey, Event, EventYear, KeyUpdate


ACCOUNT_FIELDS = (
    "id",
    "name",
    "email",
    "password_hash",
    "role",
    "wrong_pass_attempts",
    "locked",
    "token",
    "refresh_token",
    "deleted",
    "created_at",
    "updated_at",
)
KEY_FIELDS = (
    "id",
    "account_id",
    "value",
    "type",
    "allowed_hosts",
    "valid_until",
    "name",
    "deleted",
    "created_at",
)
EVENT_FIELDS = (
    "id",
    "account_id",
    "name",
    "slug",
    "access_restricted",
    "deleted",
    "created_at",
)
YEAR_FIELDS = ("id", "event_id", "year", "date_time", "live", "deleted")

REQUIRED_TABLES = ("account", "api_key", "linked_account", "event", "event_year")

SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS account (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        email TEXT NOT NULL,
        password_hash TEXT NOT NULL,
        role TEXT NOT NULL,
        wrong_pass_attempts INTEGER NOT NULL DEFAULT 0 CHECK (wrong_pass_attempts >= 0),
        locked BOOLEAN NOT NULL DEFAULT FALSE,
        token TEXT NOT NULL DEFAULT '',
        refresh_token TEXT NOT NULL DEFAULT '',
        deleted BOOLEAN NOT NULL DEFAULT FALSE,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        CONSTRAINT account_email_key UNIQUE (email)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS api_key (
        id TEXT PRIMARY KEY,
        account_id TEXT NOT NULL REFERENCES account(id),
        value TEXT NOT NULL,
        type TEXT NOT NULL,
        allowed_hosts TEXT NOT NULL DEFAULT '',
        valid_until TIMESTAMPTZ,
        name TEXT NOT NULL DEFAULT '',
        deleted BOOLEAN NOT NULL DEFAULT FALSE,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        CONSTRAINT api_key_value_key UNIQUE (value)
    )
    """,
    "CREATE INDEX IF NOT EXISTS api_key_account_idx ON api_key (account_id)",
    """
    CREATE TABLE IF NOT EXISTS linked_account (
        main_account_id TEXT NOT NULL REFERENCES account(id) ON DELETE CASCADE,
        sub_account_id TEXT NOT NULL REFERENCES account(id) ON DELETE CASCADE,
        PRIMARY KEY (main_account_id, sub_account_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS event (
        id TEXT PRIMARY KEY,
        account_id TEXT NOT NULL REFERENCES account(id),
        name TEXT NOT NULL,
        slug TEXT NOT NULL,
        access_restricted BOOLEAN NOT NULL DEFAULT FALSE,
        deleted BOOLEAN NOT NULL DEFAULT FALSE,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        CONSTRAINT event_slug_key UNIQUE (slug)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS event_year (
        id TEXT PRIMARY KEY,
        event_id TEXT NOT NULL REFERENCES event(id),
        year TEXT NOT NULL,
        date_time TIMESTAMPTZ NOT NULL,
        live BOOLEAN NOT NULL DEFAULT FALSE,
        deleted BOOLEAN NOT NULL DEFAULT FALSE,
        CONSTRAINT event_year_event_year_key UNIQUE (event_id, year)
    )
    """,
)

# Unique constraints and the request field each one guards
_CONSTRAINT_FIELDS = {
    "account_email_key": "email",
    "api_key_value_key": "value",
    "event_slug_key": "slug",
    "event_year_event_year_key": "year",
}


def visible(*aliases: str) -> str:
    """SQL predicate requiring every aliased row in a join to be non-deleted."""
    return " AND ".join(f"{alias}.deleted = FALSE" for alias in aliases)


def _columns(alias: str, fields: Sequence[str], prefix: str = "") -> str:
    return ", ".join(f"{alias}.{name} AS {prefix}{name}" for name in fields)


def _strip(row: dict, prefix: str, fields: Sequence[str]) -> dict:
    return {name: row[f"{prefix}{name}"] for name in fields}


def _account_from_row(row: dict, prefix: str = "") -> Account:
    data = _strip(row, prefix, ACCOUNT_FIELDS)
    data["id"] = str(data["id"])
    return Account(**data)


def _key_from_row(row: dict, prefix: str = "") -> ApiKey:
    data = _strip(row, prefix, KEY_FIELDS)
    data["allowed_hosts"] = data["allowed_hosts"] or ""
    data["name"] = data["name"] or ""
    return ApiKey(**data)


def _event_from_row(row: dict, prefix: str = "") -> Event:
    return Event(**_strip(row, prefix, EVENT_FIELDS))


def _year_from_row(row: dict, prefix: str = "") -> EventYear:
    return EventYear(**_strip(row, prefix, YEAR_FIELDS))


_ACCOUNT_SELECT = f"SELECT {_columns('a', ACCOUNT_FIELDS)} FROM account a"
_ACCOUNT_RETURNING = "RETURNING " + ", ".join(ACCOUNT_FIELDS)
_KEY_RETURNING = "RETURNING " + ", ".join(KEY_FIELDS)


class PostgresStore:
    """Postgres-backed credential store.

    Every public method runs inside one pooled connection context, which is
    one transaction: it commits when the block finishes and rolls back on any
    exception, including cancellation.
    """

    def __init__(
        self,
        dsn: str,
        *,
        timeout_seconds: float = 5.0,
        min_size: int = 2,
        max_size: int = 10,
        verify_schema: bool = True,
    ) -> None:
        self.dsn = dsn
        self.timeout_seconds = timeout_seconds
        self.logger = get_logger(__name__)
        self.pool = ConnectionPool(
            self.dsn,
            min_size=min_size,
            max_size=max_size,
            timeout=timeout_seconds,
            open=True,
            kwargs={
                "row_factory": dict_row,
                "autocommit": False,
                "connect_timeout": max(1, math.ceil(timeout_seconds)),
                "options": f"-c statement_timeout={int(timeout_seconds * 1000)}",
            },
        )
        if verify_schema:
            self._verify_required_schema()

    def close(self) -> None:
        self.pool.close()

    @contextmanager
    def _transaction(self, operation: str) -> Iterator[Any]:
        try:
            with self.pool.connection() as conn:
                yield conn
        except (errors.UniqueViolation, errors.ForeignKeyViolation) as exc:
            constraint = exc.diag.constraint_name or ""
            detail = {"constraint": constraint}
            if constraint in _CONSTRAINT_FIELDS:
                detail["field"] = _CONSTRAINT_FIELDS[constraint]
            raise ConstraintViolation(f"{operation} violates {constraint}", detail) from exc
        except PoolTimeout as exc:
            self.logger.warning("postgres_pool_timeout", operation=operation)
            raise StoreUnavailable(operation, "connection pool timeout") from exc
        except errors.QueryCanceled as exc:
            self.logger.warning("postgres_statement_timeout", operation=operation)
            raise StoreUnavailable(operation, "statement timeout") from exc
        except psycopg.OperationalError as exc:
            self.logger.warning(
                "postgres_operational_error", operation=operation, error=str(exc)
            )
            raise StoreUnavailable(operation, "database unavailable") from exc

    def install_schema(self) -> None:
        """Create the credential tables if they are missing."""

        with self._transaction("install_schema") as conn:
            for statement in SCHEMA_STATEMENTS:
                conn.execute(statement)
        self.logger.info("postgres_schema_installed", tables=list(REQUIRED_TABLES))

    def _verify_required_schema(self) -> None:
        with self._transaction("verify_schema") as conn:
            missing_tables = []
            for table in REQUIRED_TABLES:
                row = conn.execute(
                    "SELECT to_regclass(%s) AS oid", (f"public.{table}",)
                ).fetchone()
                if not row or not row.get("oid"):
                    missing_tables.append(table)
        if missing_tables:
            raise RuntimeError(
                "Missing required Postgres tables: {}. Run scripts/bootstrap_admin.py --install-schema.".format(
                    ", ".join(sorted(missing_tables))
                )
            )

    # accounts
    def create_account(
        self, name: str, email: str, password_hash: str, role: str
    ) -> Account:
        with self._transaction("create_account") as conn:
            row = conn.execute(
                f"""
                INSERT INTO account (id, name, email, password_hash, role)
                VALUES (%s, %s, %s, %s, %s)
                {_ACCOUNT_RETURNING}
                """,
                (str(uuid.uuid4()), name, email, password_hash, role),
            ).fetchone()
        return _account_from_row(row)

    def get_account_by_email(self, email: str) -> Optional[Account]:
        with self._transaction("get_account_by_email") as conn:
            row = conn.execute(
                f"{_ACCOUNT_SELECT} WHERE {visible('a')} AND a.email = %s", (email,)
            ).fetchone()
        return _account_from_row(row) if row else None

    def get_deleted_account_by_email(self, email: str) -> Optional[Account]:
        with self._transaction("get_deleted_account_by_email") as conn:
            row = conn.execute(
                f"{_ACCOUNT_SELECT} WHERE a.deleted = TRUE AND a.email = %s", (email,)
            ).fetchone()
        return _account_from_row(row) if row else None

    def get_account(self, account_id: str) -> Optional[Account]:
        with self._transaction("get_account") as conn:
            row = conn.execute(
                f"{_ACCOUNT_SELECT} WHERE {visible('a')} AND a.id = %s", (account_id,)
            ).fetchone()
        return _account_from_row(row) if row else None

    def list_accounts(self) -> List[Account]:
        with self._transaction("list_accounts") as conn:
            rows = conn.execute(
                f"{_ACCOUNT_SELECT} WHERE {visible('a')} ORDER BY a.created_at"
            ).fetchall()
        return [_account_from_row(row) for row in rows]

    def update_account_profile(
        self, account_id: str, name: str, email: str, role: str
    ) -> Account:
        with self._transaction("update_account_profile") as conn:
            rows = conn.execute(
                f"""
                UPDATE account
                SET name = %(name)s,
                    role = %(role)s,
                    token = CASE WHEN email = %(email)s THEN token ELSE '' END,
                    refresh_token = CASE WHEN email = %(email)s THEN refresh_token ELSE '' END,
                    email = %(email)s,
                    updated_at = now()
                WHERE id = %(id)s AND deleted = FALSE
                {_ACCOUNT_RETURNING}
                """,
                {"name": name, "role": role, "email": email, "id": account_id},
            ).fetchall()
            expect_one("account", len(rows))
        return _account_from_row(rows[0])

    def soft_delete_account(self, account_id: str) -> None:
        with self._transaction("soft_delete_account") as conn:
            result = conn.execute(
                "UPDATE account SET deleted = TRUE, updated_at = now() WHERE id = %s AND deleted = FALSE",
                (account_id,),
            )
            expect_one("account", result.rowcount)
            conn.execute(
                "UPDATE api_key SET deleted = TRUE, updated_at = now() WHERE account_id = %s AND deleted = FALSE",
                (account_id,),
            )

    def resurrect_account(self, email: str) -> None:
        with self._transaction("resurrect_account") as conn:
            result = conn.execute(
                "UPDATE account SET deleted = FALSE, updated_at = now() WHERE email = %s AND deleted = TRUE",
                (email,),
            )
            expect_one("account", result.rowcount)

    def purge_account(self, account_id: str) -> None:
        with self._transaction("purge_account") as conn:
            conn.execute(
                "DELETE FROM api_key WHERE account_id = %s AND EXISTS (SELECT 1 FROM account WHERE id = %s AND deleted = TRUE)",
                (account_id, account_id),
            )
            result = conn.execute(
                "DELETE FROM account WHERE id = %s AND deleted = TRUE", (account_id,)
            )
            expect_one("account", result.rowcount)

    def change_password(
        self, email: str, password_hash: str, *, invalidate: bool = False
    ) -> None:
        stmt = "UPDATE account SET password_hash = %s, updated_at = now() WHERE email = %s AND deleted = FALSE"
        if invalidate:
            stmt = (
                "UPDATE account SET password_hash = %s, token = '', refresh_token = '', updated_at = now() "
                "WHERE email = %s AND deleted = FALSE"
            )
        with self._transaction("change_password") as conn:
            result = conn.execute(stmt, (password_hash, email))
            expect_one("account", result.rowcount)

    def change_email(self, old_email: str, new_email: str) -> None:
        with self._transaction("change_email") as conn:
            result = conn.execute(
                """
                UPDATE account
                SET email = %s, token = '', refresh_token = '', updated_at = now()
                WHERE email = %s AND deleted = FALSE
                """,
                (new_email, old_email),
            )
            expect_one("account", result.rowcount)

    def update_tokens(self, account_id: str, token: str, refresh_token: str) -> None:
        with self._transaction("update_tokens") as conn:
            result = conn.execute(
                """
                UPDATE account
                SET token = %s, refresh_token = %s, updated_at = now()
                WHERE id = %s AND deleted = FALSE
                """,
                (token, refresh_token, account_id),
            )
            expect_one("account", result.rowcount)

    # account links
    def link_accounts(self, main_account_id: str, sub_account_id: str) -> None:
        with self._transaction("link_accounts") as conn:
            rows = conn.execute(
                f"""
                SELECT a.id FROM account a
                WHERE {visible('a')} AND a.id = ANY(%s)
                FOR SHARE
                """,
                ([main_account_id, sub_account_id],),
            ).fetchall()
            if len(rows) != 2:
                raise RowCountMismatch("account", len(rows), expected=2)
            conn.execute(
                """
                INSERT INTO linked_account (main_account_id, sub_account_id)
                VALUES (%s, %s)
                ON CONFLICT (main_account_id, sub_account_id) DO NOTHING
                """,
                (main_account_id, sub_account_id),
            )

    def unlink_accounts(self, main_account_id: str, sub_account_id: str) -> None:
        with self._transaction("unlink_accounts") as conn:
            conn.execute(
                """
                DELETE FROM linked_account
                WHERE main_account_id = %s AND sub_account_id = %s
                """,
                (main_account_id, sub_account_id),
            )

    def get_linked_accounts(self, email: str) -> List[Account]:
        with self._transaction("get_linked_accounts") as conn:
            rows = conn.execute(
                f"""
                SELECT {_columns('a', ACCOUNT_FIELDS)}
                FROM account a
                JOIN linked_account l ON l.sub_account_id = a.id
                JOIN account b ON b.id = l.main_account_id
                WHERE {visible('a', 'b')} AND b.email = %s
                ORDER BY a.created_at
                """,
                (email,),
            ).fetchall()
        return [_account_from_row(row) for row in rows]

    # lockout transitions
    def record_login_failure(self, email: str, max_attempts: int) -> Account:
        # SET expressions read the pre-update row, so the lock test sees the
        # same incremented value that is written.
        with self._transaction("record_login_failure") as conn:
            rows = conn.execute(
                f"""
                UPDATE account
                SET wrong_pass_attempts = wrong_pass_attempts + 1,
                    locked = locked OR wrong_pass_attempts + 1 > %(max)s,
                    token = CASE WHEN locked OR wrong_pass_attempts + 1 > %(max)s THEN '' ELSE token END,
                    refresh_token = CASE WHEN locked OR wrong_pass_attempts + 1 > %(max)s THEN '' ELSE refresh_token END,
                    updated_at = now()
                WHERE email = %(email)s AND deleted = FALSE
                {_ACCOUNT_RETURNING}
                """,
                {"max": max_attempts, "email": email},
            ).fetchall()
            expect_one("account", len(rows))
        return _account_from_row(rows[0])

    def _guarded_transition(
        self, operation: str, assignments: str, email: str, *, require_locked: bool
    ) -> Optional[Account]:
        with self._transaction(operation) as conn:
            rows = conn.execute(
                f"""
                UPDATE account
                SET {assignments}, updated_at = now()
                WHERE email = %s AND deleted = FALSE AND locked = %s
                {_ACCOUNT_RETURNING}
                """,
                (email, require_locked),
            ).fetchall()
            if rows:
                expect_one("account", len(rows))
                return _account_from_row(rows[0])
            exists = conn.execute(
                "SELECT 1 AS present FROM account WHERE email = %s AND deleted = FALSE",
                (email,),
            ).fetchone()
            if not exists:
                raise RowCountMismatch("account", 0)
            return None

    def reset_login_failures(self, email: str) -> Optional[Account]:
        return self._guarded_transition(
            "reset_login_failures",
            "wrong_pass_attempts = 0",
            email,
            require_locked=False,
        )

    def unlock_account(self, email: str) -> Optional[Account]:
        return self._guarded_transition(
            "unlock_account",
            "wrong_pass_attempts = 0, locked = FALSE",
            email,
            require_locked=True,
        )

    # api keys
    def create_key(
        self,
        account_id: str,
        value: str,
        type: str,
        allowed_hosts: str,
        valid_until: Optional[datetime] = None,
        name: str = "",
    ) -> ApiKey:
        with self._transaction("create_key") as conn:
            owner = conn.execute(
                f"SELECT a.id FROM account a WHERE {visible('a')} AND a.id = %s FOR SHARE",
                (account_id,),
            ).fetchone()
            if not owner:
                raise RowCountMismatch("account", 0)
            row = conn.execute(
                f"""
                INSERT INTO api_key (id, account_id, value, type, allowed_hosts, valid_until, name)
                VALUES (%s, %s, %s, %s, %s, %s, %s)
                {_KEY_RETURNING}
                """,
                (
                    str(uuid.uuid4()),
                    account_id,
                    value,
                    type,
                    allowed_hosts,
                    valid_until,
                    name,
                ),
            ).fetchone()
        return _key_from_row(row)

    def get_key(self, value: str) -> Optional[ApiKey]:
        with self._transaction("get_key") as conn:
            row = conn.execute(
                f"SELECT {_columns('k', KEY_FIELDS)} FROM api_key k WHERE {visible('k')} AND k.value = %s",
                (value,),
            ).fetchone()
        return _key_from_row(row) if row else None

    def list_account_keys(self, account_id: str) -> List[ApiKey]:
        with self._transaction("list_account_keys") as conn:
            rows = conn.execute(
                f"""
                SELECT {_columns('k', KEY_FIELDS)} FROM api_key k
                WHERE {visible('k')} AND k.account_id = %s
                ORDER BY k.created_at
                """,
                (account_id,),
            ).fetchall()
        return [_key_from_row(row) for row in rows]

    def update_key(self, value: str, changes: KeyUpdate) -> ApiKey:
        with self._transaction("update_key") as conn:
            rows = conn.execute(
                f"""
                UPDATE api_key
                SET type = %s, allowed_hosts = %s, valid_until = %s, name = %s, updated_at = now()
                WHERE value = %s AND deleted = FALSE
                {_KEY_RETURNING}
                """,
                (
                    changes.type,
                    changes.allowed_hosts,
                    changes.valid_until,
                    changes.name,
                    value,
                ),
            ).fetchall()
            expect_one("api_key", len(rows))
        return _key_from_row(rows[0])

    def soft_delete_key(self, value: str) -> None:
        with self._transaction("soft_delete_key") as conn:
            result = conn.execute(
                "UPDATE api_key SET deleted = TRUE, updated_at = now() WHERE value = %s AND deleted = FALSE",
                (value,),
            )
            expect_one("api_key", result.rowcount)

    # events
    def create_event(
        self,
        account_id: str,
        name: str,
        slug: str,
        *,
        access_restricted: bool = False,
    ) -> Event:
        with self._transaction("create_event") as conn:
            owner = conn.execute(
                f"SELECT a.id FROM account a WHERE {visible('a')} AND a.id = %s FOR SHARE",
                (account_id,),
            ).fetchone()
            if not owner:
                raise RowCountMismatch("account", 0)
            row = conn.execute(
                """
                INSERT INTO event (id, account_id, name, slug, access_restricted)
                VALUES (%s, %s, %s, %s, %s)
                RETURNING {}
                """.format(", ".join(EVENT_FIELDS)),
                (str(uuid.uuid4()), account_id, name, slug, access_restricted),
            ).fetchone()
        return _event_from_row(row)

    def soft_delete_event(self, event_id: str) -> None:
        with self._transaction("soft_delete_event") as conn:
            result = conn.execute(
                "UPDATE event SET deleted = TRUE WHERE id = %s AND deleted = FALSE",
                (event_id,),
            )
            expect_one("event", result.rowcount)

    def create_event_year(
        self, event_id: str, year: str, date_time: datetime, *, live: bool = False
    ) -> EventYear:
        with self._transaction("create_event_year") as conn:
            event = conn.execute(
                f"SELECT e.id FROM event e WHERE {visible('e')} AND e.id = %s FOR SHARE",
                (event_id,),
            ).fetchone()
            if not event:
                raise RowCountMismatch("event", 0)
            row = conn.execute(
                """
                INSERT INTO event_year (id, event_id, year, date_time, live)
                VALUES (%s, %s, %s, %s, %s)
                RETURNING {}
                """.format(", ".join(YEAR_FIELDS)),
                (str(uuid.uuid4()), event_id, year, date_time, live),
            ).fetchone()
        return _year_from_row(row)

    def soft_delete_event_year(self, event_year_id: str) -> None:
        with self._transaction("soft_delete_event_year") as conn:
            result = conn.execute(
                "UPDATE event_year SET deleted = TRUE WHERE id = %s AND deleted = FALSE",
                (event_year_id,),
            )
            expect_one("event_year", result.rowcount)

    # joined lookups
    def get_account_and_key(self, value: str) -> Optional[Tuple[Account, ApiKey]]:
        with self._transaction("get_account_and_key") as conn:
            row = conn.execute(
                f"""
                SELECT {_columns('a', ACCOUNT_FIELDS, 'a_')}, {_columns('k', KEY_FIELDS, 'k_')}
                FROM account a JOIN api_key k ON k.account_id = a.id
                WHERE {visible('a', 'k')} AND k.value = %s
                """,
                (value,),
            ).fetchone()
        if not row:
            return None
        return _account_from_row(row, "a_"), _key_from_row(row, "k_")

    def get_account_by_key(self, value: str) -> Optional[Account]:
        with self._transaction("get_account_by_key") as conn:
            row = conn.execute(
                f"""
                SELECT {_columns('a', ACCOUNT_FIELDS)}
                FROM account a JOIN api_key k ON k.account_id = a.id
                WHERE {visible('a', 'k')} AND k.value = %s
                """,
                (value,),
            ).fetchone()
        return _account_from_row(row) if row else None

    def get_account_and_event(self, slug: str) -> Optional[Tuple[Account, Event]]:
        with self._transaction("get_account_and_event") as conn:
            row = conn.execute(
                f"""
                SELECT {_columns('a', ACCOUNT_FIELDS, 'a_')}, {_columns('e', EVENT_FIELDS, 'e_')}
                FROM account a JOIN event e ON e.account_id = a.id
                WHERE {visible('a', 'e')} AND e.slug = %s
                """,
                (slug,),
            ).fetchone()
        if not row:
            return None
        return _account_from_row(row, "a_"), _event_from_row(row, "e_")

    def get_account_event_and_year(
        self, slug: str, year: Optional[str] = None
    ) -> Optional[Tuple[Account, Event, EventYear]]:
        columns = ", ".join(
            (
                _columns("a", ACCOUNT_FIELDS, "a_"),
                _columns("e", EVENT_FIELDS, "e_"),
                _columns("y", YEAR_FIELDS, "y_"),
            )
        )
        query = f"""
            SELECT {columns}
            FROM account a
            JOIN event e ON e.account_id = a.id
            JOIN event_year y ON y.event_id = e.id
            WHERE {visible('a', 'e', 'y')} AND e.slug = %s
        """
        params: Tuple[Any, ...] = (slug,)
        if year:
            query += " AND y.year = %s"
            params = (slug, year)
        else:
            query += " ORDER BY y.date_time DESC LIMIT 1"
        with self._transaction("get_account_event_and_year") as conn:
            row = conn.execute(query, params).fetchone()
        if not row:
            return None
        return (
            _account_from_row(row, "a_"),
            _event_from_row(row, "e_"),
            _year_from_row(row, "y_"),
        )

    def get_event_and_year(
        self, slug: str, year: Optional[str] = None
    ) -> Optional[Tuple[Event, EventYear]]:
        columns = ", ".join(
            (_columns("e", EVENT_FIELDS, "e_"), _columns("y", YEAR_FIELDS, "y_"))
        )
        query = f"""
            SELECT {columns}
            FROM event e
            JOIN event_year y ON y.event_id = e.id
            WHERE {visible('e', 'y')} AND e.slug = %s
        """
        params: Tuple[Any, ...] = (slug,)
        if year:
            query += " AND y.year = %s"
            params = (slug, year)
        else:
            query += " ORDER BY y.date_time DESC LIMIT 1"
        with self._transaction("get_event_and_year") as conn:
            row = conn.execute(query, params).fetchone()
        if not row:
            return None
        return _event_from_row(row, "e_"), _year_from_row(row, "y_")
