"""Unit tests for PostgresStore SQL handling without a database.

The pool is replaced by a scripted fake so each test controls what the
statements return and can inspect what was sent.
"""

from contextlib import contextmanager
from datetime import datetime, timezone

import psycopg
import pytest
from psycopg import errors
from psycopg_pool import PoolTimeout

from raceauth.logging import get_logger
from raceauth.storage.errors import ConstraintViolation, RowCountMismatch, StoreUnavailable
from raceauth.storage.models import KeyUpdate
from raceauth.storage.postgres import PostgresStore, visible

NOW = datetime(2026, 1, 1, tzinfo=timezone.utc)


class FakeResult:
    def __init__(self, rows=None, rowcount=None):
        self.rows = list(rows or [])
        self.rowcount = len(self.rows) if rowcount is None else rowcount

    def fetchone(self):
        return self.rows[0] if self.rows else None

    def fetchall(self):
        return list(self.rows)


class FakeConnection:
    def __init__(self, results):
        self.results = list(results)
        self.statements = []

    def execute(self, sql, params=None):
        self.statements.append((" ".join(sql.split()), params))
        if not self.results:
            raise AssertionError(f"unexpected statement: {sql}")
        outcome = self.results.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class FakePool:
    def __init__(self, results=(), error=None):
        self.conn = FakeConnection(results)
        self.error = error
        self.committed = 0
        self.rolled_back = 0
        self.closed = False

    @contextmanager
    def connection(self):
        if self.error is not None:
            raise self.error
        try:
            yield self.conn
        except Exception:
            self.rolled_back += 1
            raise
        self.committed += 1

    def close(self):
        self.closed = True


def make_store(*results, error=None) -> PostgresStore:
    store: PostgresStore = PostgresStore.__new__(PostgresStore)
    store.pool = FakePool(results, error=error)
    store.dsn = "postgresql://test"
    store.timeout_seconds = 1.0
    store.logger = get_logger("test")
    return store


def account_row(prefix="", **overrides):
    row = {
        "id": "acc-1",
        "name": "John Smith",
        "email": "j@test.com",
        "password_hash": "$argon2id$x",
        "role": "free",
        "wrong_pass_attempts": 0,
        "locked": False,
        "token": "tok",
        "refresh_token": "ref",
        "deleted": False,
        "created_at": NOW,
        "updated_at": NOW,
    }
    row.update(overrides)
    return {f"{prefix}{key}": value for key, value in row.items()}


def key_row(prefix="", **overrides):
    row = {
        "id": "key-1",
        "account_id": "acc-1",
        "value": "value-1",
        "type": "default",
        "allowed_hosts": None,
        "valid_until": None,
        "name": None,
        "deleted": False,
        "created_at": NOW,
    }
    row.update(overrides)
    return {f"{prefix}{key}": value for key, value in row.items()}


class TestVisibilityPredicate:
    def test_single_alias(self):
        assert visible("a") == "a.deleted = FALSE"

    def test_join_chain(self):
        assert visible("a", "e", "y") == (
            "a.deleted = FALSE AND e.deleted = FALSE AND y.deleted = FALSE"
        )


class TestLockoutStatements:
    def test_failure_is_single_atomic_update(self):
        store = make_store(
            FakeResult([account_row(wrong_pass_attempts=5, locked=True, token="", refresh_token="")])
        )
        account = store.record_login_failure("j@test.com", 4)

        assert account.locked is True
        assert account.wrong_pass_attempts == 5
        assert account.token == ""
        [(sql, params)] = store.pool.conn.statements
        assert sql.startswith("UPDATE account")
        assert "wrong_pass_attempts = wrong_pass_attempts + 1" in sql
        assert "locked = locked OR wrong_pass_attempts + 1 > %(max)s" in sql
        assert params == {"max": 4, "email": "j@test.com"}
        assert store.pool.committed == 1

    def test_failure_on_unknown_email(self):
        store = make_store(FakeResult([]))
        with pytest.raises(RowCountMismatch) as excinfo:
            store.record_login_failure("ghost@test.com", 4)
        assert excinfo.value.actual == 0
        assert store.pool.rolled_back == 1

    def test_reset_guard_rejects_locked(self):
        store = make_store(FakeResult([]), FakeResult([{"present": 1}]))
        assert store.reset_login_failures("j@test.com") is None
        update_sql, params = store.pool.conn.statements[0]
        assert "locked = %s" in update_sql
        assert params == ("j@test.com", False)

    def test_reset_missing_account(self):
        store = make_store(FakeResult([]), FakeResult([]))
        with pytest.raises(RowCountMismatch):
            store.reset_login_failures("ghost@test.com")

    def test_unlock_returns_reset_account(self):
        store = make_store(FakeResult([account_row()]))
        account = store.unlock_account("j@test.com")
        assert account.wrong_pass_attempts == 0
        sql, params = store.pool.conn.statements[0]
        assert "locked = FALSE" in sql
        assert params == ("j@test.com", True)


class TestAccountStatements:
    def test_soft_delete_cascades_keys(self):
        store = make_store(FakeResult(rowcount=1), FakeResult(rowcount=3))
        store.soft_delete_account("acc-1")
        first, second = store.pool.conn.statements
        assert first[0].startswith("UPDATE account SET deleted = TRUE")
        assert second[0].startswith("UPDATE api_key SET deleted = TRUE")

    def test_soft_delete_missing_account(self):
        store = make_store(FakeResult(rowcount=0))
        with pytest.raises(RowCountMismatch):
            store.soft_delete_account("acc-1")
        assert len(store.pool.conn.statements) == 1

    def test_resurrect_multiple_rows(self):
        store = make_store(FakeResult(rowcount=2))
        with pytest.raises(RowCountMismatch) as excinfo:
            store.resurrect_account("j@test.com")
        assert excinfo.value.actual == 2

    def test_change_password_invalidate_clears_tokens(self):
        store = make_store(FakeResult(rowcount=1), FakeResult(rowcount=1))
        store.change_password("j@test.com", "$argon2id$new")
        store.change_password("j@test.com", "$argon2id$new", invalidate=True)
        plain, invalidating = store.pool.conn.statements
        assert "token" not in plain[0]
        assert "token = ''" in invalidating[0]

    def test_change_email_clears_tokens(self):
        store = make_store(FakeResult(rowcount=1))
        store.change_email("j@test.com", "john@test.com")
        sql, params = store.pool.conn.statements[0]
        assert "token = ''" in sql and "refresh_token = ''" in sql
        assert params == ("john@test.com", "j@test.com")

    def test_unique_violation_maps_to_constraint(self):
        store = make_store(errors.UniqueViolation("duplicate key"))
        with pytest.raises(ConstraintViolation):
            store.create_account("John", "j@test.com", "$argon2id$x", "free")

    def test_lookup_filters_deleted(self):
        store = make_store(FakeResult([account_row()]))
        account = store.get_account_by_email("j@test.com")
        assert account.email == "j@test.com"
        sql, _ = store.pool.conn.statements[0]
        assert "a.deleted = FALSE" in sql


class TestKeyStatements:
    def test_null_text_columns_become_empty(self):
        store = make_store(FakeResult([key_row()]))
        key = store.get_key("value-1")
        assert key.allowed_hosts == ""
        assert key.name == ""

    def test_update_key_never_writes_identity(self):
        store = make_store(FakeResult([key_row(type="write")]))
        store.update_key("value-1", KeyUpdate(type="write"))
        sql, params = store.pool.conn.statements[0]
        set_clause = sql.split("WHERE")[0]
        assert "account_id" not in set_clause
        assert "value =" not in set_clause
        assert params[-1] == "value-1"

    def test_create_key_requires_visible_owner(self):
        store = make_store(FakeResult([]))
        with pytest.raises(RowCountMismatch):
            store.create_key("acc-1", "value-1", "default", "")

    def test_joined_lookup_checks_both_rows(self):
        row = {**account_row("a_"), **key_row("k_")}
        store = make_store(FakeResult([row]))
        account, key = store.get_account_and_key("value-1")
        assert account.id == key.account_id == "acc-1"
        sql, _ = store.pool.conn.statements[0]
        assert visible("a", "k") in sql

    def test_joined_lookup_absent(self):
        store = make_store(FakeResult([]))
        assert store.get_account_and_key("nope") is None


class TestEventYearQuery:
    def test_empty_year_orders_by_date(self):
        store = make_store(FakeResult([]))
        assert store.get_account_event_and_year("city-10k") is None
        sql, params = store.pool.conn.statements[0]
        assert sql.endswith("ORDER BY y.date_time DESC LIMIT 1")
        assert visible("a", "e", "y") in sql
        assert params == ("city-10k",)

    def test_named_year_filters(self):
        store = make_store(FakeResult([]))
        store.get_account_event_and_year("city-10k", "2025")
        sql, params = store.pool.conn.statements[0]
        assert "y.year = %s" in sql
        assert params == ("city-10k", "2025")

    def test_public_lookup_skips_owner(self):
        row = {
            "e_id": "evt-1",
            "e_account_id": "acc-1",
            "e_name": "City 10k",
            "e_slug": "city-10k",
            "e_access_restricted": False,
            "e_deleted": False,
            "e_created_at": NOW,
            "y_id": "yr-1",
            "y_event_id": "evt-1",
            "y_year": "2025",
            "y_date_time": NOW,
            "y_live": True,
            "y_deleted": False,
        }
        store = make_store(FakeResult([row]))
        event, year = store.get_event_and_year("city-10k")
        assert (event.slug, year.year) == ("city-10k", "2025")
        sql, params = store.pool.conn.statements[0]
        assert visible("e", "y") in sql
        assert "FROM account" not in sql
        assert sql.endswith("ORDER BY y.date_time DESC LIMIT 1")
        assert params == ("city-10k",)

    def test_public_lookup_named_year(self):
        store = make_store(FakeResult([]))
        assert store.get_event_and_year("city-10k", "1999") is None
        sql, params = store.pool.conn.statements[0]
        assert sql.endswith("y.year = %s")
        assert params == ("city-10k", "1999")


class TestLinkStatements:
    def test_link_locks_both_visible_accounts(self):
        store = make_store(FakeResult([{"id": "main"}, {"id": "sub"}]), FakeResult())
        store.link_accounts("main", "sub")
        (check_sql, check_params), (insert_sql, insert_params) = store.pool.conn.statements
        assert visible("a") in check_sql and "FOR SHARE" in check_sql
        assert check_params == (["main", "sub"],)
        assert "ON CONFLICT (main_account_id, sub_account_id) DO NOTHING" in insert_sql
        assert insert_params == ("main", "sub")
        assert store.pool.committed == 1

    def test_link_with_missing_account(self):
        store = make_store(FakeResult([{"id": "main"}]))
        with pytest.raises(RowCountMismatch) as excinfo:
            store.link_accounts("main", "gone")
        assert (excinfo.value.actual, excinfo.value.expected) == (1, 2)
        assert len(store.pool.conn.statements) == 1
        assert store.pool.rolled_back == 1

    def test_linked_lookup_filters_both_sides(self):
        store = make_store(FakeResult([account_row(role="registration")]))
        linked = store.get_linked_accounts("j@test.com")
        assert [acc.role for acc in linked] == ["registration"]
        sql, params = store.pool.conn.statements[0]
        assert visible("a", "b") in sql
        assert params == ("j@test.com",)


class TestFailures:
    def test_pool_timeout_is_unavailable(self):
        store = make_store(error=PoolTimeout("no connection"))
        with pytest.raises(StoreUnavailable) as excinfo:
            store.get_account("acc-1")
        assert excinfo.value.operation == "get_account"

    def test_operational_error_is_unavailable(self):
        store = make_store(psycopg.OperationalError("server closed the connection"))
        with pytest.raises(StoreUnavailable):
            store.list_accounts()

    def test_statement_timeout_is_unavailable(self):
        store = make_store(errors.QueryCanceled("canceling statement due to statement timeout"))
        with pytest.raises(StoreUnavailable) as excinfo:
            store.record_login_failure("j@test.com", 4)
        assert excinfo.value.reason == "statement timeout"

    def test_verify_schema_reports_missing_tables(self):
        store = make_store(
            FakeResult([{"oid": "account"}]),
            FakeResult([{"oid": None}]),
            FakeResult([{"oid": "linked_account"}]),
            FakeResult([{"oid": "event"}]),
            FakeResult([{"oid": None}]),
        )
        with pytest.raises(RuntimeError) as excinfo:
            store._verify_required_schema()
        assert "api_key, event_year" in str(excinfo.value)

    def test_close_closes_pool(self):
        store = make_store()
        store.close()
        assert store.pool.closed
