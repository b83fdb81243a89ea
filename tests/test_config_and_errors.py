"""Settings loading, error mapping, hashing and log redaction."""

import threading

import pytest
from pydantic import ValidationError as PydanticValidationError

from raceauth.config import Settings, get_settings, reset_settings_cache
from raceauth.logging import _redact_pii, redact_value, set_correlation_id, get_correlation_id
from raceauth.service.errors import (
    ConflictError,
    IntegrityError,
    NotFoundError,
    TransientError,
    storage_errors,
)
from raceauth.storage.errors import ConstraintViolation, RowCountMismatch, StoreUnavailable
from raceauth.storage.memory import MemoryStore


class TestSettings:
    def test_defaults(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        for name in ("MAX_LOGIN_ATTEMPTS", "STORE_TIMEOUT_SECONDS", "DATABASE_URL"):
            monkeypatch.delenv(name, raising=False)
        settings = Settings.from_env()
        assert settings.max_login_attempts == 4
        assert settings.store_timeout_seconds == 5.0
        assert settings.db_pool_min_size == 2
        assert settings.db_pool_max_size == 10

    def test_environment_overrides(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("MAX_LOGIN_ATTEMPTS", "7")
        monkeypatch.setenv("STORE_TIMEOUT_SECONDS", "2.5")
        monkeypatch.setenv("USE_MEMORY_STORE", "false")
        settings = Settings.from_env()
        assert settings.max_login_attempts == 7
        assert settings.store_timeout_seconds == 2.5
        assert settings.use_memory_store is False

    def test_dotenv_fallback(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        monkeypatch.delenv("MAX_LOGIN_ATTEMPTS", raising=False)
        (tmp_path / ".env").write_text("MAX_LOGIN_ATTEMPTS=9\n")
        assert Settings.from_env().max_login_attempts == 9

    def test_environment_beats_dotenv(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("MAX_LOGIN_ATTEMPTS", "3")
        (tmp_path / ".env").write_text("MAX_LOGIN_ATTEMPTS=9\n")
        assert Settings.from_env().max_login_attempts == 3

    @pytest.mark.parametrize(
        "field,value",
        [("max_login_attempts", 0), ("store_timeout_seconds", 0), ("db_pool_max_size", 0)],
    )
    def test_invalid_values_rejected(self, field, value):
        with pytest.raises(PydanticValidationError):
            Settings(**{field: value})

    def test_get_settings_is_cached(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("MAX_LOGIN_ATTEMPTS", "6")
        first = get_settings()
        monkeypatch.setenv("MAX_LOGIN_ATTEMPTS", "8")
        assert get_settings() is first
        reset_settings_cache()
        assert get_settings().max_login_attempts == 8


class TestStorageErrorMapping:
    def test_constraint_violation_is_conflict(self):
        with pytest.raises(ConflictError) as excinfo:
            with storage_errors("account"):
                raise ConstraintViolation("dup", {"field": "email"})
        assert excinfo.value.detail == {"field": "email"}
        assert isinstance(excinfo.value.__cause__, ConstraintViolation)

    def test_zero_rows_is_not_found(self):
        with pytest.raises(NotFoundError) as excinfo:
            with storage_errors("account"):
                raise RowCountMismatch("account", 0)
        assert excinfo.value.status_code == 404

    def test_fewer_rows_than_expected_is_not_found(self):
        with pytest.raises(NotFoundError):
            with storage_errors("account"):
                raise RowCountMismatch("account", 1, expected=2)

    def test_many_rows_is_integrity_error(self):
        with pytest.raises(IntegrityError) as excinfo:
            with storage_errors("account"):
                raise RowCountMismatch("account", 3)
        assert excinfo.value.error_code == "integrity_error"
        assert excinfo.value.detail["affected"] == 3

    def test_unavailable_is_transient(self):
        with pytest.raises(TransientError) as excinfo:
            with storage_errors("account"):
                raise StoreUnavailable("get_account", "statement timeout")
        assert excinfo.value.status_code == 503

    def test_other_exceptions_pass_through(self):
        with pytest.raises(KeyError):
            with storage_errors("account"):
                raise KeyError("x")


class TestMemoryStoreTimeout:
    def test_lock_timeout_raises_unavailable(self):
        store = MemoryStore(timeout_seconds=0.05)
        holding = threading.Event()
        release = threading.Event()

        def hold_lock():
            with store._locked("holder"):
                holding.set()
                release.wait(2)

        holder = threading.Thread(target=hold_lock)
        holder.start()
        holding.wait(2)
        try:
            with pytest.raises(StoreUnavailable):
                store.get_account("anything")
        finally:
            release.set()
            holder.join()


class TestHasher:
    def test_hash_and_verify(self, hasher):
        digest = hasher.hash("correct horse")
        assert hasher.is_digest(digest)
        assert hasher.verify(digest, "correct horse")
        assert not hasher.verify(digest, "wrong")

    def test_unparseable_digest_is_false(self, hasher):
        assert not hasher.verify("not-a-digest", "anything")
        assert not hasher.is_digest("plaintext")
        assert not hasher.is_digest("")


class TestLogRedaction:
    def test_redact_value(self):
        assert redact_value("abc") == "***"
        assert redact_value("j@test.com") == "j@***om"

    def test_processor_redacts_credential_fields(self):
        event = _redact_pii(
            None,
            "info",
            {"event": "x", "email": "ada@example.com", "key_value": "abcdef", "attempts": 3},
        )
        assert event["email"] == "ad***om"
        assert event["key_value"] == "ab***ef"
        assert event["attempts"] == 3

    def test_correlation_id(self):
        cid = set_correlation_id("req-1")
        assert cid == "req-1"
        assert get_correlation_id() == "req-1"
