from __future__ import annotations

from raceauth.logging import get_logger
from raceauth.service.errors import (
    AuthenticationError,
    NotFoundError,
    StateError,
    storage_errors,
)
from raceauth.service.hashing import CredentialHasher
from raceauth.service.store import CredentialStore
from raceauth.storage.models import Account


class LoginSecurityController:
    """Failed-login counting and account lockout.

    States are ``Active(n)`` for ``n`` consecutive failures and ``Locked``.
    A failure from ``Active(n)`` moves to ``Active(n + 1)`` while ``n + 1`` is
    at most ``max_attempts`` and to ``Locked`` beyond it. The counter keeps
    climbing while locked. A correct password never unlocks; only
    :meth:`unlock` leaves ``Locked``.
    """

    def __init__(
        self, store: CredentialStore, hasher: CredentialHasher, *, max_attempts: int
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.store = store
        self.hasher = hasher
        self.max_attempts = max_attempts
        self.logger = get_logger(__name__)

    def invalid_password(self, email: str) -> Account:
        """Record one failed attempt; the store increments atomically.

        Not safe to retry after an ambiguous timeout, since the first call may
        already have counted.
        """

        with storage_errors("account"):
            account = self.store.record_login_failure(email, self.max_attempts)
        if account.locked and account.wrong_pass_attempts == self.max_attempts + 1:
            self.logger.warning(
                "account_locked",
                account_id=account.id,
                attempts=account.wrong_pass_attempts,
            )
        else:
            self.logger.info(
                "login_failure_recorded",
                account_id=account.id,
                attempts=account.wrong_pass_attempts,
                locked=account.locked,
            )
        return account

    def valid_password(self, email: str) -> Account:
        with storage_errors("account"):
            account = self.store.reset_login_failures(email)
        if account is None:
            self.logger.warning("login_reset_rejected", reason="locked")
            raise StateError("account is locked", detail={"state": "locked"})
        return account

    def unlock(self, email: str) -> Account:
        with storage_errors("account"):
            account = self.store.unlock_account(email)
        if account is None:
            self.logger.warning("unlock_rejected", reason="not_locked")
            raise StateError("account is not locked", detail={"state": "active"})
        self.logger.info("account_unlocked", account_id=account.id)
        return account

    def check_credentials(self, email: str, password: str) -> Account:
        """Run the password login path and return the authenticated account.

        A locked account is rejected before its password is checked, so a
        lock cannot be detected or lifted by guessing.
        """

        with storage_errors("account"):
            account = self.store.get_account_by_email(email)
        if account is None:
            raise AuthenticationError("invalid email or password")
        if account.locked:
            self.logger.warning("login_rejected_locked", account_id=account.id)
            raise StateError("account is locked", detail={"state": "locked"})
        if not self.hasher.verify(account.password_hash, password):
            try:
                self.invalid_password(email)
            except NotFoundError as exc:
                raise AuthenticationError("invalid email or password") from exc
            raise AuthenticationError("invalid email or password")
        try:
            return self.valid_password(email)
        except NotFoundError as exc:
            raise AuthenticationError("invalid email or password") from exc
