from __future__ import annotations

from typing import List, Optional

from raceauth.logging import get_logger
from raceauth.service.errors import (
    NotFoundError,
    StateError,
    ValidationError,
    storage_errors,
)
from raceauth.service.hashing import CredentialHasher
from raceauth.service.store import CredentialStore
from raceauth.storage.models import Account

REGISTRATION_ROLE = "registration"


class AccountService:
    """Account identity lifecycle: creation, profile edits, soft delete.

    An email stays reserved by a soft-deleted account until that account is
    purged, so a new account can never inherit a deleted account's address.
    """

    def __init__(self, store: CredentialStore, hasher: CredentialHasher) -> None:
        self.store = store
        self.hasher = hasher
        self.logger = get_logger(__name__)

    def _require_identity(self, name: str, email: str) -> None:
        if not name or not name.strip():
            raise ValidationError("name is required", detail={"field": "name"})
        if not email or "@" not in email:
            raise ValidationError("a valid email is required", detail={"field": "email"})

    def create_account(
        self, name: str, email: str, password_hash: str, role: str
    ) -> Account:
        self._require_identity(name, email)
        if not self.hasher.is_digest(password_hash):
            raise ValidationError(
                "password must be hashed before storage",
                detail={"field": "password_hash"},
            )
        with storage_errors("account"):
            account = self.store.create_account(name, email, password_hash, role)
        self.logger.info("account_created", account_id=account.id, role=role)
        return account

    def get_account_by_email(self, email: str) -> Optional[Account]:
        with storage_errors("account"):
            return self.store.get_account_by_email(email)

    def get_deleted_account_by_email(self, email: str) -> Optional[Account]:
        with storage_errors("account"):
            return self.store.get_deleted_account_by_email(email)

    def get_account(self, account_id: str) -> Optional[Account]:
        with storage_errors("account"):
            return self.store.get_account(account_id)

    def list_accounts(self) -> List[Account]:
        with storage_errors("account"):
            return self.store.list_accounts()

    def update_account_profile(
        self, account_id: str, name: str, email: str, role: str
    ) -> Account:
        self._require_identity(name, email)
        with storage_errors("account"):
            account = self.store.update_account_profile(account_id, name, email, role)
        self.logger.info("account_profile_updated", account_id=account_id, role=role)
        return account

    def soft_delete_account(self, account_id: str) -> None:
        with storage_errors("account"):
            self.store.soft_delete_account(account_id)
        self.logger.info("account_soft_deleted", account_id=account_id)

    def resurrect_account(self, email: str) -> None:
        with storage_errors("account"):
            self.store.resurrect_account(email)
        self.logger.info("account_resurrected", email=email)

    def purge_account(self, account_id: str) -> None:
        """Permanently remove a soft-deleted account and its keys."""

        with storage_errors("account"):
            if self.store.get_account(account_id) is not None:
                self.logger.warning("account_purge_rejected", account_id=account_id)
                raise StateError(
                    "only a deleted account can be purged",
                    detail={"account_id": account_id},
                )
            self.store.purge_account(account_id)
        self.logger.info("account_purged", account_id=account_id)

    def link_accounts(self, main_account_id: str, sub_account_id: str) -> None:
        """Attach a registration account to a main account.

        Only ``registration`` accounts may be sub-accounts, and a
        ``registration`` account cannot act as the main account. Linking an
        existing pair again is a no-op.
        """

        with storage_errors("account"):
            main = self.store.get_account(main_account_id)
            sub = self.store.get_account(sub_account_id)
        if main is None or sub is None:
            raise NotFoundError(
                "account not found",
                detail={
                    "main_account_id": main_account_id,
                    "sub_account_id": sub_account_id,
                },
            )
        if sub.role != REGISTRATION_ROLE:
            raise ValidationError(
                "only registration accounts can be linked",
                detail={"field": "sub_account_id", "role": sub.role},
            )
        if main.role == REGISTRATION_ROLE:
            raise ValidationError(
                "cannot link to a registration account",
                detail={"field": "main_account_id", "role": main.role},
            )
        with storage_errors("account"):
            self.store.link_accounts(main_account_id, sub_account_id)
        self.logger.info(
            "accounts_linked", main_account_id=main_account_id, sub_account_id=sub_account_id
        )

    def unlink_accounts(self, main_account_id: str, sub_account_id: str) -> None:
        with storage_errors("account"):
            self.store.unlink_accounts(main_account_id, sub_account_id)
        self.logger.info(
            "accounts_unlinked", main_account_id=main_account_id, sub_account_id=sub_account_id
        )

    def get_linked_accounts(self, email: str) -> List[Account]:
        with storage_errors("account"):
            return self.store.get_linked_accounts(email)
