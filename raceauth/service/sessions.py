from __future__ import annotations

import secrets
from typing import Tuple

from raceauth.logging import get_logger
from raceauth.service.errors import ValidationError, storage_errors
from raceauth.service.hashing import CredentialHasher
from raceauth.service.store import CredentialStore


class SessionTokenManager:
    """Stores the current session token pair on the account row.

    Changing the email always invalidates the pair. Changing the password
    only does so when the caller asks.
    """

    def __init__(self, store: CredentialStore, hasher: CredentialHasher) -> None:
        self.store = store
        self.hasher = hasher
        self.logger = get_logger(__name__)

    @staticmethod
    def new_token_pair() -> Tuple[str, str]:
        return secrets.token_urlsafe(32), secrets.token_urlsafe(48)

    def issue_tokens(self, account_id: str, token: str, refresh_token: str) -> None:
        with storage_errors("account"):
            self.store.update_tokens(account_id, token, refresh_token)
        self.logger.info("session_tokens_issued", account_id=account_id)

    def invalidate_tokens(self, account_id: str) -> None:
        with storage_errors("account"):
            self.store.update_tokens(account_id, "", "")
        self.logger.info("session_tokens_invalidated", account_id=account_id)

    def change_password(
        self, email: str, new_hash: str, invalidate: bool = False
    ) -> None:
        if not self.hasher.is_digest(new_hash):
            raise ValidationError(
                "password must be hashed before storage",
                detail={"field": "new_hash"},
            )
        with storage_errors("account"):
            self.store.change_password(email, new_hash, invalidate=invalidate)
        self.logger.info("password_changed", email=email, tokens_cleared=invalidate)

    def change_email(self, old_email: str, new_email: str) -> None:
        with storage_errors("account"):
            self.store.change_email(old_email, new_email)
        self.logger.info("email_changed", email=new_email, tokens_cleared=True)
