from __future__ import annotations

from typing import Optional, Tuple

from raceauth.service.errors import storage_errors
from raceauth.service.store import CredentialStore
from raceauth.storage.models import Account, ApiKey, Event, EventYear

ADMIN_ROLE = "admin"


class AuthorizationResolver:
    """Resolve credentials and slugs to the account context they belong to.

    Each call is a single joined lookup. A missing or soft-deleted row
    anywhere in the chain yields ``None`` rather than a partial result.
    """

    def __init__(self, store: CredentialStore) -> None:
        self.store = store

    def resolve_account_by_key(self, value: str) -> Optional[Account]:
        with storage_errors("api_key"):
            return self.store.get_account_by_key(value)

    def resolve_account_and_key(self, value: str) -> Optional[Tuple[Account, ApiKey]]:
        with storage_errors("api_key"):
            return self.store.get_account_and_key(value)

    def resolve_account_and_event(self, slug: str) -> Optional[Tuple[Account, Event]]:
        with storage_errors("event"):
            return self.store.get_account_and_event(slug)

    def resolve_account_event_and_year(
        self, slug: str, year: Optional[str] = None
    ) -> Optional[Tuple[Account, Event, EventYear]]:
        # no year selects the latest visible year by date_time
        with storage_errors("event_year"):
            return self.store.get_account_event_and_year(slug, year or None)

    def resolve_event_and_year(
        self, slug: str, year: Optional[str] = None
    ) -> Optional[Tuple[Event, EventYear]]:
        """Public lookup: the owning account's state is not consulted."""

        with storage_errors("event_year"):
            return self.store.get_event_and_year(slug, year or None)

    @staticmethod
    def may_view_event(account: Optional[Account], event: Event) -> bool:
        if not event.access_restricted:
            return True
        if account is None or account.deleted:
            return False
        return account.role == ADMIN_ROLE or account.id == event.account_id

    def may_manage_event(
        self, account: Optional[Account], owner: Account, event: Event
    ) -> bool:
        """True for an admin or the owner, or for an account linked under the owner."""

        if account is None or account.deleted:
            return False
        if account.role == ADMIN_ROLE or account.id == event.account_id:
            return True
        if owner.id != event.account_id:
            return False
        with storage_errors("account"):
            linked = self.store.get_linked_accounts(owner.email)
        return any(sub.id == account.id for sub in linked)
