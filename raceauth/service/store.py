from __future__ import annotations

from datetime import datetime
from typing import List, Optional, Protocol, Tuple

from raceauth.storage.models import Account, ApiKey, Event, EventYear, KeyUpdate


class CredentialStore(Protocol):
    """Storage surface shared by ``MemoryStore`` and ``PostgresStore``.

    Lookups return ``None`` for absent or soft-deleted rows. Single-row
    mutations raise ``RowCountMismatch`` unless exactly one visible row was
    affected; guarded lockout transitions return ``None`` when the row exists
    but is in the wrong state.
    """

    def close(self) -> None: ...

    def create_account(
        self, name: str, email: str, password_hash: str, role: str
    ) -> Account: ...

    def get_account_by_email(self, email: str) -> Optional[Account]: ...

    def get_deleted_account_by_email(self, email: str) -> Optional[Account]: ...

    def get_account(self, account_id: str) -> Optional[Account]: ...

    def list_accounts(self) -> List[Account]: ...

    def update_account_profile(
        self, account_id: str, name: str, email: str, role: str
    ) -> Account: ...

    def soft_delete_account(self, account_id: str) -> None: ...

    def resurrect_account(self, email: str) -> None: ...

    def purge_account(self, account_id: str) -> None: ...

    def change_password(
        self, email: str, password_hash: str, *, invalidate: bool = False
    ) -> None: ...

    def change_email(self, old_email: str, new_email: str) -> None: ...

    def update_tokens(
        self, account_id: str, token: str, refresh_token: str
    ) -> None: ...

    def link_accounts(self, main_account_id: str, sub_account_id: str) -> None: ...

    def unlink_accounts(self, main_account_id: str, sub_account_id: str) -> None: ...

    def get_linked_accounts(self, email: str) -> List[Account]: ...

    def record_login_failure(self, email: str, max_attempts: int) -> Account: ...

    def reset_login_failures(self, email: str) -> Optional[Account]: ...

    def unlock_account(self, email: str) -> Optional[Account]: ...

    def create_key(
        self,
        account_id: str,
        value: str,
        type: str,
        allowed_hosts: str,
        valid_until: Optional[datetime] = None,
        name: str = "",
    ) -> ApiKey: ...

    def get_key(self, value: str) -> Optional[ApiKey]: ...

    def list_account_keys(self, account_id: str) -> List[ApiKey]: ...

    def update_key(self, value: str, changes: KeyUpdate) -> ApiKey: ...

    def soft_delete_key(self, value: str) -> None: ...

    def create_event(
        self,
        account_id: str,
        name: str,
        slug: str,
        *,
        access_restricted: bool = False,
    ) -> Event: ...

    def soft_delete_event(self, event_id: str) -> None: ...

    def create_event_year(
        self, event_id: str, year: str, date_time: datetime, *, live: bool = False
    ) -> EventYear: ...

    def soft_delete_event_year(self, event_year_id: str) -> None: ...

    def get_account_and_key(
        self, value: str
    ) -> Optional[Tuple[Account, ApiKey]]: ...

    def get_account_by_key(self, value: str) -> Optional[Account]: ...

    def get_account_and_event(
        self, slug: str
    ) -> Optional[Tuple[Account, Event]]: ...

    def get_account_event_and_year(
        self, slug: str, year: Optional[str] = None
    ) -> Optional[Tuple[Account, Event, EventYear]]: ...

    def get_event_and_year(
        self, slug: str, year: Optional[str] = None
    ) -> Optional[Tuple[Event, EventYear]]: ...
