from __future__ import annotations

import threading
import uuid
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime
from typing import Dict, Iterator, List, Optional, Set, Tuple

from raceauth.logging import get_logger
from raceauth.storage.errors import (
    ConstraintViolation,
    RowCountMismatch,
    StoreUnavailable,
    expect_one,
)
from raceauth.storage.models import (
    Account,
    ApiKey,
    Event,
    EventYear,
    KeyUpdate,
    utcnow,
)


def visible(*records) -> bool:
    """True when every record in a join chain exists and is not soft-deleted."""
    return all(record is not None and not record.deleted for record in records)


class MemoryStore:
    """In-memory credential store for tests and single-process deployments.

    All reads and writes run under one re-entrant lock. A mutation builds a
    replacement record first and only then swaps it into the table, so a
    failure part way leaves the previous row untouched. Records handed to
    callers are copies.
    """

    def __init__(self, *, timeout_seconds: float = 5.0) -> None:
        self.logger = get_logger(__name__)
        self.timeout_seconds = timeout_seconds
        self.accounts: Dict[str, Account] = {}
        self.keys: Dict[str, ApiKey] = {}
        self.events: Dict[str, Event] = {}
        self.event_years: Dict[str, EventYear] = {}
        # (main_account_id, sub_account_id)
        self.links: Set[Tuple[str, str]] = set()
        self._data_lock = threading.RLock()

    @contextmanager
    def _locked(self, operation: str) -> Iterator[None]:
        if not self._data_lock.acquire(timeout=self.timeout_seconds):
            self.logger.warning("memory_store_lock_timeout", operation=operation)
            raise StoreUnavailable(operation, "timed out waiting for store lock")
        try:
            yield
        finally:
            self._data_lock.release()

    def close(self) -> None:
        return None

    # accounts
    def _accounts_with_email(self, email: str) -> List[Account]:
        return [acc for acc in self.accounts.values() if acc.email == email]

    def _visible_account_by_email(self, email: str) -> Optional[Account]:
        return next(
            (acc for acc in self._accounts_with_email(email) if visible(acc)), None
        )

    def _require_visible_account(self, account_id: str) -> Account:
        account = self.accounts.get(account_id)
        if not visible(account):
            raise RowCountMismatch("account", 0)
        return account

    def _require_account_email(self, email: str) -> Account:
        account = self._visible_account_by_email(email)
        if account is None:
            raise RowCountMismatch("account", 0)
        return account

    def create_account(
        self, name: str, email: str, password_hash: str, role: str
    ) -> Account:
        with self._locked("create_account"):
            if self._accounts_with_email(email):
                raise ConstraintViolation("email already exists", {"field": "email"})
            account = Account(
                id=str(uuid.uuid4()),
                name=name,
                email=email,
                password_hash=password_hash,
                role=role,
            )
            self.accounts[account.id] = account
            return replace(account)

    def get_account_by_email(self, email: str) -> Optional[Account]:
        with self._locked("get_account_by_email"):
            account = self._visible_account_by_email(email)
            return replace(account) if account else None

    def get_deleted_account_by_email(self, email: str) -> Optional[Account]:
        with self._locked("get_deleted_account_by_email"):
            account = next(
                (acc for acc in self._accounts_with_email(email) if acc.deleted), None
            )
            return replace(account) if account else None

    def get_account(self, account_id: str) -> Optional[Account]:
        with self._locked("get_account"):
            account = self.accounts.get(account_id)
            return replace(account) if visible(account) else None

    def list_accounts(self) -> List[Account]:
        with self._locked("list_accounts"):
            results = [replace(acc) for acc in self.accounts.values() if visible(acc)]
            return sorted(results, key=lambda acc: acc.created_at)

    def update_account_profile(
        self, account_id: str, name: str, email: str, role: str
    ) -> Account:
        with self._locked("update_account_profile"):
            current = self._require_visible_account(account_id)
            email_changed = email != current.email
            if email_changed and self._accounts_with_email(email):
                raise ConstraintViolation("email already exists", {"field": "email"})
            updated = replace(current, name=name, email=email, role=role, updated_at=utcnow())
            if email_changed:
                updated.token = ""
                updated.refresh_token = ""
            self.accounts[account_id] = updated
            return replace(updated)

    def soft_delete_account(self, account_id: str) -> None:
        with self._locked("soft_delete_account"):
            current = self._require_visible_account(account_id)
            now = utcnow()
            revoked = {
                value: replace(key, deleted=True)
                for value, key in self.keys.items()
                if key.account_id == account_id and not key.deleted
            }
            self.accounts[account_id] = replace(current, deleted=True, updated_at=now)
            self.keys.update(revoked)

    def resurrect_account(self, email: str) -> None:
        with self._locked("resurrect_account"):
            matches = [acc for acc in self._accounts_with_email(email) if acc.deleted]
            expect_one("account", len(matches))
            account = matches[0]
            self.accounts[account.id] = replace(account, deleted=False, updated_at=utcnow())

    def purge_account(self, account_id: str) -> None:
        with self._locked("purge_account"):
            account = self.accounts.get(account_id)
            if account is None or not account.deleted:
                raise RowCountMismatch("account", 0)
            if any(evt.account_id == account_id for evt in self.events.values()):
                raise ConstraintViolation(
                    "account still owns events", {"account_id": account_id}
                )
            self.keys = {
                value: key
                for value, key in self.keys.items()
                if key.account_id != account_id
            }
            self.links = {
                link for link in self.links if account_id not in link
            }
            del self.accounts[account_id]

    def change_password(
        self, email: str, password_hash: str, *, invalidate: bool = False
    ) -> None:
        with self._locked("change_password"):
            current = self._require_account_email(email)
            updated = replace(current, password_hash=password_hash, updated_at=utcnow())
            if invalidate:
                updated.token = ""
                updated.refresh_token = ""
            self.accounts[current.id] = updated

    def change_email(self, old_email: str, new_email: str) -> None:
        with self._locked("change_email"):
            current = self._require_account_email(old_email)
            if new_email != old_email and self._accounts_with_email(new_email):
                raise ConstraintViolation("email already exists", {"field": "email"})
            self.accounts[current.id] = replace(
                current,
                email=new_email,
                token="",
                refresh_token="",
                updated_at=utcnow(),
            )

    def update_tokens(self, account_id: str, token: str, refresh_token: str) -> None:
        with self._locked("update_tokens"):
            current = self._require_visible_account(account_id)
            self.accounts[account_id] = replace(
                current, token=token, refresh_token=refresh_token, updated_at=utcnow()
            )

    # account links
    def link_accounts(self, main_account_id: str, sub_account_id: str) -> None:
        with self._locked("link_accounts"):
            self._require_visible_account(main_account_id)
            self._require_visible_account(sub_account_id)
            self.links.add((main_account_id, sub_account_id))

    def unlink_accounts(self, main_account_id: str, sub_account_id: str) -> None:
        with self._locked("unlink_accounts"):
            self.links.discard((main_account_id, sub_account_id))

    def get_linked_accounts(self, email: str) -> List[Account]:
        with self._locked("get_linked_accounts"):
            main = self._visible_account_by_email(email)
            if main is None:
                return []
            subs = [
                self.accounts.get(sub_id)
                for main_id, sub_id in self.links
                if main_id == main.id
            ]
            results = [replace(sub) for sub in subs if visible(sub)]
            return sorted(results, key=lambda acc: acc.created_at)

    # lockout transitions
    def record_login_failure(self, email: str, max_attempts: int) -> Account:
        with self._locked("record_login_failure"):
            current = self._require_account_email(email)
            attempts = current.wrong_pass_attempts + 1
            locked = current.locked or attempts > max_attempts
            updated = replace(
                current,
                wrong_pass_attempts=attempts,
                locked=locked,
                updated_at=utcnow(),
            )
            if locked:
                updated.token = ""
                updated.refresh_token = ""
            self.accounts[current.id] = updated
            return replace(updated)

    def reset_login_failures(self, email: str) -> Optional[Account]:
        with self._locked("reset_login_failures"):
            current = self._require_account_email(email)
            if current.locked:
                return None
            updated = replace(current, wrong_pass_attempts=0, updated_at=utcnow())
            self.accounts[current.id] = updated
            return replace(updated)

    def unlock_account(self, email: str) -> Optional[Account]:
        with self._locked("unlock_account"):
            current = self._require_account_email(email)
            if not current.locked:
                return None
            updated = replace(
                current, wrong_pass_attempts=0, locked=False, updated_at=utcnow()
            )
            self.accounts[current.id] = updated
            return replace(updated)

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
        with self._locked("create_key"):
            self._require_visible_account(account_id)
            if value in self.keys:
                raise ConstraintViolation("key value already exists", {"field": "value"})
            key = ApiKey(
                id=str(uuid.uuid4()),
                account_id=account_id,
                value=value,
                type=type,
                allowed_hosts=allowed_hosts,
                valid_until=valid_until,
                name=name,
            )
            self.keys[value] = key
            return replace(key)

    def get_key(self, value: str) -> Optional[ApiKey]:
        with self._locked("get_key"):
            key = self.keys.get(value)
            return replace(key) if visible(key) else None

    def list_account_keys(self, account_id: str) -> List[ApiKey]:
        with self._locked("list_account_keys"):
            results = [
                replace(key)
                for key in self.keys.values()
                if key.account_id == account_id and visible(key)
            ]
            return sorted(results, key=lambda key: key.created_at)

    def update_key(self, value: str, changes: KeyUpdate) -> ApiKey:
        with self._locked("update_key"):
            current = self.keys.get(value)
            if not visible(current):
                raise RowCountMismatch("api_key", 0)
            updated = replace(
                current,
                type=changes.type,
                allowed_hosts=changes.allowed_hosts,
                valid_until=changes.valid_until,
                name=changes.name,
            )
            self.keys[value] = updated
            return replace(updated)

    def soft_delete_key(self, value: str) -> None:
        with self._locked("soft_delete_key"):
            current = self.keys.get(value)
            if not visible(current):
                raise RowCountMismatch("api_key", 0)
            self.keys[value] = replace(current, deleted=True)

    # events
    def create_event(
        self,
        account_id: str,
        name: str,
        slug: str,
        *,
        access_restricted: bool = False,
    ) -> Event:
        with self._locked("create_event"):
            self._require_visible_account(account_id)
            if any(evt.slug == slug for evt in self.events.values()):
                raise ConstraintViolation("slug already exists", {"field": "slug"})
            event = Event(
                id=str(uuid.uuid4()),
                account_id=account_id,
                name=name,
                slug=slug,
                access_restricted=access_restricted,
            )
            self.events[event.id] = event
            return replace(event)

    def soft_delete_event(self, event_id: str) -> None:
        with self._locked("soft_delete_event"):
            current = self.events.get(event_id)
            if not visible(current):
                raise RowCountMismatch("event", 0)
            self.events[event_id] = replace(current, deleted=True)

    def create_event_year(
        self, event_id: str, year: str, date_time: datetime, *, live: bool = False
    ) -> EventYear:
        with self._locked("create_event_year"):
            if not visible(self.events.get(event_id)):
                raise RowCountMismatch("event", 0)
            if any(
                y.event_id == event_id and y.year == year
                for y in self.event_years.values()
            ):
                raise ConstraintViolation(
                    "year already exists for event", {"field": "year"}
                )
            event_year = EventYear(
                id=str(uuid.uuid4()),
                event_id=event_id,
                year=year,
                date_time=date_time,
                live=live,
            )
            self.event_years[event_year.id] = event_year
            return replace(event_year)

    def soft_delete_event_year(self, event_year_id: str) -> None:
        with self._locked("soft_delete_event_year"):
            current = self.event_years.get(event_year_id)
            if not visible(current):
                raise RowCountMismatch("event_year", 0)
            self.event_years[event_year_id] = replace(current, deleted=True)

    # joined lookups
    def get_account_and_key(self, value: str) -> Optional[Tuple[Account, ApiKey]]:
        with self._locked("get_account_and_key"):
            key = self.keys.get(value)
            account = self.accounts.get(key.account_id) if key else None
            if not visible(key, account):
                return None
            return replace(account), replace(key)

    def get_account_by_key(self, value: str) -> Optional[Account]:
        pair = self.get_account_and_key(value)
        return pair[0] if pair else None

    def _event_by_slug(self, slug: str) -> Optional[Event]:
        return next((evt for evt in self.events.values() if evt.slug == slug), None)

    def _select_year(
        self, event: Event, year: Optional[str]
    ) -> Optional[EventYear]:
        years = [
            y for y in self.event_years.values() if y.event_id == event.id and visible(y)
        ]
        if year:
            return next((y for y in years if y.year == year), None)
        return max(years, key=lambda y: y.date_time, default=None)

    def _event_chain(self, slug: str) -> Optional[Tuple[Account, Event]]:
        event = self._event_by_slug(slug)
        account = self.accounts.get(event.account_id) if event else None
        if not visible(event, account):
            return None
        return account, event

    def get_account_and_event(self, slug: str) -> Optional[Tuple[Account, Event]]:
        with self._locked("get_account_and_event"):
            chain = self._event_chain(slug)
            if chain is None:
                return None
            account, event = chain
            return replace(account), replace(event)

    def get_account_event_and_year(
        self, slug: str, year: Optional[str] = None
    ) -> Optional[Tuple[Account, Event, EventYear]]:
        with self._locked("get_account_event_and_year"):
            chain = self._event_chain(slug)
            if chain is None:
                return None
            account, event = chain
            match = self._select_year(event, year)
            if match is None:
                return None
            return replace(account), replace(event), replace(match)

    def get_event_and_year(
        self, slug: str, year: Optional[str] = None
    ) -> Optional[Tuple[Event, EventYear]]:
        with self._locked("get_event_and_year"):
            event = self._event_by_slug(slug)
            if not visible(event):
                return None
            match = self._select_year(event, year)
            if match is None:
                return None
            return replace(event), replace(match)
