from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Account:
    id: str
    name: str
    email: str
    password_hash: str = field(default="", repr=False)
    role: str = "free"
    wrong_pass_attempts: int = 0
    locked: bool = False
    token: str = field(default="", repr=False)
    refresh_token: str = field(default="", repr=False)
    deleted: bool = False
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def has_session(self) -> bool:
        return bool(self.token or self.refresh_token)


@dataclass
class ApiKey:
    id: str
    account_id: str
    value: str = field(repr=False)
    type: str = "default"
    allowed_hosts: str = ""
    valid_until: Optional[datetime] = None
    name: str = ""
    deleted: bool = False
    created_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class KeyUpdate:
    """Mutable attributes of an API key.

    A key's ``value`` and ``account_id`` are fixed at creation and have no
    field here.
    """

    type: str
    allowed_hosts: str = ""
    valid_until: Optional[datetime] = None
    name: str = ""


@dataclass
class Event:
    id: str
    account_id: str
    name: str
    slug: str
    access_restricted: bool = False
    deleted: bool = False
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class EventYear:
    id: str
    event_id: str
    year: str
    date_time: datetime
    live: bool = False
    deleted: bool = False
