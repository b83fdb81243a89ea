from __future__ import annotations

import re
import uuid
from datetime import datetime
from typing import List, Optional

from raceauth.logging import get_logger
from raceauth.service.errors import ValidationError, storage_errors
from raceauth.service.store import CredentialStore
from raceauth.storage.models import ApiKey, KeyUpdate, utcnow

_HOST_SEPARATORS = re.compile(r"[\s,]+")


def generate_key_value() -> str:
    return str(uuid.uuid4())


def parse_allowed_hosts(allowed_hosts: str) -> List[str]:
    return [host.lower() for host in _HOST_SEPARATORS.split(allowed_hosts or "") if host]


def key_permits(
    key: ApiKey, *, now: Optional[datetime] = None, host: Optional[str] = None
) -> bool:
    """Whether ``key`` may be used at ``now`` from ``host``.

    The store returns expired keys; callers enforce expiry and the host
    allow-list here. An empty allow-list admits every host.
    """

    if key.deleted:
        return False
    current = now or utcnow()
    if key.valid_until is not None and current >= key.valid_until:
        return False
    hosts = parse_allowed_hosts(key.allowed_hosts)
    if not hosts:
        return True
    return bool(host) and host.lower() in hosts


class ApiKeyService:
    def __init__(self, store: CredentialStore) -> None:
        self.store = store
        self.logger = get_logger(__name__)

    generate_key_value = staticmethod(generate_key_value)
    key_permits = staticmethod(key_permits)

    def create_key(
        self,
        account_id: str,
        value: str,
        type: str,
        allowed_hosts: str,
        valid_until: Optional[datetime] = None,
        name: str = "",
    ) -> ApiKey:
        if not value:
            raise ValidationError("key value is required", detail={"field": "value"})
        if valid_until is not None and valid_until.tzinfo is None:
            raise ValidationError(
                "valid_until must be timezone-aware", detail={"field": "valid_until"}
            )
        with storage_errors("api_key"):
            key = self.store.create_key(
                account_id, value, type, allowed_hosts, valid_until, name
            )
        self.logger.info(
            "api_key_created", account_id=account_id, key_id=key.id, key_type=type
        )
        return key

    def get_key(self, value: str) -> Optional[ApiKey]:
        with storage_errors("api_key"):
            return self.store.get_key(value)

    def get_account_keys(self, account_id: str) -> List[ApiKey]:
        with storage_errors("api_key"):
            return self.store.list_account_keys(account_id)

    def update_key(self, value: str, changes: KeyUpdate) -> ApiKey:
        if changes.valid_until is not None and changes.valid_until.tzinfo is None:
            raise ValidationError(
                "valid_until must be timezone-aware", detail={"field": "valid_until"}
            )
        with storage_errors("api_key"):
            key = self.store.update_key(value, changes)
        self.logger.info("api_key_updated", key_id=key.id, key_type=changes.type)
        return key

    def soft_delete_key(self, value: str) -> None:
        with storage_errors("api_key"):
            self.store.soft_delete_key(value)
        self.logger.info("api_key_revoked", key_value=value)
