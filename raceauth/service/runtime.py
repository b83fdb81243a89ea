from __future__ import annotations

from typing import Optional
from urllib.parse import urlparse, urlunparse

from raceauth.config import Settings
from raceauth.logging import get_logger
from raceauth.service.accounts import AccountService
from raceauth.service.authz import AuthorizationResolver
from raceauth.service.events import EventDirectory
from raceauth.service.hashing import Argon2Hasher, CredentialHasher
from raceauth.service.keys import ApiKeyService
from raceauth.service.lockout import LoginSecurityController
from raceauth.service.sessions import SessionTokenManager
from raceauth.service.store import CredentialStore
from raceauth.storage.memory import MemoryStore
from raceauth.storage.postgres import PostgresStore

logger = get_logger(__name__)


def _mask_url_password(url: Optional[str]) -> Optional[str]:
    """Replace the password component of a connection URL with ``***``."""
    if not url:
        return url
    parsed = urlparse(url)
    if not parsed.password:
        return url
    netloc = parsed.hostname or ""
    if parsed.port:
        netloc = f"{netloc}:{parsed.port}"
    netloc = f"{parsed.username or ''}:***@{netloc}"
    return urlunparse(
        (
            parsed.scheme,
            netloc,
            parsed.path,
            parsed.params,
            parsed.query,
            parsed.fragment,
        )
    )


def build_store(settings: Settings) -> CredentialStore:
    if settings.use_memory_store:
        return MemoryStore(timeout_seconds=settings.store_timeout_seconds)
    return PostgresStore(
        settings.database_url,
        timeout_seconds=settings.store_timeout_seconds,
        min_size=settings.db_pool_min_size,
        max_size=settings.db_pool_max_size,
    )


class Runtime:
    """Owns the store handle and the services built on it."""

    def __init__(
        self,
        settings: Settings,
        *,
        store: Optional[CredentialStore] = None,
        hasher: Optional[CredentialHasher] = None,
    ) -> None:
        self.settings = settings
        store_type = "memory" if settings.use_memory_store else "postgres"
        try:
            self.store = store if store is not None else build_store(settings)
        except Exception as exc:
            logger.error(
                "runtime_store_init_failed",
                store_type=store_type,
                database_url=_mask_url_password(settings.database_url),
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise
        logger.info(
            "runtime_store_initialized",
            store_type=type(self.store).__name__,
            max_login_attempts=settings.max_login_attempts,
        )

        self.hasher = hasher or Argon2Hasher()
        self.accounts = AccountService(self.store, self.hasher)
        self.keys = ApiKeyService(self.store)
        self.lockout = LoginSecurityController(
            self.store, self.hasher, max_attempts=settings.max_login_attempts
        )
        self.sessions = SessionTokenManager(self.store, self.hasher)
        self.events = EventDirectory(self.store)
        self.authz = AuthorizationResolver(self.store)

    def close(self) -> None:
        self.store.close()
        logger.info("runtime_closed")

    def __enter__(self) -> "Runtime":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
