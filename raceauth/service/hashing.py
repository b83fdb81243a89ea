from __future__ import annotations

from typing import Protocol

from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHash, VerificationError, VerifyMismatchError

from raceauth.logging import get_logger


class CredentialHasher(Protocol):
    def hash(self, plaintext: str) -> str: ...

    def verify(self, digest: str, plaintext: str) -> bool: ...

    def is_digest(self, value: str) -> bool: ...


class Argon2Hasher:
    """argon2id password hashing via argon2-cffi."""

    prefix = "$argon2"

    def __init__(self, hasher: PasswordHasher | None = None) -> None:
        self._pwd_hasher = hasher or PasswordHasher(type=Type.ID)
        self.logger = get_logger(__name__)

    def hash(self, plaintext: str) -> str:
        return self._pwd_hasher.hash(plaintext)

    def verify(self, digest: str, plaintext: str) -> bool:
        try:
            return self._pwd_hasher.verify(digest, plaintext)
        except VerifyMismatchError:
            return False
        except (InvalidHash, VerificationError):
            self.logger.warning("password_digest_unverifiable")
            return False

    def is_digest(self, value: str) -> bool:
        return bool(value) and value.startswith(self.prefix)
