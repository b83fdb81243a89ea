from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator, Optional

from raceauth.storage.errors import (
    ConstraintViolation,
    RowCountMismatch,
    StoreUnavailable,
)


class ServiceError(Exception):
    """Base class for credential-layer exceptions.

    Each subclass carries the HTTP ``status_code`` and stable ``error_code``
    that a transport layer should surface:
    - validation_error (400)
    - unauthorized (401)
    - not_found (404)
    - conflict (409)
    - invalid_state (409)
    - integrity_error (409)
    - unavailable (503)
    """

    status_code: int = 400
    error_code: str = "validation_error"

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        detail: Optional[dict] = None,
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        self.detail = detail or {}


class ValidationError(ServiceError):
    """Request validation failed (400)."""
    status_code = 400
    error_code = "validation_error"


class AuthenticationError(ServiceError):
    """Credentials missing or wrong (401)."""
    status_code = 401
    error_code = "unauthorized"


class NotFoundError(ServiceError):
    """A mutation targeted no visible row (404)."""
    status_code = 404
    error_code = "not_found"


class ConflictError(ServiceError):
    """Unique email or key value already taken (409)."""
    status_code = 409
    error_code = "conflict"


class StateError(ServiceError):
    """Transition not allowed from the account's current state (409)."""
    status_code = 409
    error_code = "invalid_state"


class IntegrityError(ServiceError):
    """A single-row mutation touched more than one row (409)."""
    status_code = 409
    error_code = "integrity_error"


class TransientError(ServiceError):
    """The store timed out or was unreachable (503)."""
    status_code = 503
    error_code = "unavailable"


@contextmanager
def storage_errors(entity: str) -> Iterator[None]:
    """Translate storage exceptions raised inside the block to service errors."""

    try:
        yield
    except ConstraintViolation as exc:
        raise ConflictError(
            f"{entity} conflicts with an existing record", detail=exc.detail
        ) from exc
    except RowCountMismatch as exc:
        detail = {"entity": exc.entity, "affected": exc.actual}
        if exc.actual < exc.expected:
            raise NotFoundError(f"{exc.entity} not found", detail=detail) from exc
        raise IntegrityError(
            f"{exc.entity} mutation affected {exc.actual} rows", detail=detail
        ) from exc
    except StoreUnavailable as exc:
        raise TransientError(
            f"store unavailable during {exc.operation}",
            detail={"operation": exc.operation, "reason": exc.reason},
        ) from exc


__all__ = [
    "ServiceError",
    "ValidationError",
    "AuthenticationError",
    "NotFoundError",
    "ConflictError",
    "StateError",
    "IntegrityError",
    "TransientError",
    "storage_errors",
]
