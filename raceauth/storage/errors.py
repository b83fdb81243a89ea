from __future__ import annotations

from typing import Any, Dict, Optional


class ConstraintViolation(Exception):
    """Raised when a storage-layer uniqueness or FK constraint is violated."""

    def __init__(self, message: str, detail: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail or {}


class RowCountMismatch(Exception):
    """A statement meant for exactly ``expected`` rows touched ``actual``."""

    def __init__(self, entity: str, actual: int, expected: int = 1):
        super().__init__(
            f"{entity}: expected {expected} affected row(s), observed {actual}"
        )
        self.entity = entity
        self.expected = expected
        self.actual = actual


class StoreUnavailable(Exception):
    """The backing store timed out or could not be reached."""

    def __init__(self, operation: str, reason: str):
        super().__init__(f"{operation}: {reason}")
        self.operation = operation
        self.reason = reason


def expect_one(entity: str, rowcount: int) -> None:
    if rowcount != 1:
        raise RowCountMismatch(entity, rowcount)


__all__ = [
    "ConstraintViolation",
    "RowCountMismatch",
    "StoreUnavailable",
    "expect_one",
]
