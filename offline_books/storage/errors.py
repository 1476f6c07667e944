"""
Error kinds raised by the record store.

Every failure the store reports is a ``StoreError`` tagged with one of a
closed set of kinds, so callers can branch on ``error.kind`` or on the
exception class.
"""

from enum import Enum
from typing import Iterable, Optional


class ErrorKind(Enum):
    """Closed set of failure kinds."""
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    CONSTRAINT = "constraint"
    ENGINE = "engine"
    DECODE = "decode"


class StoreError(Exception):
    """Base class for all record store failures."""
    kind: ErrorKind = ErrorKind.ENGINE

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(StoreError):
    """Missing required field, malformed items or an invalid value."""
    kind = ErrorKind.VALIDATION


class InvalidStatusError(ValidationError):
    """Status value outside the entity's fixed set of labels."""

    def __init__(self, status: object, allowed: Iterable[str]):
        self.status = status
        self.allowed = tuple(allowed)
        super().__init__(
            f"Invalid status: {status}. Must be one of: {', '.join(self.allowed)}"
        )


class NotFoundError(StoreError):
    """Identifier does not resolve to a stored record."""
    kind = ErrorKind.NOT_FOUND

    def __init__(self, store: str, key: Optional[str]):
        self.store = store
        self.key = key
        super().__init__(f"Record '{key}' not found in store '{store}'")


class ConstraintError(StoreError):
    """Duplicate primary key on a strict insert."""
    kind = ErrorKind.CONSTRAINT


class EngineError(StoreError):
    """Database could not be opened or a transaction failed."""
    kind = ErrorKind.ENGINE


class DecodeError(StoreError):
    """Backup payload could not be decoded."""
    kind = ErrorKind.DECODE
