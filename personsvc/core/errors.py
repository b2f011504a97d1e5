"""
Person Service Errors

Every failure surfaced by the stores and the mutation coordinator is a
PersonServiceError. Callers tell "nothing found" apart from "operation
failed" by return value (None / False / []) versus exception.

    PersonServiceError
    ├── DatabaseConnectionError
    ├── TransactionError
    │   └── RollbackError
    ├── StorageError
    │   ├── ConstraintViolationError
    │   ├── PersonNotFoundError
    │   └── SchemaMismatchError
    └── InvalidRequestError
"""

from enum import Enum
from typing import Optional
from uuid import UUID


class ErrorCode(str, Enum):
    """Stable error codes for callers that map errors to responses."""

    CONNECTION_ERROR = "CONNECTION_ERROR"
    TRANSACTION_ERROR = "TRANSACTION_ERROR"
    ROLLBACK_ERROR = "ROLLBACK_ERROR"
    STORAGE_ERROR = "STORAGE_ERROR"
    CONSTRAINT_VIOLATION = "CONSTRAINT_VIOLATION"
    PERSON_NOT_FOUND = "PERSON_NOT_FOUND"
    SCHEMA_MISMATCH = "SCHEMA_MISMATCH"
    INVALID_REQUEST = "INVALID_REQUEST"


# Codes a caller should report as its own fault rather than a server failure
CLIENT_ERROR_CODES = frozenset({
    ErrorCode.CONSTRAINT_VIOLATION,
    ErrorCode.PERSON_NOT_FOUND,
    ErrorCode.INVALID_REQUEST,
})


class PersonServiceError(Exception):
    """
    Base exception for person service errors.

    Attributes:
        message: Human-readable description
        operation: Name of the operation that failed, when known
    """

    code: ErrorCode = ErrorCode.STORAGE_ERROR

    def __init__(self, message: str, operation: Optional[str] = None):
        self.message = message
        self.operation = operation
        super().__init__(message)

    @property
    def is_client_error(self) -> bool:
        return self.code in CLIENT_ERROR_CODES


class DatabaseConnectionError(PersonServiceError):
    """Pool exhausted or connection-level failure. Never retried internally."""

    code = ErrorCode.CONNECTION_ERROR


class TransactionError(PersonServiceError):
    """
    Begin or commit failed.

    A commit failure means the mutation was not applied.
    """

    code = ErrorCode.TRANSACTION_ERROR


class RollbackError(TransactionError):
    """
    Rollback failed after another failure.

    Higher severity than the failure that triggered the rollback, which is
    kept in `original` (and chained as __cause__).
    """

    code = ErrorCode.ROLLBACK_ERROR

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        original: Optional[BaseException] = None
    ):
        super().__init__(message, operation)
        self.original = original


class StorageError(PersonServiceError):
    """A statement failed: constraint, serialization or write failure."""

    code = ErrorCode.STORAGE_ERROR


class ConstraintViolationError(StorageError):
    """Unique, not-null or check constraint violated (e.g. duplicate id)."""

    code = ErrorCode.CONSTRAINT_VIOLATION


class PersonNotFoundError(StorageError):
    """A write targeted a person that does not exist."""

    code = ErrorCode.PERSON_NOT_FOUND

    def __init__(self, person_id: UUID, operation: Optional[str] = None):
        super().__init__(f"Person with ID '{person_id}' not found", operation)
        self.person_id = person_id


class SchemaMismatchError(StorageError):
    """The database schema does not have the columns the stores expect."""

    code = ErrorCode.SCHEMA_MISMATCH


class InvalidRequestError(PersonServiceError):
    """Caller-supplied parameters are out of range."""

    code = ErrorCode.INVALID_REQUEST
