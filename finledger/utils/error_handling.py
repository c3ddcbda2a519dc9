"""
FinLedger - Error Handling

Centralized exception hierarchy for the ledger reconciliation and
statement engine:
- Custom exception hierarchy with stable error codes
- Structured error payloads for logging and for the collaborating HTTP layer
- Database error wrapping for the SQL store adapters
"""

from datetime import datetime, timezone
from enum import Enum
from http import HTTPStatus
from typing import Any, Dict, Optional, Union
from uuid import UUID
import logging

from sqlalchemy.exc import SQLAlchemyError, OperationalError, InterfaceError

# Configure logging
logger = logging.getLogger("finledger.errors")


class ErrorCode(str, Enum):
    """Standardized error codes for the library"""

    # Validation Errors
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_DATE_RANGE = "INVALID_DATE_RANGE"
    INVALID_AMOUNT = "INVALID_AMOUNT"
    INVALID_TAX_CONFIG = "INVALID_TAX_CONFIG"
    INVALID_RULE_SET = "INVALID_RULE_SET"

    # Resource Errors
    NOT_FOUND = "NOT_FOUND"
    OWNER_NOT_FOUND = "OWNER_NOT_FOUND"
    VERSION_CONFLICT = "VERSION_CONFLICT"

    # Ledger Errors
    MALFORMED_LEDGER_ENTRY = "MALFORMED_LEDGER_ENTRY"

    # Statement Errors
    STATEMENT_STAGE_FAILED = "STATEMENT_STAGE_FAILED"

    # Database Errors
    DATABASE_ERROR = "DATABASE_ERROR"
    CONNECTION_ERROR = "CONNECTION_ERROR"

    # Internal Errors
    INTERNAL_ERROR = "INTERNAL_ERROR"


class AppException(Exception):
    """Base exception for all library exceptions"""

    retryable: bool = False

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        status_code: int = HTTPStatus.INTERNAL_SERVER_ERROR,
        details: Optional[Dict[str, Any]] = None,
        field: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        self.code = code
        self.message = message
        self.status_code = int(status_code)
        self.details = details or {}
        self.field = field
        self.original_error = original_error
        self.timestamp = datetime.now(timezone.utc)
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to a dictionary for structured logs and responses"""
        result = {
            "code": self.code.value,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.field:
            result["field"] = self.field
        if self.details:
            result["details"] = self.details
        return result


# ============================================================================
# Validation Exceptions
# ============================================================================

class ValidationFailure(AppException):
    """Inputs are inconsistent; rejected before any computation begins"""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        code: ErrorCode = ErrorCode.VALIDATION_ERROR,
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=HTTPStatus.UNPROCESSABLE_ENTITY,
            details=details,
            field=field,
        )


class InvalidDateRangeException(ValidationFailure):
    """Invalid date range"""

    def __init__(self, start_date: str, end_date: str, message: Optional[str] = None):
        super().__init__(
            message=message or f"Invalid date range: {start_date} to {end_date}. End date must not precede start date.",
            code=ErrorCode.INVALID_DATE_RANGE,
            details={"start_date": start_date, "end_date": end_date},
        )


class InvalidTaxConfigException(ValidationFailure):
    """Tax bracket table or flat rate is unusable"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            field="tax_config",
            code=ErrorCode.INVALID_TAX_CONFIG,
            details=details,
        )


class InvalidRuleSetException(ValidationFailure):
    """Classification rule document failed validation"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            field="rule_set",
            code=ErrorCode.INVALID_RULE_SET,
            details=details,
        )


# ============================================================================
# Resource Exceptions
# ============================================================================

class NotFoundException(AppException):
    """Resource not found exception"""

    def __init__(
        self,
        resource_type: str,
        resource_id: Optional[Union[str, UUID]] = None,
        message: Optional[str] = None,
        code: ErrorCode = ErrorCode.NOT_FOUND,
    ):
        if message is None:
            if resource_id:
                message = f"{resource_type} with ID '{resource_id}' not found"
            else:
                message = f"{resource_type} not found"
        super().__init__(
            code=code,
            message=message,
            status_code=HTTPStatus.NOT_FOUND,
            details={"resource_type": resource_type, "resource_id": str(resource_id) if resource_id else None},
        )


class OwnerNotFoundException(NotFoundException):
    """Account owner (customer or supplier) not found"""

    def __init__(self, owner_id: Union[str, UUID]):
        super().__init__(
            resource_type="Account owner",
            resource_id=owner_id,
            code=ErrorCode.OWNER_NOT_FOUND,
        )


class ConcurrentUpdateConflict(AppException):
    """Optimistic version token changed between read and conditional write"""

    retryable = True

    def __init__(
        self,
        resource_id: Union[str, UUID],
        expected_version: Optional[int] = None,
        message: Optional[str] = None,
    ):
        super().__init__(
            code=ErrorCode.VERSION_CONFLICT,
            message=message or f"Concurrent update conflict while correcting balance of '{resource_id}'",
            status_code=HTTPStatus.CONFLICT,
            details={"resource_id": str(resource_id), "expected_version": expected_version},
        )


# ============================================================================
# Ledger Exceptions
# ============================================================================

class MalformedLedgerEntry(AppException):
    """
    Ledger entry that cannot be replayed.

    Replay never raises this; it is collected on the replay result so the
    entry is skipped and reported.
    """

    def __init__(
        self,
        entry_id: Union[str, UUID, None],
        reason: str,
        kind: Optional[str] = None,
    ):
        super().__init__(
            code=ErrorCode.MALFORMED_LEDGER_ENTRY,
            message=f"Malformed ledger entry '{entry_id}': {reason}",
            status_code=HTTPStatus.UNPROCESSABLE_ENTITY,
            details={"entry_id": str(entry_id) if entry_id else None, "kind": kind, "reason": reason},
        )
        self.entry_id = entry_id
        self.reason = reason


# ============================================================================
# Statement Exceptions
# ============================================================================

class StatementStageError(AppException):
    """A load-bearing statement stage (revenue, COGS) failed"""

    def __init__(self, stage: str, original_error: Exception):
        super().__init__(
            code=ErrorCode.STATEMENT_STAGE_FAILED,
            message=f"P&L stage '{stage}' failed: {original_error}",
            details={"stage": stage, "error_type": type(original_error).__name__},
            original_error=original_error,
        )
        self.stage = stage


# ============================================================================
# Database Exceptions
# ============================================================================

class DatabaseException(AppException):
    """Database operation failed"""

    def __init__(
        self,
        message: str = "A database error occurred",
        code: ErrorCode = ErrorCode.DATABASE_ERROR,
        original_error: Optional[Exception] = None,
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=HTTPStatus.SERVICE_UNAVAILABLE,
            original_error=original_error,
        )


class ConnectionException(DatabaseException):
    """Database connection failed"""

    retryable = True

    def __init__(self, original_error: Optional[Exception] = None):
        super().__init__(
            message="Could not connect to the database",
            code=ErrorCode.CONNECTION_ERROR,
            original_error=original_error,
        )


def wrap_database_error(exc: SQLAlchemyError, operation: str) -> DatabaseException:
    """Translate a SQLAlchemy error raised by a store into a library exception."""
    logger.error(f"Database error during {operation}: {exc}")
    if isinstance(exc, (OperationalError, InterfaceError)):
        return ConnectionException(original_error=exc)
    return DatabaseException(
        message=f"Database error during {operation}",
        original_error=exc,
    )


def describe_error(exc: Exception) -> Dict[str, Any]:
    """Structured description of any exception for batch error lists."""
    if isinstance(exc, AppException):
        return {"code": exc.code.value, "error": exc.message, "retryable": exc.retryable}
    return {"code": ErrorCode.INTERNAL_ERROR.value, "error": str(exc) or type(exc).__name__, "retryable": False}
