"""
FinLedger - Utilities
"""

from finledger.utils.error_handling import (
    AppException,
    ErrorCode,
    ValidationFailure,
    InvalidDateRangeException,
    InvalidTaxConfigException,
    InvalidRuleSetException,
    NotFoundException,
    OwnerNotFoundException,
    ConcurrentUpdateConflict,
    MalformedLedgerEntry,
    StatementStageError,
    DatabaseException,
    ConnectionException,
)

__all__ = [
    "AppException",
    "ErrorCode",
    "ValidationFailure",
    "InvalidDateRangeException",
    "InvalidTaxConfigException",
    "InvalidRuleSetException",
    "NotFoundException",
    "OwnerNotFoundException",
    "ConcurrentUpdateConflict",
    "MalformedLedgerEntry",
    "StatementStageError",
    "DatabaseException",
    "ConnectionException",
]
