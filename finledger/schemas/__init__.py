"""
FinLedger - Schemas

Value types shared by the services and the store adapters.
"""

from finledger.schemas.ledger import (
    AccountBalanceSnapshot,
    LedgerEntry,
    LedgerEntryKind,
    LedgerEntryStatus,
    OwnerRef,
    OwnerType,
    VersionedBalance,
)
from finledger.schemas.period import Period, PeriodType
from finledger.schemas.statement import PLStatement, StatementLine, StoredStatementSummary
from finledger.schemas.transaction import (
    Account,
    AccountCategory,
    AccountingTransaction,
    AccountType,
    Budget,
    BudgetItem,
    Classification,
    ExpenseType,
    Product,
    PurchaseInvoice,
    PurchaseInvoiceKind,
    PurchaseOrder,
    ReturnOrigin,
    ReturnRecord,
    SalesOrder,
    SalesOrderItem,
    TransactionSide,
    TransactionStatus,
)

__all__ = [
    "AccountBalanceSnapshot",
    "LedgerEntry",
    "LedgerEntryKind",
    "LedgerEntryStatus",
    "OwnerRef",
    "OwnerType",
    "VersionedBalance",
    "Period",
    "PeriodType",
    "PLStatement",
    "StatementLine",
    "StoredStatementSummary",
    "Account",
    "AccountCategory",
    "AccountingTransaction",
    "AccountType",
    "Budget",
    "BudgetItem",
    "Classification",
    "ExpenseType",
    "Product",
    "PurchaseInvoice",
    "PurchaseInvoiceKind",
    "PurchaseOrder",
    "ReturnOrigin",
    "ReturnRecord",
    "SalesOrder",
    "SalesOrderItem",
    "TransactionSide",
    "TransactionStatus",
]
