"""
FinLedger - Database Models

All SQLAlchemy models are imported here so metadata.create_all sees them.
"""

from finledger.models.base import BaseModel, TimestampMixin
from finledger.models.ledger import AccountOwner, LedgerEntryRecord
from finledger.models.accounting import AccountingTransaction, ChartOfAccounts
from finledger.models.sales import Product, SalesOrder, SalesOrderItem
from finledger.models.purchasing import PurchaseInvoice, PurchaseOrder, ReturnRecord
from finledger.models.reporting import Budget, BudgetItem, ClassificationRuleDocument, FinancialStatementRecord
from finledger.models.audit import AuditAction, AuditLog

__all__ = [
    "BaseModel",
    "TimestampMixin",
    "AccountOwner",
    "LedgerEntryRecord",
    "AccountingTransaction",
    "ChartOfAccounts",
    "Product",
    "SalesOrder",
    "SalesOrderItem",
    "PurchaseInvoice",
    "PurchaseOrder",
    "ReturnRecord",
    "Budget",
    "BudgetItem",
    "ClassificationRuleDocument",
    "FinancialStatementRecord",
    "AuditAction",
    "AuditLog",
]
