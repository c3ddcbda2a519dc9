"""
FinLedger - Stores

Collaborator interfaces and their SQLAlchemy implementations.
"""

from finledger.stores.base import (
    AuditSink,
    BalanceStore,
    BudgetStore,
    LedgerStore,
    RuleMetadataStore,
    StatementStore,
    TransactionStore,
)
from finledger.stores.sql import (
    SqlBalanceStore,
    SqlBudgetStore,
    SqlLedgerStore,
    SqlRuleMetadataStore,
    SqlStatementStore,
    SqlTransactionStore,
)

__all__ = [
    "AuditSink",
    "BalanceStore",
    "BudgetStore",
    "LedgerStore",
    "RuleMetadataStore",
    "StatementStore",
    "TransactionStore",
    "SqlBalanceStore",
    "SqlBudgetStore",
    "SqlLedgerStore",
    "SqlRuleMetadataStore",
    "SqlStatementStore",
    "SqlTransactionStore",
]
