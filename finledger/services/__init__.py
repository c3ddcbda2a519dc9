"""
FinLedger - Services Package

Balance reconstruction, reconciliation, classification and statement services.
"""

from finledger.services.audit_service import AuditService, LoggingAuditSink, SessionScopedAuditSink
from finledger.services.balance_reconstructor import BalanceReconstructor, ReplayResult, ReplayStrategy
from finledger.services.budget_comparison_service import BudgetComparisonService
from finledger.services.classification_rules import (
    DEFAULT_RULE_SET,
    ClassificationRuleSet,
    RuleSetProvider,
)
from finledger.services.expense_classifier import ExpenseClassifier
from finledger.services.pl_statement_service import PLStatementService, StatementOptions
from finledger.services.reconciliation_service import (
    BatchResult,
    ReconciliationReport,
    ReconciliationResult,
    ReconciliationService,
)
from finledger.services.tax_calculators import (
    IncomeTaxCalculator,
    IncomeTaxConfig,
    SalesTaxService,
)

__all__ = [
    "AuditService",
    "LoggingAuditSink",
    "SessionScopedAuditSink",
    "BalanceReconstructor",
    "ReplayResult",
    "ReplayStrategy",
    "BudgetComparisonService",
    "DEFAULT_RULE_SET",
    "ClassificationRuleSet",
    "RuleSetProvider",
    "ExpenseClassifier",
    "PLStatementService",
    "StatementOptions",
    "BatchResult",
    "ReconciliationReport",
    "ReconciliationResult",
    "ReconciliationService",
    "IncomeTaxCalculator",
    "IncomeTaxConfig",
    "SalesTaxService",
]
