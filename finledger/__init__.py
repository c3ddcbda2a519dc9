"""
FinLedger - Ledger Reconciliation & P&L Engine

Rebuilds owner balances from their sub-ledger, reconciles them against the
cached balances, and produces profit and loss statements from postings.
"""

__version__ = "1.0.0"
