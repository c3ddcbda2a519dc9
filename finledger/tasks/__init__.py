"""
FinLedger - Background Tasks Package

Celery background tasks.
"""

from finledger.tasks.reconciliation_tasks import (
    reconcile_all_balances_task,
    reconcile_owner_task,
    run_async,
)

__all__ = [
    "reconcile_all_balances_task",
    "reconcile_owner_task",
    "run_async",
]
