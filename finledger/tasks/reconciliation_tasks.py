"""
FinLedger - Reconciliation Tasks

Celery entry points for the nightly all-owner run and for on-demand
single-owner reconciliation.
"""

import asyncio
import logging
from typing import Any, Dict, Optional
from uuid import UUID

from celery import shared_task

from finledger.config import settings
from finledger.database import async_session_factory, close_db
from finledger.logging_config import configure_logging
from finledger.schemas.ledger import OwnerType
from finledger.services.audit_service import SessionScopedAuditSink
from finledger.services.balance_reconstructor import BalanceReconstructor, ReplayStrategy
from finledger.services.reconciliation_service import ReconciliationService
from finledger.stores.sql import SqlBalanceStore, SqlLedgerStore
from finledger.utils.error_handling import ConcurrentUpdateConflict

logger = logging.getLogger(__name__)


def run_async(coro):
    """Helper to run async functions in Celery tasks."""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def build_reconciliation_service(session_factory=None) -> ReconciliationService:
    """Reconciliation service over per-call database sessions."""
    session_factory = session_factory or async_session_factory
    return ReconciliationService(
        ledger_store=SqlLedgerStore(session_factory=session_factory),
        balance_store=SqlBalanceStore(session_factory=session_factory),
        audit_sink=SessionScopedAuditSink(session_factory),
        reconstructor=BalanceReconstructor(ReplayStrategy(settings.replay_strategy)),
    )


# ===========================================
# RECONCILIATION TASKS
# ===========================================

@shared_task(name='finledger.tasks.reconciliation_tasks.reconcile_all_balances_task')
def reconcile_all_balances_task(
    owner_type: Optional[str] = None,
    auto_correct: Optional[bool] = None,
) -> Dict[str, Any]:
    """Reconcile every owner's cached balance against its ledger."""
    configure_logging()
    return run_async(_reconcile_all_balances(owner_type, auto_correct))


async def _reconcile_all_balances(
    owner_type: Optional[str],
    auto_correct: Optional[bool],
    session_factory=None,
) -> Dict[str, Any]:
    """Async implementation of the all-owner run."""
    try:
        service = build_reconciliation_service(session_factory)
        result = await service.reconcile_all(
            owner_filter=OwnerType(owner_type) if owner_type else None,
            auto_correct=settings.reconciliation_auto_correct if auto_correct is None else auto_correct,
            alert_on_discrepancy=settings.reconciliation_alert_on_discrepancy,
        )
        return result.to_dict()
    finally:
        if session_factory is None:
            await close_db()


@shared_task(
    bind=True,
    name='finledger.tasks.reconciliation_tasks.reconcile_owner_task',
    max_retries=3,
)
def reconcile_owner_task(self, owner_id: str, auto_correct: bool = False) -> Dict[str, Any]:
    """Reconcile one owner; retried when a concurrent write wins the race."""
    configure_logging()
    try:
        return run_async(_reconcile_owner(UUID(owner_id), auto_correct))
    except ConcurrentUpdateConflict as exc:
        logger.warning(f"Retrying reconciliation of {owner_id} after version conflict")
        raise self.retry(exc=exc)


async def _reconcile_owner(owner_id: UUID, auto_correct: bool, session_factory=None) -> Dict[str, Any]:
    """Async implementation of single-owner reconciliation."""
    try:
        service = build_reconciliation_service(session_factory)
        result = await service.reconcile_one(
            owner_id,
            auto_correct=auto_correct,
            alert_on_discrepancy=settings.reconciliation_alert_on_discrepancy,
        )
        return result.to_dict()
    finally:
        if session_factory is None:
            await close_db()
