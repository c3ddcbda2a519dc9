"""
FinLedger - Audit Trail Service

Audit sinks for balance discrepancies and corrections.

Reconciliation treats auditing as fire-and-forget: a failing sink is logged
and never fails the reconciliation that triggered it.
"""

import logging
import uuid
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from finledger.models.audit import AuditAction, AuditLog
from finledger.stores.base import AuditSink
from finledger.utils.error_handling import wrap_database_error

logger = logging.getLogger(__name__)

DISCREPANCY_REASON_PREFIX = "Balance discrepancy detected"
CORRECTION_REASON_PREFIX = "Balance auto-corrected during reconciliation"


def _plain(values: Dict[str, Any]) -> Dict[str, Any]:
    """JSON-safe copy of a before/after mapping."""
    return {
        key: float(value) if isinstance(value, Decimal) else value
        for key, value in (values or {}).items()
    }


def calculate_changes(old_values: Dict[str, Any], new_values: Dict[str, Any]) -> Dict[str, Any]:
    """Calculate what changed between old and new values."""
    changes = {}

    all_keys = set(old_values.keys()) | set(new_values.keys())

    for key in sorted(all_keys):
        old_val = old_values.get(key)
        new_val = new_values.get(key)

        if old_val != new_val:
            changes[key] = {
                "old": old_val,
                "new": new_val,
            }

    return changes


class FireAndForgetAuditSink:
    """Wraps a sink so that recording never raises."""

    def __init__(self, sink: AuditSink):
        self.sink = sink

    async def record(
        self,
        entity_id: uuid.UUID,
        before: Dict[str, Any],
        after: Dict[str, Any],
        reason: str,
    ) -> bool:
        try:
            await self.sink.record(entity_id, before, after, reason)
            return True
        except Exception as exc:
            logger.error(f"Audit sink failed for {entity_id}: {exc}", exc_info=True)
            return False


class LoggingAuditSink:
    """Audit sink that writes records to the log only."""

    def __init__(self, logger_name: str = "finledger.audit"):
        self.logger = logging.getLogger(logger_name)

    async def record(
        self,
        entity_id: uuid.UUID,
        before: Dict[str, Any],
        after: Dict[str, Any],
        reason: str,
    ) -> None:
        self.logger.info(
            f"AUDIT {entity_id}: {reason} | before={_plain(before)} after={_plain(after)}"
        )


class AuditService:
    """Audit sink backed by the audit_logs table."""

    def __init__(self, db: AsyncSession, entity_type: str = "account_owner"):
        self.db = db
        self.entity_type = entity_type

    async def record(
        self,
        entity_id: uuid.UUID,
        before: Dict[str, Any],
        after: Dict[str, Any],
        reason: str,
    ) -> None:
        """
        Persist one audit record.

        Args:
            entity_id: Owner whose balance is affected
            before: Cached balance before the event
            after: Replayed (or corrected) balance
            reason: Human-readable reason
        """
        await self.log_action(
            entity_id=entity_id,
            action=(
                AuditAction.BALANCE_CORRECTION
                if reason.startswith(CORRECTION_REASON_PREFIX)
                else AuditAction.BALANCE_DISCREPANCY
            ),
            old_values=_plain(before),
            new_values=_plain(after),
            reason=reason,
        )

    async def log_action(
        self,
        entity_id: uuid.UUID,
        action: AuditAction,
        old_values: Optional[Dict[str, Any]] = None,
        new_values: Optional[Dict[str, Any]] = None,
        reason: Optional[str] = None,
    ) -> AuditLog:
        changes = None
        if old_values and new_values:
            changes = calculate_changes(old_values, new_values)

        audit_log = AuditLog(
            target_entity_type=self.entity_type,
            target_entity_id=entity_id,
            action=action.value,
            old_values=old_values,
            new_values=new_values,
            changes=changes,
            reason=reason,
        )

        try:
            self.db.add(audit_log)
            await self.db.flush()
        except SQLAlchemyError as exc:
            raise wrap_database_error(exc, "audit log write") from exc

        return audit_log

    async def get_entity_history(self, entity_id: uuid.UUID, limit: int = 50) -> List[AuditLog]:
        """Audit records of one owner, newest first."""
        result = await self.db.execute(
            select(AuditLog)
            .where(AuditLog.target_entity_id == entity_id)
            .order_by(AuditLog.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())


class SessionScopedAuditSink:
    """Writes each audit record in its own committed transaction."""

    def __init__(self, session_factory: async_sessionmaker, entity_type: str = "account_owner"):
        self.session_factory = session_factory
        self.entity_type = entity_type

    async def record(
        self,
        entity_id: uuid.UUID,
        before: Dict[str, Any],
        after: Dict[str, Any],
        reason: str,
    ) -> None:
        async with self.session_factory() as session:
            async with session.begin():
                await AuditService(session, self.entity_type).record(entity_id, before, after, reason)
