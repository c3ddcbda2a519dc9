"""
FinLedger - Balance Reconciliation Service

Compares the cached balance on each owner record with a fresh replay of the
owner's ledger, reports drift and optionally corrects it.

Features:
- Single-owner reconciliation with per-field 0.01 tolerance
- Batch reconciliation over all owners, concurrent within a batch
- Optimistic compare-and-swap correction (never overwrites a concurrent write)
- Audit trail of discrepancies and corrections
- Cooperative cancellation between owners
"""

import asyncio
import inspect
import logging
import time
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union
from uuid import UUID

from finledger.config import settings
from finledger.schemas.ledger import AccountBalanceSnapshot, OwnerRef, OwnerType, VersionedBalance
from finledger.schemas.period import Period
from finledger.services.audit_service import (
    CORRECTION_REASON_PREFIX,
    DISCREPANCY_REASON_PREFIX,
    FireAndForgetAuditSink,
    LoggingAuditSink,
)
from finledger.services.balance_reconstructor import BalanceReconstructor, summarize_entries
from finledger.stores.base import AuditSink, BalanceStore, LedgerStore
from finledger.utils.error_handling import (
    ConcurrentUpdateConflict,
    MalformedLedgerEntry,
    OwnerNotFoundException,
    ValidationFailure,
    describe_error,
)
from finledger.utils.optimistic import compare_and_swap

logger = logging.getLogger(__name__)

BALANCE_FIELDS = ("pending_balance", "advance_balance", "current_balance")

AlertHook = Callable[["ReconciliationResult"], Union[None, Awaitable[None]]]


# ===========================================
# RESULT TYPES
# ===========================================

@dataclass
class ReconciliationResult:
    """Outcome of reconciling one owner."""
    owner_id: UUID
    owner_name: Optional[str]
    owner_type: OwnerType
    reconciliation_date: datetime
    cached: AccountBalanceSnapshot
    calculated: AccountBalanceSnapshot
    discrepancy: Dict[str, Decimal]
    transaction_count: int
    skipped: List[MalformedLedgerEntry] = field(default_factory=list)
    discrepancy_details: Optional[Dict[str, Decimal]] = None
    corrected: bool = False
    replay_strategy: Optional[str] = None

    @property
    def has_difference(self) -> bool:
        return self.discrepancy_details is not None

    @property
    def reconciled(self) -> bool:
        return not self.has_difference

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "owner_id": str(self.owner_id),
            "owner_name": self.owner_name,
            "owner_type": self.owner_type.value,
            "reconciliation_date": self.reconciliation_date.isoformat(),
            "current": self.cached.to_dict(),
            "calculated": self.calculated.to_dict(),
            "discrepancy": {key: float(value) for key, value in self.discrepancy.items()},
            "has_difference": self.has_difference,
            "transaction_count": self.transaction_count,
            "skipped_entries": [item.to_dict() for item in self.skipped],
            "reconciled": self.reconciled,
            "corrected": self.corrected,
            "replay_strategy": self.replay_strategy,
        }
        if self.discrepancy_details is not None:
            result["discrepancy_details"] = {
                key: float(value) for key, value in self.discrepancy_details.items()
            }
        return result


@dataclass
class BatchResult:
    """Counters and per-owner errors of a batch run."""
    total: int = 0
    reconciled: int = 0
    discrepancies: int = 0
    corrected: int = 0
    conflicts: int = 0
    processed: int = 0
    cancelled: bool = False
    errors: List[Dict[str, Any]] = field(default_factory=list)
    started_at: datetime = field(default_factory=datetime.utcnow)
    finished_at: Optional[datetime] = None
    duration_ms: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "processed": self.processed,
            "reconciled": self.reconciled,
            "discrepancies": self.discrepancies,
            "corrected": self.corrected,
            "conflicts": self.conflicts,
            "cancelled": self.cancelled,
            "errors": self.errors,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "duration_ms": self.duration_ms,
        }


@dataclass
class ReconciliationReport:
    """Reconciliation of one owner plus its activity within a period."""
    reconciliation: ReconciliationResult
    period: Period
    entry_count: int
    entry_summary: Dict[str, Dict[str, Any]]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "reconciliation": self.reconciliation.to_dict(),
            "period": self.period.to_dict(),
            "transactions": self.entry_count,
            "transaction_summary": {
                bucket: {"count": values["count"], "total": float(values["total"])}
                for bucket, values in self.entry_summary.items()
            },
        }


# ===========================================
# SERVICE
# ===========================================

class ReconciliationService:
    """
    Ledger-vs-cache reconciliation for customers and suppliers.

    Writes for one owner are serialized by an in-process lock; the
    compare-and-swap guards against writers in other processes.
    """

    def __init__(
        self,
        ledger_store: LedgerStore,
        balance_store: BalanceStore,
        audit_sink: Optional[AuditSink] = None,
        reconstructor: Optional[BalanceReconstructor] = None,
        tolerance: Optional[Decimal] = None,
        alert_hook: Optional[AlertHook] = None,
    ):
        self.ledger_store = ledger_store
        self.balance_store = balance_store
        self.audit = FireAndForgetAuditSink(audit_sink or LoggingAuditSink())
        self.reconstructor = reconstructor or BalanceReconstructor()
        self.tolerance = Decimal(tolerance if tolerance is not None else settings.reconciliation_tolerance)
        self.alert_hook = alert_hook
        # Per-owner lock and the number of callers holding or awaiting it
        self._locks: Dict[UUID, asyncio.Lock] = {}
        self._lock_users: Dict[UUID, int] = defaultdict(int)

    async def reconcile_one(
        self,
        owner_id: UUID,
        auto_correct: bool = False,
        alert_on_discrepancy: bool = True,
    ) -> ReconciliationResult:
        """
        Reconcile a single owner's cached balance against its ledger.

        Args:
            owner_id: Customer or supplier ID
            auto_correct: Write the replayed balance back when they differ
            alert_on_discrepancy: Invoke the alert hook when they differ

        Returns:
            ReconciliationResult

        Raises:
            OwnerNotFoundException: owner has no balance record
            ConcurrentUpdateConflict: balance changed between read and correction
        """
        lock = self._locks.setdefault(owner_id, asyncio.Lock())
        self._lock_users[owner_id] += 1
        try:
            async with lock:
                return await self._reconcile(owner_id, auto_correct, alert_on_discrepancy)
        finally:
            self._lock_users[owner_id] -= 1
            if not self._lock_users[owner_id]:
                del self._lock_users[owner_id]
                del self._locks[owner_id]

    async def _reconcile(
        self,
        owner_id: UUID,
        auto_correct: bool,
        alert_on_discrepancy: bool,
    ) -> ReconciliationResult:
        cached = await self.balance_store.get_balance(owner_id)
        if cached is None:
            raise OwnerNotFoundException(owner_id)

        entries = await self.ledger_store.list_entries(owner_id, include_reversed=False)
        replay = self.reconstructor.reconstruct(owner_id, entries)
        calculated = replay.snapshot

        discrepancy = {
            name: abs(getattr(cached.snapshot, name) - getattr(calculated, name))
            for name in BALANCE_FIELDS
        }

        result = ReconciliationResult(
            owner_id=owner_id,
            owner_name=cached.owner_name,
            owner_type=cached.owner_type,
            reconciliation_date=datetime.utcnow(),
            cached=cached.snapshot,
            calculated=calculated,
            discrepancy=discrepancy,
            transaction_count=len(entries),
            skipped=list(replay.skipped),
            replay_strategy=self.reconstructor.strategy.value,
        )

        if not any(value > self.tolerance for value in discrepancy.values()):
            return result

        result.discrepancy_details = {
            name: getattr(calculated, name) - getattr(cached.snapshot, name)
            for name in BALANCE_FIELDS
        }
        logger.warning(
            f"Balance discrepancy for {owner_id} ({cached.owner_name}): "
            f"pending {discrepancy['pending_balance']:.2f}, advance {discrepancy['advance_balance']:.2f}"
        )

        await self.audit.record(
            owner_id,
            cached.snapshot.to_dict(),
            calculated.to_dict(),
            f"{DISCREPANCY_REASON_PREFIX}: Pending {discrepancy['pending_balance']:.2f}, "
            f"Advance {discrepancy['advance_balance']:.2f}",
        )

        if alert_on_discrepancy:
            await self._alert(result)

        if auto_correct:
            await self._correct(cached, result)

        return result

    async def _correct(self, cached: VersionedBalance, result: ReconciliationResult) -> None:
        await compare_and_swap(
            self.balance_store.compare_and_swap,
            cached.owner_id,
            cached.version,
            result.calculated,
        )
        result.corrected = True
        logger.info(f"Balance of {cached.owner_id} corrected to {result.calculated.to_dict()}")

        details = {key: f"{value:.2f}" for key, value in result.discrepancy_details.items()}
        await self.audit.record(
            cached.owner_id,
            cached.snapshot.to_dict(),
            result.calculated.to_dict(),
            f"{CORRECTION_REASON_PREFIX}: {details}",
        )

    async def _alert(self, result: ReconciliationResult) -> None:
        amounts = {name: f"{value:.2f}" for name, value in result.discrepancy.items()}
        logger.error(
            f"BALANCE DISCREPANCY DETECTED: owner={result.owner_id} name={result.owner_name} discrepancy={amounts}"
        )
        if self.alert_hook is None:
            return
        try:
            outcome = self.alert_hook(result)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as exc:
            logger.error(f"Discrepancy alert hook failed for {result.owner_id}: {exc}", exc_info=True)

    async def reconcile_all(
        self,
        owner_filter: Optional[OwnerType] = None,
        auto_correct: bool = False,
        alert_on_discrepancy: bool = True,
        batch_size: Optional[int] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> BatchResult:
        """
        Reconcile every owner, ``batch_size`` owners at a time.

        A failure for one owner is recorded in ``errors`` and never aborts the
        run. Setting ``cancel_event`` stops the run before the next owner
        starts; owners already replaying finish normally.
        """
        batch_size = batch_size if batch_size is not None else settings.reconciliation_batch_size
        if batch_size < 1:
            raise ValidationFailure("batch_size must be at least 1", field="batch_size")

        clock = time.monotonic()
        results = BatchResult()
        owners = await self.balance_store.list_owners(owner_filter)
        results.total = len(owners)

        logger.info(f"Reconciling {results.total} owner balances in batches of {batch_size}")

        for start in range(0, len(owners), batch_size):
            if cancel_event is not None and cancel_event.is_set():
                results.cancelled = True
                break
            batch = owners[start:start + batch_size]
            await asyncio.gather(*(
                self._reconcile_listed(owner, auto_correct, alert_on_discrepancy, cancel_event, results)
                for owner in batch
            ))

        results.finished_at = datetime.utcnow()
        results.duration_ms = int((time.monotonic() - clock) * 1000)

        logger.info(
            f"Reconciliation finished: {results.reconciled} reconciled, {results.discrepancies} discrepancies, "
            f"{results.corrected} corrected, {results.conflicts} conflicts, {len(results.errors)} errors"
            f"{' (cancelled)' if results.cancelled else ''}"
        )
        return results

    async def _reconcile_listed(
        self,
        owner: OwnerRef,
        auto_correct: bool,
        alert_on_discrepancy: bool,
        cancel_event: Optional[asyncio.Event],
        results: BatchResult,
    ) -> None:
        if cancel_event is not None and cancel_event.is_set():
            results.cancelled = True
            return

        results.processed += 1
        try:
            reconciliation = await self.reconcile_one(
                owner.owner_id,
                auto_correct=auto_correct,
                alert_on_discrepancy=alert_on_discrepancy,
            )
        except ConcurrentUpdateConflict as exc:
            results.conflicts += 1
            results.errors.append(self._error_entry(owner, exc))
        except Exception as exc:
            logger.error(f"Reconciliation failed for {owner.owner_id}: {exc}", exc_info=True)
            results.errors.append(self._error_entry(owner, exc))
        else:
            if reconciliation.reconciled:
                results.reconciled += 1
            else:
                results.discrepancies += 1
                if reconciliation.corrected:
                    results.corrected += 1

    @staticmethod
    def _error_entry(owner: OwnerRef, exc: Exception) -> Dict[str, Any]:
        entry = {
            "owner_id": str(owner.owner_id),
            "owner_name": owner.name,
        }
        entry.update(describe_error(exc))
        return entry

    async def get_reconciliation_report(
        self,
        owner_id: UUID,
        period: Period,
        alert_on_discrepancy: bool = True,
    ) -> ReconciliationReport:
        """Reconcile an owner (without correcting) and summarize its entries in the period."""
        reconciliation = await self.reconcile_one(
            owner_id,
            auto_correct=False,
            alert_on_discrepancy=alert_on_discrepancy,
        )
        entries = await self.ledger_store.list_entries_between(
            owner_id, period.start_datetime, period.end_datetime
        )
        return ReconciliationReport(
            reconciliation=reconciliation,
            period=period,
            entry_count=len(entries),
            entry_summary=summarize_entries(entries),
        )
