"""
FinLedger - Balance Reconstructor

Rebuilds an owner's pending/advance balance by replaying the append-only
ledger. The cached balance on the owner record is only ever compared
against this result, never trusted.

Replay rules per entry kind:
- invoice, debit_note: pending += amount
- payment, refund, credit_note: |amount| reduces pending first, the
  remainder becomes advance
- adjustment: positive behaves like an invoice; negative reduces pending
  first and the remainder reduces advance (never below zero)
- write_off: pending = max(0, pending + amount)
- opening_balance: non-negative goes to pending, negative to advance
"""

import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple
from uuid import UUID

from finledger.config import settings
from finledger.schemas.ledger import AccountBalanceSnapshot, LedgerEntry, LedgerEntryKind
from finledger.utils.error_handling import MalformedLedgerEntry
from finledger.utils.money import ZERO, floor_zero, to_decimal

logger = logging.getLogger(__name__)


class ReplayStrategy(str, Enum):
    """How balance checkpoints stored on entries are used."""
    # A checkpoint resets the running balance; later entries replay on top
    SNAPSHOT_PRIORITY = "snapshot_priority"
    # Checkpoints are ignored; every entry is replayed from zero
    FULL_REPLAY = "full_replay"


INCREASING_KINDS = {LedgerEntryKind.INVOICE, LedgerEntryKind.DEBIT_NOTE}
SETTLING_KINDS = {LedgerEntryKind.PAYMENT, LedgerEntryKind.REFUND, LedgerEntryKind.CREDIT_NOTE}


@dataclass
class ReplayResult:
    """Replay outcome: the derived snapshot plus what was skipped."""
    owner_id: UUID
    snapshot: AccountBalanceSnapshot
    applied_count: int = 0
    skipped: List[MalformedLedgerEntry] = field(default_factory=list)
    checkpoints_used: int = 0

    @property
    def entry_count(self) -> int:
        return self.applied_count + len(self.skipped)


def _resolve_kind(raw_kind: Any) -> Optional[LedgerEntryKind]:
    if isinstance(raw_kind, LedgerEntryKind):
        return raw_kind
    try:
        return LedgerEntryKind(str(raw_kind))
    except ValueError:
        return None


def _reduce_pending_first(pending: Decimal, amount: Decimal) -> Tuple[Decimal, Decimal]:
    """Take ``amount`` out of pending; return (new_pending, remainder)."""
    reduction = min(amount, max(pending, ZERO))
    return pending - reduction, amount - reduction


class BalanceReconstructor:
    """
    Pure ledger replay.

    Holds no mutable state, so one instance can serve concurrent callers.
    """

    def __init__(self, strategy: Optional[ReplayStrategy] = None):
        self.strategy = ReplayStrategy(strategy or settings.replay_strategy)

    def reconstruct(self, owner_id: UUID, entries: Iterable[LedgerEntry]) -> ReplayResult:
        """
        Replay an owner's entries into an AccountBalanceSnapshot.

        Args:
            owner_id: Owner whose ledger is replayed
            entries: Ledger entries in any order; reversed entries are ignored

        Returns:
            ReplayResult with the snapshot and any skipped malformed entries
        """
        ordered = sorted(
            (entry for entry in entries if not entry.is_reversed),
            key=lambda entry: entry.sort_key,
        )

        pending = ZERO
        advance = ZERO
        result = ReplayResult(owner_id=owner_id, snapshot=AccountBalanceSnapshot())

        for entry in ordered:
            if self.strategy == ReplayStrategy.SNAPSHOT_PRIORITY and entry.snapshot_after is not None:
                pending = Decimal(entry.snapshot_after.pending_balance)
                advance = Decimal(entry.snapshot_after.advance_balance)
                result.applied_count += 1
                result.checkpoints_used += 1
                continue

            problem = self._validate(entry)
            if problem is not None:
                logger.warning(f"Skipping ledger entry during replay: {problem.message}")
                result.skipped.append(problem)
                continue

            pending, advance = self.apply(
                _resolve_kind(entry.kind), to_decimal(entry.amount), pending, advance
            )
            result.applied_count += 1

        result.snapshot = AccountBalanceSnapshot.from_components(
            floor_zero(pending), floor_zero(advance)
        )
        return result

    @staticmethod
    def apply(
        kind: LedgerEntryKind,
        amount: Decimal,
        pending: Decimal,
        advance: Decimal,
    ) -> Tuple[Decimal, Decimal]:
        """Apply one entry to the running (pending, advance) pair."""
        if kind in INCREASING_KINDS:
            return pending + amount, advance

        if kind in SETTLING_KINDS:
            pending, remainder = _reduce_pending_first(pending, abs(amount))
            return pending, advance + remainder

        if kind == LedgerEntryKind.ADJUSTMENT:
            if amount > ZERO:
                return pending + amount, advance
            pending, remainder = _reduce_pending_first(pending, abs(amount))
            return pending, max(ZERO, advance - remainder)

        if kind == LedgerEntryKind.WRITE_OFF:
            return max(ZERO, pending + amount), advance

        if kind == LedgerEntryKind.OPENING_BALANCE:
            if amount >= ZERO:
                return pending + amount, advance
            return pending, advance + abs(amount)

        raise ValueError(f"Unhandled ledger entry kind: {kind}")

    @staticmethod
    def _validate(entry: LedgerEntry) -> Optional[MalformedLedgerEntry]:
        kind = _resolve_kind(entry.kind)
        if kind is None:
            return MalformedLedgerEntry(entry.id, f"unknown kind {entry.kind!r}", kind=str(entry.kind))

        amount = to_decimal(entry.amount)
        if amount is None:
            return MalformedLedgerEntry(entry.id, f"amount is not numeric: {entry.amount!r}", kind=kind.value)

        if kind in INCREASING_KINDS and amount < ZERO:
            return MalformedLedgerEntry(entry.id, f"negative amount {amount} not permitted for {kind.value}", kind=kind.value)

        return None


def summarize_entries(entries: Iterable[LedgerEntry]) -> Dict[str, Dict[str, Any]]:
    """
    Count and total entries per reporting bucket.

    Refunds and credit notes share a bucket. Totals use ``net_amount`` when the
    entry carries one, else the signed amount.
    """
    buckets = {
        LedgerEntryKind.INVOICE: "invoices",
        LedgerEntryKind.PAYMENT: "payments",
        LedgerEntryKind.REFUND: "refunds",
        LedgerEntryKind.CREDIT_NOTE: "refunds",
        LedgerEntryKind.ADJUSTMENT: "adjustments",
        LedgerEntryKind.WRITE_OFF: "write_offs",
    }
    summary: Dict[str, Dict[str, Any]] = OrderedDict(
        (name, {"count": 0, "total": ZERO})
        for name in ("invoices", "payments", "refunds", "adjustments", "write_offs")
    )

    for entry in entries:
        bucket = buckets.get(_resolve_kind(entry.kind))
        if bucket is None:
            continue
        amount = entry.net_amount if entry.net_amount is not None else to_decimal(entry.amount)
        summary[bucket]["count"] += 1
        summary[bucket]["total"] += amount or ZERO

    return summary
