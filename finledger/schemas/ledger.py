"""
FinLedger - Ledger Entry Schemas

Value types for the append-only per-owner ledger and the cached balance
snapshot stored on the owner record.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional
from uuid import UUID

from finledger.utils.money import ZERO


# ===========================================
# ENUMS
# ===========================================

class LedgerEntryKind(str, Enum):
    """Kind of sub-ledger entry."""
    INVOICE = "invoice"
    DEBIT_NOTE = "debit_note"
    PAYMENT = "payment"
    REFUND = "refund"
    CREDIT_NOTE = "credit_note"
    ADJUSTMENT = "adjustment"
    WRITE_OFF = "write_off"
    OPENING_BALANCE = "opening_balance"


class LedgerEntryStatus(str, Enum):
    """Entries are never deleted; reversal flips the status."""
    POSTED = "posted"
    REVERSED = "reversed"


class OwnerType(str, Enum):
    """Kind of account owner whose balance is tracked."""
    CUSTOMER = "customer"
    SUPPLIER = "supplier"


# ===========================================
# BALANCES
# ===========================================

@dataclass(frozen=True)
class AccountBalanceSnapshot:
    """
    Derived balance of an owner account.

    pending_balance: amount the owner owes
    advance_balance: amount prepaid or overpaid by the owner
    current_balance: pending_balance - advance_balance
    """
    pending_balance: Decimal = ZERO
    advance_balance: Decimal = ZERO
    current_balance: Decimal = ZERO

    @classmethod
    def from_components(cls, pending: Decimal, advance: Decimal) -> "AccountBalanceSnapshot":
        """Build a snapshot whose current balance is derived from the pair."""
        pending = Decimal(pending)
        advance = Decimal(advance)
        return cls(
            pending_balance=pending,
            advance_balance=advance,
            current_balance=pending - advance,
        )

    def to_dict(self) -> Dict[str, float]:
        return {
            "pending_balance": float(self.pending_balance),
            "advance_balance": float(self.advance_balance),
            "current_balance": float(self.current_balance),
        }


@dataclass(frozen=True)
class VersionedBalance:
    """Cached balance read from the owner record together with its version token."""
    owner_id: UUID
    snapshot: AccountBalanceSnapshot
    version: int
    owner_name: Optional[str] = None
    owner_type: OwnerType = OwnerType.CUSTOMER


@dataclass(frozen=True)
class OwnerRef:
    """Owner listed for a batch reconciliation run."""
    owner_id: UUID
    name: Optional[str] = None
    owner_type: OwnerType = OwnerType.CUSTOMER


# ===========================================
# LEDGER ENTRY
# ===========================================

@dataclass(frozen=True)
class LedgerEntry:
    """
    Immutable sub-ledger entry.

    ``amount`` is the signed balance impact. ``kind`` and ``amount`` are kept
    as loaded from storage so replay can detect and skip malformed rows.
    """
    id: UUID
    owner_id: UUID
    kind: str
    amount: Any
    posted_at: datetime
    status: LedgerEntryStatus = LedgerEntryStatus.POSTED
    snapshot_after: Optional[AccountBalanceSnapshot] = None
    reference: Optional[str] = None
    net_amount: Optional[Decimal] = None
    metadata: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    @property
    def is_reversed(self) -> bool:
        return self.status == LedgerEntryStatus.REVERSED

    @property
    def sort_key(self):
        return (self.posted_at, str(self.id))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": str(self.id),
            "owner_id": str(self.owner_id),
            "kind": str(getattr(self.kind, "value", self.kind)),
            "amount": str(self.amount) if self.amount is not None else None,
            "posted_at": self.posted_at.isoformat(),
            "status": self.status.value if isinstance(self.status, LedgerEntryStatus) else str(self.status),
            "reference": self.reference,
            "snapshot_after": self.snapshot_after.to_dict() if self.snapshot_after else None,
        }
