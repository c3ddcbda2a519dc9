"""
FinLedger - Owner Account & Sub-Ledger Models

AccountOwner carries the cached balance and its optimistic version token.
LedgerEntryRecord is append-only; reversal flips ``status``.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, JSON, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from finledger.models.base import BaseModel, Money


class AccountOwner(BaseModel):
    """Customer or supplier whose receivable/payable balance is cached."""

    __tablename__ = "account_owners"

    owner_type: Mapped[str] = mapped_column(String(20), default="customer", nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    business_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    pending_balance: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"), nullable=False)
    advance_balance: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"), nullable=False)
    current_balance: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"), nullable=False)

    # Incremented by every conditional balance write
    version_id: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    entries: Mapped[List["LedgerEntryRecord"]] = relationship(
        back_populates="owner",
        lazy="noload",
    )

    @property
    def display_name(self) -> str:
        return self.business_name or self.name


class LedgerEntryRecord(BaseModel):
    """One posted sub-ledger entry."""

    __tablename__ = "ledger_entries"
    __table_args__ = (
        Index("ix_ledger_entries_owner_posted", "owner_id", "posted_at"),
    )

    owner_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("account_owners.id", ondelete="CASCADE"),
        nullable=False,
    )
    kind: Mapped[str] = mapped_column(String(30), nullable=False)
    # Signed balance impact; nullable so corrupt rows load and get reported
    amount: Mapped[Optional[Decimal]] = mapped_column(Money, nullable=True)
    net_amount: Mapped[Optional[Decimal]] = mapped_column(Money, nullable=True)
    status: Mapped[str] = mapped_column(String(20), default="posted", nullable=False)
    posted_at: Mapped[datetime] = mapped_column(DateTime(), nullable=False)
    reference: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    # Balance checkpoint written by the posting code after this entry
    pending_after: Mapped[Optional[Decimal]] = mapped_column(Money, nullable=True)
    advance_after: Mapped[Optional[Decimal]] = mapped_column(Money, nullable=True)
    current_after: Mapped[Optional[Decimal]] = mapped_column(Money, nullable=True)

    extra_data: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)

    owner: Mapped["AccountOwner"] = relationship(back_populates="entries")
