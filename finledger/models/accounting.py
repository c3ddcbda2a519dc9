"""
FinLedger - Chart of Accounts & Posting Models
"""

from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import Boolean, Index, JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from finledger.models.base import BaseModel, Money


class ChartOfAccounts(BaseModel):
    """Chart of accounts entry."""

    __tablename__ = "chart_of_accounts"

    account_code: Mapped[str] = mapped_column(String(20), unique=True, nullable=False, index=True)
    account_name: Mapped[str] = mapped_column(String(255), nullable=False)
    # asset | liability | equity | revenue | expense
    account_type: Mapped[str] = mapped_column(String(20), nullable=False)
    account_category: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    allow_direct_posting: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class AccountingTransaction(BaseModel):
    """One leg of a double-entry posting."""

    __tablename__ = "accounting_transactions"
    __table_args__ = (
        Index("ix_accounting_transactions_code_created", "account_code", "created_at"),
    )

    account_code: Mapped[str] = mapped_column(String(20), nullable=False)
    debit_amount: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"), nullable=False)
    credit_amount: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    # completed | voided
    status: Mapped[str] = mapped_column(String(20), default="completed", nullable=False)
    reference: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    kind: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    tags: Mapped[Optional[List[str]]] = mapped_column(JSON, nullable=True)
    extra_data: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)
