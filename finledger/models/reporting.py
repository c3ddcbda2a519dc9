"""
FinLedger - Reporting Models

Persisted statements, expense budgets and the classification rule document.
"""

import uuid
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import Boolean, Date, ForeignKey, Integer, JSON, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from finledger.models.base import BaseModel, Money


class FinancialStatementRecord(BaseModel):
    __tablename__ = "financial_statements"

    # profit_loss | budget_profit_loss
    statement_type: Mapped[str] = mapped_column(String(30), default="profit_loss", nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(20), default="draft", nullable=False)
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    period_type: Mapped[str] = mapped_column(String(20), default="monthly", nullable=False)
    total_revenue: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"), nullable=False)
    net_income: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"), nullable=False)
    generated_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    payload: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)


class Budget(BaseModel):
    __tablename__ = "budgets"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    budget_type: Mapped[str] = mapped_column(String(20), default="expense", nullable=False)
    # draft | approved | active | closed
    status: Mapped[str] = mapped_column(String(20), default="draft", nullable=False)
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)

    items: Mapped[List["BudgetItem"]] = relationship(
        back_populates="budget",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class BudgetItem(BaseModel):
    __tablename__ = "budget_items"

    budget_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("budgets.id", ondelete="CASCADE"),
        nullable=False,
    )
    # selling | administrative
    expense_type: Mapped[str] = mapped_column(String(20), nullable=False)
    category: Mapped[str] = mapped_column(String(50), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"), nullable=False)

    budget: Mapped["Budget"] = relationship(back_populates="items")


class ClassificationRuleDocument(BaseModel):
    """Operator-maintained classification rules; highest active revision wins."""

    __tablename__ = "classification_rule_documents"

    revision: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    document: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
