"""
FinLedger - Purchasing & Returns Models
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from finledger.models.base import BaseModel, Money


class PurchaseOrder(BaseModel):
    __tablename__ = "purchase_orders"

    # draft | ordered | received | completed | cancelled
    status: Mapped[str] = mapped_column(String(20), default="draft", nullable=False)
    total: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"), nullable=False)
    freight_amount: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"), nullable=False)
    supplier_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)


class PurchaseInvoice(BaseModel):
    __tablename__ = "purchase_invoices"

    invoice_number: Mapped[str] = mapped_column(String(50), nullable=False)
    # purchase | return
    kind: Mapped[str] = mapped_column(String(20), default="purchase", nullable=False)
    # draft | confirmed | received | paid | closed
    status: Mapped[str] = mapped_column(String(20), default="draft", nullable=False)
    subtotal: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"), nullable=False)
    discount_amount: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"), nullable=False)
    total: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"), nullable=False)
    supplier_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)


class ReturnRecord(BaseModel):
    __tablename__ = "returns"

    return_number: Mapped[str] = mapped_column(String(50), nullable=False)
    # sales | purchase
    origin: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="pending", nullable=False)
    amount: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"), nullable=False)
    returned_at: Mapped[datetime] = mapped_column(DateTime(), nullable=False)
    supplier_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
