"""
FinLedger - Accounting Transaction Schemas

Read models for the P&L side: double-entry postings, chart of accounts,
sales/purchase documents, inventory and budgets. Store adapters map their
rows onto these; the statement services never see ORM objects.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import UUID

from finledger.utils.money import ZERO


# ===========================================
# ENUMS
# ===========================================

class TransactionStatus(str, Enum):
    COMPLETED = "completed"
    VOIDED = "voided"


class TransactionSide(str, Enum):
    """Which leg of a posting a query asks for."""
    DEBIT = "debit"
    CREDIT = "credit"


class AccountType(str, Enum):
    ASSET = "asset"
    LIABILITY = "liability"
    EQUITY = "equity"
    REVENUE = "revenue"
    EXPENSE = "expense"


class AccountCategory(str, Enum):
    SALES_REVENUE = "sales_revenue"
    OTHER_REVENUE = "other_revenue"
    COST_OF_GOODS_SOLD = "cost_of_goods_sold"
    OPERATING_EXPENSES = "operating_expenses"
    OTHER_EXPENSES = "other_expenses"
    CURRENT_LIABILITIES = "current_liabilities"
    OTHER = "other"


class ExpenseType(str, Enum):
    SELLING = "selling"
    ADMINISTRATIVE = "administrative"


class ReturnOrigin(str, Enum):
    SALES = "sales"
    PURCHASE = "purchase"


class PurchaseInvoiceKind(str, Enum):
    PURCHASE = "purchase"
    RETURN = "return"


# Sales order statuses that count as a completed sale
COMPLETED_SALES_STATUSES = ("completed", "delivered", "shipped", "confirmed")


# ===========================================
# POSTINGS
# ===========================================

@dataclass(frozen=True)
class AccountingTransaction:
    """One leg of a double-entry posting."""
    id: UUID
    account_code: str
    created_at: datetime
    debit_amount: Decimal = ZERO
    credit_amount: Decimal = ZERO
    description: str = ""
    status: TransactionStatus = TransactionStatus.COMPLETED
    reference: Optional[str] = None
    kind: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def net_debit(self) -> Decimal:
        return (self.debit_amount or ZERO) - (self.credit_amount or ZERO)


@dataclass(frozen=True)
class Account:
    """Chart of accounts entry."""
    code: str
    name: str
    account_type: AccountType
    category: Optional[AccountCategory] = None
    is_active: bool = True


@dataclass(frozen=True)
class Classification:
    """Result of running a transaction through the classifier."""
    expense_type: ExpenseType
    category: str
    confidence: float
    factors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "expense_type": self.expense_type.value,
            "category": self.category,
            "confidence": self.confidence,
            "factors": list(self.factors),
        }


# ===========================================
# SALES / PURCHASING DOCUMENTS
# ===========================================

@dataclass(frozen=True)
class SalesOrderItem:
    product_id: Optional[UUID]
    quantity: Decimal
    unit_price: Decimal
    unit_cost: Decimal = ZERO
    discount_amount: Decimal = ZERO

    @property
    def subtotal(self) -> Decimal:
        return self.quantity * self.unit_price


@dataclass(frozen=True)
class SalesOrder:
    id: UUID
    order_number: str
    status: str
    created_at: datetime
    subtotal: Decimal = ZERO
    discount_amount: Decimal = ZERO
    tax_amount: Decimal = ZERO
    total: Decimal = ZERO
    is_tax_exempt: bool = False
    # sale | wholesale | return | exchange
    order_type: str = "sale"
    customer_id: Optional[UUID] = None
    items: List[SalesOrderItem] = field(default_factory=list)

    @property
    def net_of_discount(self) -> Decimal:
        return self.subtotal - self.discount_amount


@dataclass(frozen=True)
class Product:
    id: UUID
    name: str
    stock_quantity: Decimal = ZERO
    unit_cost: Decimal = ZERO
    is_active: bool = True


@dataclass(frozen=True)
class PurchaseOrder:
    id: UUID
    status: str
    created_at: datetime
    total: Decimal = ZERO
    freight_amount: Decimal = ZERO
    supplier_name: Optional[str] = None


@dataclass(frozen=True)
class PurchaseInvoice:
    id: UUID
    invoice_number: str
    kind: PurchaseInvoiceKind
    created_at: datetime
    subtotal: Decimal = ZERO
    discount_amount: Decimal = ZERO
    total: Decimal = ZERO
    supplier_name: Optional[str] = None


@dataclass(frozen=True)
class ReturnRecord:
    id: UUID
    return_number: str
    origin: ReturnOrigin
    returned_at: datetime
    amount: Decimal = ZERO
    supplier_name: Optional[str] = None


# ===========================================
# BUDGETS
# ===========================================

@dataclass(frozen=True)
class BudgetItem:
    expense_type: ExpenseType
    category: str
    amount: Decimal


@dataclass(frozen=True)
class Budget:
    id: UUID
    name: str
    items: List[BudgetItem] = field(default_factory=list)

    def amount_for(self, category: str, expense_type: ExpenseType) -> Decimal:
        return sum(
            (item.amount for item in self.items
             if item.category == category and item.expense_type == expense_type),
            ZERO,
        )

    def total_for(self, expense_type: ExpenseType) -> Decimal:
        return sum((item.amount for item in self.items if item.expense_type == expense_type), ZERO)

    @property
    def total(self) -> Decimal:
        return sum((item.amount for item in self.items), ZERO)
