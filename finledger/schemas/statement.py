"""
FinLedger - Profit & Loss Statement Schemas

The statement is assembled stage by stage by PLStatementService and then
finalised with ``calculate_derived_values``.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import UUID

from finledger.schemas.period import Period
from finledger.utils.money import ZERO, percentage


def _jsonable(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, dict):
        return {key: _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if hasattr(value, "value") and not isinstance(value, (int, float, str)):
        return value.value
    return value


@dataclass
class StatementLine:
    """A single amount with optional drill-down details."""
    amount: Decimal = ZERO
    details: List[Dict[str, Any]] = field(default_factory=list)
    calculation: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"amount": float(self.amount)}
        if self.details:
            result["details"] = _jsonable(self.details)
        if self.calculation:
            result["calculation"] = self.calculation
        return result


# ===========================================
# SECTIONS
# ===========================================

@dataclass
class RevenueSection:
    gross_sales: StatementLine = field(default_factory=StatementLine)
    sales_returns: StatementLine = field(default_factory=StatementLine)
    sales_discounts: StatementLine = field(default_factory=StatementLine)
    source: str = "transactions"

    @property
    def net_sales(self) -> Decimal:
        return self.gross_sales.amount - self.sales_returns.amount - self.sales_discounts.amount

    def to_dict(self) -> Dict[str, Any]:
        return {
            "gross_sales": self.gross_sales.to_dict(),
            "sales_returns": self.sales_returns.to_dict(),
            "sales_discounts": self.sales_discounts.to_dict(),
            "net_sales": float(self.net_sales),
            "source": self.source,
        }


@dataclass
class COGSSection:
    beginning_inventory: Decimal = ZERO
    ending_inventory: Decimal = ZERO
    purchases: StatementLine = field(default_factory=StatementLine)
    freight_in: Decimal = ZERO
    purchase_returns: StatementLine = field(default_factory=StatementLine)
    purchase_discounts: StatementLine = field(default_factory=StatementLine)
    total_cogs: StatementLine = field(default_factory=StatementLine)
    # transaction | sales_order_items
    calculation_method: str = "transaction"

    @property
    def inventory_formula_cogs(self) -> Decimal:
        """Periodic-inventory COGS, kept for reference next to the transaction total."""
        return (
            self.beginning_inventory
            + self.purchases.amount
            + self.freight_in
            - self.purchase_returns.amount
            - self.purchase_discounts.amount
            - self.ending_inventory
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "beginning_inventory": float(self.beginning_inventory),
            "ending_inventory": float(self.ending_inventory),
            "purchases": self.purchases.to_dict(),
            "freight_in": float(self.freight_in),
            "purchase_returns": self.purchase_returns.to_dict(),
            "purchase_discounts": self.purchase_discounts.to_dict(),
            "total_cogs": self.total_cogs.to_dict(),
            "calculation_method": self.calculation_method,
            "inventory_formula_cogs": float(self.inventory_formula_cogs),
        }


@dataclass
class OperatingExpensesSection:
    selling: StatementLine = field(default_factory=StatementLine)
    administrative: StatementLine = field(default_factory=StatementLine)
    budget_comparison: Optional[Dict[str, Any]] = None

    @property
    def total(self) -> Decimal:
        return self.selling.amount + self.administrative.amount

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "selling_expenses": self.selling.to_dict(),
            "administrative_expenses": self.administrative.to_dict(),
            "total": float(self.total),
        }
        if self.budget_comparison:
            result["budget_comparison"] = _jsonable(self.budget_comparison)
        return result


@dataclass
class OtherIncomeSection:
    interest_income: Decimal = ZERO
    rental_income: Decimal = ZERO
    other: Decimal = ZERO

    @property
    def total(self) -> Decimal:
        return self.interest_income + self.rental_income + self.other

    def to_dict(self) -> Dict[str, Any]:
        return {
            "interest_income": float(self.interest_income),
            "rental_income": float(self.rental_income),
            "other": float(self.other),
            "total": float(self.total),
        }


@dataclass
class OtherExpensesSection:
    interest_expense: Decimal = ZERO
    depreciation: Decimal = ZERO
    amortization: Decimal = ZERO
    other: Decimal = ZERO

    @property
    def total(self) -> Decimal:
        return self.interest_expense + self.depreciation + self.amortization + self.other

    def to_dict(self) -> Dict[str, Any]:
        return {
            "interest_expense": float(self.interest_expense),
            "depreciation": float(self.depreciation),
            "amortization": float(self.amortization),
            "other": float(self.other),
            "total": float(self.total),
        }


@dataclass
class TaxSection:
    sales_tax: Decimal = ZERO
    income_tax: Decimal = ZERO
    current: Decimal = ZERO
    deferred: Decimal = ZERO
    total: Decimal = ZERO
    sales_tax_details: Dict[str, Any] = field(default_factory=dict)
    income_tax_details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "sales_tax": float(self.sales_tax),
            "income_tax": float(self.income_tax),
            "current": float(self.current),
            "deferred": float(self.deferred),
            "total": float(self.total),
        }
        if self.sales_tax_details:
            result["sales_tax_details"] = _jsonable(self.sales_tax_details)
        if self.income_tax_details:
            result["income_tax_details"] = _jsonable(self.income_tax_details)
        return result


@dataclass
class StatementMetadata:
    generated_at: datetime = field(default_factory=datetime.utcnow)
    generation_time_ms: int = 0
    calculation_method: str = "automated"
    currency: str = "USD"
    data_sources: Dict[str, str] = field(default_factory=dict)
    warnings: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return _jsonable({
            "generated_at": self.generated_at,
            "generation_time_ms": self.generation_time_ms,
            "calculation_method": self.calculation_method,
            "currency": self.currency,
            "data_sources": self.data_sources,
            "warnings": self.warnings,
        })


# ===========================================
# STATEMENT
# ===========================================

@dataclass
class PLStatement:
    """Profit & Loss statement for one period."""
    period: Period
    id: Optional[UUID] = None
    statement_type: str = "profit_loss"
    status: str = "draft"
    company_info: Dict[str, Any] = field(default_factory=dict)
    generated_by: Optional[str] = None

    revenue: RevenueSection = field(default_factory=RevenueSection)
    cost_of_goods_sold: COGSSection = field(default_factory=COGSSection)
    operating_expenses: OperatingExpensesSection = field(default_factory=OperatingExpensesSection)
    other_income: OtherIncomeSection = field(default_factory=OtherIncomeSection)
    other_expenses: OtherExpensesSection = field(default_factory=OtherExpensesSection)
    taxes: TaxSection = field(default_factory=TaxSection)

    total_revenue: Decimal = ZERO
    gross_profit: Decimal = ZERO
    operating_income: Decimal = ZERO
    earnings_before_tax: Decimal = ZERO
    net_income: Decimal = ZERO
    gross_margin: Decimal = ZERO
    operating_margin: Decimal = ZERO
    net_margin: Decimal = ZERO
    key_metrics: Dict[str, Decimal] = field(default_factory=dict)

    comparison: Dict[str, Any] = field(default_factory=dict)
    metadata: StatementMetadata = field(default_factory=StatementMetadata)

    def calculate_derived_values(self) -> None:
        """Recompute every derived total from the populated sections."""
        self.total_revenue = self.revenue.net_sales
        self.gross_profit = self.total_revenue - self.cost_of_goods_sold.total_cogs.amount
        self.operating_income = self.gross_profit - self.operating_expenses.total
        self.earnings_before_tax = (
            self.operating_income + self.other_income.total - self.other_expenses.total
        )
        self.net_income = self.earnings_before_tax - self.taxes.total

        self.gross_margin = percentage(self.gross_profit, self.total_revenue)
        self.operating_margin = percentage(self.operating_income, self.total_revenue)
        self.net_margin = percentage(self.net_income, self.total_revenue)

        ebitda = (
            self.operating_income
            + self.other_expenses.depreciation
            + self.other_expenses.amortization
        )
        self.key_metrics = {
            "ebitda": ebitda,
            "ebitda_margin": percentage(ebitda, self.total_revenue),
            "effective_tax_rate": percentage(self.taxes.income_tax, self.earnings_before_tax)
            if self.earnings_before_tax > 0 else ZERO,
        }

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "id": str(self.id) if self.id else None,
            "type": self.statement_type,
            "status": self.status,
            "period": self.period.to_dict(),
            "company": _jsonable(self.company_info),
            "generated_by": self.generated_by,
            "revenue": self.revenue.to_dict(),
            "total_revenue": float(self.total_revenue),
            "cost_of_goods_sold": self.cost_of_goods_sold.to_dict(),
            "gross_profit": {"amount": float(self.gross_profit), "margin": float(self.gross_margin)},
            "operating_expenses": self.operating_expenses.to_dict(),
            "operating_income": {"amount": float(self.operating_income), "margin": float(self.operating_margin)},
            "other_income": self.other_income.to_dict(),
            "other_expenses": self.other_expenses.to_dict(),
            "earnings_before_tax": float(self.earnings_before_tax),
            "taxes": self.taxes.to_dict(),
            "net_income": {"amount": float(self.net_income), "margin": float(self.net_margin)},
            "key_metrics": _jsonable(self.key_metrics),
            "metadata": self.metadata.to_dict(),
        }
        if self.comparison:
            result["comparison"] = _jsonable(self.comparison)
        return result


@dataclass(frozen=True)
class StoredStatementSummary:
    """Persisted statement as seen by period comparisons."""
    id: UUID
    statement_type: str
    period: Period
    net_income: Decimal
    total_revenue: Decimal = ZERO
