"""
FinLedger - Budget Comparison Service

Budget vs actual comparison for operating expenses, per category and in
total, used to annotate the operating expenses section of a P&L statement.
"""

import logging
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from finledger.schemas.period import Period
from finledger.schemas.transaction import Budget, ExpenseType
from finledger.stores.base import BudgetStore
from finledger.utils.money import HUNDRED, ZERO, quantize_money

logger = logging.getLogger(__name__)

# Variances within this percentage of budget count as on target
ON_TARGET_THRESHOLD = Decimal("5")


class VarianceStatus(str, Enum):
    """Types of budget variances"""
    FAVORABLE = "favorable"
    UNFAVORABLE = "unfavorable"
    ON_TARGET = "on_target"


def variance_percentage(variance: Decimal, budget: Decimal) -> Decimal:
    """Variance as a percentage of budget; 0 without a positive budget."""
    if budget <= ZERO:
        return ZERO
    return quantize_money(variance / budget * HUNDRED)


def get_variance_status(variance_pct: Decimal) -> VarianceStatus:
    if abs(variance_pct) <= ON_TARGET_THRESHOLD:
        return VarianceStatus.ON_TARGET
    if variance_pct < 0:
        # Spent less than budgeted
        return VarianceStatus.FAVORABLE
    return VarianceStatus.UNFAVORABLE


class BudgetComparisonService:
    """Compares actual operating expenses with the active expense budget."""

    def __init__(self, budget_store: BudgetStore):
        self.budget_store = budget_store

    async def compare_expenses(
        self,
        actual: Mapping[ExpenseType, Mapping[str, Decimal]],
        period: Period,
    ) -> Dict[str, Any]:
        """
        Compare actual expenses with the budget covering ``period``.

        Args:
            actual: Actual amounts keyed by expense type, then category
            period: Statement period

        Returns:
            Comparison dict; ``has_budget`` is False when no budget exists
        """
        budget = await self.budget_store.find_budget_for_period(period)
        if budget is None:
            return {"has_budget": False, "message": "No budget found for this period"}

        selling_actual = actual.get(ExpenseType.SELLING, {})
        admin_actual = actual.get(ExpenseType.ADMINISTRATIVE, {})

        totals_actual = {
            "selling": sum(selling_actual.values(), ZERO),
            "administrative": sum(admin_actual.values(), ZERO),
        }
        totals_actual["total"] = totals_actual["selling"] + totals_actual["administrative"]

        totals_budget = {
            "selling": budget.total_for(ExpenseType.SELLING),
            "administrative": budget.total_for(ExpenseType.ADMINISTRATIVE),
            "total": budget.total,
        }

        totals_variance = {key: totals_actual[key] - totals_budget[key] for key in totals_actual}
        totals_variance_pct = {
            key: variance_percentage(totals_variance[key], totals_budget[key]) for key in totals_variance
        }

        logger.debug(
            f"Budget '{budget.name}' vs actual for {period.label}: "
            f"variance {totals_variance['total']}"
        )

        return {
            "has_budget": True,
            "budget_id": budget.id,
            "budget_name": budget.name,
            "selling_expenses": self.compare_categories(selling_actual, budget, ExpenseType.SELLING),
            "administrative_expenses": self.compare_categories(
                admin_actual, budget, ExpenseType.ADMINISTRATIVE
            ),
            "totals": {
                "actual": totals_actual,
                "budget": totals_budget,
                "variance": totals_variance,
                "variance_percentage": totals_variance_pct,
            },
        }

    def compare_categories(
        self,
        actual_categories: Mapping[str, Decimal],
        budget: Budget,
        expense_type: ExpenseType,
    ) -> Dict[str, Dict[str, Any]]:
        categories = list(actual_categories)
        for item in budget.items:
            if item.expense_type == expense_type and item.category not in categories:
                categories.append(item.category)

        comparison = {}
        for category in categories:
            actual_amount = actual_categories.get(category, ZERO)
            budget_amount = budget.amount_for(category, expense_type)
            variance = actual_amount - budget_amount
            variance_pct = variance_percentage(variance, budget_amount)
            comparison[category] = {
                "actual": actual_amount,
                "budget": budget_amount,
                "variance": variance,
                "variance_percentage": variance_pct,
                "status": get_variance_status(variance_pct).value,
            }
        return comparison

    @staticmethod
    def category_budget(
        comparison: Optional[Dict[str, Any]],
        expense_type: ExpenseType,
        category: str,
    ) -> Optional[Dict[str, Any]]:
        """Budget annotation for one statement category, if the comparison has it."""
        if not comparison or not comparison.get("has_budget"):
            return None
        key = "selling_expenses" if expense_type == ExpenseType.SELLING else "administrative_expenses"
        data = comparison[key].get(category)
        if data is None:
            return None
        return {
            "amount": data["budget"],
            "variance": data["variance"],
            "variance_percentage": data["variance_percentage"],
            "status": data["status"],
        }
