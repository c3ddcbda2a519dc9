"""
FinLedger - Income Tax Calculator

Progressive income tax on earnings before tax.

Default brackets (federal corporate-style schedule):
- $0 - $10,000: 10%
- $10,000 - $40,000: 12%
- $40,000 - $85,000: 22%
- $85,000 - $163,000: 24%
- $163,000 - $207,000: 32%
- $207,000 - $518,000: 35%
- Above $518,000: 37%

Each bracket taxes only the portion of income that falls inside it.
A flat rate may replace the schedule entirely.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

from finledger.config import settings
from finledger.utils.error_handling import InvalidTaxConfigException
from finledger.utils.money import HUNDRED, ZERO, percentage, quantize_money

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TaxBracket:
    """Income tax bracket; ``rate`` is a percentage."""
    lower: Decimal
    upper: Optional[Decimal]
    rate: Decimal

    def taxable_portion(self, income: Decimal) -> Decimal:
        """Part of ``income`` that falls inside [lower, upper)."""
        if income <= self.lower:
            return ZERO
        ceiling = income if self.upper is None else min(income, self.upper)
        return ceiling - self.lower

    def calculate_tax(self, income: Decimal) -> Decimal:
        return self.taxable_portion(income) * self.rate / HUNDRED

    @property
    def label(self) -> str:
        upper = "∞" if self.upper is None else f"${self.upper:,.0f}"
        return f"${self.lower:,.0f} - {upper}"


DEFAULT_INCOME_TAX_BRACKETS = [
    TaxBracket(lower=Decimal("0"), upper=Decimal("10000"), rate=Decimal("10")),
    TaxBracket(lower=Decimal("10000"), upper=Decimal("40000"), rate=Decimal("12")),
    TaxBracket(lower=Decimal("40000"), upper=Decimal("85000"), rate=Decimal("22")),
    TaxBracket(lower=Decimal("85000"), upper=Decimal("163000"), rate=Decimal("24")),
    TaxBracket(lower=Decimal("163000"), upper=Decimal("207000"), rate=Decimal("32")),
    TaxBracket(lower=Decimal("207000"), upper=Decimal("518000"), rate=Decimal("35")),
    TaxBracket(lower=Decimal("518000"), upper=None, rate=Decimal("37")),
]


@dataclass(frozen=True)
class IncomeTaxConfig:
    """
    Either a flat percentage rate or an ordered, non-overlapping bracket
    schedule. Invalid configurations are rejected at construction.
    """
    brackets: Sequence[TaxBracket] = field(default_factory=lambda: list(DEFAULT_INCOME_TAX_BRACKETS))
    flat_rate: Optional[Decimal] = None

    def __post_init__(self):
        if self.flat_rate is not None:
            if not ZERO <= Decimal(self.flat_rate) <= HUNDRED:
                raise InvalidTaxConfigException(
                    "Flat rate must be between 0 and 100",
                    details={"flat_rate": str(self.flat_rate)},
                )
            return

        if not self.brackets:
            raise InvalidTaxConfigException("At least one tax bracket is required")

        previous_upper: Optional[Decimal] = ZERO
        for index, bracket in enumerate(self.brackets):
            details = {"bracket": index, "lower": str(bracket.lower), "upper": str(bracket.upper)}
            if bracket.lower < ZERO:
                raise InvalidTaxConfigException("Bracket lower bound cannot be negative", details=details)
            if not ZERO <= bracket.rate <= HUNDRED:
                raise InvalidTaxConfigException("Bracket rate must be between 0 and 100", details=details)
            if bracket.upper is not None and bracket.upper <= bracket.lower:
                raise InvalidTaxConfigException("Bracket upper bound must exceed its lower bound", details=details)
            if previous_upper is None:
                raise InvalidTaxConfigException("Only the last bracket may be open-ended", details=details)
            if bracket.lower < previous_upper:
                raise InvalidTaxConfigException("Brackets must be ordered and must not overlap", details=details)
            previous_upper = bracket.upper

    @classmethod
    def from_settings(cls) -> "IncomeTaxConfig":
        if settings.income_tax_flat_rate is not None:
            return cls(flat_rate=settings.income_tax_flat_rate)
        return cls()


@dataclass
class IncomeTaxResult:
    amount: Decimal
    effective_rate: Decimal
    calculation: str
    bracket_breakdown: List[Dict[str, Any]] = field(default_factory=list)
    current: Decimal = ZERO
    deferred: Decimal = ZERO

    def to_dict(self) -> Dict[str, Any]:
        return {
            "amount": float(self.amount),
            "effective_rate": float(self.effective_rate),
            "calculation": self.calculation,
            "bracket_breakdown": [
                {key: float(value) if isinstance(value, Decimal) else value for key, value in row.items()}
                for row in self.bracket_breakdown
            ],
            "current": float(self.current),
            "deferred": float(self.deferred),
        }


class IncomeTaxCalculator:
    """Income tax on earnings before tax."""

    def __init__(self, config: Optional[IncomeTaxConfig] = None):
        self.config = config or IncomeTaxConfig.from_settings()

    def calculate_income_tax(self, earnings_before_tax: Decimal) -> IncomeTaxResult:
        """
        Calculate income tax.

        Args:
            earnings_before_tax: EBT for the period

        Returns:
            IncomeTaxResult; zero tax when EBT is zero or a loss
        """
        ebt = Decimal(earnings_before_tax)
        if ebt <= ZERO:
            return IncomeTaxResult(
                amount=ZERO,
                effective_rate=ZERO,
                calculation="No income tax (loss or zero income)",
            )

        if self.config.flat_rate is not None:
            rate = Decimal(self.config.flat_rate)
            amount = quantize_money(ebt * rate / HUNDRED)
            return IncomeTaxResult(
                amount=amount,
                effective_rate=quantize_money(rate),
                calculation=f"Flat rate: {rate}% of {quantize_money(ebt)}",
                current=amount,
            )

        breakdown = []
        total = ZERO
        for bracket in self.config.brackets:
            portion = bracket.taxable_portion(ebt)
            if portion <= ZERO:
                continue
            tax = bracket.calculate_tax(ebt)
            total += tax
            breakdown.append({
                "bracket": bracket.label,
                "rate": bracket.rate,
                "taxable_amount": quantize_money(portion),
                "tax": quantize_money(tax),
            })

        amount = quantize_money(total)
        effective_rate = percentage(amount, ebt)
        logger.debug(f"Income tax on {ebt}: {amount} ({effective_rate}%)")

        return IncomeTaxResult(
            amount=amount,
            effective_rate=effective_rate,
            calculation="Progressive tax brackets",
            bracket_breakdown=breakdown,
            current=amount,
        )
