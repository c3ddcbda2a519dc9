"""
FinLedger - Tax Calculators Package

Modules:
- income_tax_service: progressive or flat income tax on earnings before tax
- sales_tax_service: sales tax collected from orders and tax payable postings
"""

from decimal import Decimal

from finledger.services.tax_calculators.income_tax_service import (
    DEFAULT_INCOME_TAX_BRACKETS,
    IncomeTaxCalculator,
    IncomeTaxConfig,
    IncomeTaxResult,
    TaxBracket,
)
from finledger.services.tax_calculators.sales_tax_service import SalesTaxResult, SalesTaxService


# ===========================================
# CONVENIENCE FUNCTIONS
# ===========================================

def calculate_income_tax(earnings_before_tax: Decimal) -> Decimal:
    """
    Calculate income tax with the default bracket schedule.

    Args:
        earnings_before_tax: EBT for the period

    Returns:
        Income tax amount
    """
    return IncomeTaxCalculator(IncomeTaxConfig()).calculate_income_tax(earnings_before_tax).amount


__all__ = [
    "DEFAULT_INCOME_TAX_BRACKETS",
    "IncomeTaxCalculator",
    "IncomeTaxConfig",
    "IncomeTaxResult",
    "TaxBracket",
    "SalesTaxResult",
    "SalesTaxService",
    "calculate_income_tax",
]
