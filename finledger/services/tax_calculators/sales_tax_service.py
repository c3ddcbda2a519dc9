"""
FinLedger - Sales Tax Service

Sales tax collected in a period, from two independent sources:
- tax charged on completed sales orders
- credits posted to the sales tax payable account

The reported figure is selected by a SourcePolicy; the winning source is
always named in the result.
"""

import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Optional

from finledger.config import settings
from finledger.schemas.period import Period
from finledger.schemas.transaction import COMPLETED_SALES_STATUSES, TransactionSide
from finledger.stores.base import TransactionStore
from finledger.utils.money import ZERO
from finledger.utils.sources import SourcePolicy, choose_source

logger = logging.getLogger(__name__)

SOURCE_SALES_ORDERS = "sales_orders"
SOURCE_TRANSACTIONS = "transactions"

SALES_TAX_ACCOUNT_PATTERN = r"sales.*tax.*payable"


@dataclass
class SalesTaxResult:
    amount: Decimal = ZERO
    taxable_base: Decimal = ZERO
    exempt_base: Decimal = ZERO
    by_month: Dict[str, Decimal] = field(default_factory=OrderedDict)
    primary_amount: Decimal = ZERO
    fallback_amount: Decimal = ZERO
    source: str = SOURCE_SALES_ORDERS

    def to_dict(self) -> Dict[str, Any]:
        return {
            "amount": float(self.amount),
            "taxable_base": float(self.taxable_base),
            "exempt_base": float(self.exempt_base),
            "by_month": {month: float(value) for month, value in self.by_month.items()},
            "primary_amount": float(self.primary_amount),
            "fallback_amount": float(self.fallback_amount),
            "source": self.source,
        }


class SalesTaxService:
    """Sales tax collected for a period."""

    def __init__(
        self,
        transaction_store: TransactionStore,
        sales_tax_account_code: Optional[str] = None,
        policy: SourcePolicy = SourcePolicy.MAX,
    ):
        self.store = transaction_store
        self.account_code = sales_tax_account_code or settings.sales_tax_payable_account_code
        self.policy = policy

    async def calculate_sales_tax(self, period: Period) -> SalesTaxResult:
        result = SalesTaxResult()

        orders = await self.store.find_sales_orders(period, COMPLETED_SALES_STATUSES)
        for order in sorted(orders, key=lambda o: o.created_at):
            month = order.created_at.strftime("%Y-%m")
            result.by_month.setdefault(month, ZERO)

            if not order.is_tax_exempt and order.tax_amount > ZERO:
                result.primary_amount += order.tax_amount
                result.taxable_base += order.net_of_discount
            else:
                result.exempt_base += order.net_of_discount

            if not order.is_tax_exempt:
                result.by_month[month] += order.tax_amount

        result.fallback_amount = await self._from_transactions(period)

        result.amount, result.source = choose_source(
            result.primary_amount,
            result.fallback_amount,
            self.policy,
            SOURCE_SALES_ORDERS,
            SOURCE_TRANSACTIONS,
        )
        logger.debug(
            f"Sales tax {period.label}: orders={result.primary_amount} "
            f"transactions={result.fallback_amount} -> {result.amount} ({result.source})"
        )
        return result

    async def _from_transactions(self, period: Period) -> Decimal:
        account = await self.store.find_account(self.account_code, SALES_TAX_ACCOUNT_PATTERN)
        if account is None:
            return ZERO

        postings = await self.store.find_transactions(
            [account.code],
            period.start_datetime,
            period.end_datetime,
            side=TransactionSide.CREDIT,
        )
        return sum((posting.credit_amount for posting in postings), ZERO)
