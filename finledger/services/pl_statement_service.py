"""
FinLedger - Profit & Loss Statement Service

Builds a P&L statement for a period from postings and source documents.

Stages:
- Revenue (required): gross sales, returns, discounts
- Cost of goods sold (required): COGS postings, inventory and purchases
- Operating expenses: classified selling/administrative expenses, budget comparison
- Other income / other expenses: interest, rental, depreciation, amortization
- Taxes: sales tax collected and income tax on earnings before tax
- Comparisons: previous period and budget statement

Revenue and COGS failures abort generation with StatementStageError. Every
other data stage degrades to zero and records a warning in the statement
metadata.
"""

import logging
import re
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Awaitable, Dict, List, Optional, Set, Tuple

from finledger.config import Settings, settings as default_settings
from finledger.schemas.period import Period
from finledger.schemas.statement import (
    COGSSection,
    OperatingExpensesSection,
    OtherExpensesSection,
    OtherIncomeSection,
    PLStatement,
    RevenueSection,
    StatementLine,
    TaxSection,
)
from finledger.schemas.transaction import (
    COMPLETED_SALES_STATUSES,
    Account,
    AccountCategory,
    AccountType,
    ExpenseType,
    PurchaseInvoiceKind,
    ReturnOrigin,
    TransactionSide,
)
from finledger.services.budget_comparison_service import BudgetComparisonService
from finledger.services.classification_rules import RuleSetProvider
from finledger.services.expense_classifier import ExpenseClassifier
from finledger.services.tax_calculators import IncomeTaxCalculator, SalesTaxService
from finledger.stores.base import BudgetStore, StatementStore, TransactionStore
from finledger.utils.error_handling import StatementStageError, ValidationFailure
from finledger.utils.money import HUNDRED, ZERO, percentage
from finledger.utils.sources import SourcePolicy, choose_source

logger = logging.getLogger(__name__)

SOURCE_TRANSACTIONS = "transactions"
SOURCE_SALES_ORDERS = "sales_orders"
COGS_METHOD_TRANSACTION = "transaction"
COGS_METHOD_ORDER_ITEMS = "sales_order_items"

NON_SALE_ORDER_TYPES = ("return", "exchange")

# Average item discount thresholds (percent) for labelling order discounts
BULK_DISCOUNT_THRESHOLD = Decimal("15")
CUSTOMER_DISCOUNT_THRESHOLD = Decimal("5")

INTEREST_NAME = re.compile(r"interest", re.IGNORECASE)
RENTAL_NAME = re.compile(r"rental|rent", re.IGNORECASE)
DEPRECIATION_NAME = re.compile(r"depreciat", re.IGNORECASE)
AMORTIZATION_NAME = re.compile(r"amortiz", re.IGNORECASE)
INTEREST_INCOME_PREFIX = "43"
INTEREST_EXPENSE_PREFIX = "53"
OPERATING_EXPENSE_PREFIX = "52"


@dataclass
class StatementOptions:
    include_details: bool = True
    calculate_comparisons: bool = True
    persist: bool = True
    company_info: Dict[str, Any] = field(default_factory=dict)
    generated_by: Optional[str] = None


def _add(bucket: Dict[str, Decimal], key: str, amount: Decimal) -> None:
    bucket[key] = bucket.get(key, ZERO) + amount


def _labelled_details(bucket: Dict[str, Decimal], key: str, description: str) -> List[Dict[str, Any]]:
    return [
        {key: label, "amount": amount, "description": description.format(label)}
        for label, amount in bucket.items()
    ]


class PLStatementService:
    """Profit & Loss statement calculator."""

    def __init__(
        self,
        transaction_store: TransactionStore,
        statement_store: Optional[StatementStore] = None,
        budget_store: Optional[BudgetStore] = None,
        rule_provider: Optional[RuleSetProvider] = None,
        classifier: Optional[ExpenseClassifier] = None,
        sales_tax_service: Optional[SalesTaxService] = None,
        income_tax_calculator: Optional[IncomeTaxCalculator] = None,
        settings: Optional[Settings] = None,
    ):
        self.store = transaction_store
        self.statement_store = statement_store
        self.budget_service = BudgetComparisonService(budget_store) if budget_store else None
        self.settings = settings or default_settings
        # Operator rule file applies unless rules are injected
        if rule_provider is None and classifier is None and self.settings.classification_rules_path:
            rule_provider = RuleSetProvider(path=self.settings.classification_rules_path)
        self.rule_provider = rule_provider
        self.classifier = classifier or ExpenseClassifier()
        self.sales_tax_service = sales_tax_service or SalesTaxService(
            transaction_store,
            sales_tax_account_code=self.settings.sales_tax_payable_account_code,
        )
        self.income_tax_calculator = income_tax_calculator or IncomeTaxCalculator()

    # ===========================================
    # GENERATION
    # ===========================================

    async def generate(self, period: Period, options: Optional[StatementOptions] = None) -> PLStatement:
        """
        Generate a P&L statement.

        Args:
            period: Statement period
            options: Detail, comparison and persistence switches

        Returns:
            Statement with all derived values computed

        Raises:
            ValidationFailure: period is not a Period
            StatementStageError: revenue or COGS could not be computed
        """
        if not isinstance(period, Period):
            raise ValidationFailure("A statement period is required", field="period")
        options = options or StatementOptions()
        started = time.monotonic()

        statement = PLStatement(
            period=period,
            company_info=dict(options.company_info),
            generated_by=options.generated_by,
        )
        details = options.include_details
        classifier = await self._classifier()

        statement.revenue = await self._required_stage(
            "revenue", self.calculate_revenue(period, details, classifier)
        )
        statement.cost_of_goods_sold = await self._required_stage(
            "cost_of_goods_sold", self.calculate_cogs(period, details)
        )

        statement.operating_expenses = await self._optional_stage(
            statement,
            "operating_expenses",
            self.calculate_operating_expenses(period, classifier, details),
            OperatingExpensesSection(),
        )
        statement.other_income = await self._optional_stage(
            statement, "other_income", self.calculate_other_income(period), OtherIncomeSection()
        )
        statement.other_expenses = await self._optional_stage(
            statement, "other_expenses", self.calculate_other_expenses(period), OtherExpensesSection()
        )

        # Taxes depend on earnings before tax
        statement.calculate_derived_values()
        statement.taxes = await self.calculate_taxes(statement, details)
        statement.calculate_derived_values()

        if options.calculate_comparisons:
            await self.add_comparisons(statement)

        statement.metadata.data_sources = {
            "revenue": statement.revenue.source,
            "cost_of_goods_sold": statement.cost_of_goods_sold.calculation_method,
            "sales_tax": statement.taxes.sales_tax_details.get("source", SOURCE_SALES_ORDERS),
        }
        statement.metadata.generation_time_ms = int((time.monotonic() - started) * 1000)

        if options.persist and self.statement_store is not None:
            statement.id = await self.statement_store.save(statement)

        logger.info(
            f"Generated P&L for {period.label}: revenue={statement.total_revenue} "
            f"net_income={statement.net_income} ({statement.metadata.generation_time_ms}ms, "
            f"{len(statement.metadata.warnings)} warning(s))"
        )
        return statement

    generate_statement = generate

    async def get_summary(self, period: Period) -> Dict[str, Any]:
        """Dashboard summary computed fresh; nothing is persisted."""
        statement = await self.generate(
            period,
            StatementOptions(include_details=False, calculate_comparisons=False, persist=False),
        )
        return {
            "total_revenue": statement.total_revenue,
            "gross_profit": statement.gross_profit,
            "operating_income": statement.operating_income,
            "net_income": statement.net_income,
            "gross_margin": statement.gross_margin,
            "operating_margin": statement.operating_margin,
            "net_margin": statement.net_margin,
            "period": period.to_dict(),
            "last_updated": datetime.utcnow(),
            "breakdown": {
                "gross_sales": statement.revenue.gross_sales.amount,
                "sales_returns": statement.revenue.sales_returns.amount,
                "sales_discounts": statement.revenue.sales_discounts.amount,
                "total_cogs": statement.cost_of_goods_sold.total_cogs.amount,
                "selling_expenses": statement.operating_expenses.selling.amount,
                "administrative_expenses": statement.operating_expenses.administrative.amount,
                "other_income": statement.other_income.total,
                "other_expenses": statement.other_expenses.total,
                "total_tax": statement.taxes.total,
            },
            "warnings": list(statement.metadata.warnings),
        }

    async def _required_stage(self, stage: str, work: Awaitable[Any]) -> Any:
        try:
            return await work
        except Exception as exc:
            logger.error(f"P&L stage '{stage}' failed: {exc}", exc_info=True)
            raise StatementStageError(stage, exc) from exc

    async def _optional_stage(self, statement: PLStatement, stage: str, work: Awaitable[Any], default: Any) -> Any:
        try:
            return await work
        except Exception as exc:
            logger.warning(f"P&L stage '{stage}' degraded to zero: {exc}", exc_info=True)
            statement.metadata.warnings.append({"stage": stage, "error": str(exc)})
            return default

    async def _classifier(self) -> ExpenseClassifier:
        if self.rule_provider is None:
            return self.classifier
        return ExpenseClassifier(await self.rule_provider.get())

    # ===========================================
    # REVENUE
    # ===========================================

    async def calculate_revenue(
        self,
        period: Period,
        include_details: bool = True,
        classifier: Optional[ExpenseClassifier] = None,
    ) -> RevenueSection:
        classifier = classifier or self.classifier
        code = self.settings.sales_revenue_account_code
        start, end = period.start_datetime, period.end_datetime

        # Primary: credits to the sales revenue account
        sales_by_category: Dict[str, Decimal] = OrderedDict()
        credits = await self.store.find_transactions([code], start, end, side=TransactionSide.CREDIT)
        for posting in credits:
            _add(sales_by_category, classifier.categorize_revenue(posting.description), posting.credit_amount)
        posted_sales = sum(sales_by_category.values(), ZERO)

        returns = ZERO
        return_details: List[Dict[str, Any]] = []
        debits = await self.store.find_transactions([code], start, end, side=TransactionSide.DEBIT)
        for posting in debits:
            returns += posting.debit_amount
            return_details.append({
                "reference": posting.reference,
                "date": posting.created_at,
                "amount": posting.debit_amount,
                "source": SOURCE_TRANSACTIONS,
            })

        # Return documents not already posted against the revenue account
        for record in await self.store.find_returns(period, ReturnOrigin.SALES):
            already_posted = any(
                posting.reference == record.return_number
                or record.return_number in (posting.description or "")
                for posting in debits
            )
            if not already_posted and record.amount > ZERO:
                returns += record.amount
                return_details.append({
                    "reference": record.return_number,
                    "date": record.returned_at,
                    "amount": record.amount,
                    "source": "returns",
                })

        orders = await self.store.find_sales_orders(period, COMPLETED_SALES_STATUSES)

        # Fallback: the orders themselves
        order_sales: Dict[str, Decimal] = OrderedDict()
        order_returns = ZERO
        for order in orders:
            amount = order.total or order.subtotal
            if amount <= ZERO:
                continue
            if order.order_type not in NON_SALE_ORDER_TYPES:
                _add(order_sales, "Wholesale" if order.order_type == "wholesale" else "Retail", amount)
            elif order.order_type == "return":
                order_returns += amount
        ordered_sales = sum(order_sales.values(), ZERO)

        gross, source = choose_source(
            posted_sales,
            ordered_sales,
            SourcePolicy.PRIMARY_IF_NONZERO,
            SOURCE_TRANSACTIONS,
            SOURCE_SALES_ORDERS,
        )
        if source == SOURCE_SALES_ORDERS:
            sales_by_category = order_sales
            returns += order_returns

        discounts, discounts_by_type, discount_details = await self._sales_discounts(period, orders, classifier)

        section = RevenueSection(source=source)
        section.gross_sales = StatementLine(amount=gross)
        section.sales_returns = StatementLine(amount=returns)
        section.sales_discounts = StatementLine(amount=discounts)

        if include_details:
            section.gross_sales.details = _labelled_details(sales_by_category, "category", "Sales in {} category")
            section.sales_returns.details = return_details
            section.sales_discounts.details = [
                {
                    "type": label,
                    "amount": amount,
                    "description": f"{label} discounts",
                    "transactions": [item for item in discount_details if item["type"] == label],
                }
                for label, amount in discounts_by_type.items()
            ]

        logger.debug(f"Revenue {period.label}: gross={gross} ({source}) returns={returns} discounts={discounts}")
        return section

    async def _sales_discounts(
        self,
        period: Period,
        orders,
        classifier: ExpenseClassifier,
    ) -> Tuple[Decimal, Dict[str, Decimal], List[Dict[str, Any]]]:
        total = ZERO
        by_type: Dict[str, Decimal] = OrderedDict()
        details = []

        for order in orders:
            if order.discount_amount <= ZERO:
                continue
            label = self.order_discount_type(order)
            total += order.discount_amount
            _add(by_type, label, order.discount_amount)
            details.append({
                "order_number": order.order_number,
                "date": order.created_at,
                "amount": order.discount_amount,
                "type": label,
            })

        postings = await self.store.find_transactions(
            None,
            period.start_datetime,
            period.end_datetime,
            side=TransactionSide.DEBIT,
            kind="discount",
        )
        for posting in postings:
            label = classifier.categorize_discount_type(posting.description or "other", posting.reference)
            total += posting.debit_amount
            _add(by_type, label, posting.debit_amount)
            details.append({
                "order_number": posting.reference or str(posting.id),
                "date": posting.created_at,
                "amount": posting.debit_amount,
                "type": label,
                "transaction_id": posting.id,
            })

        return total, by_type, details

    @staticmethod
    def order_discount_type(order) -> str:
        """
        Label an order-level discount from its average item discount.

        15% and above reads as bulk, 5% to 15% as customer, anything lower as
        promotional. Orders attached to a customer with an average below 15%
        count as customer discounts.
        """
        discounted_items = [item for item in order.items if item.discount_amount > ZERO]
        if not discounted_items:
            return "other"

        item_discount = sum((item.discount_amount for item in order.items), ZERO)
        item_subtotal = sum((item.subtotal for item in order.items), ZERO)
        average = item_discount / item_subtotal * HUNDRED if item_subtotal > ZERO else ZERO

        label = "other"
        if average >= BULK_DISCOUNT_THRESHOLD:
            label = "bulk"
        elif average >= CUSTOMER_DISCOUNT_THRESHOLD:
            label = "customer"
        elif average > ZERO:
            label = "promotional"

        if order.customer_id is not None and ZERO < average < BULK_DISCOUNT_THRESHOLD:
            label = "customer"
        return label

    # ===========================================
    # COST OF GOODS SOLD
    # ===========================================

    async def calculate_cogs(self, period: Period, include_details: bool = True) -> COGSSection:
        start, end = period.start_datetime, period.end_datetime

        postings = await self.store.find_transactions(
            [self.settings.cost_of_goods_sold_account_code], start, end
        )
        posted_details = []
        posted_cogs = ZERO
        for posting in postings:
            if posting.debit_amount <= ZERO and posting.credit_amount <= ZERO:
                continue
            posted_cogs += posting.net_debit
            posted_details.append({
                "description": posting.description,
                "amount": posting.net_debit,
                "reference": posting.reference,
                "date": posting.created_at,
                "type": "credit" if posting.credit_amount > ZERO else "debit",
            })

        # Inventory is valued from current stock; no historical snapshots are kept
        products = await self.store.list_products()
        inventory_value = sum((p.stock_quantity * p.unit_cost for p in products if p.is_active), ZERO)

        purchase_orders = await self.store.find_purchase_orders(period)
        purchases = sum((po.total for po in purchase_orders), ZERO)
        freight_in = sum((po.freight_amount for po in purchase_orders), ZERO)

        return_details = []
        for invoice in await self.store.find_purchase_invoices(period, PurchaseInvoiceKind.RETURN):
            amount = invoice.total or invoice.subtotal
            if amount > ZERO:
                return_details.append({
                    "reference": invoice.invoice_number,
                    "date": invoice.created_at,
                    "amount": amount,
                    "supplier": invoice.supplier_name or "Unknown",
                })
        for record in await self.store.find_returns(period, ReturnOrigin.PURCHASE):
            if record.amount > ZERO:
                return_details.append({
                    "reference": record.return_number,
                    "date": record.returned_at,
                    "amount": record.amount,
                    "supplier": record.supplier_name or "Unknown",
                })

        discount_details = []
        for invoice in await self.store.find_purchase_invoices(period, PurchaseInvoiceKind.PURCHASE):
            if invoice.discount_amount > ZERO:
                discount_details.append({
                    "reference": invoice.invoice_number,
                    "date": invoice.created_at,
                    "amount": invoice.discount_amount,
                    "discount_percentage": percentage(invoice.discount_amount, invoice.subtotal),
                    "supplier": invoice.supplier_name or "Unknown",
                })

        item_details = []
        item_cogs = ZERO
        if posted_cogs == ZERO:
            orders = await self.store.find_sales_orders(period, COMPLETED_SALES_STATUSES)
            for order in orders:
                if order.order_type == "return":
                    continue
                for item in order.items:
                    cost = item.unit_cost * item.quantity
                    if cost > ZERO:
                        item_cogs += cost
                        item_details.append({
                            "description": f"COGS for order {order.order_number}",
                            "amount": cost,
                            "reference": order.order_number,
                            "date": order.created_at,
                        })

        total, method = choose_source(
            posted_cogs,
            item_cogs,
            SourcePolicy.PRIMARY_IF_NONZERO,
            COGS_METHOD_TRANSACTION,
            COGS_METHOD_ORDER_ITEMS,
        )
        cogs_details = posted_details if method == COGS_METHOD_TRANSACTION else item_details

        section = COGSSection(
            beginning_inventory=inventory_value,
            ending_inventory=inventory_value,
            freight_in=freight_in,
            calculation_method=method,
        )
        section.purchases = StatementLine(amount=purchases)
        section.purchase_returns = StatementLine(amount=sum((d["amount"] for d in return_details), ZERO))
        section.purchase_discounts = StatementLine(amount=sum((d["amount"] for d in discount_details), ZERO))
        section.total_cogs = StatementLine(
            amount=total,
            calculation=(
                f"Sum of {len(posted_details)} COGS transaction(s)"
                if method == COGS_METHOD_TRANSACTION
                else f"Unit cost x quantity over {len(item_details)} sales order item(s)"
            ),
        )

        if include_details:
            section.purchases.details = [
                {"supplier": po.supplier_name or "Unknown", "amount": po.total, "date": po.created_at}
                for po in purchase_orders
            ]
            section.purchase_returns.details = return_details
            section.purchase_discounts.details = discount_details
            section.total_cogs.details = cogs_details

        return section

    # ===========================================
    # OPERATING EXPENSES
    # ===========================================

    async def calculate_operating_expenses(
        self,
        period: Period,
        classifier: Optional[ExpenseClassifier] = None,
        include_details: bool = True,
    ) -> OperatingExpensesSection:
        classifier = classifier or self.classifier
        expense_accounts = await self.store.list_accounts(account_type=AccountType.EXPENSE)

        excluded = self._other_expense_codes(expense_accounts)
        excluded.add(self.settings.cost_of_goods_sold_account_code)
        accounts = {
            account.code: account
            for account in expense_accounts
            if account.is_active
            and account.code not in excluded
            and account.category != AccountCategory.COST_OF_GOODS_SOLD
        }
        codes = list(accounts) or self.settings.default_expense_account_codes_list

        postings = await self.store.find_transactions(
            codes, period.start_datetime, period.end_datetime, side=TransactionSide.DEBIT
        )
        logger.debug(f"Operating expenses {period.label}: {len(postings)} posting(s) over {len(codes)} account(s)")

        totals: Dict[ExpenseType, Dict[str, Decimal]] = {
            ExpenseType.SELLING: OrderedDict(),
            ExpenseType.ADMINISTRATIVE: OrderedDict(),
        }
        transactions: Dict[ExpenseType, Dict[str, List[Dict[str, Any]]]] = {
            ExpenseType.SELLING: {},
            ExpenseType.ADMINISTRATIVE: {},
        }

        for posting in postings:
            account = accounts.get(posting.account_code)
            account_name = account.name if account else (posting.description or "Unknown")
            classification = classifier.classify(
                posting.account_code, account_name, posting.description, posting.tags
            )
            expense_type = classification.expense_type
            _add(totals[expense_type], classification.category, posting.debit_amount)
            transactions[expense_type].setdefault(classification.category, []).append({
                "transaction_id": posting.id,
                "date": posting.created_at,
                "amount": posting.debit_amount,
                "description": posting.description or account_name,
                "account_code": posting.account_code,
                "account_name": account_name,
                "reference": posting.reference or "",
                "confidence": classification.confidence,
                "reason": classifier.reason_for(classification),
            })

        section = OperatingExpensesSection()
        comparison = await self._budget_comparison(totals, period)

        for expense_type, line in (
            (ExpenseType.SELLING, section.selling),
            (ExpenseType.ADMINISTRATIVE, section.administrative),
        ):
            line.amount = sum(totals[expense_type].values(), ZERO)
            for category, amount in totals[expense_type].items():
                entry: Dict[str, Any] = {
                    "category": category,
                    "amount": amount,
                    "description": f"{category.replace('_', ' ')} expenses",
                }
                budget = BudgetComparisonService.category_budget(comparison, expense_type, category)
                if budget:
                    entry["budget"] = budget
                if include_details:
                    entry["transactions"] = transactions[expense_type][category]
                line.details.append(entry)

        if comparison and comparison.get("has_budget"):
            section.budget_comparison = comparison
        return section

    async def _budget_comparison(self, totals, period: Period) -> Optional[Dict[str, Any]]:
        if self.budget_service is None:
            return None
        try:
            return await self.budget_service.compare_expenses(totals, period)
        except Exception as exc:
            logger.warning(f"Budget comparison skipped for {period.label}: {exc}", exc_info=True)
            return None

    # ===========================================
    # OTHER INCOME / OTHER EXPENSES
    # ===========================================

    def _other_expense_codes(self, expense_accounts: List[Account]) -> Set[str]:
        codes = {
            account.code
            for account in expense_accounts
            if account.is_active and (
                account.category == AccountCategory.OTHER_EXPENSES
                or INTEREST_NAME.search(account.name)
                or account.code.startswith(INTEREST_EXPENSE_PREFIX)
                or DEPRECIATION_NAME.search(account.name)
                or AMORTIZATION_NAME.search(account.name)
            )
        }
        codes.add(self.settings.other_expenses_account_code)
        return codes

    async def calculate_other_income(self, period: Period) -> OtherIncomeSection:
        accounts = [a for a in await self.store.list_accounts(account_type=AccountType.REVENUE) if a.is_active]
        interest_codes = {
            a.code for a in accounts
            if INTEREST_NAME.search(a.name) or a.code.startswith(INTEREST_INCOME_PREFIX)
        }
        rental_codes = {a.code for a in accounts if RENTAL_NAME.search(a.name)}
        other_codes = {a.code for a in accounts if a.category == AccountCategory.OTHER_REVENUE}

        codes = interest_codes | rental_codes | other_codes | {self.settings.other_revenue_account_code}
        codes.discard(self.settings.sales_revenue_account_code)

        postings = await self.store.find_transactions(
            sorted(codes), period.start_datetime, period.end_datetime, side=TransactionSide.CREDIT
        )

        section = OtherIncomeSection()
        for posting in postings:
            description = (posting.description or "").lower()
            if posting.account_code in interest_codes or "interest" in description:
                section.interest_income += posting.credit_amount
            elif posting.account_code in rental_codes or "rent" in description:
                section.rental_income += posting.credit_amount
            else:
                section.other += posting.credit_amount
        return section

    async def calculate_other_expenses(self, period: Period) -> OtherExpensesSection:
        accounts = [a for a in await self.store.list_accounts(account_type=AccountType.EXPENSE) if a.is_active]
        interest_codes = {
            a.code for a in accounts
            if INTEREST_NAME.search(a.name) or a.code.startswith(INTEREST_EXPENSE_PREFIX)
        }
        depreciation_codes = {a.code for a in accounts if DEPRECIATION_NAME.search(a.name)}
        amortization_codes = {a.code for a in accounts if AMORTIZATION_NAME.search(a.name)}

        postings = await self.store.find_transactions(
            sorted(self._other_expense_codes(accounts)),
            period.start_datetime,
            period.end_datetime,
            side=TransactionSide.DEBIT,
        )

        section = OtherExpensesSection()
        for posting in postings:
            code = posting.account_code
            description = (posting.description or "").lower()
            if code in interest_codes or "interest" in description:
                section.interest_expense += posting.debit_amount
            elif code in depreciation_codes or "depreciat" in description:
                section.depreciation += posting.debit_amount
            elif code in amortization_codes or "amortiz" in description:
                section.amortization += posting.debit_amount
            elif code != self.settings.cost_of_goods_sold_account_code and not code.startswith(OPERATING_EXPENSE_PREFIX):
                section.other += posting.debit_amount
        return section

    # ===========================================
    # TAXES
    # ===========================================

    async def calculate_taxes(self, statement: PLStatement, include_details: bool = True) -> TaxSection:
        """Sales tax for the period plus income tax on the statement's earnings before tax."""
        section = TaxSection()

        sales_tax = await self._optional_stage(
            statement,
            "sales_tax",
            self.sales_tax_service.calculate_sales_tax(statement.period),
            None,
        )
        if sales_tax is not None:
            section.sales_tax = sales_tax.amount
            section.sales_tax_details = sales_tax.to_dict()

        income_tax = self.income_tax_calculator.calculate_income_tax(statement.earnings_before_tax)
        section.income_tax = income_tax.amount
        section.current = income_tax.current
        section.deferred = income_tax.deferred
        if include_details:
            section.income_tax_details = income_tax.to_dict()
        else:
            section.income_tax_details = {
                "effective_rate": income_tax.effective_rate,
                "calculation": income_tax.calculation,
            }

        section.total = section.income_tax
        if self.settings.deduct_sales_tax_from_income:
            section.total += section.sales_tax
        return section

    # ===========================================
    # COMPARISONS
    # ===========================================

    async def add_comparisons(self, statement: PLStatement) -> None:
        """Attach previous-period and budget comparisons; lookup failures are logged and skipped."""
        if self.statement_store is None:
            return

        try:
            previous = await self.statement_store.find_previous(statement.period.start_date)
            if previous is not None:
                change = statement.net_income - previous.net_income
                statement.comparison["previous_period"] = {
                    "period": previous.period.label,
                    "net_income": previous.net_income,
                    "change": change,
                    "change_percentage": percentage(change, previous.net_income),
                }

            budget = await self.statement_store.find_budget(statement.period)
            if budget is not None:
                variance = statement.net_income - budget.net_income
                statement.comparison["budget"] = {
                    "period": "Budget",
                    "net_income": budget.net_income,
                    "variance": variance,
                    "variance_percentage": percentage(variance, budget.net_income),
                }
        except Exception as exc:
            logger.error(f"Error adding comparisons for {statement.period.label}: {exc}", exc_info=True)
            statement.metadata.warnings.append({"stage": "comparisons", "error": str(exc)})
