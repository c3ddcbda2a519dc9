"""
FinLedger - P&L Statement Tests

End-to-end statement generation over in-memory stores: section figures,
source fallbacks, degraded stages and comparisons.
"""

import json
from dataclasses import replace
from datetime import date, datetime
from decimal import Decimal
from uuid import uuid4

import pytest

from finledger.config import Settings
from finledger.schemas.period import Period
from finledger.schemas.transaction import (
    Account,
    AccountCategory,
    AccountType,
    Budget,
    BudgetItem,
    ExpenseType,
    Product,
    PurchaseInvoice,
    PurchaseInvoiceKind,
    PurchaseOrder,
    ReturnOrigin,
    ReturnRecord,
    SalesOrderItem,
)
from finledger.services.classification_rules import RuleSetProvider
from finledger.services.expense_classifier import ExpenseClassifier
from finledger.services.pl_statement_service import PLStatementService, StatementOptions
from finledger.services.tax_calculators import IncomeTaxCalculator, IncomeTaxConfig
from finledger.utils.error_handling import ErrorCode, StatementStageError, ValidationFailure
from tests.fixtures.builders import D, order_item, posting, sales_order
from tests.fixtures.in_memory_stores import InMemoryBudgetStore, InMemoryRuleMetadataStore


def account(code, name, account_type, category=None):
    return Account(code=code, name=name, account_type=account_type, category=category)


CHART = [
    account("4100", "Sales Revenue", AccountType.REVENUE, AccountCategory.SALES_REVENUE),
    account("4200", "Other Revenue", AccountType.REVENUE, AccountCategory.OTHER_REVENUE),
    account("4300", "Interest Income", AccountType.REVENUE, AccountCategory.OTHER_REVENUE),
    account("5100", "Cost of Goods Sold", AccountType.EXPENSE, AccountCategory.COST_OF_GOODS_SOLD),
    account("5221", "Advertising", AccountType.EXPENSE, AccountCategory.OPERATING_EXPENSES),
    account("5212", "Rent Expense", AccountType.EXPENSE, AccountCategory.OPERATING_EXPENSES),
    account("5310", "Interest Expense", AccountType.EXPENSE, AccountCategory.OTHER_EXPENSES),
    account("5410", "Depreciation", AccountType.EXPENSE, AccountCategory.OTHER_EXPENSES),
    account("2120", "Sales Tax Payable", AccountType.LIABILITY, AccountCategory.CURRENT_LIABILITIES),
]


@pytest.fixture
def settings():
    return Settings(
        income_tax_flat_rate=None,
        deduct_sales_tax_from_income=True,
        sales_tax_payable_account_code="2120",
    )


@pytest.fixture
def populated_store(transaction_store):
    """
    March 2024 books:

    revenue 12,000 gross - 550 returns - 100 discounts = 11,350 net
    COGS 4,000; opex 2,500; other income 100; other expenses 500
    EBT 4,450; income tax 445; sales tax 960; net income 3,045
    """
    store = transaction_store
    store.accounts = list(CHART)
    store.transactions = [
        posting("4100", credit=10000, description="Product sale"),
        posting("4100", credit=2000, description="Consulting service"),
        posting("4100", debit=500, description="Return RET-1", reference="RET-1"),
        posting("4190", debit=100, description="Loyalty discount", kind="discount", reference="LOYAL-1"),
        posting("5100", debit=4000, description="Cost of sales"),
        posting("5221", debit=1000, description="Facebook ads"),
        posting("5212", debit=1500, description="March rent"),
        posting("4300", credit=100, description="Bank interest"),
        posting("5310", debit=200, description="Loan interest"),
        posting("5410", debit=300, description="Equipment depreciation"),
        posting("5221", debit=700, description="February ads", created_at=datetime(2024, 2, 28)),
    ]
    store.sales_orders = [sales_order(12000, tax=960)]
    store.returns = [
        ReturnRecord(uuid4(), "RET-1", ReturnOrigin.SALES, datetime(2024, 3, 20), D(500)),
        ReturnRecord(uuid4(), "RET-2", ReturnOrigin.SALES, datetime(2024, 3, 21), D(50)),
        ReturnRecord(uuid4(), "PRET-1", ReturnOrigin.PURCHASE, datetime(2024, 3, 22), D(80), "Acme"),
    ]
    store.products = [Product(uuid4(), "Widget", stock_quantity=D(10), unit_cost=D(20))]
    store.purchase_orders = [
        PurchaseOrder(uuid4(), "received", datetime(2024, 3, 5), total=D(3000), freight_amount=D(100)),
    ]
    store.purchase_invoices = [
        PurchaseInvoice(uuid4(), "PI-1", PurchaseInvoiceKind.PURCHASE, datetime(2024, 3, 5),
                        subtotal=D(3000), discount_amount=D(60), total=D(2940)),
        PurchaseInvoice(uuid4(), "PR-1", PurchaseInvoiceKind.RETURN, datetime(2024, 3, 25), total=D(120)),
    ]
    return store


@pytest.fixture
def service(populated_store, statement_store, settings):
    return PLStatementService(
        populated_store,
        statement_store=statement_store,
        income_tax_calculator=IncomeTaxCalculator(IncomeTaxConfig()),
        settings=settings,
    )


class TestStatementFigures:
    """Every section and derived total of a full statement."""

    @pytest.mark.asyncio
    async def test_revenue(self, service, march_2024):
        statement = await service.generate(march_2024)
        revenue = statement.revenue

        assert revenue.source == "transactions"
        assert revenue.gross_sales.amount == D(12000)
        assert revenue.sales_returns.amount == D(550)
        assert revenue.sales_discounts.amount == D(100)
        assert statement.total_revenue == D(11350)
        assert {d["category"]: d["amount"] for d in revenue.gross_sales.details} == {
            "Sales": D(10000),
            "Services": D(2000),
        }
        assert [d["source"] for d in revenue.sales_returns.details] == ["transactions", "returns"]
        assert revenue.sales_discounts.details[0]["type"] == "loyalty"

    @pytest.mark.asyncio
    async def test_cost_of_goods_sold(self, service, march_2024):
        cogs = (await service.generate(march_2024)).cost_of_goods_sold

        assert cogs.total_cogs.amount == D(4000)
        assert cogs.calculation_method == "transaction"
        assert cogs.total_cogs.calculation == "Sum of 1 COGS transaction(s)"
        assert cogs.beginning_inventory == D(200)
        assert cogs.ending_inventory == D(200)
        assert cogs.purchases.amount == D(3000)
        assert cogs.freight_in == D(100)
        assert cogs.purchase_returns.amount == D(200)
        assert cogs.purchase_discounts.amount == D(60)
        assert cogs.purchase_discounts.details[0]["discount_percentage"] == D("2.00")

    @pytest.mark.asyncio
    async def test_operating_expenses(self, service, march_2024):
        opex = (await service.generate(march_2024)).operating_expenses

        assert opex.selling.amount == D(1000)
        assert opex.administrative.amount == D(1500)
        assert opex.selling.details[0]["category"] == "advertising"
        assert opex.selling.details[0]["transactions"][0]["reason"] == "Based on account code mapping"
        assert opex.administrative.details[0]["category"] == "rent"
        assert opex.budget_comparison is None

    @pytest.mark.asyncio
    async def test_other_income_and_expenses(self, service, march_2024):
        statement = await service.generate(march_2024)

        assert statement.other_income.interest_income == D(100)
        assert statement.other_income.total == D(100)
        assert statement.other_expenses.interest_expense == D(200)
        assert statement.other_expenses.depreciation == D(300)
        assert statement.other_expenses.total == D(500)

    @pytest.mark.asyncio
    async def test_taxes_and_net_income(self, service, march_2024):
        statement = await service.generate(march_2024)

        assert statement.gross_profit == D(7350)
        assert statement.operating_income == D(4850)
        assert statement.earnings_before_tax == D(4450)
        assert statement.taxes.income_tax == D("445.00")
        assert statement.taxes.sales_tax == D(960)
        assert statement.taxes.total == D("1405.00")
        assert statement.net_income == D("3045.00")
        assert statement.gross_margin == D("64.76")
        assert statement.key_metrics["ebitda"] == D(5150)
        assert statement.metadata.warnings == []
        assert statement.metadata.data_sources == {
            "revenue": "transactions",
            "cost_of_goods_sold": "transaction",
            "sales_tax": "sales_orders",
        }

    @pytest.mark.asyncio
    async def test_identities_hold(self, service, march_2024):
        s = await service.generate(march_2024)

        assert s.total_revenue == s.revenue.gross_sales.amount - s.revenue.sales_returns.amount - s.revenue.sales_discounts.amount
        assert s.gross_profit == s.total_revenue - s.cost_of_goods_sold.total_cogs.amount
        assert s.operating_income == s.gross_profit - s.operating_expenses.total
        assert s.earnings_before_tax == s.operating_income + s.other_income.total - s.other_expenses.total
        assert s.net_income == s.earnings_before_tax - s.taxes.total

    @pytest.mark.asyncio
    async def test_sales_tax_kept_out_of_total_when_configured(self, populated_store, march_2024):
        settings = Settings(deduct_sales_tax_from_income=False, sales_tax_payable_account_code="2120")
        service = PLStatementService(
            populated_store,
            income_tax_calculator=IncomeTaxCalculator(IncomeTaxConfig()),
            settings=settings,
        )

        statement = await service.generate(march_2024)

        assert statement.taxes.sales_tax == D(960)
        assert statement.taxes.total == D("445.00")
        assert statement.net_income == D("4005.00")

    @pytest.mark.asyncio
    async def test_details_can_be_left_out(self, service, march_2024):
        statement = await service.generate(march_2024, StatementOptions(include_details=False))

        assert statement.revenue.gross_sales.details == []
        assert "transactions" not in statement.operating_expenses.selling.details[0]
        assert set(statement.taxes.income_tax_details) == {"effective_rate", "calculation"}

    @pytest.mark.asyncio
    async def test_loss_has_no_income_tax(self, transaction_store, settings, march_2024):
        transaction_store.accounts = list(CHART)
        transaction_store.transactions = [
            posting("4100", credit=1000, description="Product sale"),
            posting("5100", debit=1500),
        ]
        service = PLStatementService(transaction_store, settings=settings,
                                     income_tax_calculator=IncomeTaxCalculator(IncomeTaxConfig()))

        statement = await service.generate(march_2024)

        assert statement.earnings_before_tax == D(-500)
        assert statement.taxes.income_tax == D(0)
        assert statement.net_income == D(-500)
        assert statement.key_metrics["effective_tax_rate"] == D(0)


class TestSourceFallbacks:
    """Document-based figures used when nothing is posted."""

    @pytest.mark.asyncio
    async def test_revenue_from_orders(self, transaction_store, settings, march_2024):
        transaction_store.sales_orders = [
            sales_order(1000),
            sales_order(500, order_type="wholesale"),
            sales_order(200, order_type="return"),
            sales_order(999, status="cancelled"),
        ]
        service = PLStatementService(transaction_store, settings=settings)

        revenue = await service.calculate_revenue(march_2024)

        assert revenue.source == "sales_orders"
        assert revenue.gross_sales.amount == D(1500)
        assert revenue.sales_returns.amount == D(200)
        assert {d["category"]: d["amount"] for d in revenue.gross_sales.details} == {
            "Retail": D(1000), "Wholesale": D(500),
        }

    @pytest.mark.asyncio
    async def test_posted_revenue_ignores_return_orders(self, transaction_store, settings, march_2024):
        transaction_store.transactions = [posting("4100", credit=800, description="Product sale")]
        transaction_store.sales_orders = [sales_order(200, order_type="return")]
        service = PLStatementService(transaction_store, settings=settings)

        revenue = await service.calculate_revenue(march_2024)

        assert revenue.source == "transactions"
        assert revenue.sales_returns.amount == D(0)

    @pytest.mark.asyncio
    async def test_cogs_from_order_items(self, transaction_store, settings, march_2024):
        transaction_store.sales_orders = [
            sales_order(100, items=[order_item(2, 50, unit_cost=30), order_item(1, 10, unit_cost=0)]),
            sales_order(50, order_type="return", items=[order_item(1, 50, unit_cost=30)]),
        ]
        service = PLStatementService(transaction_store, settings=settings)

        cogs = await service.calculate_cogs(march_2024)

        assert cogs.calculation_method == "sales_order_items"
        assert cogs.total_cogs.amount == D(60)
        assert cogs.total_cogs.details[0]["description"] == "COGS for order SO-0001"

    @pytest.mark.asyncio
    async def test_cogs_credits_reduce_total(self, transaction_store, settings, march_2024):
        transaction_store.transactions = [
            posting("5100", debit=300, created_at=datetime(2024, 3, 4)),
            posting("5100", credit=50, created_at=datetime(2024, 3, 9)),
        ]
        service = PLStatementService(transaction_store, settings=settings)

        cogs = await service.calculate_cogs(march_2024)

        assert cogs.total_cogs.amount == D(250)
        assert [d["type"] for d in cogs.total_cogs.details] == ["debit", "credit"]

    @pytest.mark.asyncio
    async def test_opex_falls_back_to_default_accounts(self, transaction_store, settings, march_2024):
        transaction_store.transactions = [posting("5220", debit=40, description="Flyers")]
        service = PLStatementService(transaction_store, settings=settings)

        opex = await service.calculate_operating_expenses(march_2024)

        assert opex.selling.amount == D(40)
        assert opex.selling.details[0]["category"] == "marketing"


class TestDiscountLabels:
    """Order discount labels from the average item discount."""

    def order(self, discount, customer_id=None):
        item = SalesOrderItem(product_id=uuid4(), quantity=D(1), unit_price=D(100), discount_amount=D(discount))
        order = sales_order(100, discount=discount, items=[item])
        if customer_id is not None:
            order = replace(order, customer_id=customer_id)
        return order

    @pytest.mark.parametrize("discount,label", [(20, "bulk"), (15, "bulk"), (10, "customer"), (2, "promotional")])
    def test_thresholds(self, discount, label):
        assert PLStatementService.order_discount_type(self.order(discount)) == label

    def test_customer_orders_below_bulk(self):
        assert PLStatementService.order_discount_type(self.order(2, customer_id=uuid4())) == "customer"

    def test_order_level_discount_without_item_discounts(self):
        order = sales_order(100, discount=5, items=[order_item(1, 100)])

        assert PLStatementService.order_discount_type(order) == "other"


class TestDegradedStages:
    """Failures in optional stages are recorded, required ones abort."""

    @pytest.mark.asyncio
    async def test_optional_stages_degrade_to_zero(self, service, populated_store, march_2024):
        populated_store.failing.add("list_accounts")

        statement = await service.generate(march_2024)

        stages = [warning["stage"] for warning in statement.metadata.warnings]
        assert stages == ["operating_expenses", "other_income", "other_expenses"]
        assert statement.operating_expenses.total == D(0)
        assert statement.other_income.total == D(0)
        assert statement.total_revenue == D(11350)
        assert statement.earnings_before_tax == D(7350)

    @pytest.mark.asyncio
    async def test_sales_tax_failure_is_a_warning(self, service, populated_store, march_2024):
        populated_store.failing.add("find_account")

        statement = await service.generate(march_2024)

        assert statement.metadata.warnings[0]["stage"] == "sales_tax"
        assert statement.taxes.sales_tax == D(0)
        assert statement.taxes.income_tax == D("445.00")

    @pytest.mark.asyncio
    async def test_revenue_failure_aborts(self, service, populated_store, statement_store, march_2024):
        populated_store.failing.add("find_returns")

        with pytest.raises(StatementStageError) as exc_info:
            await service.generate(march_2024)

        assert exc_info.value.stage == "revenue"
        assert exc_info.value.code == ErrorCode.STATEMENT_STAGE_FAILED
        assert statement_store.saved == []

    @pytest.mark.asyncio
    async def test_cogs_failure_aborts(self, service, populated_store, march_2024):
        populated_store.failing.add("list_products")

        with pytest.raises(StatementStageError) as exc_info:
            await service.generate(march_2024)

        assert exc_info.value.stage == "cost_of_goods_sold"

    @pytest.mark.asyncio
    async def test_period_is_required(self, service):
        with pytest.raises(ValidationFailure):
            await service.generate("2024-03")


class TestComparisons:
    """Previous period and budget statement comparisons."""

    @pytest.mark.asyncio
    async def test_previous_period_and_budget(self, service, statement_store, march_2024):
        statement_store.add_summary(Period(date(2024, 1, 1), date(2024, 1, 31)), "1000")
        statement_store.add_summary(Period(date(2024, 2, 1), date(2024, 2, 29)), "2000")
        statement_store.add_summary(march_2024, "3000", statement_type="budget_profit_loss")

        statement = await service.generate(march_2024)

        previous = statement.comparison["previous_period"]
        assert previous["period"] == "2024-02-01 to 2024-02-29"
        assert previous["change"] == D("1045.00")
        assert previous["change_percentage"] == D("52.25")
        budget = statement.comparison["budget"]
        assert budget["variance"] == D("45.00")
        assert budget["variance_percentage"] == D("1.50")

    @pytest.mark.asyncio
    async def test_no_history(self, service, march_2024):
        statement = await service.generate(march_2024)

        assert statement.comparison == {}

    @pytest.mark.asyncio
    async def test_comparison_failure_is_a_warning(self, service, statement_store, march_2024):
        statement_store.failing.add("find_previous")

        statement = await service.generate(march_2024)

        assert statement.metadata.warnings == [{"stage": "comparisons", "error": "find_previous unavailable"}]
        assert statement.net_income == D("3045.00")

    @pytest.mark.asyncio
    async def test_comparisons_can_be_skipped(self, service, statement_store, march_2024):
        statement_store.failing.add("find_previous")

        statement = await service.generate(march_2024, StatementOptions(calculate_comparisons=False))

        assert statement.metadata.warnings == []


class TestBudgetAndRules:
    """Budget annotations and operator rule sets on operating expenses."""

    @pytest.mark.asyncio
    async def test_budget_annotations(self, populated_store, settings, march_2024):
        budget = Budget(uuid4(), "Q1", items=[BudgetItem(ExpenseType.SELLING, "advertising", D(800))])
        service = PLStatementService(populated_store, budget_store=InMemoryBudgetStore(budget), settings=settings)

        opex = await service.calculate_operating_expenses(march_2024)

        advertising = opex.selling.details[0]
        assert advertising["budget"]["amount"] == D(800)
        assert advertising["budget"]["variance"] == D(200)
        assert advertising["budget"]["status"] == "unfavorable"
        assert opex.budget_comparison["budget_name"] == "Q1"

    @pytest.mark.asyncio
    async def test_budget_failure_is_skipped(self, populated_store, settings, march_2024):
        budget_store = InMemoryBudgetStore()
        budget_store.failing.add("find_budget_for_period")
        service = PLStatementService(populated_store, budget_store=budget_store, settings=settings)

        opex = await service.calculate_operating_expenses(march_2024)

        assert opex.total == D(2500)
        assert opex.budget_comparison is None

    @pytest.mark.asyncio
    async def test_rule_provider_reclassifies(self, populated_store, settings, march_2024):
        rules = InMemoryRuleMetadataStore(revision=4, document={
            "code_table": {"5221": {"expense_type": "administrative", "category": "events"}},
        })
        service = PLStatementService(
            populated_store,
            rule_provider=RuleSetProvider(store=rules),
            settings=settings,
            income_tax_calculator=IncomeTaxCalculator(IncomeTaxConfig()),
        )

        statement = await service.generate(march_2024)

        assert statement.operating_expenses.selling.amount == D(0)
        assert statement.operating_expenses.administrative.amount == D(2500)
        assert rules.loads == 1

    @pytest.mark.asyncio
    async def test_reloaded_rules_label_revenue_and_discounts(self, populated_store, settings, march_2024):
        rules = InMemoryRuleMetadataStore(revision=7, document={
            "revenue_rules": [{"label": "Consulting", "keywords": ["consult"]}],
            "revenue_default": "Goods",
            "discount_rules": [{"label": "staff", "keywords": ["loyalty"]}],
        })
        service = PLStatementService(
            populated_store,
            rule_provider=RuleSetProvider(store=rules),
            settings=settings,
            income_tax_calculator=IncomeTaxCalculator(IncomeTaxConfig()),
        )

        revenue = (await service.generate(march_2024)).revenue

        assert {d["category"]: d["amount"] for d in revenue.gross_sales.details} == {
            "Consulting": D(2000),
            "Goods": D(10000),
        }
        assert [d["type"] for d in revenue.sales_discounts.details] == ["staff"]
        assert rules.loads == 1

    @pytest.mark.asyncio
    async def test_configured_rule_file_is_used(self, populated_store, march_2024, tmp_path):
        path = tmp_path / "rules.json"
        path.write_text(json.dumps({
            "revenue_rules": [{"label": "Consulting", "keywords": ["consult"]}],
            "revenue_default": "Goods",
        }))
        service = PLStatementService(
            populated_store,
            settings=Settings(classification_rules_path=str(path)),
            income_tax_calculator=IncomeTaxCalculator(IncomeTaxConfig()),
        )

        revenue = (await service.generate(march_2024)).revenue

        assert service.rule_provider.path == str(path)
        assert sorted(d["category"] for d in revenue.gross_sales.details) == ["Consulting", "Goods"]

    def test_injected_classifier_ignores_rule_file(self, populated_store, tmp_path):
        service = PLStatementService(
            populated_store,
            classifier=ExpenseClassifier(),
            settings=Settings(classification_rules_path=str(tmp_path / "missing.json")),
        )

        assert service.rule_provider is None


class TestPersistenceAndSummary:

    @pytest.mark.asyncio
    async def test_statement_is_saved(self, service, statement_store, march_2024):
        statement = await service.generate(
            march_2024, StatementOptions(generated_by="scheduler", company_info={"name": "Acme"})
        )

        assert statement_store.saved == [statement]
        assert statement.id is not None
        payload = statement.to_dict()
        assert payload["generated_by"] == "scheduler"
        assert payload["company"] == {"name": "Acme"}

    @pytest.mark.asyncio
    async def test_summary_is_not_persisted(self, service, statement_store, march_2024):
        summary = await service.get_summary(march_2024)

        assert statement_store.saved == []
        assert summary["net_income"] == D("3045.00")
        assert summary["breakdown"]["total_tax"] == D("1405.00")
        assert summary["breakdown"]["selling_expenses"] == D(1000)
        assert summary["warnings"] == []
