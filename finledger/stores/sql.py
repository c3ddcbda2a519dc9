"""
FinLedger - SQLAlchemy Stores

Async SQLAlchemy implementations of the store interfaces.
"""

import logging
import re
import uuid
from contextlib import asynccontextmanager
from datetime import date, datetime
from decimal import Decimal
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from finledger.models.accounting import AccountingTransaction as TransactionRecord
from finledger.models.accounting import ChartOfAccounts
from finledger.models.ledger import AccountOwner, LedgerEntryRecord
from finledger.models.purchasing import PurchaseInvoice as PurchaseInvoiceRecord
from finledger.models.purchasing import PurchaseOrder as PurchaseOrderRecord
from finledger.models.purchasing import ReturnRecord as ReturnRow
from finledger.models.reporting import Budget as BudgetRecord
from finledger.models.reporting import ClassificationRuleDocument, FinancialStatementRecord
from finledger.models.sales import Product as ProductRecord
from finledger.models.sales import SalesOrder as SalesOrderRecord
from finledger.schemas.ledger import (
    AccountBalanceSnapshot,
    LedgerEntry,
    LedgerEntryStatus,
    OwnerRef,
    OwnerType,
    VersionedBalance,
)
from finledger.schemas.period import Period, PeriodType
from finledger.schemas.statement import PLStatement, StoredStatementSummary
from finledger.schemas.transaction import (
    Account,
    AccountCategory,
    AccountingTransaction,
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
    SalesOrder,
    SalesOrderItem,
    TransactionSide,
    TransactionStatus,
)
from finledger.utils.error_handling import wrap_database_error

logger = logging.getLogger(__name__)

SALES_RETURN_STATUSES = ("completed", "received", "approved", "refunded")
PURCHASE_RETURN_STATUSES = ("approved", "processing", "received", "completed", "refunded")
PURCHASE_INVOICE_STATUSES = ("confirmed", "received", "paid", "closed")
ACTIVE_BUDGET_STATUSES = ("approved", "active")

BUDGET_STATEMENT_TYPE = "budget_profit_loss"


class _SqlStore:
    """
    Bound either to one AsyncSession (the caller owns the transaction) or to
    a session factory, in which case every call runs in its own short
    transaction and the store may be shared by concurrent tasks.
    """

    def __init__(
        self,
        db: Optional[AsyncSession] = None,
        session_factory: Optional[async_sessionmaker] = None,
    ):
        if db is None and session_factory is None:
            raise ValueError("Either a session or a session factory is required")
        self.db = db
        self.session_factory = session_factory

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        if self.db is not None:
            yield self.db
            return
        async with self.session_factory() as session:
            async with session.begin():
                yield session

    async def _scalars(self, query, operation: str) -> List[Any]:
        try:
            async with self._session() as db:
                result = await db.execute(query)
                return list(result.scalars().all())
        except SQLAlchemyError as exc:
            raise wrap_database_error(exc, operation) from exc

    async def _first(self, query, operation: str) -> Optional[Any]:
        rows = await self._scalars(query.limit(1), operation)
        return rows[0] if rows else None


def _enum_or_none(enum_cls, value):
    try:
        return enum_cls(value) if value is not None else None
    except ValueError:
        return None


# ===========================================
# SUB-LEDGER & BALANCES
# ===========================================

def _to_entry(record: LedgerEntryRecord) -> LedgerEntry:
    snapshot = None
    if record.pending_after is not None and record.advance_after is not None:
        if record.current_after is not None:
            snapshot = AccountBalanceSnapshot(
                pending_balance=record.pending_after,
                advance_balance=record.advance_after,
                current_balance=record.current_after,
            )
        else:
            snapshot = AccountBalanceSnapshot.from_components(record.pending_after, record.advance_after)

    return LedgerEntry(
        id=record.id,
        owner_id=record.owner_id,
        kind=record.kind,
        amount=record.amount,
        posted_at=record.posted_at,
        status=(
            LedgerEntryStatus.REVERSED
            if record.status == LedgerEntryStatus.REVERSED.value
            else LedgerEntryStatus.POSTED
        ),
        snapshot_after=snapshot,
        reference=record.reference,
        net_amount=record.net_amount,
        metadata=dict(record.extra_data or {}),
    )


class SqlLedgerStore(_SqlStore):
    async def list_entries(self, owner_id: uuid.UUID, include_reversed: bool = False) -> List[LedgerEntry]:
        query = select(LedgerEntryRecord).where(LedgerEntryRecord.owner_id == owner_id)
        if not include_reversed:
            query = query.where(LedgerEntryRecord.status != LedgerEntryStatus.REVERSED.value)
        query = query.order_by(LedgerEntryRecord.posted_at, LedgerEntryRecord.id)
        return [_to_entry(r) for r in await self._scalars(query, "ledger entry lookup")]

    async def list_entries_between(self, owner_id: uuid.UUID, start: datetime, end: datetime) -> List[LedgerEntry]:
        query = (
            select(LedgerEntryRecord)
            .where(LedgerEntryRecord.owner_id == owner_id)
            .where(LedgerEntryRecord.posted_at >= start)
            .where(LedgerEntryRecord.posted_at <= end)
            .order_by(LedgerEntryRecord.posted_at, LedgerEntryRecord.id)
        )
        return [_to_entry(r) for r in await self._scalars(query, "ledger entry lookup")]


class SqlBalanceStore(_SqlStore):
    async def list_owners(self, owner_type: Optional[OwnerType] = None) -> List[OwnerRef]:
        query = select(AccountOwner).where(AccountOwner.is_deleted == False)  # noqa: E712
        if owner_type is not None:
            query = query.where(AccountOwner.owner_type == OwnerType(owner_type).value)
        query = query.order_by(AccountOwner.name, AccountOwner.id)
        return [
            OwnerRef(
                owner_id=owner.id,
                name=owner.display_name,
                owner_type=_enum_or_none(OwnerType, owner.owner_type) or OwnerType.CUSTOMER,
            )
            for owner in await self._scalars(query, "owner listing")
        ]

    async def get_balance(self, owner_id: uuid.UUID) -> Optional[VersionedBalance]:
        owner = await self._first(
            select(AccountOwner)
            .where(AccountOwner.id == owner_id)
            .where(AccountOwner.is_deleted == False)  # noqa: E712
            # Conditional updates bypass the identity map
            .execution_options(populate_existing=True),
            "balance lookup",
        )
        if owner is None:
            return None
        return VersionedBalance(
            owner_id=owner.id,
            snapshot=AccountBalanceSnapshot(
                pending_balance=owner.pending_balance,
                advance_balance=owner.advance_balance,
                current_balance=owner.current_balance,
            ),
            version=owner.version_id,
            owner_name=owner.display_name,
            owner_type=_enum_or_none(OwnerType, owner.owner_type) or OwnerType.CUSTOMER,
        )

    async def compare_and_swap(
        self,
        owner_id: uuid.UUID,
        expected_version: int,
        snapshot: AccountBalanceSnapshot,
    ) -> bool:
        """Single conditional UPDATE; True when exactly one row matched the expected version."""
        query = (
            update(AccountOwner)
            .where(AccountOwner.id == owner_id)
            .where(AccountOwner.version_id == expected_version)
            .values(
                pending_balance=snapshot.pending_balance,
                advance_balance=snapshot.advance_balance,
                current_balance=snapshot.current_balance,
                version_id=expected_version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        try:
            async with self._session() as db:
                result = await db.execute(query)
                await db.flush()
        except SQLAlchemyError as exc:
            raise wrap_database_error(exc, "balance update") from exc
        return result.rowcount == 1


# ===========================================
# POSTINGS & DOCUMENTS
# ===========================================

def _to_transaction(record: TransactionRecord) -> AccountingTransaction:
    return AccountingTransaction(
        id=record.id,
        account_code=record.account_code,
        created_at=record.created_at,
        debit_amount=record.debit_amount or Decimal("0"),
        credit_amount=record.credit_amount or Decimal("0"),
        description=record.description or "",
        status=_enum_or_none(TransactionStatus, record.status) or TransactionStatus.COMPLETED,
        reference=record.reference,
        kind=record.kind,
        tags=list(record.tags or []),
        metadata=dict(record.extra_data or {}),
    )


def _to_account(record: ChartOfAccounts) -> Account:
    return Account(
        code=record.account_code,
        name=record.account_name,
        account_type=AccountType(record.account_type),
        category=_enum_or_none(AccountCategory, record.account_category) or AccountCategory.OTHER,
        is_active=record.is_active,
    )


def _to_order(record: SalesOrderRecord) -> SalesOrder:
    return SalesOrder(
        id=record.id,
        order_number=record.order_number,
        status=record.status,
        created_at=record.created_at,
        subtotal=record.subtotal,
        discount_amount=record.discount_amount,
        tax_amount=record.tax_amount,
        total=record.total,
        is_tax_exempt=record.is_tax_exempt,
        order_type=record.order_type,
        customer_id=record.customer_id,
        items=[
            SalesOrderItem(
                product_id=item.product_id,
                quantity=item.quantity,
                unit_price=item.unit_price,
                unit_cost=item.unit_cost,
                discount_amount=item.discount_amount,
            )
            for item in record.items
        ],
    )


class SqlTransactionStore(_SqlStore):
    async def find_transactions(
        self,
        account_codes: Optional[Sequence[str]],
        start: datetime,
        end: datetime,
        side: Optional[TransactionSide] = None,
        status: TransactionStatus = TransactionStatus.COMPLETED,
        kind: Optional[str] = None,
    ) -> List[AccountingTransaction]:
        if account_codes is not None and not account_codes:
            return []

        query = (
            select(TransactionRecord)
            .where(TransactionRecord.created_at >= start)
            .where(TransactionRecord.created_at <= end)
            .where(TransactionRecord.status == TransactionStatus(status).value)
        )
        if account_codes is not None:
            query = query.where(TransactionRecord.account_code.in_(list(account_codes)))
        if side == TransactionSide.DEBIT:
            query = query.where(TransactionRecord.debit_amount > 0)
        elif side == TransactionSide.CREDIT:
            query = query.where(TransactionRecord.credit_amount > 0)
        if kind is not None:
            query = query.where(TransactionRecord.kind == kind)
        query = query.order_by(TransactionRecord.created_at, TransactionRecord.id)

        return [_to_transaction(r) for r in await self._scalars(query, "transaction lookup")]

    async def list_accounts(
        self,
        account_type: Optional[AccountType] = None,
        account_category: Optional[AccountCategory] = None,
    ) -> List[Account]:
        query = (
            select(ChartOfAccounts)
            .where(ChartOfAccounts.is_active == True)  # noqa: E712
            .where(ChartOfAccounts.allow_direct_posting == True)  # noqa: E712
        )
        if account_type is not None:
            query = query.where(ChartOfAccounts.account_type == AccountType(account_type).value)
        if account_category is not None:
            query = query.where(ChartOfAccounts.account_category == AccountCategory(account_category).value)
        query = query.order_by(ChartOfAccounts.account_code)
        return [_to_account(r) for r in await self._scalars(query, "chart of accounts lookup")]

    async def find_account(self, code: str, name_pattern: Optional[str] = None) -> Optional[Account]:
        record = await self._first(
            select(ChartOfAccounts)
            .where(ChartOfAccounts.account_code == code)
            .where(ChartOfAccounts.is_active == True),  # noqa: E712
            "chart of accounts lookup",
        )
        if record is None:
            return None
        if name_pattern and not re.search(name_pattern, record.account_name or "", re.IGNORECASE):
            return None
        return _to_account(record)

    async def find_sales_orders(self, period: Period, statuses: Sequence[str]) -> List[SalesOrder]:
        query = (
            select(SalesOrderRecord)
            .where(SalesOrderRecord.created_at >= period.start_datetime)
            .where(SalesOrderRecord.created_at <= period.end_datetime)
            .where(SalesOrderRecord.status.in_(list(statuses)))
            .order_by(SalesOrderRecord.created_at, SalesOrderRecord.id)
        )
        return [_to_order(r) for r in await self._scalars(query, "sales order lookup")]

    async def list_products(self) -> List[Product]:
        query = select(ProductRecord).where(ProductRecord.is_active == True)  # noqa: E712
        return [
            Product(
                id=r.id,
                name=r.name,
                stock_quantity=r.stock_quantity,
                unit_cost=r.unit_cost,
                is_active=r.is_active,
            )
            for r in await self._scalars(query, "product lookup")
        ]

    async def find_purchase_orders(
        self,
        period: Period,
        statuses: Sequence[str] = ("received", "completed"),
    ) -> List[PurchaseOrder]:
        query = (
            select(PurchaseOrderRecord)
            .where(PurchaseOrderRecord.created_at >= period.start_datetime)
            .where(PurchaseOrderRecord.created_at <= period.end_datetime)
            .where(PurchaseOrderRecord.status.in_(list(statuses)))
            .order_by(PurchaseOrderRecord.created_at)
        )
        return [
            PurchaseOrder(
                id=r.id,
                status=r.status,
                created_at=r.created_at,
                total=r.total,
                freight_amount=r.freight_amount,
                supplier_name=r.supplier_name,
            )
            for r in await self._scalars(query, "purchase order lookup")
        ]

    async def find_purchase_invoices(self, period: Period, kind: PurchaseInvoiceKind) -> List[PurchaseInvoice]:
        query = (
            select(PurchaseInvoiceRecord)
            .where(PurchaseInvoiceRecord.kind == PurchaseInvoiceKind(kind).value)
            .where(PurchaseInvoiceRecord.created_at >= period.start_datetime)
            .where(PurchaseInvoiceRecord.created_at <= period.end_datetime)
            .where(PurchaseInvoiceRecord.status.in_(PURCHASE_INVOICE_STATUSES))
            .order_by(PurchaseInvoiceRecord.created_at)
        )
        return [
            PurchaseInvoice(
                id=r.id,
                invoice_number=r.invoice_number,
                kind=PurchaseInvoiceKind(r.kind),
                created_at=r.created_at,
                subtotal=r.subtotal,
                discount_amount=r.discount_amount,
                total=r.total,
                supplier_name=r.supplier_name,
            )
            for r in await self._scalars(query, "purchase invoice lookup")
        ]

    async def find_returns(self, period: Period, origin: ReturnOrigin) -> List[ReturnRecord]:
        origin = ReturnOrigin(origin)
        statuses = SALES_RETURN_STATUSES if origin == ReturnOrigin.SALES else PURCHASE_RETURN_STATUSES
        query = (
            select(ReturnRow)
            .where(ReturnRow.origin == origin.value)
            .where(ReturnRow.returned_at >= period.start_datetime)
            .where(ReturnRow.returned_at <= period.end_datetime)
            .where(ReturnRow.status.in_(statuses))
            .order_by(ReturnRow.returned_at)
        )
        return [
            ReturnRecord(
                id=r.id,
                return_number=r.return_number,
                origin=origin,
                returned_at=r.returned_at,
                amount=r.amount,
                supplier_name=r.supplier_name,
            )
            for r in await self._scalars(query, "return lookup")
        ]


# ===========================================
# STATEMENTS, BUDGETS & RULES
# ===========================================

def _to_summary(record: FinancialStatementRecord) -> StoredStatementSummary:
    return StoredStatementSummary(
        id=record.id,
        statement_type=record.statement_type,
        period=Period(
            record.period_start,
            record.period_end,
            _enum_or_none(PeriodType, record.period_type) or PeriodType.CUSTOM,
        ),
        net_income=record.net_income,
        total_revenue=record.total_revenue,
    )


class SqlStatementStore(_SqlStore):
    async def find_previous(
        self,
        before: date,
        statement_type: str = "profit_loss",
    ) -> Optional[StoredStatementSummary]:
        record = await self._first(
            select(FinancialStatementRecord)
            .where(FinancialStatementRecord.statement_type == statement_type)
            .where(FinancialStatementRecord.period_end < before)
            .order_by(FinancialStatementRecord.period_end.desc()),
            "previous statement lookup",
        )
        return _to_summary(record) if record else None

    async def find_budget(self, period: Period) -> Optional[StoredStatementSummary]:
        record = await self._first(
            select(FinancialStatementRecord)
            .where(FinancialStatementRecord.statement_type == BUDGET_STATEMENT_TYPE)
            .where(FinancialStatementRecord.period_start == period.start_date)
            .where(FinancialStatementRecord.period_end == period.end_date),
            "budget statement lookup",
        )
        return _to_summary(record) if record else None

    async def save(self, statement: PLStatement) -> uuid.UUID:
        record = FinancialStatementRecord(
            statement_type=statement.statement_type,
            status=statement.status,
            period_start=statement.period.start_date,
            period_end=statement.period.end_date,
            period_type=statement.period.type.value,
            total_revenue=statement.total_revenue,
            net_income=statement.net_income,
            generated_by=statement.generated_by,
            payload=statement.to_dict(),
        )
        try:
            async with self._session() as db:
                db.add(record)
                await db.flush()
        except SQLAlchemyError as exc:
            raise wrap_database_error(exc, "statement save") from exc

        logger.info(f"Saved {statement.statement_type} statement {record.id} for {statement.period.label}")
        return record.id


class SqlBudgetStore(_SqlStore):
    async def find_budget_for_period(self, period: Period, budget_type: str = "expense") -> Optional[Budget]:
        """Active budget overlapping the period; the latest-starting one wins."""
        record = await self._first(
            select(BudgetRecord)
            .where(BudgetRecord.budget_type == budget_type)
            .where(BudgetRecord.status.in_(ACTIVE_BUDGET_STATUSES))
            .where(BudgetRecord.period_start <= period.end_date)
            .where(BudgetRecord.period_end >= period.start_date)
            .order_by(BudgetRecord.period_start.desc()),
            "budget lookup",
        )
        if record is None:
            return None
        return Budget(
            id=record.id,
            name=record.name,
            items=[
                BudgetItem(
                    expense_type=ExpenseType(item.expense_type),
                    category=item.category,
                    amount=item.amount,
                )
                for item in record.items
                if _enum_or_none(ExpenseType, item.expense_type) is not None
            ],
        )


class SqlRuleMetadataStore(_SqlStore):
    async def load_rule_document(self) -> Tuple[int, Dict[str, Any]]:
        """Highest active revision; (0, {}) when none is stored."""
        record = await self._first(
            select(ClassificationRuleDocument)
            .where(ClassificationRuleDocument.is_active == True)  # noqa: E712
            .order_by(ClassificationRuleDocument.revision.desc()),
            "classification rule lookup",
        )
        if record is None:
            return 0, {}
        return record.revision, dict(record.document or {})
