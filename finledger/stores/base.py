"""
FinLedger - Store Interfaces

Narrow collaborator interfaces consumed by the services. SQLAlchemy
implementations live in finledger.stores.sql; tests use in-memory fakes.
"""

from datetime import date, datetime
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple
from uuid import UUID

from finledger.schemas.ledger import AccountBalanceSnapshot, LedgerEntry, OwnerRef, OwnerType, VersionedBalance
from finledger.schemas.period import Period
from finledger.schemas.statement import PLStatement, StoredStatementSummary
from finledger.schemas.transaction import (
    Account,
    AccountCategory,
    AccountingTransaction,
    AccountType,
    Budget,
    Product,
    PurchaseInvoice,
    PurchaseInvoiceKind,
    PurchaseOrder,
    ReturnOrigin,
    ReturnRecord,
    SalesOrder,
    TransactionSide,
    TransactionStatus,
)


class LedgerStore(Protocol):
    """Append-only ledger of owner entries."""

    async def list_entries(self, owner_id: UUID, include_reversed: bool = False) -> List[LedgerEntry]:
        """Entries of one owner ordered by (posted_at, id)."""
        ...

    async def list_entries_between(self, owner_id: UUID, start: datetime, end: datetime) -> List[LedgerEntry]:
        """Entries of one owner posted within [start, end], reversed ones included."""
        ...


class BalanceStore(Protocol):
    """Cached balances on owner records."""

    async def list_owners(self, owner_type: Optional[OwnerType] = None) -> List[OwnerRef]:
        ...

    async def get_balance(self, owner_id: UUID) -> Optional[VersionedBalance]:
        ...

    async def compare_and_swap(
        self,
        owner_id: UUID,
        expected_version: int,
        snapshot: AccountBalanceSnapshot,
    ) -> bool:
        """Write snapshot only if the version still matches; bump the version on success."""
        ...


class AuditSink(Protocol):
    async def record(
        self,
        entity_id: UUID,
        before: Dict[str, Any],
        after: Dict[str, Any],
        reason: str,
    ) -> None:
        ...


class TransactionStore(Protocol):
    """Read access to postings and the documents behind them."""

    async def find_transactions(
        self,
        account_codes: Optional[Sequence[str]],
        start: datetime,
        end: datetime,
        side: Optional[TransactionSide] = None,
        status: TransactionStatus = TransactionStatus.COMPLETED,
        kind: Optional[str] = None,
    ) -> List[AccountingTransaction]:
        """
        Postings created within [start, end].

        ``account_codes=None`` means any account. ``side`` keeps only postings
        with a positive amount on that leg.
        """
        ...

    async def list_accounts(
        self,
        account_type: Optional[AccountType] = None,
        account_category: Optional[AccountCategory] = None,
    ) -> List[Account]:
        """Active accounts, optionally filtered."""
        ...

    async def find_account(self, code: str, name_pattern: Optional[str] = None) -> Optional[Account]:
        ...

    async def find_sales_orders(self, period: Period, statuses: Sequence[str]) -> List[SalesOrder]:
        ...

    async def list_products(self) -> List[Product]:
        """Active products."""
        ...

    async def find_purchase_orders(self, period: Period, statuses: Sequence[str] = ("received", "completed")) -> List[PurchaseOrder]:
        ...

    async def find_purchase_invoices(self, period: Period, kind: PurchaseInvoiceKind) -> List[PurchaseInvoice]:
        ...

    async def find_returns(self, period: Period, origin: ReturnOrigin) -> List[ReturnRecord]:
        ...


class StatementStore(Protocol):
    async def find_previous(self, before: date, statement_type: str = "profit_loss") -> Optional[StoredStatementSummary]:
        """Latest statement whose period ends strictly before ``before``."""
        ...

    async def find_budget(self, period: Period) -> Optional[StoredStatementSummary]:
        """Budget P&L statement covering exactly ``period``."""
        ...

    async def save(self, statement: PLStatement) -> UUID:
        ...


class BudgetStore(Protocol):
    async def find_budget_for_period(self, period: Period) -> Optional[Budget]:
        ...


class RuleMetadataStore(Protocol):
    async def load_rule_document(self) -> Tuple[int, Dict[str, Any]]:
        """Return (revision, rule document)."""
        ...
