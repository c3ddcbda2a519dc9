"""
FinLedger - Reconciliation Task Tests

Celery task bodies run against a file-backed SQLite database, so the
concurrent per-owner sessions behave like separate connections.
"""

from datetime import datetime
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from finledger.celery_app import celery_app
from finledger.database import Base
from finledger.models import AccountOwner, AuditAction, AuditLog, LedgerEntryRecord
from finledger.services.audit_service import SessionScopedAuditSink
from finledger.stores.sql import SqlBalanceStore, SqlLedgerStore
from finledger.tasks.reconciliation_tasks import (
    _reconcile_all_balances,
    _reconcile_owner,
    build_reconciliation_service,
    run_async,
)


@pytest_asyncio.fixture
async def file_session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'finledger.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


async def seed(factory):
    """One clean customer and one customer whose cached balance drifted."""
    async with factory() as session:
        async with session.begin():
            clean = AccountOwner(name="Clean Co", pending_balance=Decimal("100"),
                                 advance_balance=Decimal("0"), current_balance=Decimal("100"))
            drifted = AccountOwner(name="Drift Co", pending_balance=Decimal("0"),
                                   advance_balance=Decimal("0"), current_balance=Decimal("0"))
            session.add_all([clean, drifted])
            await session.flush()
            session.add_all([
                LedgerEntryRecord(owner_id=clean.id, kind="invoice", amount=Decimal("100"),
                                  posted_at=datetime(2024, 3, 1)),
                LedgerEntryRecord(owner_id=drifted.id, kind="invoice", amount=Decimal("250"),
                                  posted_at=datetime(2024, 3, 1)),
                LedgerEntryRecord(owner_id=drifted.id, kind="payment", amount=Decimal("-50"),
                                  posted_at=datetime(2024, 3, 2)),
            ])
    return clean.id, drifted.id


class TestReconcileAllBalancesTask:

    @pytest.mark.asyncio
    async def test_run_corrects_and_audits(self, file_session_factory):
        clean_id, drifted_id = await seed(file_session_factory)

        result = await _reconcile_all_balances(None, True, session_factory=file_session_factory)

        assert result["total"] == 2
        assert result["reconciled"] == 1
        assert result["discrepancies"] == 1
        assert result["corrected"] == 1
        assert result["errors"] == []

        async with file_session_factory() as session:
            drifted = await session.get(AccountOwner, drifted_id)
            audit = (await session.execute(
                select(AuditLog).where(AuditLog.target_entity_id == drifted_id).order_by(AuditLog.action)
            )).scalars().all()

        assert drifted.pending_balance == Decimal("200")
        assert drifted.version_id == 2
        assert sorted(log.action for log in audit) == [
            AuditAction.BALANCE_CORRECTION.value,
            AuditAction.BALANCE_DISCREPANCY.value,
        ]

    @pytest.mark.asyncio
    async def test_owner_type_filter(self, file_session_factory):
        await seed(file_session_factory)

        result = await _reconcile_all_balances("supplier", False, session_factory=file_session_factory)

        assert result["total"] == 0


class TestReconcileOwnerTask:

    @pytest.mark.asyncio
    async def test_single_owner_report_only(self, file_session_factory):
        _, drifted_id = await seed(file_session_factory)

        result = await _reconcile_owner(drifted_id, False, session_factory=file_session_factory)

        assert result["has_difference"] is True
        assert result["corrected"] is False
        assert result["discrepancy_details"]["pending_balance"] == 200.0


class TestTaskWiring:

    def test_run_async(self):
        async def answer():
            return 42

        assert run_async(answer()) == 42

    def test_service_uses_factory_scoped_stores(self):
        factory = async_sessionmaker()
        service = build_reconciliation_service(factory)

        assert isinstance(service.ledger_store, SqlLedgerStore)
        assert isinstance(service.balance_store, SqlBalanceStore)
        assert service.balance_store.session_factory is factory
        assert isinstance(service.audit.sink, SessionScopedAuditSink)

    def test_nightly_schedule_and_routing(self):
        schedule = celery_app.conf.beat_schedule["reconcile-all-balances"]

        assert schedule["task"] == "finledger.tasks.reconciliation_tasks.reconcile_all_balances_task"
        assert celery_app.conf.task_routes["finledger.tasks.reconciliation_tasks.*"] == {"queue": "reconciliation"}
