"""
FinLedger - Test Configuration

Pytest fixtures and configuration.
"""

from datetime import date
from decimal import Decimal
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import finledger.models  # noqa: F401  registers every table on Base.metadata
from finledger.database import Base
from finledger.schemas.period import Period, PeriodType
from finledger.services.balance_reconstructor import BalanceReconstructor, ReplayStrategy
from finledger.services.reconciliation_service import ReconciliationService
from tests.fixtures.in_memory_stores import (
    InMemoryBalanceStore,
    InMemoryBudgetStore,
    InMemoryLedgerStore,
    InMemoryStatementStore,
    InMemoryTransactionStore,
    RecordingAuditSink,
)


TEST_DATABASE_URL = "sqlite+aiosqlite://"


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    """In-memory SQLite engine with the full schema created."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def session_factory(db_engine) -> async_sessionmaker:
    return async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a fresh database session for each test."""
    async with session_factory() as session:
        yield session
        await session.rollback()


# ===========================================
# IN-MEMORY STORES
# ===========================================

@pytest.fixture
def ledger_store() -> InMemoryLedgerStore:
    return InMemoryLedgerStore()


@pytest.fixture
def balance_store() -> InMemoryBalanceStore:
    return InMemoryBalanceStore()


@pytest.fixture
def audit_sink() -> RecordingAuditSink:
    return RecordingAuditSink()


@pytest.fixture
def transaction_store() -> InMemoryTransactionStore:
    return InMemoryTransactionStore()


@pytest.fixture
def statement_store() -> InMemoryStatementStore:
    return InMemoryStatementStore()


@pytest.fixture
def budget_store() -> InMemoryBudgetStore:
    return InMemoryBudgetStore()


@pytest.fixture
def reconstructor() -> BalanceReconstructor:
    return BalanceReconstructor(ReplayStrategy.SNAPSHOT_PRIORITY)


@pytest.fixture
def reconciliation_service(ledger_store, balance_store, audit_sink, reconstructor) -> ReconciliationService:
    return ReconciliationService(
        ledger_store,
        balance_store,
        audit_sink=audit_sink,
        reconstructor=reconstructor,
        tolerance=Decimal("0.01"),
    )


@pytest.fixture
def march_2024() -> Period:
    return Period(date(2024, 3, 1), date(2024, 3, 31), PeriodType.MONTHLY)
