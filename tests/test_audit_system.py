"""
FinLedger - Audit Trail Tests

Database-backed and logging audit sinks.
"""

from uuid import uuid4

import pytest

from finledger.models import AuditAction
from finledger.services.audit_service import (
    CORRECTION_REASON_PREFIX,
    DISCREPANCY_REASON_PREFIX,
    AuditService,
    FireAndForgetAuditSink,
    LoggingAuditSink,
    SessionScopedAuditSink,
    calculate_changes,
)
from tests.fixtures.builders import D
from tests.fixtures.in_memory_stores import RecordingAuditSink


BEFORE = {"pending_balance": D("500"), "advance_balance": D("0"), "current_balance": D("500")}
AFTER = {"pending_balance": D("400"), "advance_balance": D("0"), "current_balance": D("400")}


class TestCalculateChanges:

    def test_only_changed_keys(self):
        changes = calculate_changes({"a": 1, "b": 2}, {"a": 1, "b": 3, "c": 4})

        assert changes == {"b": {"old": 2, "new": 3}, "c": {"old": None, "new": 4}}


class TestAuditService:
    """Audit rows written through the caller's session."""

    @pytest.mark.asyncio
    async def test_discrepancy_record(self, db_session):
        owner_id = uuid4()
        service = AuditService(db_session)

        await service.record(owner_id, BEFORE, AFTER, f"{DISCREPANCY_REASON_PREFIX}: Pending 100.00")
        history = await service.get_entity_history(owner_id)

        assert len(history) == 1
        log = history[0]
        assert log.action == AuditAction.BALANCE_DISCREPANCY.value
        assert log.old_values["pending_balance"] == 500.0
        assert log.changes == {
            "current_balance": {"old": 500.0, "new": 400.0},
            "pending_balance": {"old": 500.0, "new": 400.0},
        }

    @pytest.mark.asyncio
    async def test_correction_record(self, db_session):
        owner_id = uuid4()
        service = AuditService(db_session)

        await service.record(owner_id, BEFORE, AFTER, f"{CORRECTION_REASON_PREFIX}: {{}}")

        history = await service.get_entity_history(owner_id)
        assert history[0].action == AuditAction.BALANCE_CORRECTION.value
        assert history[0].target_entity_type == "account_owner"

    @pytest.mark.asyncio
    async def test_session_scoped_sink_commits(self, session_factory):
        owner_id = uuid4()

        await SessionScopedAuditSink(session_factory).record(owner_id, BEFORE, AFTER, DISCREPANCY_REASON_PREFIX)

        async with session_factory() as session:
            history = await AuditService(session).get_entity_history(owner_id)
        assert len(history) == 1


class TestFireAndForget:

    @pytest.mark.asyncio
    async def test_failure_is_logged(self, caplog):
        sink = FireAndForgetAuditSink(RecordingAuditSink(fail=True))

        recorded = await sink.record(uuid4(), BEFORE, AFTER, "reason")

        assert recorded is False
        assert "Audit sink failed" in caplog.text

    @pytest.mark.asyncio
    async def test_logging_sink(self, caplog):
        caplog.set_level("INFO", logger="finledger.audit")
        owner_id = uuid4()

        assert await FireAndForgetAuditSink(LoggingAuditSink()).record(owner_id, BEFORE, AFTER, "drift") is True
        assert f"AUDIT {owner_id}: drift" in caplog.text
