"""
FinLedger - Balance Reconstructor Tests

Replay of the append-only ledger into pending/advance/current balances.
"""

from datetime import datetime, timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from finledger.schemas.ledger import AccountBalanceSnapshot, LedgerEntryKind, LedgerEntryStatus
from finledger.services.balance_reconstructor import (
    BalanceReconstructor,
    ReplayStrategy,
    summarize_entries,
)
from tests.fixtures.builders import D, make_entry


T0 = datetime(2024, 3, 1, 9, 0)


def at(minutes: int) -> datetime:
    return T0 + timedelta(minutes=minutes)


@pytest.fixture
def owner_id():
    return uuid4()


@pytest.fixture
def replay():
    return BalanceReconstructor(ReplayStrategy.FULL_REPLAY)


class TestReplayRules:
    """Per-kind balance rules."""

    def test_invoice_then_partial_payment(self, replay, owner_id):
        """Invoice 1000 then payment 600 leaves 400 pending."""
        entries = [
            make_entry(owner_id, "invoice", 1000, at(0)),
            make_entry(owner_id, "payment", -600, at(1)),
        ]

        result = replay.reconstruct(owner_id, entries)

        assert result.snapshot.pending_balance == D("400")
        assert result.snapshot.advance_balance == D("0")
        assert result.snapshot.current_balance == D("400")
        assert result.applied_count == 2

    def test_overpayment_becomes_advance(self, replay, owner_id):
        """Payment beyond the pending balance moves the remainder to advance."""
        entries = [
            make_entry(owner_id, "invoice", 500, at(0)),
            make_entry(owner_id, "payment", -800, at(1)),
        ]

        snapshot = replay.reconstruct(owner_id, entries).snapshot

        assert snapshot.pending_balance == D("0")
        assert snapshot.advance_balance == D("300")
        assert snapshot.current_balance == D("-300")

    def test_positive_payment_amount_is_treated_as_magnitude(self, replay, owner_id):
        """Settling kinds use the absolute amount."""
        entries = [
            make_entry(owner_id, "invoice", 200, at(0)),
            make_entry(owner_id, "credit_note", 50, at(1)),
        ]

        snapshot = replay.reconstruct(owner_id, entries).snapshot

        assert snapshot.pending_balance == D("150")

    def test_negative_adjustment_reduces_pending_then_advance(self, replay, owner_id):
        """Negative adjustment takes pending to zero, then eats into advance."""
        entries = [
            make_entry(owner_id, "invoice", 100, at(0)),
            make_entry(owner_id, "payment", -150, at(1)),
            make_entry(owner_id, "invoice", 20, at(2)),
            make_entry(owner_id, "adjustment", -40, at(3)),
        ]

        snapshot = replay.reconstruct(owner_id, entries).snapshot

        # after payment: pending 0, advance 50; invoice: pending 20
        # adjustment 40: pending 0, advance 50 - 20 = 30
        assert snapshot.pending_balance == D("0")
        assert snapshot.advance_balance == D("30")

    def test_adjustment_never_drives_advance_negative(self, replay, owner_id):
        entries = [make_entry(owner_id, "adjustment", -75, at(0))]

        snapshot = replay.reconstruct(owner_id, entries).snapshot

        assert snapshot.pending_balance == D("0")
        assert snapshot.advance_balance == D("0")

    def test_write_off_floors_pending_at_zero(self, replay, owner_id):
        entries = [
            make_entry(owner_id, "invoice", 80, at(0)),
            make_entry(owner_id, "write_off", -100, at(1)),
        ]

        snapshot = replay.reconstruct(owner_id, entries).snapshot

        assert snapshot.pending_balance == D("0")
        assert snapshot.advance_balance == D("0")

    def test_negative_opening_balance_is_advance(self, replay, owner_id):
        entries = [make_entry(owner_id, "opening_balance", -25, at(0))]

        snapshot = replay.reconstruct(owner_id, entries).snapshot

        assert snapshot.advance_balance == D("25")
        assert snapshot.current_balance == D("-25")

    def test_empty_ledger_is_zero(self, replay, owner_id):
        result = replay.reconstruct(owner_id, [])

        assert result.snapshot == AccountBalanceSnapshot.from_components(D(0), D(0))
        assert result.entry_count == 0

    def test_apply_rejects_unknown_kind(self):
        with pytest.raises(ValueError):
            BalanceReconstructor.apply("bogus", D(1), D(0), D(0))


class TestReplayOrdering:
    """Ordering and reversal handling."""

    def test_reversed_entries_are_ignored(self, replay, owner_id):
        entries = [
            make_entry(owner_id, "invoice", 300, at(0)),
            make_entry(owner_id, "invoice", 999, at(1), status=LedgerEntryStatus.REVERSED),
        ]

        snapshot = replay.reconstruct(owner_id, entries).snapshot

        assert snapshot.pending_balance == D("300")

    def test_input_order_does_not_matter(self, replay, owner_id):
        """Entries are sorted by (posted_at, id) before replay."""
        entries = [
            make_entry(owner_id, "invoice", 500, at(0)),
            make_entry(owner_id, "payment", -800, at(1)),
            make_entry(owner_id, "invoice", 100, at(2)),
        ]

        forward = replay.reconstruct(owner_id, entries).snapshot
        backward = replay.reconstruct(owner_id, list(reversed(entries))).snapshot

        assert forward == backward
        # advance 300 is not consumed by a later invoice
        assert forward.pending_balance == D("100")
        assert forward.advance_balance == D("300")

    def test_replay_is_deterministic(self, replay, owner_id):
        entries = [
            make_entry(owner_id, "invoice", 120, at(0)),
            make_entry(owner_id, "refund", 20, at(1)),
        ]

        assert replay.reconstruct(owner_id, entries).snapshot == replay.reconstruct(owner_id, entries).snapshot


class TestMalformedEntries:
    """Malformed rows are skipped and reported, never raised."""

    def test_unknown_kind_is_skipped(self, replay, owner_id):
        entries = [
            make_entry(owner_id, "invoice", 100, at(0)),
            make_entry(owner_id, "mystery", 50, at(1)),
        ]

        result = replay.reconstruct(owner_id, entries)

        assert result.snapshot.pending_balance == D("100")
        assert len(result.skipped) == 1
        assert "unknown kind" in result.skipped[0].reason

    def test_non_numeric_amount_is_skipped(self, replay, owner_id):
        entries = [make_entry(owner_id, "invoice", "abc", at(0))]

        result = replay.reconstruct(owner_id, entries)

        assert result.snapshot.pending_balance == D("0")
        assert len(result.skipped) == 1

    def test_missing_amount_is_skipped(self, replay, owner_id):
        entries = [make_entry(owner_id, "payment", None, at(0))]

        result = replay.reconstruct(owner_id, entries)

        assert result.applied_count == 0
        assert result.skipped[0].entry_id == entries[0].id

    def test_negative_invoice_is_skipped(self, replay, owner_id):
        entries = [
            make_entry(owner_id, "invoice", 100, at(0)),
            make_entry(owner_id, "invoice", -40, at(1)),
        ]

        result = replay.reconstruct(owner_id, entries)

        assert result.snapshot.pending_balance == D("100")
        assert result.entry_count == 2


class TestReplayStrategies:
    """Balance checkpoints stored on entries."""

    def entries(self, owner_id):
        return [
            make_entry(owner_id, "invoice", 100, at(0)),
            make_entry(
                owner_id, "invoice", 50, at(1),
                snapshot_after=AccountBalanceSnapshot.from_components(D("500"), D("0")),
            ),
            make_entry(owner_id, "payment", -200, at(2)),
        ]

    def test_snapshot_priority_resets_running_balance(self, owner_id):
        """A checkpoint replaces the running balance; later entries replay on top."""
        reconstructor = BalanceReconstructor(ReplayStrategy.SNAPSHOT_PRIORITY)

        result = reconstructor.reconstruct(owner_id, self.entries(owner_id))

        assert result.snapshot.pending_balance == D("300")
        assert result.checkpoints_used == 1

    def test_full_replay_ignores_checkpoints(self, owner_id):
        reconstructor = BalanceReconstructor(ReplayStrategy.FULL_REPLAY)

        result = reconstructor.reconstruct(owner_id, self.entries(owner_id))

        assert result.snapshot.pending_balance == D("0")
        assert result.snapshot.advance_balance == D("50")
        assert result.checkpoints_used == 0

    def test_strategy_accepts_string_value(self):
        assert BalanceReconstructor("full_replay").strategy == ReplayStrategy.FULL_REPLAY


class TestSummarizeEntries:
    """Per-bucket counts and totals for reconciliation reports."""

    def test_buckets_and_totals(self, owner_id):
        entries = [
            make_entry(owner_id, "invoice", 100, at(0)),
            make_entry(owner_id, "invoice", 50, at(1)),
            make_entry(owner_id, "payment", -80, at(2)),
            make_entry(owner_id, "refund", 10, at(3)),
            make_entry(owner_id, "credit_note", 5, at(4), net_amount=D("4")),
            make_entry(owner_id, "opening_balance", 999, at(5)),
        ]

        summary = summarize_entries(entries)

        assert summary["invoices"] == {"count": 2, "total": D("150")}
        assert summary["payments"] == {"count": 1, "total": D("-80")}
        assert summary["refunds"] == {"count": 2, "total": D("14")}
        assert summary["adjustments"]["count"] == 0
        assert list(summary) == ["invoices", "payments", "refunds", "adjustments", "write_offs"]

    def test_kind_enum_is_accepted(self, owner_id):
        entries = [make_entry(owner_id, LedgerEntryKind.WRITE_OFF, -30, at(0))]

        assert summarize_entries(entries)["write_offs"]["total"] == Decimal("-30")
