"""Tests for history reconciliation — dedup, ordering, idempotence, failed refresh."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

from src.models.transaction import ConfirmedRecord, PendingEntry, TxStatus
from src.wallet.events import EventBus, EventKind, EventLevel
from src.wallet.exceptions import SyncError
from src.wallet.history import HistoryReconciler, reconcile

from tests.conftest import RECIPIENT, EventRecorder, make_hash

SENDER = "0x2c7536E3605D9C16a7a3D7b1898e529396a65c23"
NOW = datetime(2026, 1, 15, 12, 0, tzinfo=UTC)


def _pending(n: int, nonce: int, at: datetime) -> PendingEntry:
    return PendingEntry(
        tx_hash=make_hash(n),
        sender=SENDER,
        recipient=RECIPIENT,
        asset="BNB",
        amount="0.1",
        nonce=nonce,
        gas_price=5_000_000_000,
        timestamp=at,
    )


def _confirmed(n: int, at: datetime, tx_hash: str | None = None) -> ConfirmedRecord:
    return ConfirmedRecord.model_validate(
        {
            "hash": tx_hash or make_hash(n),
            "from": SENDER,
            "to": RECIPIENT,
            "token": "USDT",
            "amount": "10.5",
            "timestamp": at.isoformat(),
        }
    )


class TestReconcile:
    def test_shared_hash_shows_once_as_confirmed(self):
        pending = [_pending(0xABC, 5, NOW)]
        # server echoes the hash with different hex case
        shouted = "0x" + make_hash(0xABC)[2:].upper()
        confirmed = [_confirmed(0, NOW - timedelta(seconds=5), shouted)]

        rows = reconcile(pending, confirmed)

        assert len(rows) == 1
        assert rows[0].status is TxStatus.CONFIRMED
        assert rows[0].asset == "USDT"

    def test_newest_first_across_sources(self):
        pending = [_pending(1, 5, NOW)]
        confirmed = [
            _confirmed(2, NOW - timedelta(hours=1)),
            _confirmed(3, NOW + timedelta(minutes=1)),
        ]

        rows = reconcile(pending, confirmed)

        assert [r.tx_hash for r in rows] == [make_hash(3), make_hash(1), make_hash(2)]
        assert [r.status for r in rows] == [TxStatus.CONFIRMED, TxStatus.PENDING, TxStatus.CONFIRMED]

    def test_idempotent(self):
        pending = [_pending(1, 5, NOW), _pending(4, 6, NOW)]
        confirmed = [_confirmed(2, NOW), _confirmed(3, NOW - timedelta(seconds=1))]

        first = reconcile(pending, confirmed)
        second = reconcile(list(reversed(pending)), list(reversed(confirmed)))

        assert first == second

    def test_empty(self):
        assert reconcile([], []) == []


class TestConfirmedRecord:
    def test_epoch_millis_and_numeric_amount(self):
        record = ConfirmedRecord.model_validate(
            {"hash": make_hash(1), "timestamp": 1_736_942_400_000, "amount": 0.1}
        )
        assert record.timestamp == datetime(2025, 1, 15, 12, 0, tzinfo=UTC)
        assert record.amount == "0.1"
        assert record.asset == "BNB"

    def test_naive_timestamp_is_utc(self):
        record = ConfirmedRecord.model_validate(
            {"hash": make_hash(1), "timestamp": "2026-01-15T12:00:00"}
        )
        assert record.timestamp == NOW


class TestHistoryReconciler:
    async def test_refresh_stores_records(self, backend: MagicMock, bus: EventBus):
        backend.fetch_history = AsyncMock(return_value=[_confirmed(2, NOW)])
        history = HistoryReconciler(backend, bus)

        assert await history.refresh(SENDER) is True
        assert history.loaded is True
        assert len(history.confirmed) == 1
        assert history.refreshing is False

        rows = history.merge([_pending(1, 5, NOW + timedelta(seconds=1))])
        assert [r.status for r in rows] == [TxStatus.PENDING, TxStatus.CONFIRMED]

    async def test_failed_refresh_keeps_previous_list(
        self, backend: MagicMock, bus: EventBus, recorder: EventRecorder
    ):
        backend.fetch_history = AsyncMock(return_value=[_confirmed(2, NOW)])
        history = HistoryReconciler(backend, bus)
        await history.refresh(SENDER)

        backend.fetch_history = AsyncMock(side_effect=SyncError("History HTTP 503"))
        assert await history.refresh(SENDER) is False

        assert [r.hash for r in history.confirmed] == [make_hash(2)]
        assert history.refreshing is False
        last = recorder.events[-1]
        assert last.kind is EventKind.HISTORY
        assert last.level is EventLevel.ERROR
        assert last.message == "Could not load history"

    async def test_clear(self, backend: MagicMock, bus: EventBus):
        backend.fetch_history = AsyncMock(return_value=[_confirmed(2, NOW)])
        history = HistoryReconciler(backend, bus)
        await history.refresh(SENDER)
        history.clear()

        assert history.confirmed == ()
        assert history.loaded is False
