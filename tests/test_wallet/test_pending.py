"""Tests for PendingSet — slot uniqueness, replacement, superseded hashes."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from src.models.transaction import PendingEntry, TxKind
from src.wallet.exceptions import DuplicateNonceError
from src.wallet.pending import PendingSet

from tests.conftest import RECIPIENT, make_hash

SENDER = "0x2c7536E3605D9C16a7a3D7b1898e529396a65c23"


def _entry(n: int, nonce: int, **kwargs) -> PendingEntry:
    defaults = dict(
        tx_hash=make_hash(n),
        sender=SENDER,
        recipient=RECIPIENT,
        asset="BNB",
        amount="0.1",
        nonce=nonce,
        gas_price=5_000_000_000,
    )
    defaults.update(kwargs)
    return PendingEntry(**defaults)


def _cancellation(n: int, nonce: int, replaces: str) -> PendingEntry:
    return _entry(
        n, nonce, recipient=SENDER, amount="0", kind=TxKind.CANCELLATION, replaces=replaces
    )


class TestAdd:
    def test_add_and_lookup(self):
        pending = PendingSet()
        entry = _entry(1, 5)
        pending.add(entry)

        assert len(pending) == 1
        assert pending.get_by_hash(entry.tx_hash.upper().replace("0X", "0x")) is entry
        assert pending.get_by_nonce(SENDER.lower(), 5) is entry
        assert entry.tx_hash in pending

    def test_duplicate_slot_rejected(self):
        pending = PendingSet()
        pending.add(_entry(1, 5))

        with pytest.raises(DuplicateNonceError):
            pending.add(_entry(2, 5))
        assert len(pending) == 1

    def test_next_nonce(self):
        pending = PendingSet()
        assert pending.next_nonce(SENDER) == 0
        pending.add(_entry(1, 5))
        pending.add(_entry(2, 6))
        assert pending.next_nonce(SENDER) == 7

    def test_entries_newest_first(self):
        now = datetime.now(UTC)
        pending = PendingSet()
        pending.add(_entry(1, 5, timestamp=now - timedelta(seconds=10)))
        pending.add(_entry(2, 6, timestamp=now))

        assert [e.nonce for e in pending.entries()] == [6, 5]


class TestReplace:
    def test_cancellation_evicts_original(self):
        pending = PendingSet()
        original = _entry(1, 5)
        pending.add(original)

        evicted = pending.replace(_cancellation(2, 5, original.tx_hash))

        assert evicted is original
        assert len(pending) == 1
        assert pending.get_by_hash(original.tx_hash) is None
        assert pending.get_by_nonce(SENDER, 5).tx_hash == make_hash(2)
        assert pending.is_superseded(original.tx_hash)

    def test_removing_superseded_hash_keeps_live_entry(self):
        """The original's watcher finishing must not remove the cancellation."""
        pending = PendingSet()
        original = _entry(1, 5)
        pending.add(original)
        pending.replace(_cancellation(2, 5, original.tx_hash))

        assert pending.remove_by_hash(original.tx_hash) is None

        assert pending.get_by_nonce(SENDER, 5).tx_hash == make_hash(2)
        assert not pending.is_superseded(original.tx_hash)

    def test_remove_live_entry_frees_slot(self):
        pending = PendingSet()
        pending.add(_entry(1, 5))

        removed = pending.remove_by_hash(make_hash(1))

        assert removed is not None
        assert len(pending) == 0
        pending.add(_entry(2, 5))  # slot reusable

    def test_remove_unknown_is_noop(self):
        assert PendingSet().remove_by_hash(make_hash(99)) is None

    def test_clear(self):
        pending = PendingSet()
        pending.add(_entry(1, 5))
        pending.replace(_cancellation(2, 5, make_hash(1)))
        pending.clear()

        assert len(pending) == 0
        assert not pending.is_superseded(make_hash(1))
