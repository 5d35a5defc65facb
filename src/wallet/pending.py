"""In-memory set of submitted, unconfirmed transactions.

Keyed by (sender, nonce) with a secondary hash index. Holds at most one
entry per slot: a cancellation evicts the entry it replaces in the same
step that inserts itself. The evicted hash is remembered as "superseded"
so its still-running watcher can resolve quietly.

Every mutator is synchronous, so under one event loop each one is atomic.
"""

from __future__ import annotations

from collections.abc import Iterator

from loguru import logger

from src.models.transaction import PendingEntry
from src.wallet.exceptions import DuplicateNonceError

SlotKey = tuple[str, int]


def _slot(sender: str, nonce: int) -> SlotKey:
    return sender.lower(), nonce


class PendingSet:
    def __init__(self) -> None:
        self._by_slot: dict[SlotKey, PendingEntry] = {}
        self._by_hash: dict[str, PendingEntry] = {}
        # superseded hash -> slot it used to occupy
        self._superseded: dict[str, SlotKey] = {}

    def __len__(self) -> int:
        return len(self._by_slot)

    def __contains__(self, tx_hash: object) -> bool:
        return isinstance(tx_hash, str) and tx_hash.lower() in self._by_hash

    def __iter__(self) -> Iterator[PendingEntry]:
        return iter(self.entries())

    def add(self, entry: PendingEntry) -> None:
        """Insert a new entry. The (sender, nonce) slot must be free."""
        key = _slot(entry.sender, entry.nonce)
        existing = self._by_slot.get(key)
        if existing is not None:
            raise DuplicateNonceError(
                f"Nonce {entry.nonce} already pending for {entry.sender} ({existing.tx_hash})"
            )
        self._by_slot[key] = entry
        self._by_hash[entry.tx_hash.lower()] = entry
        logger.debug(f"[PENDING] + {entry.tx_hash[:12]} nonce={entry.nonce}")

    def replace(self, entry: PendingEntry) -> PendingEntry | None:
        """Evict whatever occupies entry's slot and insert entry. Returns the evicted entry."""
        key = _slot(entry.sender, entry.nonce)
        evicted = self._by_slot.pop(key, None)
        if evicted is not None:
            self._by_hash.pop(evicted.tx_hash.lower(), None)
            self._superseded[evicted.tx_hash.lower()] = key
        self._by_slot[key] = entry
        self._by_hash[entry.tx_hash.lower()] = entry
        logger.debug(
            f"[PENDING] ~ nonce={entry.nonce} {entry.tx_hash[:12]}"
            f" replaces {evicted.tx_hash[:12] if evicted else 'nothing'}"
        )
        return evicted

    def remove_by_hash(self, tx_hash: str) -> PendingEntry | None:
        """Remove the live entry for tx_hash.

        For a superseded hash only the superseded marker is dropped; the live
        entry at that nonce belongs to another watcher and stays.
        """
        key_hash = tx_hash.lower()
        if self._superseded.pop(key_hash, None) is not None:
            return None

        entry = self._by_hash.pop(key_hash, None)
        if entry is None:
            return None
        self._by_slot.pop(_slot(entry.sender, entry.nonce), None)
        logger.debug(f"[PENDING] - {entry.tx_hash[:12]} nonce={entry.nonce}")
        return entry

    def get_by_hash(self, tx_hash: str) -> PendingEntry | None:
        return self._by_hash.get(tx_hash.lower())

    def get_by_nonce(self, sender: str, nonce: int) -> PendingEntry | None:
        return self._by_slot.get(_slot(sender, nonce))

    def is_superseded(self, tx_hash: str) -> bool:
        return tx_hash.lower() in self._superseded

    def next_nonce(self, sender: str) -> int:
        """One past the highest locally pending nonce for sender, 0 if none."""
        owner = sender.lower()
        nonces = [nonce for (addr, nonce) in self._by_slot if addr == owner]
        return max(nonces) + 1 if nonces else 0

    def entries(self) -> list[PendingEntry]:
        """Snapshot, newest submission first."""
        return sorted(self._by_slot.values(), key=lambda e: (e.timestamp, e.nonce), reverse=True)

    def clear(self) -> None:
        self._by_slot.clear()
        self._by_hash.clear()
        self._superseded.clear()
