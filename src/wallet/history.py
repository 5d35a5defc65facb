"""History reconciler — merges the PendingSet with the last confirmed history list.

Rules:
  - a hash present in both sources shows once, as Confirmed (server is ground truth)
  - order is newest first; pending rows use local submit time, confirmed rows
    use the server timestamp; ties break on hash so the merge is idempotent
  - a failed history fetch keeps the previous list untouched
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import TYPE_CHECKING

from loguru import logger

from src.models.transaction import ConfirmedRecord, DisplayedTransaction, PendingEntry
from src.wallet.events import EventBus, EventKind, EventLevel, WalletEvent
from src.wallet.exceptions import SyncError

if TYPE_CHECKING:
    from src.backend.client import BackendClient


def reconcile(
    pending: Iterable[PendingEntry],
    confirmed: Iterable[ConfirmedRecord],
) -> list[DisplayedTransaction]:
    """Pure merge of pending entries and confirmed records into display rows."""
    rows: dict[str, DisplayedTransaction] = {}
    for record in confirmed:
        rows.setdefault(record.hash.lower(), DisplayedTransaction.from_confirmed(record))
    for entry in pending:
        key = entry.tx_hash.lower()
        if key not in rows:
            rows[key] = DisplayedTransaction.from_pending(entry)

    return sorted(rows.values(), key=lambda r: (r.timestamp, r.tx_hash.lower()), reverse=True)


class HistoryReconciler:
    """Owns the cached confirmed history and produces the merged view."""

    def __init__(self, backend: BackendClient, bus: EventBus) -> None:
        self._backend = backend
        self._bus = bus
        self._confirmed: tuple[ConfirmedRecord, ...] = ()
        self._loaded = False
        self._refreshing = False

    @property
    def confirmed(self) -> tuple[ConfirmedRecord, ...]:
        return self._confirmed

    @property
    def loaded(self) -> bool:
        return self._loaded

    @property
    def refreshing(self) -> bool:
        return self._refreshing

    async def refresh(self, address: str) -> bool:
        """Fetch confirmed history. Returns False (list unchanged) on failure."""
        self._refreshing = True
        try:
            records = await self._backend.fetch_history(address)
        except SyncError as e:
            logger.warning(f"[HISTORY] Fetch for {address[:10]} failed: {e}")
            await self._bus.publish(
                WalletEvent(EventKind.HISTORY, EventLevel.ERROR, "Could not load history")
            )
            return False
        finally:
            self._refreshing = False

        self._confirmed = tuple(records)
        self._loaded = True
        logger.debug(f"[HISTORY] {len(records)} confirmed records for {address[:10]}")
        return True

    def merge(self, pending: Iterable[PendingEntry]) -> list[DisplayedTransaction]:
        return reconcile(pending, self._confirmed)

    def clear(self) -> None:
        self._confirmed = ()
        self._loaded = False
