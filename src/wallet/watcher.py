"""Confirmation watcher — one asyncio task per submitted transaction hash.

Each task suspends on EvmRpcClient.wait_for_receipt and, when it resolves:
  1. classifies the outcome (confirmed / reverted / replaced / cancelled / timed out)
  2. fires backend logging for confirmed txs (fire-and-forget)
  3. removes its own hash from the PendingSet
  4. notifies the UI (unless the failure is our own cancellation landing)
  5. hands the outcome to listeners (the session refreshes balances + history)

A task only ever mutates the PendingSet entry for its own hash.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Coroutine
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from loguru import logger

from src.models.transaction import PendingEntry
from src.rpc.erc20 import TransferEvent, parse_transfer_logs
from src.rpc.exceptions import ReceiptTimeoutError, RpcError, TransactionReplacedError
from src.rpc.models import TxReceipt
from src.wallet.events import EventBus, EventKind, EventLevel, WalletEvent
from src.wallet.exceptions import ConfirmationFailure
from src.wallet.pending import PendingSet

if TYPE_CHECKING:
    from src.backend.client import BackendClient
    from src.rpc.client import EvmRpcClient

CANCEL_LOST_MESSAGE = "Cancellation failed, transaction likely already confirmed"


class ConfirmationResult(str, Enum):
    CONFIRMED = "confirmed"
    REVERTED = "reverted"
    REPLACED = "replaced"
    CANCELLED = "cancelled"  # replaced by our own cancellation
    TIMED_OUT = "timed_out"
    DROPPED = "dropped"


@dataclass(frozen=True)
class ConfirmationOutcome:
    entry: PendingEntry
    result: ConfirmationResult
    receipt: TxReceipt | None = None
    error: ConfirmationFailure | None = None
    notified: bool = True
    transfers: list[TransferEvent] = field(default_factory=list)

    @property
    def tx_hash(self) -> str:
        return self.entry.tx_hash

    @property
    def succeeded(self) -> bool:
        return self.result is ConfirmationResult.CONFIRMED


OutcomeListener = Callable[[ConfirmationOutcome], Awaitable[None]]


class ConfirmationWatcher:
    """Spawns and tracks one watch task per hash."""

    def __init__(
        self,
        rpc: EvmRpcClient,
        pending: PendingSet,
        bus: EventBus,
        backend: BackendClient | None = None,
        *,
        poll_interval: float = 3.0,
        timeout: float | None = 1800.0,
    ) -> None:
        self._rpc = rpc
        self._pending = pending
        self._bus = bus
        self._backend = backend
        self._poll_interval = poll_interval
        self._timeout = timeout
        self._tasks: dict[str, asyncio.Task[ConfirmationOutcome]] = {}
        self._background: set[asyncio.Task[Any]] = set()
        self._listeners: list[OutcomeListener] = []

    @property
    def active_count(self) -> int:
        return len(self._tasks)

    def add_listener(self, listener: OutcomeListener) -> None:
        self._listeners.append(listener)

    def task_for(self, tx_hash: str) -> asyncio.Task[ConfirmationOutcome] | None:
        return self._tasks.get(tx_hash.lower())

    def watch(self, entry: PendingEntry) -> asyncio.Task[ConfirmationOutcome]:
        """Schedule a watch for entry. Idempotent per hash."""
        key = entry.tx_hash.lower()
        existing = self._tasks.get(key)
        if existing is not None:
            return existing

        task = asyncio.create_task(self._run(entry), name=f"watch:{entry.tx_hash[:12]}")
        self._tasks[key] = task
        task.add_done_callback(lambda _t: self._tasks.pop(key, None))
        logger.debug(f"[WATCH] Watching {entry.tx_hash[:12]} nonce={entry.nonce}")
        return task

    async def _run(self, entry: PendingEntry) -> ConfirmationOutcome:
        try:
            receipt = await self._rpc.wait_for_receipt(
                entry.tx_hash,
                sender=entry.sender,
                nonce=entry.nonce,
                poll_interval=self._poll_interval,
                timeout=self._timeout,
            )
        except TransactionReplacedError:
            outcome = self._replaced_outcome(entry)
        except ReceiptTimeoutError as e:
            minutes = e.timeout / 60
            outcome = self._failure(
                entry,
                ConfirmationResult.TIMED_OUT,
                f"Transaction not confirmed after {minutes:.0f} min, check history later",
            )
        except RpcError as e:
            outcome = self._failure(
                entry, ConfirmationResult.DROPPED, f"Transaction tracking failed: {e.message}"
            )
        except Exception as e:
            # Malformed node data must still settle the entry
            logger.error(f"[WATCH] {entry.tx_hash[:12]} tracking crashed: {type(e).__name__}: {e}")
            outcome = self._failure(entry, ConfirmationResult.DROPPED, "Transaction tracking failed")
        else:
            if receipt.succeeded:
                outcome = ConfirmationOutcome(
                    entry=entry,
                    result=ConfirmationResult.CONFIRMED,
                    receipt=receipt,
                    transfers=parse_transfer_logs(receipt),
                )
            else:
                outcome = self._failure(
                    entry,
                    ConfirmationResult.REVERTED,
                    "Transaction reverted on-chain",
                    receipt=receipt,
                )

        await self._finish(outcome)
        return outcome

    def _replaced_outcome(self, entry: PendingEntry) -> ConfirmationOutcome:
        if self._pending.is_superseded(entry.tx_hash):
            # Our own cancellation took the slot, no failure notice
            return self._failure(
                entry,
                ConfirmationResult.CANCELLED,
                "Transaction replaced by cancellation",
                notify=False,
            )
        if entry.is_cancellation:
            return self._failure(entry, ConfirmationResult.REPLACED, CANCEL_LOST_MESSAGE)
        return self._failure(
            entry,
            ConfirmationResult.REPLACED,
            "Transaction was replaced by another transaction with the same nonce",
        )

    @staticmethod
    def _failure(
        entry: PendingEntry,
        result: ConfirmationResult,
        reason: str,
        *,
        receipt: TxReceipt | None = None,
        notify: bool = True,
    ) -> ConfirmationOutcome:
        return ConfirmationOutcome(
            entry=entry,
            result=result,
            receipt=receipt,
            error=ConfirmationFailure(reason),
            notified=notify,
        )

    async def _finish(self, outcome: ConfirmationOutcome) -> None:
        entry = outcome.entry

        if outcome.succeeded and self._backend is not None:
            self._spawn(self._backend.log_transaction(entry))

        self._pending.remove_by_hash(entry.tx_hash)

        if outcome.succeeded:
            message = "Cancellation confirmed" if entry.is_cancellation else "Transaction confirmed"
            logger.info(f"[WATCH] {message}: {entry.tx_hash[:12]} nonce={entry.nonce}")
            await self._bus.publish(
                WalletEvent(EventKind.CONFIRMATION, EventLevel.SUCCESS, message, entry.tx_hash)
            )
        elif outcome.notified:
            reason = str(outcome.error)
            logger.warning(f"[WATCH] {entry.tx_hash[:12]} {outcome.result.value}: {reason}")
            kind = EventKind.CANCELLATION if entry.is_cancellation else EventKind.CONFIRMATION
            await self._bus.publish(
                WalletEvent(kind, EventLevel.ERROR, reason, entry.tx_hash)
            )
        else:
            logger.info(f"[WATCH] {entry.tx_hash[:12]} replaced by own cancellation")

        for listener in list(self._listeners):
            try:
                await listener(outcome)
            except Exception as e:
                logger.error(f"[WATCH] Outcome listener failed for {entry.tx_hash[:12]}: {e}")

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._on_background_done)

    def _on_background_done(self, task: asyncio.Task[Any]) -> None:
        self._background.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.warning(f"[WATCH] Background logging failed: {task.exception()}")

    async def drain(self) -> None:
        """Wait for all outstanding watches and background logging to finish."""
        while self._tasks or self._background:
            await asyncio.gather(
                *self._tasks.values(), *self._background, return_exceptions=True
            )

    async def close(self) -> None:
        """Cancel outstanding watches (wallet lock)."""
        tasks = [*self._tasks.values(), *self._background]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        self._background.clear()
        self._listeners.clear()
