"""Wallet session — the single owner of per-unlock transaction state.

Created empty on unlock(), torn down on lock(). Everything the UI can ask
for goes through here:
  - send / quote_cancellation / cancel_transaction
  - request_fee_estimate (debounced)
  - refresh (user), on_focus (tab focus)
  - displayed_history, balances

Operation boundary policy: core exceptions are turned into a notification
on the EventBus and re-raised to the caller. Confirmation outcomes arrive
through a watcher listener and trigger balance/history refreshes.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

from eth_account import Account
from loguru import logger

from src.backend.client import BackendClient
from src.models.transaction import BalanceSnapshot, DisplayedTransaction, FeeEstimate, PendingEntry
from src.rpc.client import EvmRpcClient
from src.wallet.assets import AssetRegistry
from src.wallet.balances import BalanceTracker
from src.wallet.events import EventBus, EventKind, EventLevel, WalletEvent
from src.wallet.exceptions import ValidationError, WalletError, WalletLockedError
from src.wallet.fees import FeeEstimator, FeeStatus
from src.wallet.history import HistoryReconciler
from src.wallet.pending import PendingSet
from src.wallet.submitter import GWEI, CancellationQuote, TransactionSubmitter
from src.wallet.watcher import ConfirmationOutcome, ConfirmationWatcher

if TYPE_CHECKING:
    from eth_account.signers.local import LocalAccount

    from config.settings import Settings

ConfirmCallback = Callable[[CancellationQuote], Awaitable[bool]]


class WalletSession:
    """Transaction lifecycle manager for one wallet at a time."""

    def __init__(
        self,
        rpc: EvmRpcClient,
        backend: BackendClient,
        assets: AssetRegistry,
        *,
        bus: EventBus | None = None,
        chain_id: int | None = None,
        fee_debounce_sec: float = 0.5,
        confirm_poll_interval: float = 3.0,
        confirm_timeout: float | None = 1800.0,
        cancel_gas_limit: int = 21_000,
        cancel_bump_pct: int = 10,
        cancel_min_increment: int = GWEI,
    ) -> None:
        self._rpc = rpc
        self._backend = backend
        self._assets = assets
        self.bus = bus or EventBus()
        self._chain_id = chain_id
        self._fee_debounce_sec = fee_debounce_sec
        self._confirm_poll_interval = confirm_poll_interval
        self._confirm_timeout = confirm_timeout
        self._cancel_gas_limit = cancel_gas_limit
        self._cancel_bump_pct = cancel_bump_pct
        self._cancel_min_increment = cancel_min_increment

        # Per-unlock state, all None while locked
        self._account: LocalAccount | None = None
        self._pending: PendingSet | None = None
        self._watcher: ConfirmationWatcher | None = None
        self._submitter: TransactionSubmitter | None = None
        self._fees: FeeEstimator | None = None
        self._history: HistoryReconciler | None = None
        self._balances: BalanceTracker | None = None

    @classmethod
    def from_settings(cls, settings: Settings, *, bus: EventBus | None = None) -> WalletSession:
        rpc = EvmRpcClient(
            settings.rpc_url,
            timeout=settings.rpc_timeout_sec,
            max_rps=settings.rpc_max_rps,
        )
        backend = BackendClient(settings.backend_url, timeout=settings.backend_timeout_sec)
        return cls(
            rpc,
            backend,
            AssetRegistry.from_settings(settings),
            bus=bus,
            chain_id=settings.chain_id,
            fee_debounce_sec=settings.fee_debounce_sec,
            confirm_poll_interval=settings.confirm_poll_interval_sec,
            confirm_timeout=settings.confirm_timeout_sec,
            cancel_gas_limit=settings.cancel_gas_limit,
            cancel_bump_pct=settings.cancel_gas_bump_pct,
            cancel_min_increment=settings.cancel_min_increment_wei,
        )

    def __repr__(self) -> str:
        return f"WalletSession(address={self.address or 'locked'})"

    # ─── Lifecycle ────────────────────────────────────────────────────

    @property
    def is_unlocked(self) -> bool:
        return self._account is not None

    @property
    def address(self) -> str | None:
        return self._account.address if self._account else None

    @property
    def assets(self) -> AssetRegistry:
        return self._assets

    async def unlock(self, private_key: str, *, refresh: bool = True) -> str:
        """Load credentials into memory and start with empty state. Returns the address."""
        if self.is_unlocked:
            await self.lock()

        try:
            account = Account.from_key(private_key)
        except Exception:
            # Never echo the key material
            raise ValidationError("Invalid private key") from None

        if self._chain_id is None:
            self._chain_id = await self._rpc.chain_id()

        tokens = self._assets.token_contracts(self._rpc)
        pending = PendingSet()
        watcher = ConfirmationWatcher(
            self._rpc,
            pending,
            self.bus,
            self._backend,
            poll_interval=self._confirm_poll_interval,
            timeout=self._confirm_timeout,
        )
        watcher.add_listener(self._on_confirmation)

        self._account = account
        self._pending = pending
        self._watcher = watcher
        self._submitter = TransactionSubmitter(
            self._rpc,
            account,
            self._assets,
            pending,
            watcher,
            chain_id=self._chain_id,
            tokens=tokens,
            cancel_gas_limit=self._cancel_gas_limit,
            cancel_bump_pct=self._cancel_bump_pct,
            cancel_min_increment=self._cancel_min_increment,
        )
        self._fees = FeeEstimator(
            self._rpc,
            self._assets,
            account.address,
            self.bus,
            debounce_sec=self._fee_debounce_sec,
            tokens=tokens,
        )
        self._history = HistoryReconciler(self._backend, self.bus)
        self._balances = BalanceTracker(self._rpc, self._assets, self.bus, tokens=tokens)

        logger.info(f"[WALLET] Unlocked {account.address}")
        if refresh:
            await self.refresh()
        return account.address

    async def lock(self) -> None:
        """Drop credentials and all in-memory state. Outstanding watches are cancelled."""
        if not self.is_unlocked:
            return
        address = self.address
        if self._watcher is not None:
            await self._watcher.close()
        if self._fees is not None:
            await self._fees.close()
        if self._pending is not None:
            self._pending.clear()
        if self._history is not None:
            self._history.clear()
        if self._balances is not None:
            self._balances.clear()

        self._account = None
        self._pending = None
        self._watcher = None
        self._submitter = None
        self._fees = None
        self._history = None
        self._balances = None
        logger.info(f"[WALLET] Locked {address}")

    async def close(self) -> None:
        await self.lock()
        await self._rpc.close()
        await self._backend.close()

    def _require_unlocked(self) -> None:
        if not self.is_unlocked:
            raise WalletLockedError("Load wallet first.")

    async def _notify(
        self, kind: EventKind, level: EventLevel, message: str, tx_hash: str | None = None
    ) -> None:
        await self.bus.publish(WalletEvent(kind, level, message, tx_hash))

    # ─── Transactions ─────────────────────────────────────────────────

    async def send(self, recipient: str, amount: str, asset: str) -> PendingEntry:
        try:
            self._require_unlocked()
            assert self._submitter is not None
            await self._notify(EventKind.SUBMISSION, EventLevel.PROGRESS, "Submitting transaction...")
            entry = await self._submitter.send(recipient, amount, asset)
        except WalletError as e:
            await self._notify(EventKind.SUBMISSION, EventLevel.ERROR, str(e))
            raise

        await self._notify(
            EventKind.SUBMISSION, EventLevel.SUCCESS, "Transaction submitted", entry.tx_hash
        )
        return entry

    async def quote_cancellation(self, tx_hash: str) -> CancellationQuote:
        try:
            self._require_unlocked()
            assert self._submitter is not None
            return await self._submitter.quote_cancellation(tx_hash)
        except WalletError as e:
            await self._notify(EventKind.CANCELLATION, EventLevel.ERROR, str(e), tx_hash)
            raise

    async def cancel_transaction(
        self, tx_hash: str, confirm: ConfirmCallback
    ) -> PendingEntry | None:
        """Quote, ask the user via ``confirm``, then send the replacement.

        Returns the replacement entry, or None if the user declined.
        """
        quote = await self.quote_cancellation(tx_hash)
        if not await confirm(quote):
            logger.info(f"[CANCEL] User declined cancellation of {tx_hash[:12]}")
            return None

        try:
            self._require_unlocked()
            assert self._submitter is not None
            replacement = await self._submitter.cancel(quote)
        except WalletError as e:
            await self._notify(EventKind.CANCELLATION, EventLevel.ERROR, str(e), tx_hash)
            raise

        await self._notify(
            EventKind.CANCELLATION,
            EventLevel.SUCCESS,
            "Cancellation submitted",
            replacement.tx_hash,
        )
        return replacement

    def watch_task(self, tx_hash: str) -> asyncio.Task[ConfirmationOutcome] | None:
        """The running confirmation watch for a hash, if any."""
        if self._watcher is None:
            return None
        return self._watcher.task_for(tx_hash)

    # ─── Fee estimation ───────────────────────────────────────────────

    def request_fee_estimate(
        self, recipient: str, amount: str, asset: str
    ) -> asyncio.Task[FeeEstimate | None]:
        self._require_unlocked()
        assert self._fees is not None
        return self._fees.request(recipient, amount, asset)

    @property
    def fee_estimate(self) -> FeeEstimate | None:
        return self._fees.current if self._fees else None

    @property
    def fee_status(self) -> FeeStatus:
        return self._fees.status if self._fees else FeeStatus.IDLE

    # ─── Refresh + views ──────────────────────────────────────────────

    async def refresh(self) -> None:
        """Explicit user refresh: balances and confirmed history."""
        self._require_unlocked()
        assert self._balances is not None and self._history is not None
        address = self.address or ""
        await self._balances.refresh(address)
        await self._history.refresh(address)

    async def on_focus(self) -> None:
        """History tab gained focus."""
        self._require_unlocked()
        assert self._history is not None
        await self._history.refresh(self.address or "")

    async def _on_confirmation(self, outcome: ConfirmationOutcome) -> None:
        if not self.is_unlocked:
            return
        assert self._balances is not None and self._history is not None
        address = self.address or ""
        if outcome.succeeded:
            await self._balances.refresh(address)
        await self._history.refresh(address)

    @property
    def pending(self) -> list[PendingEntry]:
        return self._pending.entries() if self._pending else []

    @property
    def balances(self) -> BalanceSnapshot | None:
        return self._balances.snapshot if self._balances else None

    def displayed_history(self) -> list[DisplayedTransaction]:
        if self._history is None or self._pending is None:
            return []
        return self._history.merge(self._pending.entries())

