"""Native + whitelisted token balances for the active wallet.

A refresh is all-or-nothing: if any read fails the previous snapshot stays
and the user gets one "Failed to fetch balances." notice.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from loguru import logger

from src.models.transaction import BalanceSnapshot
from src.rpc.erc20 import Erc20Token
from src.rpc.exceptions import RpcError
from src.wallet.assets import NATIVE_DECIMALS, AssetRegistry, format_units
from src.wallet.events import EventBus, EventKind, EventLevel, WalletEvent

if TYPE_CHECKING:
    from src.rpc.client import EvmRpcClient


class BalanceTracker:
    def __init__(
        self,
        rpc: EvmRpcClient,
        assets: AssetRegistry,
        bus: EventBus,
        *,
        tokens: dict[str, Erc20Token] | None = None,
    ) -> None:
        self._rpc = rpc
        self._assets = assets
        self._bus = bus
        self._tokens = tokens if tokens is not None else assets.token_contracts(rpc)
        self.snapshot: BalanceSnapshot | None = None

    def _token(self, symbol: str) -> Erc20Token:
        return self._tokens[self._assets.get(symbol).symbol]

    async def refresh(self, address: str) -> BalanceSnapshot | None:
        """Re-read all balances. Returns the new snapshot, or None on failure."""
        try:
            native_wei = await self._rpc.get_balance(address)
            tokens = {}
            for asset in self._assets.tokens:
                token = self._token(asset.symbol)
                raw = await token.balance_of(address)
                tokens[asset.symbol] = format_units(raw, await token.decimals())
        except RpcError as e:
            logger.warning(f"[BALANCE] Refresh for {address[:10]} failed: {e}")
            await self._bus.publish(
                WalletEvent(EventKind.BALANCES, EventLevel.ERROR, "Failed to fetch balances.")
            )
            return None

        self.snapshot = BalanceSnapshot(
            native=format_units(native_wei, NATIVE_DECIMALS),
            tokens=tokens,
        )
        logger.debug(
            f"[BALANCE] {address[:10]}: {self.snapshot.native} {self._assets.native.symbol}, "
            + ", ".join(f"{v} {k}" for k, v in tokens.items())
        )
        return self.snapshot

    def clear(self) -> None:
        self.snapshot = None
