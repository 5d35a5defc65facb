"""Fee estimator — gas price x simulated gas limit, debounced, latest input wins.

Every input change calls request(). Each request bumps a generation counter
and schedules a task that sleeps through the debounce window, then estimates.
A task whose generation is no longer current never writes the result, so a
slow stale estimate can't overwrite a newer one. Older tasks are invalidated,
not cancelled.
"""

from __future__ import annotations

import asyncio
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING

from loguru import logger

from src.models.transaction import FeeEstimate
from src.rpc.erc20 import Erc20Token, encode_transfer
from src.rpc.exceptions import RpcError
from src.wallet.assets import (
    AssetRegistry,
    amount_to_str,
    parse_amount,
    to_base_units,
    validate_recipient,
)
from src.wallet.events import EventBus, EventKind, EventLevel, WalletEvent
from src.wallet.exceptions import EstimationError, ValidationError

if TYPE_CHECKING:
    from src.rpc.client import EvmRpcClient


class FeeStatus(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    UNAVAILABLE = "unavailable"


class FeeEstimator:
    def __init__(
        self,
        rpc: EvmRpcClient,
        assets: AssetRegistry,
        sender: str,
        bus: EventBus,
        *,
        debounce_sec: float = 0.5,
        tokens: dict[str, Erc20Token] | None = None,
    ) -> None:
        self._rpc = rpc
        self._assets = assets
        self._sender = sender
        self._bus = bus
        self._debounce_sec = debounce_sec
        self._tokens = tokens if tokens is not None else assets.token_contracts(rpc)
        self._generation = 0
        self._tasks: set[asyncio.Task[FeeEstimate | None]] = set()
        self.current: FeeEstimate | None = None
        self.status = FeeStatus.IDLE

    @property
    def generation(self) -> int:
        return self._generation

    def _token(self, symbol: str) -> Erc20Token:
        return self._tokens[self._assets.get(symbol).symbol]

    def request(self, recipient: str, amount: str, asset: str) -> asyncio.Task[FeeEstimate | None]:
        """Schedule a debounced estimate for the latest inputs."""
        self._generation += 1
        generation = self._generation

        # The previous estimate belongs to the previous inputs
        self.current = None
        if not recipient.strip() or not amount.strip():
            # Nothing to estimate yet, clear without touching the network
            self.status = FeeStatus.IDLE
        else:
            self.status = FeeStatus.LOADING

        task = asyncio.create_task(
            self._debounced(generation, recipient, amount, asset),
            name=f"fee:{generation}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _debounced(
        self, generation: int, recipient: str, amount: str, asset: str
    ) -> FeeEstimate | None:
        if self._debounce_sec > 0:
            await asyncio.sleep(self._debounce_sec)
        if generation != self._generation:
            return None
        if not recipient.strip() or not amount.strip():
            return None

        try:
            result = await self.estimate(recipient, amount, asset)
        except EstimationError as e:
            if generation != self._generation:
                return None
            self.current = None
            self.status = FeeStatus.UNAVAILABLE
            await self._bus.publish(
                WalletEvent(EventKind.FEE_ESTIMATE, EventLevel.WARNING, f"Fee unavailable: {e}")
            )
            return None

        if generation != self._generation:
            logger.debug(f"[FEE] Discarding stale estimate #{generation} (now #{self._generation})")
            return None

        self.current = result
        self.status = FeeStatus.READY
        await self._bus.publish(
            WalletEvent(
                EventKind.FEE_ESTIMATE,
                EventLevel.SUCCESS,
                f"~{result.fee:.6f} {self._assets.native.symbol}",
                data={"fee": str(result.fee), "gas_limit": result.gas_limit},
            )
        )
        return result

    async def estimate(self, recipient: str, amount: str, asset: str) -> FeeEstimate:
        """One estimate, no debounce. Raises EstimationError on any failure."""
        try:
            target = self._assets.get(asset)
            to = validate_recipient(recipient)
            value = parse_amount(amount, target.decimals)
        except ValidationError as e:
            raise EstimationError(str(e)) from e

        try:
            gas_price = await self._rpc.get_gas_price()
            if target.is_native:
                gas_limit = await self._rpc.estimate_gas(
                    {
                        "from": self._sender,
                        "to": to,
                        "value": to_base_units(value, target.decimals),
                    }
                )
            else:
                token = self._token(target.symbol)
                decimals = await token.decimals()
                gas_limit = await self._rpc.estimate_gas(
                    {
                        "from": self._sender,
                        "to": token.address,
                        "data": encode_transfer(to, to_base_units(value, decimals)),
                    }
                )
        except (RpcError, ValidationError) as e:
            logger.debug(f"[FEE] Estimate failed for {asset} -> {recipient[:10]}: {e}")
            raise EstimationError(str(e)) from e

        return FeeEstimate(
            asset=target.symbol,
            recipient=to,
            amount=amount_to_str(value),
            gas_price=gas_price,
            gas_limit=gas_limit,
        )

    @property
    def fee(self) -> Decimal | None:
        return self.current.fee if self.current else None

    async def close(self) -> None:
        self._generation += 1
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self.current = None
        self.status = FeeStatus.IDLE
