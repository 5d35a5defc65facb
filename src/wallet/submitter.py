"""Transaction submitter — build, sign, send, and register as pending.

send() pipeline:
  1. validate asset / recipient / amount (no network yet)
  2. native value transfer, or ERC-20 transfer() call scaled by on-chain decimals()
  3. nonce at "pending" visibility, merged with locally pending nonces
  4. eth_estimateGas -> sign locally -> eth_sendRawTransaction
  5. insert the PendingEntry, then schedule its confirmation watch

cancel() replaces a pending tx with a zero-value self-transfer at the same
nonce and a strictly higher gas price (replace-by-fee).
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from decimal import Decimal
from typing import TYPE_CHECKING

from eth_account.signers.local import LocalAccount
from eth_utils import to_hex
from loguru import logger

from src.models.transaction import WEI_PER_NATIVE, PendingEntry, TxKind
from src.rpc.erc20 import Erc20Token, encode_transfer
from src.rpc.exceptions import RpcError, RpcTransportError
from src.wallet.assets import (
    AssetRegistry,
    amount_to_str,
    parse_amount,
    to_base_units,
    validate_recipient,
)
from src.wallet.exceptions import CancellationInFlightError, SubmissionError, ValidationError
from src.wallet.pending import PendingSet
from src.wallet.watcher import CANCEL_LOST_MESSAGE, ConfirmationWatcher

if TYPE_CHECKING:
    from src.rpc.client import EvmRpcClient

GWEI = 1_000_000_000
GENERIC_SUBMIT_ERROR = "Transaction submission failed"

# Node error fragments -> message shown to the user
_KNOWN_RPC_ERRORS = [
    ("insufficient funds", "Insufficient funds for amount plus gas"),
    ("nonce too low", "Nonce already used"),
    ("replacement transaction underpriced", "Replacement gas price too low"),
    ("intrinsic gas too low", "Gas limit too low"),
    ("execution reverted", "Transaction would revert"),
]
_ALREADY_MINED_ERRORS = ("nonce too low",)
# Node already holds this exact signed tx (e.g. a retried broadcast)
_ALREADY_KNOWN_ERRORS = ("already known", "known transaction", "already imported")


def describe_rpc_error(error: RpcError) -> str:
    """Human-readable reason from a node error payload, else a generic message."""
    if isinstance(error, RpcTransportError):
        return GENERIC_SUBMIT_ERROR
    message = (error.message or "").strip()
    lowered = message.lower()
    for fragment, friendly in _KNOWN_RPC_ERRORS:
        if fragment in lowered:
            return friendly
    return message or GENERIC_SUBMIT_ERROR


def replacement_gas_price(
    original: int,
    network: int,
    *,
    bump_pct: int = 10,
    min_increment: int = GWEI,
) -> int:
    """max(network, original x (1 + bump_pct/100), rounded up) + min_increment."""
    bumped = -(-original * (100 + bump_pct) // 100)
    return max(network, bumped) + min_increment


@dataclass(frozen=True)
class CancellationQuote:
    """What a cancellation will cost, shown to the user before they confirm."""

    entry: PendingEntry
    gas_price: int
    network_gas_price: int
    gas_limit: int

    @property
    def max_fee(self) -> Decimal:
        return Decimal(self.gas_price * self.gas_limit) / Decimal(WEI_PER_NATIVE)


class TransactionSubmitter:
    def __init__(
        self,
        rpc: EvmRpcClient,
        account: LocalAccount,
        assets: AssetRegistry,
        pending: PendingSet,
        watcher: ConfirmationWatcher,
        *,
        chain_id: int,
        tokens: dict[str, Erc20Token] | None = None,
        cancel_gas_limit: int = 21_000,
        cancel_bump_pct: int = 10,
        cancel_min_increment: int = GWEI,
    ) -> None:
        self._rpc = rpc
        self._account = account
        self._assets = assets
        self._pending = pending
        self._watcher = watcher
        self._chain_id = chain_id
        self._tokens = tokens if tokens is not None else assets.token_contracts(rpc)
        self._cancel_gas_limit = cancel_gas_limit
        self._cancel_bump_pct = cancel_bump_pct
        self._cancel_min_increment = cancel_min_increment
        # nonce assignment -> send -> insert must not interleave between two sends
        self._nonce_lock = asyncio.Lock()
        self._cancelling: set[int] = set()

    def __repr__(self) -> str:
        return f"TransactionSubmitter(address={self.address})"

    @property
    def address(self) -> str:
        return self._account.address

    def _token(self, symbol: str) -> Erc20Token:
        return self._tokens[self._assets.get(symbol).symbol]

    async def _next_nonce(self) -> int:
        onchain = await self._rpc.get_transaction_count(self.address, "pending")
        return max(onchain, self._pending.next_nonce(self.address))

    async def _sign_and_send(self, tx: dict) -> str:
        unsigned = {**tx, "chainId": self._chain_id}
        unsigned.pop("from", None)
        try:
            signed = self._account.sign_transaction(unsigned)
        except (TypeError, ValueError) as e:
            raise SubmissionError(f"Signing failed: {e}") from e

        tx_hash = to_hex(signed.hash)
        try:
            return await self._rpc.send_raw_transaction(signed.raw_transaction)
        except RpcTransportError:
            raise
        except RpcError as e:
            lowered = (e.message or "").lower()
            if not any(fragment in lowered for fragment in _ALREADY_KNOWN_ERRORS):
                raise
            logger.info(f"[SUBMIT] {tx_hash[:12]} already in the node pool, treating as sent")
            return tx_hash

    async def send(self, recipient: str, amount: str, asset: str) -> PendingEntry:
        """Submit a transfer and register it as pending.

        Raises ValidationError on bad input before a nonce is assigned (token
        amounts are checked against the contract's decimals() first), and
        SubmissionError (no pending entry created) if the node rejects it.
        """
        target = self._assets.get(asset)
        to = validate_recipient(recipient)
        value = parse_amount(amount, target.decimals)

        if target.is_native:
            tx = {"from": self.address, "to": to, "value": to_base_units(value, target.decimals)}
        else:
            token = self._token(target.symbol)
            try:
                decimals = await token.decimals()
            except RpcError as e:
                logger.warning(f"[SUBMIT] {target.symbol} decimals() failed: {e.message}")
                raise SubmissionError(describe_rpc_error(e)) from e
            # On-chain precision can be coarser than the declared one; reject
            # before a nonce is assigned
            tx = {
                "from": self.address,
                "to": token.address,
                "value": 0,
                "data": encode_transfer(to, to_base_units(value, decimals)),
            }

        async with self._nonce_lock:
            try:
                nonce = await self._next_nonce()
                gas_price = await self._rpc.get_gas_price()
                gas_limit = await self._rpc.estimate_gas(tx)
                tx_hash = await self._sign_and_send(
                    {**tx, "nonce": nonce, "gas": gas_limit, "gasPrice": gas_price}
                )
            except RpcError as e:
                reason = describe_rpc_error(e)
                logger.warning(f"[SUBMIT] {target.symbol} -> {to[:10]} failed: {e.message}")
                raise SubmissionError(reason) from e

            entry = PendingEntry(
                tx_hash=tx_hash,
                sender=self.address,
                recipient=to,
                asset=target.symbol,
                amount=amount_to_str(value),
                nonce=nonce,
                gas_price=gas_price,
            )
            self._pending.add(entry)

        self._watcher.watch(entry)
        logger.info(
            f"[SUBMIT] {entry.amount} {entry.asset} -> {to[:10]} "
            f"nonce={nonce} gas_price={gas_price} tx={tx_hash}"
        )
        return entry

    def _ensure_cancellable(self, entry: PendingEntry) -> None:
        if entry.is_cancellation or entry.nonce in self._cancelling:
            raise CancellationInFlightError(
                f"A cancellation for nonce {entry.nonce} is already in flight"
            )

    async def quote_cancellation(self, tx_hash: str) -> CancellationQuote:
        """Price a replace-by-fee cancellation for a pending tx."""
        entry = self._pending.get_by_hash(tx_hash)
        if entry is None:
            raise ValidationError("Transaction is not pending")
        self._ensure_cancellable(entry)

        try:
            network = await self._rpc.get_gas_price()
        except RpcError as e:
            raise SubmissionError(describe_rpc_error(e)) from e

        return CancellationQuote(
            entry=entry,
            gas_price=replacement_gas_price(
                entry.gas_price,
                network,
                bump_pct=self._cancel_bump_pct,
                min_increment=self._cancel_min_increment,
            ),
            network_gas_price=network,
            gas_limit=self._cancel_gas_limit,
        )

    async def cancel(self, quote: CancellationQuote) -> PendingEntry:
        """Send the zero-value self-transfer at the original nonce.

        The replacement evicts the original from the PendingSet in one step;
        the original's watcher keeps running and resolves as cancelled.
        """
        entry = quote.entry
        live = self._pending.get_by_nonce(entry.sender, entry.nonce)
        if live is None or live.tx_hash != entry.tx_hash:
            if live is not None and live.is_cancellation:
                raise CancellationInFlightError(
                    f"A cancellation for nonce {entry.nonce} is already in flight"
                )
            raise ValidationError("Transaction is no longer pending")
        self._ensure_cancellable(entry)

        self._cancelling.add(entry.nonce)
        try:
            try:
                tx_hash = await self._sign_and_send(
                    {
                        "to": self.address,
                        "value": 0,
                        "nonce": entry.nonce,
                        "gas": quote.gas_limit,
                        "gasPrice": quote.gas_price,
                    }
                )
            except RpcError as e:
                lowered = (e.message or "").lower()
                if any(fragment in lowered for fragment in _ALREADY_MINED_ERRORS):
                    reason = CANCEL_LOST_MESSAGE
                else:
                    reason = describe_rpc_error(e)
                logger.warning(f"[CANCEL] nonce={entry.nonce} rejected: {e.message}")
                raise SubmissionError(reason) from e

            replacement = PendingEntry(
                tx_hash=tx_hash,
                sender=self.address,
                recipient=self.address,
                asset=self._assets.native.symbol,
                amount="0",
                nonce=entry.nonce,
                gas_price=quote.gas_price,
                kind=TxKind.CANCELLATION,
                replaces=entry.tx_hash,
            )
            self._pending.replace(replacement)
        finally:
            self._cancelling.discard(entry.nonce)

        self._watcher.watch(replacement)
        logger.info(
            f"[CANCEL] nonce={entry.nonce} {entry.tx_hash[:12]} -> {tx_hash[:12]} "
            f"gas_price {entry.gas_price} -> {quote.gas_price}"
        )
        return replacement
