"""Async JSON-RPC client for an EVM chain node.

Thin adapter used by the wallet core:
  - balance, nonce and gas-price reads
  - gas estimation and eth_call simulation
  - raw transaction submission
  - receipt polling with replacement detection

Transport failures (timeouts, connect errors, 429, 5xx) are retried with
backoff. A JSON-RPC ``error`` object is the node's final answer and is
raised as RpcError without retry.
"""

from __future__ import annotations

import asyncio
from typing import Any

import httpx
from eth_utils import decode_hex, to_hex
from loguru import logger

from src.rpc.exceptions import (
    ReceiptTimeoutError,
    RpcError,
    RpcTransportError,
    TransactionReplacedError,
)
from src.rpc.models import TxReceipt
from src.rpc.rate_limiter import RateLimiter

MAX_RETRIES = 2
RETRY_DELAYS = [1.0, 3.0]

DEFAULT_POLL_INTERVAL = 3.0  # seconds


def _format_tx(tx: dict[str, Any]) -> dict[str, Any]:
    """Hex-encode integer fields of a transaction skeleton, drop None values."""
    out: dict[str, Any] = {}
    for key, value in tx.items():
        if value is None:
            continue
        if isinstance(value, int) and not isinstance(value, bool):
            out[key] = hex(value)
        elif isinstance(value, bytes):
            out[key] = to_hex(value)
        else:
            out[key] = value
    return out


def _quantity(value: Any) -> int:
    if isinstance(value, str):
        return int(value, 16)
    return int(value or 0)


class EvmRpcClient:
    """Async JSON-RPC 2.0 client over HTTPS."""

    def __init__(
        self,
        rpc_url: str,
        *,
        timeout: float = 15.0,
        max_rps: float = 10.0,
        rate_limiter: RateLimiter | None = None,
    ) -> None:
        if not rpc_url:
            raise ValueError("RPC URL is empty")

        self._rpc_url = rpc_url
        self._http = httpx.AsyncClient(timeout=timeout)
        self._rate_limiter = rate_limiter or RateLimiter(max_rps)
        self._request_id = 0
        self._chain_id: int | None = None

    def __repr__(self) -> str:
        return f"EvmRpcClient(url={self._rpc_url})"

    async def _call(self, method: str, params: list[Any]) -> Any:
        """Execute one JSON-RPC call with rate limiting and transport retries."""
        self._request_id += 1
        payload = {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": method,
            "params": params,
        }

        for attempt in range(MAX_RETRIES + 1):
            delay = RETRY_DELAYS[min(attempt, len(RETRY_DELAYS) - 1)]
            try:
                await self._rate_limiter.acquire()
                resp = await self._http.post(self._rpc_url, json=payload)
            except (httpx.TimeoutException, httpx.ConnectError) as e:
                if attempt < MAX_RETRIES:
                    logger.debug(f"[RPC] {method} {type(e).__name__}, retry in {delay}s")
                    await asyncio.sleep(delay)
                    continue
                raise RpcTransportError(f"{method} failed after retries: {e}") from e

            if resp.status_code == 429 or resp.status_code >= 500:
                if attempt < MAX_RETRIES:
                    logger.debug(f"[RPC] {method} HTTP {resp.status_code}, retry in {delay}s")
                    await asyncio.sleep(delay)
                    continue
                raise RpcTransportError(f"{method} failed: HTTP {resp.status_code}")

            if resp.status_code != 200:
                raise RpcTransportError(f"{method} unexpected HTTP {resp.status_code}")

            try:
                data = resp.json()
            except ValueError as e:
                raise RpcTransportError(f"{method} returned invalid JSON") from e

            error = data.get("error")
            if error:
                if isinstance(error, dict):
                    message = error.get("message") or str(error)
                    logger.debug(f"[RPC] {method} error {error.get('code', '?')}: {message}")
                    raise RpcError(message, code=error.get("code"), data=error.get("data"))
                raise RpcError(str(error))

            return data.get("result")

        raise RpcTransportError(f"{method}: retries exhausted")

    # ─── Reads ────────────────────────────────────────────────────────

    async def chain_id(self) -> int:
        """eth_chainId, cached after the first successful call."""
        if self._chain_id is None:
            self._chain_id = _quantity(await self._call("eth_chainId", []))
        return self._chain_id

    async def get_balance(self, address: str) -> int:
        """Native balance in wei."""
        return _quantity(await self._call("eth_getBalance", [address, "latest"]))

    async def get_transaction_count(self, address: str, block: str = "pending") -> int:
        """Next nonce for address. "pending" includes mempool transactions."""
        return _quantity(await self._call("eth_getTransactionCount", [address, block]))

    async def get_gas_price(self) -> int:
        return _quantity(await self._call("eth_gasPrice", []))

    async def estimate_gas(self, tx: dict[str, Any]) -> int:
        return _quantity(await self._call("eth_estimateGas", [_format_tx(tx)]))

    async def call(self, tx: dict[str, Any]) -> bytes:
        """eth_call against latest state. Returns raw return data."""
        result = await self._call("eth_call", [_format_tx(tx), "latest"])
        return decode_hex(result or "0x")

    async def get_transaction_receipt(self, tx_hash: str) -> TxReceipt | None:
        result = await self._call("eth_getTransactionReceipt", [tx_hash])
        if not result:
            return None
        return TxReceipt.model_validate(result)

    # ─── Writes ───────────────────────────────────────────────────────

    async def send_raw_transaction(self, raw_tx: bytes | str) -> str:
        """Submit a signed transaction. Returns the transaction hash."""
        raw_hex = to_hex(raw_tx) if isinstance(raw_tx, bytes) else raw_tx
        result = await self._call("eth_sendRawTransaction", [raw_hex])
        if not result:
            raise RpcError("eth_sendRawTransaction returned no hash")
        logger.debug(f"[RPC] TX sent: {result}")
        return str(result)

    # ─── Confirmation ─────────────────────────────────────────────────

    async def wait_for_receipt(
        self,
        tx_hash: str,
        *,
        sender: str,
        nonce: int,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        timeout: float | None = None,
    ) -> TxReceipt:
        """Poll until tx_hash is mined.

        Raises TransactionReplacedError when the sender's mined nonce moves past
        ``nonce`` with no receipt for this hash (another tx took the slot), and
        ReceiptTimeoutError after ``timeout`` seconds. Transport errors during
        polling are logged and retried on the next poll.
        """
        elapsed = 0.0
        while True:
            try:
                receipt = await self.get_transaction_receipt(tx_hash)
                if receipt is not None:
                    return receipt

                mined_nonce = await self.get_transaction_count(sender, "latest")
                if mined_nonce > nonce:
                    # Slot consumed; recheck in case our tx mined between the two calls
                    receipt = await self.get_transaction_receipt(tx_hash)
                    if receipt is not None:
                        return receipt
                    raise TransactionReplacedError(tx_hash, nonce)
            except RpcTransportError as e:
                logger.debug(f"[RPC] Receipt poll for {tx_hash[:12]} failed, retrying: {e}")

            if timeout is not None and elapsed >= timeout:
                logger.warning(f"[RPC] TX {tx_hash[:12]} no receipt after {timeout:.0f}s")
                raise ReceiptTimeoutError(tx_hash, timeout)

            await asyncio.sleep(poll_interval)
            elapsed += poll_interval

    async def close(self) -> None:
        """Close HTTP client."""
        await self._http.aclose()
