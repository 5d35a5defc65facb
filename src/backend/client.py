"""Backend persistence service client — transaction logging and confirmed history.

Both calls are best effort from the wallet's point of view:
  - POST /tx/{hash}          log a confirmed transaction (idempotent server-side)
  - GET  /history/{address}  confirmed history, newest first

A failed log is only a log line. A failed history read raises SyncError so
the caller can keep its previous list.
"""

from __future__ import annotations

import asyncio
from typing import Any

import httpx
from loguru import logger
from pydantic import ValidationError as PydanticValidationError

from src.models.transaction import ConfirmedRecord, PendingEntry
from src.wallet.exceptions import SyncError

MAX_RETRIES = 2
RETRY_DELAYS = [1.0, 3.0]


class BackendClient:
    """Async HTTP client for the wallet backend REST API."""

    def __init__(self, base_url: str, *, timeout: float = 10.0) -> None:
        if not base_url:
            raise ValueError("Backend URL is empty")
        self._base_url = base_url.rstrip("/")
        self._http = httpx.AsyncClient(
            timeout=timeout, headers={"Content-Type": "application/json"}
        )
        self._logged = 0

    @property
    def logged_count(self) -> int:
        return self._logged

    async def log_transaction(self, entry: PendingEntry) -> bool:
        """POST /tx/{hash}. Returns True if the server accepted it; never raises."""
        url = f"{self._base_url}/tx/{entry.tx_hash}"
        payload = {
            "hash": entry.tx_hash,
            "from": entry.sender,
            "to": entry.recipient,
            "amount": entry.amount,
            "token": entry.asset,
            "nonce": entry.nonce,
            "timestamp": entry.timestamp.isoformat(),
        }
        try:
            resp = await self._http.post(url, json=payload)
        except httpx.HTTPError as e:
            logger.warning(f"[BACKEND] Log tx {entry.tx_hash[:12]} failed: {e}")
            return False

        # 409 = already logged; the endpoint is idempotent
        if resp.status_code in (200, 201, 204, 409):
            self._logged += 1
            logger.debug(f"[BACKEND] Logged tx {entry.tx_hash[:12]} (HTTP {resp.status_code})")
            return True

        logger.warning(f"[BACKEND] Log tx {entry.tx_hash[:12]} HTTP {resp.status_code}")
        return False

    async def fetch_history(self, address: str) -> list[ConfirmedRecord]:
        """GET /history/{address} with retry. Raises SyncError on any failure."""
        url = f"{self._base_url}/history/{address}"

        for attempt in range(MAX_RETRIES + 1):
            delay = RETRY_DELAYS[min(attempt, len(RETRY_DELAYS) - 1)]
            try:
                resp = await self._http.get(url)
            except (httpx.TimeoutException, httpx.ConnectError) as e:
                if attempt < MAX_RETRIES:
                    logger.debug(f"[BACKEND] History {type(e).__name__}, retry in {delay}s")
                    await asyncio.sleep(delay)
                    continue
                raise SyncError(f"History request failed: {e}") from e
            except httpx.HTTPError as e:
                raise SyncError(f"History request failed: {e}") from e

            if resp.status_code == 429 or resp.status_code >= 500:
                if attempt < MAX_RETRIES:
                    logger.debug(f"[BACKEND] History HTTP {resp.status_code}, retry in {delay}s")
                    await asyncio.sleep(delay)
                    continue
                raise SyncError(f"History HTTP {resp.status_code}")

            if resp.status_code == 404:
                # Unknown address on the server: nothing logged yet
                return []

            if resp.status_code != 200:
                raise SyncError(f"History HTTP {resp.status_code}")

            return _parse_history(resp)

        raise SyncError("History retries exhausted")

    async def close(self) -> None:
        await self._http.aclose()


def _parse_history(resp: httpx.Response) -> list[ConfirmedRecord]:
    try:
        data: Any = resp.json()
    except ValueError as e:
        raise SyncError("History response is not JSON") from e

    if isinstance(data, dict):
        data = data.get("history", data.get("transactions"))
    if not isinstance(data, list):
        raise SyncError("History response has no transaction list")

    try:
        return [ConfirmedRecord.model_validate(item) for item in data]
    except PydanticValidationError as e:
        raise SyncError(f"Malformed history record: {e.error_count()} error(s)") from e
