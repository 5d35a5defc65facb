"""Tests for BackendClient — transaction logging and history fetch.

All HTTP calls are mocked. No real backend requests are made.
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from src.backend.client import BackendClient
from src.models.transaction import PendingEntry
from src.wallet.exceptions import SyncError

from tests.conftest import RECIPIENT, make_hash

BASE_URL = "https://wallet-backend.example.org/api/"
SENDER = "0x2c7536E3605D9C16a7a3D7b1898e529396a65c23"


# ── Fixtures ───────────────────────────────────────────────────────────


@pytest.fixture
def client() -> BackendClient:
    return BackendClient(BASE_URL)


@pytest.fixture
def entry() -> PendingEntry:
    return PendingEntry(
        tx_hash=make_hash(1),
        sender=SENDER,
        recipient=RECIPIENT,
        asset="BNB",
        amount="0.1",
        nonce=5,
        gas_price=5_000_000_000,
    )


def _response(status: int, body=None) -> MagicMock:
    resp = MagicMock(spec=httpx.Response)
    resp.status_code = status
    resp.json.return_value = body
    return resp


def _record(n: int) -> dict:
    return {
        "hash": make_hash(n),
        "from": SENDER,
        "to": RECIPIENT,
        "amount": "0.1",
        "token": "BNB",
        "timestamp": "2026-01-15T12:00:00Z",
    }


# ── log_transaction ────────────────────────────────────────────────────


class TestLogTransaction:
    def test_empty_url_raises(self):
        with pytest.raises(ValueError, match="Backend URL is empty"):
            BackendClient("")

    async def test_posts_to_tx_endpoint(self, client: BackendClient, entry: PendingEntry):
        client._http = AsyncMock(spec=httpx.AsyncClient)
        client._http.post = AsyncMock(return_value=_response(201))

        assert await client.log_transaction(entry) is True

        url = client._http.post.call_args.args[0]
        payload = client._http.post.call_args.kwargs["json"]
        assert url == f"https://wallet-backend.example.org/api/tx/{entry.tx_hash}"
        assert payload["hash"] == entry.tx_hash
        assert payload["amount"] == "0.1"
        assert client.logged_count == 1

    async def test_conflict_counts_as_logged(self, client: BackendClient, entry: PendingEntry):
        client._http = AsyncMock(spec=httpx.AsyncClient)
        client._http.post = AsyncMock(return_value=_response(409))

        assert await client.log_transaction(entry) is True

    async def test_failure_never_raises(self, client: BackendClient, entry: PendingEntry):
        client._http = AsyncMock(spec=httpx.AsyncClient)
        client._http.post = AsyncMock(side_effect=httpx.ConnectError("refused"))

        assert await client.log_transaction(entry) is False
        assert client.logged_count == 0

    async def test_server_error_returns_false(self, client: BackendClient, entry: PendingEntry):
        client._http = AsyncMock(spec=httpx.AsyncClient)
        client._http.post = AsyncMock(return_value=_response(500))

        assert await client.log_transaction(entry) is False


# ── fetch_history ──────────────────────────────────────────────────────


class TestFetchHistory:
    async def test_bare_list(self, client: BackendClient):
        client._http = AsyncMock(spec=httpx.AsyncClient)
        client._http.get = AsyncMock(return_value=_response(200, [_record(1), _record(2)]))

        records = await client.fetch_history(SENDER)

        assert [r.hash for r in records] == [make_hash(1), make_hash(2)]
        assert client._http.get.call_args.args[0].endswith(f"/history/{SENDER}")

    async def test_wrapped_list(self, client: BackendClient):
        client._http = AsyncMock(spec=httpx.AsyncClient)
        client._http.get = AsyncMock(return_value=_response(200, {"history": [_record(1)]}))

        assert len(await client.fetch_history(SENDER)) == 1

    async def test_404_is_empty_history(self, client: BackendClient):
        client._http = AsyncMock(spec=httpx.AsyncClient)
        client._http.get = AsyncMock(return_value=_response(404))

        assert await client.fetch_history(SENDER) == []

    async def test_500_retries_then_sync_error(self, client: BackendClient):
        client._http = AsyncMock(spec=httpx.AsyncClient)
        client._http.get = AsyncMock(return_value=_response(500))

        with patch("src.backend.client.asyncio.sleep", new_callable=AsyncMock):
            with pytest.raises(SyncError):
                await client.fetch_history(SENDER)

        assert client._http.get.await_count == 3

    async def test_malformed_record(self, client: BackendClient):
        client._http = AsyncMock(spec=httpx.AsyncClient)
        client._http.get = AsyncMock(return_value=_response(200, [{"hash": make_hash(1)}]))

        with pytest.raises(SyncError, match="Malformed history record"):
            await client.fetch_history(SENDER)

    async def test_unexpected_shape(self, client: BackendClient):
        client._http = AsyncMock(spec=httpx.AsyncClient)
        client._http.get = AsyncMock(return_value=_response(200, {"ok": True}))

        with pytest.raises(SyncError, match="no transaction list"):
            await client.fetch_history(SENDER)
