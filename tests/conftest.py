"""Shared test fixtures — wallet account, asset whitelist, mocked RPC/backend.

Nothing here touches the network: the RPC client, backend client and token
contracts are spec'd mocks, only signing is real (eth-account).
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest
from eth_account import Account
from eth_account.signers.local import LocalAccount

from src.backend.client import BackendClient
from src.rpc.client import EvmRpcClient
from src.rpc.erc20 import Erc20Token
from src.wallet.assets import NATIVE_DECIMALS, Asset, AssetKind, AssetRegistry
from src.wallet.events import EventBus, WalletEvent

# Well-known throwaway key (eth-account docs), never funded on any real chain
TEST_PRIVATE_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"

RECIPIENT = "0x5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAed"
USDT_ADDRESS = "0x787A697324dbA4AB965C58CD33c13ff5eeA6295F"
USDC_ADDRESS = "0x342e3aA1248AB77E319e3331C6fD3f1F2d4B36B1"

GWEI = 1_000_000_000


def make_hash(n: int) -> str:
    """Deterministic 32-byte tx hash for tests."""
    return "0x" + f"{n:064x}"


@pytest.fixture
def account() -> LocalAccount:
    return Account.from_key(TEST_PRIVATE_KEY)


@pytest.fixture
def assets() -> AssetRegistry:
    """BNB + a 6-decimal USDT + an 18-decimal USDC."""
    return AssetRegistry(
        [
            Asset("BNB", AssetKind.NATIVE, NATIVE_DECIMALS),
            Asset("USDT", AssetKind.TOKEN, 6, USDT_ADDRESS),
            Asset("USDC", AssetKind.TOKEN, 18, USDC_ADDRESS),
        ]
    )


def _token(address: str, decimals: int) -> MagicMock:
    token = MagicMock(spec=Erc20Token)
    token.address = address
    token.decimals = AsyncMock(return_value=decimals)
    token.balance_of = AsyncMock(return_value=0)
    return token


@pytest.fixture
def tokens() -> dict[str, MagicMock]:
    return {"USDT": _token(USDT_ADDRESS, 6), "USDC": _token(USDC_ADDRESS, 18)}


@pytest.fixture
def rpc() -> MagicMock:
    """EvmRpcClient with every coroutine method mocked.

    Defaults: nonce 5, gas price 5 gwei, gas estimate 21000, hash make_hash(1).
    """
    mock = MagicMock(spec=EvmRpcClient)
    mock.chain_id = AsyncMock(return_value=97)
    mock.get_balance = AsyncMock(return_value=0)
    mock.get_transaction_count = AsyncMock(return_value=5)
    mock.get_gas_price = AsyncMock(return_value=5 * GWEI)
    mock.estimate_gas = AsyncMock(return_value=21_000)
    mock.send_raw_transaction = AsyncMock(return_value=make_hash(1))
    mock.get_transaction_receipt = AsyncMock(return_value=None)
    mock.wait_for_receipt = AsyncMock()
    mock.close = AsyncMock()
    return mock


@pytest.fixture
def backend() -> MagicMock:
    mock = MagicMock(spec=BackendClient)
    mock.log_transaction = AsyncMock(return_value=True)
    mock.fetch_history = AsyncMock(return_value=[])
    mock.close = AsyncMock()
    return mock


class EventRecorder:
    """Bus subscriber that keeps every event it sees."""

    def __init__(self) -> None:
        self.events: list[WalletEvent] = []

    async def __call__(self, event: WalletEvent) -> None:
        self.events.append(event)

    def messages(self) -> list[str]:
        return [e.message for e in self.events]


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def recorder(bus: EventBus) -> EventRecorder:
    rec = EventRecorder()
    bus.subscribe(rec)
    return rec
