"""ERC-20 call interface: balanceOf, transfer, decimals, name, symbol, Transfer event.

Calls are ABI-encoded locally with eth-abi and executed through EvmRpcClient.call.
"""

from __future__ import annotations

from dataclasses import dataclass

from eth_abi import decode, encode
from eth_abi.exceptions import DecodingError
from eth_utils import (
    encode_hex,
    function_signature_to_4byte_selector,
    keccak,
    to_checksum_address,
)

from src.rpc.client import EvmRpcClient
from src.rpc.exceptions import RpcError
from src.rpc.models import TxReceipt

BALANCE_OF_SELECTOR = function_signature_to_4byte_selector("balanceOf(address)")
TRANSFER_SELECTOR = function_signature_to_4byte_selector("transfer(address,uint256)")
DECIMALS_SELECTOR = function_signature_to_4byte_selector("decimals()")
NAME_SELECTOR = function_signature_to_4byte_selector("name()")
SYMBOL_SELECTOR = function_signature_to_4byte_selector("symbol()")

TRANSFER_EVENT_TOPIC = encode_hex(keccak(text="Transfer(address,address,uint256)"))


@dataclass(frozen=True)
class TransferEvent:
    """Decoded Transfer(from, to, value) log."""

    token: str
    from_address: str
    to_address: str
    value: int


def encode_transfer(to: str, amount: int) -> str:
    """ABI-encode transfer(to, amount) calldata as a 0x-prefixed hex string."""
    return encode_hex(TRANSFER_SELECTOR + encode(["address", "uint256"], [to, amount]))


def decode_transfer(data: str | bytes) -> tuple[str, int]:
    """Inverse of encode_transfer. Returns (checksummed recipient, amount)."""
    raw = bytes.fromhex(data[2:]) if isinstance(data, str) else data
    if raw[:4] != TRANSFER_SELECTOR:
        raise ValueError("Calldata is not an ERC-20 transfer")
    to, amount = decode(["address", "uint256"], raw[4:])
    return to_checksum_address(to), amount


def _topic_address(topic: str) -> str:
    return to_checksum_address("0x" + topic[-40:])


def parse_transfer_logs(receipt: TxReceipt) -> list[TransferEvent]:
    """Extract ERC-20 Transfer events from a receipt. Malformed logs are skipped."""
    events: list[TransferEvent] = []
    for log in receipt.logs:
        if len(log.topics) != 3 or log.topics[0].lower() != TRANSFER_EVENT_TOPIC:
            continue
        try:
            (value,) = decode(["uint256"], bytes.fromhex(log.data[2:]))
        except (DecodingError, ValueError):
            continue
        events.append(
            TransferEvent(
                token=to_checksum_address(log.address),
                from_address=_topic_address(log.topics[1]),
                to_address=_topic_address(log.topics[2]),
                value=value,
            )
        )
    return events


class Erc20Token:
    """Read-only view of one ERC-20 contract.

    decimals() is fetched once per instance; the other reads always hit the node.
    """

    def __init__(self, rpc: EvmRpcClient, address: str) -> None:
        self._rpc = rpc
        self._address = to_checksum_address(address)
        self._decimals: int | None = None

    def __repr__(self) -> str:
        return f"Erc20Token(address={self._address})"

    @property
    def address(self) -> str:
        return self._address

    async def _read(self, data: bytes, output_type: str):
        raw = await self._rpc.call({"to": self._address, "data": encode_hex(data)})
        try:
            (value,) = decode([output_type], raw)
        except DecodingError as e:
            raise RpcError(f"Unexpected response from token {self._address}: {e}") from e
        return value

    async def decimals(self) -> int:
        if self._decimals is None:
            self._decimals = int(await self._read(DECIMALS_SELECTOR, "uint8"))
        return self._decimals

    async def balance_of(self, owner: str) -> int:
        return int(await self._read(BALANCE_OF_SELECTOR + encode(["address"], [owner]), "uint256"))

    async def name(self) -> str:
        return await self._read(NAME_SELECTOR, "string")

    async def symbol(self) -> str:
        return await self._read(SYMBOL_SELECTOR, "string")
