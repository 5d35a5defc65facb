"""Asset whitelist and user-input validation (addresses, decimal amounts).

Amounts are handled as Decimal end to end; float never touches a value
that ends up on chain.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import TYPE_CHECKING

from eth_utils import is_address, to_checksum_address

from src.rpc.erc20 import Erc20Token
from src.wallet.exceptions import ValidationError

if TYPE_CHECKING:
    from config.settings import Settings
    from src.rpc.client import EvmRpcClient

NATIVE_DECIMALS = 18


class AssetKind(str, Enum):
    NATIVE = "native"
    TOKEN = "token"


@dataclass(frozen=True)
class Asset:
    symbol: str
    kind: AssetKind
    decimals: int  # declared precision, used for input validation
    contract_address: str | None = None

    @property
    def is_native(self) -> bool:
        return self.kind is AssetKind.NATIVE


class AssetRegistry:
    """Fixed whitelist: the chain's native coin plus configured token contracts."""

    def __init__(self, assets: list[Asset]) -> None:
        self._assets = {a.symbol.upper(): a for a in assets}
        natives = [a for a in assets if a.is_native]
        if len(natives) != 1:
            raise ValueError("Asset registry needs exactly one native asset")
        self._native = natives[0]

    @classmethod
    def from_settings(cls, settings: Settings) -> AssetRegistry:
        return cls(
            [
                Asset(settings.native_symbol, AssetKind.NATIVE, NATIVE_DECIMALS),
                Asset(
                    "USDT",
                    AssetKind.TOKEN,
                    settings.usdt_decimals,
                    to_checksum_address(settings.usdt_contract_address),
                ),
                Asset(
                    "USDC",
                    AssetKind.TOKEN,
                    settings.usdc_decimals,
                    to_checksum_address(settings.usdc_contract_address),
                ),
            ]
        )

    @property
    def native(self) -> Asset:
        return self._native

    @property
    def tokens(self) -> list[Asset]:
        return [a for a in self._assets.values() if not a.is_native]

    def get(self, symbol: str) -> Asset:
        asset = self._assets.get(symbol.upper())
        if asset is None:
            raise ValidationError(f"Unsupported asset: {symbol}")
        return asset

    def __iter__(self):
        return iter(self._assets.values())

    def token_contracts(self, rpc: EvmRpcClient) -> dict[str, Erc20Token]:
        """One shared Erc20Token per whitelisted token, so decimals() is read once."""
        return {a.symbol: Erc20Token(rpc, a.contract_address or "") for a in self.tokens}


def validate_recipient(address: str) -> str:
    """Return the checksummed address or raise ValidationError.

    Mixed-case input must carry a valid EIP-55 checksum.
    """
    candidate = (address or "").strip()
    if not is_address(candidate):
        raise ValidationError("Invalid recipient address.")
    return to_checksum_address(candidate)


def parse_amount(text: str, decimals: int) -> Decimal:
    """Parse a user amount. Must be finite, > 0, with at most ``decimals`` fraction digits."""
    raw = (text or "").strip()
    try:
        amount = Decimal(raw)
    except InvalidOperation:
        raise ValidationError("Invalid amount.") from None

    if not amount.is_finite() or amount <= 0:
        raise ValidationError("Invalid amount.")

    exponent = amount.normalize().as_tuple().exponent
    if isinstance(exponent, int) and -exponent > decimals:
        raise ValidationError(f"Amount has more than {decimals} decimal places.")
    return amount


def to_base_units(amount: Decimal, decimals: int) -> int:
    """Scale a display amount to integer base units (exact, no rounding)."""
    scaled = amount.scaleb(decimals)
    if scaled != scaled.to_integral_value():
        raise ValidationError(f"Amount has more than {decimals} decimal places.")
    return int(scaled)


def format_units(value: int, decimals: int) -> Decimal:
    """Base units -> display Decimal (e.g. wei -> BNB)."""
    return Decimal(value).scaleb(-decimals)


def amount_to_str(amount: Decimal) -> str:
    """Canonical decimal string: no exponent, no trailing zeros ("0.1", "10.5", "3")."""
    return format(amount.normalize(), "f")
