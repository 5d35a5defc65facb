"""Tests for the asset whitelist and input validation (address, amount, units)."""

from __future__ import annotations

from decimal import Decimal

import pytest

from config.settings import Settings
from src.wallet.assets import (
    AssetRegistry,
    amount_to_str,
    format_units,
    parse_amount,
    to_base_units,
    validate_recipient,
)
from src.wallet.exceptions import ValidationError

from tests.conftest import RECIPIENT


class TestRegistry:
    def test_lookup_is_case_insensitive(self, assets: AssetRegistry):
        assert assets.get("usdt").symbol == "USDT"
        assert assets.native.symbol == "BNB"
        assert [a.symbol for a in assets.tokens] == ["USDT", "USDC"]

    def test_unknown_asset(self, assets: AssetRegistry):
        with pytest.raises(ValidationError, match="Unsupported asset: DOGE"):
            assets.get("DOGE")

    def test_from_settings_builds_three_assets(self):
        registry = AssetRegistry.from_settings(Settings(_env_file=None))
        assert {a.symbol for a in registry} == {"BNB", "USDT", "USDC"}
        assert registry.get("USDT").contract_address is not None

    def test_needs_exactly_one_native(self):
        with pytest.raises(ValueError):
            AssetRegistry([])


class TestRecipient:
    def test_checksums_lowercase_input(self):
        assert validate_recipient(RECIPIENT.lower()) == RECIPIENT

    def test_strips_whitespace(self):
        assert validate_recipient(f"  {RECIPIENT} ") == RECIPIENT

    @pytest.mark.parametrize(
        "address",
        [
            "",
            "0x1234",
            "not-an-address",
            "0xZZAeb6053F3E94C9b9A09f33669435E7Ef1BeAed",
            # bad EIP-55 checksum: case flipped on one letter
            "0x5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAeD",
        ],
    )
    def test_invalid(self, address: str):
        with pytest.raises(ValidationError, match="Invalid recipient address."):
            validate_recipient(address)


class TestAmount:
    def test_valid(self):
        assert parse_amount("0.1", 18) == Decimal("0.1")
        assert parse_amount(" 10.5 ", 6) == Decimal("10.5")

    @pytest.mark.parametrize("text", ["", "abc", "0", "-1", "NaN", "Infinity"])
    def test_invalid(self, text: str):
        with pytest.raises(ValidationError, match="Invalid amount."):
            parse_amount(text, 18)

    def test_too_many_decimals(self):
        with pytest.raises(ValidationError, match="more than 6 decimal places"):
            parse_amount("1.0000001", 6)

    def test_trailing_zeros_do_not_count(self):
        assert parse_amount("1.5000000000", 6) == Decimal("1.5")


class TestUnits:
    def test_to_base_units_exact(self):
        assert to_base_units(Decimal("0.1"), 18) == 10**17
        assert to_base_units(Decimal("10.5"), 6) == 10_500_000

    def test_format_units(self):
        assert format_units(1_500_000, 6) == Decimal("1.5")

    def test_amount_to_str_has_no_exponent(self):
        assert amount_to_str(Decimal("10")) == "10"
        assert amount_to_str(Decimal("0.100")) == "0.1"
        assert amount_to_str(Decimal("1E-7")) == "0.0000001"
