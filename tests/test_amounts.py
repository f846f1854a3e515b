"""Tests for networks and USDC amount handling."""

from decimal import Decimal

import pytest

from relaypay.chains import (
    Network,
    explorer_url,
    from_base_units,
    get_chain_config,
    lamports_to_sol,
    to_base_units,
    validate_amount,
    wei_to_eth,
)
from relaypay.config import get_settings
from relaypay.errors import ErrorCategory, InvalidAmount, UnsupportedNetwork


class TestNetwork:
    """Tests for network parsing."""

    @pytest.mark.parametrize("name,expected", [
        ("evm", Network.EVM),
        ("base", Network.EVM),
        ("EVM", Network.EVM),
        (" solana ", Network.SOLANA),
        ("sol", Network.SOLANA),
        (Network.SOLANA, Network.SOLANA),
    ])
    def test_parse(self, name, expected):
        assert Network.parse(name) == expected

    @pytest.mark.parametrize("name", ["ethereum", "tron", "", "bitcoin"])
    def test_unsupported(self, name):
        with pytest.raises(UnsupportedNetwork) as exc:
            Network.parse(name)
        assert exc.value.category == ErrorCategory.PRECONDITION

    def test_chain_config_from_settings(self):
        settings = get_settings()
        evm = get_chain_config(Network.EVM, settings)
        assert evm.native_symbol == "ETH"
        assert evm.chain_id == settings.base_chain_id
        assert evm.token_address == settings.base_usdc_address
        assert evm.token_decimals == 6

        sol = get_chain_config(Network.SOLANA, settings)
        assert sol.native_symbol == "SOL"
        assert sol.chain_id is None
        assert sol.min_relayer_balance == settings.solana_min_relayer_balance

    def test_explorer_url(self):
        url = explorer_url(Network.SOLANA, "5abc")
        assert url.endswith("/tx/5abc")


class TestValidateAmount:
    """Tests for amount validation."""

    @pytest.mark.parametrize("value,expected", [
        ("10", Decimal("10")),
        ("0.000001", Decimal("0.000001")),
        (5, Decimal("5")),
        (0.1, Decimal("0.1")),
        (Decimal("12.50"), Decimal("12.50")),
        ("1.500000", Decimal("1.500000")),
    ])
    def test_valid(self, value, expected):
        assert validate_amount(value) == expected

    @pytest.mark.parametrize("value", [
        "0", "-1", "0.0", "abc", "", "NaN", "Infinity", "-Infinity", True,
    ])
    def test_invalid(self, value):
        with pytest.raises(InvalidAmount):
            validate_amount(value)

    def test_rejects_more_than_six_decimals(self):
        with pytest.raises(InvalidAmount, match="decimal places"):
            validate_amount("1.0000005")

    def test_trailing_zeros_are_not_precision(self):
        assert validate_amount("2.50000000") == Decimal("2.50000000")


class TestBaseUnits:
    """Tests for conversion to and from integer base units."""

    def test_whole_amount(self):
        assert to_base_units("10") == 10_000_000
        assert from_base_units(10_000_000) == Decimal("10.000000")

    def test_smallest_unit(self):
        assert to_base_units("0.000001") == 1
        assert from_base_units(1) == Decimal("0.000001")

    def test_truncates_extra_precision(self):
        """Digits beyond 6 decimals are dropped, never rounded up."""
        assert to_base_units("1.0000005") == 1_000_000
        assert to_base_units("1.0000009") == 1_000_000

    @pytest.mark.parametrize("value", ["0.123456", "123.45", "999999.999999", "1"])
    def test_exact_at_six_decimals(self, value):
        assert from_base_units(to_base_units(value)) == Decimal(value)

    def test_native_units(self):
        assert lamports_to_sol(5000) == Decimal("0.000005")
        assert wei_to_eth(10**18) == Decimal("1")
