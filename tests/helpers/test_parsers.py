"""Tests for parsing helpers."""

from datetime import UTC, datetime
from decimal import Decimal

import pytest

from src.helpers.parsers import (
    from_base_units,
    normalize_bytes32,
    parse_hex_int,
    parse_unix_timestamp,
    to_base_units,
    to_unix_timestamp,
)


def test_parse_hex_int() -> None:
    """Test hex parsing with a default."""
    assert parse_hex_int("0x1b4") == 436
    assert parse_hex_int(None, 7) == 7


def test_unix_timestamps() -> None:
    """Test zero is unset in both directions."""
    moment = datetime(2025, 1, 1, tzinfo=UTC)

    assert parse_unix_timestamp(0) is None
    assert parse_unix_timestamp(to_unix_timestamp(moment)) == moment
    assert to_unix_timestamp(None) == 0


class TestTokenUnits:
    """Tests for stake token unit conversion."""

    @pytest.mark.parametrize(
        ("amount", "expected"),
        [("100", 100_000_000), (Decimal("1.5"), 1_500_000), (2, 2_000_000), ("0.000001", 1)],
    )
    def test_to_base_units(self, amount: Decimal | str | int, expected: int) -> None:
        """Test token amounts to base units."""
        assert to_base_units(amount) == expected

    def test_too_precise(self) -> None:
        """Test amounts finer than the token allows are rejected."""
        with pytest.raises(ValueError, match="more than 6 decimals"):
            to_base_units("0.0000001")

    def test_from_base_units(self) -> None:
        """Test base units to a normalized Decimal."""
        assert from_base_units(100_000_000) == Decimal(100)
        assert from_base_units(1) == Decimal("0.000001")
        assert from_base_units(5, decimals=0) == Decimal(5)


def test_normalize_bytes32() -> None:
    """Test ids are lowercased and 0x-prefixed."""
    assert normalize_bytes32("0xABCD") == "0xabcd"
    assert normalize_bytes32("abcd") == "0xabcd"
    assert normalize_bytes32(b"\x00\xff") == "0x00ff"
