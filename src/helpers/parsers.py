"""Parsing utilities for common data transformations."""

from datetime import UTC, datetime
from decimal import Decimal

from src.helpers.constants import STAKE_TOKEN_DECIMALS


def parse_hex_int(hex_value: str | None, default: int = 0) -> int:
    """Parse hex string to integer.

    Args:
        hex_value: Hex-encoded string or None
        default: Default value if hex_value is None

    Returns:
        int: Parsed integer value

    Example:
        >>> parse_hex_int("0xff")
        255
        >>> parse_hex_int(None, 0)
        0
    """
    if hex_value is None:
        return default
    return int(hex_value, 16)


def parse_unix_timestamp(timestamp: int) -> datetime | None:
    """Parse an on-chain unix timestamp, treating zero as unset.

    Args:
        timestamp: Seconds since epoch as stored by the contract

    Returns:
        datetime | None: UTC datetime, or None when the timestamp is zero

    Example:
        >>> parse_unix_timestamp(0) is None
        True
        >>> parse_unix_timestamp(1700000000)
        datetime.datetime(2023, 11, 14, 22, 13, 20, tzinfo=datetime.timezone.utc)
    """
    if timestamp <= 0:
        return None
    return datetime.fromtimestamp(timestamp, tz=UTC)


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


def to_unix_timestamp(value: datetime | None) -> int:
    """Convert a datetime to whole unix seconds, None becomes zero."""
    if value is None:
        return 0
    return int(value.timestamp())


def to_base_units(amount: Decimal | str | int, decimals: int = STAKE_TOKEN_DECIMALS) -> int:
    """Convert a human-readable token amount to the token's smallest unit.

    Args:
        amount: Token amount (e.g. ``"100.5"`` USDC)
        decimals: Token decimals

    Returns:
        int: Amount in base units

    Raises:
        ValueError: If the amount has more precision than the token supports

    Example:
        >>> to_base_units("1.5")
        1500000
    """
    scaled = Decimal(str(amount)) * (Decimal(10) ** decimals)
    if scaled != scaled.to_integral_value():
        msg = f"Amount {amount} has more than {decimals} decimals"
        raise ValueError(msg)
    return int(scaled)


def from_base_units(amount: int, decimals: int = STAKE_TOKEN_DECIMALS) -> Decimal:
    """Convert base units to a human-readable Decimal amount.

    Example:
        >>> from_base_units(1500000)
        Decimal('1.5')
    """
    return (Decimal(amount) / (Decimal(10) ** decimals)).normalize()


def normalize_bytes32(value: bytes | str) -> str:
    """Normalize a bytes32 identifier to a lowercase 0x-prefixed hex string.

    Example:
        >>> normalize_bytes32(b"\\x01" * 32)[:6]
        '0x0101'
    """
    if isinstance(value, bytes):
        return "0x" + value.hex()
    hex_value = value.lower()
    if not hex_value.startswith("0x"):
        hex_value = f"0x{hex_value}"
    return hex_value
