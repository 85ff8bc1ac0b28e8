"""Deal pricing resolution against the configured tier table."""

from decimal import Decimal, InvalidOperation

from collections.abc import Mapping

from src.helpers.constants import DAYS_PER_MONTH
from src.helpers.errors import TierDurationOutOfRange, TierSizeOutOfRange, UnknownTier
from src.pricing.constants import (
    DEFAULT_TIERS,
    ENTERPRISE,
    ENTERPRISE_SIZE_THRESHOLD_MB,
    MAX_DURATION_ENV_VAR,
    MAX_SIZE_ENV_VAR,
    MIN_DURATION_ENV_VAR,
    MIN_SIZE_ENV_VAR,
    PREMIUM,
    PREMIUM_SIZE_THRESHOLD_MB,
    PRICE_ENV_VARS,
    REPLICATION_ENV_VARS,
    STANDARD,
)
from src.pricing.models import PriceQuote, PricingTier


def _env_decimal(env: Mapping[str, str], key: str) -> Decimal | None:
    raw = env.get(key)
    if not raw:
        return None
    try:
        return Decimal(raw)
    except InvalidOperation:
        msg = f"{key} must be a decimal number, got {raw!r}"
        raise ValueError(msg) from None


def _env_int(env: Mapping[str, str], key: str) -> int | None:
    raw = env.get(key)
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        msg = f"{key} must be an integer, got {raw!r}"
        raise ValueError(msg) from None


def load_tier_table(env: Mapping[str, str]) -> dict[str, PricingTier]:
    """Build the tier table from defaults and environment overrides.

    Args:
        env: Environment mapping (usually ``os.environ``)

    Returns:
        Tier name to PricingTier mapping

    Raises:
        ValueError: If an override is malformed or yields an invalid tier

    Example:
        ```python
        tiers = load_tier_table({"DEAL_PRICE_STANDARD": "0.0002"})
        assert tiers["standard"].price_per_mb_month == Decimal("0.0002")
        ```
    """
    min_size = _env_decimal(env, MIN_SIZE_ENV_VAR)
    max_size = _env_decimal(env, MAX_SIZE_ENV_VAR)
    min_days = _env_int(env, MIN_DURATION_ENV_VAR)
    max_days = _env_int(env, MAX_DURATION_ENV_VAR)

    tiers: dict[str, PricingTier] = {}
    for name, tier in DEFAULT_TIERS.items():
        updates: dict[str, object] = {}

        price = _env_decimal(env, PRICE_ENV_VARS[name])
        if price is not None:
            updates["price_per_mb_month"] = price
        if name in REPLICATION_ENV_VARS:
            replication = _env_int(env, REPLICATION_ENV_VARS[name])
            if replication is not None:
                updates["replication_factor"] = replication
        if min_size is not None:
            updates["min_size_mb"] = min_size
        if max_size is not None:
            updates["max_size_mb"] = max_size
        if min_days is not None:
            updates["min_duration_days"] = min_days
        if max_days is not None:
            updates["max_duration_days"] = max_days

        # Re-validate through the constructor so range invariants still hold
        tiers[name] = PricingTier.model_validate(tier.model_dump() | updates)

    return tiers


def infer_tier(size_mb: Decimal | int | float) -> str:
    """Infer a tier for a deal read from the registry, which stores none.

    Example:
        >>> infer_tier(50)
        'standard'
        >>> infer_tier(2500)
        'enterprise'
    """
    size = Decimal(str(size_mb))
    if size >= ENTERPRISE_SIZE_THRESHOLD_MB:
        return ENTERPRISE
    if size >= PREMIUM_SIZE_THRESHOLD_MB:
        return PREMIUM
    return STANDARD


class PricingResolver:
    """Resolves deal prices against an immutable tier table."""

    def __init__(self, tiers: Mapping[str, PricingTier] | None = None) -> None:
        """Initialize the resolver.

        Args:
            tiers: Tier table, defaults to the built-in tiers
        """
        self._tiers: dict[str, PricingTier] = dict(tiers or DEFAULT_TIERS)

    @property
    def tiers(self) -> dict[str, PricingTier]:
        """Return a copy of the tier table."""
        return dict(self._tiers)

    def get_tier(self, tier: str) -> PricingTier:
        """Look up a tier by name.

        Raises:
            UnknownTier: If the tier is not configured
        """
        try:
            return self._tiers[tier]
        except KeyError:
            msg = f"Unknown pricing tier: {tier}"
            raise UnknownTier(msg) from None

    def resolve_price(
        self,
        tier: str,
        size_mb: Decimal | int | float | str,
        duration_days: int,
    ) -> PriceQuote:
        """Price a deal for the given tier, size and duration.

        Size and duration are validated against the tier's bounds and never
        clamped.

        Args:
            tier: Tier name
            size_mb: Deal size in MB
            duration_days: Deal duration in days

        Returns:
            PriceQuote with total price and replication/SLA requirements

        Raises:
            UnknownTier: If the tier is not configured
            TierSizeOutOfRange: If size is outside the tier's range
            TierDurationOutOfRange: If duration is outside the tier's range
        """
        pricing_tier = self.get_tier(tier)
        size = Decimal(str(size_mb))

        if not pricing_tier.min_size_mb <= size <= pricing_tier.max_size_mb:
            msg = (
                f"Size {size} MB outside {tier} range "
                f"[{pricing_tier.min_size_mb}, {pricing_tier.max_size_mb}]"
            )
            raise TierSizeOutOfRange(msg)

        if not pricing_tier.min_duration_days <= duration_days <= pricing_tier.max_duration_days:
            msg = (
                f"Duration {duration_days} days outside {tier} range "
                f"[{pricing_tier.min_duration_days}, {pricing_tier.max_duration_days}]"
            )
            raise TierDurationOutOfRange(msg)

        months = Decimal(duration_days) / DAYS_PER_MONTH
        total = pricing_tier.price_per_mb_month * size * months

        return PriceQuote(
            tier=tier,
            size_mb=size,
            duration_days=duration_days,
            months=months,
            price_per_mb_month=pricing_tier.price_per_mb_month,
            total_price=total,
            replication_factor=pricing_tier.replication_factor,
            sla_guarantee=pricing_tier.sla_guarantee,
            erasure_coding=pricing_tier.erasure_coding,
        )


def resolve_price(
    tier: str,
    size_mb: Decimal | int | float | str,
    duration_days: int,
    tiers: Mapping[str, PricingTier] | None = None,
) -> PriceQuote:
    """Price a deal against ``tiers`` (default tier table when omitted).

    Example:
        >>> resolve_price("standard", 500, 30).total_price == Decimal("0.05")
        True
    """
    return PricingResolver(tiers).resolve_price(tier, size_mb, duration_days)


__all__ = [
    "PricingResolver",
    "infer_tier",
    "load_tier_table",
    "resolve_price",
]
