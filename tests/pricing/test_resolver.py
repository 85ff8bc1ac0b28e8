"""Tests for deal pricing resolution."""

from decimal import Decimal

import pytest

from src.helpers.errors import TierDurationOutOfRange, TierSizeOutOfRange, UnknownTier
from src.pricing.constants import DEFAULT_TIERS
from src.pricing.resolver import PricingResolver, infer_tier, load_tier_table, resolve_price


class TestResolvePrice:
    """Tests for PricingResolver.resolve_price."""

    def test_standard_quote(self) -> None:
        """Test 500 MB for 30 days on the standard tier."""
        quote = resolve_price("standard", 500, 30)

        assert quote.total_price == Decimal("0.05")
        assert quote.months == Decimal(1)
        assert quote.replication_factor == 1
        assert quote.sla_guarantee is False

    def test_enterprise_flags(self) -> None:
        """Test SLA and erasure coding come from the tier."""
        quote = resolve_price("enterprise", "2500", 90)

        assert quote.total_price == Decimal("0.0005") * 2500 * 3
        assert quote.replication_factor == 5
        assert quote.sla_guarantee is True
        assert quote.erasure_coding is True

    def test_size_out_of_range_is_not_clamped(self) -> None:
        """Test sizes above the tier maximum are rejected."""
        with pytest.raises(TierSizeOutOfRange, match="2000 MB outside standard"):
            resolve_price("standard", 2000, 30)

    @pytest.mark.parametrize("duration_days", [6, 366])
    def test_duration_out_of_range(self, duration_days: int) -> None:
        """Test durations outside the tier bounds are rejected."""
        with pytest.raises(TierDurationOutOfRange):
            resolve_price("standard", 10, duration_days)

    def test_bounds_are_inclusive(self) -> None:
        """Test the exact tier bounds are accepted."""
        tier = DEFAULT_TIERS["standard"]

        quote = resolve_price("standard", tier.max_size_mb, tier.max_duration_days)

        assert quote.size_mb == tier.max_size_mb

    def test_unknown_tier(self) -> None:
        """Test an unconfigured tier name."""
        with pytest.raises(UnknownTier, match="platinum"):
            resolve_price("platinum", 10, 30)

    def test_resolver_copy_is_isolated(self) -> None:
        """Test the exposed tier table cannot mutate the resolver."""
        resolver = PricingResolver()

        resolver.tiers.pop("standard")

        assert resolver.get_tier("standard") == DEFAULT_TIERS["standard"]


class TestLoadTierTable:
    """Tests for environment overrides."""

    def test_no_overrides(self) -> None:
        """Test an empty environment gives the defaults."""
        assert load_tier_table({}) == DEFAULT_TIERS

    def test_price_and_replication(self) -> None:
        """Test per-tier overrides."""
        tiers = load_tier_table(
            {"DEAL_PRICE_PREMIUM": "0.0003", "DEAL_PREMIUM_REPLICATION": "4"}
        )

        assert tiers["premium"].price_per_mb_month == Decimal("0.0003")
        assert tiers["premium"].replication_factor == 4
        assert tiers["standard"] == DEFAULT_TIERS["standard"]

    def test_shared_bounds(self) -> None:
        """Test size and duration bounds apply to every tier."""
        tiers = load_tier_table({"DEAL_MAX_SIZE_MB": "50", "DEAL_MIN_DURATION_DAYS": "1"})

        assert all(tier.max_size_mb == 50 for tier in tiers.values())
        assert all(tier.min_duration_days == 1 for tier in tiers.values())
        with pytest.raises(TierSizeOutOfRange):
            resolve_price("premium", 60, 30, tiers)

    @pytest.mark.parametrize(
        ("env", "match"),
        [
            ({"DEAL_PRICE_STANDARD": "cheap"}, "DEAL_PRICE_STANDARD"),
            ({"DEAL_ENTERPRISE_REPLICATION": "1.5"}, "DEAL_ENTERPRISE_REPLICATION"),
            ({"DEAL_MIN_DURATION_DAYS": "400"}, "min_duration_days"),
        ],
    )
    def test_invalid_overrides(self, env: dict[str, str], match: str) -> None:
        """Test malformed or inconsistent overrides."""
        with pytest.raises(ValueError, match=match):
            load_tier_table(env)


@pytest.mark.parametrize(
    ("size_mb", "tier"),
    [(1, "standard"), (99, "standard"), (100, "premium"), (999, "premium"), (1000, "enterprise")],
)
def test_infer_tier(size_mb: int, tier: str) -> None:
    """Test tier inference thresholds."""
    assert infer_tier(size_mb) == tier
