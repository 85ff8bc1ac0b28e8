"""Default deal pricing tiers and their environment overrides."""

from decimal import Decimal

from src.pricing.models import PricingTier


STANDARD = "standard"
PREMIUM = "premium"
ENTERPRISE = "enterprise"

DEFAULT_TIERS: dict[str, PricingTier] = {
    STANDARD: PricingTier(
        name=STANDARD,
        price_per_mb_month=Decimal("0.0001"),
        min_size_mb=Decimal("0.001"),
        max_size_mb=Decimal(1000),
        min_duration_days=7,
        max_duration_days=365,
        replication_factor=1,
    ),
    PREMIUM: PricingTier(
        name=PREMIUM,
        price_per_mb_month=Decimal("0.0002"),
        min_size_mb=Decimal("0.001"),
        max_size_mb=Decimal(10_000),
        min_duration_days=7,
        max_duration_days=730,
        replication_factor=3,
        erasure_coding=True,
    ),
    ENTERPRISE: PricingTier(
        name=ENTERPRISE,
        price_per_mb_month=Decimal("0.0005"),
        min_size_mb=Decimal("0.001"),
        max_size_mb=Decimal(100_000),
        min_duration_days=7,
        max_duration_days=1825,
        replication_factor=5,
        sla_guarantee=True,
        erasure_coding=True,
    ),
}

# Per-tier price variables
PRICE_ENV_VARS = {
    STANDARD: "DEAL_PRICE_STANDARD",
    PREMIUM: "DEAL_PRICE_PREMIUM",
    ENTERPRISE: "DEAL_PRICE_ENTERPRISE",
}

# Per-tier replication variables (standard is always single-copy)
REPLICATION_ENV_VARS = {
    PREMIUM: "DEAL_PREMIUM_REPLICATION",
    ENTERPRISE: "DEAL_ENTERPRISE_REPLICATION",
}

# Shared bounds, applied to every tier when set
MIN_SIZE_ENV_VAR = "DEAL_MIN_SIZE_MB"
MAX_SIZE_ENV_VAR = "DEAL_MAX_SIZE_MB"
MIN_DURATION_ENV_VAR = "DEAL_MIN_DURATION_DAYS"
MAX_DURATION_ENV_VAR = "DEAL_MAX_DURATION_DAYS"

# Size thresholds used to infer a tier for deals read from the registry
ENTERPRISE_SIZE_THRESHOLD_MB = Decimal(1000)
PREMIUM_SIZE_THRESHOLD_MB = Decimal(100)
