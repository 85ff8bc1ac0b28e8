"""Pricing tier models."""

from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, model_validator


class PricingTier(BaseModel):
    """A named pricing/SLA bracket constraining deal size and duration."""

    name: str
    price_per_mb_month: Decimal = Field(..., ge=0, description="Price per MB per 30 days")
    min_size_mb: Decimal = Field(..., ge=0)
    max_size_mb: Decimal = Field(..., ge=0)
    min_duration_days: int = Field(..., ge=0)
    max_duration_days: int = Field(..., ge=0)
    replication_factor: int = Field(default=1, ge=0)
    sla_guarantee: bool = False
    erasure_coding: bool = False

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="after")
    def check_ranges(self) -> "PricingTier":
        """Reject tiers whose minimum exceeds their maximum."""
        if self.min_size_mb > self.max_size_mb:
            msg = f"Tier {self.name}: min_size_mb exceeds max_size_mb"
            raise ValueError(msg)
        if self.min_duration_days > self.max_duration_days:
            msg = f"Tier {self.name}: min_duration_days exceeds max_duration_days"
            raise ValueError(msg)
        return self


class PriceQuote(BaseModel):
    """Result of resolving a price for a deal."""

    tier: str
    size_mb: Decimal
    duration_days: int
    months: Decimal
    price_per_mb_month: Decimal
    total_price: Decimal
    replication_factor: int
    sla_guarantee: bool
    erasure_coding: bool

    model_config = ConfigDict(frozen=True)


__all__ = [
    "PriceQuote",
    "PricingTier",
]
