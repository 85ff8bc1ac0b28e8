"""Storage deal models."""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field


IMMUTABLE_DEAL_FIELDS = (
    "chain_id",
    "deal_id",
    "content_id",
    "client_address",
    "size_mb",
    "tier",
    "price_total",
    "created_at",
    "expires_at",
)
"""Fields a reconciliation pass never rewrites once a deal is known."""


class OnChainDeal(BaseModel):
    """Decoded ``getDeal`` result."""

    deal_id: str
    relay: str
    client: str
    cid: str
    size_mb: int = Field(..., ge=0)
    price: int = Field(..., ge=0, description="Total price in token base units")
    created_at: int
    expires_at: int
    active: bool
    griefed: bool = False
    client_stake: int = 0

    model_config = ConfigDict(frozen=True)


class DealRecord(BaseModel):
    """A storage deal this relay is a party to."""

    chain_id: int
    deal_id: str
    content_id: str
    client_address: str
    size_mb: int
    tier: str
    price_total: Decimal = Field(..., description="Total price in stake token units")
    created_at: datetime
    expires_at: datetime
    active: bool = True
    griefed: bool = False
    client_stake: Decimal = Decimal(0)
    replication_factor: int = 1

    model_config = ConfigDict(frozen=True)

    @property
    def duration_days(self) -> int:
        """Deal term in whole days, rounded up."""
        seconds = (self.expires_at - self.created_at).total_seconds()
        return max(0, -(-int(seconds) // 86_400))

    def is_expired(self, now: datetime) -> bool:
        """Whether the deal term has ended at ``now``."""
        return now >= self.expires_at


class DealFilter(BaseModel):
    """Read filter for ``ReconciliationCache.list_deals``."""

    active: bool | None = None
    griefed: bool | None = None
    tier: str | None = None
    client_address: str | None = None

    model_config = ConfigDict(frozen=True)

    def matches(self, deal: DealRecord) -> bool:
        """Whether ``deal`` passes every set criterion."""
        if self.active is not None and deal.active != self.active:
            return False
        if self.griefed is not None and deal.griefed != self.griefed:
            return False
        if self.tier is not None and deal.tier != self.tier:
            return False
        return not (
            self.client_address is not None
            and deal.client_address.lower() != self.client_address.lower()
        )


__all__ = [
    "IMMUTABLE_DEAL_FIELDS",
    "DealFilter",
    "DealRecord",
    "OnChainDeal",
]
