"""Registry models."""

from datetime import datetime, timedelta
from enum import IntEnum, StrEnum

from pydantic import BaseModel, ConfigDict, Field, model_validator


class RelayStatus(StrEnum):
    """Local view of the relay's staking lifecycle."""

    NOT_CONFIGURED = "NotConfigured"
    NOT_REGISTERED = "NotRegistered"
    ACTIVE = "Active"
    UNSTAKING = "Unstaking"
    WITHDRAWABLE = "Withdrawable"
    SLASHED = "Slashed"


class OnChainRelayStatus(IntEnum):
    """Status codes stored by the registry contract."""

    INACTIVE = 0
    ACTIVE = 1
    UNSTAKING = 2
    SLASHED = 3


class RegistryParams(BaseModel):
    """Registry-wide staking parameters."""

    min_stake: int = Field(..., ge=0, description="Minimum stake in token base units")
    unstaking_delay: int = Field(..., ge=0, description="Unstaking delay in seconds")

    model_config = ConfigDict(frozen=True)


class OnChainRelayInfo(BaseModel):
    """Decoded ``getRelayInfo`` result."""

    owner: str
    endpoint: str
    peer_public_key: str
    epub: str = ""
    staked_amount: int = Field(..., ge=0)
    registered_at: int = 0
    updated_at: int = 0
    unstake_requested_at: int = 0
    status: int
    total_slashed: int = Field(default=0, ge=0)
    griefing_ratio: int = 0

    model_config = ConfigDict(frozen=True)


class RelayRegistration(BaseModel):
    """The relay's registration and stake on one chain."""

    chain_id: int
    address: str | None = None
    status: RelayStatus
    staked_amount: int = Field(default=0, ge=0)
    pending_unstake_amount: int = Field(default=0, ge=0)
    total_slashed: int = Field(default=0, ge=0)
    unstake_requested_at: datetime | None = None
    endpoint: str = ""
    peer_public_key: str = ""
    registered_at: datetime | None = None
    griefing_ratio: int = 0
    observed_block: int = Field(
        default=0, ge=0, description="Block at which this view was observed"
    )

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="after")
    def check_unstaking_fields(self) -> "RelayRegistration":
        """Unstaking states carry a pending amount and a request time."""
        if self.status in {RelayStatus.UNSTAKING, RelayStatus.WITHDRAWABLE}:
            if self.pending_unstake_amount <= 0:
                msg = f"{self.status} registration requires pending_unstake_amount > 0"
                raise ValueError(msg)
            if self.unstake_requested_at is None:
                msg = f"{self.status} registration requires unstake_requested_at"
                raise ValueError(msg)
        elif self.unstake_requested_at is not None:
            msg = f"{self.status} registration cannot carry unstake_requested_at"
            raise ValueError(msg)
        return self

    @property
    def is_registered(self) -> bool:
        """Whether the relay holds a registry entry on this chain."""
        return self.status not in {RelayStatus.NOT_CONFIGURED, RelayStatus.NOT_REGISTERED}

    def withdrawable_at(self, unstaking_delay: int) -> datetime | None:
        """Earliest withdrawal time, None when no unstake is pending."""
        if self.unstake_requested_at is None:
            return None
        return self.unstake_requested_at + timedelta(seconds=unstaking_delay)


class ReputationSnapshot(BaseModel):
    """On-chain derived reputation for the relay on one chain."""

    total_deals: int = 0
    active_deals: int = 0
    griefed_deals: int = 0
    total_slashed: int = 0
    proof_success_score: float = 50.0
    longevity_score: float = 0.0
    slashing_score: float = 100.0
    score: float = 0.0
    computed_at: datetime

    model_config = ConfigDict(frozen=True)


class TransactionResult(BaseModel):
    """A confirmed registry transaction."""

    tx_hash: str
    block_number: int
    confirmations: int

    model_config = ConfigDict(frozen=True)


__all__ = [
    "OnChainRelayInfo",
    "OnChainRelayStatus",
    "RegistryParams",
    "RelayRegistration",
    "RelayStatus",
    "ReputationSnapshot",
    "TransactionResult",
]
