"""Staking intents accepted by the state machine.

Each action is a frozen value; ``StakingAction`` is the closed union the state
machine dispatches on.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class Register:
    """Register the relay with an initial stake (token base units)."""

    endpoint: str
    peer_public_key: str
    stake_amount: int
    griefing_ratio: int = 0


@dataclass(frozen=True)
class IncreaseStake:
    """Add ``amount`` base units to an active stake."""

    amount: int


@dataclass(frozen=True)
class RequestUnstake:
    """Start unstaking the full stake."""


@dataclass(frozen=True)
class Withdraw:
    """Withdraw a matured unstake."""


@dataclass(frozen=True)
class UpdateInfo:
    """Update the advertised endpoint and/or peer public key."""

    endpoint: str | None = None
    peer_public_key: str | None = None


@dataclass(frozen=True)
class EmergencyWithdraw:
    """Owner-only recovery of tokens held by the registry."""

    token_address: str
    amount: int


StakingAction = (
    Register | IncreaseStake | RequestUnstake | Withdraw | UpdateInfo | EmergencyWithdraw
)


def action_name(action: StakingAction) -> str:
    """Short name used in logs and command results.

    Example:
        >>> action_name(IncreaseStake(amount=5))
        'increase_stake'
    """
    name = type(action).__name__
    return "".join(f"_{c.lower()}" if c.isupper() else c for c in name).lstrip("_")


__all__ = [
    "EmergencyWithdraw",
    "IncreaseStake",
    "Register",
    "RequestUnstake",
    "StakingAction",
    "UpdateInfo",
    "Withdraw",
    "action_name",
]
