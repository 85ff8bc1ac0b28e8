"""Relay reputation derived from on-chain deal and slashing data."""

from datetime import datetime

from collections.abc import Iterable

from src.data.deals.models import DealRecord
from src.data.registry.models import RelayRegistration, ReputationSnapshot
from src.helpers.constants import SECONDS_PER_DAY


PROOF_SUCCESS_WEIGHT = 0.2
LONGEVITY_WEIGHT = 0.1
# The other components of the network score measure telemetry that is not on
# chain. Their share goes to a slashing component, which is local to this module.
SLASHING_WEIGHT = 1.0 - PROOF_SUCCESS_WEIGHT - LONGEVITY_WEIGHT

MAX_LONGEVITY_DAYS = 365
"""Longevity score saturates after one year in the registry"""

NO_DATA_SCORE = 50.0


def proof_success_score(total_deals: int, griefed_deals: int) -> float:
    """Share of deals that were never griefed, scaled to 0-100.

    Example:
        >>> proof_success_score(4, 1)
        75.0
        >>> proof_success_score(0, 0)
        50.0
    """
    if total_deals <= 0:
        return NO_DATA_SCORE
    return (total_deals - griefed_deals) / total_deals * 100


def longevity_score(registered_at: datetime | None, now: datetime) -> float:
    """Days since registration relative to one year, capped at 100."""
    if registered_at is None:
        return 0.0
    days = max(0.0, (now - registered_at).total_seconds() / SECONDS_PER_DAY)
    return min(100.0, days / MAX_LONGEVITY_DAYS * 100)


def slashing_score(staked_amount: int, total_slashed: int) -> float:
    """100 for a never-slashed relay, falling with the slashed share of stake.

    Example:
        >>> slashing_score(900, 100)
        90.0
    """
    if total_slashed <= 0:
        return 100.0
    exposure = staked_amount + total_slashed
    return max(0.0, (1 - total_slashed / exposure) * 100)


def compute_reputation(
    registration: RelayRegistration | None,
    deals: Iterable[DealRecord],
    now: datetime,
) -> ReputationSnapshot:
    """Compute the weighted reputation score for one chain.

    Args:
        registration: Current registration, None when never read
        deals: All known deals for the relay on the chain
        now: Evaluation time

    Returns:
        ReputationSnapshot with component scores and the weighted total
    """
    deals = list(deals)
    total = len(deals)
    griefed = sum(1 for deal in deals if deal.griefed)
    active = sum(1 for deal in deals if deal.active)

    staked = 0
    slashed = 0
    registered_at = None
    if registration is not None:
        staked = registration.staked_amount + registration.pending_unstake_amount
        slashed = registration.total_slashed
        registered_at = registration.registered_at

    proof = proof_success_score(total, griefed)
    longevity = longevity_score(registered_at, now)
    slashing = slashing_score(staked, slashed)

    score = (
        proof * PROOF_SUCCESS_WEIGHT
        + longevity * LONGEVITY_WEIGHT
        + slashing * SLASHING_WEIGHT
    )

    return ReputationSnapshot(
        total_deals=total,
        active_deals=active,
        griefed_deals=griefed,
        total_slashed=slashed,
        proof_success_score=round(proof, 2),
        longevity_score=round(longevity, 2),
        slashing_score=round(slashing, 2),
        score=round(score, 2),
        computed_at=now,
    )
