"""Conversion of decoded registry reads into the local relay view."""

from datetime import datetime

from collections.abc import Mapping

from src.data.deals.models import DealRecord, OnChainDeal
from src.data.registry.models import (
    OnChainRelayInfo,
    OnChainRelayStatus,
    RelayRegistration,
    RelayStatus,
)
from src.helpers.errors import ChainUnavailable
from src.helpers.parsers import from_base_units, normalize_bytes32, parse_unix_timestamp
from src.pricing.models import PricingTier
from src.pricing.resolver import infer_tier


def registration_from_chain(
    chain_id: int,
    address: str | None,
    info: OnChainRelayInfo | None,
    *,
    unstaking_delay: int | None,
    observed_block: int,
    now: datetime,
) -> RelayRegistration:
    """Map a ``getRelayInfo`` result to a ``RelayRegistration``.

    Args:
        chain_id: Chain the info was read from
        address: Relay address, None when neither a signer nor an address is configured
        info: Decoded relay info, None when the registry has no entry
        unstaking_delay: Registry unstaking delay in seconds, None if unknown
        observed_block: Block the info was read at
        now: Current time, used to derive Withdrawable

    Returns:
        RelayRegistration

    Raises:
        ChainUnavailable: If the registry reports an unknown status code
    """
    if address is None:
        return RelayRegistration(chain_id=chain_id, status=RelayStatus.NOT_CONFIGURED)
    if info is None:
        return RelayRegistration(
            chain_id=chain_id,
            address=address,
            status=RelayStatus.NOT_REGISTERED,
            observed_block=observed_block,
        )

    try:
        on_chain_status = OnChainRelayStatus(info.status)
    except ValueError:
        msg = f"Unknown relay status code {info.status} on chain {chain_id}"
        raise ChainUnavailable(msg) from None

    common = {
        "chain_id": chain_id,
        "address": address,
        "total_slashed": info.total_slashed,
        "endpoint": info.endpoint,
        "peer_public_key": info.peer_public_key,
        "registered_at": parse_unix_timestamp(info.registered_at),
        "griefing_ratio": info.griefing_ratio,
        "observed_block": observed_block,
    }

    match on_chain_status:
        case OnChainRelayStatus.ACTIVE:
            return RelayRegistration(
                status=RelayStatus.ACTIVE, staked_amount=info.staked_amount, **common
            )
        case OnChainRelayStatus.SLASHED:
            return RelayRegistration(
                status=RelayStatus.SLASHED, staked_amount=info.staked_amount, **common
            )
        case OnChainRelayStatus.UNSTAKING if info.staked_amount > 0:
            requested_at = (
                parse_unix_timestamp(info.unstake_requested_at)
                or parse_unix_timestamp(info.updated_at)
                or now
            )
            status = RelayStatus.UNSTAKING
            if unstaking_delay is not None and (
                now - requested_at
            ).total_seconds() >= unstaking_delay:
                status = RelayStatus.WITHDRAWABLE
            return RelayRegistration(
                status=status,
                pending_unstake_amount=info.staked_amount,
                unstake_requested_at=requested_at,
                **common,
            )
        case _:
            # Inactive, or unstaking with nothing left to withdraw
            return RelayRegistration(
                chain_id=chain_id,
                address=address,
                status=RelayStatus.NOT_REGISTERED,
                total_slashed=info.total_slashed,
                observed_block=observed_block,
            )


def deal_from_chain(
    chain_id: int,
    deal: OnChainDeal,
    tiers: Mapping[str, PricingTier],
) -> DealRecord:
    """Map a ``getDeal`` result to a new ``DealRecord``.

    The registry stores no tier, so one is inferred from the deal size.
    """
    tier = infer_tier(deal.size_mb)
    pricing_tier = tiers.get(tier)
    created_at = parse_unix_timestamp(deal.created_at)
    if created_at is None:
        msg = f"Deal {deal.deal_id} has no creation time"
        raise ChainUnavailable(msg)
    expires_at = parse_unix_timestamp(deal.expires_at) or created_at

    return DealRecord(
        chain_id=chain_id,
        deal_id=normalize_bytes32(deal.deal_id),
        content_id=deal.cid,
        client_address=deal.client,
        size_mb=deal.size_mb,
        tier=tier,
        price_total=from_base_units(deal.price),
        created_at=created_at,
        expires_at=expires_at,
        active=deal.active and not deal.griefed,
        griefed=deal.griefed,
        client_stake=from_base_units(deal.client_stake),
        replication_factor=pricing_tier.replication_factor if pricing_tier else 1,
    )


__all__ = ["deal_from_chain", "registration_from_chain"]
