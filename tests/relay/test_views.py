"""Tests for mapping registry reads to the local view."""

from datetime import timedelta
from decimal import Decimal

import pytest

from src.data.registry.models import OnChainRelayStatus, RelayStatus
from src.helpers.errors import ChainUnavailable
from src.pricing.constants import DEFAULT_TIERS
from src.relay.views import deal_from_chain, registration_from_chain
from tests.fakes import CHAIN_ID, MIN_STAKE, RELAY_ADDRESS, FakeClock, FakeRegistryClient


DELAY = 3_600


def to_view(chain: FakeRegistryClient, clock: FakeClock, *, delay: int | None = DELAY):
    return registration_from_chain(
        CHAIN_ID,
        chain.address,
        chain.relay,
        unstaking_delay=delay,
        observed_block=chain.block,
        now=clock(),
    )


class TestRegistrationFromChain:
    """Tests for registration_from_chain."""

    def test_not_configured(self, clock: FakeClock) -> None:
        """Test a missing relay address."""
        registration = registration_from_chain(
            CHAIN_ID, None, None, unstaking_delay=None, observed_block=0, now=clock()
        )

        assert registration.status == RelayStatus.NOT_CONFIGURED
        assert registration.address is None

    def test_not_registered(self, chain: FakeRegistryClient, clock: FakeClock) -> None:
        """Test a zero-owner registry entry."""
        registration = to_view(chain, clock)

        assert registration.status == RelayStatus.NOT_REGISTERED
        assert registration.address == RELAY_ADDRESS
        assert registration.observed_block == chain.block

    def test_active(self, chain: FakeRegistryClient, clock: FakeClock) -> None:
        """Test an active entry keeps stake and metadata."""
        chain.set_relay(endpoint="https://r", peer_public_key="pk")

        registration = to_view(chain, clock)

        assert registration.status == RelayStatus.ACTIVE
        assert registration.staked_amount == MIN_STAKE
        assert registration.endpoint == "https://r"
        assert registration.registered_at == clock()

    def test_unstaking_then_withdrawable(
        self, chain: FakeRegistryClient, clock: FakeClock
    ) -> None:
        """Test Withdrawable is derived once the delay has elapsed."""
        chain.set_relay(
            status=OnChainRelayStatus.UNSTAKING, unstake_requested_at=clock.timestamp
        )

        unstaking = to_view(chain, clock)
        assert unstaking.status == RelayStatus.UNSTAKING
        assert unstaking.pending_unstake_amount == MIN_STAKE
        assert unstaking.staked_amount == 0

        clock.advance(DELAY)
        assert to_view(chain, clock).status == RelayStatus.WITHDRAWABLE

    def test_unstaking_without_known_delay(
        self, chain: FakeRegistryClient, clock: FakeClock
    ) -> None:
        """Test an unknown delay never reports Withdrawable."""
        chain.set_relay(
            status=OnChainRelayStatus.UNSTAKING, unstake_requested_at=clock.timestamp
        )
        clock.advance(10 * DELAY)

        assert to_view(chain, clock, delay=None).status == RelayStatus.UNSTAKING

    def test_unstaking_falls_back_to_updated_at(
        self, chain: FakeRegistryClient, clock: FakeClock
    ) -> None:
        """Test the request time falls back to the last update."""
        chain.set_relay(status=OnChainRelayStatus.UNSTAKING)
        clock.advance(60)

        registration = to_view(chain, clock)

        assert registration.unstake_requested_at == clock() - timedelta(seconds=60)

    def test_unstaking_with_nothing_staked(
        self, chain: FakeRegistryClient, clock: FakeClock
    ) -> None:
        """Test an unstaking entry with zero stake is treated as not registered."""
        chain.set_relay(status=OnChainRelayStatus.UNSTAKING, staked_amount=0, total_slashed=7)

        registration = to_view(chain, clock)

        assert registration.status == RelayStatus.NOT_REGISTERED
        assert registration.total_slashed == 7

    def test_slashed(self, chain: FakeRegistryClient, clock: FakeClock) -> None:
        """Test a slashed entry."""
        chain.set_relay(status=OnChainRelayStatus.SLASHED, staked_amount=0, total_slashed=5)

        registration = to_view(chain, clock)

        assert registration.status == RelayStatus.SLASHED
        assert registration.total_slashed == 5

    def test_unknown_status_code(self, chain: FakeRegistryClient, clock: FakeClock) -> None:
        """Test an unexpected status code is treated as a bad read."""
        chain.set_relay()
        assert chain.relay is not None
        chain.relay = chain.relay.model_copy(update={"status": 9})

        with pytest.raises(ChainUnavailable, match="Unknown relay status code 9"):
            to_view(chain, clock)


class TestDealFromChain:
    """Tests for deal_from_chain."""

    def test_mapping(self, chain: FakeRegistryClient) -> None:
        """Test units, tier and replication are derived."""
        deal_id = chain.add_deal(1, size_mb=150, price=1_500_000, duration_days=30)

        deal = deal_from_chain(CHAIN_ID, chain.deals[deal_id], DEFAULT_TIERS)

        assert deal.deal_id == deal_id
        assert deal.tier == "premium"
        assert deal.price_total == Decimal("1.5")
        assert deal.duration_days == 30
        assert deal.replication_factor == DEFAULT_TIERS["premium"].replication_factor
        assert deal.active is True

    def test_griefed_is_inactive(self, chain: FakeRegistryClient) -> None:
        """Test a griefed deal is never active."""
        deal_id = chain.add_deal(1, griefed=True)

        deal = deal_from_chain(CHAIN_ID, chain.deals[deal_id], DEFAULT_TIERS)

        assert deal.active is False
        assert deal.griefed is True
