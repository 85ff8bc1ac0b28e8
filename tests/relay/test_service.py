"""Tests for the relay service entry points."""

from decimal import Decimal

import pytest

import asyncio

from src.data.deals.models import DealFilter
from src.data.registry.models import RelayStatus
from src.helpers.config import RelaySettings
from src.helpers.errors import TransactionUnknown, UnknownTier
from src.pricing.resolver import load_tier_table
from src.relay.cache import CacheHealth
from src.relay.reconciliation import PassKind
from src.relay.service import RelayService, error_kind
from tests.fakes import (
    CHAIN_ID,
    MIN_STAKE,
    UNSTAKING_DELAY,
    FakeClock,
    FakeRegistryClient,
    deal_id,
)


def make_settings(**overrides: object) -> RelaySettings:
    values: dict[str, object] = {
        "chains": (),
        "fast_interval": 0.05,
        "slow_interval": 0.1,
        "initial_delay": 0.0,
        "shutdown_timeout": 1.0,
        "rpc_timeout": 1.0,
        "sync_enabled": False,
    }
    values.update(overrides)
    return RelaySettings.model_validate(values)


@pytest.fixture
def service(chain: FakeRegistryClient, clock: FakeClock) -> RelayService:
    return RelayService(make_settings(), clients=[chain], clock=clock)  # type: ignore[list-item]


class TestCommands:
    """Commands report failures as results instead of raising."""

    @pytest.mark.asyncio
    async def test_success(self, service: RelayService) -> None:
        """Test a confirmed registration."""
        result = await service.register(CHAIN_ID, "https://relay", "pk", MIN_STAKE)

        assert result.success is True
        assert result.action == "register"
        assert result.tx_hash is not None
        assert result.block_number is not None
        assert result.error_kind is None

    @pytest.mark.asyncio
    async def test_invalid_state(self, service: RelayService) -> None:
        """Test a validation failure."""
        result = await service.withdraw(CHAIN_ID)

        assert result.success is False
        assert result.error_kind == "invalid_state"
        assert result.tx_hash is None

    @pytest.mark.asyncio
    async def test_insufficient_stake(self, service: RelayService) -> None:
        """Test a stake below the registry minimum."""
        result = await service.register(CHAIN_ID, "https://relay", "pk", 1)

        assert result.error_kind == "insufficient_stake"

    @pytest.mark.asyncio
    async def test_bad_amount(self, service: RelayService) -> None:
        """Test a non-positive amount."""
        result = await service.increase_stake(CHAIN_ID, 0)

        assert result.error_kind == "value_error"

    @pytest.mark.asyncio
    async def test_unknown_chain(self, service: RelayService) -> None:
        """Test a command for a chain that is not configured."""
        result = await service.request_unstake(1)

        assert result.success is False
        assert result.error_kind == "key_error"

    @pytest.mark.asyncio
    async def test_unknown_outcome_and_acknowledge(
        self, service: RelayService, chain: FakeRegistryClient
    ) -> None:
        """Test an unknown outcome carries the tx hash and blocks until acknowledged."""
        chain.fail_tx = TransactionUnknown("not confirmed", "0xfeed")

        result = await service.register(CHAIN_ID, "https://relay", "pk", MIN_STAKE)
        assert result.error_kind == "transaction_unknown"
        assert result.tx_hash == "0xfeed"
        assert service.health(CHAIN_ID).unresolved_tx_hash == "0xfeed"

        chain.fail_tx = None
        blocked = await service.register(CHAIN_ID, "https://relay", "pk", MIN_STAKE)
        assert blocked.error_kind == "transaction_unknown"

        assert await service.acknowledge_unknown(CHAIN_ID) == "0xfeed"
        assert await service.acknowledge_unknown(CHAIN_ID) is None
        retried = await service.register(CHAIN_ID, "https://relay", "pk", MIN_STAKE)
        assert retried.success is True

    def test_error_kind(self) -> None:
        """Test error kinds are snake-cased class names."""
        assert error_kind(UnknownTier("x")) == "unknown_tier"
        assert error_kind(KeyError("x")) == "key_error"


class TestReads:
    """Tests for read entry points."""

    @pytest.mark.asyncio
    async def test_reads_after_reconcile(
        self, service: RelayService, chain: FakeRegistryClient
    ) -> None:
        """Test reads reflect the last pass."""
        chain.set_relay()
        chain.add_deal(1)
        chain.add_deal(2, griefed=True)

        report = await service.reconcile(CHAIN_ID, PassKind.FULL)

        assert report is not None
        registration = service.get_registration(CHAIN_ID)
        assert registration is not None
        assert registration.status == RelayStatus.ACTIVE
        assert len(service.list_deals(CHAIN_ID)) == 2
        assert len(service.list_deals(CHAIN_ID, DealFilter(active=True))) == 1
        assert service.get_deal(CHAIN_ID, deal_id(1)) is not None
        assert service.get_deal(CHAIN_ID, deal_id(9)) is None
        assert service.get_params(CHAIN_ID) is not None
        assert service.get_reputation(CHAIN_ID) is not None
        assert service.last_updated(CHAIN_ID) is not None
        assert service.health(CHAIN_ID).status == CacheHealth.REGISTERED_CONFIRMED

    def test_quote(self, service: RelayService) -> None:
        """Test pricing through the service."""
        quote = service.quote("standard", 500, 30)

        assert quote.total_price == Decimal("0.05")

    def test_quote_uses_configured_tiers(self, chain: FakeRegistryClient) -> None:
        """Test tier overrides from settings."""
        settings = make_settings(pricing=load_tier_table({"DEAL_PRICE_STANDARD": "0.0002"}))
        service = RelayService(settings, clients=[chain])  # type: ignore[list-item]

        assert service.quote("standard", 500, 30).total_price == Decimal("0.1")


class TestLifecycle:
    """Tests for start and stop."""

    @pytest.mark.asyncio
    async def test_loops_and_stop(self, chain: FakeRegistryClient, clock: FakeClock) -> None:
        """Test loops run when sync is enabled and stop closes clients."""
        chain.set_relay()
        service = RelayService(
            make_settings(sync_enabled=True), clients=[chain], clock=clock  # type: ignore[list-item]
        )

        await service.start()
        await asyncio.sleep(0.15)
        await service.stop()

        assert service.last_updated(CHAIN_ID) is not None
        assert chain.calls[-1] == "close"

    @pytest.mark.asyncio
    async def test_snapshot_restored_on_start(
        self, chain: FakeRegistryClient, clock: FakeClock, sqlite_url: str
    ) -> None:
        """Test a restart serves the persisted view before any pass."""
        settings = make_settings(snapshot_database_url=sqlite_url)
        chain.set_relay()
        chain.add_deal(1)

        first = RelayService(settings, clients=[chain], clock=clock)  # type: ignore[list-item]
        await first.start()
        await first.reconcile(CHAIN_ID)
        await first.stop()

        other_chain = FakeRegistryClient(clock)
        second = RelayService(settings, clients=[other_chain], clock=clock)  # type: ignore[list-item]
        await second.start()
        try:
            registration = second.get_registration(CHAIN_ID)
            assert registration is not None
            assert registration.status == RelayStatus.ACTIVE
            assert len(second.list_deals(CHAIN_ID)) == 1
            assert other_chain.calls == []
        finally:
            await second.stop()

    @pytest.mark.asyncio
    async def test_staking_write_persisted_between_runs(
        self, chain: FakeRegistryClient, clock: FakeClock, sqlite_url: str
    ) -> None:
        """Test a confirmed unstake survives into the next process without a pass."""
        settings = make_settings(snapshot_database_url=sqlite_url)
        chain.set_relay()

        first = RelayService(settings, clients=[chain], clock=clock)  # type: ignore[list-item]
        await first.start()
        await first.reconcile(CHAIN_ID)
        assert (await first.request_unstake(CHAIN_ID)).success
        await first.stop()

        clock.advance(UNSTAKING_DELAY)
        second = RelayService(settings, clients=[chain], clock=clock)  # type: ignore[list-item]
        await second.start()
        try:
            registration = second.get_registration(CHAIN_ID)
            assert registration is not None
            assert registration.status == RelayStatus.UNSTAKING

            result = await second.withdraw(CHAIN_ID)
            assert result.success is True
        finally:
            await second.stop()

        third = RelayService(settings, clients=[chain], clock=clock)  # type: ignore[list-item]
        await third.start()
        try:
            registration = third.get_registration(CHAIN_ID)
            assert registration is not None
            assert registration.status == RelayStatus.NOT_REGISTERED
        finally:
            await third.stop()

    @pytest.mark.asyncio
    async def test_unresolved_tx_persisted_until_acknowledged(
        self, chain: FakeRegistryClient, clock: FakeClock, sqlite_url: str
    ) -> None:
        """Test a restart keeps blocking intents behind a tx of unknown outcome."""
        settings = make_settings(snapshot_database_url=sqlite_url)
        chain.set_relay()

        first = RelayService(settings, clients=[chain], clock=clock)  # type: ignore[list-item]
        await first.start()
        chain.fail_tx = TransactionUnknown("not confirmed", "0xfeed")
        result = await first.increase_stake(CHAIN_ID, MIN_STAKE)
        assert result.error_kind == "transaction_unknown"
        await first.stop()

        chain.fail_tx = None
        second = RelayService(settings, clients=[chain], clock=clock)  # type: ignore[list-item]
        await second.start()
        try:
            assert second.health(CHAIN_ID).unresolved_tx_hash == "0xfeed"
            blocked = await second.increase_stake(CHAIN_ID, MIN_STAKE)
            assert blocked.error_kind == "transaction_unknown"
            assert blocked.tx_hash == "0xfeed"
            assert await second.acknowledge_unknown(CHAIN_ID) == "0xfeed"
        finally:
            await second.stop()

        third = RelayService(settings, clients=[chain], clock=clock)  # type: ignore[list-item]
        await third.start()
        try:
            assert third.health(CHAIN_ID).unresolved_tx_hash is None
            assert (await third.increase_stake(CHAIN_ID, MIN_STAKE)).success
        finally:
            await third.stop()


class TestEndToEnd:
    """Register, reconcile, unstake, mature and withdraw through the service."""

    @pytest.mark.asyncio
    async def test_scenario(
        self, service: RelayService, chain: FakeRegistryClient, clock: FakeClock
    ) -> None:
        """Test the full staking lifecycle with a deal on chain."""
        assert (await service.register(CHAIN_ID, "https://relay", "pk", MIN_STAKE)).success
        chain.add_deal(1, duration_days=30)
        await service.reconcile(CHAIN_ID)
        assert len(service.list_deals(CHAIN_ID, DealFilter(active=True))) == 1

        assert (await service.request_unstake(CHAIN_ID)).success
        registration = service.get_registration(CHAIN_ID)
        assert registration is not None
        assert registration.status == RelayStatus.UNSTAKING

        early = await service.withdraw(CHAIN_ID)
        assert early.error_kind == "unstake_not_mature"

        clock.advance(UNSTAKING_DELAY)
        await service.reconcile(CHAIN_ID, PassKind.FAST)
        registration = service.get_registration(CHAIN_ID)
        assert registration is not None
        assert registration.status == RelayStatus.WITHDRAWABLE
        assert service.list_deals(CHAIN_ID, DealFilter(active=True)) != []

        assert (await service.withdraw(CHAIN_ID)).success
        await service.reconcile(CHAIN_ID)
        registration = service.get_registration(CHAIN_ID)
        assert registration is not None
        assert registration.status == RelayStatus.NOT_REGISTERED
        assert service.health(CHAIN_ID).status == CacheHealth.NOT_REGISTERED
