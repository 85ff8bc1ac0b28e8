"""Relay service: per-chain wiring and the entry points used by collaborators.

Commands never raise for expected failures; they return a ``CommandResult``
carrying the error kind so a dashboard can tell a validation problem from an
unreachable chain or a transaction whose outcome is unknown.
"""

import re

from datetime import datetime, timedelta
from decimal import Decimal

from collections.abc import Callable
from dataclasses import dataclass

import asyncio

from pydantic import BaseModel, ConfigDict

from src.data.deals.models import DealFilter, DealRecord
from src.data.registry.client import RegistryClient
from src.data.registry.models import RegistryParams, RelayRegistration, ReputationSnapshot
from src.helpers.config import RelaySettings
from src.helpers.errors import RelayError, TransactionFailed, TransactionUnknown
from src.helpers.logging import get_logger
from src.helpers.parsers import utc_now
from src.helpers.rpc import RPCClient
from src.pricing.models import PriceQuote
from src.pricing.resolver import PricingResolver
from src.relay.actions import (
    EmergencyWithdraw,
    IncreaseStake,
    Register,
    RequestUnstake,
    StakingAction,
    UpdateInfo,
    Withdraw,
    action_name,
)
from src.relay.cache import ChainHealth, ReconciliationCache
from src.relay.reconciliation import DealReconciler, PassKind, ReconciliationReport
from src.relay.snapshot import SnapshotStore
from src.relay.staking import StakingStateMachine


logger = get_logger(__name__)

STALE_AFTER_INTERVALS = 3
"""A view older than this many full-pass intervals is reported stale"""


class CommandResult(BaseModel):
    """Outcome of a staking command."""

    success: bool
    action: str
    chain_id: int
    tx_hash: str | None = None
    block_number: int | None = None
    error: str | None = None
    error_kind: str | None = None

    model_config = ConfigDict(frozen=True)


def error_kind(error: Exception) -> str:
    """Snake-case error class name.

    Example:
        >>> error_kind(TransactionUnknown("timed out", "0xabc"))
        'transaction_unknown'
    """
    return re.sub(r"(?<!^)(?=[A-Z])", "_", type(error).__name__).lower()


@dataclass
class ChainRuntime:
    """Components bound to one chain."""

    client: RegistryClient
    machine: StakingStateMachine
    reconciler: DealReconciler


class RelayService:
    """Owns the shared cache and the per-chain clients, machines and loops."""

    def __init__(
        self,
        settings: RelaySettings,
        *,
        clients: list[RegistryClient] | None = None,
        cache: ReconciliationCache | None = None,
        snapshot_store: SnapshotStore | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize the service.

        Args:
            settings: Process configuration
            clients: Registry clients, built from ``settings`` when omitted
            cache: Shared cache, a new one when omitted
            snapshot_store: Durable snapshot, opened in ``start`` from
                ``settings.snapshot_database_url`` when omitted
            clock: Source of the current time
        """
        self.settings = settings
        self.clock = clock
        self.cache = cache or ReconciliationCache(
            stale_after=timedelta(seconds=settings.slow_interval * STALE_AFTER_INTERVALS)
        )
        self.snapshot_store = snapshot_store
        self.pricing = PricingResolver(settings.pricing or None)

        if clients is None:
            clients = [
                RegistryClient(
                    chain,
                    RPCClient(chain.rpc_url, timeout=settings.rpc_timeout),
                    private_key=settings.private_key,
                    relay_address=settings.relay_address,
                    confirmations=settings.confirmations,
                    confirmation_timeout=settings.confirmation_timeout,
                )
                for chain in settings.chains
            ]

        self.chains: dict[int, ChainRuntime] = {}
        for client in clients:
            self.chains[client.chain_id] = ChainRuntime(
                client=client,
                machine=StakingStateMachine(client, self.cache, clock=clock),
                reconciler=DealReconciler(
                    client,
                    self.cache,
                    tiers=self.pricing.tiers,
                    fast_interval=settings.fast_interval,
                    slow_interval=settings.slow_interval,
                    initial_delay=settings.initial_delay,
                    fetch_timeout=settings.rpc_timeout,
                    snapshot_store=snapshot_store,
                    clock=clock,
                ),
            )

    def _runtime(self, chain_id: int) -> ChainRuntime:
        try:
            return self.chains[chain_id]
        except KeyError:
            msg = f"Chain {chain_id} is not configured"
            raise KeyError(msg) from None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self, *, run_loops: bool | None = None) -> None:
        """Restore snapshots and start reconciliation loops.

        Args:
            run_loops: Override ``settings.sync_enabled``
        """
        if self.snapshot_store is None and self.settings.snapshot_database_url:
            self.snapshot_store = await SnapshotStore.connect(
                self.settings.snapshot_database_url
            )
            for runtime in self.chains.values():
                runtime.reconciler.snapshot_store = self.snapshot_store

        if self.snapshot_store is not None:
            for chain_id in self.chains:
                await self.snapshot_store.load(self.cache, chain_id)

        if run_loops if run_loops is not None else self.settings.sync_enabled:
            for runtime in self.chains.values():
                runtime.reconciler.start()
        else:
            logger.info("Deal sync disabled, reconciliation loops not started")

    async def stop(self) -> None:
        """Stop the loops within the shutdown timeout and release connections."""
        await asyncio.gather(
            *(
                runtime.reconciler.stop(self.settings.shutdown_timeout)
                for runtime in self.chains.values()
            )
        )
        for runtime in self.chains.values():
            await runtime.client.close()
        if self.snapshot_store is not None:
            await self.snapshot_store.close()

    async def _save_snapshot(self, chain_id: int) -> None:
        if self.snapshot_store is None:
            return
        try:
            await self.snapshot_store.save(self.cache, chain_id)
        except Exception:
            logger.exception("Failed to write snapshot for chain %s", chain_id)

    async def reconcile(
        self, chain_id: int, kind: PassKind = PassKind.FULL
    ) -> ReconciliationReport | None:
        """Run one reconciliation pass now."""
        return await self._runtime(chain_id).reconciler.run_pass(kind)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def execute(self, chain_id: int, action: StakingAction) -> CommandResult:
        """Run a staking action and report its outcome.

        The snapshot is rewritten after a confirmed write and after a write of
        unknown outcome, so a restarted process sees both.
        """
        name = action_name(action)
        try:
            result = await self._runtime(chain_id).machine.execute(action)
        except (RelayError, ValueError, KeyError) as e:
            tx_hash = e.tx_hash if isinstance(e, TransactionFailed | TransactionUnknown) else None
            logger.warning("%s on chain %s failed: %s", name, chain_id, e)
            if isinstance(e, TransactionUnknown):
                await self._save_snapshot(chain_id)
            return CommandResult(
                success=False,
                action=name,
                chain_id=chain_id,
                tx_hash=tx_hash,
                error=str(e),
                error_kind=error_kind(e),
            )
        await self._save_snapshot(chain_id)
        return CommandResult(
            success=True,
            action=name,
            chain_id=chain_id,
            tx_hash=result.tx_hash,
            block_number=result.block_number,
        )

    async def register(
        self, chain_id: int, endpoint: str, peer_public_key: str, stake_amount: int
    ) -> CommandResult:
        """Register on ``chain_id`` with ``stake_amount`` base units."""
        return await self.execute(
            chain_id,
            Register(endpoint=endpoint, peer_public_key=peer_public_key, stake_amount=stake_amount),
        )

    async def increase_stake(self, chain_id: int, amount: int) -> CommandResult:
        """Add ``amount`` base units of stake."""
        return await self.execute(chain_id, IncreaseStake(amount=amount))

    async def request_unstake(self, chain_id: int) -> CommandResult:
        """Start unstaking on ``chain_id``."""
        return await self.execute(chain_id, RequestUnstake())

    async def withdraw(self, chain_id: int) -> CommandResult:
        """Withdraw a matured unstake on ``chain_id``."""
        return await self.execute(chain_id, Withdraw())

    async def update_info(
        self,
        chain_id: int,
        endpoint: str | None = None,
        peer_public_key: str | None = None,
    ) -> CommandResult:
        """Update the advertised endpoint and/or public key."""
        return await self.execute(
            chain_id, UpdateInfo(endpoint=endpoint, peer_public_key=peer_public_key)
        )

    async def emergency_withdraw(
        self, chain_id: int, token_address: str, amount: int
    ) -> CommandResult:
        """Owner-only token recovery."""
        return await self.execute(
            chain_id, EmergencyWithdraw(token_address=token_address, amount=amount)
        )

    async def acknowledge_unknown(self, chain_id: int) -> str | None:
        """Clear the unresolved transaction blocking intents on ``chain_id``."""
        tx_hash = self._runtime(chain_id).machine.acknowledge_unknown()
        if tx_hash is not None:
            await self._save_snapshot(chain_id)
        return tx_hash

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_registration(self, chain_id: int) -> RelayRegistration | None:
        """Cached registration."""
        return self.cache.get_registration(chain_id)

    def list_deals(
        self, chain_id: int, deal_filter: DealFilter | None = None
    ) -> list[DealRecord]:
        """Cached deals matching ``deal_filter``."""
        return self.cache.list_deals(chain_id, deal_filter)

    def get_deal(self, chain_id: int, deal_id: str) -> DealRecord | None:
        """Cached deal by id."""
        return self.cache.get_deal(chain_id, deal_id)

    def last_updated(self, chain_id: int) -> datetime | None:
        """Time of the last applied pass."""
        return self.cache.last_updated(chain_id)

    def get_params(self, chain_id: int) -> RegistryParams | None:
        """Cached registry params."""
        return self.cache.get_params(chain_id)

    def get_reputation(self, chain_id: int) -> ReputationSnapshot | None:
        """Reputation from the last full pass."""
        return self.cache.get_reputation(chain_id)

    def health(self, chain_id: int) -> ChainHealth:
        """Freshness of the cached view."""
        return self.cache.health(chain_id, self.clock())

    def quote(
        self, tier: str, size_mb: Decimal | int | float | str, duration_days: int
    ) -> PriceQuote:
        """Price a deal with the configured tier table."""
        return self.pricing.resolve_price(tier, size_mb, duration_days)


__all__ = [
    "CommandResult",
    "RelayService",
    "error_kind",
]
