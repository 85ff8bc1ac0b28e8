"""Periodic reconciliation of the local cache against the registry.

Two cadences run per chain:

- fast: re-reads the locally active deals and the registration
- full: re-reads the complete deal list, registry params and the
  registration, and recomputes reputation

A pass fetches and converts without the chain lock, then applies the built
values in one synchronous step under the lock. A failed fetch, including a
malformed chain response, leaves the cache as it was; the loop keeps its
schedule.
"""

import time

from datetime import datetime
from enum import StrEnum

from collections.abc import Callable, Mapping
from dataclasses import dataclass

import asyncio

from pydantic import BaseModel, ConfigDict

from src.data.deals.models import DealRecord, OnChainDeal
from src.data.registry.client import RegistryClient
from src.data.registry.models import (
    OnChainRelayInfo,
    RegistryParams,
    RelayRegistration,
    RelayStatus,
)
from src.helpers.constants import (
    DEFAULT_FAST_INTERVAL,
    DEFAULT_INITIAL_DELAY,
    DEFAULT_SLOW_INTERVAL,
    DEFAULT_TIMEOUT,
)
from src.helpers.errors import ChainError, ChainUnavailable
from src.helpers.logging import get_logger
from src.helpers.parsers import utc_now
from src.helpers.rpc_models import TransactionReceipt
from src.pricing.constants import DEFAULT_TIERS
from src.pricing.models import PricingTier
from src.relay.cache import ReconciliationCache
from src.relay.reputation import compute_reputation
from src.relay.snapshot import SnapshotStore
from src.relay.views import deal_from_chain, registration_from_chain


logger = get_logger(__name__)


class PassKind(StrEnum):
    """Reconciliation cadence."""

    FAST = "fast"
    FULL = "full"


class ReconciliationReport(BaseModel):
    """Outcome of one applied pass."""

    chain_id: int
    kind: PassKind
    block_number: int
    deals_seen: int = 0
    created: int = 0
    updated: int = 0
    deactivated: int = 0
    griefed: int = 0
    registration_status: RelayStatus | None = None
    registration_applied: bool = True
    duration_seconds: float = 0.0

    model_config = ConfigDict(frozen=True)


@dataclass(frozen=True)
class ChainFetch:
    """Everything one pass read from the chain, converted but not yet applied."""

    kind: PassKind
    block_number: int
    registration: RelayRegistration
    params: RegistryParams | None
    deals: Mapping[str, DealRecord]
    checked_ids: frozenset[str]
    unresolved_tx_hash: str | None = None
    unresolved_receipt: TransactionReceipt | None = None


@dataclass
class DealMerge:
    """Result of merging fetched deals into the cached ones."""

    deals: dict[str, DealRecord]
    created: int = 0
    updated: int = 0
    deactivated: int = 0
    griefed: int = 0


def merge_deals(
    local: Mapping[str, DealRecord],
    remote: Mapping[str, DealRecord],
    checked_ids: frozenset[str],
    now: datetime,
) -> DealMerge:
    """Merge fetched deals into the cached deal set.

    Unseen deals are created. Known deals only ever have ``active`` flipped
    off and ``griefed`` flipped on. Locally active deals that were checked but
    not returned, or that have expired, are deactivated. Nothing is removed.

    Args:
        local: Cached deals by id
        remote: Fetched deals by id, already converted
        checked_ids: Ids the fetch was authoritative for
        now: Current time, for expiry

    Returns:
        DealMerge with the new deal mapping and change counts
    """
    merged = DealMerge(deals=dict(local))

    for deal_id, remote_deal in remote.items():
        existing = local.get(deal_id)
        if existing is None:
            record = remote_deal
            if record.active and record.is_expired(now):
                record = record.model_copy(update={"active": False})
            merged.deals[deal_id] = record
            merged.created += 1
            continue

        griefed = existing.griefed or remote_deal.griefed
        active = (
            existing.active
            and remote_deal.active
            and not griefed
            and not existing.is_expired(now)
        )
        if active == existing.active and griefed == existing.griefed:
            continue

        merged.deals[deal_id] = existing.model_copy(update={"active": active, "griefed": griefed})
        merged.updated += 1
        if existing.active and not active:
            merged.deactivated += 1
        if griefed and not existing.griefed:
            merged.griefed += 1

    for deal_id, existing in local.items():
        if deal_id in remote or not existing.active:
            continue
        if deal_id in checked_ids or existing.is_expired(now):
            merged.deals[deal_id] = existing.model_copy(update={"active": False})
            merged.updated += 1
            merged.deactivated += 1

    return merged


class DealReconciler:
    """Keeps one chain's cache entry consistent with the registry."""

    def __init__(
        self,
        client: RegistryClient,
        cache: ReconciliationCache,
        *,
        tiers: Mapping[str, PricingTier] | None = None,
        fast_interval: float = DEFAULT_FAST_INTERVAL,
        slow_interval: float = DEFAULT_SLOW_INTERVAL,
        initial_delay: float = DEFAULT_INITIAL_DELAY,
        fetch_timeout: float = DEFAULT_TIMEOUT,
        snapshot_store: SnapshotStore | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize the reconciler.

        Args:
            client: Registry client for the chain
            cache: Shared reconciliation cache
            tiers: Tier table used to classify newly seen deals
            fast_interval: Seconds between fast passes
            slow_interval: Seconds between full passes
            initial_delay: Seconds before the first (full) pass
            fetch_timeout: Bound on the fetch phase of one pass
            snapshot_store: Durable snapshot written after each applied pass
            clock: Source of the current time
        """
        self.client = client
        self.cache = cache
        self.tiers = dict(tiers or DEFAULT_TIERS)
        self.fast_interval = fast_interval
        self.slow_interval = slow_interval
        self.initial_delay = initial_delay
        self.fetch_timeout = fetch_timeout
        self.snapshot_store = snapshot_store
        self.clock = clock
        self.chain_id = client.chain_id
        self.cache.add_chain(self.chain_id, configured=client.address is not None)

        self._stopping = asyncio.Event()
        self._loops: list[asyncio.Task[None]] = []
        self._in_flight: dict[PassKind, asyncio.Task[ReconciliationReport | None]] = {}

    # ------------------------------------------------------------------
    # Fetch
    # ------------------------------------------------------------------

    async def _fetch(self, kind: PassKind) -> ChainFetch:
        state = self.cache.state(self.chain_id)
        block = await self.client.get_block_number()
        info = await self.client.get_relay_info(block=block)

        params = None
        if kind is PassKind.FULL or state.params is None:
            params = await self.client.get_registry_params()

        if kind is PassKind.FULL:
            deal_ids = await self.client.get_relay_deal_ids(block=block)
            checked = frozenset(deal_ids) | frozenset(state.deals)
        else:
            deal_ids = [deal.deal_id for deal in state.deals.values() if deal.active]
            checked = frozenset(deal_ids)
        fetched = await self.client.get_deals(deal_ids, block=block)
        deals = {deal_id: deal for deal_id, deal in fetched.items() if deal is not None}

        tx_hash = state.unresolved_tx_hash
        receipt = await self.client.find_receipt(tx_hash) if tx_hash else None

        registration, records = self._convert(info, params or state.params, deals, block)
        return ChainFetch(
            kind=kind,
            block_number=block,
            registration=registration,
            params=params,
            deals=records,
            checked_ids=checked,
            unresolved_tx_hash=tx_hash,
            unresolved_receipt=receipt,
        )

    def _convert(
        self,
        info: OnChainRelayInfo | None,
        params: RegistryParams | None,
        deals: Mapping[str, OnChainDeal],
        block: int,
    ) -> tuple[RelayRegistration, dict[str, DealRecord]]:
        """Build the local values of a fetch so applying it cannot fail.

        Raises:
            ChainUnavailable: If the registry returned values that do not map
        """
        try:
            registration = registration_from_chain(
                self.chain_id,
                self.client.address,
                info,
                unstaking_delay=params.unstaking_delay if params else None,
                observed_block=block,
                now=self.clock(),
            )
            records = {
                deal_id: deal_from_chain(self.chain_id, deal, self.tiers)
                for deal_id, deal in deals.items()
            }
        except ValueError as e:
            msg = f"Malformed registry data on chain {self.chain_id}: {e}"
            raise ChainUnavailable(msg) from e
        return registration, records

    # ------------------------------------------------------------------
    # Apply (synchronous, under the chain lock)
    # ------------------------------------------------------------------

    def _apply(self, fetch: ChainFetch, started: float) -> ReconciliationReport:
        now = self.clock()
        state = self.cache.state(self.chain_id)
        previous = state.registration

        if fetch.params is not None:
            self.cache.set_params(self.chain_id, fetch.params)

        registration = fetch.registration
        applied = self.cache.apply_registration(self.chain_id, registration)
        if applied:
            self._log_transition(previous, registration)

        merge = merge_deals(state.deals, fetch.deals, fetch.checked_ids, now)
        self.cache.replace_deals(self.chain_id, merge.deals.values())

        if fetch.kind is PassKind.FULL:
            self.cache.set_reputation(
                self.chain_id,
                compute_reputation(state.registration, merge.deals.values(), now),
            )

        if (
            fetch.unresolved_receipt is not None
            and state.unresolved_tx_hash == fetch.unresolved_tx_hash
        ):
            logger.warning(
                "Unresolved tx %s found in block %s (%s)",
                fetch.unresolved_tx_hash,
                fetch.unresolved_receipt.block_number,
                "succeeded" if fetch.unresolved_receipt.succeeded else "reverted",
            )
            self.cache.set_unresolved_tx(self.chain_id, None)

        self.cache.mark_success(self.chain_id, now)

        current = state.registration
        return ReconciliationReport(
            chain_id=self.chain_id,
            kind=fetch.kind,
            block_number=fetch.block_number,
            deals_seen=len(fetch.deals),
            created=merge.created,
            updated=merge.updated,
            deactivated=merge.deactivated,
            griefed=merge.griefed,
            registration_status=current.status if current else None,
            registration_applied=applied,
            duration_seconds=round(time.monotonic() - started, 3),
        )

    def _log_transition(
        self, previous: RelayRegistration | None, current: RelayRegistration
    ) -> None:
        if previous is None:
            return
        if current.status != previous.status:
            if current.status is RelayStatus.SLASHED:
                logger.warning(
                    "Relay slashed on chain %s (total slashed %s)",
                    self.chain_id,
                    current.total_slashed,
                )
            elif current.status is RelayStatus.WITHDRAWABLE:
                logger.info("Unstake on chain %s is now withdrawable", self.chain_id)
            elif previous.is_registered and not current.is_registered:
                logger.warning(
                    "Relay no longer registered on chain %s (was %s)",
                    self.chain_id,
                    previous.status,
                )
            else:
                logger.info(
                    "Relay status on chain %s: %s -> %s",
                    self.chain_id,
                    previous.status,
                    current.status,
                )
        elif current.total_slashed > previous.total_slashed:
            logger.warning(
                "Partial slash on chain %s: total slashed %s -> %s",
                self.chain_id,
                previous.total_slashed,
                current.total_slashed,
            )

    # ------------------------------------------------------------------
    # Passes
    # ------------------------------------------------------------------

    async def run_pass(self, kind: PassKind = PassKind.FULL) -> ReconciliationReport | None:
        """Fetch and apply one pass.

        Returns:
            The report of the applied pass, None if the fetch failed
        """
        if self.client.address is None:
            logger.debug("Chain %s has no relay address, skipping %s pass", self.chain_id, kind)
            return None

        started = time.monotonic()
        try:
            async with asyncio.timeout(self.fetch_timeout):
                fetch = await self._fetch(kind)
        except TimeoutError:
            error = f"{kind} fetch timed out after {self.fetch_timeout:.0f}s"
            logger.warning("Chain %s: %s", self.chain_id, error)
            self.cache.mark_failure(self.chain_id, error)
            return None
        except ChainError as e:
            logger.warning("Chain %s: %s fetch failed: %s", self.chain_id, kind, e)
            self.cache.mark_failure(self.chain_id, str(e))
            return None

        async with self.cache.lock(self.chain_id):
            report = self._apply(fetch, started)

        log = logger.info if kind is PassKind.FULL else logger.debug
        log(
            "Chain %s %s pass at block %s: %s deals, %s created, %s updated, "
            "%s deactivated, %s griefed (%.2fs)",
            self.chain_id,
            kind,
            report.block_number,
            report.deals_seen,
            report.created,
            report.updated,
            report.deactivated,
            report.griefed,
            report.duration_seconds,
        )

        if self.snapshot_store is not None:
            try:
                await self.snapshot_store.save(self.cache, self.chain_id)
            except Exception:
                logger.exception("Failed to write snapshot for chain %s", self.chain_id)

        return report

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Schedule the fast and full cadences."""
        if self._loops:
            return
        self._stopping.clear()
        self._loops = [
            asyncio.create_task(
                self._cadence(PassKind.FULL, self.initial_delay, self.slow_interval),
                name=f"reconcile-full-{self.chain_id}",
            ),
            asyncio.create_task(
                self._cadence(
                    PassKind.FAST, self.initial_delay + self.fast_interval, self.fast_interval
                ),
                name=f"reconcile-fast-{self.chain_id}",
            ),
        ]
        logger.info(
            "Reconciliation scheduled for chain %s (fast %.0fs, full %.0fs, first in %.0fs)",
            self.chain_id,
            self.fast_interval,
            self.slow_interval,
            self.initial_delay,
        )

    async def _wait_or_stop(self, delay: float) -> bool:
        """Sleep for ``delay`` seconds; True if a stop was requested meanwhile."""
        try:
            async with asyncio.timeout(delay):
                await self._stopping.wait()
        except TimeoutError:
            return False
        return True

    async def _cadence(self, kind: PassKind, first_delay: float, interval: float) -> None:
        if await self._wait_or_stop(first_delay):
            return
        while True:
            self._tick(kind)
            if await self._wait_or_stop(interval):
                return

    def _tick(self, kind: PassKind) -> None:
        in_flight = self._in_flight.get(kind)
        if in_flight is not None and not in_flight.done():
            logger.debug(
                "Chain %s: previous %s pass still running, skipping tick", self.chain_id, kind
            )
            return
        self._in_flight[kind] = asyncio.create_task(
            self._guarded_pass(kind), name=f"pass-{kind}-{self.chain_id}"
        )

    async def _guarded_pass(self, kind: PassKind) -> ReconciliationReport | None:
        try:
            return await self.run_pass(kind)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Chain %s: %s pass crashed", self.chain_id, kind)
            self.cache.mark_failure(self.chain_id, f"{kind} pass crashed")
            return None

    async def stop(self, timeout: float) -> None:
        """Stop scheduling, let in-flight passes finish, cancel after ``timeout``."""
        self._stopping.set()
        if self._loops:
            await asyncio.gather(*self._loops, return_exceptions=True)
            self._loops = []

        pending = [task for task in self._in_flight.values() if not task.done()]
        if pending:
            _, still_running = await asyncio.wait(pending, timeout=timeout)
            for task in still_running:
                logger.warning(
                    "Cancelling %s after %.2fs shutdown timeout", task.get_name(), timeout
                )
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
        self._in_flight.clear()


__all__ = [
    "DealReconciler",
    "PassKind",
    "ReconciliationReport",
    "merge_deals",
]
