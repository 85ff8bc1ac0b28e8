"""Reconciliation cache: the node's single local view of registry state.

One ``ChainState`` per configured chain. Readers never take the chain lock;
writers replace whole frozen values (registration, params, reputation) or swap
the deal mapping for a new one, so a reader sees either the old or the new
state and never a partially applied pass.

Write methods are internal to the staking state machine and the
reconciliation loop, which call them while holding ``ChainState.lock``.
"""

from datetime import datetime, timedelta
from enum import StrEnum
from types import MappingProxyType

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field

import asyncio

from pydantic import BaseModel, ConfigDict

from src.data.deals.models import DealFilter, DealRecord
from src.data.registry.models import (
    RegistryParams,
    RelayRegistration,
    RelayStatus,
    ReputationSnapshot,
)
from src.helpers.logging import get_logger


logger = get_logger(__name__)


class CacheHealth(StrEnum):
    """Freshness of the cached view for one chain."""

    NOT_CONFIGURED = "not_configured"
    UNKNOWN = "unknown"
    NOT_REGISTERED = "not_registered"
    REGISTERED_STALE = "registered_stale"
    REGISTERED_CONFIRMED = "registered_confirmed"


class ChainHealth(BaseModel):
    """Health report for dashboards."""

    chain_id: int
    status: CacheHealth
    registration_status: RelayStatus | None = None
    last_updated: datetime | None = None
    last_error: str | None = None
    consecutive_failures: int = 0
    unresolved_tx_hash: str | None = None

    model_config = ConfigDict(frozen=True)


@dataclass
class ChainState:
    """Mutable per-chain slot holding immutable values."""

    chain_id: int
    configured: bool = True
    registration: RelayRegistration | None = None
    deals: Mapping[str, DealRecord] = field(default_factory=lambda: MappingProxyType({}))
    params: RegistryParams | None = None
    reputation: ReputationSnapshot | None = None
    last_updated: datetime | None = None
    last_error: str | None = None
    consecutive_failures: int = 0
    last_write_block: int = 0
    unresolved_tx_hash: str | None = None
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)


class ReconciliationCache:
    """In-memory registry view keyed by chain id."""

    def __init__(self, stale_after: timedelta | None = None) -> None:
        """Initialize an empty cache.

        Args:
            stale_after: Age after which a registered view is reported stale,
                None to only report stale on read failures
        """
        self.stale_after = stale_after
        self._chains: dict[int, ChainState] = {}

    def add_chain(self, chain_id: int, *, configured: bool = True) -> ChainState:
        """Create the slot for ``chain_id`` (idempotent)."""
        if chain_id not in self._chains:
            self._chains[chain_id] = ChainState(chain_id=chain_id, configured=configured)
        return self._chains[chain_id]

    def state(self, chain_id: int) -> ChainState:
        """Return the slot for ``chain_id``.

        Raises:
            KeyError: If the chain was never added
        """
        try:
            return self._chains[chain_id]
        except KeyError:
            msg = f"Chain {chain_id} is not tracked by the cache"
            raise KeyError(msg) from None

    def lock(self, chain_id: int) -> asyncio.Lock:
        """Per-chain lock serializing registration and deal writes."""
        return self.state(chain_id).lock

    @property
    def chain_ids(self) -> list[int]:
        """Tracked chain ids."""
        return list(self._chains)

    # ------------------------------------------------------------------
    # Read accessors
    # ------------------------------------------------------------------

    def get_registration(self, chain_id: int) -> RelayRegistration | None:
        """Cached registration, None before the first successful read."""
        return self.state(chain_id).registration

    def list_deals(
        self, chain_id: int, deal_filter: DealFilter | None = None
    ) -> list[DealRecord]:
        """Cached deals matching ``deal_filter``, oldest first."""
        deals = self.state(chain_id).deals.values()
        if deal_filter is not None:
            deals = [deal for deal in deals if deal_filter.matches(deal)]
        return sorted(deals, key=lambda deal: (deal.created_at, deal.deal_id))

    def get_deal(self, chain_id: int, deal_id: str) -> DealRecord | None:
        """Cached deal by id (0x-prefixed lowercase hex)."""
        return self.state(chain_id).deals.get(deal_id.lower())

    def last_updated(self, chain_id: int) -> datetime | None:
        """Time of the last successful reconciliation pass."""
        return self.state(chain_id).last_updated

    def get_params(self, chain_id: int) -> RegistryParams | None:
        """Cached registry params."""
        return self.state(chain_id).params

    def get_reputation(self, chain_id: int) -> ReputationSnapshot | None:
        """Reputation computed by the last full pass."""
        return self.state(chain_id).reputation

    def health(self, chain_id: int, now: datetime) -> ChainHealth:
        """Classify the cached view so staleness is never shown as fresh data."""
        state = self.state(chain_id)
        registration = state.registration

        if not state.configured:
            status = CacheHealth.NOT_CONFIGURED
        elif registration is None:
            status = CacheHealth.UNKNOWN
        elif not registration.is_registered:
            status = CacheHealth.NOT_REGISTERED
        elif state.consecutive_failures > 0 or self._is_stale(state, now):
            status = CacheHealth.REGISTERED_STALE
        else:
            status = CacheHealth.REGISTERED_CONFIRMED

        return ChainHealth(
            chain_id=chain_id,
            status=status,
            registration_status=registration.status if registration else None,
            last_updated=state.last_updated,
            last_error=state.last_error,
            consecutive_failures=state.consecutive_failures,
            unresolved_tx_hash=state.unresolved_tx_hash,
        )

    def _is_stale(self, state: ChainState, now: datetime) -> bool:
        if state.last_updated is None:
            return True
        return self.stale_after is not None and now - state.last_updated > self.stale_after

    # ------------------------------------------------------------------
    # Writes (caller holds the chain lock)
    # ------------------------------------------------------------------

    def apply_registration(
        self,
        chain_id: int,
        registration: RelayRegistration,
        *,
        local_write: bool = False,
    ) -> bool:
        """Replace the cached registration.

        A fetched registration observed at an older block than the last
        confirmed local write is dropped.

        Returns:
            Whether the registration was applied
        """
        state = self.state(chain_id)
        if local_write:
            state.last_write_block = max(state.last_write_block, registration.observed_block)
        elif registration.observed_block < state.last_write_block:
            logger.debug(
                "Dropping registration for chain %s observed at block %s (local write at %s)",
                chain_id,
                registration.observed_block,
                state.last_write_block,
            )
            return False
        state.registration = registration
        return True

    def replace_deals(self, chain_id: int, deals: Iterable[DealRecord]) -> None:
        """Swap in a complete deal mapping."""
        self.state(chain_id).deals = MappingProxyType(
            {deal.deal_id.lower(): deal for deal in deals}
        )

    def set_params(self, chain_id: int, params: RegistryParams) -> None:
        """Replace the cached registry params."""
        self.state(chain_id).params = params

    def set_reputation(self, chain_id: int, reputation: ReputationSnapshot) -> None:
        """Replace the cached reputation."""
        self.state(chain_id).reputation = reputation

    def mark_success(self, chain_id: int, now: datetime) -> None:
        """Record a successful pass."""
        state = self.state(chain_id)
        state.last_updated = now
        state.last_error = None
        state.consecutive_failures = 0

    def mark_failure(self, chain_id: int, error: str) -> None:
        """Record a failed pass without touching cached values."""
        state = self.state(chain_id)
        state.last_error = error
        state.consecutive_failures += 1

    def set_unresolved_tx(self, chain_id: int, tx_hash: str | None) -> None:
        """Record (or clear, with None) a transaction of unknown outcome."""
        self.state(chain_id).unresolved_tx_hash = tx_hash

    def restore(
        self,
        chain_id: int,
        *,
        registration: RelayRegistration | None,
        deals: Iterable[DealRecord],
        params: RegistryParams | None,
        last_updated: datetime | None,
        unresolved_tx_hash: str | None = None,
    ) -> None:
        """Load a persisted snapshot before the first pass."""
        state = self.state(chain_id)
        state.registration = registration
        state.params = params
        state.last_updated = last_updated
        state.unresolved_tx_hash = unresolved_tx_hash
        if registration is not None:
            state.last_write_block = registration.observed_block
        self.replace_deals(chain_id, deals)


__all__ = [
    "CacheHealth",
    "ChainHealth",
    "ChainState",
    "ReconciliationCache",
]
