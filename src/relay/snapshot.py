"""Durable snapshot of the reconciliation cache.

Loaded at startup so reads can be served before the first pass completes, and
overwritten after every applied pass and every staking command that reached
the chain.
"""

from datetime import UTC, datetime
from decimal import Decimal

from typing import Any, Self

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from src.data.deals.db import DealRecordDB, get_deal_rows
from src.data.deals.models import DealRecord
from src.data.registry.db import RelayRegistrationDB, get_registration_row
from src.data.registry.models import RegistryParams, RelayRegistration, RelayStatus
from src.helpers.db import create_engine, create_session_factory, create_tables, upsert_rows
from src.helpers.logging import get_logger
from src.helpers.parsers import parse_unix_timestamp, to_unix_timestamp
from src.relay.cache import ReconciliationCache


logger = get_logger(__name__)


def registration_to_row(
    registration: RelayRegistration,
    params: RegistryParams | None,
    last_updated: datetime | None,
    snapshot_at: float,
    unresolved_tx_hash: str | None = None,
) -> dict[str, Any]:
    """Serialize a registration and its chain's state to a table row."""
    return {
        "chain_id": registration.chain_id,
        "address": registration.address,
        "status": registration.status.value,
        "staked_amount": str(registration.staked_amount),
        "pending_unstake_amount": str(registration.pending_unstake_amount),
        "total_slashed": str(registration.total_slashed),
        "unstake_requested_at": (
            to_unix_timestamp(registration.unstake_requested_at)
            if registration.unstake_requested_at
            else None
        ),
        "endpoint": registration.endpoint,
        "peer_public_key": registration.peer_public_key,
        "registered_at": (
            to_unix_timestamp(registration.registered_at) if registration.registered_at else None
        ),
        "griefing_ratio": registration.griefing_ratio,
        "observed_block": registration.observed_block,
        "min_stake": str(params.min_stake) if params else None,
        "unstaking_delay": params.unstaking_delay if params else None,
        "last_updated": last_updated.timestamp() if last_updated else None,
        "unresolved_tx_hash": unresolved_tx_hash,
        "snapshot_at": snapshot_at,
    }


def registration_from_row(
    row: RelayRegistrationDB,
) -> tuple[RelayRegistration, RegistryParams | None, datetime | None]:
    """Deserialize a registration row."""
    registration = RelayRegistration(
        chain_id=row.chain_id,
        address=row.address,
        status=RelayStatus(row.status),
        staked_amount=int(row.staked_amount),
        pending_unstake_amount=int(row.pending_unstake_amount),
        total_slashed=int(row.total_slashed),
        unstake_requested_at=parse_unix_timestamp(row.unstake_requested_at or 0),
        endpoint=row.endpoint,
        peer_public_key=row.peer_public_key,
        registered_at=parse_unix_timestamp(row.registered_at or 0),
        griefing_ratio=row.griefing_ratio,
        observed_block=row.observed_block,
    )
    params = None
    if row.min_stake is not None and row.unstaking_delay is not None:
        params = RegistryParams(min_stake=int(row.min_stake), unstaking_delay=row.unstaking_delay)
    last_updated = (
        datetime.fromtimestamp(row.last_updated, tz=UTC) if row.last_updated is not None else None
    )
    return registration, params, last_updated


def deal_to_row(deal: DealRecord, snapshot_at: float) -> dict[str, Any]:
    """Serialize a deal to a table row."""
    return {
        "chain_id": deal.chain_id,
        "deal_id": deal.deal_id,
        "content_id": deal.content_id,
        "client_address": deal.client_address,
        "size_mb": deal.size_mb,
        "tier": deal.tier,
        "price_total": str(deal.price_total),
        "created_at": to_unix_timestamp(deal.created_at),
        "expires_at": to_unix_timestamp(deal.expires_at),
        "active": deal.active,
        "griefed": deal.griefed,
        "client_stake": str(deal.client_stake),
        "replication_factor": deal.replication_factor,
        "snapshot_at": snapshot_at,
    }


def deal_from_row(row: DealRecordDB) -> DealRecord:
    """Deserialize a deal row."""
    return DealRecord(
        chain_id=row.chain_id,
        deal_id=row.deal_id,
        content_id=row.content_id,
        client_address=row.client_address,
        size_mb=row.size_mb,
        tier=row.tier,
        price_total=Decimal(row.price_total),
        created_at=datetime.fromtimestamp(row.created_at, tz=UTC),
        expires_at=datetime.fromtimestamp(row.expires_at, tz=UTC),
        active=row.active,
        griefed=row.griefed,
        client_stake=Decimal(row.client_stake),
        replication_factor=row.replication_factor,
    )


class SnapshotStore:
    """Reads and writes cache snapshots through SQLAlchemy."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        engine: AsyncEngine | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.engine = engine

    @classmethod
    async def connect(cls, database_url: str) -> Self:
        """Open the snapshot database, creating tables if needed."""
        engine = create_engine(database_url)
        await create_tables(engine)
        return cls(create_session_factory(engine), engine)

    async def close(self) -> None:
        """Dispose of the engine if this store created it."""
        if self.engine is not None:
            await self.engine.dispose()

    async def save(self, cache: ReconciliationCache, chain_id: int) -> None:
        """Write the cached registration, params and deals for ``chain_id``."""
        state = cache.state(chain_id)
        registration = state.registration
        deals = list(state.deals.values())
        snapshot_at = datetime.now(UTC).timestamp()

        async with self.session_factory() as session:
            if registration is not None:
                await upsert_rows(
                    session,
                    RelayRegistrationDB,
                    [
                        registration_to_row(
                            registration,
                            state.params,
                            state.last_updated,
                            snapshot_at,
                            state.unresolved_tx_hash,
                        )
                    ],
                )
            await upsert_rows(
                session, DealRecordDB, [deal_to_row(deal, snapshot_at) for deal in deals]
            )
            await session.commit()

        logger.debug("Snapshot saved for chain %s (%s deals)", chain_id, len(deals))

    async def load(self, cache: ReconciliationCache, chain_id: int) -> bool:
        """Restore the snapshot for ``chain_id`` into ``cache``.

        Returns:
            Whether a snapshot existed
        """
        async with self.session_factory() as session:
            row = await get_registration_row(session, chain_id)
            deal_rows = await get_deal_rows(session, chain_id)

        if row is None and not deal_rows:
            return False

        registration, params, last_updated = (
            registration_from_row(row) if row is not None else (None, None, None)
        )
        cache.add_chain(chain_id)
        cache.restore(
            chain_id,
            registration=registration,
            deals=[deal_from_row(deal_row) for deal_row in deal_rows],
            params=params,
            last_updated=last_updated,
            unresolved_tx_hash=row.unresolved_tx_hash if row is not None else None,
        )
        if row is not None and row.unresolved_tx_hash:
            logger.warning(
                "Chain %s has unresolved tx %s from a previous run; staking intents blocked",
                chain_id,
                row.unresolved_tx_hash,
            )
        logger.info(
            "Restored snapshot for chain %s: %s, %s deals",
            chain_id,
            registration.status if registration else "no registration",
            len(deal_rows),
        )
        return True


__all__ = [
    "SnapshotStore",
    "deal_from_row",
    "deal_to_row",
    "registration_from_row",
    "registration_to_row",
]
