"""Database model for relay registration snapshots."""

from sqlalchemy import BigInteger, Float, Integer, String, Text, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Mapped, mapped_column

from src.helpers.db import Base
from src.helpers.db_mixins import ChainSnapshotMixin


class RelayRegistrationDB(Base, ChainSnapshotMixin):
    """Relay registration and registry params for one chain - SQLAlchemy model.

    Token amounts are stored as decimal strings since they can exceed 64 bits.
    """

    __tablename__ = "relay_registrations"

    address: Mapped[str | None] = mapped_column(String(42), nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    staked_amount: Mapped[str] = mapped_column(String(78), nullable=False, default="0")
    pending_unstake_amount: Mapped[str] = mapped_column(
        String(78), nullable=False, default="0"
    )
    total_slashed: Mapped[str] = mapped_column(String(78), nullable=False, default="0")
    unstake_requested_at: Mapped[int | None] = mapped_column(
        BigInteger, nullable=True
    )  # Unix seconds
    endpoint: Mapped[str] = mapped_column(Text, nullable=False, default="")
    peer_public_key: Mapped[str] = mapped_column(Text, nullable=False, default="")
    registered_at: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    griefing_ratio: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    observed_block: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    # Registry params, absent until the first full pass
    min_stake: Mapped[str | None] = mapped_column(String(78), nullable=True)
    unstaking_delay: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    last_updated: Mapped[float | None] = mapped_column(Float, nullable=True)
    # Transaction of unknown outcome blocking further staking intents
    unresolved_tx_hash: Mapped[str | None] = mapped_column(String(66), nullable=True)

    def __repr__(self) -> str:
        """Return string representation of RelayRegistration."""
        return (
            f"<RelayRegistration(chain_id={self.chain_id}, "
            f"status={self.status}, staked_amount={self.staked_amount})>"
        )


async def get_registration_row(
    session: AsyncSession, chain_id: int
) -> RelayRegistrationDB | None:
    """Get the snapshot row for ``chain_id``."""
    stmt = select(RelayRegistrationDB).where(RelayRegistrationDB.chain_id == chain_id)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()
