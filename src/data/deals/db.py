"""Database model for storage deal snapshots."""

from sqlalchemy import BigInteger, Boolean, Integer, String, Text, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Mapped, mapped_column

from src.helpers.db import Base
from src.helpers.db_mixins import ChainSnapshotMixin


class DealRecordDB(Base, ChainSnapshotMixin):
    """Storage deal record - SQLAlchemy model."""

    __tablename__ = "deal_records"

    # Primary key (chain_id from the mixin)
    deal_id: Mapped[str] = mapped_column(String(66), primary_key=True)

    content_id: Mapped[str] = mapped_column(Text, nullable=False)
    client_address: Mapped[str] = mapped_column(String(42), nullable=False, index=True)
    size_mb: Mapped[int] = mapped_column(BigInteger, nullable=False)
    tier: Mapped[str] = mapped_column(String(20), nullable=False)
    price_total: Mapped[str] = mapped_column(
        String(80), nullable=False
    )  # Decimal string, token units
    created_at: Mapped[int] = mapped_column(BigInteger, nullable=False)  # Unix seconds
    expires_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, index=True)
    griefed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    client_stake: Mapped[str] = mapped_column(String(80), nullable=False, default="0")
    replication_factor: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    def __repr__(self) -> str:
        """Return string representation of DealRecord."""
        return (
            f"<DealRecord(chain_id={self.chain_id}, deal_id={self.deal_id}, "
            f"active={self.active}, griefed={self.griefed})>"
        )


async def get_deal_rows(session: AsyncSession, chain_id: int) -> list[DealRecordDB]:
    """Get all deal rows for ``chain_id``."""
    stmt = select(DealRecordDB).where(DealRecordDB.chain_id == chain_id)
    result = await session.execute(stmt)
    return list(result.scalars().all())
