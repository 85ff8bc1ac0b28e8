"""Database model mixins for common field patterns."""

from sqlalchemy import BigInteger, Float
from sqlalchemy.orm import Mapped, mapped_column


class ChainSnapshotMixin:
    """Mixin for per-chain snapshot rows.

    Provides the fields every snapshot table shares:
    - chain_id: Chain the row belongs to (part of the primary key)
    - snapshot_at: Unix time the row was last written

    Example:
        ```python
        from src.helpers.db import Base
        from src.helpers.db_mixins import ChainSnapshotMixin

        class MySnapshotModel(Base, ChainSnapshotMixin):
            __tablename__ = "my_snapshot_table"
            # chain_id, snapshot_at inherited from mixin
        ```
    """

    chain_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    snapshot_at: Mapped[float] = mapped_column(
        Float, nullable=False, doc="Unix seconds of the last write"
    )


__all__ = ["ChainSnapshotMixin"]
