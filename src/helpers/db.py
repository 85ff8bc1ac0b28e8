"""Database connection helpers."""

from collections.abc import Sequence
from typing import Any, TypeVar

from sqlalchemy import inspect
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import declarative_base


Base = declarative_base()

DB_BATCH_SIZE = 50
"""Rows per INSERT statement"""

SUPPORTED_DIALECTS = ("postgresql", "sqlite")


def create_engine(database_url: str) -> AsyncEngine:
    """Create an async engine for the snapshot database.

    Args:
        database_url: SQLAlchemy URL, e.g. ``postgresql+psycopg://...`` or
            ``sqlite+aiosqlite:///relay.db``

    Returns:
        AsyncEngine: Engine bound to the URL

    Raises:
        ValueError: If the URL is empty or the dialect lacks upsert support
    """
    if not database_url:
        msg = "Database URL cannot be empty"
        raise ValueError(msg)

    engine = create_async_engine(database_url, echo=False)
    if engine.dialect.name not in SUPPORTED_DIALECTS:
        msg = f"Unsupported database dialect: {engine.dialect.name}"
        raise ValueError(msg)
    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create a session factory for ``engine``."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def create_tables(engine: AsyncEngine) -> None:
    """Create all tables registered on ``Base`` if they don't exist."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


DBModelType = TypeVar("DBModelType")


async def upsert_rows(
    session: AsyncSession,
    db_model_class: type[DBModelType],
    rows: Sequence[dict[str, Any]],
) -> None:
    """Upsert rows using INSERT ... ON CONFLICT DO UPDATE.

    Runs inside the caller's session so several tables can be written in one
    transaction; the caller commits.

    Args:
        session: Open async session
        db_model_class: The SQLAlchemy model class (e.g., DealRecordDB)
        rows: Column-name to value mappings

    Examples:
        async with session_factory() as session:
            await upsert_rows(session, DealRecordDB, [row1, row2])
            await session.commit()

    Raises:
        ValueError: If the database model class cannot be inspected
    """
    if not rows:
        return

    # Get primary key column names using SQLAlchemy inspection
    mapper = inspect(db_model_class)
    if not mapper:
        msg = f"Cannot inspect {db_model_class}"
        raise ValueError(msg)
    pk_columns = [col.name for col in mapper.primary_key]

    all_columns = set(rows[0].keys())

    dialect = session.bind.dialect.name if session.bind is not None else "postgresql"
    insert = sqlite_insert if dialect == "sqlite" else pg_insert

    # Chunk to stay under the bound-parameter limits of both dialects
    for start in range(0, len(rows), DB_BATCH_SIZE):
        stmt = insert(db_model_class).values(list(rows[start : start + DB_BATCH_SIZE]))

        # Build the update dict (all columns except primary keys)
        update_dict = {
            col: stmt.excluded[col] for col in all_columns if col not in pk_columns
        }

        stmt = stmt.on_conflict_do_update(
            index_elements=pk_columns,
            set_=update_dict,
        )

        await session.execute(stmt)


__all__ = [
    "Base",
    "create_engine",
    "create_session_factory",
    "create_tables",
    "upsert_rows",
]
