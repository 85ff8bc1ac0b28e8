"""Tests for database helper functions."""

import pytest

from typing import Any

from sqlalchemy import select

from src.data.deals.db import DealRecordDB, get_deal_rows
from src.helpers.db import (
    DB_BATCH_SIZE,
    create_engine,
    create_session_factory,
    create_tables,
    upsert_rows,
)


def deal_row(n: int, *, active: bool = True) -> dict[str, Any]:
    return {
        "chain_id": 84532,
        "deal_id": "0x" + f"{n:064x}",
        "content_id": f"bafy{n}",
        "client_address": "0x3333333333333333333333333333333333333333",
        "size_mb": 10,
        "tier": "standard",
        "price_total": "0.01",
        "created_at": 1_700_000_000,
        "expires_at": 1_702_592_000,
        "active": active,
        "griefed": False,
        "client_stake": "0",
        "replication_factor": 1,
        "snapshot_at": 1_700_000_000.0,
    }


class TestCreateEngine:
    """Tests for create_engine."""

    def test_empty_url(self) -> None:
        """Test that an empty URL raises ValueError."""
        with pytest.raises(ValueError, match="Database URL cannot be empty"):
            create_engine("")


class TestUpsertRows:
    """Tests for upsert_rows against SQLite."""

    @pytest.mark.asyncio
    async def test_insert_then_update(self, sqlite_url: str) -> None:
        """Test conflicting rows update every non-key column."""
        engine = create_engine(sqlite_url)
        await create_tables(engine)
        session_factory = create_session_factory(engine)
        try:
            async with session_factory() as session:
                await upsert_rows(session, DealRecordDB, [deal_row(1), deal_row(2)])
                await session.commit()

            async with session_factory() as session:
                await upsert_rows(session, DealRecordDB, [deal_row(1, active=False)])
                await session.commit()

            async with session_factory() as session:
                rows = await get_deal_rows(session, 84532)
                active = {row.deal_id: row.active for row in rows}
        finally:
            await engine.dispose()

        assert len(rows) == 2
        assert active["0x" + f"{1:064x}"] is False
        assert active["0x" + f"{2:064x}"] is True

    @pytest.mark.asyncio
    async def test_batches_large_inputs(self, sqlite_url: str) -> None:
        """Test more rows than one statement holds are all written."""
        engine = create_engine(sqlite_url)
        await create_tables(engine)
        session_factory = create_session_factory(engine)
        count = DB_BATCH_SIZE * 2 + 3
        try:
            async with session_factory() as session:
                await upsert_rows(session, DealRecordDB, [deal_row(n) for n in range(count)])
                await session.commit()

            async with session_factory() as session:
                result = await session.execute(select(DealRecordDB.deal_id))
                deal_ids = result.scalars().all()
        finally:
            await engine.dispose()

        assert len(deal_ids) == count

    @pytest.mark.asyncio
    async def test_empty_rows(self) -> None:
        """Test an empty input never touches the session."""
        await upsert_rows(None, DealRecordDB, [])  # type: ignore[arg-type]
