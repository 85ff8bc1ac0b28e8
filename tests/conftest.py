"""Pytest configuration and shared fixtures for relay tests."""

from pathlib import Path

import pytest
import pytest_asyncio

from collections.abc import AsyncGenerator

from src.relay.cache import ReconciliationCache
from src.relay.reconciliation import DealReconciler
from src.relay.snapshot import SnapshotStore
from src.relay.staking import StakingStateMachine
from tests.fakes import FakeClock, FakeRegistryClient


@pytest.fixture
def clock() -> FakeClock:
    """Manually advanced clock starting 2025-01-01 UTC."""
    return FakeClock()


@pytest.fixture
def chain(clock: FakeClock) -> FakeRegistryClient:
    """In-memory registry for one chain with a configured signer."""
    return FakeRegistryClient(clock)


@pytest.fixture
def cache() -> ReconciliationCache:
    """Empty reconciliation cache."""
    return ReconciliationCache()


@pytest.fixture
def machine(
    chain: FakeRegistryClient, cache: ReconciliationCache, clock: FakeClock
) -> StakingStateMachine:
    """Staking state machine over the fake registry."""
    return StakingStateMachine(chain, cache, clock=clock)  # type: ignore[arg-type]


@pytest.fixture
def reconciler(
    chain: FakeRegistryClient, cache: ReconciliationCache, clock: FakeClock
) -> DealReconciler:
    """Reconciler over the fake registry with short test cadences."""
    return DealReconciler(
        chain,  # type: ignore[arg-type]
        cache,
        fast_interval=0.05,
        slow_interval=0.1,
        initial_delay=0.0,
        fetch_timeout=1.0,
        clock=clock,
    )


@pytest.fixture
def sqlite_url(tmp_path: Path) -> str:
    """URL of a fresh SQLite snapshot database.

    Returns:
        str: aiosqlite URL inside the test's temp directory
    """
    return f"sqlite+aiosqlite:///{tmp_path / 'snapshot.db'}"


@pytest_asyncio.fixture
async def snapshot_store(sqlite_url: str) -> AsyncGenerator[SnapshotStore]:
    """Snapshot store backed by a temporary SQLite database.

    Yields:
        SnapshotStore: Store with tables created
    """
    store = await SnapshotStore.connect(sqlite_url)
    yield store
    await store.close()
