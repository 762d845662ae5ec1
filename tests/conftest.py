"""Shared test fixtures and configuration."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from src.beatfeed.config import ExecutorConfig, SchedulerConfig
from src.beatfeed.scheduler import (
    ImportScheduler,
    MemoryHistoryLedger,
    MemorySeenIndex,
    SchedulerHolder,
)
from tests.fixtures.mock_fixtures import FakeClock, FakeExecutor, FlakyStateStore, MockPipeline


@pytest.fixture
def mock_redis_client():
    """Fixture to mock the Redis client with pipeline support."""
    mock_client = AsyncMock()
    mock_client.pipeline = MagicMock(return_value=MockPipeline())
    return mock_client


@pytest.fixture
def clock():
    """Fixture providing a controllable clock."""
    return FakeClock()


@pytest.fixture
def scheduler_config():
    """Scheduler settings with the in-process tick disabled."""
    return SchedulerConfig(
        interval_hours=24,
        max_log_entries=50,
        tick_enabled=False,
        default_sources=[],
        cron_secret=None,
    )


@pytest.fixture
def executor_config(tmp_path):
    """Executor settings writing into a temporary media directory."""
    return ExecutorConfig(media_dir=str(tmp_path / "media"), min_duration_seconds=30)


@pytest.fixture
def state_store():
    return FlakyStateStore()


@pytest.fixture
def history_ledger():
    return MemoryHistoryLedger()


@pytest.fixture
def seen_index():
    return MemorySeenIndex()


@pytest.fixture
def fake_executor():
    return FakeExecutor()


@pytest.fixture
def scheduler(state_store, history_ledger, fake_executor, scheduler_config, clock):
    """Uninitialized scheduler over in-memory backends."""
    return ImportScheduler(
        store=state_store,
        ledger=history_ledger,
        executor=fake_executor,
        config=scheduler_config,
        clock=clock,
    )


@pytest.fixture
def scheduler_holder(state_store, history_ledger, fake_executor, scheduler_config, clock):
    """Holder building schedulers over the shared in-memory backends."""

    def factory():
        return ImportScheduler(
            store=state_store,
            ledger=history_ledger,
            executor=fake_executor,
            config=scheduler_config,
            clock=clock,
        )

    return SchedulerHolder(factory)
