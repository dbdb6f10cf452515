# tests/unit/services/housekeeping_service/test_housekeeping_scheduler.py
import asyncio
from datetime import date, datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from replay_common.logging_utils import correlation_id_var
from src.services.housekeeping_service.app.scheduler.housekeeping_scheduler import (
    SCHEDULED_SCOPES, HousekeepingScheduler
)

pytestmark = pytest.mark.asyncio

NOW = datetime(2026, 3, 8, 2, 0, tzinfo=timezone.utc)


@pytest.fixture
def mock_engine() -> MagicMock:
    engine = MagicMock()
    engine.run_scheduled = AsyncMock(return_value=None)
    return engine


async def test_tick_runs_every_scope_for_todays_run_date(mock_engine):
    scheduler = HousekeepingScheduler(engine=mock_engine, clock=lambda: NOW)

    outcomes = await scheduler.tick()

    assert outcomes == [None, None, None]
    called = [call.args for call in mock_engine.run_scheduled.await_args_list]
    assert called == list(SCHEDULED_SCOPES)
    for call in mock_engine.run_scheduled.await_args_list:
        assert call.kwargs == {"run_date": date(2026, 3, 8)}


async def test_tick_continues_after_a_scope_fails(mock_engine):
    sentinel = object()
    mock_engine.run_scheduled.side_effect = [RuntimeError("db down"), sentinel, None]
    scheduler = HousekeepingScheduler(engine=mock_engine, clock=lambda: NOW)

    outcomes = await scheduler.tick()

    assert outcomes == [None, sentinel, None]
    assert mock_engine.run_scheduled.await_count == 3


async def test_tick_sets_and_restores_correlation_id(mock_engine):
    seen = []

    async def capture(*args, **kwargs):
        seen.append(correlation_id_var.get())

    mock_engine.run_scheduled.side_effect = capture
    scheduler = HousekeepingScheduler(engine=mock_engine, clock=lambda: NOW, scopes=[("RETENTION", "ALL")])
    before = correlation_id_var.get()

    await scheduler.tick()

    assert seen[0].startswith("HKP")
    assert correlation_id_var.get() == before


async def test_run_exits_when_stopped(mock_engine):
    scheduler = HousekeepingScheduler(engine=mock_engine, clock=lambda: NOW)

    task = asyncio.create_task(scheduler.run())
    await asyncio.sleep(0)
    scheduler.stop()
    await asyncio.wait_for(task, timeout=1)

    mock_engine.run_scheduled.assert_not_called()
