# tests/unit/libs/replay-common/test_housekeeping_strategies.py
from datetime import date, datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from replay_common.event_tables import EventTableCatalog
from replay_common.exceptions import InvalidHousekeepingScope, UnknownEventKey
from replay_common.housekeeping.models import RowCounts
from replay_common.housekeeping.strategies import (
    JOB_HOUSEKEEPING_AUDIT, JOB_REPLAY_AUDIT, JOB_RETENTION,
    HousekeepingAuditStrategy, ReplayAuditStrategy, RetentionStrategy, default_strategies,
)

pytestmark = pytest.mark.asyncio


@pytest.fixture
def catalog() -> EventTableCatalog:
    return EventTableCatalog(["payments.in", "loans.in"])


async def test_retention_scope_accepts_all_and_known_keys(catalog):
    strategy = RetentionStrategy(retention_days=7, catalog=catalog)

    assert strategy.normalize_scope(None) == "ALL"
    assert strategy.normalize_scope(" all ") == "ALL"
    assert strategy.normalize_scope("loans.in") == "loans.in"
    assert strategy.item_keys("ALL") == ["payments.in", "loans.in"]
    assert strategy.item_keys("loans.in") == ["loans.in"]
    with pytest.raises(UnknownEventKey):
        strategy.normalize_scope("cards.in")


async def test_cutoff_is_run_date_minus_retention(catalog):
    strategy = RetentionStrategy(retention_days=7, catalog=catalog)

    assert strategy.cutoff_for(date(2026, 3, 8)) == date(2026, 3, 1)


async def test_retention_delegates_to_gateway(catalog):
    gateway = MagicMock()
    gateway.count_older_than = AsyncMock(return_value=RowCounts.split(2, 3))
    gateway.delete_older_than = AsyncMock(return_value=RowCounts.split(1, 0))
    strategy = RetentionStrategy(retention_days=7, catalog=catalog, gateway_factory=lambda db, c: gateway)
    db = object()

    assert await strategy.count_eligible(db, "payments.in", date(2026, 3, 1)) == RowCounts.split(2, 3)
    assert await strategy.delete_batch(db, "payments.in", date(2026, 3, 1), 100) == RowCounts.split(1, 0)
    gateway.delete_older_than.assert_awaited_once_with("payments.in", date(2026, 3, 1), 100)


@pytest.mark.parametrize("strategy_cls", [ReplayAuditStrategy, HousekeepingAuditStrategy])
async def test_audit_strategies_only_support_all(strategy_cls):
    strategy = strategy_cls(retention_days=30, repository_factory=MagicMock())

    assert strategy.normalize_scope("") == "ALL"
    with pytest.raises(InvalidHousekeepingScope):
        strategy.normalize_scope("payments.in")


async def test_replay_audit_purges_items_before_jobs_at_start_of_cutoff_day():
    repo = MagicMock()
    repo.count_purgeable_items = AsyncMock(return_value=12)
    repo.purge_jobs_batch = AsyncMock(return_value=4)
    strategy = ReplayAuditStrategy(retention_days=30, repository_factory=lambda db: repo)

    assert strategy.item_keys("ALL") == ["replay_items", "replay_jobs"]
    assert await strategy.count_eligible(None, "replay_items", date(2026, 2, 6)) == RowCounts(total=12)
    assert await strategy.delete_batch(None, "replay_jobs", date(2026, 2, 6), 1000) == RowCounts(total=4)
    repo.count_purgeable_items.assert_awaited_once_with(datetime(2026, 2, 6, tzinfo=timezone.utc))
    repo.purge_jobs_batch.assert_awaited_once_with(datetime(2026, 2, 6, tzinfo=timezone.utc), 1000)


async def test_housekeeping_audit_routes_each_item_key():
    repo = MagicMock()
    repo.count_daily_before = AsyncMock(return_value=2)
    repo.purge_run_items_batch = AsyncMock(return_value=9)
    strategy = HousekeepingAuditStrategy(retention_days=90, repository_factory=lambda db: repo)

    assert strategy.item_keys("ALL") == ["housekeeping_run_items", "housekeeping_runs", "housekeeping_daily"]
    assert await strategy.count_eligible(None, "housekeeping_daily", date(2025, 12, 8)) == RowCounts(total=2)
    assert await strategy.delete_batch(None, "housekeeping_run_items", date(2025, 12, 8), 50) == RowCounts(total=9)
    repo.purge_run_items_batch.assert_awaited_once_with(date(2025, 12, 8), 50)


async def test_default_strategies_cover_every_job_type(catalog):
    strategies = default_strategies(catalog)

    assert list(strategies) == [JOB_RETENTION, JOB_REPLAY_AUDIT, JOB_HOUSEKEEPING_AUDIT]
    assert strategies[JOB_RETENTION].catalog is catalog
