# src/libs/replay-common/replay_common/housekeeping/strategies.py
from abc import ABC, abstractmethod
from datetime import date, datetime, time, timedelta, timezone
from typing import Callable, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ..config import RETENTION_DAYS, REPLAY_AUDIT_RETENTION_DAYS, HOUSEKEEPING_AUDIT_RETENTION_DAYS
from ..database_models import SCOPE_ALL
from ..event_table_gateway import EventTableGateway
from ..event_tables import EventTableCatalog, get_event_catalog
from ..exceptions import InvalidHousekeepingScope, UnknownEventKey
from ..housekeeping_repository import HousekeepingRepository
from ..replay_job_repository import ReplayJobRepository
from .models import RowCounts

JOB_RETENTION = "RETENTION"
JOB_REPLAY_AUDIT = "REPLAY_AUDIT"
JOB_HOUSEKEEPING_AUDIT = "HOUSEKEEPING_AUDIT"
JOB_TYPES = (JOB_RETENTION, JOB_REPLAY_AUDIT, JOB_HOUSEKEEPING_AUDIT)


class HousekeepingStrategy(ABC):
    """
    What one job type deletes. Run, attempt and daily bookkeeping is shared
    by the engine; a strategy only knows its item keys and how to count and
    delete eligible rows for each of them.
    """
    job_type: str

    def __init__(self, retention_days: int):
        self.retention_days = retention_days

    def cutoff_for(self, run_date: date) -> date:
        return run_date - timedelta(days=self.retention_days)

    def normalize_scope(self, event_key: Optional[str]) -> str:
        scope = (event_key or SCOPE_ALL).strip() or SCOPE_ALL
        if scope.upper() == SCOPE_ALL:
            return SCOPE_ALL
        raise InvalidHousekeepingScope(f"{self.job_type} only supports eventKey={SCOPE_ALL}.")

    @abstractmethod
    def item_keys(self, scope: str) -> List[str]:
        """Keys recorded as housekeeping_run_items, processed in this order."""

    @abstractmethod
    async def count_eligible(self, db: AsyncSession, item_key: str, cutoff_date: date) -> RowCounts:
        ...

    @abstractmethod
    async def delete_batch(self, db: AsyncSession, item_key: str, cutoff_date: date, batch_size: int) -> RowCounts:
        """Deletes one bounded batch; an empty result means the item key is clean."""


class RetentionStrategy(HousekeepingStrategy):
    """Deletes success and failure event rows older than the cutoff, per event key."""
    job_type = JOB_RETENTION

    def __init__(
        self,
        retention_days: int = RETENTION_DAYS,
        catalog: Optional[EventTableCatalog] = None,
        gateway_factory: Callable = EventTableGateway,
    ):
        super().__init__(retention_days)
        self.catalog = catalog or get_event_catalog()
        self._gateway_factory = gateway_factory

    def normalize_scope(self, event_key: Optional[str]) -> str:
        scope = (event_key or SCOPE_ALL).strip() or SCOPE_ALL
        if scope.upper() == SCOPE_ALL:
            return SCOPE_ALL
        if scope not in self.catalog:
            raise UnknownEventKey(scope)
        return scope

    def item_keys(self, scope: str) -> List[str]:
        return self.catalog.keys() if scope == SCOPE_ALL else [scope]

    async def count_eligible(self, db, item_key, cutoff_date):
        return await self._gateway_factory(db, self.catalog).count_older_than(item_key, cutoff_date)

    async def delete_batch(self, db, item_key, cutoff_date, batch_size):
        return await self._gateway_factory(db, self.catalog).delete_older_than(item_key, cutoff_date, batch_size)


def _start_of_day(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


class ReplayAuditStrategy(HousekeepingStrategy):
    """Deletes replay items, then their terminal jobs, created before the cutoff."""
    job_type = JOB_REPLAY_AUDIT
    ITEMS = "replay_items"
    JOBS = "replay_jobs"

    def __init__(self, retention_days: int = REPLAY_AUDIT_RETENTION_DAYS, repository_factory: Callable = ReplayJobRepository):
        super().__init__(retention_days)
        self._repository_factory = repository_factory

    def item_keys(self, scope: str) -> List[str]:
        return [self.ITEMS, self.JOBS]

    async def count_eligible(self, db, item_key, cutoff_date):
        repo = self._repository_factory(db)
        cutoff = _start_of_day(cutoff_date)
        if item_key == self.ITEMS:
            return RowCounts.only_total(await repo.count_purgeable_items(cutoff))
        return RowCounts.only_total(await repo.count_purgeable_jobs(cutoff))

    async def delete_batch(self, db, item_key, cutoff_date, batch_size):
        repo = self._repository_factory(db)
        cutoff = _start_of_day(cutoff_date)
        if item_key == self.ITEMS:
            return RowCounts.only_total(await repo.purge_items_batch(cutoff, batch_size))
        return RowCounts.only_total(await repo.purge_jobs_batch(cutoff, batch_size))


class HousekeepingAuditStrategy(HousekeepingStrategy):
    """Deletes housekeeping history (run items, runs, daily rows) with a run date before the cutoff."""
    job_type = JOB_HOUSEKEEPING_AUDIT
    RUN_ITEMS = "housekeeping_run_items"
    RUNS = "housekeeping_runs"
    DAILY = "housekeeping_daily"

    def __init__(
        self,
        retention_days: int = HOUSEKEEPING_AUDIT_RETENTION_DAYS,
        repository_factory: Callable = HousekeepingRepository,
    ):
        super().__init__(retention_days)
        self._repository_factory = repository_factory

    def item_keys(self, scope: str) -> List[str]:
        return [self.RUN_ITEMS, self.RUNS, self.DAILY]

    async def count_eligible(self, db, item_key, cutoff_date):
        repo = self._repository_factory(db)
        counters = {
            self.RUN_ITEMS: repo.count_run_items_before,
            self.RUNS: repo.count_runs_before,
            self.DAILY: repo.count_daily_before,
        }
        return RowCounts.only_total(await counters[item_key](cutoff_date))

    async def delete_batch(self, db, item_key, cutoff_date, batch_size):
        repo = self._repository_factory(db)
        purgers = {
            self.RUN_ITEMS: repo.purge_run_items_batch,
            self.RUNS: repo.purge_runs_batch,
            self.DAILY: repo.purge_daily_batch,
        }
        return RowCounts.only_total(await purgers[item_key](cutoff_date, batch_size))


def default_strategies(catalog: Optional[EventTableCatalog] = None) -> Dict[str, HousekeepingStrategy]:
    strategies = [
        RetentionStrategy(catalog=catalog),
        ReplayAuditStrategy(),
        HousekeepingAuditStrategy(),
    ]
    return {strategy.job_type: strategy for strategy in strategies}
