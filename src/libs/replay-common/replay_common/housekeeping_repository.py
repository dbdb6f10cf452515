# src/libs/replay-common/replay_common/housekeeping_repository.py
import logging
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, exists, func, literal_column, select, tuple_, update
from sqlalchemy.dialects.postgresql import aggregate_order_by, insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from .database_models import (
    HousekeepingDaily, HousekeepingRun, HousekeepingRunItem,
    RUN_RUNNING, DAILY_SNAPSHOTTED,
)
from .housekeeping.models import EligibilitySnapshot, RowCounts
from .utils import async_timed

logger = logging.getLogger(__name__)


class HousekeepingRepository:
    """
    Handles database operations for housekeeping runs, their per-item
    breakdown and the per-day snapshot/status rows.
    """
    def __init__(self, db: AsyncSession):
        self.db = db

    # --- daily snapshot ---------------------------------------------------------

    @async_timed(repository="HousekeepingRepository", method="get_daily")
    async def get_daily(self, job_type: str, event_key: str, run_date: date) -> Optional[HousekeepingDaily]:
        stmt = select(HousekeepingDaily).where(
            HousekeepingDaily.job_type == job_type,
            HousekeepingDaily.event_key == event_key,
            HousekeepingDaily.run_date == run_date,
        )
        return (await self.db.execute(stmt)).scalars().first()

    @async_timed(repository="HousekeepingRepository", method="lock_daily")
    async def lock_daily(self, job_type: str, event_key: str, run_date: date) -> Optional[HousekeepingDaily]:
        """
        Row-locks the day row until the surrounding transaction ends.
        Attempt numbering for a scope is serialized on this lock.
        """
        stmt = (
            select(HousekeepingDaily)
            .where(
                HousekeepingDaily.job_type == job_type,
                HousekeepingDaily.event_key == event_key,
                HousekeepingDaily.run_date == run_date,
            )
            .with_for_update()
        )
        return (await self.db.execute(stmt)).scalars().first()

    @async_timed(repository="HousekeepingRepository", method="upsert_daily_snapshot")
    async def upsert_daily_snapshot(self, snapshot: EligibilitySnapshot) -> None:
        """
        Inserts the day row on first sight; afterwards only the eligibility
        columns are refreshed and the last* run fields are left alone.
        """
        totals = snapshot.totals
        eligibility = {
            "retention_days": snapshot.retention_days,
            "cutoff_date": snapshot.cutoff_date,
            "snapshot_at": snapshot.snapshot_at,
            "eligible_success": totals.success,
            "eligible_failure": totals.failure,
            "eligible_total": totals.total,
        }
        stmt = pg_insert(HousekeepingDaily).values(
            job_type=snapshot.job_type,
            event_key=snapshot.event_key,
            run_date=snapshot.run_date,
            last_status=DAILY_SNAPSHOTTED,
            last_attempt=0,
            **eligibility,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["job_type", "event_key", "run_date"],
            set_=eligibility,
        )
        await self.db.execute(stmt)

    @async_timed(repository="HousekeepingRepository", method="update_daily_last_run")
    async def update_daily_last_run(
        self,
        job_type: str,
        event_key: str,
        run_date: date,
        status: str,
        run_id: str,
        attempt: int,
        started_at: datetime,
        completed_at: Optional[datetime] = None,
        error: Optional[str] = None,
    ) -> None:
        stmt = (
            update(HousekeepingDaily)
            .where(
                HousekeepingDaily.job_type == job_type,
                HousekeepingDaily.event_key == event_key,
                HousekeepingDaily.run_date == run_date,
            )
            .values(
                last_status=status,
                last_run_id=run_id,
                last_attempt=attempt,
                last_started_at=started_at,
                last_completed_at=completed_at,
                last_error=error,
            )
        )
        await self.db.execute(stmt)

    # --- runs -------------------------------------------------------------------

    @async_timed(repository="HousekeepingRepository", method="get_max_attempt")
    async def get_max_attempt(self, job_type: str, event_key: str, run_date: date) -> int:
        stmt = select(func.max(HousekeepingRun.attempt)).where(
            HousekeepingRun.job_type == job_type,
            HousekeepingRun.event_key == event_key,
            HousekeepingRun.run_date == run_date,
        )
        return int((await self.db.execute(stmt)).scalar() or 0)

    @async_timed(repository="HousekeepingRepository", method="find_running_run")
    async def find_running_run(self, job_type: str, event_key: str, run_date: date) -> Optional[HousekeepingRun]:
        stmt = (
            select(HousekeepingRun)
            .where(
                HousekeepingRun.job_type == job_type,
                HousekeepingRun.event_key == event_key,
                HousekeepingRun.run_date == run_date,
                HousekeepingRun.status == RUN_RUNNING,
            )
            .order_by(HousekeepingRun.attempt.desc())
            .with_for_update()
        )
        return (await self.db.execute(stmt)).scalars().first()

    @async_timed(repository="HousekeepingRepository", method="create_run")
    async def create_run(self, **fields: Any) -> HousekeepingRun:
        run = HousekeepingRun(**fields)
        self.db.add(run)
        await self.db.flush()
        return run

    @async_timed(repository="HousekeepingRepository", method="complete_run")
    async def complete_run(
        self,
        run_id: str,
        status: str,
        completed_at: datetime,
        duration_ms: int,
        deleted: RowCounts,
        error_message: Optional[str] = None,
    ) -> None:
        stmt = (
            update(HousekeepingRun)
            .where(HousekeepingRun.id == run_id)
            .values(
                status=status,
                completed_at=completed_at,
                duration_ms=duration_ms,
                deleted_success=deleted.success,
                deleted_failure=deleted.failure,
                deleted_total=deleted.total,
                error_message=error_message,
            )
        )
        await self.db.execute(stmt)

    @async_timed(repository="HousekeepingRepository", method="add_run_items")
    async def add_run_items(self, run_id: str, per_item: Dict[str, RowCounts], created_at: datetime) -> None:
        if not per_item:
            return
        self.db.add_all([
            HousekeepingRunItem(
                run_id=run_id,
                event_key=item_key,
                deleted_success=counts.success,
                deleted_failure=counts.failure,
                deleted_total=counts.total,
                created_at=created_at,
            )
            for item_key, counts in per_item.items()
        ])
        await self.db.flush()

    # --- queries ----------------------------------------------------------------

    @staticmethod
    def _scope(model, job_type: Optional[str], event_key: Optional[str]) -> list:
        conditions = []
        if job_type:
            conditions.append(model.job_type == job_type)
        if event_key:
            conditions.append(model.event_key == event_key)
        return conditions

    @async_timed(repository="HousekeepingRepository", method="list_daily")
    async def list_daily(
        self, limit: int = 30, job_type: Optional[str] = None, event_key: Optional[str] = None
    ) -> List[HousekeepingDaily]:
        stmt = (
            select(HousekeepingDaily)
            .where(*self._scope(HousekeepingDaily, job_type, event_key))
            .order_by(HousekeepingDaily.run_date.desc(), HousekeepingDaily.job_type, HousekeepingDaily.event_key)
            .limit(limit)
        )
        return list((await self.db.execute(stmt)).scalars().all())

    @async_timed(repository="HousekeepingRepository", method="list_runs_for_date")
    async def list_runs_for_date(
        self, run_date: date, job_type: Optional[str] = None, event_key: Optional[str] = None
    ) -> List[HousekeepingRun]:
        stmt = (
            select(HousekeepingRun)
            .where(HousekeepingRun.run_date == run_date, *self._scope(HousekeepingRun, job_type, event_key))
            .order_by(HousekeepingRun.job_type, HousekeepingRun.event_key, HousekeepingRun.attempt.asc())
        )
        return list((await self.db.execute(stmt)).scalars().all())

    @async_timed(repository="HousekeepingRepository", method="summarize_runs")
    async def summarize_runs(
        self,
        limit: int = 30,
        offset: int = 0,
        job_type: Optional[str] = None,
        event_key: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """One row per (job type, run date, event key) carrying its latest attempt's outcome."""
        group = (HousekeepingRun.job_type, HousekeepingRun.run_date, HousekeepingRun.event_key)
        ranked = (
            select(
                HousekeepingRun.job_type,
                HousekeepingRun.run_date,
                HousekeepingRun.event_key,
                HousekeepingRun.attempt.label("latest_attempt"),
                HousekeepingRun.status.label("latest_status"),
                HousekeepingRun.trigger_type.label("latest_trigger_type"),
                HousekeepingRun.completed_at.label("latest_completed_at"),
                HousekeepingRun.duration_ms.label("latest_duration_ms"),
                HousekeepingRun.error_message.label("latest_error_message"),
                func.count().over(partition_by=group).label("attempts"),
                func.sum(HousekeepingRun.deleted_success).over(partition_by=group).label("deleted_success"),
                func.sum(HousekeepingRun.deleted_failure).over(partition_by=group).label("deleted_failure"),
                func.sum(HousekeepingRun.deleted_total).over(partition_by=group).label("deleted_total"),
                func.row_number().over(partition_by=group, order_by=HousekeepingRun.attempt.desc()).label("rn"),
            )
            .where(*self._scope(HousekeepingRun, job_type, event_key))
            .subquery()
        )
        stmt = (
            select(ranked)
            .where(ranked.c.rn == 1)
            .order_by(ranked.c.run_date.desc(), ranked.c.event_key, ranked.c.job_type)
            .offset(offset)
            .limit(limit)
        )
        result = await self.db.execute(stmt)
        return [dict(row) for row in result.mappings().all()]

    @async_timed(repository="HousekeepingRepository", method="get_latest_run")
    async def get_latest_run(
        self,
        run_date: Optional[date] = None,
        job_type: Optional[str] = None,
        event_key: Optional[str] = None,
    ) -> Optional[HousekeepingRun]:
        conditions = self._scope(HousekeepingRun, job_type, event_key)
        if run_date is not None:
            conditions.append(HousekeepingRun.run_date == run_date)
        stmt = (
            select(HousekeepingRun)
            .where(*conditions)
            .order_by(HousekeepingRun.started_at.desc(), HousekeepingRun.attempt.desc())
            .limit(1)
        )
        return (await self.db.execute(stmt)).scalars().first()

    @async_timed(repository="HousekeepingRepository", method="get_run_items")
    async def get_run_items(self, run_id: str) -> List[HousekeepingRunItem]:
        stmt = (
            select(HousekeepingRunItem)
            .where(HousekeepingRunItem.run_id == run_id)
            .order_by(HousekeepingRunItem.event_key)
        )
        return list((await self.db.execute(stmt)).scalars().all())

    # --- audit retention --------------------------------------------------------

    @async_timed(repository="HousekeepingRepository", method="count_run_items_before")
    async def count_run_items_before(self, cutoff_date: date) -> int:
        old_runs = select(HousekeepingRun.id).where(HousekeepingRun.run_date < cutoff_date)
        stmt = select(func.count()).select_from(HousekeepingRunItem).where(HousekeepingRunItem.run_id.in_(old_runs))
        return int((await self.db.execute(stmt)).scalar() or 0)

    @async_timed(repository="HousekeepingRepository", method="count_runs_before")
    async def count_runs_before(self, cutoff_date: date) -> int:
        stmt = select(func.count(HousekeepingRun.id)).where(HousekeepingRun.run_date < cutoff_date)
        return int((await self.db.execute(stmt)).scalar() or 0)

    @async_timed(repository="HousekeepingRepository", method="count_daily_before")
    async def count_daily_before(self, cutoff_date: date) -> int:
        stmt = select(func.count()).select_from(HousekeepingDaily).where(HousekeepingDaily.run_date < cutoff_date)
        return int((await self.db.execute(stmt)).scalar() or 0)

    @async_timed(repository="HousekeepingRepository", method="purge_run_items_batch")
    async def purge_run_items_batch(self, cutoff_date: date, batch_size: int) -> int:
        old_runs = select(HousekeepingRun.id).where(HousekeepingRun.run_date < cutoff_date)
        doomed = (
            select(HousekeepingRunItem.run_id, HousekeepingRunItem.event_key)
            .where(HousekeepingRunItem.run_id.in_(old_runs))
            .order_by(HousekeepingRunItem.run_id, HousekeepingRunItem.event_key)
            .limit(batch_size)
            .correlate(None)
        )
        key = tuple_(HousekeepingRunItem.run_id, HousekeepingRunItem.event_key)
        result = await self.db.execute(delete(HousekeepingRunItem).where(key.in_(doomed)))
        return int(result.rowcount or 0)

    @async_timed(repository="HousekeepingRepository", method="purge_runs_batch")
    async def purge_runs_batch(self, cutoff_date: date, batch_size: int) -> int:
        """Deletes old runs whose items are already gone."""
        doomed = (
            select(HousekeepingRun.id)
            .where(
                HousekeepingRun.run_date < cutoff_date,
                ~exists().where(HousekeepingRunItem.run_id == HousekeepingRun.id),
            )
            .order_by(HousekeepingRun.id)
            .limit(batch_size)
            .correlate(None)
        )
        result = await self.db.execute(delete(HousekeepingRun).where(HousekeepingRun.id.in_(doomed)))
        return int(result.rowcount or 0)

    @async_timed(repository="HousekeepingRepository", method="purge_daily_batch")
    async def purge_daily_batch(self, cutoff_date: date, batch_size: int) -> int:
        doomed = (
            select(HousekeepingDaily.job_type, HousekeepingDaily.event_key, HousekeepingDaily.run_date)
            .where(HousekeepingDaily.run_date < cutoff_date)
            .order_by(HousekeepingDaily.run_date, HousekeepingDaily.job_type, HousekeepingDaily.event_key)
            .limit(batch_size)
            .correlate(None)
        )
        key = tuple_(HousekeepingDaily.job_type, HousekeepingDaily.event_key, HousekeepingDaily.run_date)
        result = await self.db.execute(delete(HousekeepingDaily).where(key.in_(doomed)))
        return int(result.rowcount or 0)

    @async_timed(repository="HousekeepingRepository", method="summarize_run_items")
    async def summarize_run_items(self, run_ids: List[str]) -> Dict[str, Dict[str, Any]]:
        """{run_id: {'event_count': int, 'event_keys': 'a,b'}} for the given runs."""
        if not run_ids:
            return {}
        stmt = (
            select(
                HousekeepingRunItem.run_id,
                func.count().label("event_count"),
                func.string_agg(
                    HousekeepingRunItem.event_key,
                    aggregate_order_by(literal_column("','"), HousekeepingRunItem.event_key),
                ).label("event_keys"),
            )
            .where(HousekeepingRunItem.run_id.in_(run_ids))
            .group_by(HousekeepingRunItem.run_id)
        )
        result = await self.db.execute(stmt)
        return {
            row["run_id"]: {"event_count": int(row["event_count"]), "event_keys": row["event_keys"]}
            for row in result.mappings().all()
        }
