# src/libs/replay-common/replay_common/replay_job_repository.py
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, delete, exists, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .database_models import (
    ReplayJob, ReplayItem,
    JOB_COMPLETED, JOB_FAILED, JOB_PARTIAL,
)
from .utils import async_timed

logger = logging.getLogger(__name__)

TERMINAL_JOB_STATUSES = (JOB_COMPLETED, JOB_PARTIAL, JOB_FAILED)


class ReplayJobRepository:
    """
    Persistence for replay jobs and their items. Writes are scoped to a
    single job id; the caller owns the transaction.
    """
    def __init__(self, db: AsyncSession):
        self.db = db

    # --- writes -----------------------------------------------------------------

    @async_timed(repository="ReplayJobRepository", method="create_job")
    async def create_job(self, **fields: Any) -> ReplayJob:
        job = ReplayJob(**fields)
        self.db.add(job)
        await self.db.flush()
        logger.info(
            "Created replay job.",
            extra={"job_id": job.id, "event_key": job.event_key, "total_requested": job.total_requested},
        )
        return job

    @async_timed(repository="ReplayJobRepository", method="add_items")
    async def add_items(self, items: List[Dict[str, Any]]) -> List[ReplayItem]:
        """Inserts items in the given order and returns them with ids assigned."""
        if not items:
            return []
        rows = [ReplayItem(**values) for values in items]
        self.db.add_all(rows)
        await self.db.flush()
        return rows

    @async_timed(repository="ReplayJobRepository", method="record_attempts")
    async def record_attempts(self, attempts: List[Dict[str, Any]]) -> int:
        """
        Applies one downstream attempt per entry:
        {'item_id': int, 'status': str, 'emitted_id': str|None, 'last_error': str|None, 'attempted_at': datetime}
        attempt_count is incremented in the database, never set.
        """
        updated = 0
        for attempt in attempts:
            stmt = (
                update(ReplayItem)
                .where(ReplayItem.id == attempt["item_id"])
                .values(
                    status=attempt["status"],
                    emitted_id=attempt.get("emitted_id"),
                    last_error=attempt.get("last_error"),
                    last_attempt_at=attempt["attempted_at"],
                    updated_at=attempt["attempted_at"],
                    attempt_count=ReplayItem.attempt_count + 1,
                )
                .execution_options(synchronize_session=False)
            )
            result = await self.db.execute(stmt)
            updated += result.rowcount or 0
        return updated

    @async_timed(repository="ReplayJobRepository", method="count_items_by_status")
    async def count_items_by_status(self, job_id: str) -> Dict[str, int]:
        stmt = (
            select(ReplayItem.status, func.count(ReplayItem.id))
            .where(ReplayItem.job_id == job_id)
            .group_by(ReplayItem.status)
        )
        result = await self.db.execute(stmt)
        return {status: int(count) for status, count in result.all()}

    @async_timed(repository="ReplayJobRepository", method="finalize_job")
    async def finalize_job(
        self,
        job_id: str,
        status: str,
        succeeded: int,
        failed: int,
        queued: int,
        completed_at: datetime,
    ) -> None:
        stmt = (
            update(ReplayJob)
            .where(ReplayJob.id == job_id)
            .values(
                status=status,
                succeeded_count=succeeded,
                failed_count=failed,
                queued_count=queued,
                completed_at=completed_at,
            )
        )
        await self.db.execute(stmt)

    # --- queries ----------------------------------------------------------------

    def _filters(
        self,
        search: Optional[str] = None,
        status: Optional[str] = None,
        event_key: Optional[str] = None,
        requested_by: Optional[str] = None,
    ) -> list:
        conditions = []
        if status:
            conditions.append(ReplayJob.status == status)
        if event_key:
            conditions.append(ReplayJob.event_key == event_key)
        if requested_by:
            conditions.append(ReplayJob.requested_by == requested_by)
        if search and search.strip():
            term = search.strip()
            pattern = f"%{term}%"
            item_match = [
                ReplayItem.trace_id == term,
                ReplayItem.message_key == term,
            ]
            if term.isdigit():
                item_match.append(ReplayItem.record_id == int(term))
            conditions.append(
                or_(
                    ReplayJob.id.ilike(pattern),
                    ReplayJob.reason.ilike(pattern),
                    ReplayJob.requested_by.ilike(pattern),
                    exists().where(and_(ReplayItem.job_id == ReplayJob.id, or_(*item_match))),
                )
            )
        return conditions

    @async_timed(repository="ReplayJobRepository", method="list_jobs")
    async def list_jobs(self, page: int = 0, size: int = 10, **filters: Optional[str]) -> List[ReplayJob]:
        stmt = (
            select(ReplayJob)
            .where(*self._filters(**filters))
            .order_by(ReplayJob.created_at.desc(), ReplayJob.id.desc())
            .offset(page * size)
            .limit(size)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    @async_timed(repository="ReplayJobRepository", method="count_jobs")
    async def count_jobs(self, **filters: Optional[str]) -> int:
        stmt = select(func.count(ReplayJob.id)).where(*self._filters(**filters))
        return int((await self.db.execute(stmt)).scalar() or 0)

    @async_timed(repository="ReplayJobRepository", method="get_stats")
    async def get_stats(self, **filters: Optional[str]) -> Dict[str, Any]:
        duration_ms = func.extract("epoch", ReplayJob.completed_at - ReplayJob.created_at) * 1000
        stmt = select(
            func.coalesce(func.sum(ReplayJob.total_requested), 0),
            func.coalesce(func.sum(ReplayJob.succeeded_count), 0),
            func.coalesce(func.sum(ReplayJob.failed_count), 0),
            func.coalesce(func.sum(ReplayJob.queued_count), 0),
            func.avg(duration_ms),
            func.max(ReplayJob.created_at),
        ).where(*self._filters(**filters))
        total, replayed, failed, queued, avg_ms, latest_at = (await self.db.execute(stmt)).one()
        return {
            "total": int(total),
            "replayed": int(replayed),
            "failed": int(failed),
            "queued": int(queued),
            "avg_duration_ms": float(avg_ms) if avg_ms is not None else None,
            "latest_at": latest_at,
        }

    @async_timed(repository="ReplayJobRepository", method="list_operators")
    async def list_operators(self) -> List[str]:
        stmt = (
            select(ReplayJob.requested_by)
            .where(ReplayJob.requested_by.is_not(None))
            .distinct()
            .order_by(ReplayJob.requested_by)
        )
        return list((await self.db.execute(stmt)).scalars().all())

    @async_timed(repository="ReplayJobRepository", method="list_event_keys")
    async def list_event_keys(self) -> List[str]:
        stmt = select(ReplayJob.event_key).distinct().order_by(ReplayJob.event_key)
        return list((await self.db.execute(stmt)).scalars().all())

    @async_timed(repository="ReplayJobRepository", method="get_job")
    async def get_job(self, job_id: str) -> Optional[ReplayJob]:
        stmt = select(ReplayJob).where(ReplayJob.id == job_id)
        return (await self.db.execute(stmt)).scalars().first()

    @async_timed(repository="ReplayJobRepository", method="get_items")
    async def get_items(self, job_id: str) -> List[ReplayItem]:
        stmt = select(ReplayItem).where(ReplayItem.job_id == job_id).order_by(ReplayItem.id.asc())
        return list((await self.db.execute(stmt)).scalars().all())

    # --- audit retention --------------------------------------------------------

    def _purgeable_jobs(self, cutoff: datetime):
        return select(ReplayJob.id).where(
            ReplayJob.created_at < cutoff,
            ReplayJob.status.in_(TERMINAL_JOB_STATUSES),
        )

    @async_timed(repository="ReplayJobRepository", method="count_purgeable_items")
    async def count_purgeable_items(self, cutoff: datetime) -> int:
        stmt = select(func.count(ReplayItem.id)).where(ReplayItem.job_id.in_(self._purgeable_jobs(cutoff)))
        return int((await self.db.execute(stmt)).scalar() or 0)

    @async_timed(repository="ReplayJobRepository", method="count_purgeable_jobs")
    async def count_purgeable_jobs(self, cutoff: datetime) -> int:
        stmt = select(func.count()).select_from(self._purgeable_jobs(cutoff).subquery())
        return int((await self.db.execute(stmt)).scalar() or 0)

    @async_timed(repository="ReplayJobRepository", method="purge_items_batch")
    async def purge_items_batch(self, cutoff: datetime, batch_size: int) -> int:
        doomed = (
            select(ReplayItem.id)
            .where(ReplayItem.job_id.in_(self._purgeable_jobs(cutoff)))
            .order_by(ReplayItem.id)
            .limit(batch_size)
            .correlate(None)
        )
        result = await self.db.execute(delete(ReplayItem).where(ReplayItem.id.in_(doomed)))
        return int(result.rowcount or 0)

    @async_timed(repository="ReplayJobRepository", method="purge_jobs_batch")
    async def purge_jobs_batch(self, cutoff: datetime, batch_size: int) -> int:
        """Deletes terminal jobs whose items are already gone."""
        doomed = (
            self._purgeable_jobs(cutoff)
            .where(~exists().where(ReplayItem.job_id == ReplayJob.id))
            .order_by(ReplayJob.id)
            .limit(batch_size)
            .correlate(None)
        )
        result = await self.db.execute(delete(ReplayJob).where(ReplayJob.id.in_(doomed)))
        return int(result.rowcount or 0)
