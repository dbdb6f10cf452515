# src/services/replay_service/app/services/housekeeping_query_service.py
import logging
from datetime import date, datetime
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from replay_common.housekeeping.models import EligibilitySnapshot, RunOutcome
from replay_common.housekeeping_repository import HousekeepingRepository
from ..dtos.housekeeping_dto import (
    HousekeepingDailyRecord,
    HousekeepingPreviewEvent,
    HousekeepingPreviewResponse,
    HousekeepingRunItemRecord,
    HousekeepingRunRecord,
    HousekeepingRunSummary,
)

logger = logging.getLogger(__name__)


def to_preview_response(snapshot: EligibilitySnapshot, next_run_at: Optional[datetime]) -> HousekeepingPreviewResponse:
    totals = snapshot.totals
    return HousekeepingPreviewResponse(
        cutoff_date=snapshot.cutoff_date,
        retention_days=snapshot.retention_days,
        snapshot_at=snapshot.snapshot_at,
        deleted_success=totals.success,
        deleted_failure=totals.failure,
        deleted_total=totals.total,
        next_run_at=next_run_at,
        events=[
            HousekeepingPreviewEvent(
                event_key=item_key,
                deleted_success=counts.success,
                deleted_failure=counts.failure,
                deleted_total=counts.total,
                next_run_at=next_run_at,
            )
            for item_key, counts in snapshot.per_item.items()
        ],
    )


def to_run_record(outcome: RunOutcome) -> HousekeepingRunRecord:
    items = [
        HousekeepingRunItemRecord(
            event_key=item_key,
            deleted_success=counts.success,
            deleted_failure=counts.failure,
            deleted_total=counts.total,
        )
        for item_key, counts in outcome.per_item.items()
    ]
    return HousekeepingRunRecord(
        id=outcome.run_id,
        job_type=outcome.job_type,
        event_key=outcome.event_key,
        trigger_type=outcome.trigger_type,
        run_date=outcome.run_date,
        attempt=outcome.attempt,
        status=outcome.status,
        cutoff_date=outcome.cutoff_date,
        started_at=outcome.started_at,
        completed_at=outcome.completed_at,
        duration_ms=outcome.duration_ms,
        deleted_success=outcome.deleted.success,
        deleted_failure=outcome.deleted.failure,
        deleted_total=outcome.deleted.total,
        error_message=outcome.error_message,
        event_count=len(items),
        event_keys=",".join(outcome.item_keys) or None,
        items=items,
    )


class HousekeepingQueryService:
    def __init__(self, db: AsyncSession):
        self.repo = HousekeepingRepository(db)

    async def list_daily(
        self, limit: int, job_type: Optional[str] = None, event_key: Optional[str] = None
    ) -> List[HousekeepingDailyRecord]:
        rows = await self.repo.list_daily(limit=limit, job_type=job_type, event_key=event_key)
        return [HousekeepingDailyRecord.model_validate(row) for row in rows]

    async def list_runs_for_date(
        self, run_date: date, job_type: Optional[str] = None, event_key: Optional[str] = None
    ) -> List[HousekeepingRunRecord]:
        runs = await self.repo.list_runs_for_date(run_date, job_type=job_type, event_key=event_key)
        item_summary = await self.repo.summarize_run_items([run.id for run in runs])
        records = []
        for run in runs:
            record = HousekeepingRunRecord.model_validate(run)
            summary = item_summary.get(run.id)
            record.event_count = summary["event_count"] if summary else 0
            record.event_keys = summary["event_keys"] if summary else None
            records.append(record)
        return records

    async def summarize_runs(
        self, limit: int, offset: int, job_type: Optional[str] = None, event_key: Optional[str] = None
    ) -> List[HousekeepingRunSummary]:
        rows = await self.repo.summarize_runs(limit=limit, offset=offset, job_type=job_type, event_key=event_key)
        return [HousekeepingRunSummary(**row) for row in rows]

    async def get_status(
        self,
        run_date: Optional[date] = None,
        job_type: Optional[str] = None,
        event_key: Optional[str] = None,
    ) -> Optional[HousekeepingRunRecord]:
        """Latest attempt (optionally for one day) with its per-item breakdown, or None."""
        run = await self.repo.get_latest_run(run_date=run_date, job_type=job_type, event_key=event_key)
        if run is None:
            return None
        items = await self.repo.get_run_items(run.id)
        record = HousekeepingRunRecord.model_validate(run)
        record.items = [HousekeepingRunItemRecord.model_validate(item) for item in items]
        record.event_count = len(items)
        record.event_keys = ",".join(item.event_key for item in items) or None
        return record
