# src/services/replay_service/app/services/replay_audit_service.py
import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from replay_common.exceptions import ReplayJobNotFound
from replay_common.replay_coordinator import ReplaySubmission
from replay_common.replay_job_repository import ReplayJobRepository
from ..dtos.replay_dto import (
    ReplayAuditStats,
    ReplayJobItemRecord,
    ReplayJobItemsResponse,
    ReplayJobListResponse,
    ReplayJobRecord,
    ReplaySubmissionResponse,
)

logger = logging.getLogger(__name__)


def to_submission_response(submission: ReplaySubmission) -> ReplaySubmissionResponse:
    return ReplaySubmissionResponse(requested=submission.requested, failed=submission.failed)


class ReplayAuditService:
    """Read-only projections over replay jobs and items for the audit screen."""

    def __init__(self, db: AsyncSession):
        self.repo = ReplayJobRepository(db)

    async def list_jobs(
        self,
        page: int = 0,
        size: int = 10,
        search: Optional[str] = None,
        status: Optional[str] = None,
        event_key: Optional[str] = None,
        requested_by: Optional[str] = None,
    ) -> ReplayJobListResponse:
        filters = {
            "search": search,
            "status": status,
            "event_key": event_key,
            "requested_by": requested_by,
        }
        jobs = await self.repo.list_jobs(page=page, size=size, **filters)
        total = await self.repo.count_jobs(**filters)
        stats = await self.repo.get_stats(**filters)
        operators = await self.repo.list_operators()
        event_keys = await self.repo.list_event_keys()

        return ReplayJobListResponse(
            jobs=[
                ReplayJobRecord(
                    replay_id=job.id,
                    event_key=job.event_key,
                    selection_type=job.selection_type,
                    total_requested=job.total_requested,
                    status=job.status,
                    requested_by=job.requested_by,
                    reason=job.reason,
                    created_at=job.created_at,
                    completed_at=job.completed_at,
                    succeeded=job.succeeded_count,
                    failed=job.failed_count,
                    queued=job.queued_count,
                )
                for job in jobs
            ],
            page=page,
            size=size,
            total=total,
            stats=ReplayAuditStats(**stats),
            operators=operators,
            event_keys=event_keys,
        )

    async def get_job_items(self, job_id: str) -> ReplayJobItemsResponse:
        job = await self.repo.get_job(job_id)
        if job is None:
            raise ReplayJobNotFound(job_id)
        items = await self.repo.get_items(job_id)
        return ReplayJobItemsResponse(items=[ReplayJobItemRecord.model_validate(item) for item in items])
