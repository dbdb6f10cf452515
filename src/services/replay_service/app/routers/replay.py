# src/services/replay_service/app/routers/replay.py
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Path, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from replay_common.db import get_async_db_session
from replay_common.exceptions import InvalidSelection
from replay_common.replay_coordinator import ReplayJobCoordinator, ReplaySelection
from replay_common.replay_endpoint_client import get_replay_endpoint_client
from replay_common.replay_filters import ReplayFilterSpec
from ..dtos.replay_dto import (
    ReplayJobItemsResponse,
    ReplayJobListResponse,
    ReplayJobRequest,
    ReplayRequest,
    ReplaySubmissionResponse,
)
from ..services.replay_audit_service import ReplayAuditService, to_submission_response

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["Replay"])

DEFAULT_REQUESTED_BY = "dashboard"


def get_replay_coordinator() -> ReplayJobCoordinator:
    """Dependency injector for the ReplayJobCoordinator."""
    return ReplayJobCoordinator(client=get_replay_endpoint_client())


def get_replay_audit_service(db: AsyncSession = Depends(get_async_db_session)) -> ReplayAuditService:
    return ReplayAuditService(db)


@router.post(
    "/replay",
    response_model=ReplaySubmissionResponse,
    responses={status.HTTP_400_BAD_REQUEST: {"description": "Unknown event key or invalid selection."}},
    summary="Replay failed records by id",
)
async def replay_records(
    request: ReplayRequest,
    requested_by: Optional[str] = Header(None, alias="X-Requested-By"),
    coordinator: ReplayJobCoordinator = Depends(get_replay_coordinator),
):
    """
    Creates a replay job for one (mode ID) or several (mode IDS) failure
    records and drives it to completion before responding.
    """
    if request.mode.upper() not in ("ID", "IDS"):
        raise InvalidSelection(f"Unsupported replay mode '{request.mode}'; use ID or IDS.")
    ids = request.ids or []
    if not ids and request.id is not None:
        ids = [request.id]
    selection = ReplaySelection(
        mode=request.mode,
        event_key=request.event_key,
        day=request.day,
        ids=ids,
        requested_by=requested_by or DEFAULT_REQUESTED_BY,
        reason=request.reason,
    )
    logger.info(
        f"Received replay request for {len(ids)} record(s).",
        extra={"event_key": request.event_key, "mode": request.mode},
    )
    return to_submission_response(await coordinator.submit(selection))


@router.post(
    "/replay-jobs",
    response_model=ReplaySubmissionResponse,
    responses={status.HTTP_400_BAD_REQUEST: {"description": "Unknown event key, bad filters or selection too large."}},
    summary="Replay every failed record matching a filter",
)
async def replay_by_filters(
    request: ReplayJobRequest,
    requested_by: Optional[str] = Header(None, alias="X-Requested-By"),
    coordinator: ReplayJobCoordinator = Depends(get_replay_coordinator),
):
    """
    Freezes the matching failure set at request time and replays it. The
    filter and snapshot instant are stored on the job.
    """
    selection = ReplaySelection(
        mode="FILTERS",
        event_key=request.event_key,
        day=request.day,
        filters=ReplayFilterSpec.parse(request.filters),
        requested_by=requested_by or DEFAULT_REQUESTED_BY,
        reason=request.reason,
    )
    return to_submission_response(await coordinator.submit(selection))


@router.get(
    "/replay-jobs",
    response_model=ReplayJobListResponse,
    summary="List replay jobs with audit statistics",
)
async def list_replay_jobs(
    page: int = Query(0, ge=0, description="Zero-based page index."),
    size: int = Query(10, ge=1, le=200, description="Page size."),
    search: Optional[str] = Query(None, description="Matches job id, reason, operator, or an item's trace id, message key or record id."),
    status_filter: Optional[str] = Query(None, alias="status", description="Job status."),
    event_key: Optional[str] = Query(None, alias="eventKey"),
    requested_by: Optional[str] = Query(None, alias="requestedBy"),
    service: ReplayAuditService = Depends(get_replay_audit_service),
):
    return await service.list_jobs(
        page=page,
        size=size,
        search=search,
        status=status_filter,
        event_key=event_key,
        requested_by=requested_by,
    )


@router.get(
    "/replay-jobs/{replay_id}/items",
    response_model=ReplayJobItemsResponse,
    responses={status.HTTP_404_NOT_FOUND: {"description": "Replay job not found."}},
    summary="List the items of one replay job",
)
async def list_replay_job_items(
    replay_id: str = Path(..., description="Replay job id."),
    service: ReplayAuditService = Depends(get_replay_audit_service),
):
    return await service.get_job_items(replay_id)
