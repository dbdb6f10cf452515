# src/services/replay_service/app/routers/housekeeping.py
import logging
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Path, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from replay_common.config import HOUSEKEEPING_TICK_INTERVAL_MINUTES
from replay_common.db import get_async_db_session
from replay_common.housekeeping.engine import HousekeepingEngine
from replay_common.housekeeping.schedule import next_tick_at
from replay_common.utils import utc_now
from ..dtos.housekeeping_dto import (
    HousekeepingDailyRecord,
    HousekeepingPreviewResponse,
    HousekeepingRunRecord,
    HousekeepingRunSummary,
)
from ..services.housekeeping_query_service import (
    HousekeepingQueryService,
    to_preview_response,
    to_run_record,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/housekeeping", tags=["Housekeeping"])


def get_housekeeping_engine() -> HousekeepingEngine:
    return HousekeepingEngine()


def get_housekeeping_query_service(db: AsyncSession = Depends(get_async_db_session)) -> HousekeepingQueryService:
    return HousekeepingQueryService(db)


@router.post(
    "/run",
    response_model=HousekeepingRunRecord,
    responses={
        status.HTTP_400_BAD_REQUEST: {"description": "Unknown job type or event key."},
        status.HTTP_409_CONFLICT: {"description": "An attempt for this scope is already running."},
    },
    summary="Run a housekeeping attempt now",
)
async def run_housekeeping(
    job_type: str = Query("RETENTION", alias="jobType"),
    event_key: Optional[str] = Query(None, alias="eventKey"),
    engine: HousekeepingEngine = Depends(get_housekeeping_engine),
):
    """
    Refreshes today's eligibility snapshot and executes the next attempt.
    A FAILED attempt is still returned with status 200.
    """
    outcome = await engine.run_now(job_type, event_key)
    return to_run_record(outcome)


@router.get(
    "/preview",
    response_model=HousekeepingPreviewResponse,
    summary="Preview rows eligible for deletion",
)
async def preview_housekeeping(
    job_type: str = Query("RETENTION", alias="jobType"),
    event_key: Optional[str] = Query(None, alias="eventKey"),
    engine: HousekeepingEngine = Depends(get_housekeeping_engine),
):
    snapshot = await engine.preview(job_type, event_key)
    return to_preview_response(snapshot, next_tick_at(utc_now(), HOUSEKEEPING_TICK_INTERVAL_MINUTES))


@router.get("/daily", response_model=List[HousekeepingDailyRecord], summary="Recent daily snapshot rows")
async def list_daily(
    limit: int = Query(14, ge=1, le=366),
    job_type: Optional[str] = Query(None, alias="jobType"),
    event_key: Optional[str] = Query(None, alias="eventKey"),
    service: HousekeepingQueryService = Depends(get_housekeeping_query_service),
):
    return await service.list_daily(limit, job_type=job_type, event_key=event_key)


@router.get(
    "/daily/{run_date}/runs",
    response_model=List[HousekeepingRunRecord],
    summary="Attempts recorded for one run date",
)
async def list_runs_for_date(
    run_date: date = Path(..., description="Run date (YYYY-MM-DD)."),
    job_type: Optional[str] = Query(None, alias="jobType"),
    event_key: Optional[str] = Query(None, alias="eventKey"),
    service: HousekeepingQueryService = Depends(get_housekeeping_query_service),
):
    return await service.list_runs_for_date(run_date, job_type=job_type, event_key=event_key)


@router.get(
    "/runs/summary",
    response_model=List[HousekeepingRunSummary],
    summary="Run history grouped by run date and event key",
)
async def summarize_runs(
    limit: int = Query(20, ge=1, le=500),
    offset: int = Query(0, ge=0),
    job_type: Optional[str] = Query(None, alias="jobType"),
    event_key: Optional[str] = Query(None, alias="eventKey"),
    service: HousekeepingQueryService = Depends(get_housekeeping_query_service),
):
    return await service.summarize_runs(limit, offset, job_type=job_type, event_key=event_key)


@router.get(
    "/status",
    response_model=Optional[HousekeepingRunRecord],
    summary="Latest attempt with its per-item breakdown",
)
async def housekeeping_status(
    run_date: Optional[date] = Query(None, alias="date"),
    job_type: Optional[str] = Query(None, alias="jobType"),
    event_key: Optional[str] = Query(None, alias="eventKey"),
    service: HousekeepingQueryService = Depends(get_housekeeping_query_service),
):
    return await service.get_status(run_date=run_date, job_type=job_type, event_key=event_key)
