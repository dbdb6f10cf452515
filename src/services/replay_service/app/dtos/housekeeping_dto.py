# src/services/replay_service/app/dtos/housekeeping_dto.py
from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class HousekeepingRunItemRecord(BaseModel):
    event_key: str = Field(..., alias="eventKey", description="Event key, or audit table name for audit job types.")
    deleted_success: int = Field(..., alias="deletedSuccess")
    deleted_failure: int = Field(..., alias="deletedFailure")
    deleted_total: int = Field(..., alias="deletedTotal")

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)


class HousekeepingRunRecord(BaseModel):
    id: str
    job_type: str = Field(..., alias="jobType", examples=["RETENTION"])
    event_key: str = Field(..., alias="eventKey", examples=["ALL"])
    trigger_type: str = Field(..., alias="triggerType", examples=["MANUAL"])
    run_date: date = Field(..., alias="runDate")
    attempt: int
    status: str
    cutoff_date: date = Field(..., alias="cutoffDate")
    started_at: datetime = Field(..., alias="startedAt")
    completed_at: Optional[datetime] = Field(None, alias="completedAt")
    duration_ms: Optional[int] = Field(None, alias="durationMs")
    deleted_success: int = Field(0, alias="deletedSuccess")
    deleted_failure: int = Field(0, alias="deletedFailure")
    deleted_total: int = Field(0, alias="deletedTotal")
    error_message: Optional[str] = Field(None, alias="errorMessage")
    event_count: Optional[int] = Field(None, alias="eventCount")
    event_keys: Optional[str] = Field(None, alias="eventKeys", description="Comma separated item keys.")
    items: Optional[List[HousekeepingRunItemRecord]] = None

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)


class HousekeepingRunSummary(BaseModel):
    job_type: str = Field(..., alias="jobType")
    run_date: date = Field(..., alias="runDate")
    event_key: str = Field(..., alias="eventKey")
    attempts: int
    deleted_success: int = Field(..., alias="deletedSuccess")
    deleted_failure: int = Field(..., alias="deletedFailure")
    deleted_total: int = Field(..., alias="deletedTotal")
    latest_attempt: int = Field(..., alias="latestAttempt")
    latest_status: str = Field(..., alias="latestStatus")
    latest_trigger_type: str = Field(..., alias="latestTriggerType")
    latest_completed_at: Optional[datetime] = Field(None, alias="latestCompletedAt")
    latest_duration_ms: Optional[int] = Field(None, alias="latestDurationMs")
    latest_error_message: Optional[str] = Field(None, alias="latestErrorMessage")

    model_config = ConfigDict(populate_by_name=True)


class HousekeepingDailyRecord(BaseModel):
    job_type: str = Field(..., alias="jobType")
    event_key: str = Field(..., alias="eventKey")
    run_date: date = Field(..., alias="runDate")
    retention_days: int = Field(..., alias="retentionDays")
    cutoff_date: date = Field(..., alias="cutoffDate")
    snapshot_at: datetime = Field(..., alias="snapshotAt")
    eligible_success: int = Field(..., alias="eligibleSuccess")
    eligible_failure: int = Field(..., alias="eligibleFailure")
    eligible_total: int = Field(..., alias="eligibleTotal")
    last_status: str = Field(..., alias="lastStatus")
    last_run_id: Optional[str] = Field(None, alias="lastRunId")
    last_attempt: int = Field(..., alias="lastAttempt")
    last_started_at: Optional[datetime] = Field(None, alias="lastStartedAt")
    last_completed_at: Optional[datetime] = Field(None, alias="lastCompletedAt")
    last_error: Optional[str] = Field(None, alias="lastError")

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)


class HousekeepingPreviewEvent(BaseModel):
    event_key: str = Field(..., alias="eventKey")
    deleted_success: int = Field(..., alias="deletedSuccess")
    deleted_failure: int = Field(..., alias="deletedFailure")
    deleted_total: int = Field(..., alias="deletedTotal")
    next_run_at: Optional[datetime] = Field(None, alias="nextRunAt")

    model_config = ConfigDict(populate_by_name=True)


class HousekeepingPreviewResponse(BaseModel):
    """Rows a run would delete right now; counts use the deleted* names the dashboard expects."""
    cutoff_date: date = Field(..., alias="cutoffDate")
    retention_days: int = Field(..., alias="retentionDays")
    snapshot_at: datetime = Field(..., alias="snapshotAt")
    deleted_success: int = Field(..., alias="deletedSuccess")
    deleted_failure: int = Field(..., alias="deletedFailure")
    deleted_total: int = Field(..., alias="deletedTotal")
    next_run_at: Optional[datetime] = Field(None, alias="nextRunAt")
    events: List[HousekeepingPreviewEvent] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True)
