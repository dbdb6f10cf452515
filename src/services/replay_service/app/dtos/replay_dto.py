# src/services/replay_service/app/dtos/replay_dto.py
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ReplayRequest(BaseModel):
    """Explicit-id replay request sent by the failures table selection."""
    mode: str = Field("IDS", description="ID for a single record, IDS for a list.", examples=["IDS"])
    event_key: str = Field(..., alias="eventKey", examples=["payments.in"])
    day: date = Field(..., description="Context day of the failure records.", examples=["2026-03-14"])
    id: Optional[int] = Field(None, description="Record id when mode is ID.")
    ids: Optional[List[int]] = Field(None, description="Record ids when mode is IDS.")
    reason: Optional[str] = Field(None, max_length=255)

    model_config = ConfigDict(populate_by_name=True)


class ReplayJobRequest(BaseModel):
    """Filter-based replay request. `filters` uses the same keys as the failures query."""
    event_key: str = Field(..., alias="eventKey", examples=["payments.in"])
    day: date = Field(..., examples=["2026-03-14"])
    filters: Optional[Dict[str, Any]] = None
    reason: Optional[str] = Field(None, max_length=255)

    model_config = ConfigDict(populate_by_name=True)


class ReplaySubmissionResponse(BaseModel):
    requested: int = Field(..., description="Records targeted by the job.")
    failed: int = Field(..., description="Records that ended FAILED or NOT_FOUND.")


class ReplayJobRecord(BaseModel):
    replay_id: str = Field(..., alias="replayId")
    event_key: str = Field(..., alias="eventKey")
    selection_type: str = Field(..., alias="selectionType")
    total_requested: int = Field(..., alias="totalRequested")
    status: str
    requested_by: Optional[str] = Field(None, alias="requestedBy")
    reason: Optional[str] = None
    created_at: Optional[datetime] = Field(None, alias="createdAt")
    completed_at: Optional[datetime] = Field(None, alias="completedAt")
    succeeded: int
    failed: int
    queued: int

    model_config = ConfigDict(populate_by_name=True)


class ReplayJobItemRecord(BaseModel):
    record_id: int = Field(..., alias="recordId")
    status: str
    attempt_count: int = Field(..., alias="attemptCount")
    last_attempt_at: Optional[datetime] = Field(None, alias="lastAttemptAt")
    last_error: Optional[str] = Field(None, alias="lastError")
    emitted_id: Optional[str] = Field(None, alias="emittedId")
    trace_id: Optional[str] = Field(None, alias="traceId")
    message_key: Optional[str] = Field(None, alias="messageKey")
    account_number: Optional[str] = Field(None, alias="accountNumber")
    exception_type: Optional[str] = Field(None, alias="exceptionType")
    event_datetime: Optional[datetime] = Field(None, alias="eventDatetime")

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)


class ReplayAuditStats(BaseModel):
    total: int = 0
    replayed: int = 0
    failed: int = 0
    queued: int = 0
    avg_duration_ms: Optional[float] = Field(None, alias="avgDurationMs")
    latest_at: Optional[datetime] = Field(None, alias="latestAt")

    model_config = ConfigDict(populate_by_name=True)


class ReplayJobListResponse(BaseModel):
    jobs: List[ReplayJobRecord]
    page: int
    size: int
    total: int
    stats: Optional[ReplayAuditStats] = None
    operators: List[str] = Field(default_factory=list)
    event_keys: List[str] = Field(default_factory=list, alias="eventKeys")

    model_config = ConfigDict(populate_by_name=True)


class ReplayJobItemsResponse(BaseModel):
    items: List[ReplayJobItemRecord]
