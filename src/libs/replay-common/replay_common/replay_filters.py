# src/libs/replay-common/replay_common/replay_filters.py
from datetime import date, datetime, time
from typing import Any, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from sqlalchemy import Table
from sqlalchemy.sql.elements import ColumnElement

from .exceptions import InvalidSelection

END_OF_DAY = time(23, 59, 59, 999999)


class ReplayFilterSpec(BaseModel):
    """
    Versioned filter predicate for FILTERS-mode replay selections.

    Stored as JSON (camelCase keys) in replay_jobs.filters_json, together with
    the job's snapshot_at, so the candidate set can be re-evaluated later.
    """
    version: Literal[1] = 1
    trace_id: Optional[str] = Field(None, alias="traceId")
    message_key: Optional[str] = Field(None, alias="messageKey")
    account_number: Optional[str] = Field(None, alias="accountNumber")
    exception_type: Optional[str] = Field(None, alias="exceptionType")
    retriable: Optional[bool] = None
    retry_attempt_min: Optional[int] = Field(None, alias="retryAttemptMin", ge=0)
    retry_attempt_max: Optional[int] = Field(None, alias="retryAttemptMax", ge=0)
    latency_min: Optional[int] = Field(None, alias="latencyMin", ge=0)
    latency_max: Optional[int] = Field(None, alias="latencyMax", ge=0)
    received_latency_min: Optional[int] = Field(None, alias="receivedLatencyMin", ge=0)
    received_latency_max: Optional[int] = Field(None, alias="receivedLatencyMax", ge=0)
    from_date: Optional[date] = Field(None, alias="fromDate")
    to_date: Optional[date] = Field(None, alias="toDate")
    from_time: Optional[time] = Field(None, alias="fromTime")
    to_time: Optional[time] = Field(None, alias="toTime")

    model_config = ConfigDict(extra="forbid", populate_by_name=True, frozen=True)

    @field_validator("*", mode="before")
    @classmethod
    def blank_to_none(cls, value: Any) -> Any:
        # The dashboard sends "" for untouched inputs.
        if isinstance(value, str) and not value.strip():
            return None
        if isinstance(value, str):
            return value.strip()
        return value

    @model_validator(mode="after")
    def check_ranges(self) -> "ReplayFilterSpec":
        for low, high, label in (
            (self.retry_attempt_min, self.retry_attempt_max, "retryAttempt"),
            (self.latency_min, self.latency_max, "latency"),
            (self.received_latency_min, self.received_latency_max, "receivedLatency"),
            (self.from_date, self.to_date, "date"),
        ):
            if low is not None and high is not None and low > high:
                raise ValueError(f"{label} range is inverted")
        return self

    @classmethod
    def parse(cls, raw: Optional[dict]) -> "ReplayFilterSpec":
        """Validates a request body's filters, raising InvalidSelection on bad input."""
        try:
            return cls.model_validate(raw or {})
        except ValidationError as e:
            raise InvalidSelection(f"Invalid replay filters: {e.errors(include_url=False)}") from e

    @classmethod
    def from_json(cls, raw: str) -> "ReplayFilterSpec":
        return cls.model_validate_json(raw)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)

    def window(self, day: date) -> Tuple[datetime, datetime]:
        """Inclusive event_datetime window, defaulting to the whole context day."""
        start = datetime.combine(self.from_date or day, self.from_time or time.min)
        end = datetime.combine(self.to_date or day, self.to_time or END_OF_DAY)
        if self.to_time is not None and self.to_time.second == 0 and self.to_time.microsecond == 0:
            # "HH:MM" from the dashboard covers the whole minute
            end = end.replace(second=59, microsecond=999999)
        return start, end

    def conditions(self, failure_table: Table, day: date, snapshot_at: datetime) -> List[ColumnElement]:
        c = failure_table.c
        start, end = self.window(day)
        clauses: List[ColumnElement] = [
            c.event_datetime >= start,
            c.event_datetime <= end,
            c.created_at <= snapshot_at,
        ]
        if self.trace_id:
            clauses.append(c.event_trace_id == self.trace_id)
        if self.message_key:
            clauses.append(c.message_key == self.message_key)
        if self.account_number:
            clauses.append(c.account_number == self.account_number)
        if self.exception_type:
            clauses.append(c.exception_type == self.exception_type)
        if self.retriable is not None:
            clauses.append(c.retriable == (1 if self.retriable else 0))
        for column, low, high in (
            (c.retry_attempt, self.retry_attempt_min, self.retry_attempt_max),
            (c.latency_ms, self.latency_min, self.latency_max),
            (c.latency_event_received_ms, self.received_latency_min, self.received_latency_max),
        ):
            if low is not None:
                clauses.append(column >= low)
            if high is not None:
                clauses.append(column <= high)
        return clauses
