# src/libs/replay-common/replay_common/database_models.py
from sqlalchemy import (
    Column, Integer, BigInteger,
    String, Text, DateTime,
    Date, func,
    ForeignKey, Index, PrimaryKeyConstraint, UniqueConstraint
)
from sqlalchemy.orm import relationship

from .db_base import Base

# Replay job lifecycle
JOB_RUNNING = "RUNNING"
JOB_COMPLETED = "COMPLETED"
JOB_PARTIAL = "PARTIAL"
JOB_FAILED = "FAILED"

# Replay item lifecycle
ITEM_QUEUED = "QUEUED"
ITEM_REPLAYED = "REPLAYED"
ITEM_FAILED = "FAILED"
ITEM_NOT_FOUND = "NOT_FOUND"

SELECTION_IDS = "IDS"
SELECTION_FILTERS = "FILTERS"

# Housekeeping
RUN_RUNNING = "RUNNING"
RUN_COMPLETED = "COMPLETED"
RUN_FAILED = "FAILED"
DAILY_SNAPSHOTTED = "SNAPSHOTTED"

TRIGGER_MANUAL = "MANUAL"
TRIGGER_SCHEDULED = "SCHEDULED"

SCOPE_ALL = "ALL"


class ReplayJob(Base):
    __tablename__ = 'replay_jobs'

    id = Column(String(64), primary_key=True)
    event_key = Column(String(64), nullable=False)
    day = Column(Date, nullable=False)
    selection_type = Column(String(32), nullable=False)
    filters_json = Column(Text, nullable=True)
    snapshot_at = Column(DateTime(timezone=True), nullable=False)
    requested_by = Column(String(128), nullable=True)
    reason = Column(String(255), nullable=True)
    total_requested = Column(Integer, nullable=False, default=0)
    status = Column(String(32), nullable=False)
    succeeded_count = Column(Integer, nullable=False, default=0)
    failed_count = Column(Integer, nullable=False, default=0)
    queued_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())
    completed_at = Column(DateTime(timezone=True), nullable=True)

    items = relationship("ReplayItem", back_populates="job", lazy="noload")

    __table_args__ = (
        Index('idx_replay_jobs_created_at', 'created_at'),
        Index('idx_replay_jobs_event_key', 'event_key'),
        Index('idx_replay_jobs_requested_by', 'requested_by'),
    )


class ReplayItem(Base):
    __tablename__ = 'replay_items'

    id = Column(BigInteger, primary_key=True, autoincrement=True)
    job_id = Column(String(64), ForeignKey('replay_jobs.id'), nullable=False)
    record_id = Column(BigInteger, nullable=False)
    event_key = Column(String(64), nullable=False)
    status = Column(String(32), nullable=False)
    attempt_count = Column(Integer, nullable=False, default=0)
    last_attempt_at = Column(DateTime(timezone=True), nullable=True)
    last_error = Column(Text, nullable=True)
    emitted_id = Column(String(128), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=True, onupdate=func.now())
    # Copied from the failure row at selection time
    trace_id = Column(String(64), nullable=True)
    message_key = Column(String(255), nullable=True)
    account_number = Column(String(64), nullable=True)
    exception_type = Column(String(255), nullable=True)
    event_datetime = Column(DateTime, nullable=True)
    source_payload = Column(Text, nullable=True)

    job = relationship("ReplayJob", back_populates="items")

    __table_args__ = (
        Index('idx_replay_items_job', 'job_id'),
        Index('idx_replay_items_record', 'record_id'),
        Index('idx_replay_items_event', 'event_key'),
        Index('idx_replay_items_job_status', 'job_id', 'status'),
        Index('idx_replay_items_job_record', 'job_id', 'record_id'),
        Index('idx_replay_items_job_trace', 'job_id', 'trace_id'),
    )


class HousekeepingRun(Base):
    __tablename__ = 'housekeeping_runs'

    id = Column(String(64), primary_key=True)
    job_type = Column(String(32), nullable=False)
    event_key = Column(String(64), nullable=False, default=SCOPE_ALL, server_default=SCOPE_ALL)
    trigger_type = Column(String(32), nullable=False)
    status = Column(String(32), nullable=False)
    cutoff_date = Column(Date, nullable=False)
    run_date = Column(Date, nullable=False)
    attempt = Column(Integer, nullable=False, default=1)
    started_at = Column(DateTime(timezone=True), nullable=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    duration_ms = Column(BigInteger, nullable=True)
    deleted_success = Column(BigInteger, nullable=False, default=0)
    deleted_failure = Column(BigInteger, nullable=False, default=0)
    deleted_total = Column(BigInteger, nullable=False, default=0)
    error_message = Column(Text, nullable=True)

    items = relationship("HousekeepingRunItem", back_populates="run", lazy="noload")

    __table_args__ = (
        Index('idx_housekeeping_runs_started', 'started_at'),
        Index('idx_housekeeping_runs_date', 'run_date', 'attempt'),
        Index('idx_housekeeping_runs_job_event_date', 'job_type', 'event_key', 'run_date', 'attempt'),
        UniqueConstraint('job_type', 'event_key', 'run_date', 'attempt', name='_housekeeping_run_attempt_uc'),
    )


class HousekeepingRunItem(Base):
    __tablename__ = 'housekeeping_run_items'

    run_id = Column(String(36), ForeignKey('housekeeping_runs.id', name='fk_housekeeping_run_items_run'), nullable=False)
    event_key = Column(String(64), nullable=False)
    deleted_success = Column(BigInteger, nullable=False)
    deleted_failure = Column(BigInteger, nullable=False)
    deleted_total = Column(BigInteger, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)

    run = relationship("HousekeepingRun", back_populates="items")

    __table_args__ = (
        PrimaryKeyConstraint('run_id', 'event_key'),
        Index('idx_housekeeping_run_items_event', 'event_key'),
    )


class HousekeepingDaily(Base):
    __tablename__ = 'housekeeping_daily'

    job_type = Column(String(32), nullable=False, default='RETENTION', server_default='RETENTION')
    event_key = Column(String(64), nullable=False, default=SCOPE_ALL, server_default=SCOPE_ALL)
    run_date = Column(Date, nullable=False)
    retention_days = Column(Integer, nullable=False)
    cutoff_date = Column(Date, nullable=False)
    snapshot_at = Column(DateTime(timezone=True), nullable=False)
    eligible_success = Column(BigInteger, nullable=False)
    eligible_failure = Column(BigInteger, nullable=False)
    eligible_total = Column(BigInteger, nullable=False)
    last_status = Column(String(32), nullable=False)
    last_run_id = Column(String(64), nullable=True)
    last_attempt = Column(Integer, nullable=False)
    last_started_at = Column(DateTime(timezone=True), nullable=True)
    last_completed_at = Column(DateTime(timezone=True), nullable=True)
    last_error = Column(Text, nullable=True)

    __table_args__ = (
        PrimaryKeyConstraint('job_type', 'event_key', 'run_date'),
        Index('idx_housekeeping_daily_status', 'last_status', 'run_date'),
        Index('idx_housekeeping_daily_job_status', 'job_type', 'last_status', 'run_date'),
        Index('idx_housekeeping_daily_job_event_status', 'job_type', 'event_key', 'last_status', 'run_date'),
    )
