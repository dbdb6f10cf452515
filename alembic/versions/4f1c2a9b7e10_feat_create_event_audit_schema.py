"""feat: create replay and housekeeping audit tables and event table pairs

Revision ID: 4f1c2a9b7e10
Revises:
Create Date: 2026-10-18 09:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "4f1c2a9b7e10"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# Event catalog at the time of this revision; later keys get their own revision.
EVENT_TABLE_PREFIXES = (
    "payments_in",
    "loans_in",
    "cards_in",
    "accounts_in",
    "transfers_in",
    "alerts_in",
    "kyc_in",
    "fraud_in",
    "statements_in",
    "limits_in",
)


def _event_columns():
    return [
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("event_datetime", sa.DateTime(), nullable=False),
        sa.Column("event_trace_id", sa.String(length=64), nullable=True),
        sa.Column("account_number", sa.String(length=64), nullable=True),
        sa.Column("customer_type", sa.String(length=32), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("source_topic", sa.String(length=255), nullable=True),
        sa.Column("source_partition_id", sa.Integer(), nullable=True),
        sa.Column("source_offset", sa.BigInteger(), nullable=True),
        sa.Column("message_key", sa.String(length=255), nullable=True),
        sa.Column("source_payload", sa.Text(), nullable=True),
        sa.Column("transformed_payload", sa.Text(), nullable=True),
        sa.Column("latency_ms", sa.BigInteger(), nullable=True),
        sa.Column("latency_event_received_ms", sa.BigInteger(), nullable=True),
    ]


def _target_columns():
    return [
        sa.Column("target_topic", sa.String(length=255), nullable=True),
        sa.Column("target_partition_id", sa.Integer(), nullable=True),
        sa.Column("target_offset", sa.BigInteger(), nullable=True),
    ]


def upgrade() -> None:
    op.create_table(
        "replay_jobs",
        sa.Column("id", sa.String(length=64), nullable=False),
        sa.Column("event_key", sa.String(length=64), nullable=False),
        sa.Column("day", sa.Date(), nullable=False),
        sa.Column("selection_type", sa.String(length=32), nullable=False),
        sa.Column("filters_json", sa.Text(), nullable=True),
        sa.Column("snapshot_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("requested_by", sa.String(length=128), nullable=True),
        sa.Column("reason", sa.String(length=255), nullable=True),
        sa.Column("total_requested", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("succeeded_count", sa.Integer(), nullable=False),
        sa.Column("failed_count", sa.Integer(), nullable=False),
        sa.Column("queued_count", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_replay_jobs_created_at", "replay_jobs", ["created_at"], unique=False)
    op.create_index("idx_replay_jobs_event_key", "replay_jobs", ["event_key"], unique=False)
    op.create_index("idx_replay_jobs_requested_by", "replay_jobs", ["requested_by"], unique=False)

    op.create_table(
        "replay_items",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("job_id", sa.String(length=64), nullable=False),
        sa.Column("record_id", sa.BigInteger(), nullable=False),
        sa.Column("event_key", sa.String(length=64), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("attempt_count", sa.Integer(), nullable=False),
        sa.Column("last_attempt_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("emitted_id", sa.String(length=128), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("trace_id", sa.String(length=64), nullable=True),
        sa.Column("message_key", sa.String(length=255), nullable=True),
        sa.Column("account_number", sa.String(length=64), nullable=True),
        sa.Column("exception_type", sa.String(length=255), nullable=True),
        sa.Column("event_datetime", sa.DateTime(), nullable=True),
        sa.Column("source_payload", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(["job_id"], ["replay_jobs.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_replay_items_job", "replay_items", ["job_id"], unique=False)
    op.create_index("idx_replay_items_record", "replay_items", ["record_id"], unique=False)
    op.create_index("idx_replay_items_event", "replay_items", ["event_key"], unique=False)
    op.create_index("idx_replay_items_job_status", "replay_items", ["job_id", "status"], unique=False)
    op.create_index("idx_replay_items_job_record", "replay_items", ["job_id", "record_id"], unique=False)
    op.create_index("idx_replay_items_job_trace", "replay_items", ["job_id", "trace_id"], unique=False)

    op.create_table(
        "housekeeping_runs",
        sa.Column("id", sa.String(length=64), nullable=False),
        sa.Column("job_type", sa.String(length=32), nullable=False),
        sa.Column("event_key", sa.String(length=64), server_default="ALL", nullable=False),
        sa.Column("trigger_type", sa.String(length=32), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("cutoff_date", sa.Date(), nullable=False),
        sa.Column("run_date", sa.Date(), nullable=False),
        sa.Column("attempt", sa.Integer(), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("duration_ms", sa.BigInteger(), nullable=True),
        sa.Column("deleted_success", sa.BigInteger(), nullable=False),
        sa.Column("deleted_failure", sa.BigInteger(), nullable=False),
        sa.Column("deleted_total", sa.BigInteger(), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("job_type", "event_key", "run_date", "attempt", name="_housekeeping_run_attempt_uc"),
    )
    op.create_index("idx_housekeeping_runs_started", "housekeeping_runs", ["started_at"], unique=False)
    op.create_index("idx_housekeeping_runs_date", "housekeeping_runs", ["run_date", "attempt"], unique=False)
    op.create_index(
        "idx_housekeeping_runs_job_event_date",
        "housekeeping_runs",
        ["job_type", "event_key", "run_date", "attempt"],
        unique=False,
    )

    op.create_table(
        "housekeeping_run_items",
        sa.Column("run_id", sa.String(length=36), nullable=False),
        sa.Column("event_key", sa.String(length=64), nullable=False),
        sa.Column("deleted_success", sa.BigInteger(), nullable=False),
        sa.Column("deleted_failure", sa.BigInteger(), nullable=False),
        sa.Column("deleted_total", sa.BigInteger(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["run_id"], ["housekeeping_runs.id"], name="fk_housekeeping_run_items_run"),
        sa.PrimaryKeyConstraint("run_id", "event_key"),
    )
    op.create_index("idx_housekeeping_run_items_event", "housekeeping_run_items", ["event_key"], unique=False)

    op.create_table(
        "housekeeping_daily",
        sa.Column("job_type", sa.String(length=32), server_default="RETENTION", nullable=False),
        sa.Column("event_key", sa.String(length=64), server_default="ALL", nullable=False),
        sa.Column("run_date", sa.Date(), nullable=False),
        sa.Column("retention_days", sa.Integer(), nullable=False),
        sa.Column("cutoff_date", sa.Date(), nullable=False),
        sa.Column("snapshot_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("eligible_success", sa.BigInteger(), nullable=False),
        sa.Column("eligible_failure", sa.BigInteger(), nullable=False),
        sa.Column("eligible_total", sa.BigInteger(), nullable=False),
        sa.Column("last_status", sa.String(length=32), nullable=False),
        sa.Column("last_run_id", sa.String(length=64), nullable=True),
        sa.Column("last_attempt", sa.Integer(), nullable=False),
        sa.Column("last_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint("job_type", "event_key", "run_date"),
    )
    op.create_index("idx_housekeeping_daily_status", "housekeeping_daily", ["last_status", "run_date"], unique=False)
    op.create_index(
        "idx_housekeeping_daily_job_status",
        "housekeeping_daily",
        ["job_type", "last_status", "run_date"],
        unique=False,
    )
    op.create_index(
        "idx_housekeeping_daily_job_event_status",
        "housekeeping_daily",
        ["job_type", "event_key", "last_status", "run_date"],
        unique=False,
    )

    for prefix in EVENT_TABLE_PREFIXES:
        op.create_table(
            f"{prefix}_success",
            *_event_columns(),
            sa.Column("latency_event_sent_ms", sa.BigInteger(), nullable=True),
            *_target_columns(),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index(
            f"idx_{prefix}_success_event_dt_trace", f"{prefix}_success", ["event_datetime", "event_trace_id"], unique=False
        )
        op.create_table(
            f"{prefix}_failure",
            *_event_columns(),
            *_target_columns(),
            sa.Column("exception_type", sa.String(length=255), nullable=True),
            sa.Column("exception_message", sa.Text(), nullable=True),
            sa.Column("exception_stack", sa.Text(), nullable=True),
            sa.Column("retriable", sa.SmallInteger(), nullable=True),
            sa.Column("retry_attempt", sa.Integer(), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index(
            f"idx_{prefix}_failure_event_dt_trace", f"{prefix}_failure", ["event_datetime", "event_trace_id"], unique=False
        )


def downgrade() -> None:
    for prefix in reversed(EVENT_TABLE_PREFIXES):
        op.drop_index(f"idx_{prefix}_failure_event_dt_trace", table_name=f"{prefix}_failure")
        op.drop_table(f"{prefix}_failure")
        op.drop_index(f"idx_{prefix}_success_event_dt_trace", table_name=f"{prefix}_success")
        op.drop_table(f"{prefix}_success")

    op.drop_index("idx_housekeeping_daily_job_event_status", table_name="housekeeping_daily")
    op.drop_index("idx_housekeeping_daily_job_status", table_name="housekeeping_daily")
    op.drop_index("idx_housekeeping_daily_status", table_name="housekeeping_daily")
    op.drop_table("housekeeping_daily")
    op.drop_index("idx_housekeeping_run_items_event", table_name="housekeeping_run_items")
    op.drop_table("housekeeping_run_items")
    op.drop_index("idx_housekeeping_runs_job_event_date", table_name="housekeeping_runs")
    op.drop_index("idx_housekeeping_runs_date", table_name="housekeeping_runs")
    op.drop_index("idx_housekeeping_runs_started", table_name="housekeeping_runs")
    op.drop_table("housekeeping_runs")
    op.drop_index("idx_replay_items_job_trace", table_name="replay_items")
    op.drop_index("idx_replay_items_job_record", table_name="replay_items")
    op.drop_index("idx_replay_items_job_status", table_name="replay_items")
    op.drop_index("idx_replay_items_event", table_name="replay_items")
    op.drop_index("idx_replay_items_record", table_name="replay_items")
    op.drop_index("idx_replay_items_job", table_name="replay_items")
    op.drop_table("replay_items")
    op.drop_index("idx_replay_jobs_requested_by", table_name="replay_jobs")
    op.drop_index("idx_replay_jobs_event_key", table_name="replay_jobs")
    op.drop_index("idx_replay_jobs_created_at", table_name="replay_jobs")
    op.drop_table("replay_jobs")
