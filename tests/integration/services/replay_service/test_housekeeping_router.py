# tests/integration/services/replay_service/test_housekeeping_router.py
from datetime import date, datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
import pytest_asyncio

from replay_common.exceptions import HousekeepingRunInProgress, InvalidHousekeepingScope
from replay_common.housekeeping.models import EligibilitySnapshot, RowCounts, RunOutcome
from src.services.replay_service.app.dtos.housekeeping_dto import (
    HousekeepingDailyRecord, HousekeepingRunRecord, HousekeepingRunSummary
)
from src.services.replay_service.app.main import app
from src.services.replay_service.app.routers.housekeeping import (
    get_housekeeping_engine, get_housekeeping_query_service
)

pytestmark = pytest.mark.asyncio

STARTED = datetime(2026, 3, 8, 2, 0, tzinfo=timezone.utc)


@pytest_asyncio.fixture
async def async_test_client():
    mock_engine = MagicMock()
    mock_engine.run_now = AsyncMock()
    mock_engine.preview = AsyncMock()
    mock_query_service = AsyncMock()
    app.dependency_overrides[get_housekeeping_engine] = lambda: mock_engine
    app.dependency_overrides[get_housekeeping_query_service] = lambda: mock_query_service
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client, mock_engine, mock_query_service
    app.dependency_overrides.pop(get_housekeeping_engine, None)
    app.dependency_overrides.pop(get_housekeeping_query_service, None)


def outcome(status="COMPLETED", error=None) -> RunOutcome:
    return RunOutcome(
        run_id="run-1", job_type="RETENTION", event_key="ALL", trigger_type="MANUAL",
        run_date=date(2026, 3, 8), attempt=2, status=status, cutoff_date=date(2026, 3, 1),
        started_at=STARTED, completed_at=STARTED, duration_ms=1500,
        deleted=RowCounts.split(30, 10),
        per_item={"payments.in": RowCounts.split(30, 10), "loans.in": RowCounts()},
        error_message=error,
    )


async def test_run_returns_attempt_with_items(async_test_client):
    client, mock_engine, _ = async_test_client
    mock_engine.run_now.return_value = outcome()

    response = await client.post("/api/v1/housekeeping/run", params={"eventKey": "ALL"})

    assert response.status_code == 200
    body = response.json()
    assert body["id"] == "run-1"
    assert body["attempt"] == 2
    assert body["deletedTotal"] == 40
    assert body["eventCount"] == 2
    assert body["eventKeys"] == "payments.in,loans.in"
    assert body["items"][1] == {"eventKey": "loans.in", "deletedSuccess": 0, "deletedFailure": 0, "deletedTotal": 0}
    mock_engine.run_now.assert_awaited_once_with("RETENTION", "ALL")


async def test_run_failed_attempt_is_still_200(async_test_client):
    client, mock_engine, _ = async_test_client
    mock_engine.run_now.return_value = outcome(status="FAILED", error="Delete failed for payments.in")

    response = await client.post("/api/v1/housekeeping/run", params={"jobType": "RETENTION"})

    assert response.status_code == 200
    assert response.json()["status"] == "FAILED"
    assert response.json()["errorMessage"] == "Delete failed for payments.in"


async def test_run_while_running_is_409(async_test_client):
    client, mock_engine, _ = async_test_client
    mock_engine.run_now.side_effect = HousekeepingRunInProgress("RETENTION", "ALL", "run-0")

    response = await client.post("/api/v1/housekeeping/run")

    assert response.status_code == 409
    assert response.json()["error"] == "HOUSEKEEPING_RUN_IN_PROGRESS"


async def test_run_with_invalid_scope_is_400(async_test_client):
    client, mock_engine, _ = async_test_client
    mock_engine.run_now.side_effect = InvalidHousekeepingScope("REPLAY_AUDIT only supports eventKey=ALL.")

    response = await client.post(
        "/api/v1/housekeeping/run", params={"jobType": "REPLAY_AUDIT", "eventKey": "payments.in"}
    )

    assert response.status_code == 400
    assert response.json()["error"] == "INVALID_HOUSEKEEPING_SCOPE"


async def test_preview_reports_eligible_counts_and_next_tick(async_test_client):
    client, mock_engine, _ = async_test_client
    mock_engine.preview.return_value = EligibilitySnapshot(
        job_type="RETENTION", event_key="payments.in", run_date=date(2026, 3, 8), retention_days=7,
        cutoff_date=date(2026, 3, 1), snapshot_at=STARTED,
        per_item={"payments.in": RowCounts.split(70, 50)},
    )

    response = await client.get("/api/v1/housekeeping/preview", params={"eventKey": "payments.in"})

    assert response.status_code == 200
    body = response.json()
    assert body["deletedTotal"] == 120
    assert body["retentionDays"] == 7
    assert body["cutoffDate"] == "2026-03-01"
    assert body["nextRunAt"] is not None
    assert body["events"][0]["eventKey"] == "payments.in"
    mock_engine.preview.assert_awaited_once_with("RETENTION", "payments.in")


async def test_daily_lists_snapshot_rows(async_test_client):
    client, _, mock_query_service = async_test_client
    mock_query_service.list_daily.return_value = [HousekeepingDailyRecord(
        job_type="RETENTION", event_key="ALL", run_date=date(2026, 3, 8), retention_days=7,
        cutoff_date=date(2026, 3, 1), snapshot_at=STARTED, eligible_success=0, eligible_failure=0,
        eligible_total=0, last_status="COMPLETED", last_run_id="run-1", last_attempt=1,
    )]

    response = await client.get("/api/v1/housekeeping/daily", params={"limit": 7})

    assert response.status_code == 200
    assert response.json()[0]["lastStatus"] == "COMPLETED"
    mock_query_service.list_daily.assert_awaited_once_with(7, job_type=None, event_key=None)


async def test_runs_for_date(async_test_client):
    client, _, mock_query_service = async_test_client
    mock_query_service.list_runs_for_date.return_value = [HousekeepingRunRecord(
        id="run-1", job_type="RETENTION", event_key="ALL", trigger_type="SCHEDULED", run_date=date(2026, 3, 8),
        attempt=1, status="FAILED", cutoff_date=date(2026, 3, 1), started_at=STARTED, deleted_total=40,
        event_count=1, event_keys="payments.in",
    )]

    response = await client.get("/api/v1/housekeeping/daily/2026-03-08/runs")

    assert response.status_code == 200
    assert response.json()[0]["eventKeys"] == "payments.in"
    mock_query_service.list_runs_for_date.assert_awaited_once_with(date(2026, 3, 8), job_type=None, event_key=None)


async def test_runs_summary(async_test_client):
    client, _, mock_query_service = async_test_client
    mock_query_service.summarize_runs.return_value = [HousekeepingRunSummary(
        job_type="RETENTION", run_date=date(2026, 3, 8), event_key="ALL", attempts=2,
        deleted_success=100, deleted_failure=20, deleted_total=120, latest_attempt=2,
        latest_status="COMPLETED", latest_trigger_type="SCHEDULED",
    )]

    response = await client.get("/api/v1/housekeeping/runs/summary", params={"limit": 5, "offset": 10})

    assert response.status_code == 200
    assert response.json()[0]["attempts"] == 2
    mock_query_service.summarize_runs.assert_awaited_once_with(5, 10, job_type=None, event_key=None)


async def test_status_without_runs_is_null(async_test_client):
    client, _, mock_query_service = async_test_client
    mock_query_service.get_status.return_value = None

    response = await client.get("/api/v1/housekeeping/status", params={"date": "2026-03-08"})

    assert response.status_code == 200
    assert response.json() is None
    mock_query_service.get_status.assert_awaited_once_with(
        run_date=date(2026, 3, 8), job_type=None, event_key=None
    )
