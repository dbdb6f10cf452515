# tests/integration/services/replay_service/test_replay_router.py
from datetime import date, datetime, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock

import httpx
import pytest
import pytest_asyncio

from replay_common.exceptions import ReplayJobNotFound, SelectionTooLarge, UnknownEventKey
from replay_common.replay_coordinator import ReplaySubmission
from src.services.replay_service.app.dtos.replay_dto import (
    ReplayAuditStats, ReplayJobItemRecord, ReplayJobItemsResponse, ReplayJobListResponse, ReplayJobRecord
)
from src.services.replay_service.app.main import app
from src.services.replay_service.app.routers.replay import get_replay_audit_service, get_replay_coordinator

pytestmark = pytest.mark.asyncio


@pytest_asyncio.fixture
async def async_test_client():
    mock_coordinator = AsyncMock()
    mock_audit_service = AsyncMock()
    app.dependency_overrides[get_replay_coordinator] = lambda: mock_coordinator
    app.dependency_overrides[get_replay_audit_service] = lambda: mock_audit_service
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client, mock_coordinator, mock_audit_service
    app.dependency_overrides.pop(get_replay_coordinator, None)
    app.dependency_overrides.pop(get_replay_audit_service, None)


def submission(requested=2, failed=1) -> ReplaySubmission:
    return ReplaySubmission(
        job_id="rpl-1", status="PARTIAL", requested=requested, succeeded=requested - failed, failed=failed, queued=0
    )


async def test_replay_ids_returns_requested_and_failed(async_test_client):
    client, mock_coordinator, _ = async_test_client
    mock_coordinator.submit.return_value = submission()

    response = await client.post(
        "/api/v1/replay",
        json={"mode": "IDS", "eventKey": "payments.in", "day": "2026-03-01", "ids": [101, 102], "reason": "fix"},
        headers={"X-Requested-By": "ops-user"},
    )

    assert response.status_code == 200
    assert response.json() == {"requested": 2, "failed": 1}
    selection = mock_coordinator.submit.call_args[0][0]
    assert selection.event_key == "payments.in"
    assert selection.day == date(2026, 3, 1)
    assert selection.ids == [101, 102]
    assert selection.requested_by == "ops-user"
    assert selection.reason == "fix"


async def test_replay_single_id_mode(async_test_client):
    client, mock_coordinator, _ = async_test_client
    mock_coordinator.submit.return_value = submission(requested=1, failed=0)

    response = await client.post(
        "/api/v1/replay", json={"mode": "ID", "eventKey": "payments.in", "day": "2026-03-01", "id": 101}
    )

    assert response.status_code == 200
    selection = mock_coordinator.submit.call_args[0][0]
    assert selection.ids == [101]
    assert selection.requested_by == "dashboard"


async def test_replay_rejects_filters_mode_on_id_endpoint(async_test_client):
    client, mock_coordinator, _ = async_test_client

    response = await client.post(
        "/api/v1/replay", json={"mode": "FILTERS", "eventKey": "payments.in", "day": "2026-03-01"}
    )

    assert response.status_code == 400
    assert response.json()["error"] == "INVALID_SELECTION"
    mock_coordinator.submit.assert_not_called()


async def test_replay_unknown_event_key_maps_to_400(async_test_client):
    client, mock_coordinator, _ = async_test_client
    mock_coordinator.submit.side_effect = UnknownEventKey("nope.in")

    response = await client.post(
        "/api/v1/replay",
        json={"eventKey": "nope.in", "day": "2026-03-01", "ids": [1]},
        headers={"X-Correlation-ID": "corr-400"},
    )

    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "UNKNOWN_EVENT_KEY"
    assert "nope.in" in body["message"]
    assert body["correlation_id"] == "corr-400"


async def test_replay_jobs_parses_filters(async_test_client):
    client, mock_coordinator, _ = async_test_client
    mock_coordinator.submit.return_value = submission(requested=0, failed=0)

    response = await client.post(
        "/api/v1/replay-jobs",
        json={"eventKey": "payments.in", "day": "2026-03-01", "filters": {"exceptionType": "Timeout", "traceId": ""}},
    )

    assert response.status_code == 200
    assert response.json() == {"requested": 0, "failed": 0}
    selection = mock_coordinator.submit.call_args[0][0]
    assert selection.mode == "FILTERS"
    assert selection.filters.exception_type == "Timeout"
    assert selection.filters.trace_id is None


async def test_replay_jobs_rejects_bad_filters(async_test_client):
    client, mock_coordinator, _ = async_test_client

    response = await client.post(
        "/api/v1/replay-jobs",
        json={"eventKey": "payments.in", "day": "2026-03-01", "filters": {"latencyMin": 50, "latencyMax": 5}},
    )

    assert response.status_code == 400
    assert response.json()["error"] == "INVALID_SELECTION"
    mock_coordinator.submit.assert_not_called()


async def test_replay_jobs_selection_too_large(async_test_client):
    client, mock_coordinator, _ = async_test_client
    mock_coordinator.submit.side_effect = SelectionTooLarge(12000, 10000)

    response = await client.post("/api/v1/replay-jobs", json={"eventKey": "payments.in", "day": "2026-03-01"})

    assert response.status_code == 400
    assert response.json()["error"] == "SELECTION_TOO_LARGE"


async def test_list_replay_jobs_passes_filters_and_uses_camel_case(async_test_client):
    client, _, mock_audit_service = async_test_client
    mock_audit_service.list_jobs.return_value = ReplayJobListResponse(
        jobs=[ReplayJobRecord(
            replay_id="rpl-1", event_key="payments.in", selection_type="IDS", total_requested=2,
            status="PARTIAL", requested_by="ops", reason=None,
            created_at=datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc), completed_at=None,
            succeeded=1, failed=1, queued=0,
        )],
        page=1, size=5, total=6,
        stats=ReplayAuditStats(total=2, replayed=1, failed=1, queued=0, avg_duration_ms=900.0),
        operators=["ops"], event_keys=["payments.in"],
    )

    response = await client.get(
        "/api/v1/replay-jobs",
        params={"page": 1, "size": 5, "search": "abc", "status": "PARTIAL", "eventKey": "payments.in"},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["jobs"][0]["replayId"] == "rpl-1"
    assert body["jobs"][0]["totalRequested"] == 2
    assert body["stats"]["avgDurationMs"] == 900.0
    assert body["eventKeys"] == ["payments.in"]
    mock_audit_service.list_jobs.assert_awaited_once_with(
        page=1, size=5, search="abc", status="PARTIAL", event_key="payments.in", requested_by=None
    )


async def test_list_replay_jobs_validates_paging(async_test_client):
    client, _, _ = async_test_client

    response = await client.get("/api/v1/replay-jobs", params={"size": 0})

    assert response.status_code == 422


async def test_job_items_returns_items(async_test_client):
    client, _, mock_audit_service = async_test_client
    item = SimpleNamespace(
        record_id=101, status="FAILED", attempt_count=2, last_attempt_at=None, last_error="boom",
        emitted_id=None, trace_id="t-1", message_key="k-1", account_number="A-1",
        exception_type="Timeout", event_datetime=None,
    )
    mock_audit_service.get_job_items.return_value = ReplayJobItemsResponse(
        items=[ReplayJobItemRecord.model_validate(item)]
    )

    response = await client.get("/api/v1/replay-jobs/rpl-1/items")

    assert response.status_code == 200
    assert response.json()["items"][0]["recordId"] == 101
    assert response.json()["items"][0]["lastError"] == "boom"
    mock_audit_service.get_job_items.assert_awaited_once_with("rpl-1")


async def test_job_items_unknown_job_is_404(async_test_client):
    client, _, mock_audit_service = async_test_client
    mock_audit_service.get_job_items.side_effect = ReplayJobNotFound("rpl-missing")

    response = await client.get("/api/v1/replay-jobs/rpl-missing/items")

    assert response.status_code == 404
    assert response.json()["error"] == "REPLAY_JOB_NOT_FOUND"
