# tests/unit/libs/replay-common/test_health.py
from unittest.mock import AsyncMock, patch

import httpx
import pytest
from fastapi import FastAPI

from replay_common.health import catalog_table_names, create_health_router

pytestmark = pytest.mark.asyncio


async def _get_ready(db_ok: bool, tables_ok: bool) -> httpx.Response:
    with patch("replay_common.health.check_db_health", AsyncMock(return_value=db_ok)), \
            patch("replay_common.health.check_event_tables_health", AsyncMock(return_value=tables_ok)):
        app = FastAPI()
        app.include_router(create_health_router("db", "event_tables"))
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
            return await client.get("/health/ready")


async def test_ready_when_database_and_event_tables_are_available():
    response = await _get_ready(db_ok=True, tables_ok=True)

    assert response.status_code == 200
    assert response.json() == {
        "status": "ready",
        "dependencies": {"database": "ok", "event_tables": "ok"},
    }


async def test_not_ready_when_event_tables_are_missing():
    response = await _get_ready(db_ok=True, tables_ok=False)

    assert response.status_code == 503
    assert response.json()["detail"]["dependencies"] == {"database": "ok", "event_tables": "unavailable"}


async def test_catalog_table_names_cover_both_tables_per_key():
    names = catalog_table_names()

    assert "payments_in_success" in names
    assert "payments_in_failure" in names
    assert len(names) % 2 == 0
