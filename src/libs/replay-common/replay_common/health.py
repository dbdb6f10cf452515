# src/libs/replay-common/replay_common/health.py
import logging
import asyncio
from typing import Callable, Awaitable, List

from fastapi import APIRouter, status, HTTPException
from sqlalchemy import text

from .db import AsyncSessionLocal
from .event_tables import get_event_catalog

logger = logging.getLogger(__name__)

DependencyCheck = Callable[[], Awaitable[bool]]

async def check_db_health() -> bool:
    """Checks if a valid async connection can be established with the database."""
    try:
        async with AsyncSessionLocal() as session:
            async with session.begin():
                await session.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error(f"Health Check: Database connection failed: {e}", exc_info=False)
        return False


def catalog_table_names() -> List[str]:
    catalog = get_event_catalog()
    names = []
    for key in catalog.keys():
        pair = catalog.resolve(key)
        names.extend([pair.success.name, pair.failure.name])
    return names


async def check_event_tables_health() -> bool:
    """
    Checks that every configured event key has both of its tables. A key
    added to EVENT_KEYS without a migration would otherwise only fail on
    the first replay or retention run that touches it.
    """
    try:
        async with AsyncSessionLocal() as session:
            async with session.begin():
                missing = [
                    name for name in catalog_table_names()
                    if (await session.execute(text("SELECT to_regclass(:name)"), {"name": name})).scalar() is None
                ]
    except Exception as e:
        logger.error(f"Health Check: Event table lookup failed: {e}", exc_info=False)
        return False
    if missing:
        logger.error("Health Check: Event tables missing.", extra={"missing_tables": missing})
        return False
    return True


def create_health_router(*dependencies: str) -> APIRouter:
    """
    Creates the /health/live and /health/ready router.

    Args:
        *dependencies: Checks run by the readiness probe, any of
                       'db' and 'event_tables'.
    """
    router = APIRouter(tags=["Health"])

    dep_map = {
        'db': ('database', check_db_health),
        'event_tables': ('event_tables', check_event_tables_health),
    }

    @router.get("/health/live", status_code=status.HTTP_200_OK)
    async def liveness_probe():
        return {"status": "alive"}

    @router.get("/health/ready", status_code=status.HTTP_200_OK)
    async def readiness_probe():
        checked = [dep for dep in dependencies if dep in dep_map]
        results = await asyncio.gather(*[dep_map[dep][1]() for dep in checked])

        dep_status = {
            dep_map[dep][0]: "ok" if ok else "unavailable"
            for dep, ok in zip(checked, results)
        }

        if all(results):
            return {"status": "ready", "dependencies": dep_status}

        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"status": "not_ready", "dependencies": dep_status},
        )

    return router
