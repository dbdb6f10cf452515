# src/libs/replay-common/replay_common/event_table_gateway.py
import logging
from datetime import date, datetime, time
from typing import Dict, List, Optional, Sequence

from sqlalchemy import delete, func, select, Table
from sqlalchemy.engine import RowMapping
from sqlalchemy.ext.asyncio import AsyncSession

from .event_tables import EventTableCatalog, get_event_catalog
from .housekeeping.models import RowCounts
from .replay_filters import ReplayFilterSpec
from .utils import async_timed

logger = logging.getLogger(__name__)


def cutoff_instant(cutoff_date: date) -> datetime:
    """Rows whose event_datetime is strictly before this instant are older than the cutoff."""
    return datetime.combine(cutoff_date, time.min)


class EventTableGateway:
    """
    Bounded reads and deletes against the per-event success/failure tables.
    Holds no audit state; every method runs on the caller's session.
    """

    def __init__(self, db: AsyncSession, catalog: Optional[EventTableCatalog] = None):
        self.db = db
        self.catalog = catalog or get_event_catalog()

    @staticmethod
    def _enrichment_columns(table: Table) -> list:
        c = table.c
        return [
            c.id,
            c.event_datetime,
            c.event_trace_id,
            c.message_key,
            c.account_number,
            c.exception_type,
            c.source_payload,
        ]

    @async_timed(repository="EventTableGateway", method="fetch_failures_by_ids")
    async def fetch_failures_by_ids(self, event_key: str, record_ids: Sequence[int]) -> Dict[int, RowMapping]:
        """Returns the failure rows that exist among record_ids, keyed by id."""
        if not record_ids:
            return {}
        table = self.catalog.resolve(event_key).failure
        stmt = select(*self._enrichment_columns(table)).where(table.c.id.in_(list(record_ids)))
        result = await self.db.execute(stmt)
        return {row["id"]: row for row in result.mappings().all()}

    @async_timed(repository="EventTableGateway", method="count_failures_matching")
    async def count_failures_matching(
        self, event_key: str, day: date, spec: ReplayFilterSpec, snapshot_at: datetime
    ) -> int:
        table = self.catalog.resolve(event_key).failure
        stmt = select(func.count()).select_from(table).where(*spec.conditions(table, day, snapshot_at))
        return int((await self.db.execute(stmt)).scalar() or 0)

    @async_timed(repository="EventTableGateway", method="select_failures_matching")
    async def select_failures_matching(
        self, event_key: str, day: date, spec: ReplayFilterSpec, snapshot_at: datetime, limit: int
    ) -> List[RowMapping]:
        """Candidate rows in (event_datetime, id) order, frozen at snapshot_at."""
        table = self.catalog.resolve(event_key).failure
        stmt = (
            select(*self._enrichment_columns(table))
            .where(*spec.conditions(table, day, snapshot_at))
            .order_by(table.c.event_datetime.asc(), table.c.id.asc())
            .limit(limit)
        )
        result = await self.db.execute(stmt)
        return list(result.mappings().all())

    async def _count_before(self, table: Table, cutoff: datetime) -> int:
        stmt = select(func.count()).select_from(table).where(table.c.event_datetime < cutoff)
        return int((await self.db.execute(stmt)).scalar() or 0)

    async def _delete_batch_before(self, table: Table, cutoff: datetime, batch_size: int) -> int:
        doomed = (
            select(table.c.id)
            .where(table.c.event_datetime < cutoff)
            .order_by(table.c.id)
            .limit(batch_size)
            .correlate(None)
        )
        result = await self.db.execute(delete(table).where(table.c.id.in_(doomed)))
        return int(result.rowcount or 0)

    @async_timed(repository="EventTableGateway", method="count_older_than")
    async def count_older_than(self, event_key: str, cutoff_date: date) -> RowCounts:
        pair = self.catalog.resolve(event_key)
        cutoff = cutoff_instant(cutoff_date)
        return RowCounts.split(
            success=await self._count_before(pair.success, cutoff),
            failure=await self._count_before(pair.failure, cutoff),
        )

    @async_timed(repository="EventTableGateway", method="delete_older_than")
    async def delete_older_than(self, event_key: str, cutoff_date: date, batch_size: int) -> RowCounts:
        """
        Deletes at most batch_size rows from each table of the pair.
        Callers repeat until an empty RowCounts comes back.
        """
        pair = self.catalog.resolve(event_key)
        cutoff = cutoff_instant(cutoff_date)
        deleted = RowCounts.split(
            success=await self._delete_batch_before(pair.success, cutoff, batch_size),
            failure=await self._delete_batch_before(pair.failure, cutoff, batch_size),
        )
        if not deleted.is_empty:
            logger.debug(
                "Deleted event rows older than cutoff.",
                extra={"event_key": event_key, "cutoff_date": str(cutoff_date), "deleted": deleted.total},
            )
        return deleted
