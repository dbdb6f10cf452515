# src/libs/replay-common/replay_common/replay_coordinator.py
import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .config import REPLAY_BATCH_SIZE, REPLAY_MAX_IDS, REPLAY_MAX_FILTER_RECORDS, REPLAY_ITEM_MAX_ATTEMPTS
from .database_models import (
    JOB_RUNNING, JOB_COMPLETED, JOB_PARTIAL, JOB_FAILED,
    ITEM_QUEUED, ITEM_REPLAYED, ITEM_FAILED, ITEM_NOT_FOUND,
    SELECTION_IDS, SELECTION_FILTERS,
)
from .db import AsyncSessionLocal
from .event_table_gateway import EventTableGateway
from .event_tables import EventTableCatalog, get_event_catalog
from .exceptions import InvalidSelection, SelectionTooLarge, ReplayEndpointError, ReplayTargetNotFound
from .logging_utils import bind_job_ref
from .monitoring import REPLAY_JOBS_TOTAL, observe_replay_items
from .replay_endpoint_client import ReplayEndpointClient, ReplayOutcome
from .replay_filters import ReplayFilterSpec
from .replay_job_repository import ReplayJobRepository
from .utils import chunked, utc_now

logger = logging.getLogger(__name__)

MODE_ID = "ID"


@dataclass
class ReplaySelection:
    mode: str
    event_key: str
    day: date
    ids: List[int] = field(default_factory=list)
    filters: Optional[ReplayFilterSpec] = None
    requested_by: Optional[str] = None
    reason: Optional[str] = None


@dataclass(frozen=True)
class ReplaySubmission:
    job_id: str
    status: str
    requested: int
    succeeded: int
    failed: int
    queued: int


def derive_job_status(succeeded: int, failed: int) -> str:
    if failed == 0:
        return JOB_COMPLETED
    if succeeded == 0:
        return JOB_FAILED
    return JOB_PARTIAL


def new_job_id() -> str:
    return f"rpl-{uuid.uuid4().hex}"


class ReplayJobCoordinator:
    """
    Materializes a replay job and its items, drives every item through the
    downstream replay endpoint and reconciles the job's final counts.

    Item outcomes are persisted batch by batch in their own transactions, so
    a job interrupted mid-flight keeps the results it already has.
    """

    def __init__(
        self,
        client: ReplayEndpointClient,
        session_factory: Callable = AsyncSessionLocal,
        catalog: Optional[EventTableCatalog] = None,
        clock: Callable[[], datetime] = utc_now,
        repository_factory: Callable = ReplayJobRepository,
        gateway_factory: Callable = EventTableGateway,
        batch_size: int = REPLAY_BATCH_SIZE,
        max_ids: int = REPLAY_MAX_IDS,
        max_filter_records: int = REPLAY_MAX_FILTER_RECORDS,
        max_attempts: int = REPLAY_ITEM_MAX_ATTEMPTS,
    ):
        self._client = client
        self._session_factory = session_factory
        self._catalog = catalog or get_event_catalog()
        self._clock = clock
        self._repository_factory = repository_factory
        self._gateway_factory = gateway_factory
        self._batch_size = max(1, batch_size)
        self._max_ids = max_ids
        self._max_filter_records = max_filter_records
        self._max_attempts = max(1, max_attempts)

    # --- validation -------------------------------------------------------------

    def _normalize_ids(self, selection: ReplaySelection) -> List[int]:
        ids: List[int] = []
        seen = set()
        for raw in selection.ids or []:
            if isinstance(raw, bool):
                raise InvalidSelection(f"Invalid record id {raw!r}.")
            try:
                record_id = int(raw)
            except (TypeError, ValueError):
                raise InvalidSelection(f"Invalid record id {raw!r}.")
            if record_id not in seen:
                seen.add(record_id)
                ids.append(record_id)
        if not ids:
            raise InvalidSelection("At least one record id is required.")
        if len(ids) > self._max_ids:
            raise SelectionTooLarge(len(ids), self._max_ids)
        return ids

    # --- submission -------------------------------------------------------------

    async def submit(self, selection: ReplaySelection) -> ReplaySubmission:
        """
        Runs a replay request end to end. Malformed requests raise before any
        job exists; downstream failures end up on the items. A storage error
        after the job exists closes it as FAILED before propagating.
        """
        self._catalog.resolve(selection.event_key)
        mode = (selection.mode or "").upper()
        if mode in (MODE_ID, SELECTION_IDS):
            selection_type = SELECTION_IDS
            record_ids = self._normalize_ids(selection)
        elif mode == SELECTION_FILTERS:
            selection_type = SELECTION_FILTERS
            record_ids = []
        else:
            raise InvalidSelection(f"Unsupported replay mode '{selection.mode}'.")

        job_id, pending = await self._materialize(selection, selection_type, record_ids)

        with bind_job_ref(job_id):
            try:
                if pending:
                    await self._drive(job_id, selection.event_key, selection.day, pending)
                return await self._reconcile(job_id, selection.event_key)
            except Exception as e:
                await self._abandon(job_id, selection.event_key, e)
                raise

    async def _materialize(
        self, selection: ReplaySelection, selection_type: str, record_ids: List[int]
    ) -> Tuple[str, List[Tuple[int, int]]]:
        """Creates the job and its items in one transaction; returns the QUEUED (item id, record id) pairs."""
        snapshot_at = self._clock()
        job_id = new_job_id()
        spec = (selection.filters or ReplayFilterSpec()) if selection_type == SELECTION_FILTERS else None

        async with self._session_factory() as db:
            async with db.begin():
                gateway = self._gateway_factory(db, self._catalog)
                repo = self._repository_factory(db)

                if selection_type == SELECTION_IDS:
                    found = await gateway.fetch_failures_by_ids(selection.event_key, record_ids)
                    candidates = [(record_id, found.get(record_id)) for record_id in record_ids]
                else:
                    matching = await gateway.count_failures_matching(
                        selection.event_key, selection.day, spec, snapshot_at
                    )
                    if matching > self._max_filter_records:
                        raise SelectionTooLarge(matching, self._max_filter_records)
                    rows = await gateway.select_failures_matching(
                        selection.event_key, selection.day, spec, snapshot_at, self._max_filter_records
                    )
                    candidates = [(row["id"], row) for row in rows]

                empty = not candidates
                await repo.create_job(
                    id=job_id,
                    event_key=selection.event_key,
                    day=selection.day,
                    selection_type=selection_type,
                    filters_json=spec.to_json() if spec is not None else None,
                    snapshot_at=snapshot_at,
                    requested_by=selection.requested_by,
                    reason=selection.reason,
                    total_requested=len(candidates),
                    status=JOB_COMPLETED if empty else JOB_RUNNING,
                    succeeded_count=0,
                    failed_count=0,
                    queued_count=0,
                    created_at=snapshot_at,
                    completed_at=snapshot_at if empty else None,
                )
                items = await repo.add_items([
                    self._item_values(job_id, selection.event_key, record_id, row, snapshot_at)
                    for record_id, row in candidates
                ])

        pending = [(item.id, item.record_id) for item in items if item.status == ITEM_QUEUED]
        missing = len(items) - len(pending)
        observe_replay_items(selection.event_key, ITEM_NOT_FOUND, missing)
        logger.info(
            "Replay job materialized.",
            extra={
                "job_id": job_id,
                "event_key": selection.event_key,
                "selection_type": selection_type,
                "total_requested": len(items),
                "not_found": missing,
            },
        )
        return job_id, pending

    @staticmethod
    def _item_values(job_id: str, event_key: str, record_id: int, row, now: datetime) -> Dict:
        values = {
            "job_id": job_id,
            "record_id": record_id,
            "event_key": event_key,
            "attempt_count": 0,
            "created_at": now,
            "updated_at": now,
        }
        if row is None:
            values.update(status=ITEM_NOT_FOUND, last_error=f"record {record_id} not found in failure table")
            return values
        values.update(
            status=ITEM_QUEUED,
            trace_id=row["event_trace_id"],
            message_key=row["message_key"],
            account_number=row["account_number"],
            exception_type=row["exception_type"],
            event_datetime=row["event_datetime"],
            source_payload=row["source_payload"],
        )
        return values

    # --- execution --------------------------------------------------------------

    async def _drive(self, job_id: str, event_key: str, day: date, pending: List[Tuple[int, int]]) -> None:
        targets = pending
        for attempt in range(1, self._max_attempts + 1):
            retry_next: List[Tuple[int, int]] = []
            for batch in chunked(targets, self._batch_size):
                outcomes = await self._call_endpoint(job_id, event_key, day, [record_id for _, record_id in batch])
                await self._persist_outcomes(batch, outcomes)
                retry_next.extend(
                    pair for pair, outcome in zip(batch, outcomes) if outcome.status == ITEM_FAILED
                )
            if not retry_next:
                return
            if attempt < self._max_attempts:
                logger.info(
                    "Retrying failed replay items.",
                    extra={"job_id": job_id, "event_key": event_key, "count": len(retry_next), "attempt": attempt + 1},
                )
            targets = retry_next

    async def _call_endpoint(
        self, job_id: str, event_key: str, day: date, record_ids: Sequence[int]
    ) -> List[ReplayOutcome]:
        try:
            return await self._client.replay(event_key, day, record_ids)
        except ReplayTargetNotFound as e:
            return [ReplayOutcome(record_id, ITEM_NOT_FOUND, error=str(e)) for record_id in record_ids]
        except ReplayEndpointError as e:
            logger.warning(
                f"Replay endpoint call failed: {e}",
                extra={"job_id": job_id, "event_key": event_key, "batch_size": len(record_ids)},
            )
            return [ReplayOutcome(record_id, ITEM_FAILED, error=str(e)) for record_id in record_ids]
        except Exception as e:
            logger.error(
                "Unexpected error calling replay endpoint.",
                extra={"job_id": job_id, "event_key": event_key},
                exc_info=True,
            )
            return [ReplayOutcome(record_id, ITEM_FAILED, error=f"unexpected error: {e}") for record_id in record_ids]

    async def _persist_outcomes(self, batch: List[Tuple[int, int]], outcomes: List[ReplayOutcome]) -> None:
        attempted_at = self._clock()
        attempts = [
            {
                "item_id": item_id,
                "status": outcome.status,
                "emitted_id": outcome.emitted_id,
                "last_error": outcome.error if outcome.status != ITEM_REPLAYED else None,
                "attempted_at": attempted_at,
            }
            for (item_id, _), outcome in zip(batch, outcomes)
        ]
        async with self._session_factory() as db:
            async with db.begin():
                await self._repository_factory(db).record_attempts(attempts)

    @staticmethod
    def _tally(counts: Dict[str, int]) -> Tuple[int, int, int]:
        succeeded = counts.get(ITEM_REPLAYED, 0)
        failed = counts.get(ITEM_FAILED, 0) + counts.get(ITEM_NOT_FOUND, 0)
        return succeeded, failed, counts.get(ITEM_QUEUED, 0)

    async def _abandon(self, job_id: str, event_key: str, error: Exception) -> None:
        """Closes an interrupted job as FAILED, keeping the item states recorded so far."""
        try:
            async with self._session_factory() as db:
                async with db.begin():
                    repo = self._repository_factory(db)
                    succeeded, failed, queued = self._tally(await repo.count_items_by_status(job_id))
                    await repo.finalize_job(job_id, JOB_FAILED, succeeded, failed, queued, self._clock())
        except Exception:
            logger.error(
                "Could not close interrupted replay job.",
                extra={"job_id": job_id, "event_key": event_key},
                exc_info=True,
            )
            return

        REPLAY_JOBS_TOTAL.labels(event_key, JOB_FAILED).inc()
        logger.error(
            f"Replay job {job_id} interrupted: {error}",
            extra={"job_id": job_id, "succeeded": succeeded, "failed": failed, "queued": queued},
        )

    async def _reconcile(self, job_id: str, event_key: str) -> ReplaySubmission:
        async with self._session_factory() as db:
            async with db.begin():
                repo = self._repository_factory(db)
                counts = await repo.count_items_by_status(job_id)
                succeeded, failed, queued = self._tally(counts)
                status = derive_job_status(succeeded, failed)
                await repo.finalize_job(job_id, status, succeeded, failed, queued, self._clock())

        observe_replay_items(event_key, ITEM_REPLAYED, succeeded)
        observe_replay_items(event_key, ITEM_FAILED, counts.get(ITEM_FAILED, 0))
        REPLAY_JOBS_TOTAL.labels(event_key, status).inc()
        logger.info(
            f"Replay job {job_id} finished with status {status}.",
            extra={"job_id": job_id, "succeeded": succeeded, "failed": failed, "queued": queued},
        )
        return ReplaySubmission(
            job_id=job_id,
            status=status,
            requested=succeeded + failed + queued,
            succeeded=succeeded,
            failed=failed,
            queued=queued,
        )
