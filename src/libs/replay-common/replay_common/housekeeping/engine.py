# src/libs/replay-common/replay_common/housekeeping/engine.py
import logging
import uuid
from datetime import date, datetime, timedelta
from typing import Callable, Dict, Optional, Tuple

from ..config import HOUSEKEEPING_DELETE_BATCH_SIZE, HOUSEKEEPING_STALE_RUN_MINUTES
from ..database_models import (
    RUN_RUNNING, RUN_COMPLETED, RUN_FAILED,
    TRIGGER_MANUAL, TRIGGER_SCHEDULED,
)
from ..db import AsyncSessionLocal
from ..exceptions import HousekeepingDeleteFailure, HousekeepingRunInProgress, InvalidHousekeepingScope
from ..housekeeping_repository import HousekeepingRepository
from ..logging_utils import bind_job_ref
from ..monitoring import (
    HOUSEKEEPING_RUNS_TOTAL,
    HOUSEKEEPING_ROWS_DELETED_TOTAL,
    HOUSEKEEPING_ELIGIBLE_ROWS,
    HOUSEKEEPING_RUN_DURATION_SECONDS,
)
from ..utils import utc_now
from .models import EligibilitySnapshot, RowCounts, RunOutcome
from .strategies import HousekeepingStrategy, default_strategies

logger = logging.getLogger(__name__)

ABANDONED_ERROR = "abandoned: attempt exceeded the stale run window"


def _duration_ms(started_at: datetime, completed_at: datetime) -> int:
    return max(0, int((completed_at - started_at).total_seconds() * 1000))


class HousekeepingEngine:
    """
    Shared run/attempt/daily bookkeeping for every housekeeping job type.

    All operations take an explicit run_date (defaulting to the clock's
    current date) so a day's state can be driven deterministically.
    """

    def __init__(
        self,
        strategies: Optional[Dict[str, HousekeepingStrategy]] = None,
        session_factory: Callable = AsyncSessionLocal,
        clock: Callable[[], datetime] = utc_now,
        repository_factory: Callable = HousekeepingRepository,
        delete_batch_size: int = HOUSEKEEPING_DELETE_BATCH_SIZE,
        stale_run_after: timedelta = timedelta(minutes=HOUSEKEEPING_STALE_RUN_MINUTES),
    ):
        self._strategies = strategies if strategies is not None else default_strategies()
        self._session_factory = session_factory
        self._clock = clock
        self._repository_factory = repository_factory
        self._delete_batch_size = max(1, delete_batch_size)
        self._stale_run_after = stale_run_after

    @property
    def job_types(self):
        return list(self._strategies.keys())

    def resolve(self, job_type: Optional[str], event_key: Optional[str]) -> Tuple[HousekeepingStrategy, str]:
        strategy = self._strategies.get((job_type or "").strip().upper())
        if strategy is None:
            raise InvalidHousekeepingScope(f"Unknown housekeeping job type '{job_type}'.")
        return strategy, strategy.normalize_scope(event_key)

    def _run_date(self, run_date: Optional[date]) -> date:
        return run_date or self._clock().date()

    # --- eligibility ------------------------------------------------------------

    async def compute_snapshot(
        self, job_type: str, event_key: Optional[str] = None, run_date: Optional[date] = None
    ) -> EligibilitySnapshot:
        """Counts rows older than the cutoff and upserts the day's snapshot row."""
        strategy, scope = self.resolve(job_type, event_key)
        return await self._snapshot(strategy, scope, self._run_date(run_date))

    async def _snapshot(self, strategy: HousekeepingStrategy, scope: str, run_date: date) -> EligibilitySnapshot:
        snapshot = EligibilitySnapshot(
            job_type=strategy.job_type,
            event_key=scope,
            run_date=run_date,
            retention_days=strategy.retention_days,
            cutoff_date=strategy.cutoff_for(run_date),
            snapshot_at=self._clock(),
        )
        async with self._session_factory() as db:
            async with db.begin():
                for item_key in strategy.item_keys(scope):
                    snapshot.per_item[item_key] = await strategy.count_eligible(db, item_key, snapshot.cutoff_date)
                await self._repository_factory(db).upsert_daily_snapshot(snapshot)

        HOUSEKEEPING_ELIGIBLE_ROWS.labels(strategy.job_type, scope).set(snapshot.totals.total)
        logger.info(
            "Housekeeping eligibility snapshot computed.",
            extra={
                "job_type": strategy.job_type,
                "event_key": scope,
                "run_date": run_date.isoformat(),
                "cutoff_date": snapshot.cutoff_date.isoformat(),
                "eligible_total": snapshot.totals.total,
            },
        )
        return snapshot

    async def preview(
        self, job_type: str, event_key: Optional[str] = None, run_date: Optional[date] = None
    ) -> EligibilitySnapshot:
        return await self.compute_snapshot(job_type, event_key, run_date)

    # --- attempts ---------------------------------------------------------------

    async def run_now(
        self,
        job_type: str,
        event_key: Optional[str] = None,
        run_date: Optional[date] = None,
        trigger_type: str = TRIGGER_MANUAL,
    ) -> RunOutcome:
        """
        Refreshes the snapshot and executes a new attempt for the day.
        Raises HousekeepingRunInProgress while a non-stale attempt is RUNNING.
        """
        strategy, scope = self.resolve(job_type, event_key)
        snapshot = await self._snapshot(strategy, scope, self._run_date(run_date))
        return await self._execute(strategy, snapshot, trigger_type)

    async def run_scheduled(
        self, job_type: str, event_key: Optional[str] = None, run_date: Optional[date] = None
    ) -> Optional[RunOutcome]:
        """
        Tick entry point: always refreshes the snapshot, then starts an
        attempt only when the day's state allows one. Returns None otherwise.
        """
        strategy, scope = self.resolve(job_type, event_key)
        snapshot = await self._snapshot(strategy, scope, self._run_date(run_date))

        async with self._session_factory() as db:
            async with db.begin():
                repo = self._repository_factory(db)
                daily = await repo.get_daily(strategy.job_type, scope, snapshot.run_date)
                running = await repo.find_running_run(strategy.job_type, scope, snapshot.run_date)

        if running is not None and not self._is_stale(running):
            logger.info(
                "Skipping housekeeping tick; an attempt is still running.",
                extra={"job_type": strategy.job_type, "event_key": scope, "run_id": running.id},
            )
            return None
        if running is None and not self._attempt_permitted(daily, snapshot):
            logger.info(
                "Nothing left to clean for today.",
                extra={"job_type": strategy.job_type, "event_key": scope, "run_date": snapshot.run_date.isoformat()},
            )
            return None

        try:
            return await self._execute(strategy, snapshot, TRIGGER_SCHEDULED)
        except HousekeepingRunInProgress as e:
            logger.info(f"Skipping housekeeping tick: {e}")
            return None

    @staticmethod
    def _attempt_permitted(daily, snapshot: EligibilitySnapshot) -> bool:
        if daily is None or not daily.last_attempt:
            return True
        if daily.last_status == RUN_COMPLETED:
            return snapshot.totals.total > 0
        return True

    def _is_stale(self, run) -> bool:
        return run.started_at <= self._clock() - self._stale_run_after

    async def _start(self, strategy: HousekeepingStrategy, snapshot: EligibilitySnapshot, trigger_type: str) -> RunOutcome:
        now = self._clock()
        async with self._session_factory() as db:
            async with db.begin():
                repo = self._repository_factory(db)
                # the snapshot upsert always precedes a start, so the day row exists to lock
                await repo.lock_daily(strategy.job_type, snapshot.event_key, snapshot.run_date)
                running = await repo.find_running_run(strategy.job_type, snapshot.event_key, snapshot.run_date)
                if running is not None:
                    if not self._is_stale(running):
                        raise HousekeepingRunInProgress(strategy.job_type, snapshot.event_key, running.id)
                    logger.warning(
                        "Closing abandoned housekeeping attempt.",
                        extra={"run_id": running.id, "attempt": running.attempt},
                    )
                    await repo.complete_run(
                        running.id,
                        RUN_FAILED,
                        completed_at=now,
                        duration_ms=_duration_ms(running.started_at, now),
                        deleted=RowCounts(
                            success=running.deleted_success or 0,
                            failure=running.deleted_failure or 0,
                            total=running.deleted_total or 0,
                        ),
                        error_message=ABANDONED_ERROR,
                    )

                attempt = await repo.get_max_attempt(strategy.job_type, snapshot.event_key, snapshot.run_date) + 1
                run_id = str(uuid.uuid4())
                await repo.create_run(
                    id=run_id,
                    job_type=strategy.job_type,
                    event_key=snapshot.event_key,
                    trigger_type=trigger_type,
                    status=RUN_RUNNING,
                    cutoff_date=snapshot.cutoff_date,
                    run_date=snapshot.run_date,
                    attempt=attempt,
                    started_at=now,
                    deleted_success=0,
                    deleted_failure=0,
                    deleted_total=0,
                )
                await repo.update_daily_last_run(
                    strategy.job_type, snapshot.event_key, snapshot.run_date,
                    status=RUN_RUNNING, run_id=run_id, attempt=attempt, started_at=now,
                )

        logger.info(
            f"Housekeeping attempt {attempt} started.",
            extra={
                "run_id": run_id,
                "job_type": strategy.job_type,
                "event_key": snapshot.event_key,
                "trigger_type": trigger_type,
                "run_date": snapshot.run_date.isoformat(),
            },
        )
        return RunOutcome(
            run_id=run_id,
            job_type=strategy.job_type,
            event_key=snapshot.event_key,
            trigger_type=trigger_type,
            run_date=snapshot.run_date,
            attempt=attempt,
            status=RUN_RUNNING,
            cutoff_date=snapshot.cutoff_date,
            started_at=now,
        )

    async def _delete_eligible(self, strategy: HousekeepingStrategy, outcome: RunOutcome) -> None:
        """Deletes in bounded batches, one transaction per batch, recording progress on the outcome."""
        current_key = None
        try:
            for item_key in strategy.item_keys(outcome.event_key):
                current_key = item_key
                outcome.per_item[item_key] = RowCounts()
                while True:
                    async with self._session_factory() as db:
                        async with db.begin():
                            deleted = await strategy.delete_batch(
                                db, item_key, outcome.cutoff_date, self._delete_batch_size
                            )
                    if deleted.is_empty:
                        break
                    outcome.per_item[item_key] = outcome.per_item[item_key] + deleted
                    outcome.deleted = outcome.deleted + deleted
                    HOUSEKEEPING_ROWS_DELETED_TOTAL.labels(strategy.job_type, item_key).inc(deleted.total)
        except Exception as e:
            failure = e if isinstance(e, HousekeepingDeleteFailure) else HousekeepingDeleteFailure(
                f"Delete failed for {current_key}: {e}"
            )
            logger.error(
                "Housekeeping delete batch failed; keeping progress so far.",
                extra={"run_id": outcome.run_id, "item_key": current_key, "deleted_total": outcome.deleted.total},
                exc_info=True,
            )
            outcome.status = RUN_FAILED
            outcome.error_message = str(failure)
        else:
            outcome.status = RUN_COMPLETED

    async def _finish(self, outcome: RunOutcome) -> None:
        outcome.completed_at = self._clock()
        outcome.duration_ms = _duration_ms(outcome.started_at, outcome.completed_at)
        async with self._session_factory() as db:
            async with db.begin():
                repo = self._repository_factory(db)
                await repo.add_run_items(outcome.run_id, outcome.per_item, outcome.completed_at)
                await repo.complete_run(
                    outcome.run_id,
                    outcome.status,
                    completed_at=outcome.completed_at,
                    duration_ms=outcome.duration_ms,
                    deleted=outcome.deleted,
                    error_message=outcome.error_message,
                )
                await repo.update_daily_last_run(
                    outcome.job_type, outcome.event_key, outcome.run_date,
                    status=outcome.status,
                    run_id=outcome.run_id,
                    attempt=outcome.attempt,
                    started_at=outcome.started_at,
                    completed_at=outcome.completed_at,
                    error=outcome.error_message,
                )

    async def _execute(self, strategy: HousekeepingStrategy, snapshot: EligibilitySnapshot, trigger_type: str) -> RunOutcome:
        outcome = await self._start(strategy, snapshot, trigger_type)
        with bind_job_ref(outcome.run_id):
            await self._delete_eligible(strategy, outcome)
            await self._finish(outcome)

        HOUSEKEEPING_RUNS_TOTAL.labels(outcome.job_type, trigger_type, outcome.status).inc()
        HOUSEKEEPING_RUN_DURATION_SECONDS.labels(outcome.job_type).observe(outcome.duration_ms / 1000)
        log = logger.warning if outcome.status == RUN_FAILED else logger.info
        log(
            f"Housekeeping attempt {outcome.attempt} finished with status {outcome.status}.",
            extra={
                "run_id": outcome.run_id,
                "job_type": outcome.job_type,
                "event_key": outcome.event_key,
                "deleted_total": outcome.deleted.total,
                "duration_ms": outcome.duration_ms,
            },
        )
        return outcome
