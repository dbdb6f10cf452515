# src/services/housekeeping_service/app/scheduler/housekeeping_scheduler.py
import asyncio
import logging
from datetime import datetime
from typing import Callable, List, Optional, Sequence, Tuple

from replay_common.config import HOUSEKEEPING_TICK_INTERVAL_MINUTES
from replay_common.database_models import SCOPE_ALL
from replay_common.housekeeping.engine import HousekeepingEngine
from replay_common.housekeeping.models import RunOutcome
from replay_common.housekeeping.schedule import next_tick_at
from replay_common.housekeeping.strategies import JOB_RETENTION, JOB_REPLAY_AUDIT, JOB_HOUSEKEEPING_AUDIT
from replay_common.logging_utils import correlation_id_var, generate_correlation_id
from replay_common.utils import utc_now

logger = logging.getLogger(__name__)

SCHEDULED_SCOPES: Tuple[Tuple[str, str], ...] = (
    (JOB_RETENTION, SCOPE_ALL),
    (JOB_REPLAY_AUDIT, SCOPE_ALL),
    (JOB_HOUSEKEEPING_AUDIT, SCOPE_ALL),
)


class HousekeepingScheduler:
    """
    Timer-driven trigger for housekeeping. Every tick refreshes each scope's
    snapshot and lets the engine decide whether a new attempt may start.
    """
    def __init__(
        self,
        engine: Optional[HousekeepingEngine] = None,
        interval_minutes: int = HOUSEKEEPING_TICK_INTERVAL_MINUTES,
        clock: Callable[[], datetime] = utc_now,
        scopes: Sequence[Tuple[str, str]] = SCHEDULED_SCOPES,
    ):
        self._engine = engine or HousekeepingEngine()
        self._interval_minutes = interval_minutes
        self._clock = clock
        self._scopes = list(scopes)
        self._stop_event = asyncio.Event()

    def stop(self):
        logger.info("Housekeeping scheduler shutdown signal received.")
        self._stop_event.set()

    async def tick(self, now: Optional[datetime] = None) -> List[Optional[RunOutcome]]:
        """Runs one pass over all scheduled scopes for the current run date."""
        now = now or self._clock()
        token = correlation_id_var.set(generate_correlation_id("HKP"))
        outcomes: List[Optional[RunOutcome]] = []
        try:
            for job_type, event_key in self._scopes:
                try:
                    outcomes.append(await self._engine.run_scheduled(job_type, event_key, run_date=now.date()))
                except Exception:
                    logger.error(
                        "Housekeeping tick failed for scope.",
                        extra={"job_type": job_type, "event_key": event_key},
                        exc_info=True,
                    )
                    outcomes.append(None)
        finally:
            correlation_id_var.reset(token)
        return outcomes

    async def run(self):
        logger.info(f"HousekeepingScheduler started. Ticking every {self._interval_minutes} minutes.")
        while not self._stop_event.is_set():
            now = self._clock()
            wait_seconds = (next_tick_at(now, self._interval_minutes) - now).total_seconds()
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=wait_seconds)
                break
            except asyncio.TimeoutError:
                pass
            await self.tick()
        logger.info("HousekeepingScheduler has stopped.")
