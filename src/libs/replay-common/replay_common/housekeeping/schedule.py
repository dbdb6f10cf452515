# src/libs/replay-common/replay_common/housekeeping/schedule.py
from datetime import datetime, timedelta


def next_tick_at(now: datetime, interval_minutes: int) -> datetime:
    """
    Next scheduler tick strictly after `now`, on a grid of `interval_minutes`
    anchored at midnight of `now`'s day.
    """
    interval = max(1, interval_minutes)
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    elapsed = int((now - midnight).total_seconds() // 60)
    slots = elapsed // interval + 1
    return midnight + timedelta(minutes=slots * interval)
