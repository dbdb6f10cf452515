# src/libs/replay-common/replay_common/housekeeping/models.py
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Dict, List, Optional


@dataclass(frozen=True)
class RowCounts:
    success: int = 0
    failure: int = 0
    total: int = 0

    @classmethod
    def split(cls, success: int, failure: int) -> "RowCounts":
        return cls(success=success, failure=failure, total=success + failure)

    @classmethod
    def only_total(cls, total: int) -> "RowCounts":
        return cls(total=total)

    def __add__(self, other: "RowCounts") -> "RowCounts":
        return RowCounts(
            success=self.success + other.success,
            failure=self.failure + other.failure,
            total=self.total + other.total,
        )

    @property
    def is_empty(self) -> bool:
        return self.total == 0


@dataclass
class EligibilitySnapshot:
    """Rows older than the cutoff for one scope, captured at snapshot_at."""
    job_type: str
    event_key: str
    run_date: date
    retention_days: int
    cutoff_date: date
    snapshot_at: datetime
    per_item: Dict[str, RowCounts] = field(default_factory=dict)

    @property
    def totals(self) -> RowCounts:
        result = RowCounts()
        for counts in self.per_item.values():
            result = result + counts
        return result


@dataclass
class RunOutcome:
    run_id: str
    job_type: str
    event_key: str
    trigger_type: str
    run_date: date
    attempt: int
    status: str
    cutoff_date: date
    started_at: datetime
    completed_at: Optional[datetime] = None
    duration_ms: Optional[int] = None
    deleted: RowCounts = field(default_factory=RowCounts)
    per_item: Dict[str, RowCounts] = field(default_factory=dict)
    error_message: Optional[str] = None

    @property
    def item_keys(self) -> List[str]:
        return list(self.per_item.keys())
