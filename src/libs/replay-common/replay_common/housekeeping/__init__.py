"""Housekeeping retention engine: per-job-type strategies over shared run/day bookkeeping."""

from .models import EligibilitySnapshot, RowCounts, RunOutcome

__all__ = [
    "EligibilitySnapshot",
    "RowCounts",
    "RunOutcome",
]
