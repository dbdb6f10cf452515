# src/libs/replay-common/replay_common/utils.py
import time
import functools
from datetime import datetime, timezone
from typing import Callable, Any, Iterable, Iterator, List, TypeVar

from .monitoring import DB_OPERATION_LATENCY_SECONDS

T = TypeVar("T")


def async_timed(repository: str, method: str) -> Callable:
    """
    A decorator that times an async function and records the latency
    in the DB_OPERATION_LATENCY_SECONDS Prometheus histogram.

    Args:
        repository: The name of the repository class (e.g., 'ReplayJobRepository').
        method: The name of the method being timed (e.g., 'list_jobs').
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs) -> Any:
            start_time = time.monotonic()
            try:
                return await func(*args, **kwargs)
            finally:
                DB_OPERATION_LATENCY_SECONDS.labels(
                    repository=repository,
                    method=method
                ).observe(time.monotonic() - start_time)
        return wrapper
    return decorator


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def chunked(values: Iterable[T], size: int) -> Iterator[List[T]]:
    """Yields consecutive lists of at most `size` elements, preserving order."""
    batch: List[T] = []
    for value in values:
        batch.append(value)
        if len(batch) >= size:
            yield batch
            batch = []
    if batch:
        yield batch
