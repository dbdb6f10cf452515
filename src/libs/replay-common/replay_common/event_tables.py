# src/libs/replay-common/replay_common/event_tables.py
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from sqlalchemy import (
    Table, Column, BigInteger, Integer, SmallInteger,
    String, Text, DateTime, Index, MetaData
)

from .config import EVENT_KEYS
from .exceptions import UnknownEventKey

# Event tables are owned by the event pipeline, not by the audit models.
event_metadata = MetaData()


def table_prefix(event_key: str) -> str:
    """payments.in -> payments_in"""
    return event_key.strip().lower().replace(".", "_").replace("-", "_")


def _common_columns() -> List[Column]:
    return [
        Column("id", BigInteger, primary_key=True, autoincrement=True),
        Column("event_datetime", DateTime, nullable=False),
        Column("event_trace_id", String(64), nullable=True),
        Column("account_number", String(64), nullable=True),
        Column("customer_type", String(32), nullable=True),
        Column("created_at", DateTime(timezone=True), nullable=False),
        Column("source_topic", String(255), nullable=True),
        Column("source_partition_id", Integer, nullable=True),
        Column("source_offset", BigInteger, nullable=True),
        Column("message_key", String(255), nullable=True),
        Column("source_payload", Text, nullable=True),
        Column("transformed_payload", Text, nullable=True),
        Column("latency_ms", BigInteger, nullable=True),
        Column("latency_event_received_ms", BigInteger, nullable=True),
    ]


def _target_columns() -> List[Column]:
    return [
        Column("target_topic", String(255), nullable=True),
        Column("target_partition_id", Integer, nullable=True),
        Column("target_offset", BigInteger, nullable=True),
    ]


def build_success_table(event_key: str, metadata: MetaData = event_metadata) -> Table:
    name = f"{table_prefix(event_key)}_success"
    return Table(
        name, metadata,
        *_common_columns(),
        Column("latency_event_sent_ms", BigInteger, nullable=True),
        *_target_columns(),
        Index(f"idx_{name}_event_dt_trace", "event_datetime", "event_trace_id"),
    )


def build_failure_table(event_key: str, metadata: MetaData = event_metadata) -> Table:
    name = f"{table_prefix(event_key)}_failure"
    return Table(
        name, metadata,
        *_common_columns(),
        *_target_columns(),
        Column("exception_type", String(255), nullable=True),
        Column("exception_message", Text, nullable=True),
        Column("exception_stack", Text, nullable=True),
        Column("retriable", SmallInteger, nullable=True),
        Column("retry_attempt", Integer, nullable=True),
        Index(f"idx_{name}_event_dt_trace", "event_datetime", "event_trace_id"),
    )


@dataclass(frozen=True)
class EventTablePair:
    event_key: str
    success: Table
    failure: Table


class EventTableCatalog:
    """
    Maps configured event keys to their success/failure table pair.
    Keys are matched case-sensitively as configured.
    """

    def __init__(self, event_keys: Optional[Iterable[str]] = None, metadata: Optional[MetaData] = None):
        self._metadata = metadata if metadata is not None else MetaData()
        self._pairs: Dict[str, EventTablePair] = {}
        for key in (event_keys if event_keys is not None else EVENT_KEYS):
            if key in self._pairs:
                continue
            self._pairs[key] = EventTablePair(
                event_key=key,
                success=build_success_table(key, self._metadata),
                failure=build_failure_table(key, self._metadata),
            )

    def keys(self) -> List[str]:
        return list(self._pairs.keys())

    def __contains__(self, event_key: str) -> bool:
        return event_key in self._pairs

    def resolve(self, event_key: Optional[str]) -> EventTablePair:
        pair = self._pairs.get(event_key) if event_key else None
        if pair is None:
            raise UnknownEventKey(event_key or "")
        return pair


_default_catalog: Optional[EventTableCatalog] = None


def get_event_catalog() -> EventTableCatalog:
    global _default_catalog
    if _default_catalog is None:
        _default_catalog = EventTableCatalog(EVENT_KEYS, event_metadata)
    return _default_catalog
