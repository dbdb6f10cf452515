# src/libs/replay-common/replay_common/logging_utils.py
import logging
import os
import sys
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Optional

from pythonjsonlogger import jsonlogger

from .config import SERVICE_NAME

# Correlation ID of the HTTP request or scheduler tick being handled.
correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="<not-set>")
request_id_var: ContextVar[str] = ContextVar("request_id", default="<not-set>")
trace_id_var: ContextVar[str] = ContextVar("trace_id", default="<not-set>")
# Replay job id or housekeeping run id the current work belongs to.
job_ref_var: ContextVar[str] = ContextVar("job_ref", default="<not-set>")


class CorrelationIdFilter(logging.Filter):
    """
    Stamps every record with the request/tick correlation IDs and the replay
    job or housekeeping run it was emitted for, so one job's lines can be
    pulled out of an interleaved stream.
    """
    def __init__(self, service_name: str):
        super().__init__()
        self.service_name = service_name

    def filter(self, record):
        record.correlation_id = correlation_id_var.get()
        record.request_id = request_id_var.get()
        record.trace_id = trace_id_var.get()
        record.job_ref = job_ref_var.get()
        record.service = self.service_name
        record.environment = os.getenv("ENVIRONMENT", "local")
        return True


def setup_logging(service_name: Optional[str] = None):
    """
    Configures the root logger for JSON output. Each deployable passes its
    own name; SERVICE_NAME from the environment is the fallback.
    """
    root_logger = logging.getLogger()

    # Clear any existing handlers to prevent duplicate logs
    if root_logger.hasHandlers():
        root_logger.handlers.clear()

    root_logger.setLevel(logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    formatter = jsonlogger.JsonFormatter(
        "%(asctime)s %(name)s %(levelname)s %(message)s %(service)s %(environment)s "
        "%(correlation_id)s %(request_id)s %(trace_id)s %(job_ref)s",
        rename_fields={
            "asctime": "timestamp",
            "levelname": "level",
            "name": "logger"
        }
    )
    handler.setFormatter(formatter)
    handler.addFilter(CorrelationIdFilter(service_name or SERVICE_NAME))

    root_logger.addHandler(handler)


@contextmanager
def bind_job_ref(job_ref: str):
    """Tags log lines inside the block with a replay job or housekeeping run id."""
    token = job_ref_var.set(job_ref)
    try:
        yield
    finally:
        job_ref_var.reset(token)


def generate_correlation_id(prefix: str) -> str:
    """
    Generates a new correlation ID with a service-specific prefix,
    'RPL' for the replay API and 'HKP' for housekeeping ticks.
    """
    return f"{prefix}:{uuid.uuid4()}"
