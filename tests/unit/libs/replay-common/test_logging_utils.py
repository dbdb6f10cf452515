# tests/unit/libs/replay-common/test_logging_utils.py
import logging

from replay_common.db import get_server_settings
from replay_common.logging_utils import CorrelationIdFilter, bind_job_ref, job_ref_var


def _record() -> logging.LogRecord:
    return logging.LogRecord("replay_common", logging.INFO, __file__, 1, "message", None, None)


def test_filter_stamps_job_ref_and_service_name():
    log_filter = CorrelationIdFilter("housekeeping_service")

    with bind_job_ref("run-1"):
        record = _record()
        log_filter.filter(record)

    assert record.job_ref == "run-1"
    assert record.service == "housekeeping_service"


def test_bind_job_ref_restores_previous_value():
    before = job_ref_var.get()

    with bind_job_ref("rpl-abc"):
        assert job_ref_var.get() == "rpl-abc"

    assert job_ref_var.get() == before


def test_server_settings_name_the_connection_and_cap_statements():
    settings = get_server_settings()

    assert settings["application_name"]
    assert int(settings["statement_timeout"]) > 0
