# src/libs/replay-common/replay_common/exceptions.py


class EventAuditError(Exception):
    """
    Base class for errors raised by the replay coordinator and the
    housekeeping engine. The API maps each subclass to an HTTP status code
    and a stable error code.
    """
    status_code = 500
    code = "EVENT_AUDIT_ERROR"


class UnknownEventKey(EventAuditError):
    """The event key has no success/failure table pair in the catalog."""
    status_code = 400
    code = "UNKNOWN_EVENT_KEY"

    def __init__(self, event_key: str):
        super().__init__(f"Unknown event key '{event_key}'.")
        self.event_key = event_key


class InvalidSelection(EventAuditError):
    status_code = 400
    code = "INVALID_SELECTION"


class SelectionTooLarge(EventAuditError):
    """Raised before any replay job row is created."""
    status_code = 400
    code = "SELECTION_TOO_LARGE"

    def __init__(self, requested: int, limit: int):
        super().__init__(f"Selection of {requested} records exceeds the limit of {limit}.")
        self.requested = requested
        self.limit = limit


class ReplayJobNotFound(EventAuditError):
    status_code = 404
    code = "REPLAY_JOB_NOT_FOUND"

    def __init__(self, job_id: str):
        super().__init__(f"Replay job '{job_id}' was not found.")
        self.job_id = job_id


class InvalidHousekeepingScope(EventAuditError):
    status_code = 400
    code = "INVALID_HOUSEKEEPING_SCOPE"


class HousekeepingRunInProgress(EventAuditError):
    """Another attempt for the same (job type, event key, run date) is RUNNING."""
    status_code = 409
    code = "HOUSEKEEPING_RUN_IN_PROGRESS"

    def __init__(self, job_type: str, event_key: str, run_id: str):
        super().__init__(
            f"Housekeeping run '{run_id}' for {job_type}/{event_key} is still running."
        )
        self.run_id = run_id


class HousekeepingRunNotFound(EventAuditError):
    status_code = 404
    code = "HOUSEKEEPING_RUN_NOT_FOUND"


class ReplayEndpointError(EventAuditError):
    """
    The downstream event app rejected or failed a replay call. Recorded on
    the affected replay items; never propagated to the API caller.
    """
    status_code = 502
    code = "REPLAY_ENDPOINT_ERROR"


class ReplayEndpointTimeout(ReplayEndpointError):
    code = "REPLAY_ENDPOINT_TIMEOUT"


class ReplayTargetNotFound(ReplayEndpointError):
    code = "REPLAY_TARGET_NOT_FOUND"


class HousekeepingDeleteFailure(EventAuditError):
    """
    A storage error interrupted a bounded delete batch. Rows removed by
    earlier batches stay deleted; the run is recorded as FAILED.
    """
    code = "HOUSEKEEPING_DELETE_FAILURE"
