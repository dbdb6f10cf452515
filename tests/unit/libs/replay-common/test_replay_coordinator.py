# tests/unit/libs/replay-common/test_replay_coordinator.py
from datetime import date

import pytest

from replay_common.database_models import (
    ITEM_FAILED, ITEM_NOT_FOUND, ITEM_QUEUED, ITEM_REPLAYED,
    JOB_COMPLETED, JOB_FAILED, JOB_PARTIAL, SELECTION_FILTERS, SELECTION_IDS,
)
from replay_common.event_tables import EventTableCatalog
from replay_common.exceptions import (
    InvalidSelection, ReplayEndpointTimeout, ReplayTargetNotFound, SelectionTooLarge, UnknownEventKey
)
from replay_common.replay_coordinator import (
    ReplayJobCoordinator, ReplaySelection, derive_job_status
)
from replay_common.replay_filters import ReplayFilterSpec
from tests.unit.test_support.event_audit_fakes import (
    FakeEventTableGateway,
    FakeSession,
    InMemoryReplayJobRepository,
    ScriptedReplayClient,
    StepClock,
    failure_row,
    make_session_factory,
    utc,
)

pytestmark = pytest.mark.asyncio

DAY = date(2026, 3, 1)


@pytest.fixture
def repo() -> InMemoryReplayJobRepository:
    return InMemoryReplayJobRepository()


@pytest.fixture
def gateway() -> FakeEventTableGateway:
    return FakeEventTableGateway(failures={
        101: failure_row(101),
        102: failure_row(102),
        103: failure_row(103),
    })


def build_coordinator(client, repo, gateway, **overrides) -> ReplayJobCoordinator:
    options = dict(
        session_factory=make_session_factory(FakeSession()),
        catalog=EventTableCatalog(["payments.in", "loans.in"]),
        clock=StepClock(utc(2026, 3, 2, 9, 0, 0)),
        repository_factory=repo.factory,
        gateway_factory=gateway.factory,
        batch_size=50,
        max_ids=50,
        max_filter_records=100,
        max_attempts=2,
    )
    options.update(overrides)
    return ReplayJobCoordinator(client, **options)


def ids_selection(*ids, mode="IDS") -> ReplaySelection:
    return ReplaySelection(mode=mode, event_key="payments.in", day=DAY, ids=list(ids), requested_by="ops", reason="retry")


async def test_mixed_outcomes_produce_partial_job(repo, gateway):
    """
    GIVEN ids 101 and 102 where the endpoint replays 101 and keeps rejecting 102
    WHEN the replay is submitted
    THEN the job is PARTIAL with one success, one failure and lastError on 102.
    """
    client = ScriptedReplayClient({102: ITEM_FAILED})
    coordinator = build_coordinator(client, repo, gateway)

    submission = await coordinator.submit(ids_selection(101, 102))

    assert submission.status == JOB_PARTIAL
    assert (submission.requested, submission.succeeded, submission.failed, submission.queued) == (2, 1, 1, 0)
    job = repo.jobs[submission.job_id]
    assert job.status == JOB_PARTIAL
    assert job.selection_type == SELECTION_IDS
    assert job.succeeded_count == 1
    assert job.failed_count == 1
    assert job.completed_at is not None
    replayed = repo.item_for(submission.job_id, 101)
    assert replayed.status == ITEM_REPLAYED
    assert replayed.emitted_id == "emit-101"
    assert replayed.last_error is None
    assert replayed.trace_id == "trace-101"
    rejected = repo.item_for(submission.job_id, 102)
    assert rejected.status == ITEM_FAILED
    assert rejected.last_error == "downstream rejected record"
    assert rejected.attempt_count == 2


async def test_failed_item_succeeds_on_retry(repo, gateway):
    client = ScriptedReplayClient({102: [ITEM_FAILED, ITEM_REPLAYED]})
    coordinator = build_coordinator(client, repo, gateway)

    submission = await coordinator.submit(ids_selection(101, 102))

    assert submission.status == JOB_COMPLETED
    assert client.calls == [[101, 102], [102]]
    retried = repo.item_for(submission.job_id, 102)
    assert retried.status == ITEM_REPLAYED
    assert retried.attempt_count == 2
    assert retried.last_error is None


async def test_ids_missing_from_failure_table_are_not_found(repo, gateway):
    client = ScriptedReplayClient()
    coordinator = build_coordinator(client, repo, gateway)

    submission = await coordinator.submit(ids_selection(101, 999))

    assert submission.status == JOB_PARTIAL
    assert client.calls == [[101]]
    missing = repo.item_for(submission.job_id, 999)
    assert missing.status == ITEM_NOT_FOUND
    assert missing.attempt_count == 0
    assert "999" in missing.last_error


async def test_single_id_mode_and_duplicates_are_collapsed(repo, gateway):
    client = ScriptedReplayClient()
    coordinator = build_coordinator(client, repo, gateway)

    submission = await coordinator.submit(ids_selection(101, "101", mode="ID"))

    assert submission.requested == 1
    assert submission.status == JOB_COMPLETED
    assert client.calls == [[101]]


async def test_endpoint_timeout_fails_every_item(repo, gateway):
    client = ScriptedReplayClient(batch_error=ReplayEndpointTimeout("Replay endpoint timed out after 10s"))
    coordinator = build_coordinator(client, repo, gateway, max_attempts=1)

    submission = await coordinator.submit(ids_selection(101, 102))

    assert submission.status == JOB_FAILED
    assert submission.failed == 2
    for record_id in (101, 102):
        item = repo.item_for(submission.job_id, record_id)
        assert item.status == ITEM_FAILED
        assert item.last_error == "Replay endpoint timed out after 10s"


async def test_endpoint_404_marks_batch_not_found_without_retry(repo, gateway):
    client = ScriptedReplayClient(batch_error=ReplayTargetNotFound("Replay target not found"))
    coordinator = build_coordinator(client, repo, gateway)

    submission = await coordinator.submit(ids_selection(101, 102))

    assert submission.status == JOB_FAILED
    assert len(client.calls) == 1
    assert {item.status for item in repo.items_for(submission.job_id)} == {ITEM_NOT_FOUND}


async def test_unexpected_client_error_is_recorded_on_items(repo, gateway):
    client = ScriptedReplayClient(batch_error=RuntimeError("socket closed"))
    coordinator = build_coordinator(client, repo, gateway, max_attempts=1)

    submission = await coordinator.submit(ids_selection(101))

    assert submission.status == JOB_FAILED
    assert repo.item_for(submission.job_id, 101).last_error == "unexpected error: socket closed"


async def test_items_are_sent_in_bounded_batches(repo, gateway):
    client = ScriptedReplayClient()
    coordinator = build_coordinator(client, repo, gateway, batch_size=2)

    await coordinator.submit(ids_selection(101, 102, 103))

    assert client.calls == [[101, 102], [103]]


async def test_filters_matching_nothing_complete_immediately(repo):
    """
    GIVEN filters that match no failure rows
    WHEN the replay job is submitted
    THEN it is COMPLETED with zero requested and no items, without calling the endpoint.
    """
    client = ScriptedReplayClient()
    coordinator = build_coordinator(client, repo, FakeEventTableGateway(matching=[]))
    spec = ReplayFilterSpec.parse({"exceptionType": "NoSuchError"})

    submission = await coordinator.submit(
        ReplaySelection(mode="FILTERS", event_key="payments.in", day=DAY, filters=spec)
    )

    assert submission.status == JOB_COMPLETED
    assert submission.requested == 0
    assert client.calls == []
    job = repo.jobs[submission.job_id]
    assert job.total_requested == 0
    assert job.selection_type == SELECTION_FILTERS
    assert '"exceptionType":"NoSuchError"' in job.filters_json
    assert repo.items_for(submission.job_id) == []


async def test_filters_selection_replays_matching_rows(repo):
    gateway = FakeEventTableGateway(matching=[failure_row(7), failure_row(8)])
    client = ScriptedReplayClient()
    coordinator = build_coordinator(client, repo, gateway)

    submission = await coordinator.submit(
        ReplaySelection(mode="filters", event_key="payments.in", day=DAY, filters=ReplayFilterSpec())
    )

    assert submission.status == JOB_COMPLETED
    assert submission.succeeded == 2
    assert gateway.selected_with_limit == 100
    assert client.calls == [[7, 8]]


async def test_filters_over_limit_are_rejected_before_job_creation(repo):
    gateway = FakeEventTableGateway(matching=[failure_row(i) for i in range(1, 5)])
    coordinator = build_coordinator(ScriptedReplayClient(), repo, gateway, max_filter_records=3)

    with pytest.raises(SelectionTooLarge) as exc_info:
        await coordinator.submit(ReplaySelection(mode="FILTERS", event_key="payments.in", day=DAY))

    assert exc_info.value.status_code == 400
    assert repo.jobs == {}


async def test_too_many_ids_rejected(repo, gateway):
    coordinator = build_coordinator(ScriptedReplayClient(), repo, gateway, max_ids=2)

    with pytest.raises(SelectionTooLarge):
        await coordinator.submit(ids_selection(1, 2, 3))

    assert repo.jobs == {}


@pytest.mark.parametrize("ids", [[], ["abc"], [True]])
async def test_invalid_ids_rejected(repo, gateway, ids):
    coordinator = build_coordinator(ScriptedReplayClient(), repo, gateway)

    with pytest.raises(InvalidSelection):
        await coordinator.submit(ids_selection(*ids))


async def test_unknown_event_key_rejected(repo, gateway):
    coordinator = build_coordinator(ScriptedReplayClient(), repo, gateway)

    with pytest.raises(UnknownEventKey):
        await coordinator.submit(ReplaySelection(mode="IDS", event_key="nope.in", day=DAY, ids=[1]))


async def test_unsupported_mode_rejected(repo, gateway):
    coordinator = build_coordinator(ScriptedReplayClient(), repo, gateway)

    with pytest.raises(InvalidSelection):
        await coordinator.submit(ids_selection(101, mode="RANGE"))


async def test_derive_job_status():
    assert derive_job_status(3, 0) == JOB_COMPLETED
    assert derive_job_status(0, 0) == JOB_COMPLETED
    assert derive_job_status(0, 2) == JOB_FAILED
    assert derive_job_status(1, 2) == JOB_PARTIAL


async def test_queued_status_is_only_transient(repo, gateway):
    coordinator = build_coordinator(ScriptedReplayClient(), repo, gateway)

    submission = await coordinator.submit(ids_selection(101, 102, 103))

    assert ITEM_QUEUED not in {item.status for item in repo.items_for(submission.job_id)}
    assert submission.queued == 0


class _FailingAttemptsRepository(InMemoryReplayJobRepository):
    async def record_attempts(self, attempts):
        raise RuntimeError("connection reset")


class _FlakyCountRepository(InMemoryReplayJobRepository):
    """Fails the first status count, as if the connection dropped during reconcile."""

    def __init__(self) -> None:
        super().__init__()
        self.count_calls = 0

    async def count_items_by_status(self, job_id):
        self.count_calls += 1
        if self.count_calls == 1:
            raise RuntimeError("connection reset")
        return await super().count_items_by_status(job_id)


async def test_storage_error_while_recording_attempts_closes_job_as_failed(gateway):
    """
    GIVEN a repository that cannot record item attempts
    WHEN a replay is submitted
    THEN the error propagates and the job is closed FAILED with its items still QUEUED.
    """
    repo = _FailingAttemptsRepository()
    coordinator = build_coordinator(ScriptedReplayClient(), repo, gateway)

    with pytest.raises(RuntimeError, match="connection reset"):
        await coordinator.submit(ids_selection(101))

    job = next(iter(repo.jobs.values()))
    assert job.status == JOB_FAILED
    assert job.completed_at is not None
    assert (job.succeeded_count, job.failed_count, job.queued_count) == (0, 0, 1)
    assert job.succeeded_count + job.failed_count + job.queued_count == job.total_requested
    assert repo.item_for(job.id, 101).status == ITEM_QUEUED


async def test_storage_error_during_reconcile_keeps_recorded_outcomes(gateway):
    repo = _FlakyCountRepository()
    coordinator = build_coordinator(ScriptedReplayClient({102: ITEM_FAILED}), repo, gateway)

    with pytest.raises(RuntimeError):
        await coordinator.submit(ids_selection(101, 102))

    job = next(iter(repo.jobs.values()))
    assert job.status == JOB_FAILED
    assert job.completed_at is not None
    assert (job.succeeded_count, job.failed_count, job.queued_count) == (1, 1, 0)
