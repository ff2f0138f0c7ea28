# tests/test_store.py
from datetime import timedelta

import pytest

from studio_backend.jobs.errors import InvalidTransitionError, NotFoundError, ValidationError
from studio_backend.jobs.models import JobStatus, JobType, ProgressSnapshot, utcnow
from studio_backend.jobs.store import transition_fields

from tests.conftest import SCOPE

COMPETITOR_PAYLOAD = {"candidates": ["https://rival.example.com"]}


async def test_create_inserts_pending_job(store):
    job = await store.create("analyze_competitors", SCOPE, COMPETITOR_PAYLOAD)

    loaded = await store.load(job.id)
    assert loaded.status == JobStatus.PENDING
    assert loaded.type == JobType.ANALYZE_COMPETITORS
    assert loaded.owner_scope == SCOPE
    assert loaded.payload["candidates"] == ["https://rival.example.com"]
    assert loaded.started_at is None
    assert loaded.progress is None


async def test_create_stores_normalized_payload(store):
    job = await store.create("generate_personas", SCOPE, {"audience_id": " aud-1 "})

    loaded = await store.load(job.id)
    assert loaded.payload == {
        "audience_id": "aud-1",
        "audience": {},
        "count": 1,
        "render_portraits": True,
    }


@pytest.mark.parametrize("job_type,payload,message", [
    ("make_coffee", {}, "Unknown job type"),
    ("analyze_competitors", {}, "either website_url or candidates"),
    ("analyze_competitors", {"candidates": ["ftp://nope"]}, "not an http(s) URL"),
    ("generate_ads", {"template_id": "t"}, "Invalid payload"),
    ("generate_personas", {"audience_id": "a", "extra": 1}, "extra"),
    ("generate_personas", ["not", "a", "dict"], "payload must be an object"),
])
async def test_create_rejects_bad_payloads(store, job_type, payload, message):
    with pytest.raises(ValidationError) as exc_info:
        await store.create(job_type, SCOPE, payload)
    assert message in str(exc_info.value)
    assert await store.count_by_status() == {s.value: 0 for s in JobStatus}


async def test_create_requires_owner_scope(store):
    with pytest.raises(ValidationError, match="owner_scope"):
        await store.create("analyze_competitors", "  ", COMPETITOR_PAYLOAD)


async def test_get_hides_jobs_of_other_scopes(store):
    job = await store.create("analyze_competitors", SCOPE, COMPETITOR_PAYLOAD)

    assert (await store.get(job.id, SCOPE)).id == job.id
    with pytest.raises(NotFoundError) as other_scope:
        await store.get(job.id, "project-2")
    with pytest.raises(NotFoundError) as missing:
        await store.get("no-such-job", SCOPE)
    assert str(other_scope.value) == str(missing.value)


async def test_forward_transitions_set_timestamps(store):
    job = await store.create("analyze_competitors", SCOPE, COMPETITOR_PAYLOAD)

    processing = await store.transition(job.id, JobStatus.PROCESSING)
    assert processing.status == JobStatus.PROCESSING
    assert processing.started_at is not None
    assert processing.completed_at is None

    completed = await store.transition(job.id, JobStatus.COMPLETED, {"result": {"saved_count": 2}})
    assert completed.status == JobStatus.COMPLETED
    assert completed.result == {"saved_count": 2}
    assert completed.error is None
    assert completed.completed_at >= completed.started_at


async def test_terminal_states_never_change(store):
    job = await store.create("analyze_competitors", SCOPE, COMPETITOR_PAYLOAD)
    await store.transition(job.id, JobStatus.PROCESSING)
    await store.transition(job.id, JobStatus.FAILED, {"error": "boom"})

    for target in (JobStatus.PENDING, JobStatus.PROCESSING, JobStatus.COMPLETED):
        with pytest.raises(InvalidTransitionError):
            await store.transition(job.id, target, {"result": {}} if target == JobStatus.COMPLETED else None)

    loaded = await store.load(job.id)
    assert loaded.status == JobStatus.FAILED
    assert loaded.error == "boom"


async def test_pending_cannot_skip_processing(store):
    job = await store.create("analyze_competitors", SCOPE, COMPETITOR_PAYLOAD)

    with pytest.raises(InvalidTransitionError) as exc_info:
        await store.transition(job.id, JobStatus.COMPLETED, {"result": {}})
    assert exc_info.value.from_status == JobStatus.PENDING


async def test_only_one_claim_wins(store):
    job = await store.create("analyze_competitors", SCOPE, COMPETITOR_PAYLOAD)

    await store.transition(job.id, JobStatus.PROCESSING)
    with pytest.raises(InvalidTransitionError):
        await store.transition(job.id, JobStatus.PROCESSING)


async def test_transition_of_missing_job(store):
    with pytest.raises(NotFoundError):
        await store.transition("missing", JobStatus.PROCESSING)


def test_transition_fields_enforce_terminal_payloads():
    with pytest.raises(ValueError, match="result"):
        transition_fields(JobStatus.COMPLETED, {})
    with pytest.raises(ValueError, match="error"):
        transition_fields(JobStatus.FAILED, {"error": ""})
    with pytest.raises(ValueError, match="Unsupported"):
        transition_fields(JobStatus.PROCESSING, {"progress": 1})

    failed = transition_fields(JobStatus.FAILED, {"error": "x"})
    assert failed["result"] is None
    assert failed["progress"] is None
    assert "completed_at" in failed


async def test_progress_only_while_processing_and_never_backwards(store):
    job = await store.create("analyze_competitors", SCOPE, COMPETITOR_PAYLOAD)

    assert not await store.update_progress(job.id, ProgressSnapshot(current=0, total=3, step="a"))

    await store.transition(job.id, JobStatus.PROCESSING)
    assert await store.update_progress(job.id, ProgressSnapshot(current=2, total=3, step="c"))
    assert not await store.update_progress(job.id, ProgressSnapshot(current=1, total=3, step="b"))
    assert await store.update_progress(job.id, ProgressSnapshot(current=2, total=3, step="c", details="1/4 processed"))

    loaded = await store.load(job.id)
    assert loaded.progress.current == 2
    assert loaded.progress.details == "1/4 processed"

    completed = await store.transition(job.id, JobStatus.COMPLETED, {"result": {}})
    assert completed.progress is None


async def test_list_jobs_is_scoped_and_filtered(store):
    first = await store.create("analyze_competitors", SCOPE, COMPETITOR_PAYLOAD)
    second = await store.create("generate_personas", SCOPE, {"audience_id": "aud-1"})
    await store.create("generate_personas", "project-2", {"audience_id": "aud-9"})
    await store.transition(first.id, JobStatus.PROCESSING)

    listed = await store.list_jobs(SCOPE)
    assert [j.id for j in listed] == [second.id, first.id]

    processing = await store.list_jobs(SCOPE, status=JobStatus.PROCESSING)
    assert [j.id for j in processing] == [first.id]


async def test_find_stale_ages_by_the_right_timestamp(store):
    pending = await store.create("analyze_competitors", SCOPE, COMPETITOR_PAYLOAD)
    running = await store.create("analyze_competitors", SCOPE, COMPETITOR_PAYLOAD)
    await store.transition(running.id, JobStatus.PROCESSING)

    future = utcnow() + timedelta(seconds=5)
    past = utcnow() - timedelta(hours=1)

    assert [j.id for j in await store.find_stale(JobStatus.PENDING, future)] == [pending.id]
    assert [j.id for j in await store.find_stale(JobStatus.PROCESSING, future)] == [running.id]
    assert await store.find_stale(JobStatus.PENDING, past) == []


async def test_count_by_status(store):
    done = await store.create("analyze_competitors", SCOPE, COMPETITOR_PAYLOAD)
    await store.create("analyze_competitors", SCOPE, COMPETITOR_PAYLOAD)
    await store.transition(done.id, JobStatus.PROCESSING)
    await store.transition(done.id, JobStatus.COMPLETED, {"result": {}})

    assert await store.count_by_status() == {
        "pending": 1, "processing": 0, "completed": 1, "failed": 0,
    }


async def test_finished_jobs_are_never_deleted(store):
    done = await store.create("analyze_competitors", SCOPE, COMPETITOR_PAYLOAD)
    await store.transition(done.id, JobStatus.PROCESSING)
    await store.transition(done.id, JobStatus.FAILED, {"error": "boom"})

    assert not hasattr(store, "cleanup_old_jobs")
    assert (await store.load(done.id)).status == JobStatus.FAILED
