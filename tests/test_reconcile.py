# tests/test_reconcile.py
from studio_backend.jobs.models import JobStatus, JobType
from studio_backend.jobs.reconcile import ABANDONED_MESSAGE, reconcile

PAYLOAD = {"audience_id": "aud-1"}


async def test_lost_enqueue_is_repaired(store, queue, make_job):
    orphan = await make_job("generate_personas", PAYLOAD)
    queued = await make_job("generate_personas", PAYLOAD)
    await queue.enqueue(JobType.GENERATE_PERSONAS, queued.id)

    report = await reconcile(store, queue, pending_after=0, processing_after=0)

    assert report.requeued == [orphan.id]
    assert sorted(await queue.queued_job_ids()) == sorted([orphan.id, queued.id])


async def test_young_pending_jobs_are_left_alone(store, queue, make_job):
    await make_job("generate_personas", PAYLOAD)

    report = await reconcile(store, queue, pending_after=3600, processing_after=3600)

    assert report.requeued == []
    assert await queue.queued_job_ids() == []


async def test_abandoned_processing_job_is_failed(store, queue, make_job):
    abandoned = await make_job("generate_personas", PAYLOAD)
    held = await make_job("generate_personas", PAYLOAD)
    for job in (abandoned, held):
        await store.transition(job.id, JobStatus.PROCESSING)
    await queue.enqueue(JobType.GENERATE_PERSONAS, held.id)

    report = await reconcile(store, queue, pending_after=0, processing_after=0)

    assert report.failed == [abandoned.id]
    failed = await store.load(abandoned.id)
    assert failed.status == JobStatus.FAILED
    assert failed.error == ABANDONED_MESSAGE
    assert (await store.load(held.id)).status == JobStatus.PROCESSING


async def test_sweep_is_idempotent(store, queue, make_job):
    await make_job("generate_personas", PAYLOAD)

    first = await reconcile(store, queue, pending_after=0, processing_after=0)
    second = await reconcile(store, queue, pending_after=0, processing_after=0)

    assert len(first.requeued) == 1
    assert second.to_dict() == {"requeued": [], "failed": []}


async def test_submit_survives_a_failed_enqueue(service, store, queue, mocker):
    mocker.patch.object(queue, "enqueue", side_effect=RuntimeError("database is locked"))

    job = await service.submit("generate_personas", "project-1", PAYLOAD)

    assert (await store.load(job.id)).status == JobStatus.PENDING
    mocker.stopall()

    report = await reconcile(store, queue, pending_after=0, processing_after=0)

    assert report.requeued == [job.id]
    assert await queue.queued_job_ids() == [job.id]
