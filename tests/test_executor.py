# tests/test_executor.py
import asyncio

import pytest

from studio_backend.jobs.errors import StepFailure, StepTimeout, StepWarning
from studio_backend.jobs.executor import (
    NO_OUTPUT_MESSAGE,
    Step,
    StepContext,
    StepExecutor,
    fan_out,
    run_with_timeout,
)
from studio_backend.jobs.models import JobStatus, JobType
from studio_backend.jobs.payloads import PersonaGenerationPayload
from studio_backend.jobs.progress import ProgressReporter
from studio_backend.pipelines.base import PipelineDefinition

PAYLOAD = {"audience_id": "aud-1"}


class ScriptedPipeline(PipelineDefinition):
    """Runs the given steps; the job has output when `items` is non-empty."""

    job_type = JobType.GENERATE_PERSONAS
    payload_model = PersonaGenerationPayload

    def __init__(self, steps, build_error=None):
        self.steps = steps
        self.build_error = build_error

    def build_steps(self, payload, services):
        return list(self.steps)

    def has_output(self, context: StepContext) -> bool:
        return bool(context.data.get("items"))

    def build_result(self, context: StepContext):
        if self.build_error:
            raise self.build_error
        return {"items": context.data["items"]}


def items_step(succeeding: int, total: int = 5):
    async def action(ctx):
        async def work(i):
            if i >= succeeding:
                raise RuntimeError(f"item {i} broke")
            return f"item-{i}"
        return {"items": await fan_out(ctx, range(total), work, describe=lambda i: f"Item {i}")}
    return Step("make_items", "Making items", action, fatal=False)


async def noop(ctx):
    return None


async def test_partial_fan_out_completes_with_warnings(executor, make_job, store):
    job = await make_job("generate_personas", PAYLOAD)

    outcome = await executor.run(job, ScriptedPipeline([items_step(3)]))

    assert outcome.status == JobStatus.COMPLETED
    assert not outcome.discarded
    assert outcome.result["items"] == ["item-0", "item-1", "item-2"]
    assert outcome.result["warnings"] == ["Item 3 failed: item 3 broke", "Item 4 failed: item 4 broke"]

    stored = await store.load(job.id)
    assert stored.status == JobStatus.COMPLETED
    assert stored.result == outcome.result
    assert stored.error is None


async def test_no_survivors_fails_the_job(executor, make_job, store):
    job = await make_job("generate_personas", PAYLOAD)

    outcome = await executor.run(job, ScriptedPipeline([items_step(0)]))

    assert outcome.status == JobStatus.FAILED
    assert outcome.error.startswith("Item 0 failed: item 0 broke; Item 1 failed")
    stored = await store.load(job.id)
    assert stored.result is None
    assert stored.completed_at is not None


async def test_no_output_and_no_warnings(executor, make_job):
    job = await make_job("generate_personas", PAYLOAD)

    outcome = await executor.run(job, ScriptedPipeline([Step("noop", "Nothing", noop)]))

    assert outcome.status == JobStatus.FAILED
    assert outcome.error == NO_OUTPUT_MESSAGE


async def test_fatal_step_failure_stops_the_pipeline(executor, make_job):
    ran = []

    async def fatal(ctx):
        raise StepFailure("Audience segment aud-1 not found")

    async def after(ctx):
        ran.append("after")
        return {"items": [1]}

    job = await make_job("generate_personas", PAYLOAD)
    outcome = await executor.run(job, ScriptedPipeline([
        Step("load", "Loading", fatal, fatal=True),
        Step("after", "After", after),
    ]))

    assert outcome.status == JobStatus.FAILED
    assert outcome.error == "Audience segment aud-1 not found"
    assert ran == []


async def test_unexpected_errors_are_labelled(executor, make_job):
    async def broken(ctx):
        raise KeyError("title")

    async def produce(ctx):
        return {"items": ["x"]}

    job = await make_job("generate_personas", PAYLOAD)
    outcome = await executor.run(job, ScriptedPipeline([
        Step("optional", "Ad intelligence", broken, fatal=False),
        Step("produce", "Producing", produce),
    ]))
    assert outcome.status == JobStatus.COMPLETED
    assert outcome.warnings == ["Ad intelligence failed: 'title'"]

    job = await make_job("generate_personas", PAYLOAD)
    outcome = await executor.run(job, ScriptedPipeline([Step("required", "Saving", broken, fatal=True)]))
    assert outcome.error == "Saving failed: 'title'"


async def test_step_warning_is_never_fatal(executor, make_job):
    async def degraded(ctx):
        raise StepWarning("Video composition is not configured")

    async def produce(ctx):
        return {"items": ["x"]}

    job = await make_job("generate_personas", PAYLOAD)
    outcome = await executor.run(job, ScriptedPipeline([
        Step("compose", "Composing", degraded, fatal=True),
        Step("produce", "Producing", produce),
    ]))

    assert outcome.status == JobStatus.COMPLETED
    assert outcome.result["warnings"] == ["Video composition is not configured"]


async def test_step_timeout_fails_a_fatal_step(executor, make_job):
    async def slow(ctx):
        await asyncio.sleep(1)

    job = await make_job("generate_personas", PAYLOAD)
    outcome = await executor.run(job, ScriptedPipeline([
        Step("search", "Competitor search", slow, fatal=True, timeout=0.01),
    ]))

    assert outcome.status == JobStatus.FAILED
    assert outcome.error == "Competitor search timed out after 0.01s"


async def test_progress_is_monotonic_and_ends_at_total(executor, make_job, store, mocker):
    spy = mocker.spy(store, "update_progress")

    async def produce(ctx):
        await ctx.report_details("halfway")
        return {"items": ["x"]}

    job = await make_job("generate_personas", PAYLOAD)
    await executor.run(job, ScriptedPipeline([
        Step("one", "One", noop),
        items_step(2, total=3),
        Step("three", "Three", produce),
    ]))

    snapshots = [call.args[1] for call in spy.call_args_list]
    currents = [s.current for s in snapshots]
    assert currents == sorted(currents)
    assert currents[0] == 0
    assert (snapshots[-1].current, snapshots[-1].total, snapshots[-1].step) == (3, 3, "done")
    assert any(s.details == "3/3 processed" for s in snapshots)
    assert any(s.details == "halfway" and s.step == "three" for s in snapshots)


async def test_redelivery_of_finished_job_is_discarded(executor, make_job, store):
    job = await make_job("generate_personas", PAYLOAD)
    await executor.run(job, ScriptedPipeline([items_step(5)]))
    before = await store.load(job.id)

    ran = []

    async def spy_step(ctx):
        ran.append(ctx.job_id)

    outcome = await executor.run(job, ScriptedPipeline([Step("spy", "Spy", spy_step)]))

    assert outcome.discarded
    assert outcome.status == JobStatus.COMPLETED
    assert ran == []
    assert await store.load(job.id) == before


async def test_processing_job_is_discarded(executor, make_job, store):
    job = await make_job("generate_personas", PAYLOAD)
    await store.transition(job.id, JobStatus.PROCESSING)

    outcome = await executor.run(job, ScriptedPipeline([items_step(5)]))

    assert outcome.discarded
    assert (await store.load(job.id)).status == JobStatus.PROCESSING


async def test_setup_failure_fails_the_job(executor, make_job):
    class Broken(ScriptedPipeline):
        def build_steps(self, payload, services):
            raise RuntimeError("no steps today")

    job = await make_job("generate_personas", PAYLOAD)
    outcome = await executor.run(job, Broken([]))

    assert outcome.status == JobStatus.FAILED
    assert outcome.error == "Pipeline setup failed: no steps today"


async def test_stored_payload_is_revalidated(executor, make_job, db):
    job = await make_job("generate_personas", PAYLOAD)
    await db.execute(
        "UPDATE pipeline_jobs SET payload = ? WHERE id = ?",
        ('{"audience_id": "aud-1", "count": 99}', job.id),
    )

    outcome = await executor.run(job, ScriptedPipeline([items_step(5)]))

    assert outcome.status == JobStatus.FAILED
    assert "Invalid payload" in outcome.error
    assert "count" in outcome.error


async def test_result_builder_errors_fail_the_job(executor, make_job):
    job = await make_job("generate_personas", PAYLOAD)

    outcome = await executor.run(job, ScriptedPipeline([items_step(5)], build_error=ValueError("bad shape")))

    assert outcome.status == JobStatus.FAILED
    assert outcome.error == "Building the result failed: bad shape"


async def test_finishing_a_job_closed_elsewhere(make_job, store, services):
    """The sweep failed the job mid-run; the executor reports what it found."""
    executor = StepExecutor(store, services)

    async def sweep_meanwhile(ctx):
        await store.transition(ctx.job_id, JobStatus.FAILED, {"error": "processing abandoned"})
        return {"items": ["x"]}

    job = await make_job("generate_personas", PAYLOAD)
    outcome = await executor.run(job, ScriptedPipeline([Step("work", "Work", sweep_meanwhile)]))

    assert outcome.status == JobStatus.FAILED
    assert (await store.load(job.id)).error == "processing abandoned"


async def test_fan_out_respects_concurrency_and_order(executor, make_job, store):
    job = await make_job("generate_personas", PAYLOAD)

    ctx = StepContext(job=job, payload=None, services=None, reporter=ProgressReporter(store), concurrency=2)
    running = 0
    peak = 0

    async def work(i):
        nonlocal running, peak
        running += 1
        peak = max(peak, running)
        await asyncio.sleep(0.01 * (5 - i))
        running -= 1
        return None if i == 2 else i * 10

    results = await fan_out(ctx, range(5), work)

    assert results == [0, 10, 30, 40]
    assert peak == 2
    assert ctx.warnings == []


async def test_fan_out_item_timeout_becomes_warning(executor, make_job, store):
    job = await make_job("generate_personas", PAYLOAD)

    ctx = StepContext(job=job, payload=None, services=None, reporter=ProgressReporter(store))

    async def work(i):
        if i == 1:
            await asyncio.sleep(1)
        return i

    results = await fan_out(ctx, [0, 1], work, timeout=0.01, describe=lambda i: f"Scraping site {i}")

    assert results == [0]
    assert ctx.warnings == ["Scraping site 1 timed out after 0.01s"]


async def test_run_with_timeout():
    async def quick():
        return "done"

    assert await run_with_timeout(quick(), None, "quick") == "done"
    assert await run_with_timeout(quick(), 1, "quick") == "done"
    with pytest.raises(StepTimeout, match="slow timed out after 0.01s"):
        await run_with_timeout(asyncio.sleep(1), 0.01, "slow")


@pytest.mark.parametrize("error", [StepWarning("Rendering skipped"), RuntimeError("quota exceeded")])
async def test_failed_step_contributes_nothing(executor, make_job, error):
    async def half_done(ctx):
        ctx.data["items"] = ["partial"]
        raise error

    job = await make_job("generate_personas", PAYLOAD)
    outcome = await executor.run(job, ScriptedPipeline([
        Step("render", "Rendering", half_done, fatal=False),
    ]))

    assert outcome.status == JobStatus.FAILED
    assert outcome.result is None


class HookedPipeline(ScriptedPipeline):

    def __init__(self, steps, hook_error=None):
        super().__init__(steps)
        self.hook_error = hook_error
        self.failures = []

    async def on_failed(self, context, error):
        self.failures.append((dict(context.data), error))
        if self.hook_error:
            raise self.hook_error


async def test_failure_hook_sees_earlier_outputs(executor, make_job):
    async def load(ctx):
        return {"record": "rec-1"}

    async def save(ctx):
        raise StepFailure("Record rec-1 not found")

    job = await make_job("generate_personas", PAYLOAD)
    pipeline = HookedPipeline([Step("load", "Loading", load), Step("save", "Saving", save)])

    outcome = await executor.run(job, pipeline)

    assert outcome.status == JobStatus.FAILED
    assert pipeline.failures == [({"record": "rec-1"}, "Record rec-1 not found")]


async def test_failure_hook_errors_do_not_change_the_outcome(executor, make_job, store):
    job = await make_job("generate_personas", PAYLOAD)
    pipeline = HookedPipeline([Step("noop", "Nothing", noop)], hook_error=RuntimeError("records down"))

    outcome = await executor.run(job, pipeline)

    assert outcome.status == JobStatus.FAILED
    assert outcome.error == NO_OUTPUT_MESSAGE
    assert (await store.load(job.id)).error == NO_OUTPUT_MESSAGE
    assert len(pipeline.failures) == 1


async def test_failure_hook_is_not_called_on_success(executor, make_job):
    job = await make_job("generate_personas", PAYLOAD)
    pipeline = HookedPipeline([items_step(5)])

    outcome = await executor.run(job, pipeline)

    assert outcome.status == JobStatus.COMPLETED
    assert pipeline.failures == []


async def test_setup_failure_runs_the_failure_hook(executor, make_job):
    class Broken(HookedPipeline):
        def build_steps(self, payload, services):
            raise RuntimeError("no steps today")

    job = await make_job("generate_personas", PAYLOAD)
    pipeline = Broken([])

    await executor.run(job, pipeline)

    assert pipeline.failures == [({}, "Pipeline setup failed: no steps today")]
