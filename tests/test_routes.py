# tests/test_routes.py
import pytest
from httpx import ASGITransport, AsyncClient

from studio_backend.api.main import app
from studio_backend.config import config
from studio_backend.jobs.models import JobStatus, ProgressSnapshot
from studio_backend.security import reset_rate_limits

from tests.conftest import SCOPE

SCOPE_HEADERS = {"X-Owner-Scope": SCOPE}
PERSONAS = {"type": "generate_personas", "owner_scope": SCOPE, "payload": {"audience_id": "aud-1"}}


@pytest.fixture
async def client(service):
    app.state.job_service = service
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.state.job_service = None


@pytest.fixture
def api_keys(mocker):
    mocker.patch.object(config, "API_KEYS", "key-1,key-2")
    reset_rate_limits()
    yield
    reset_rate_limits()


async def test_submit_queues_a_pending_job(client, store, queue):
    response = await client.post("/jobs", json=PERSONAS)

    assert response.status_code == 202
    body = response.json()
    assert body["status"] == "pending"
    assert (await store.load(body["job_id"])).owner_scope == SCOPE
    assert await queue.queued_job_ids() == [body["job_id"]]


@pytest.mark.parametrize("body,fragment", [
    ({**PERSONAS, "type": "render_movie"}, "Unknown job type"),
    ({**PERSONAS, "payload": {"audience_id": "aud-1", "count": 9}}, "count"),
    ({**PERSONAS, "payload": "aud-1"}, "payload must be an object"),
    ({**PERSONAS, "owner_scope": ""}, "owner_scope is required"),
])
async def test_submit_rejects_bad_requests(client, queue, body, fragment):
    response = await client.post("/jobs", json=body)

    assert response.status_code == 400
    assert fragment in response.json()["detail"]
    assert await queue.queued_job_ids() == []


async def test_status_of_pending_job_has_retry_after(client):
    job_id = (await client.post("/jobs", json=PERSONAS)).json()["job_id"]

    response = await client.get(f"/jobs/{job_id}", headers=SCOPE_HEADERS)

    assert response.status_code == 200
    assert response.headers["Retry-After"] == "3"
    body = response.json()
    assert body["job_id"] == job_id
    assert body["type"] == "generate_personas"
    assert body["status"] == "pending"
    assert "result" not in body


async def test_processing_job_reports_progress(client, store):
    job_id = (await client.post("/jobs", json=PERSONAS)).json()["job_id"]
    await store.transition(job_id, JobStatus.PROCESSING)
    await store.update_progress(job_id, ProgressSnapshot(current=1, total=4, step="draft_personas"))

    body = (await client.get(f"/jobs/{job_id}", headers=SCOPE_HEADERS)).json()

    assert body["status"] == "processing"
    assert body["progress"] == {"current": 1, "total": 4, "step": "draft_personas", "details": None}


async def test_terminal_job_has_no_retry_after(client, store):
    job_id = (await client.post("/jobs", json=PERSONAS)).json()["job_id"]
    await store.transition(job_id, JobStatus.PROCESSING)
    await store.transition(job_id, JobStatus.COMPLETED, {"result": {"persona_count": 2, "warnings": []}})

    response = await client.get(f"/jobs/{job_id}", params={"owner_scope": SCOPE})

    assert response.status_code == 200
    assert "Retry-After" not in response.headers
    assert response.json()["result"] == {"persona_count": 2, "warnings": []}


async def test_other_scope_sees_not_found(client):
    job_id = (await client.post("/jobs", json=PERSONAS)).json()["job_id"]

    response = await client.get(f"/jobs/{job_id}", headers={"X-Owner-Scope": "project-2"})

    assert response.status_code == 404
    assert response.json()["detail"] == "Job not found"


async def test_status_requires_a_scope(client):
    response = await client.get("/jobs/anything")

    assert response.status_code == 400
    assert "Owner scope required" in response.json()["detail"]


async def test_list_jobs_is_scoped_and_filtered(client, store, make_job):
    first = (await client.post("/jobs", json=PERSONAS)).json()["job_id"]
    await client.post("/jobs", json=PERSONAS)
    await make_job("generate_personas", {"audience_id": "aud-1"}, owner_scope="project-2")
    await store.transition(first, JobStatus.PROCESSING)

    everything = (await client.get("/jobs", headers=SCOPE_HEADERS)).json()
    processing = (await client.get("/jobs", headers=SCOPE_HEADERS, params={"status": "processing"})).json()

    assert everything["count"] == 2
    assert [job["job_id"] for job in processing["jobs"]] == [first]


async def test_query_validation_errors_are_400(client):
    response = await client.get("/jobs", headers=SCOPE_HEADERS, params={"limit": 0})

    assert response.status_code == 400
    assert response.json()["error"] == "Validation failed"


async def test_backend_not_ready():
    app.state.job_service = None
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        response = await ac.get("/jobs/abc", headers=SCOPE_HEADERS)

    assert response.status_code == 503


async def test_health(client):
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json()["backend_ready"] is True


class TestAuth:

    async def test_missing_key_is_401(self, client, api_keys):
        response = await client.post("/jobs", json=PERSONAS)
        assert response.status_code == 401

    async def test_wrong_key_is_403(self, client, api_keys):
        response = await client.post("/jobs", json=PERSONAS, headers={"X-API-Key": "nope"})
        assert response.status_code == 403

    async def test_bearer_token_is_accepted(self, client, api_keys):
        response = await client.post("/jobs", json=PERSONAS, headers={"Authorization": "Bearer key-2"})
        assert response.status_code == 202

    async def test_rate_limit(self, client, api_keys, mocker):
        mocker.patch.object(config, "RATE_LIMIT_PER_MINUTE", 2)
        headers = {"X-API-Key": "key-1", **SCOPE_HEADERS}

        for _ in range(2):
            assert (await client.get("/jobs", headers=headers)).status_code == 200
        response = await client.get("/jobs", headers=headers)

        assert response.status_code == 429
        assert response.headers["Retry-After"] == "60"


class TestAdmin:

    async def test_queue_overview(self, client):
        await client.post("/jobs", json=PERSONAS)

        body = (await client.get("/admin/queue")).json()

        assert body["jobs"]["pending"] == 1
        assert body["queue"]["total"] == 1
        assert "generate_ugc_video" in body["job_types"]
        assert body["in_process_worker"]["running"] is False

    async def test_reconcile_on_demand(self, client, store, mocker):
        await store.create("generate_personas", SCOPE, {"audience_id": "aud-1"})
        mocker.patch.object(config, "RECONCILE_PENDING_AFTER_SECONDS", 0)

        body = (await client.post("/admin/reconcile")).json()

        assert len(body["requeued"]) == 1
        assert body["failed"] == []

    async def test_logs_reject_unknown_level(self, client):
        response = await client.get("/admin/logs", params={"level": "loud"})
        assert response.status_code == 400

    async def test_error_logs(self, client, queue, mocker):
        mocker.patch.object(queue, "stats", side_effect=RuntimeError("database is locked"))

        assert (await client.get("/admin/queue")).status_code == 500
        errors = (await client.get("/admin/logs/errors")).json()["errors"]

        assert any("queue stats" in e["message"] for e in errors)
