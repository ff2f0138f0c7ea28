# tests/conftest.py
import pytest

from studio_backend.jobs.database import JobDatabase, SqliteJobStore
from studio_backend.jobs.executor import StepExecutor
from studio_backend.jobs.queue import SqliteJobQueue
from studio_backend.jobs.service import JobService
from studio_backend.providers import Services
from studio_backend.utils.logging import get_log_buffer

from tests.mocks.providers import (
    FakeAdLibrary,
    FakeImages,
    FakeIsolator,
    FakeRecords,
    FakeScraper,
    FakeSearch,
    FakeSpeech,
    FakeStorage,
    FakeText,
    FakeVideo,
)

SCOPE = "project-1"


class FakeClock:
    """Epoch seconds that only move when a test says so."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
async def db(tmp_path):
    """A fresh SQLite job database per test."""
    database = JobDatabase(str(tmp_path / "jobs.db"))
    await database.connect()
    yield database
    await database.close()


@pytest.fixture
def store(db):
    return SqliteJobStore(db)


@pytest.fixture
def queue(db, clock):
    return SqliteJobQueue(db, visibility_timeout=30, max_retries=3, retry_delay=10, clock=clock)


@pytest.fixture
def service(store, queue):
    return JobService(store, queue, poll_interval=3)


@pytest.fixture
def records():
    return FakeRecords({
        "audience_segments": [
            {"id": "aud-1", "name": "Busy parents", "project_id": SCOPE},
        ],
        "products": [
            {"id": "prod-1", "name": "Night Cream", "images": ["https://img.example.com/cream.png"], "project_id": SCOPE},
            {"id": "prod-2", "name": "Day Serum", "images": [{"url": "https://img.example.com/serum.png"}], "project_id": SCOPE},
        ],
        "ad_templates": [
            {"id": "tpl-1", "name": "Bold benefit", "style": "bold", "project_id": SCOPE},
        ],
        "ugc_videos": [
            {"id": "ugc-1", "status": "pending", "project_id": SCOPE},
        ],
    })


@pytest.fixture
def services(records):
    return Services(
        scraper=FakeScraper(),
        search=FakeSearch(),
        text=FakeText(),
        images=FakeImages(),
        isolator=FakeIsolator(),
        speech=FakeSpeech(),
        video=FakeVideo(),
        storage=FakeStorage(),
        records=records,
        ad_library=FakeAdLibrary(),
        external_timeout=5,
        analysis_timeout=5,
        max_competitors=3,
    )


@pytest.fixture
def executor(store, services):
    return StepExecutor(store, services, fanout_concurrency=2)


@pytest.fixture
def make_job(store):
    """Create a pending job in the default scope."""
    async def _make(job_type, payload, owner_scope=SCOPE):
        return await store.create(job_type, owner_scope, payload)
    return _make


@pytest.fixture(autouse=True)
def clear_log_buffer():
    get_log_buffer().clear()
    yield
