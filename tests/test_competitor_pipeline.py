# tests/test_competitor_pipeline.py
from studio_backend.jobs.models import JobStatus
from studio_backend.pipelines import get_pipeline

from tests.mocks.providers import FakeScraper, FakeSearch, FakeText

CANDIDATES = [
    "https://alpha.example.com",
    "https://bravo.example.com",
    "https://charlie.example.com",
]


async def run(executor, make_job, payload):
    job = await make_job("analyze_competitors", payload)
    return await executor.run(job, get_pipeline(job.type))


async def test_one_scrape_failure_still_completes(executor, make_job, services, records):
    services.scraper = FakeScraper(failing={"https://bravo.example.com"})

    outcome = await run(executor, make_job, {"candidates": CANDIDATES, "brand_context": {"name": "Glow"}})

    assert outcome.status == JobStatus.COMPLETED
    assert outcome.result["total_found"] == 3
    assert outcome.result["scraped_count"] == 2
    assert outcome.result["analyzed_count"] == 2
    assert outcome.result["saved_count"] == 2
    assert outcome.result["warnings"] == [
        "Scraping https://bravo.example.com failed: scraper: HTTP 503 fetching https://bravo.example.com"
    ]

    saved = records.tables["competitors"]
    assert [row["url"] for row in saved] == ["https://alpha.example.com", "https://charlie.example.com"]
    assert saved[0]["name"] == "Rival Co"
    assert saved[0]["analysis_json"]["ads_data"]["active_ads"] == 2
    assert saved[0]["project_id"] == "project-1"


async def test_no_candidates_fails(executor, make_job, services):
    services.search = FakeSearch(candidates=[])

    outcome = await run(executor, make_job, {"website_url": "https://glow.example.com"})

    assert outcome.status == JobStatus.FAILED
    assert "no candidates" in outcome.error


async def test_search_discovers_candidates(executor, make_job, services):
    services.search = FakeSearch(candidates=CANDIDATES)

    outcome = await run(executor, make_job, {"website_url": "https://glow.example.com"})

    assert services.search.calls == 1
    assert outcome.status == JobStatus.COMPLETED
    assert outcome.result["total_found"] == 3


async def test_missing_search_provider_fails_discovery(executor, make_job, services):
    services.search = None

    outcome = await run(executor, make_job, {"website_url": "https://glow.example.com"})

    assert outcome.status == JobStatus.FAILED
    assert outcome.error == "Competitor discovery failed: search: not configured"


async def test_analysis_is_capped(executor, make_job, services):
    outcome = await run(executor, make_job, {"candidates": CANDIDATES, "max_competitors": 1})

    assert outcome.result["scraped_count"] == 3
    assert outcome.result["analyzed_count"] == 1
    assert len(services.text.prompts) == 1


async def test_unusable_analyses_fail_the_job(executor, make_job, services):
    services.text = FakeText(responder=lambda prompt: ["not", "an", "object"])

    outcome = await run(executor, make_job, {"candidates": CANDIDATES[:2]})

    assert outcome.status == JobStatus.FAILED
    assert outcome.error == (
        "Analyzing https://alpha.example.com failed: analysis is not a JSON object; "
        "Analyzing https://bravo.example.com failed: analysis is not a JSON object"
    )


async def test_ad_library_is_optional(executor, make_job, services, records):
    services.ad_library = None

    outcome = await run(executor, make_job, {"candidates": CANDIDATES[:1]})

    assert outcome.status == JobStatus.COMPLETED
    assert outcome.result["warnings"] == []
    assert "ads_data" not in records.tables["competitors"][0]["analysis_json"]
