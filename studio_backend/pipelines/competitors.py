"""
Competitor discovery and analysis.

discover -> scrape -> analyze -> ad intelligence -> persist. Only
discovery and persistence can fail the job; a competitor whose scrape or
analysis fails is dropped with a warning and the rest carry on.
"""

from typing import Any, Dict, List

import httpx

from studio_backend.jobs.errors import StepFailure
from studio_backend.jobs.executor import Step, StepContext, fan_out, run_with_timeout
from studio_backend.jobs.models import JobType, utcnow
from studio_backend.jobs.payloads import CompetitorAnalysisPayload
from studio_backend.pipelines import prompts
from studio_backend.pipelines.base import PipelineDefinition
from studio_backend.providers.base import CompetitorCandidate, ScrapedPage
from studio_backend.utils.logging import pipeline_logger


NO_CANDIDATES_MESSAGE = "Competitor discovery found no candidates"


async def discover_candidates(ctx: StepContext) -> Dict[str, Any]:
    payload: CompetitorAnalysisPayload = ctx.payload

    if payload.candidates:
        candidates = [
            CompetitorCandidate(url=url, title=httpx.URL(url).host)
            for url in payload.candidates
        ]
    else:
        search = ctx.services.require("search")
        candidates = await run_with_timeout(
            search.find(payload.website_url, payload.brand_context),
            ctx.services.external_timeout,
            "Competitor search",
        )

    if not candidates:
        raise StepFailure(NO_CANDIDATES_MESSAGE, step="discover_candidates")

    pipeline_logger.info("Competitor candidates found", job_id=ctx.job_id, count=len(candidates))
    return {"candidates": candidates}


async def scrape_candidates(ctx: StepContext) -> Dict[str, Any]:
    scraper = ctx.services.require("scraper")

    pages = await fan_out(
        ctx,
        ctx.data.get("candidates", []),
        lambda candidate: scraper.scrape(candidate.url),
        timeout=ctx.services.external_timeout,
        describe=lambda candidate: f"Scraping {candidate.url}",
    )
    return {"pages": pages}


async def analyze_each(ctx: StepContext) -> Dict[str, Any]:
    payload: CompetitorAnalysisPayload = ctx.payload
    pages: List[ScrapedPage] = ctx.data.get("pages", [])
    limit = payload.max_competitors or ctx.services.max_competitors

    if len(pages) > limit:
        pipeline_logger.info(
            "Analyzing a subset of scraped competitors",
            job_id=ctx.job_id, scraped=len(pages), limit=limit,
        )
        pages = pages[:limit]

    if not pages:
        return {"analyses": []}

    text = ctx.services.require("text")

    async def analyze(page: ScrapedPage) -> Dict[str, Any]:
        analysis = await text.generate_json(
            prompts.competitor_analysis_prompt(page, payload.brand_context),
            context=prompts.COMPETITOR_ANALYST_CONTEXT,
        )
        if not isinstance(analysis, dict):
            raise ValueError("analysis is not a JSON object")
        analysis["monitoring"] = {"last_scan_date": utcnow().isoformat()}
        return {"url": page.url, "title": page.title, "analysis": analysis}

    analyses = await fan_out(
        ctx,
        pages,
        analyze,
        timeout=ctx.services.analysis_timeout,
        describe=lambda page: f"Analyzing {page.url}",
    )
    return {"analyses": analyses}


async def fetch_ad_intelligence(ctx: StepContext) -> None:
    ad_library = ctx.services.ad_library
    analyses = ctx.data.get("analyses", [])
    if ad_library is None or not analyses:
        return None

    async def attach_ads(entry: Dict[str, Any]) -> Dict[str, Any]:
        ads = await ad_library.fetch_ads(entry["url"])
        if ads:
            entry["analysis"]["ads_data"] = ads
        return entry

    await fan_out(
        ctx,
        analyses,
        attach_ads,
        timeout=ctx.services.external_timeout,
        describe=lambda entry: f"Fetching ads for {entry['url']}",
    )
    return None


def competitor_name(entry: Dict[str, Any]) -> str:
    identification = entry["analysis"].get("competitor_identification") or {}
    return identification.get("name") or entry["title"]


async def persist_results(ctx: StepContext) -> Dict[str, Any]:
    analyses = ctx.data.get("analyses", [])
    if not analyses:
        return {"saved": []}

    records = ctx.services.require("records")
    saved = []
    for entry in analyses:
        try:
            row = await records.insert("competitors", ctx.owner_scope, {
                "name": competitor_name(entry),
                "url": entry["url"],
                "analysis_json": entry["analysis"],
                "last_analyzed_at": utcnow().isoformat(),
                "status": "completed",
            })
        except Exception as e:
            raise StepFailure(f"Saving competitor {entry['url']} failed: {e}", step="persist_results")
        saved.append(row)

    return {"saved": saved}


class CompetitorAnalysisPipeline(PipelineDefinition):
    job_type = JobType.ANALYZE_COMPETITORS
    payload_model = CompetitorAnalysisPayload

    def build_steps(self, payload, services) -> List[Step]:
        return [
            Step("discover_candidates", "Competitor discovery", discover_candidates, fatal=True),
            Step("scrape_candidates", "Scraping competitor websites", scrape_candidates, fatal=False),
            Step("analyze_each", "Competitor analysis", analyze_each, fatal=False),
            Step("fetch_ad_intelligence", "Ad intelligence", fetch_ad_intelligence, fatal=False),
            Step("persist_results", "Saving competitors", persist_results, fatal=True),
        ]

    def has_output(self, context: StepContext) -> bool:
        return bool(context.data.get("saved"))

    def build_result(self, context: StepContext) -> Dict[str, Any]:
        return {
            "total_found": len(context.data.get("candidates", [])),
            "scraped_count": len(context.data.get("pages", [])),
            "analyzed_count": len(context.data.get("analyses", [])),
            "saved_count": len(context.data.get("saved", [])),
            "competitors": context.data.get("saved", []),
        }
