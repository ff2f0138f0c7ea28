"""
Competitor discovery through the Google Custom Search JSON API.
"""

from typing import Any, Dict, List, Optional

import httpx

from studio_backend.providers.base import CompetitorCandidate, ProviderError
from studio_backend.utils.logging import provider_logger


SEARCH_URL = "https://www.googleapis.com/customsearch/v1"

# Marketplaces and social sites are never direct competitors.
EXCLUDED_HOSTS = (
    "amazon.", "ebay.", "etsy.", "facebook.", "instagram.", "tiktok.",
    "youtube.", "pinterest.", "reddit.", "wikipedia.", "linkedin.",
)


def build_query(website_url: str, brand_context: Optional[Dict[str, Any]] = None) -> str:
    brand_context = brand_context or {}
    niche = (
        brand_context.get("niche")
        or brand_context.get("category")
        or brand_context.get("industry")
    )
    host = httpx.URL(website_url).host.removeprefix("www.")
    if niche:
        return f"{niche} brands like {host} -site:{host}"
    return f"related:{host} -site:{host}"


class GoogleCompetitorSearch:

    def __init__(self, api_key: str, engine_id: str, max_results: int = 8, timeout: float = 20.0):
        if not api_key or not engine_id:
            raise ProviderError("google_search", "GOOGLE_SEARCH_API_KEY and GOOGLE_SEARCH_ENGINE_ID are required")
        self.api_key = api_key
        self.engine_id = engine_id
        self.max_results = max_results
        self.timeout = timeout

    async def find(
        self,
        website_url: str,
        brand_context: Optional[Dict[str, Any]] = None,
    ) -> List[CompetitorCandidate]:
        params = {
            "key": self.api_key,
            "cx": self.engine_id,
            "q": build_query(website_url, brand_context),
            "num": min(self.max_results, 10),
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(SEARCH_URL, params=params)
                response.raise_for_status()
        except httpx.HTTPError as e:
            raise ProviderError("google_search", f"search failed: {e}")

        own_host = httpx.URL(website_url).host.removeprefix("www.")
        seen = set()
        candidates = []
        for item in response.json().get("items", []):
            link = item.get("link")
            if not link:
                continue
            host = httpx.URL(link).host.removeprefix("www.")
            if host == own_host or host in seen or any(x in host for x in EXCLUDED_HOSTS):
                continue
            seen.add(host)
            candidates.append(CompetitorCandidate(
                url=f"https://{host}",
                title=item.get("title") or host,
                snippet=item.get("snippet"),
            ))

        provider_logger.info("Competitor search finished", website=website_url, found=len(candidates))
        return candidates[:self.max_results]
