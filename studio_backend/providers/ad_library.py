"""
Meta Ad Library lookups for competitor ad intelligence.
"""

from collections import Counter
from typing import Any, Dict, Optional

import httpx

from studio_backend.providers.base import ProviderError
from studio_backend.utils.logging import provider_logger


GRAPH_URL = "https://graph.facebook.com/v19.0/ads_archive"

AD_FIELDS = ",".join([
    "page_name",
    "ad_creative_bodies",
    "ad_creative_link_titles",
    "ad_delivery_start_time",
    "publisher_platforms",
])


def summarize_ads(ads: list) -> Dict[str, Any]:
    platforms = Counter(
        platform
        for ad in ads
        for platform in ad.get("publisher_platforms") or []
    )
    return {
        "total_ads_found": len(ads),
        "page_name": ads[0].get("page_name") if ads else None,
        "platforms": dict(platforms),
        "sample_copy": [
            body
            for ad in ads[:5]
            for body in (ad.get("ad_creative_bodies") or [])[:1]
        ],
        "sample_titles": [
            title
            for ad in ads[:5]
            for title in (ad.get("ad_creative_link_titles") or [])[:1]
        ],
    }


class MetaAdLibrary:

    def __init__(self, access_token: str, country: str = "US", limit: int = 25, timeout: float = 20.0):
        if not access_token:
            raise ProviderError("meta_ads", "META_ACCESS_TOKEN is not configured")
        self.access_token = access_token
        self.country = country
        self.limit = limit
        self.timeout = timeout

    async def fetch_ads(self, url: str) -> Optional[Dict[str, Any]]:
        host = httpx.URL(url).host.removeprefix("www.")
        search_term = host.split(".")[0]
        params = {
            "access_token": self.access_token,
            "search_terms": search_term,
            "ad_reached_countries": f"['{self.country}']",
            "ad_active_status": "ACTIVE",
            "fields": AD_FIELDS,
            "limit": self.limit,
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(GRAPH_URL, params=params)
                response.raise_for_status()
        except httpx.HTTPError as e:
            raise ProviderError("meta_ads", f"ad library lookup failed for {host}: {e}")

        ads = response.json().get("data", [])
        if not ads:
            provider_logger.debug("No active ads found", advertiser=search_term)
            return None
        return summarize_ads(ads)
