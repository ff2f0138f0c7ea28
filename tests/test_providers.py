# tests/test_providers.py
import httpx
import pytest

from studio_backend.config import AppConfig
from studio_backend.providers import build_services
from studio_backend.providers.ad_library import summarize_ads
from studio_backend.providers.base import ProviderError
from studio_backend.providers.llm import parse_json_response
from studio_backend.providers.scraper import HttpScraper, extract_page
from studio_backend.providers.search import build_query

PARAGRAPH = "Our night cream is made with ceramides and calms dry skin overnight. " * 4

STOREFRONT = f"""
<html>
  <head>
    <title>Glow Skincare</title>
    <meta name="description" content=" Clean skincare for busy parents ">
  </head>
  <body>
    <nav><a href="/">Home</a><a href="/shop">Shop all products today</a></nav>
    <main>
      <h1>Skincare that keeps up with you</h1>
      <p>{PARAGRAPH}</p>
      <li>Free shipping on orders over fifty dollars</li>
      <script>window.tracking = "should never appear in text";</script>
    </main>
  </body>
</html>
"""


def test_parse_json_response_strips_code_fences():
    assert parse_json_response('Here you go:\n```json\n{"name": "Rival"}\n```') == {"name": "Rival"}
    assert parse_json_response("```\n[1, 2]\n```") == [1, 2]
    assert parse_json_response('  {"ok": true} ') == {"ok": True}


def test_parse_json_response_rejects_prose():
    with pytest.raises(ValueError, match="not valid JSON"):
        parse_json_response("I could not analyze this site.")


def test_extract_page_keeps_main_content():
    page = extract_page("https://glow.example.com", STOREFRONT)

    assert page.title == "Glow Skincare"
    assert page.description == "Clean skincare for busy parents"
    assert "ceramides" in page.text
    assert "Free shipping" in page.text
    assert "tracking" not in page.text
    assert "Shop all products" not in page.text


def test_extract_page_rejects_thin_pages():
    html = (
        "<html><body><main><p>Coming soon, sign up for updates.</p>"
        f"<script>{'x' * 300}</script></main></body></html>"
    )
    with pytest.raises(ValueError, match="Content too short"):
        extract_page("https://glow.example.com", html)

    with pytest.raises(ValueError, match="HTML too short"):
        extract_page("https://glow.example.com", "<html></html>")


async def test_http_scraper_wraps_http_errors():
    def handler(request):
        if request.url.host == "down.example.com":
            return httpx.Response(503)
        return httpx.Response(200, text=STOREFRONT)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        scraper = HttpScraper(client=client)

        page = await scraper.scrape("https://glow.example.com/")
        assert page.title == "Glow Skincare"

        with pytest.raises(ProviderError, match="scraper: could not fetch https://down.example.com"):
            await scraper.scrape("https://down.example.com/")


@pytest.mark.parametrize("context,expected", [
    (None, "related:glow.example.com -site:glow.example.com"),
    ({"niche": "skincare"}, "skincare brands like glow.example.com -site:glow.example.com"),
    ({"industry": "beauty"}, "beauty brands like glow.example.com -site:glow.example.com"),
])
def test_build_query(context, expected):
    assert build_query("https://www.glow.example.com/shop", context) == expected


def test_summarize_ads():
    summary = summarize_ads([
        {"page_name": "Rival", "publisher_platforms": ["facebook", "instagram"],
         "ad_creative_bodies": ["Sleep better"], "ad_creative_link_titles": ["Shop"]},
        {"page_name": "Rival", "publisher_platforms": ["instagram"]},
    ])

    assert summary["total_ads_found"] == 2
    assert summary["page_name"] == "Rival"
    assert summary["platforms"] == {"facebook": 1, "instagram": 2}
    assert summary["sample_copy"] == ["Sleep better"]
    assert summary["sample_titles"] == ["Shop"]
    assert summarize_ads([])["page_name"] is None


def test_build_services_without_credentials():
    settings = AppConfig(
        _env_file=None,
        SUPABASE_URL=None,
        SUPABASE_SERVICE_KEY=None,
        ANTHROPIC_API_KEY=None,
        OPENAI_API_KEY=None,
        REPLICATE_API_TOKEN=None,
        GOOGLE_SEARCH_API_KEY=None,
        GOOGLE_SEARCH_ENGINE_ID=None,
        META_ACCESS_TOKEN=None,
        MAX_COMPETITORS_TO_ANALYZE=4,
    )

    services = build_services(settings)

    assert services.configured() == {
        "scraper": True, "search": False, "text": False, "images": False, "isolator": False,
        "speech": False, "video": False, "storage": False, "records": False, "ad_library": False,
    }
    assert services.max_competitors == 4
    with pytest.raises(ProviderError, match="text: not configured"):
        services.require("text")
