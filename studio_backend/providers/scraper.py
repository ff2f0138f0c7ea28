"""
Website scraper: fetches a page with httpx and reduces it to readable text.
"""

import re
from typing import Optional

import httpx
from bs4 import BeautifulSoup

from studio_backend.providers.base import ProviderError, ScrapedPage
from studio_backend.utils.logging import provider_logger


MIN_TEXT_LENGTH = 200
MAX_TEXT_LENGTH = 15000

USER_AGENT = (
    "Mozilla/5.0 (compatible; StudioBackend/1.0; +https://example.com/bot)"
)


def clean_text(text: str) -> str:
    text = re.sub(r"\n{3,}", "\n\n", text)
    text = re.sub(r"[ \t]{2,}", " ", text)
    return text.strip()


def extract_page(url: str, html: str) -> ScrapedPage:
    """
    Reduce HTML to a title, meta description and main-content text.

    Raises:
        ValueError: the page has too little readable content
    """
    if not html or len(html.strip()) < 200:
        raise ValueError("HTML too short")

    soup = BeautifulSoup(html, "html.parser")

    title = soup.title.get_text(strip=True) if soup.title else ""
    description = None
    meta = soup.find("meta", attrs={"name": "description"}) or soup.find(
        "meta", attrs={"property": "og:description"}
    )
    if meta and meta.get("content"):
        description = meta["content"].strip()

    for tag in soup([
        "script", "style", "noscript", "iframe", "svg",
        "header", "footer", "nav", "aside", "form", "button"
    ]):
        tag.decompose()

    main = soup.find("main") or soup.find("article") or soup.body
    if not main:
        raise ValueError("No meaningful content")

    blocks = []
    for el in main.find_all(["h1", "h2", "h3", "p", "li"]):
        txt = el.get_text(" ", strip=True)
        if len(txt) >= 20:
            blocks.append(txt)

    text = clean_text("\n".join(blocks))
    if len(text) < MIN_TEXT_LENGTH:
        raise ValueError("Content too short")

    return ScrapedPage(
        url=url,
        title=title or httpx.URL(url).host,
        text=text[:MAX_TEXT_LENGTH],
        description=description,
    )


class HttpScraper:
    """Plain HTTP scraper; enough for server-rendered storefronts."""

    def __init__(self, timeout: float = 30.0, client: Optional[httpx.AsyncClient] = None):
        self.timeout = timeout
        self._client = client

    async def scrape(self, url: str) -> ScrapedPage:
        try:
            if self._client is not None:
                response = await self._client.get(url)
            else:
                async with httpx.AsyncClient(
                    timeout=self.timeout,
                    follow_redirects=True,
                    headers={"User-Agent": USER_AGENT},
                ) as client:
                    response = await client.get(url)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise ProviderError("scraper", f"could not fetch {url}: {e}")

        try:
            page = extract_page(str(response.url), response.text)
        except ValueError as e:
            raise ProviderError("scraper", f"{url}: {e}")

        provider_logger.debug("Scraped page", url=url, chars=len(page.text))
        return page
