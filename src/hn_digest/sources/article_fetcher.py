# src/hn_digest/sources/article_fetcher.py

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence

import httpx

from ..core.ports import ArticleContent
from ..text import truncate_text

logger = logging.getLogger(__name__)

MAX_DESCRIPTION_LENGTH = 200
NO_CONTENT = ArticleContent(full_content=None, description=None)


def extract_description(markdown: str, max_length: int = MAX_DESCRIPTION_LENGTH) -> str | None:
    """First paragraph of the crawled markdown, capped at max_length characters."""
    first = markdown.strip().split("\n\n", 1)[0].strip()
    if not first:
        return None
    if len(first) > max_length:
        return first[: max_length - 3] + "..."
    return first


class CrawlerArticleFetcher:
    """
    Article text via a headless-browser crawler service.

    POSTs {"url": ...} to crawler_api_url and expects
    {"success": true, "markdown": "..."}. Any per-URL problem (no crawler
    configured, HTTP error, timeout, unsuccessful or empty response) yields
    an ArticleContent with both fields None; the batch never raises for one URL.
    """

    def __init__(
            self,
            crawler_api_url: str | None,
            *,
            api_token: str | None = None,
            http: httpx.AsyncClient | None = None,
            timeout_seconds: float = 10.0,
            max_content_length: int = 0,
            concurrency: int = 4,
    ) -> None:
        self.crawler_api_url = crawler_api_url
        self.api_token = api_token
        self._own_http = http is None
        self.http = http or httpx.AsyncClient(timeout=timeout_seconds)
        self.max_content_length = int(max_content_length)
        self._sem = asyncio.Semaphore(max(1, int(concurrency)))

    async def aclose(self) -> None:
        if self._own_http:
            await self.http.aclose()

    async def fetch_article(self, url: str) -> ArticleContent:
        if not self.crawler_api_url:
            return NO_CONTENT

        headers = {"Content-Type": "application/json"}
        if self.api_token:
            headers["Authorization"] = f"Bearer {self.api_token}"

        try:
            async with self._sem:
                resp = await self.http.post(self.crawler_api_url, json={"url": url}, headers=headers)
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Crawler request failed url=%s: %s", url, e)
            return NO_CONTENT

        if not isinstance(data, dict):
            data = {}
        markdown = str(data.get("markdown") or "").strip()
        if not data.get("success") or not markdown:
            logger.warning("Crawler returned no content url=%s error=%s", url, data.get("error") or "no content")
            return NO_CONTENT

        description = extract_description(markdown)
        if self.max_content_length > 0:
            markdown = truncate_text(markdown, self.max_content_length)
        return ArticleContent(full_content=markdown, description=description)

    async def fetch_articles_batch(self, urls: Sequence[str]) -> list[ArticleContent]:
        if not self.crawler_api_url:
            logger.info("Crawler not configured; %d articles without content", len(urls))
            return [NO_CONTENT for _ in urls]

        results = list(await asyncio.gather(*(self.fetch_article(u) for u in urls)))
        fetched = sum(1 for r in results if r.full_content)
        logger.info("Fetched article content %d/%d", fetched, len(urls))
        return results
