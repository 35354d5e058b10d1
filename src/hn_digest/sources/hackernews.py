# src/hn_digest/sources/hackernews.py

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from typing import Any

import httpx
from tenacity import AsyncRetrying, before_sleep_log, retry_if_exception, stop_after_attempt, wait_exponential

from ..core.ports import HN_ITEM_URL, Comment, Story
from ..text import strip_html

logger = logging.getLogger(__name__)

ALGOLIA_BASE_URL = "https://hn.algolia.com/api/v1"
MAX_HITS_PER_PAGE = 100
MAX_PAGES = 10


class HackerNewsError(RuntimeError):
    pass


def _is_retryable(exc: BaseException) -> bool:
    """Transport failures and 5xx responses; 4xx (429 included) fail fast."""
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code >= 500
    return isinstance(exc, httpx.TransportError)


class AlgoliaClient:
    """
    Story source and comment fetcher over the Algolia HN Search API.

    Ranked stories: every story posted in [start, end] (up to MAX_PAGES pages
    of MAX_HITS_PER_PAGE), sorted by points descending, top `limit`.
    Comments: one search request per story, run concurrently; a story whose
    request fails gets an empty list.
    """

    def __init__(
            self,
            http: httpx.AsyncClient | None = None,
            *,
            base_url: str = ALGOLIA_BASE_URL,
            timeout_seconds: float = 10.0,
            retries: int = 2,
            backoff_seconds: float = 0.5,
    ) -> None:
        self._own_http = http is None
        self.http = http or httpx.AsyncClient(timeout=timeout_seconds)
        self.base_url = base_url.rstrip("/")
        self.retries = max(0, int(retries))
        self.backoff_seconds = max(0.0, float(backoff_seconds))

    async def aclose(self) -> None:
        if self._own_http:
            await self.http.aclose()

    async def _get_once(self, url: str, params: dict[str, Any]) -> dict[str, Any]:
        resp = await self.http.get(url, params=params)
        if resp.status_code == 429:
            raise HackerNewsError("Algolia API rate limit exceeded, please try again later")
        resp.raise_for_status()
        return resp.json()

    async def _get_json(self, path: str, params: dict[str, Any]) -> dict[str, Any]:
        url = f"{self.base_url}/{path.lstrip('/')}"
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.retries + 1),
            wait=wait_exponential(multiplier=self.backoff_seconds, max=8),
            retry=retry_if_exception(_is_retryable),
            before_sleep=before_sleep_log(logger, logging.INFO),
            reraise=True,
        )
        try:
            return await retrying(self._get_once, url, params)
        except (httpx.TransportError, httpx.HTTPStatusError) as e:
            raise HackerNewsError(f"Failed to fetch from Algolia HN API: {e}") from e

    @staticmethod
    def _story_from_hit(hit: dict[str, Any]) -> Story:
        story_id = int(hit.get("story_id") or hit["objectID"])
        return Story(
            story_id=story_id,
            url=hit.get("url") or HN_ITEM_URL.format(story_id=story_id),
            title=(hit.get("title") or "").strip(),
            score=int(hit.get("points") or 0),
            published_time=int(hit.get("created_at_i") or 0),
        )

    async def fetch_ranked_stories(self, limit: int, start_time: int, end_time: int) -> list[Story]:
        filters = f"created_at_i>={int(start_time)},created_at_i<={int(end_time)}"

        def params(page: int) -> dict[str, Any]:
            return {
                "tags": "story",
                "numericFilters": filters,
                "hitsPerPage": MAX_HITS_PER_PAGE,
                "page": page,
            }

        first = await self._get_json("search_by_date", params(0))
        hits: list[dict[str, Any]] = list(first.get("hits") or [])
        pages = min(int(first.get("nbPages") or 1), MAX_PAGES)
        logger.info("Algolia: %s stories in range, fetching %d page(s)", first.get("nbHits", len(hits)), pages)

        if pages > 1:
            rest = await asyncio.gather(*(self._get_json("search_by_date", params(p)) for p in range(1, pages)))
            for data in rest:
                hits.extend(data.get("hits") or [])

        hits = [h for h in hits if (h.get("title") or "").strip()]
        hits.sort(key=lambda h: int(h.get("points") or 0), reverse=True)
        return [self._story_from_hit(h) for h in hits[: max(0, int(limit))]]

    async def fetch_comments(self, story_id: int, limit: int) -> list[Comment]:
        data = await self._get_json(
            "search",
            {"tags": f"comment,story_{int(story_id)}", "hitsPerPage": int(limit)},
        )
        out: list[Comment] = []
        for hit in data.get("hits") or []:
            out.append(
                Comment(
                    id=int(hit.get("objectID") or 0),
                    author=hit.get("author") or "",
                    text=strip_html(hit.get("comment_text")),
                    time=int(hit.get("created_at_i") or 0),
                )
            )
        return out

    async def _comments_or_empty(self, story: Story, limit: int) -> list[Comment]:
        try:
            return await self.fetch_comments(story.story_id, limit)
        except Exception as e:
            logger.warning("Failed to fetch comments for story %s: %s", story.story_id, e)
            return []

    async def fetch_comments_batch(self, stories: Sequence[Story], per_story_limit: int) -> list[list[Comment]]:
        if per_story_limit <= 0:
            return [[] for _ in stories]
        return list(await asyncio.gather(*(self._comments_or_empty(s, per_story_limit) for s in stories)))
