# tests/test_sources.py

from __future__ import annotations

import json

import httpx
import pytest

from hn_digest.core.ports import Story
from hn_digest.sources.article_fetcher import CrawlerArticleFetcher, extract_description
from hn_digest.sources.hackernews import AlgoliaClient, HackerNewsError


def _hit(story_id: int, points: int, title: str = "", url: str | None = "") -> dict:
    return {
        "objectID": str(story_id),
        "title": title or f"story {story_id}",
        "url": f"https://example.com/{story_id}" if url == "" else url,
        "points": points,
        "created_at_i": 1736380800 + story_id,
    }


@pytest.mark.asyncio
async def test_ranked_stories_merge_pages_and_sort_by_points() -> None:
    pages = {
        "0": [_hit(1, 10), _hit(2, 300), _hit(3, 5, title="   ")],
        "1": [_hit(4, 150, url=None), _hit(5, 999)],
    }
    seen: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/api/v1/search_by_date"
        params = dict(request.url.params)
        seen.append(params)
        return httpx.Response(200, json={"hits": pages[params["page"]], "nbPages": 2, "nbHits": 5})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
        stories = await AlgoliaClient(http).fetch_ranked_stories(3, 1736380800, 1736467199)

    assert [s.story_id for s in stories] == [5, 2, 4]
    assert stories[2].url == "https://news.ycombinator.com/item?id=4"
    assert stories[0].score == 999
    assert seen[0]["tags"] == "story"
    assert seen[0]["numericFilters"] == "created_at_i>=1736380800,created_at_i<=1736467199"
    assert seen[0]["hitsPerPage"] == "100"


@pytest.mark.asyncio
async def test_rate_limit_is_not_retried() -> None:
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(429)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
        with pytest.raises(HackerNewsError, match="rate limit"):
            await AlgoliaClient(http, retries=2).fetch_ranked_stories(10, 0, 1)

    assert calls == 1


@pytest.mark.asyncio
async def test_server_errors_are_retried() -> None:
    responses = [httpx.Response(503), httpx.Response(200, json={"hits": [_hit(1, 1)], "nbPages": 1})]

    async with httpx.AsyncClient(transport=httpx.MockTransport(lambda r: responses.pop(0))) as http:
        stories = await AlgoliaClient(http, retries=1, backoff_seconds=0).fetch_ranked_stories(10, 0, 1)

    assert [s.story_id for s in stories] == [1]


@pytest.mark.asyncio
async def test_transport_errors_are_retried_then_reported() -> None:
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        raise httpx.ConnectError("connection refused", request=request)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
        with pytest.raises(HackerNewsError, match="connection refused"):
            await AlgoliaClient(http, retries=2, backoff_seconds=0).fetch_ranked_stories(10, 0, 1)

    assert calls == 3


@pytest.mark.asyncio
async def test_client_errors_are_not_retried() -> None:
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(404)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
        with pytest.raises(HackerNewsError, match="404"):
            await AlgoliaClient(http, retries=2, backoff_seconds=0).fetch_ranked_stories(10, 0, 1)

    assert calls == 1


@pytest.mark.asyncio
async def test_comments_batch_isolates_failures() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        tags = request.url.params["tags"]
        if tags == "comment,story_2":
            return httpx.Response(404)
        return httpx.Response(
            200,
            json={
                "hits": [
                    {"objectID": "11", "author": "pg", "comment_text": "<p>Nice &amp; fast</p>", "created_at_i": 5},
                ]
            },
        )

    stories = [Story(1, "u1", "t1", 1, 0), Story(2, "u2", "t2", 1, 0)]
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
        out = await AlgoliaClient(http, retries=0).fetch_comments_batch(stories, 3)

    assert len(out) == 2
    assert out[0][0].text == "Nice & fast"
    assert out[0][0].author == "pg"
    assert out[1] == []


@pytest.mark.asyncio
async def test_crawler_fetch_keeps_order_and_degrades_per_url() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["Authorization"] == "Bearer secret"
        url = json.loads(request.content)["url"]
        if url.endswith("/bad"):
            return httpx.Response(500)
        if url.endswith("/empty"):
            return httpx.Response(200, json={"success": True, "markdown": ""})
        return httpx.Response(200, json={"success": True, "markdown": "First para.\n\nSecond para."})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
        fetcher = CrawlerArticleFetcher("http://crawler/crawl", api_token="secret", http=http)
        out = await fetcher.fetch_articles_batch(["https://a/ok", "https://a/bad", "https://a/empty"])

    assert out[0].full_content == "First para.\n\nSecond para."
    assert out[0].description == "First para."
    assert out[1].full_content is None and out[1].description is None
    assert out[2].full_content is None


@pytest.mark.asyncio
async def test_crawler_not_configured_returns_empty_content() -> None:
    fetcher = CrawlerArticleFetcher(None, http=httpx.AsyncClient())
    out = await fetcher.fetch_articles_batch(["https://a", "https://b"])
    await fetcher.http.aclose()

    assert [c.full_content for c in out] == [None, None]


def test_extract_description_caps_length() -> None:
    assert extract_description("   ") is None
    long = "a" * 500
    desc = extract_description(long)
    assert len(desc) == 200
    assert desc.endswith("...")
