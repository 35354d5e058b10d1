# tests/fakes.py

from __future__ import annotations

import json
import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from hn_digest.core.ports import EMPTY, ArticleContent, ChatMessage, Comment, DigestEntry, PublishContent, Story

_INPUT_RE = re.compile(r"<input>\s*(.*?)\s*</input>", re.DOTALL)


class FakeLLMClient:
    """
    Deterministic LLM client for unit tests.

    - Captures calls for assertions
    - Yields a predefined text as a single chunk
    """

    def __init__(self, next_text: str = "ok") -> None:
        self.next_text = next_text
        self.calls: list[tuple[list[ChatMessage], str]] = []

    def stream_chat(self, messages: list[ChatMessage], system_prompt: str) -> Iterable[str]:
        self.calls.append((messages, system_prompt))
        yield self.next_text


class EchoLLMClient:
    """
    Answers batched prompts with a JSON array ("zh:<item>" per element) and
    single prompts with "zh:<input>".

    Raises for any prompt containing one of `fail_on`; `short_by` drops that
    many elements from every array reply.
    """

    def __init__(self, *, fail_on: Sequence[str] = (), short_by: int = 0, garbage: bool = False) -> None:
        self.fail_on = list(fail_on)
        self.short_by = short_by
        self.garbage = garbage
        self.prompts: list[str] = []

    def stream_chat(self, messages: list[ChatMessage], system_prompt: str) -> Iterable[str]:
        prompt = messages[-1]["content"]
        self.prompts.append(prompt)
        for marker in self.fail_on:
            if marker in prompt:
                raise RuntimeError(f"model exploded on {marker!r}")

        m = _INPUT_RE.search(prompt)
        payload = json.loads(m.group(1)) if m else prompt

        if isinstance(payload, list):
            if self.garbage:
                yield "Sorry, I cannot produce JSON today."
                return
            items = [f"zh:{p}" for p in payload]
            if self.short_by:
                items = items[: max(0, len(items) - self.short_by)]
            yield "```json\n" + json.dumps(items, ensure_ascii=False) + "\n```"
            return

        yield f"zh:{payload}"


class FakeStorySource:
    def __init__(self, stories: list[Story]) -> None:
        self.stories = stories
        self.calls: list[tuple[int, int, int]] = []

    async def fetch_ranked_stories(self, limit: int, start_time: int, end_time: int) -> list[Story]:
        self.calls.append((limit, start_time, end_time))
        return list(self.stories[:limit])


class FakeArticleFetcher:
    """Content "content of <url>" for every URL, except those in `missing`."""

    def __init__(self, missing: Sequence[str] = ()) -> None:
        self.missing = set(missing)
        self.calls: list[list[str]] = []

    async def fetch_articles_batch(self, urls: Sequence[str]) -> list[ArticleContent]:
        self.calls.append(list(urls))
        return [
            ArticleContent() if u in self.missing else ArticleContent(full_content=f"content of {u}", description=None)
            for u in urls
        ]


class FakeCommentFetcher:
    def __init__(self, per_story: int = 0) -> None:
        self.per_story = per_story

    async def fetch_comments_batch(self, stories: Sequence[Story], per_story_limit: int) -> list[list[Comment]]:
        n = min(self.per_story, per_story_limit)
        return [
            [Comment(id=s.story_id * 100 + i, author="pg", text=f"comment {i} on {s.story_id}") for i in range(n)]
            for s in stories
        ]


class FakeEnricher:
    """
    Title "T<title>", summary "S<text>"; EMPTY for titles listed in `fail_titles`.

    `short` drops the last element from translate_titles_batch to simulate a
    misaligned collaborator.
    """

    def __init__(self, *, fail_titles: Sequence[str] = (), short: bool = False) -> None:
        self.fail_titles = set(fail_titles)
        self.short = short
        self.title_calls: list[list[str]] = []

    def translate_titles_batch(self, titles: Sequence[str]) -> list[str]:
        self.title_calls.append(list(titles))
        out = [EMPTY if t in self.fail_titles else f"T{t}" for t in titles]
        return out[:-1] if self.short else out

    def summarize_content_batch(self, texts: Sequence[str | None], max_length: int) -> list[str]:
        return [f"S{t}" if t else EMPTY for t in texts]

    def summarize_comments_batch(self, comment_arrays: Sequence[Sequence[Comment]], max_length: int) -> list[str]:
        return [f"C{len(c)}" if c else EMPTY for c in comment_arrays]


@dataclass
class FakePublisher:
    name: str
    fail: bool = False
    published: list[PublishContent] = field(default_factory=list)

    async def publish(self, content: PublishContent) -> None:
        if self.fail:
            raise RuntimeError(f"{self.name} is down")
        self.published.append(content)


def make_stories(n: int, *, base_id: int = 1000, published_time: int = 1736380800) -> list[Story]:
    """n stories ranked by descending score; story i has title "story i"."""
    return [
        Story(
            story_id=base_id + i,
            url=f"https://example.com/{i}",
            title=f"story {i}",
            score=1000 - i,
            published_time=published_time + i * 60,
        )
        for i in range(1, n + 1)
    ]


def make_entry(rank: int, **overrides) -> DigestEntry:
    data = dict(
        rank=rank,
        story_id=100 + rank,
        title_en=f"Story {rank}",
        title_zh=f"故事 {rank}",
        url=f"https://example.com/{rank}",
        score=100 - rank,
        published_time=1736380800,
        time_str="2025-01-09 00:00",
        description=f"摘要 {rank}",
        comment_summary=None,
    )
    data.update(overrides)
    return DigestEntry(**data)
