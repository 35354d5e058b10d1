# src/hn_digest/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the task executor.

The executor depends on Protocols instead of concrete implementations, so the
story source, fetchers, LLM enrichment and publish sinks are swappable and
tests can inject deterministic fakes.

Batched collaborators keep the order and length of their input. Where no
result was produced they return the EMPTY sentinel, never None or a shorter list.
"""

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

# "No result produced" marker in batched results. Compare with `== EMPTY`, not truthiness.
EMPTY = ""

HN_ITEM_URL = "https://news.ycombinator.com/item?id={story_id}"

ChatMessage = dict[str, str]
# OpenAI-style chat messages: {"role": "...", "content": "..."}.


@dataclass(slots=True, frozen=True)
class Story:
    """A ranked candidate story from the story source."""

    story_id: int
    url: str
    title: str
    score: int
    published_time: int  # unix seconds


@dataclass(slots=True, frozen=True)
class ArticleContent:
    full_content: str | None = None
    description: str | None = None


@dataclass(slots=True, frozen=True)
class Comment:
    id: int
    author: str
    text: str
    time: int = 0


@dataclass(slots=True, frozen=True)
class DigestEntry:
    """A publish-ready article, as handed to the renderer and the sinks."""

    rank: int
    story_id: int
    title_en: str
    title_zh: str
    url: str
    score: int
    published_time: int
    time_str: str
    description: str
    comment_summary: str | None


@dataclass(slots=True)
class PublishContent:
    markdown: str
    date_str: str
    entries: list[DigestEntry] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)


class LLMClient(Protocol):
    """Streaming chat completion client (OpenAI/OpenRouter-compatible)."""
    def stream_chat(self, messages: list[ChatMessage], system_prompt: str) -> Iterable[str]: ...


class StorySource(Protocol):
    async def fetch_ranked_stories(self, limit: int, start_time: int, end_time: int) -> list[Story]: ...


class ContentClassifier(Protocol):
    def filter_stories(self, stories: list[Story]) -> list[Story]: ...


class ArticleFetcher(Protocol):
    async def fetch_articles_batch(self, urls: Sequence[str]) -> list[ArticleContent]: ...


class CommentFetcher(Protocol):
    async def fetch_comments_batch(
            self,
            stories: Sequence[Story],
            per_story_limit: int,
    ) -> list[list[Comment]]: ...


class Enricher(Protocol):
    """Translation / summarization. Every method returns len(input) strings."""
    def translate_titles_batch(self, titles: Sequence[str]) -> list[str]: ...
    def summarize_content_batch(self, texts: Sequence[str | None], max_length: int) -> list[str]: ...
    def summarize_comments_batch(
            self,
            comment_arrays: Sequence[Sequence[Comment]],
            max_length: int,
    ) -> list[str]: ...


class Renderer(Protocol):
    def __call__(self, entries: list[DigestEntry], task_date: str) -> str: ...


class Publisher(Protocol):
    """One publish sink. Raises on failure; overwriting an earlier publish is allowed."""

    name: str

    async def publish(self, content: PublishContent) -> None: ...
