# src/hn_digest/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- wires concrete implementations (story source, crawler, LLM enrichment,
  publishers) into a TaskExecutor held by AppState.
"""

from __future__ import annotations

import logging

import httpx

from ..config import get_settings
from ..core.ports import LLMClient, Publisher
from ..core.state import AppState
from ..enrich.content_filter import ContentFilter
from ..enrich.translator import Translator
from ..llm.client import OpenRouterLLMClient
from ..llm.offline import OfflineLLMClient
from ..publishers.github import GitHubPublisher
from ..publishers.telegram import TelegramPublisher
from ..publishers.terminal import TerminalPublisher
from ..sources.article_fetcher import CrawlerArticleFetcher
from ..sources.hackernews import AlgoliaClient
from ..tasks.task_executor import ExecutorConfig, TaskExecutor
from ..tasks.task_store import TaskStore

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.tasks_db_path.parent.mkdir(parents=True, exist_ok=True)


def build_llm_client(settings) -> LLMClient:
    if not settings.openrouter_api_key:
        # Fallback for demos / local runs without external services.
        logger.warning("No LLM API key configured; using the offline LLM client")
        return OfflineLLMClient()
    return OpenRouterLLMClient(settings)


def build_publishers(settings, http: httpx.AsyncClient) -> list[Publisher]:
    """Remote sinks that are enabled and have their credentials; the rest are skipped with a warning."""
    publishers: list[Publisher] = []

    if settings.github_enabled:
        if settings.github_token and settings.target_repo:
            publishers.append(
                GitHubPublisher(
                    settings.github_token,
                    settings.target_repo,
                    branch=settings.target_branch,
                    posts_dir=settings.github_posts_dir,
                    http=http,
                )
            )
        else:
            logger.warning("GitHub publisher enabled but DIGEST_GITHUB_TOKEN / DIGEST_TARGET_REPO missing; skipped")

    if settings.telegram_enabled:
        if settings.telegram_bot_token and settings.telegram_channel_id:
            publishers.append(
                TelegramPublisher(settings.telegram_bot_token, settings.telegram_channel_id, http=http)
            )
        else:
            logger.warning(
                "Telegram publisher enabled but DIGEST_TELEGRAM_BOT_TOKEN / DIGEST_TELEGRAM_CHANNEL_ID missing; skipped"
            )

    return publishers


def create_app_state(*, settings=None) -> AppState:
    """
    Create AppState from the provided settings.

    Keeping settings injectable makes the app easier to test and avoids hidden global config reads.
    If settings is None, falls back to get_settings().
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    timeout = float(settings.http_timeout_seconds)
    http = httpx.AsyncClient(timeout=timeout, follow_redirects=True)

    llm = build_llm_client(settings)
    store = TaskStore(settings.tasks_db_path)
    hn = AlgoliaClient(http, timeout_seconds=timeout)

    classifier = None
    if settings.content_filter_enabled:
        classifier = ContentFilter(llm, sensitivity=settings.content_filter_sensitivity)

    executor = TaskExecutor(
        store,
        story_source=hn,
        article_fetcher=CrawlerArticleFetcher(
            settings.crawler_api_url,
            api_token=settings.crawler_api_token,
            http=http,
        ),
        comment_fetcher=hn,
        enricher=Translator(llm),
        classifier=classifier,
        publishers=build_publishers(settings, http),
        local_publisher=TerminalPublisher(),
        config=ExecutorConfig.from_settings(settings),
    )

    return AppState(
        settings=settings,
        llm=llm,
        task_store=store,
        executor=executor,
        closables=[http],
    )
