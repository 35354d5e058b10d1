# tests/conftest.py

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest

from hn_digest.tasks.task_executor import ExecutorConfig, TaskExecutor
from hn_digest.tasks.task_store import TaskStore

from .fakes import FakeArticleFetcher, FakeCommentFetcher, FakeEnricher, FakePublisher, FakeStorySource, make_stories


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with ExecutorConfig.from_settings.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated and deterministic.
    """
    return SimpleNamespace(
        # Paths (tmp per test run)
        data_dir=tmp_path,
        tasks_db_path=tmp_path / "digest.sqlite3",
        # Task processing
        story_limit=30,
        batch_size=2,
        summary_max_length=300,
        comments_per_story=3,
        subrequest_soft_limit=30,
        max_retries=3,
        retention_days=30,
        stale_processing_seconds=600.0,
        local_test_mode=False,
    )


@pytest.fixture()
def store(settings: SimpleNamespace) -> TaskStore:
    return TaskStore(settings.tasks_db_path)


@pytest.fixture()
def make_executor(store: TaskStore, settings: SimpleNamespace):
    """
    Factory for a TaskExecutor wired with deterministic fakes.

    NOTE: We keep the real SQLite TaskStore here because its correctness is
    part of what we want to test.
    """

    def _make(**overrides) -> TaskExecutor:
        kwargs = dict(
            story_source=FakeStorySource(make_stories(5)),
            article_fetcher=FakeArticleFetcher(),
            comment_fetcher=FakeCommentFetcher(),
            enricher=FakeEnricher(),
            publishers=[FakePublisher("github")],
            local_publisher=FakePublisher("terminal"),
            config=ExecutorConfig.from_settings(settings),
        )
        kwargs.update(overrides)
        return TaskExecutor(store, **kwargs)

    return _make
