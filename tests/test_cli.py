# tests/test_cli.py

from __future__ import annotations

import argparse
from pathlib import Path
from types import SimpleNamespace

import httpx
import pytest

from hn_digest.cli.bootstrap import build_publishers, create_app_state
from hn_digest.cli.main import build_parser, run_command
from hn_digest.llm.offline import OfflineLLMClient
from hn_digest.tasks.task_models import TaskStatus

from .fakes import FakeArticleFetcher, FakeCommentFetcher, FakeStorySource, make_stories


def _settings(tmp_path: Path, **overrides) -> SimpleNamespace:
    data = dict(
        app_name="hn-digest",
        log_level="INFO",
        data_dir=tmp_path / "data",
        tasks_db_path=tmp_path / "data" / "digest.sqlite3",
        openrouter_api_key=None,
        story_limit=30,
        batch_size=2,
        summary_max_length=300,
        comments_per_story=3,
        subrequest_soft_limit=30,
        max_retries=3,
        retention_days=30,
        stale_processing_seconds=600.0,
        scheduler_interval_seconds=60.0,
        http_timeout_seconds=5.0,
        content_filter_enabled=True,
        content_filter_sensitivity="medium",
        crawler_api_url=None,
        crawler_api_token=None,
        local_test_mode=True,
        github_enabled=True,
        github_token=None,
        target_repo=None,
        target_branch="main",
        github_posts_dir="_posts",
        telegram_enabled=True,
        telegram_bot_token="bot",
        telegram_channel_id="@chan",
    )
    data.update(overrides)
    return SimpleNamespace(**data)


def test_parser_validates_dates_and_subcommands() -> None:
    parser = build_parser()

    args = parser.parse_args(["--date", "2025-01-10", "drain", "--size", "3"])
    assert (args.date, args.command, args.size, args.max_batches) == ("2025-01-10", "drain", 3, None)

    with pytest.raises(SystemExit):
        parser.parse_args(["--date", "10/01/2025", "init"])


@pytest.mark.asyncio
async def test_publishers_without_credentials_are_skipped() -> None:
    async with httpx.AsyncClient() as http:
        pubs = build_publishers(_settings(Path(".")), http)

    assert [p.name for p in pubs] == ["telegram"]


@pytest.mark.asyncio
async def test_app_state_runs_a_local_day_offline(tmp_path: Path, capsys) -> None:
    state = create_app_state(settings=_settings(tmp_path))
    try:
        assert isinstance(state.llm, OfflineLLMClient)
        assert state.executor.classifier is not None
        state.executor.story_source = FakeStorySource(make_stories(3))
        state.executor.article_fetcher = FakeArticleFetcher()
        state.executor.comment_fetcher = FakeCommentFetcher()

        parser = build_parser()
        for argv in (["init"], ["drain"], ["publish"]):
            code = await run_command(parser.parse_args(["--date", "2025-01-10", *argv]), state)
            assert code == 0
    finally:
        await state.aclose()

    task = state.task_store.get_task("2025-01-10")
    assert task.status == TaskStatus.PUBLISHED
    assert task.completed_articles == 3

    out = capsys.readouterr().out
    assert "HackerNews Daily - 2025-01-10" in out
    assert "[离线] story 1" in out
    assert '"terminal": true' in out


@pytest.mark.asyncio
async def test_progress_for_unknown_day_is_an_error(tmp_path: Path) -> None:
    state = create_app_state(settings=_settings(tmp_path))
    try:
        args = argparse.Namespace(date="1999-01-01", command="progress")
        assert await run_command(args, state) == 1
    finally:
        await state.aclose()
