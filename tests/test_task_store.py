# tests/test_task_store.py

from __future__ import annotations

import sqlite3
import time
from datetime import date

import pytest

from hn_digest.tasks.task_models import (
    ArticleStatus,
    ArticleUpdate,
    BatchResult,
    BatchStatus,
    NewArticle,
    TaskStatus,
)
from hn_digest.tasks.task_store import TaskStore

DAY = "2025-01-10"


def _items(n: int) -> list[NewArticle]:
    return [
        NewArticle(
            story_id=100 + i,
            rank=i,
            url=f"https://example.com/{i}",
            title_en=f"story {i}",
            score=500 - i,
            published_time=1736380800 + i,
        )
        for i in range(1, n + 1)
    ]


def _enrolled(store: TaskStore, n: int = 5) -> None:
    store.get_or_create_task(DAY)
    assert store.enroll_articles(DAY, _items(n))


def test_get_or_create_task_is_idempotent(store: TaskStore) -> None:
    a = store.get_or_create_task(DAY)
    b = store.get_or_create_task(DAY)

    assert a.id == b.id
    assert a.status == TaskStatus.INIT
    assert store.count_tasks() == 1


def test_enroll_sets_total_status_and_dense_ranks(store: TaskStore) -> None:
    _enrolled(store, 5)

    task = store.get_task(DAY)
    assert task is not None
    assert task.status == TaskStatus.LIST_FETCHED
    assert task.total_articles == 5
    assert (task.completed_articles, task.failed_articles) == (0, 0)

    articles = store.get_articles(DAY)
    assert [a.rank for a in articles] == [1, 2, 3, 4, 5]
    assert all(a.status == ArticleStatus.PENDING for a in articles)


def test_enroll_refuses_when_task_left_init(store: TaskStore) -> None:
    _enrolled(store, 3)

    assert store.enroll_articles(DAY, _items(7)) is False
    assert len(store.get_articles(DAY)) == 3
    assert store.get_task(DAY).total_articles == 3


def test_enroll_replaces_rows_left_by_interrupted_enrollment(store: TaskStore) -> None:
    store.get_or_create_task(DAY)
    store.insert_articles(DAY, _items(2))  # crashed before the status change

    assert store.enroll_articles(DAY, _items(4))
    assert [a.rank for a in store.get_articles(DAY)] == [1, 2, 3, 4]


def test_duplicate_rank_is_rejected(store: TaskStore) -> None:
    store.get_or_create_task(DAY)
    store.insert_articles(DAY, _items(2))

    with pytest.raises(sqlite3.IntegrityError):
        store.insert_articles(DAY, _items(1))


def test_claim_takes_lowest_ranks_and_never_twice(store: TaskStore) -> None:
    _enrolled(store, 5)

    first = store.claim_pending_articles(DAY, 2)
    second = store.claim_pending_articles(DAY, 2)

    assert [a.rank for a in first] == [1, 2]
    assert [a.rank for a in second] == [3, 4]
    assert all(a.status == ArticleStatus.PROCESSING for a in first + second)

    progress = store.get_task_progress(DAY)
    assert progress is not None
    assert (progress.pending_count, progress.processing_count) == (1, 4)


def test_update_articles_batch_skips_unset_fields(store: TaskStore) -> None:
    _enrolled(store, 1)
    (article,) = store.claim_pending_articles(DAY, 1)

    store.update_articles_batch(
        [ArticleUpdate(id=article.id, status=ArticleStatus.COMPLETED, title_zh="标题", content_summary_zh="摘要")]
    )
    store.update_articles_batch([ArticleUpdate(id=article.id, status=ArticleStatus.COMPLETED, error_message=None)])

    (row,) = store.get_completed_articles(DAY)
    assert row.title_zh == "标题"
    assert row.content_summary_zh == "摘要"
    assert row.comment_summary_zh is None
    assert row.error_message is None


def test_increment_task_counters_is_additive(store: TaskStore) -> None:
    _enrolled(store, 5)

    store.increment_task_counters(DAY, 2, 1)
    store.increment_task_counters(DAY, 1, 0)

    task = store.get_task(DAY)
    assert (task.completed_articles, task.failed_articles) == (3, 1)


def test_finish_claimed_articles_skips_rows_reclaimed_elsewhere(store: TaskStore) -> None:
    _enrolled(store, 2)
    first = store.claim_pending_articles(DAY, 2)
    assert store.reset_stale_processing(DAY, 0, now_ts=time.time() + 1) == 2
    second = store.claim_pending_articles(DAY, 2)
    assert first[0].claim_token != second[0].claim_token

    late = [ArticleUpdate(id=a.id, status=ArticleStatus.FAILED, error_message="late") for a in first]
    assert store.finish_claimed_articles(DAY, first[0].claim_token, late) == (0, 0)

    done = [
        ArticleUpdate(id=a.id, status=ArticleStatus.COMPLETED, title_zh="标题", content_summary_zh="摘要")
        for a in second
    ]
    assert store.finish_claimed_articles(DAY, second[0].claim_token, done) == (2, 0)
    # Already finished: a repeat write changes nothing.
    assert store.finish_claimed_articles(DAY, second[0].claim_token, done) == (0, 0)

    task = store.get_task(DAY)
    assert (task.completed_articles, task.failed_articles) == (2, 0)
    assert all(a.error_message is None for a in store.get_completed_articles(DAY))


def test_reset_stale_processing_only_touches_old_rows(store: TaskStore) -> None:
    _enrolled(store, 3)
    store.claim_pending_articles(DAY, 2)
    now = time.time()

    assert store.reset_stale_processing(DAY, 600, now_ts=now) == 0
    assert store.reset_stale_processing(DAY, 600, now_ts=now + 601) == 2

    progress = store.get_task_progress(DAY)
    assert (progress.pending_count, progress.processing_count) == (3, 0)


def test_retry_failed_respects_max_retries_and_fixes_counters(store: TaskStore) -> None:
    _enrolled(store, 2)
    a1, a2 = store.claim_pending_articles(DAY, 2)
    store.update_articles_batch(
        [
            ArticleUpdate(id=a1.id, status=ArticleStatus.FAILED, error_message="boom"),
            ArticleUpdate(id=a2.id, status=ArticleStatus.FAILED, error_message="boom", retry_count=3),
        ]
    )
    store.increment_task_counters(DAY, 0, 2)

    assert store.retry_failed_articles(DAY, max_retries=3) == 1

    articles = {a.rank: a for a in store.get_articles(DAY)}
    assert articles[1].status == ArticleStatus.PENDING
    assert articles[1].retry_count == 1
    # At the limit: stays failed for good.
    assert articles[2].status == ArticleStatus.FAILED
    assert articles[2].retry_count == 3

    task = store.get_task(DAY)
    assert task.failed_articles == 1
    assert task.completed_articles + task.failed_articles <= task.total_articles


def test_record_batch_allocates_sequential_indexes(store: TaskStore) -> None:
    store.get_or_create_task(DAY)

    i1 = store.record_batch(DAY, BatchResult(BatchStatus.SUCCESS, 2, 7, 120))
    i2 = store.record_batch(DAY, BatchResult(BatchStatus.PARTIAL, 2, 7, 80, "1 articles failed"))
    i3 = store.record_batch(DAY, BatchResult(BatchStatus.FAILED, 1, 5, 40, "boom"))

    assert (i1, i2, i3) == (1, 2, 3)
    assert [b.status for b in store.get_batches(DAY)] == [BatchStatus.SUCCESS, BatchStatus.PARTIAL, BatchStatus.FAILED]

    stats = store.get_batch_statistics(DAY)
    assert stats.total_batches == 3
    assert (stats.success_batches, stats.partial_batches, stats.failed_batches) == (1, 1, 1)
    assert stats.total_subrequests == 19
    assert stats.avg_duration_ms == pytest.approx(80.0)


def test_batch_statistics_for_unknown_day_are_zero(store: TaskStore) -> None:
    stats = store.get_batch_statistics("1999-01-01")
    assert stats.total_batches == 0
    assert stats.avg_duration_ms == 0.0


def test_archive_deletes_only_tasks_before_cutoff(store: TaskStore) -> None:
    for day in ("2025-01-01", "2025-01-02", "2025-01-03"):
        store.get_or_create_task(day)
        store.insert_articles(day, _items(2))
        store.record_batch(day, BatchResult(BatchStatus.SUCCESS, 2, 7, 10))

    # cutoff = 2025-01-02: strictly older tasks go, the cutoff day stays.
    deleted = store.archive_old_tasks(30, today=date(2025, 2, 1))

    assert deleted == 1
    assert store.get_task("2025-01-01") is None
    assert store.get_articles("2025-01-01") == []
    assert store.get_batches("2025-01-01") == []
    assert store.get_task("2025-01-02") is not None
    assert len(store.get_articles("2025-01-03")) == 2


def test_update_task_status_sets_published_at(store: TaskStore) -> None:
    store.get_or_create_task(DAY)
    store.update_task_status(DAY, TaskStatus.PUBLISHED, published_at=1736500000.0)

    task = store.get_task(DAY)
    assert task.status == TaskStatus.PUBLISHED
    assert task.published_at == 1736500000.0


def test_health_and_database_stats(store: TaskStore) -> None:
    _enrolled(store, 3)

    assert store.health_check() is True
    stats = store.get_database_stats()
    assert stats["total_tasks"] == 1
    assert stats["total_articles"] == 3


def test_schema_survives_reopen(store: TaskStore) -> None:
    _enrolled(store, 2)

    reopened = TaskStore(store.db_path)
    assert reopened.get_task(DAY).total_articles == 2
