# src/hn_digest/tasks/task_executor.py

from __future__ import annotations

"""
Task executor.

Drives one calendar day's digest through its states using only the TaskStore
for shared state:

- initialize_task:    fetch ranked stories, optionally filter, enroll as articles
- process_next_batch: claim a bounded slice of pending articles, enrich, persist
- aggregate_results:  render completed articles (rank order) into a document
- publish_results:    deliver to the configured sinks once every article is finished
- retry / archive / stale-row recovery

Each call is independently resumable: nothing is kept in memory between calls.
"""

import asyncio
import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from ..core.ports import (
    EMPTY,
    HN_ITEM_URL,
    ArticleFetcher,
    CommentFetcher,
    ContentClassifier,
    DigestEntry,
    Enricher,
    Publisher,
    PublishContent,
    Renderer,
    Story,
    StorySource,
)
from ..dates import format_timestamp, previous_day_boundaries
from ..render.markdown import render_markdown
from .errors import (
    AlignmentError,
    NoCandidatesError,
    NothingToAggregateError,
    PublishNotReadyError,
    TaskNotFoundError,
)
from .task_models import (
    Article,
    ArticleStatus,
    ArticleUpdate,
    BatchOutcome,
    BatchResult,
    BatchStatistics,
    BatchStatus,
    DailyTask,
    NewArticle,
    TaskProgress,
    TaskStatus,
    can_transition,
    ensure_transition,
)
from .task_store import TaskStore

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class ExecutorConfig:
    story_limit: int = 30
    batch_size: int = 6
    summary_max_length: int = 300
    comments_per_story: int = 3
    subrequest_soft_limit: int = 30
    max_retries: int = 3
    retention_days: int = 30
    stale_processing_seconds: float = 600.0
    local_test_mode: bool = False

    @classmethod
    def from_settings(cls, settings: Any) -> ExecutorConfig:
        return cls(
            story_limit=int(settings.story_limit),
            batch_size=int(settings.batch_size),
            summary_max_length=int(settings.summary_max_length),
            comments_per_story=int(settings.comments_per_story),
            subrequest_soft_limit=int(settings.subrequest_soft_limit),
            max_retries=int(settings.max_retries),
            retention_days=int(settings.retention_days),
            stale_processing_seconds=float(settings.stale_processing_seconds),
            local_test_mode=bool(settings.local_test_mode),
        )


@dataclass(slots=True)
class AggregateResult:
    entries: list[DigestEntry]
    markdown: str


@dataclass(slots=True)
class _EnrichedBatch:
    updates: list[ArticleUpdate] = field(default_factory=list)
    completed: int = 0
    failed: int = 0
    subrequests: int = 0


def _check_alignment(helper: str, expected: int, results: Sequence[Any]) -> None:
    if len(results) != expected:
        raise AlignmentError(helper, expected, len(results))


def _check_strings(helper: str, results: Sequence[Any]) -> None:
    for i, value in enumerate(results):
        if not isinstance(value, str):
            raise TypeError(
                f"{helper} returned {type(value).__name__} at index {i}; "
                "expected str (empty string for no result)"
            )


class TaskExecutor:
    def __init__(
            self,
            store: TaskStore,
            *,
            story_source: StorySource,
            article_fetcher: ArticleFetcher,
            comment_fetcher: CommentFetcher,
            enricher: Enricher,
            classifier: ContentClassifier | None = None,
            renderer: Renderer = render_markdown,
            publishers: Sequence[Publisher] = (),
            local_publisher: Publisher | None = None,
            config: ExecutorConfig | None = None,
    ) -> None:
        self.store = store
        self.story_source = story_source
        self.article_fetcher = article_fetcher
        self.comment_fetcher = comment_fetcher
        self.enricher = enricher
        self.classifier = classifier
        self.renderer = renderer
        self.publishers = list(publishers)
        self.local_publisher = local_publisher
        self.config = config or ExecutorConfig()

    def _require_task(self, task_date: str) -> DailyTask:
        task = self.store.get_task(task_date)
        if task is None:
            raise TaskNotFoundError(task_date)
        return task

    def _transition(self, task: DailyTask, target: TaskStatus) -> None:
        ensure_transition(task.status, target)
        if task.status == target:
            return
        self.store.update_task_status(task.task_date, target)
        logger.info("Task %s: %s -> %s", task.task_date, task.status.value, target.value)
        task.status = target

    # ---- initialize ----

    async def initialize_task(self, task_date: str) -> DailyTask:
        """
        Enroll the day's ranked stories. Idempotent: a task that already left
        "init" is returned as-is without fetching candidates again.
        """
        logger.info("Initializing daily task task_date=%s", task_date)

        task = self.store.get_or_create_task(task_date)
        if task.status != TaskStatus.INIT:
            logger.info(
                "Task already initialized task_date=%s status=%s total=%d",
                task_date,
                task.status.value,
                task.total_articles,
            )
            return task

        start, end = previous_day_boundaries(task_date)
        limit = self.config.story_limit
        logger.info("Fetching stories limit=%d start=%d end=%d", limit, start, end)
        stories = await self.story_source.fetch_ranked_stories(limit, start, end)
        fetched = len(stories)
        logger.info("Stories fetched count=%d", fetched)

        if stories and self.classifier is not None:
            stories = await asyncio.to_thread(self.classifier.filter_stories, list(stories))
            logger.info("Content filter applied original=%d kept=%d", fetched, len(stories))

        if not stories:
            logger.warning("No stories to enroll task_date=%s", task_date)
            raise NoCandidatesError(task_date, fetched)

        items = [
            NewArticle(
                story_id=story.story_id,
                rank=rank,
                url=story.url or HN_ITEM_URL.format(story_id=story.story_id),
                title_en=story.title,
                score=story.score,
                published_time=story.published_time,
            )
            for rank, story in enumerate(stories, start=1)
        ]

        if not self.store.enroll_articles(task_date, items):
            logger.info("Task %s was enrolled by another invocation", task_date)

        task = self._require_task(task_date)
        logger.info(
            "Task initialization completed task_date=%s articles=%d",
            task_date,
            task.total_articles,
        )
        return task

    # ---- process ----

    async def process_next_batch(self, task_date: str, batch_size: int | None = None) -> BatchOutcome:
        """
        Claim and enrich up to batch_size pending articles (lowest rank first).

        Claimed rows end the call as completed or failed. If an unexpected
        error interrupts enrichment or persistence, every claimed row is
        marked failed with the error text, the batch is recorded as failed,
        and the error is re-raised. Rows released as stale while the batch ran
        belong to whoever claimed them next; their results here are dropped.
        """
        size = self.config.batch_size if batch_size is None else int(batch_size)
        if size <= 0:
            raise ValueError("batch_size must be positive")

        task = self._require_task(task_date)
        if task.status == TaskStatus.INIT:
            # Nothing enrolled yet; processing only starts after initialize_task.
            ensure_transition(task.status, TaskStatus.PROCESSING)

        started = time.monotonic()
        logger.info("Processing next batch task_date=%s batch_size=%d", task_date, size)

        claimed = self.store.claim_pending_articles(task_date, size)
        if not claimed:
            progress = self._progress(task_date)
            if progress.enrichment_done:
                self._finish_enrichment(progress.task)
            logger.info(
                "No pending articles task_date=%s pending=%d processing=%d",
                task_date,
                progress.pending_count,
                progress.processing_count,
            )
            return BatchOutcome(0, 0, progress.pending_count, progress.processing_count)

        if task.status == TaskStatus.LIST_FETCHED:
            self._transition(task, TaskStatus.PROCESSING)

        logger.info(
            "Claimed articles task_date=%s ranks=%s",
            task_date,
            ",".join(str(a.rank) for a in claimed),
        )

        token = claimed[0].claim_token or ""
        batch = _EnrichedBatch()
        failure: Exception | None = None
        error_message: str | None = None
        try:
            await self._enrich(claimed, batch)
            batch.completed, batch.failed = self.store.finish_claimed_articles(task_date, token, batch.updates)
        except Exception as exc:
            failure = exc
            error_message = str(exc) or exc.__class__.__name__
            logger.exception("Batch processing failed task_date=%s", task_date)
            batch.completed, batch.failed = self.store.finish_claimed_articles(
                task_date,
                token,
                (
                    ArticleUpdate(id=a.id, status=ArticleStatus.FAILED, error_message=error_message)
                    for a in claimed
                ),
            )

        lost = len(claimed) - batch.completed - batch.failed
        if lost:
            logger.warning(
                "Lost %d claimed articles task_date=%s: released as stale before the batch finished; "
                "their results were not written",
                lost,
                task_date,
            )

        if failure is None:
            problems = []
            if batch.failed:
                problems.append(f"{batch.failed} articles failed")
            if lost:
                problems.append(f"{lost} articles released before the batch finished")
            error_message = "; ".join(problems) or None

        if batch.failed == 0 and lost == 0:
            status = BatchStatus.SUCCESS
        elif batch.completed == 0:
            status = BatchStatus.FAILED
        else:
            status = BatchStatus.PARTIAL

        duration_ms = int((time.monotonic() - started) * 1000)
        batch_index = self.store.record_batch(
            task_date,
            BatchResult(
                status=status,
                article_count=len(claimed),
                subrequest_count=batch.subrequests,
                duration_ms=duration_ms,
                error_message=error_message,
            ),
        )

        if batch.subrequests > self.config.subrequest_soft_limit:
            logger.warning(
                "High subrequest count task_date=%s batch=%d subrequests=%d limit=%d; "
                "consider reducing the batch size (now %d)",
                task_date,
                batch_index,
                batch.subrequests,
                self.config.subrequest_soft_limit,
                size,
            )

        if failure is not None:
            raise failure

        progress = self._progress(task_date)
        if progress.enrichment_done:
            self._finish_enrichment(progress.task)

        logger.info(
            "Batch %d completed task_date=%s processed=%d failed=%d subrequests=%d duration_ms=%d",
            batch_index,
            task_date,
            batch.completed,
            batch.failed,
            batch.subrequests,
            duration_ms,
        )
        return BatchOutcome(
            processed=batch.completed,
            failed=batch.failed,
            pending=progress.pending_count,
            processing=progress.processing_count,
        )

    async def _enrich(self, articles: list[Article], out: _EnrichedBatch) -> None:
        """Fill `out` in place; subrequests are counted as issued, so a raise keeps them."""
        n = len(articles)

        stories = [
            Story(
                story_id=a.story_id,
                url=a.url,
                title=a.title_en,
                score=a.score,
                published_time=a.published_time,
            )
            for a in articles
        ]

        # One request per article for content and for comments, run concurrently.
        out.subrequests += 2 * n
        contents, comments = await asyncio.gather(
            self.article_fetcher.fetch_articles_batch([a.url for a in articles]),
            self.comment_fetcher.fetch_comments_batch(stories, self.config.comments_per_story),
        )
        _check_alignment("fetch_articles_batch", n, contents)
        _check_alignment("fetch_comments_batch", n, comments)

        max_len = self.config.summary_max_length
        texts = [c.full_content or c.description for c in contents]

        # One batched LLM call each.
        out.subrequests += 3
        titles, summaries, comment_summaries = await asyncio.gather(
            asyncio.to_thread(self.enricher.translate_titles_batch, [a.title_en for a in articles]),
            asyncio.to_thread(self.enricher.summarize_content_batch, texts, max_len),
            asyncio.to_thread(self.enricher.summarize_comments_batch, comments, max_len),
        )

        for helper, results in (
            ("translate_titles_batch", titles),
            ("summarize_content_batch", summaries),
            ("summarize_comments_batch", comment_summaries),
        ):
            _check_alignment(helper, n, results)
            _check_strings(helper, results)

        for i, article in enumerate(articles):
            title_zh = titles[i]
            summary = summaries[i]
            comment_summary = None if comment_summaries[i] == EMPTY else comment_summaries[i]

            missing = []
            if title_zh == EMPTY:
                missing.append("translated title")
            if summary == EMPTY:
                missing.append("content summary")

            if not missing:
                out.completed += 1
                out.updates.append(
                    ArticleUpdate(
                        id=article.id,
                        status=ArticleStatus.COMPLETED,
                        title_zh=title_zh,
                        content_summary_zh=summary,
                        comment_summary_zh=comment_summary,
                        error_message=None,
                    )
                )
                continue

            out.failed += 1
            error = f"Enrichment failed for rank {article.rank}: missing {' and '.join(missing)}"
            logger.warning("%s (story_id=%s)", error, article.story_id)
            out.updates.append(
                ArticleUpdate(
                    id=article.id,
                    status=ArticleStatus.FAILED,
                    title_zh=None if title_zh == EMPTY else title_zh,
                    content_summary_zh=None if summary == EMPTY else summary,
                    comment_summary_zh=comment_summary,
                    error_message=error,
                )
            )

    def _progress(self, task_date: str) -> TaskProgress:
        progress = self.store.get_task_progress(task_date)
        if progress is None:
            raise TaskNotFoundError(task_date)
        return progress

    def _finish_enrichment(self, task: DailyTask) -> None:
        """Move to aggregating once nothing is pending or processing."""
        if task.status in (TaskStatus.LIST_FETCHED, TaskStatus.PROCESSING):
            self._transition(task, TaskStatus.AGGREGATING)
            logger.info(
                "All articles processed task_date=%s completed=%d failed=%d total=%d",
                task.task_date,
                task.completed_articles,
                task.failed_articles,
                task.total_articles,
            )

    async def recover_stale_articles(self, task_date: str, older_than_seconds: float | None = None) -> int:
        """Release rows left in processing by an invocation that never finished."""
        timeout = self.config.stale_processing_seconds if older_than_seconds is None else older_than_seconds
        count = self.store.reset_stale_processing(task_date, timeout)
        if count:
            logger.warning(
                "Reset %d stale processing articles task_date=%s (older than %.0fs)",
                count,
                task_date,
                timeout,
            )
        return count

    # ---- aggregate / publish ----

    @staticmethod
    def _to_entry(article: Article) -> DigestEntry:
        title_zh = article.title_zh if article.title_zh not in (None, EMPTY) else article.title_en
        description = article.content_summary_zh if article.content_summary_zh not in (None, EMPTY) else ""
        comment_summary = (
            article.comment_summary_zh if article.comment_summary_zh not in (None, EMPTY) else None
        )
        return DigestEntry(
            rank=article.rank,
            story_id=article.story_id,
            title_en=article.title_en,
            title_zh=title_zh,
            url=article.url,
            score=article.score,
            published_time=article.published_time,
            time_str=format_timestamp(article.published_time),
            description=description,
            comment_summary=comment_summary,
        )

    async def aggregate_results(self, task_date: str) -> AggregateResult:
        logger.info("Aggregating results task_date=%s", task_date)

        completed = self.store.get_completed_articles(task_date)
        if not completed:
            logger.warning("No completed articles to aggregate task_date=%s", task_date)
            raise NothingToAggregateError(task_date)

        entries = [self._to_entry(a) for a in completed]
        markdown = self.renderer(entries, task_date)
        logger.info("Markdown generated task_date=%s articles=%d length=%d", task_date, len(entries), len(markdown))
        return AggregateResult(entries=entries, markdown=markdown)

    async def publish_results(self, task_date: str, markdown: str) -> dict[str, bool]:
        """
        Deliver the document to every configured sink (or only the local sink
        in local test mode).

        Refuses unless completed + failed == total. Sinks fail independently;
        the task becomes "published" if at least one sink succeeded and stays
        where it is otherwise, so a later call can retry.
        """
        logger.info("Publishing results task_date=%s", task_date)

        task = self._require_task(task_date)
        if task.finished_articles != task.total_articles:
            raise PublishNotReadyError(
                task_date, task.completed_articles, task.failed_articles, task.total_articles
            )
        ensure_transition(task.status, TaskStatus.PUBLISHED)

        entries = [self._to_entry(a) for a in self.store.get_completed_articles(task_date)]
        content = PublishContent(
            markdown=markdown,
            date_str=task_date,
            entries=entries,
            metadata={
                "task_date": task_date,
                "total_articles": task.total_articles,
                "completed_articles": task.completed_articles,
                "failed_articles": task.failed_articles,
            },
        )

        if self.config.local_test_mode:
            sinks = [self.local_publisher] if self.local_publisher is not None else []
        else:
            sinks = list(self.publishers)

        if not sinks:
            logger.warning("No publishers configured task_date=%s", task_date)
            return {}

        outcomes = await asyncio.gather(*(self._publish_one(sink, content) for sink in sinks))
        results = {sink.name: ok for sink, ok in zip(sinks, outcomes)}

        if any(results.values()):
            self.store.update_task_status(task_date, TaskStatus.PUBLISHED, published_at=time.time())
            logger.info("Task marked as published task_date=%s results=%s", task_date, results)
        else:
            logger.warning("No publishers succeeded task_date=%s results=%s", task_date, results)
        return results

    async def _publish_one(self, sink: Publisher, content: PublishContent) -> bool:
        try:
            await sink.publish(content)
        except Exception:
            logger.exception("Publisher %s failed task_date=%s", sink.name, content.date_str)
            return False
        logger.info("Publisher %s succeeded task_date=%s", sink.name, content.date_str)
        return True

    async def aggregate_and_publish(self, task_date: str) -> dict[str, bool]:
        result = await self.aggregate_results(task_date)
        return await self.publish_results(task_date, result.markdown)

    # ---- maintenance ----

    async def retry_failed_articles(self, task_date: str, max_retries: int | None = None) -> int:
        """
        Return failed articles with retries left to pending. Articles at the
        retry limit stay failed for good.
        """
        limit = self.config.max_retries if max_retries is None else int(max_retries)
        task = self._require_task(task_date)
        if task.status in (TaskStatus.PUBLISHED, TaskStatus.ARCHIVED):
            logger.warning("Not retrying %s: task is %s", task_date, task.status.value)
            return 0

        logger.info("Retrying failed articles task_date=%s max_retries=%d", task_date, limit)
        count = self.store.retry_failed_articles(task_date, limit)
        if count and task.status == TaskStatus.AGGREGATING:
            self._transition(task, TaskStatus.PROCESSING)
        logger.info("Failed articles reset to pending task_date=%s count=%d", task_date, count)
        return count

    async def archive_old_tasks(self, retention_days: int | None = None) -> int:
        days = self.config.retention_days if retention_days is None else int(retention_days)
        logger.info("Archiving old tasks retention_days=%d", days)
        count = self.store.archive_old_tasks(days)
        logger.info("Old tasks archived count=%d", count)
        return count

    def get_task_progress(self, task_date: str) -> TaskProgress | None:
        return self.store.get_task_progress(task_date)

    def get_batch_statistics(self, task_date: str) -> BatchStatistics:
        return self.store.get_batch_statistics(task_date)

    def can_publish(self, task_date: str) -> bool:
        task = self.store.get_task(task_date)
        if task is None:
            return False
        return task.finished_articles == task.total_articles and can_transition(
            task.status, TaskStatus.PUBLISHED
        )
