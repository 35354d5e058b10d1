# src/hn_digest/tasks/task_models.py

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from .errors import InvalidTransitionError

# Marker for "leave this column unchanged" in partial updates.
UNSET: Any = object()


class TaskStatus(StrEnum):
    """
    Daily task lifecycle.

    init -> list_fetched -> processing -> aggregating -> published -> archived

    "archived" is terminal and in practice reached by deleting the rows.
    """

    INIT = "init"
    LIST_FETCHED = "list_fetched"
    PROCESSING = "processing"
    AGGREGATING = "aggregating"
    PUBLISHED = "published"
    ARCHIVED = "archived"

    @classmethod
    def from_db(cls, raw: str | None) -> TaskStatus:
        if not raw:
            return cls.INIT
        return cls(raw)


class ArticleStatus(StrEnum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @classmethod
    def from_db(cls, raw: str | None) -> ArticleStatus:
        if not raw:
            return cls.PENDING
        return cls(raw)


class BatchStatus(StrEnum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


TASK_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.INIT: frozenset({TaskStatus.LIST_FETCHED}),
    # list_fetched -> aggregating happens when every article was already
    # finished before a batch got to flip the task into processing.
    TaskStatus.LIST_FETCHED: frozenset({TaskStatus.PROCESSING, TaskStatus.AGGREGATING}),
    TaskStatus.PROCESSING: frozenset({TaskStatus.AGGREGATING}),
    # aggregating -> processing: failed articles were reset for retry.
    TaskStatus.AGGREGATING: frozenset({TaskStatus.PROCESSING, TaskStatus.PUBLISHED}),
    TaskStatus.PUBLISHED: frozenset({TaskStatus.ARCHIVED}),
    TaskStatus.ARCHIVED: frozenset(),
}


def can_transition(current: TaskStatus, target: TaskStatus) -> bool:
    if current == target:
        return True
    return target in TASK_TRANSITIONS[current]


def ensure_transition(current: TaskStatus, target: TaskStatus) -> None:
    if not can_transition(current, target):
        raise InvalidTransitionError(current.value, target.value)


@dataclass(slots=True)
class DailyTask:
    id: int
    task_date: str  # YYYY-MM-DD
    status: TaskStatus
    total_articles: int
    completed_articles: int
    failed_articles: int
    created_at: float
    updated_at: float
    published_at: float | None = None

    @property
    def finished_articles(self) -> int:
        return self.completed_articles + self.failed_articles


@dataclass(slots=True)
class Article:
    id: int
    task_date: str
    story_id: int
    rank: int
    url: str
    title_en: str
    score: int
    published_time: int  # unix seconds
    status: ArticleStatus
    created_at: float
    updated_at: float

    title_zh: str | None = None
    content_summary_zh: str | None = None
    comment_summary_zh: str | None = None
    error_message: str | None = None
    retry_count: int = 0
    claim_token: str | None = None


@dataclass(slots=True, frozen=True)
class NewArticle:
    """One candidate story to enroll; rank is its 1-based position in the day's list."""

    story_id: int
    rank: int
    url: str
    title_en: str
    score: int
    published_time: int


@dataclass(slots=True, frozen=True)
class ArticleUpdate:
    """
    Per-row update for TaskStore.update_articles_batch.

    Fields left as UNSET are not written; passing None writes NULL.
    """

    id: int
    status: ArticleStatus
    title_zh: Any = UNSET
    content_summary_zh: Any = UNSET
    comment_summary_zh: Any = UNSET
    error_message: Any = UNSET
    retry_count: Any = UNSET


@dataclass(slots=True, frozen=True)
class BatchResult:
    status: BatchStatus
    article_count: int
    subrequest_count: int
    duration_ms: int
    error_message: str | None = None


@dataclass(slots=True)
class BatchRecord:
    id: int
    task_date: str
    batch_index: int
    article_count: int
    subrequest_count: int
    duration_ms: int
    status: BatchStatus
    error_message: str | None
    created_at: float


@dataclass(slots=True, frozen=True)
class BatchStatistics:
    total_batches: int = 0
    success_batches: int = 0
    partial_batches: int = 0
    failed_batches: int = 0
    avg_duration_ms: float = 0.0
    total_subrequests: int = 0


@dataclass(slots=True, frozen=True)
class TaskProgress:
    task: DailyTask
    pending_count: int
    processing_count: int

    @property
    def enrichment_done(self) -> bool:
        return self.pending_count == 0 and self.processing_count == 0

    @property
    def needs_manual_retry(self) -> bool:
        return self.task.failed_articles > 0 and self.pending_count == 0

    def as_dict(self) -> dict[str, Any]:
        return {
            "task_date": self.task.task_date,
            "status": self.task.status.value,
            "total": self.task.total_articles,
            "completed": self.task.completed_articles,
            "failed": self.task.failed_articles,
            "pending": self.pending_count,
            "processing": self.processing_count,
            "published_at": self.task.published_at,
        }


@dataclass(slots=True, frozen=True)
class BatchOutcome:
    """What process_next_batch reports back so a caller can decide whether to call again."""

    processed: int
    failed: int
    pending: int
    processing: int

    @property
    def has_more(self) -> bool:
        return self.pending > 0 or self.processing > 0

    def as_dict(self) -> dict[str, int]:
        return {
            "processed": self.processed,
            "failed": self.failed,
            "pending": self.pending,
            "processing": self.processing,
        }
