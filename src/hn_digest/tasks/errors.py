# src/hn_digest/tasks/errors.py

from __future__ import annotations


class DigestError(RuntimeError):
    """Base class for executor-level defects."""


class TaskNotFoundError(DigestError):
    def __init__(self, task_date: str) -> None:
        super().__init__(f"No task exists for {task_date}")
        self.task_date = task_date


class NoCandidatesError(DigestError):
    """The story source (after filtering) produced nothing to enroll."""

    def __init__(self, task_date: str, fetched: int = 0) -> None:
        super().__init__(f"No stories to enroll for {task_date} (fetched={fetched})")
        self.task_date = task_date
        self.fetched = fetched


class AlignmentError(DigestError):
    """A batched collaborator returned a result array of the wrong length."""

    def __init__(self, helper: str, expected: int, actual: int) -> None:
        super().__init__(
            f"Array length mismatch from {helper}: expected {expected}, got {actual}"
        )
        self.helper = helper
        self.expected = expected
        self.actual = actual


class NothingToAggregateError(DigestError):
    def __init__(self, task_date: str) -> None:
        super().__init__(f"No completed articles for {task_date}")
        self.task_date = task_date


class PublishNotReadyError(DigestError):
    def __init__(self, task_date: str, completed: int, failed: int, total: int) -> None:
        super().__init__(
            f"Cannot publish {task_date}: {completed} completed + {failed} failed "
            f"({completed + failed}) != total_articles ({total})"
        )
        self.task_date = task_date
        self.completed = completed
        self.failed = failed
        self.total = total


class InvalidTransitionError(DigestError):
    def __init__(self, current: str, target: str) -> None:
        super().__init__(f"Invalid task transition: {current} -> {target}")
        self.current = current
        self.target = target
