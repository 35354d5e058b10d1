# src/hn_digest/tasks/task_scheduler.py

from __future__ import annotations

"""
Task scheduler.

Advances a daily task one step at a time according to its stored status:

- init / no task        -> initialize_task
- list_fetched/processing -> release stale rows, process_next_batch
- aggregating           -> aggregate_results + publish_results
- published / archived  -> nothing to do

run_digest_scheduler is a small polling loop around run_state_machine_step for
long-running deployments; cron-style deployments call the step directly.
"""

import asyncio
import logging
from collections.abc import Callable

from ..dates import today_str
from .errors import NothingToAggregateError
from .task_executor import TaskExecutor
from .task_models import BatchOutcome, TaskStatus

logger = logging.getLogger(__name__)


async def run_state_machine_step(executor: TaskExecutor, task_date: str) -> TaskStatus:
    """
    Run the single action appropriate for the task's current status and
    return the status afterwards.
    """
    task = executor.store.get_task(task_date)
    status = TaskStatus.INIT if task is None else task.status
    logger.info("State machine step task_date=%s status=%s", task_date, status.value)

    if status == TaskStatus.INIT:
        await executor.initialize_task(task_date)

    elif status in (TaskStatus.LIST_FETCHED, TaskStatus.PROCESSING):
        await executor.recover_stale_articles(task_date)
        outcome = await executor.process_next_batch(task_date)
        logger.info("Batch step result task_date=%s %s", task_date, outcome.as_dict())

    elif status == TaskStatus.AGGREGATING:
        try:
            results = await executor.aggregate_and_publish(task_date)
        except NothingToAggregateError:
            # Every article failed; only a manual retry can move this day forward.
            logger.error("Task %s has no completed articles; run retry first", task_date)
        else:
            logger.info("Publish step result task_date=%s results=%s", task_date, results)

    elif status in (TaskStatus.PUBLISHED, TaskStatus.ARCHIVED):
        logger.info("Task %s is %s; nothing to do", task_date, status.value)

    else:
        raise ValueError(f"Unhandled task status: {status!r}")

    after = executor.store.get_task(task_date)
    return TaskStatus.INIT if after is None else after.status


async def drain_batches(
        executor: TaskExecutor,
        task_date: str,
        *,
        batch_size: int | None = None,
        max_batches: int | None = None,
) -> list[BatchOutcome]:
    """Call process_next_batch until nothing is pending (or max_batches is reached)."""
    outcomes: list[BatchOutcome] = []
    while max_batches is None or len(outcomes) < max_batches:
        outcome = await executor.process_next_batch(task_date, batch_size)
        outcomes.append(outcome)
        if outcome.pending == 0:
            break
    return outcomes


async def run_digest_scheduler(
        executor: TaskExecutor,
        *,
        interval_seconds: float = 60.0,
        date_fn: Callable[[], str] = today_str,
        archive: bool = True,
) -> None:
    """
    Polling scheduler.

    Every interval_seconds:
    - resolve today's task date via date_fn
    - run one state machine step for it (errors are logged, the loop keeps going)
    - once per day, delete tasks past the retention window

    To stop the scheduler, cancel the coroutine/task.
    """
    sleep_s = max(0.5, float(interval_seconds))
    last_archive_date: str | None = None

    while True:
        task_date = date_fn()

        if archive and last_archive_date != task_date:
            try:
                await executor.archive_old_tasks()
                last_archive_date = task_date
            except Exception:
                logger.exception("archive_old_tasks failed")

        try:
            await run_state_machine_step(executor, task_date)
        except Exception:
            logger.exception("State machine step failed task_date=%s", task_date)

        await asyncio.sleep(sleep_s)
