# src/hn_digest/cli/main.py

"""
CLI entrypoint (`hn-digest`).

Initializes logging, builds AppState, then runs one subcommand against the
task for --date (default: today, UTC):

  init       enroll the day's ranked stories
  batch      process one batch of pending articles
  drain      process batches until nothing is pending
  aggregate  render the document (stdout or --output)
  publish    aggregate and deliver to the configured sinks
  step       run the state machine step for the current status
  retry      return failed articles with retries left to pending
  sweep      release articles stuck in processing
  archive    delete tasks past the retention window
  progress   print task progress as JSON
  stats      print batch and database statistics as JSON
  schedule   poll run_state_machine_step until interrupted
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import logging
import signal
import sys
from pathlib import Path
from typing import Any

from ..cli.bootstrap import create_app_state
from ..config import get_settings
from ..core.state import AppState
from ..dates import parse_task_date, today_str
from ..logging_setup import setup_logging
from ..tasks.errors import DigestError
from ..tasks.task_scheduler import drain_batches, run_digest_scheduler, run_state_machine_step

logger = logging.getLogger(__name__)


def _task_date(raw: str) -> str:
    try:
        return parse_task_date(raw).isoformat()
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e)) from e


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="hn-digest", description="Daily Hacker News digest pipeline.")
    parser.add_argument("--date", type=_task_date, default=None, help="task date YYYY-MM-DD (default: today, UTC)")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init", help="enroll the day's ranked stories")

    p = sub.add_parser("batch", help="process one batch of pending articles")
    p.add_argument("--size", type=int, default=None, help="batch size (default: DIGEST_TASK_BATCH_SIZE)")

    p = sub.add_parser("drain", help="process batches until nothing is pending")
    p.add_argument("--size", type=int, default=None)
    p.add_argument("--max-batches", type=int, default=None)

    p = sub.add_parser("aggregate", help="render the document for completed articles")
    p.add_argument("--output", type=Path, default=None, help="write markdown here instead of stdout")

    sub.add_parser("publish", help="aggregate and deliver to the configured sinks")
    sub.add_parser("step", help="run one state machine step")

    p = sub.add_parser("retry", help="reset failed articles with retries left")
    p.add_argument("--max-retries", type=int, default=None)

    p = sub.add_parser("sweep", help="release articles stuck in processing")
    p.add_argument("--older-than", type=float, default=None, help="seconds (default: DIGEST_STALE_PROCESSING_SECONDS)")

    p = sub.add_parser("archive", help="delete tasks past the retention window")
    p.add_argument("--retention-days", type=int, default=None)

    sub.add_parser("progress", help="print task progress as JSON")
    sub.add_parser("stats", help="print batch and database statistics as JSON")

    p = sub.add_parser("schedule", help="poll the state machine until interrupted")
    p.add_argument("--interval", type=float, default=None, help="seconds between steps")

    return parser


def _print_json(data: Any) -> None:
    print(json.dumps(data, ensure_ascii=False, indent=2, default=str))


async def _schedule(state: AppState, interval: float) -> None:
    task = asyncio.create_task(run_digest_scheduler(state.executor, interval_seconds=interval))

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        # Some platforms do not support signal handlers on the loop.
        with contextlib.suppress(NotImplementedError, RuntimeError):
            loop.add_signal_handler(sig, task.cancel)

    logger.info("Scheduler running every %.0fs. Press Ctrl+C to stop.", interval)
    with contextlib.suppress(asyncio.CancelledError):
        await task


async def run_command(args: argparse.Namespace, state: AppState) -> int:
    executor = state.executor
    task_date: str = args.date or today_str()
    cmd = args.command

    if cmd == "init":
        task = await executor.initialize_task(task_date)
        _print_json({"task_date": task.task_date, "status": task.status.value, "total_articles": task.total_articles})

    elif cmd == "batch":
        outcome = await executor.process_next_batch(task_date, args.size)
        _print_json(outcome.as_dict())

    elif cmd == "drain":
        outcomes = await drain_batches(executor, task_date, batch_size=args.size, max_batches=args.max_batches)
        _print_json([o.as_dict() for o in outcomes])

    elif cmd == "aggregate":
        result = await executor.aggregate_results(task_date)
        if args.output is not None:
            args.output.parent.mkdir(parents=True, exist_ok=True)
            args.output.write_text(result.markdown, "utf-8")
            logger.info("Markdown written to %s", args.output)
        else:
            print(result.markdown)

    elif cmd == "publish":
        results = await executor.aggregate_and_publish(task_date)
        _print_json(results)
        if not any(results.values()):
            return 1

    elif cmd == "step":
        status = await run_state_machine_step(executor, task_date)
        _print_json({"task_date": task_date, "status": status.value})

    elif cmd == "retry":
        count = await executor.retry_failed_articles(task_date, args.max_retries)
        _print_json({"task_date": task_date, "reset": count})

    elif cmd == "sweep":
        count = await executor.recover_stale_articles(task_date, args.older_than)
        _print_json({"task_date": task_date, "reset": count})

    elif cmd == "archive":
        count = await executor.archive_old_tasks(args.retention_days)
        _print_json({"deleted": count})

    elif cmd == "progress":
        progress = executor.get_task_progress(task_date)
        if progress is None:
            logger.error("No task for %s", task_date)
            return 1
        _print_json(progress.as_dict())

    elif cmd == "stats":
        stats = executor.get_batch_statistics(task_date)
        _print_json(
            {
                "task_date": task_date,
                "batches": {
                    "total": stats.total_batches,
                    "success": stats.success_batches,
                    "partial": stats.partial_batches,
                    "failed": stats.failed_batches,
                    "avg_duration_ms": round(stats.avg_duration_ms, 1),
                    "total_subrequests": stats.total_subrequests,
                },
                "database": state.task_store.get_database_stats(),
                "healthy": state.task_store.health_check(),
            }
        )

    elif cmd == "schedule":
        interval = args.interval if args.interval is not None else float(state.settings.scheduler_interval_seconds)
        await _schedule(state, interval)

    else:
        raise ValueError(f"Unknown command: {cmd}")

    return 0


async def _amain(args: argparse.Namespace) -> int:
    state = create_app_state(settings=get_settings())
    try:
        return await run_command(args, state)
    except DigestError as e:
        logger.error("%s", e)
        return 1
    finally:
        await state.aclose()


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()

    # choose console log level from settings.log_level
    level_name = str(settings.log_level).upper()
    console_level = getattr(logging, level_name, logging.INFO)
    setup_logging(log_dir=settings.data_dir, console_level=console_level)

    logger.info("Starting %s %s...", settings.app_name, args.command)
    try:
        return asyncio.run(_amain(args))
    except KeyboardInterrupt:
        logger.info("Interrupted.")
        return 130


if __name__ == "__main__":
    sys.exit(main())
