# src/hn_digest/tasks/task_store.py

from __future__ import annotations

import contextlib
import logging
import sqlite3
import time
import uuid
from collections.abc import Iterable, Iterator, Sequence
from datetime import UTC, date, datetime, timedelta
from pathlib import Path
from typing import Any

from .task_models import (
    UNSET,
    Article,
    ArticleStatus,
    ArticleUpdate,
    BatchRecord,
    BatchResult,
    BatchStatistics,
    BatchStatus,
    DailyTask,
    NewArticle,
    TaskProgress,
    TaskStatus,
)

logger = logging.getLogger(__name__)


class TaskStore:
    """
    SQLite store for daily tasks, their articles and the batch audit log.

    Tables:
    - daily_tasks: one row per calendar day (natural key task_date)
    - articles: enrolled stories, unique (task_date, rank)
    - task_batches: append-only record of each process_next_batch call

    Every method opens its own connection. Multi-statement writes run inside
    one BEGIN IMMEDIATE transaction; nothing here retries or swallows errors,
    sqlite3 exceptions reach the caller.
    """

    def __init__(self, db_path: str | Path = "digest.sqlite3") -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()
        logger.info("TaskStore ready db=%s tasks=%s", self._db_path, self.count_tasks())

    @property
    def db_path(self) -> Path:
        return self._db_path

    def close(self) -> None:
        """Compatibility hook for shutdown (no persistent connections to close)."""
        return

    # ---- low-level helpers ----

    def _get_conn(self) -> sqlite3.Connection:
        # isolation_level=None: statements autocommit unless we BEGIN explicitly.
        conn = sqlite3.connect(str(self._db_path), timeout=30.0, isolation_level=None)
        conn.row_factory = sqlite3.Row
        self._configure_conn(conn)
        return conn

    @staticmethod
    def _configure_conn(conn: sqlite3.Connection) -> None:
        with contextlib.suppress(sqlite3.DatabaseError):
            conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA foreign_keys=ON")

    @contextlib.contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        conn = self._get_conn()
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
        finally:
            conn.close()

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()

            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS daily_tasks (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    task_date TEXT NOT NULL UNIQUE,
                    status TEXT NOT NULL DEFAULT 'init',
                    total_articles INTEGER NOT NULL DEFAULT 0,
                    completed_articles INTEGER NOT NULL DEFAULT 0,
                    failed_articles INTEGER NOT NULL DEFAULT 0,
                    created_at REAL NOT NULL,
                    updated_at REAL NOT NULL,
                    published_at REAL
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS articles (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    task_date TEXT NOT NULL REFERENCES daily_tasks(task_date),
                    story_id INTEGER NOT NULL,
                    rank INTEGER NOT NULL,
                    url TEXT NOT NULL,
                    title_en TEXT NOT NULL,
                    score INTEGER NOT NULL DEFAULT 0,
                    published_time INTEGER NOT NULL DEFAULT 0,
                    status TEXT NOT NULL DEFAULT 'pending',
                    title_zh TEXT,
                    content_summary_zh TEXT,
                    comment_summary_zh TEXT,
                    created_at REAL NOT NULL,
                    updated_at REAL NOT NULL,
                    UNIQUE (task_date, rank)
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS task_batches (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    task_date TEXT NOT NULL REFERENCES daily_tasks(task_date),
                    batch_index INTEGER NOT NULL,
                    article_count INTEGER NOT NULL,
                    subrequest_count INTEGER NOT NULL,
                    duration_ms INTEGER NOT NULL,
                    status TEXT NOT NULL,
                    error_message TEXT,
                    created_at REAL NOT NULL,
                    UNIQUE (task_date, batch_index)
                )
                """
            )

            # Migrations (safe): add columns that older databases lack.
            cur.execute("PRAGMA table_info(articles)")
            cols = {row["name"] for row in cur.fetchall()}

            def add_col(name: str, decl: str) -> None:
                if name in cols:
                    return
                cur.execute(f"ALTER TABLE articles ADD COLUMN {name} {decl}")
                logger.info("TaskStore migration: added articles.%s", name)

            add_col("error_message", "TEXT")
            add_col("retry_count", "INTEGER NOT NULL DEFAULT 0")
            add_col("claim_token", "TEXT")

            cur.execute(
                "CREATE INDEX IF NOT EXISTS idx_articles_task_status "
                "ON articles(task_date, status, rank)"
            )
            cur.execute("CREATE INDEX IF NOT EXISTS idx_batches_task ON task_batches(task_date)")
        finally:
            conn.close()

    @staticmethod
    def _row_to_task(row: sqlite3.Row) -> DailyTask:
        return DailyTask(
            id=int(row["id"]),
            task_date=str(row["task_date"]),
            status=TaskStatus.from_db(row["status"]),
            total_articles=int(row["total_articles"] or 0),
            completed_articles=int(row["completed_articles"] or 0),
            failed_articles=int(row["failed_articles"] or 0),
            created_at=float(row["created_at"] or 0.0),
            updated_at=float(row["updated_at"] or 0.0),
            published_at=float(row["published_at"]) if row["published_at"] is not None else None,
        )

    @staticmethod
    def _row_to_article(row: sqlite3.Row) -> Article:
        return Article(
            id=int(row["id"]),
            task_date=str(row["task_date"]),
            story_id=int(row["story_id"]),
            rank=int(row["rank"]),
            url=str(row["url"]),
            title_en=str(row["title_en"]),
            score=int(row["score"] or 0),
            published_time=int(row["published_time"] or 0),
            status=ArticleStatus.from_db(row["status"]),
            created_at=float(row["created_at"] or 0.0),
            updated_at=float(row["updated_at"] or 0.0),
            title_zh=row["title_zh"],
            content_summary_zh=row["content_summary_zh"],
            comment_summary_zh=row["comment_summary_zh"],
            error_message=row["error_message"],
            retry_count=int(row["retry_count"] or 0),
            claim_token=row["claim_token"],
        )

    @staticmethod
    def _row_to_batch(row: sqlite3.Row) -> BatchRecord:
        return BatchRecord(
            id=int(row["id"]),
            task_date=str(row["task_date"]),
            batch_index=int(row["batch_index"]),
            article_count=int(row["article_count"]),
            subrequest_count=int(row["subrequest_count"]),
            duration_ms=int(row["duration_ms"]),
            status=BatchStatus(row["status"]),
            error_message=row["error_message"],
            created_at=float(row["created_at"] or 0.0),
        )

    @staticmethod
    def _select_pending(conn: sqlite3.Connection, task_date: str, limit: int) -> list[sqlite3.Row]:
        cur = conn.execute(
            """
            SELECT *
            FROM articles
            WHERE task_date = ? AND status = 'pending'
            ORDER BY rank ASC
            LIMIT ?
            """,
            (task_date, int(limit)),
        )
        return cur.fetchall()

    @staticmethod
    def _insert_articles(conn: sqlite3.Connection, task_date: str, items: Sequence[NewArticle], now: float) -> None:
        conn.executemany(
            """
            INSERT INTO articles(
                task_date, story_id, rank, url, title_en, score,
                published_time, status, retry_count, created_at, updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, 'pending', 0, ?, ?)
            """,
            [
                (
                    task_date,
                    int(item.story_id),
                    int(item.rank),
                    item.url,
                    item.title_en,
                    int(item.score),
                    int(item.published_time),
                    now,
                    now,
                )
                for item in items
            ],
        )

    # ---- daily tasks ----

    def count_tasks(self) -> int:
        conn = self._get_conn()
        try:
            (n,) = conn.execute("SELECT COUNT(*) FROM daily_tasks").fetchone()
            return int(n)
        finally:
            conn.close()

    def get_task(self, task_date: str) -> DailyTask | None:
        conn = self._get_conn()
        try:
            row = conn.execute("SELECT * FROM daily_tasks WHERE task_date = ?", (task_date,)).fetchone()
            return self._row_to_task(row) if row else None
        finally:
            conn.close()

    def get_or_create_task(self, task_date: str) -> DailyTask:
        """Idempotent fetch-or-insert keyed by date."""
        now = time.time()
        conn = self._get_conn()
        try:
            cur = conn.execute(
                """
                INSERT OR IGNORE INTO daily_tasks(task_date, status, created_at, updated_at)
                VALUES (?, 'init', ?, ?)
                """,
                (task_date, now, now),
            )
            if cur.rowcount == 1:
                logger.debug("Daily task created task_date=%s", task_date)
            row = conn.execute("SELECT * FROM daily_tasks WHERE task_date = ?", (task_date,)).fetchone()
            if row is None:
                raise RuntimeError(f"Failed to create daily task for {task_date}")
            return self._row_to_task(row)
        finally:
            conn.close()

    def update_task_status(
        self,
        task_date: str,
        status: TaskStatus,
        *,
        total_articles: int | None = None,
        completed_articles: int | None = None,
        failed_articles: int | None = None,
        published_at: float | None = None,
    ) -> None:
        fields: list[str] = ["status = ?", "updated_at = ?"]
        params: list[Any] = [status.value, time.time()]

        if total_articles is not None:
            fields.append("total_articles = ?")
            params.append(int(total_articles))

        if completed_articles is not None:
            fields.append("completed_articles = ?")
            params.append(int(completed_articles))

        if failed_articles is not None:
            fields.append("failed_articles = ?")
            params.append(int(failed_articles))

        if published_at is not None:
            fields.append("published_at = ?")
            params.append(float(published_at))

        params.append(task_date)
        sql = f"UPDATE daily_tasks SET {', '.join(fields)} WHERE task_date = ?"

        conn = self._get_conn()
        try:
            conn.execute(sql, params)
        finally:
            conn.close()

    def increment_task_counters(self, task_date: str, completed_delta: int, failed_delta: int) -> None:
        """Additive server-side increment; never read-modify-write on the client."""
        conn = self._get_conn()
        try:
            conn.execute(
                """
                UPDATE daily_tasks
                SET completed_articles = completed_articles + ?,
                    failed_articles = failed_articles + ?,
                    updated_at = ?
                WHERE task_date = ?
                """,
                (int(completed_delta), int(failed_delta), time.time(), task_date),
            )
        finally:
            conn.close()

    def get_task_progress(self, task_date: str) -> TaskProgress | None:
        conn = self._get_conn()
        try:
            row = conn.execute("SELECT * FROM daily_tasks WHERE task_date = ?", (task_date,)).fetchone()
            if row is None:
                return None
            counts = conn.execute(
                """
                SELECT
                    SUM(CASE WHEN status = 'pending' THEN 1 ELSE 0 END) AS pending,
                    SUM(CASE WHEN status = 'processing' THEN 1 ELSE 0 END) AS processing
                FROM articles
                WHERE task_date = ?
                """,
                (task_date,),
            ).fetchone()
            return TaskProgress(
                task=self._row_to_task(row),
                pending_count=int(counts["pending"] or 0),
                processing_count=int(counts["processing"] or 0),
            )
        finally:
            conn.close()

    # ---- articles ----

    def insert_articles(self, task_date: str, items: Sequence[NewArticle]) -> None:
        """Bulk insert in one transaction: either every row lands or none does."""
        if not items:
            return
        with self._transaction() as conn:
            self._insert_articles(conn, task_date, items, time.time())
        logger.debug("Inserted %d articles task_date=%s", len(items), task_date)

    def enroll_articles(self, task_date: str, items: Sequence[NewArticle]) -> bool:
        """
        Enroll the day's candidate list and move the task init -> list_fetched.

        One transaction covers:
        - dropping rows left behind by an interrupted earlier enrollment,
        - inserting the new rows,
        - setting total_articles and the status.

        Returns False (and writes nothing) if the task already left "init",
        e.g. because an overlapping invocation enrolled it first.
        """
        now = time.time()
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT status FROM daily_tasks WHERE task_date = ?", (task_date,)
            ).fetchone()
            if row is None or TaskStatus.from_db(row["status"]) != TaskStatus.INIT:
                return False

            conn.execute("DELETE FROM articles WHERE task_date = ?", (task_date,))
            self._insert_articles(conn, task_date, items, now)
            conn.execute(
                """
                UPDATE daily_tasks
                SET status = ?, total_articles = ?, completed_articles = 0,
                    failed_articles = 0, updated_at = ?
                WHERE task_date = ?
                """,
                (TaskStatus.LIST_FETCHED.value, len(items), now, task_date),
            )
        logger.info("Enrolled %d articles task_date=%s", len(items), task_date)
        return True

    def get_articles(self, task_date: str) -> list[Article]:
        conn = self._get_conn()
        try:
            cur = conn.execute(
                "SELECT * FROM articles WHERE task_date = ? ORDER BY rank ASC", (task_date,)
            )
            return [self._row_to_article(r) for r in cur.fetchall()]
        finally:
            conn.close()

    def get_pending_articles(self, task_date: str, limit: int) -> list[Article]:
        """Lowest ranks first, so a re-run after a crash resumes where work stopped."""
        conn = self._get_conn()
        try:
            return [self._row_to_article(r) for r in self._select_pending(conn, task_date, limit)]
        finally:
            conn.close()

    def claim_pending_articles(self, task_date: str, limit: int) -> list[Article]:
        """
        Select up to `limit` pending articles and mark them processing, atomically.

        BEGIN IMMEDIATE takes the write lock before the SELECT, so two
        overlapping invocations can never claim the same row. Every claimed
        row gets the same fresh claim_token; finish_claimed_articles only
        writes rows that still carry it.
        """
        now = time.time()
        token = uuid.uuid4().hex
        with self._transaction() as conn:
            rows = self._select_pending(conn, task_date, limit)
            if not rows:
                return []
            ids = [int(r["id"]) for r in rows]
            placeholders = ",".join("?" for _ in ids)
            conn.execute(
                f"""
                UPDATE articles
                SET status = 'processing', claim_token = ?, updated_at = ?
                WHERE id IN ({placeholders})
                  AND status = 'pending'
                """,
                (token, now, *ids),
            )

        claimed = [self._row_to_article(r) for r in rows]
        for article in claimed:
            article.status = ArticleStatus.PROCESSING
            article.claim_token = token
            article.updated_at = now
        return claimed

    @staticmethod
    def _update_fields(update: ArticleUpdate, now: float) -> tuple[list[str], list[Any]]:
        fields: list[str] = ["status = ?", "updated_at = ?"]
        params: list[Any] = [update.status.value, now]

        for column in (
            "title_zh",
            "content_summary_zh",
            "comment_summary_zh",
            "error_message",
            "retry_count",
        ):
            value = getattr(update, column)
            if value is UNSET:
                continue
            fields.append(f"{column} = ?")
            params.append(value)
        return fields, params

    def update_articles_batch(self, updates: Iterable[ArticleUpdate]) -> None:
        """Apply per-row updates in a single transaction."""
        updates = list(updates)
        if not updates:
            return

        now = time.time()
        with self._transaction() as conn:
            for update in updates:
                fields, params = self._update_fields(update, now)
                params.append(int(update.id))
                conn.execute(f"UPDATE articles SET {', '.join(fields)} WHERE id = ?", params)

    def finish_claimed_articles(
        self, task_date: str, claim_token: str, updates: Iterable[ArticleUpdate]
    ) -> tuple[int, int]:
        """
        Write the outcome of a claimed batch and bump the task counters, in one transaction.

        A row is written only while it is still processing under `claim_token`.
        Rows released by reset_stale_processing (and possibly re-claimed by
        another invocation) are left alone and not counted. Returns the
        (completed, failed) rows actually written, which are also the counter
        deltas.
        """
        updates = list(updates)
        if not updates:
            return 0, 0

        completed = 0
        failed = 0
        now = time.time()
        with self._transaction() as conn:
            for update in updates:
                fields, params = self._update_fields(update, now)
                params.extend([int(update.id), claim_token])
                cur = conn.execute(
                    f"""
                    UPDATE articles
                    SET {', '.join(fields)}
                    WHERE id = ?
                      AND status = 'processing'
                      AND claim_token = ?
                    """,
                    params,
                )
                if cur.rowcount != 1:
                    continue
                if update.status == ArticleStatus.COMPLETED:
                    completed += 1
                elif update.status == ArticleStatus.FAILED:
                    failed += 1

            if completed or failed:
                conn.execute(
                    """
                    UPDATE daily_tasks
                    SET completed_articles = completed_articles + ?,
                        failed_articles = failed_articles + ?,
                        updated_at = ?
                    WHERE task_date = ?
                    """,
                    (completed, failed, now, task_date),
                )
        return completed, failed

    def get_completed_articles(self, task_date: str) -> list[Article]:
        return self._articles_with_status(task_date, ArticleStatus.COMPLETED)

    def get_failed_articles(self, task_date: str) -> list[Article]:
        return self._articles_with_status(task_date, ArticleStatus.FAILED)

    def _articles_with_status(self, task_date: str, status: ArticleStatus) -> list[Article]:
        conn = self._get_conn()
        try:
            cur = conn.execute(
                """
                SELECT *
                FROM articles
                WHERE task_date = ? AND status = ?
                ORDER BY rank ASC
                """,
                (task_date, status.value),
            )
            return [self._row_to_article(r) for r in cur.fetchall()]
        finally:
            conn.close()

    def reset_stale_processing(
        self, task_date: str, older_than_seconds: float, now_ts: float | None = None
    ) -> int:
        """
        Return articles stuck in "processing" past the timeout to "pending".

        A crashed or platform-killed invocation leaves its claimed rows in
        processing; nothing else ever releases them.
        """
        if now_ts is None:
            now_ts = time.time()
        cutoff = float(now_ts) - max(0.0, float(older_than_seconds))

        conn = self._get_conn()
        try:
            cur = conn.execute(
                """
                UPDATE articles
                SET status = 'pending', claim_token = NULL, updated_at = ?
                WHERE task_date = ?
                  AND status = 'processing'
                  AND updated_at < ?
                """,
                (float(now_ts), task_date, cutoff),
            )
            return int(cur.rowcount)
        finally:
            conn.close()

    def retry_failed_articles(self, task_date: str, max_retries: int) -> int:
        """
        Reset failed articles with retry_count < max_retries back to pending.

        The same transaction bumps retry_count and takes the reset rows out of
        failed_articles, so completed + failed stays <= total once they are
        processed again.
        """
        now = time.time()
        with self._transaction() as conn:
            cur = conn.execute(
                """
                UPDATE articles
                SET status = 'pending',
                    retry_count = retry_count + 1,
                    updated_at = ?
                WHERE task_date = ?
                  AND status = 'failed'
                  AND retry_count < ?
                """,
                (now, task_date, int(max_retries)),
            )
            reset = int(cur.rowcount)
            if reset:
                conn.execute(
                    """
                    UPDATE daily_tasks
                    SET failed_articles = MAX(0, failed_articles - ?), updated_at = ?
                    WHERE task_date = ?
                    """,
                    (reset, now, task_date),
                )
        return reset

    # ---- batch audit ----

    def record_batch(self, task_date: str, result: BatchResult, batch_index: int | None = None) -> int:
        """
        Append one audit row and return its batch index.

        Without an explicit index the next free one for the day is allocated
        (1, 2, 3, ...) inside the same write transaction.
        """
        now = time.time()
        with self._transaction() as conn:
            if batch_index is None:
                (last,) = conn.execute(
                    "SELECT COALESCE(MAX(batch_index), 0) FROM task_batches WHERE task_date = ?",
                    (task_date,),
                ).fetchone()
                batch_index = int(last) + 1

            conn.execute(
                """
                INSERT INTO task_batches(
                    task_date, batch_index, article_count, subrequest_count,
                    duration_ms, status, error_message, created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    task_date,
                    int(batch_index),
                    int(result.article_count),
                    int(result.subrequest_count),
                    int(result.duration_ms),
                    result.status.value,
                    result.error_message,
                    now,
                ),
            )
        return int(batch_index)

    def get_batches(self, task_date: str) -> list[BatchRecord]:
        conn = self._get_conn()
        try:
            cur = conn.execute(
                "SELECT * FROM task_batches WHERE task_date = ? ORDER BY batch_index ASC",
                (task_date,),
            )
            return [self._row_to_batch(r) for r in cur.fetchall()]
        finally:
            conn.close()

    def get_batch_statistics(self, task_date: str) -> BatchStatistics:
        conn = self._get_conn()
        try:
            row = conn.execute(
                """
                SELECT
                    COUNT(*) AS total_batches,
                    SUM(CASE WHEN status = 'success' THEN 1 ELSE 0 END) AS success_batches,
                    SUM(CASE WHEN status = 'partial' THEN 1 ELSE 0 END) AS partial_batches,
                    SUM(CASE WHEN status = 'failed' THEN 1 ELSE 0 END) AS failed_batches,
                    AVG(duration_ms) AS avg_duration_ms,
                    SUM(subrequest_count) AS total_subrequests
                FROM task_batches
                WHERE task_date = ?
                """,
                (task_date,),
            ).fetchone()
            return BatchStatistics(
                total_batches=int(row["total_batches"] or 0),
                success_batches=int(row["success_batches"] or 0),
                partial_batches=int(row["partial_batches"] or 0),
                failed_batches=int(row["failed_batches"] or 0),
                avg_duration_ms=float(row["avg_duration_ms"] or 0.0),
                total_subrequests=int(row["total_subrequests"] or 0),
            )
        finally:
            conn.close()

    # ---- retention ----

    def archive_old_tasks(self, retention_days: int, today: date | None = None) -> int:
        """
        Delete every task dated strictly before (today - retention_days).

        Children go first (articles, batch rows), then the task rows.
        Returns the number of tasks deleted.
        """
        if today is None:
            today = datetime.now(UTC).date()
        cutoff = (today - timedelta(days=max(0, int(retention_days)))).isoformat()

        with self._transaction() as conn:
            conn.execute("DELETE FROM articles WHERE task_date < ?", (cutoff,))
            conn.execute("DELETE FROM task_batches WHERE task_date < ?", (cutoff,))
            cur = conn.execute("DELETE FROM daily_tasks WHERE task_date < ?", (cutoff,))
            deleted = int(cur.rowcount)

        logger.debug("Archived %d tasks older than %s", deleted, cutoff)
        return deleted

    # ---- diagnostics ----

    def health_check(self) -> bool:
        conn = self._get_conn()
        try:
            conn.execute("SELECT 1").fetchone()
            return True
        except sqlite3.Error:
            logger.exception("TaskStore health check failed db=%s", self._db_path)
            return False
        finally:
            conn.close()

    def get_database_stats(self) -> dict[str, int]:
        conn = self._get_conn()
        try:
            out: dict[str, int] = {}
            for key, table in (
                ("total_tasks", "daily_tasks"),
                ("total_articles", "articles"),
                ("total_batches", "task_batches"),
            ):
                (n,) = conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()
                out[key] = int(n)
            return out
        finally:
            conn.close()
