"""Daily Hacker News digest: resumable batch enrichment over a SQLite task store."""

__version__ = "0.1.0"
