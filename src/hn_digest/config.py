# src/hn_digest/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole app.
- No secrets required at import time; a sink without credentials is simply skipped.
- Unparsable numbers fall back to their defaults instead of raising.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

ENV_PREFIX = "DIGEST"


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


def _load_dotenv_if_available() -> None:
    """Load .env locally if python-dotenv is installed. Safe no-op otherwise."""
    try:
        from dotenv import load_dotenv  # type: ignore
    except ImportError:
        return
    load_dotenv(override=False)


_load_dotenv_if_available()


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _first_env(*names: str, default: str | None = None) -> str | None:
    for n in names:
        v = os.getenv(n)
        if v is not None and v.strip() != "":
            return v
    return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_list(name: str, default: List[str]) -> List[str]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return list(default)
    parts = [p.strip() for p in raw.replace(",", " ").split() if p.strip()]
    return parts


def _env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return Path(raw).expanduser()


_SENSITIVITY_LEVELS = ("low", "medium", "high")


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- App / logging ----
    app_name: str
    log_level: str

    # ---- Local data paths (ignored by git) ----
    data_dir: Path
    tasks_db_path: Path

    # ---- LLM / OpenRouter ----
    openrouter_api_key: Optional[str]
    openrouter_base_url: str
    llm_models: List[str]
    extra_headers: Dict[str, str]
    llm_temperature: float
    llm_first_token_timeout_seconds: float
    llm_read_timeout_seconds: float
    llm_connect_timeout_seconds: float

    # ---- Task processing ----
    story_limit: int
    batch_size: int
    summary_max_length: int
    comments_per_story: int
    subrequest_soft_limit: int
    max_retries: int
    retention_days: int
    stale_processing_seconds: float
    scheduler_interval_seconds: float
    http_timeout_seconds: float

    # ---- Content filter ----
    content_filter_enabled: bool
    content_filter_sensitivity: str

    # ---- Article crawler ----
    crawler_api_url: Optional[str]
    crawler_api_token: Optional[str]

    # ---- Publishing ----
    local_test_mode: bool
    github_enabled: bool
    github_token: Optional[str]
    target_repo: Optional[str]
    target_branch: str
    github_posts_dir: str
    telegram_enabled: bool
    telegram_bot_token: Optional[str]
    telegram_channel_id: Optional[str]

    @staticmethod
    def from_env() -> "Settings":
        app_name = _first_env(_k("APP_NAME"), default="hn-digest") or "hn-digest"
        log_level = _env(_k("LOG_LEVEL"), "INFO")

        data_dir = _env_path(_k("DATA_DIR"), Path(".local/hn_digest"))
        tasks_db_path = _env_path(_k("TASKS_DB_PATH"), data_dir / "digest.sqlite3")

        openrouter_api_key = _first_env(_k("OPENROUTER_API_KEY"), "OPENROUTER_API_KEY", default=None)
        openrouter_base_url = _env(_k("OPENROUTER_BASE_URL"), "https://openrouter.ai/api/v1")

        extra_headers = {
            "HTTP-Referer": _env(_k("HTTP_REFERER"), "https://example.com"),
            "X-Title": _env(_k("APP_TITLE"), app_name),
        }

        llm_models = _env_list(
            _k("LLM_MODELS"),
            [
                "deepseek/deepseek-chat-v3-0324:free",
                "qwen/qwen-2.5-72b-instruct:free",
            ],
        )

        sensitivity = _env(_k("CONTENT_FILTER_SENSITIVITY"), "medium").strip().lower()
        if sensitivity not in _SENSITIVITY_LEVELS:
            sensitivity = "medium"

        return Settings(
            app_name=app_name,
            log_level=log_level,
            data_dir=data_dir,
            tasks_db_path=tasks_db_path,
            openrouter_api_key=openrouter_api_key,
            openrouter_base_url=openrouter_base_url,
            llm_models=llm_models,
            extra_headers=extra_headers,
            llm_temperature=_env_float(_k("LLM_TEMPERATURE"), 0.3),
            llm_first_token_timeout_seconds=_env_float(_k("LLM_FIRST_TOKEN_TIMEOUT_SECONDS"), 30.0),
            llm_read_timeout_seconds=_env_float(_k("LLM_READ_TIMEOUT_SECONDS"), 60.0),
            llm_connect_timeout_seconds=_env_float(_k("LLM_CONNECT_TIMEOUT_SECONDS"), 5.0),
            story_limit=max(1, _env_int(_k("STORY_LIMIT"), 30)),
            batch_size=max(1, _env_int(_k("TASK_BATCH_SIZE"), 6)),
            summary_max_length=max(50, _env_int(_k("SUMMARY_MAX_LENGTH"), 300)),
            comments_per_story=max(0, _env_int(_k("COMMENTS_PER_STORY"), 3)),
            subrequest_soft_limit=_env_int(_k("SUBREQUEST_SOFT_LIMIT"), 30),
            max_retries=max(0, _env_int(_k("MAX_RETRIES"), 3)),
            retention_days=max(1, _env_int(_k("RETENTION_DAYS"), 30)),
            stale_processing_seconds=_env_float(_k("STALE_PROCESSING_SECONDS"), 600.0),
            scheduler_interval_seconds=_env_float(_k("SCHEDULER_INTERVAL_SECONDS"), 60.0),
            http_timeout_seconds=_env_float(_k("HTTP_TIMEOUT_SECONDS"), 10.0),
            content_filter_enabled=_env_bool(_k("ENABLE_CONTENT_FILTER"), False),
            content_filter_sensitivity=sensitivity,
            crawler_api_url=_first_env(_k("CRAWLER_API_URL"), default=None),
            crawler_api_token=_first_env(_k("CRAWLER_API_TOKEN"), default=None),
            local_test_mode=_env_bool(_k("LOCAL_TEST_MODE"), False),
            github_enabled=_env_bool(_k("GITHUB_ENABLED"), True),
            github_token=_first_env(_k("GITHUB_TOKEN"), "GITHUB_TOKEN", default=None),
            target_repo=_first_env(_k("TARGET_REPO"), default=None),
            target_branch=_env(_k("TARGET_BRANCH"), "main"),
            github_posts_dir=_env(_k("GITHUB_POSTS_DIR"), "_posts"),
            telegram_enabled=_env_bool(_k("TELEGRAM_ENABLED"), False),
            telegram_bot_token=_first_env(_k("TELEGRAM_BOT_TOKEN"), default=None),
            telegram_channel_id=_first_env(_k("TELEGRAM_CHANNEL_ID"), default=None),
        )


SETTINGS = Settings.from_env()


def get_settings() -> Settings:
    return SETTINGS
