# config.example.py

"""
Documentation-only module (safe to commit).

The real configuration is loaded by hn_digest.config from environment variables
(optionally via a local .env file). Do NOT commit real secrets; keep tokens in
.env (gitignored) or in the deployment's secret store.

Sinks without credentials are skipped with a warning, so a bare checkout runs
in local test mode with only DIGEST_LOCAL_TEST_MODE=true.
"""

ENV_VARS = {
    # App / logging
    "DIGEST_APP_NAME": "App display name (default: hn-digest).",
    "DIGEST_LOG_LEVEL": "Console logging level (default: INFO).",
    # Paths (gitignored)
    "DIGEST_DATA_DIR": "Local data directory; also holds digest.log (default: .local/hn_digest).",
    "DIGEST_TASKS_DB_PATH": "TaskStore SQLite path (default: <data_dir>/digest.sqlite3).",
    # LLM / OpenRouter
    "DIGEST_OPENROUTER_API_KEY": "OpenRouter API key; without it the offline LLM client is used.",
    "DIGEST_OPENROUTER_BASE_URL": "OpenAI-compatible base URL (default: https://openrouter.ai/api/v1).",
    "DIGEST_LLM_MODELS": "Comma/space separated list of models to try in order.",
    "DIGEST_LLM_TEMPERATURE": "Sampling temperature (default: 0.3).",
    "DIGEST_LLM_FIRST_TOKEN_TIMEOUT_SECONDS": "Give up on a model if no token arrives in time (default: 30).",
    "DIGEST_LLM_READ_TIMEOUT_SECONDS": "HTTP read timeout for LLM streams (default: 60).",
    "DIGEST_LLM_CONNECT_TIMEOUT_SECONDS": "HTTP connect timeout for LLM requests (default: 5).",
    "DIGEST_HTTP_REFERER": "Optional OpenRouter metadata header.",
    "DIGEST_APP_TITLE": "Optional OpenRouter metadata header title.",
    # Task processing
    "DIGEST_STORY_LIMIT": "Stories enrolled per day (default: 30).",
    "DIGEST_TASK_BATCH_SIZE": "Articles per processing batch (default: 6).",
    "DIGEST_SUMMARY_MAX_LENGTH": "Target article summary length in characters (default: 300).",
    "DIGEST_COMMENTS_PER_STORY": "Comments fetched per story (default: 3; 0 disables).",
    "DIGEST_SUBREQUEST_SOFT_LIMIT": "Warn when one batch issues more outbound requests (default: 30).",
    "DIGEST_MAX_RETRIES": "Retry limit per failed article (default: 3).",
    "DIGEST_RETENTION_DAYS": "Days of tasks kept before archiving (default: 30).",
    "DIGEST_STALE_PROCESSING_SECONDS": "Processing rows older than this return to pending (default: 600).",
    "DIGEST_SCHEDULER_INTERVAL_SECONDS": "Poll interval of `hn-digest schedule` (default: 60).",
    "DIGEST_HTTP_TIMEOUT_SECONDS": "Timeout for Algolia / crawler / sink requests (default: 10).",
    # Content filter
    "DIGEST_ENABLE_CONTENT_FILTER": "Classify titles before enrollment (true/false, default: false).",
    "DIGEST_CONTENT_FILTER_SENSITIVITY": "low | medium | high (default: medium).",
    # Article crawler
    "DIGEST_CRAWLER_API_URL": "Crawler endpoint receiving {\"url\": ...}; unset => no article text.",
    "DIGEST_CRAWLER_API_TOKEN": "Optional bearer token for the crawler.",
    # Publishing
    "DIGEST_LOCAL_TEST_MODE": "Publish to the terminal only (true/false, default: false).",
    "DIGEST_GITHUB_ENABLED": "Enable the GitHub sink (default: true).",
    "DIGEST_GITHUB_TOKEN": "Token with contents:write on the target repository.",
    "DIGEST_TARGET_REPO": "owner/name of the Jekyll site repository.",
    "DIGEST_TARGET_BRANCH": "Branch to commit to (default: main).",
    "DIGEST_GITHUB_POSTS_DIR": "Directory for posts (default: _posts).",
    "DIGEST_TELEGRAM_ENABLED": "Enable the Telegram sink (default: false).",
    "DIGEST_TELEGRAM_BOT_TOKEN": "Bot token.",
    "DIGEST_TELEGRAM_CHANNEL_ID": "Channel id or @username.",
}
