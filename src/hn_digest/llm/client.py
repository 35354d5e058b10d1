# src/hn_digest/llm/client.py

from __future__ import annotations

import logging
import time
from typing import Any, Dict, Iterable, List, Optional

import httpx
import openai
from openai import OpenAI

from ..core.ports import ChatMessage, LLMClient

logger = logging.getLogger(__name__)

_BAD_MODELS: dict[str, float] = {}  # model -> retry_at (monotonic)


def _is_auth_error(exc: Exception) -> bool:
    if isinstance(exc, (openai.AuthenticationError, openai.PermissionDeniedError)):
        return True
    return exc.__class__.__name__ in {"UnauthorizedError"}


def _is_rate_limit_error(exc: Exception) -> bool:
    if isinstance(exc, openai.RateLimitError):
        return True
    return exc.__class__.__name__ in {"TooManyRequestsError"}


def _is_connection_error(exc: Exception) -> bool:
    if isinstance(exc, (openai.APIConnectionError, httpx.TimeoutException)):
        return True
    return isinstance(exc, TimeoutError)


def _is_not_found_error(exc: Exception) -> bool:
    # OpenAI-compatible gateways answer 404 for models that are gone or not enabled.
    return isinstance(exc, openai.NotFoundError)


def _close_stream(stream: Any) -> None:
    close = getattr(stream, "close", None)
    if callable(close):
        try:
            close()
        except Exception:
            logger.debug("LLM: stream close failed", exc_info=True)


def friendly_llm_error_message(err: Exception) -> str:
    msg = str(err).strip() or "LLM error."
    if "LLM API key is not set" in msg:
        return "LLM is not configured (missing API key). Set DIGEST_OPENROUTER_API_KEY in .env (see config.example.py)."
    if "LLM model list is empty" in msg:
        return "LLM is not configured (no models). Set DIGEST_LLM_MODELS in .env (see config.example.py)."
    if "LLM base URL is not set" in msg:
        return "LLM is not configured (missing base URL). Set DIGEST_OPENROUTER_BASE_URL in .env (see config.example.py)."
    return msg


class OpenRouterLLMClient:
    """
    Streaming chat over an OpenAI-compatible API (OpenRouter by default).

    Models are tried in the configured order:
    - no first content token within the first-token timeout -> next model
    - 404 (model not available) -> next model, and skip it for an hour
    - rate limit / network issues -> next model
    - auth issues -> fail fast (no retries across models)

    The SDK's own retries are disabled so fallback across models stays quick.
    """

    def __init__(self, settings: Any) -> None:
        self.models: List[str] = [m.strip() for m in (settings.llm_models or []) if m and m.strip()]
        self.headers: Dict[str, str] = dict(settings.extra_headers or {})
        self.temperature = float(settings.llm_temperature)
        self.first_token_timeout = float(settings.llm_first_token_timeout_seconds)
        # keep read >= first_token as a sane baseline
        self.read_timeout = max(float(settings.llm_read_timeout_seconds), self.first_token_timeout)
        self.timeout = httpx.Timeout(
            connect=float(settings.llm_connect_timeout_seconds),
            read=self.read_timeout,
            write=10.0,
            pool=float(settings.llm_connect_timeout_seconds),
        )

        self._api_key: Optional[str] = settings.openrouter_api_key
        self._base_url: str = settings.openrouter_base_url or ""
        self._client: OpenAI | None = None

    def _get_client(self) -> OpenAI:
        """Lazily create the SDK client; no secrets are needed until the first call."""
        if self._client is not None:
            return self._client

        if not self._api_key or not str(self._api_key).strip():
            raise RuntimeError("LLM API key is not set. Set DIGEST_OPENROUTER_API_KEY in your .env.")
        if not self._base_url.strip():
            raise RuntimeError("LLM base URL is not set. Set DIGEST_OPENROUTER_BASE_URL in your .env.")

        self._client = OpenAI(
            base_url=self._base_url,
            api_key=str(self._api_key),
            timeout=self.timeout,
            max_retries=0,
        )
        return self._client

    def stream_chat(self, messages: list[ChatMessage], system_prompt: str) -> Iterable[str]:
        if not self.models:
            raise RuntimeError("LLM model list is empty. Set DIGEST_LLM_MODELS in your .env.")

        client = self._get_client()
        last_error: Optional[Exception] = None
        now = time.monotonic()

        for model in self.models:
            retry_at = _BAD_MODELS.get(model)
            if retry_at is not None and retry_at > now:
                continue

            logger.debug(
                "LLM: trying model=%s (first_token_timeout=%.1fs, read_timeout=%.1fs)",
                model,
                self.first_token_timeout,
                self.read_timeout,
            )
            t0 = time.monotonic()
            deadline = t0 + self.first_token_timeout

            stream = None
            used_any = False

            try:
                stream = client.chat.completions.create(
                    model=model,
                    stream=True,
                    temperature=self.temperature,
                    extra_headers=self.headers or None,
                    messages=[{"role": "system", "content": system_prompt}, *messages],
                )

                for chunk in stream:
                    # Chunks without content still count against the first-token deadline.
                    if not used_any and time.monotonic() > deadline:
                        last_error = TimeoutError(f"First token timeout on model: {model}")
                        logger.info("LLM: first token timeout on model=%s -> trying next", model)
                        break

                    content = chunk.choices[0].delta.content if chunk.choices else None
                    if content:
                        if not used_any:
                            logger.debug("LLM: first token from model=%s (%.2fs)", model, time.monotonic() - t0)
                        used_any = True
                        yield content

                if used_any:
                    logger.debug("LLM: completed with model=%s", model)
                    return

                if last_error is None:
                    last_error = RuntimeError(f"Model returned no content: {model}")

            except Exception as e:
                last_error = e

                if _is_auth_error(e):
                    raise RuntimeError(
                        "LLM authentication failed. Check your API key (DIGEST_OPENROUTER_API_KEY)."
                    ) from e

                if _is_not_found_error(e):
                    _BAD_MODELS[model] = time.monotonic() + 3600.0  # 1 hour
                    logger.info("LLM: model not available (404): %s", model)
                    continue

                if _is_rate_limit_error(e):
                    logger.info("LLM: rate-limited on model=%s, trying next", model)
                    continue

                if _is_connection_error(e):
                    logger.info("LLM: network/timeout error on model=%s, trying next", model)
                    continue

                logger.info("LLM: error on model=%s (%s), trying next", model, e.__class__.__name__)
                continue

            finally:
                if stream is not None:
                    _close_stream(stream)

        if last_error is not None:
            if _is_rate_limit_error(last_error):
                raise RuntimeError("LLM is rate-limited. Try again later.") from last_error
            if _is_connection_error(last_error):
                raise RuntimeError("LLM network/timeout error. Try again later or change models.") from last_error
            raise RuntimeError("All LLM models failed.") from last_error

        raise RuntimeError("All LLM models failed.")


def complete(llm: LLMClient, prompt: str, system_prompt: str) -> str:
    """Run one single-turn request and return the whole reply, stripped."""
    chunks = llm.stream_chat([{"role": "user", "content": prompt}], system_prompt)
    return "".join(chunks).strip()
