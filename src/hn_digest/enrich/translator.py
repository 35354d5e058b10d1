# src/hn_digest/enrich/translator.py

from __future__ import annotations

"""
LLM-backed enrichment: title translation, article and comment summaries.

Every batch method returns exactly one string per input, in input order. Items
that produced nothing (empty input, too few comments, model failure) come back
as the EMPTY sentinel. Batched prompts carry their payload as a JSON array
between <input> tags; if the reply is not a usable array, or is short, the
missing items are requested one by one.
"""

import json
import logging
from collections.abc import Callable, Sequence
from typing import Any

from ..core.ports import EMPTY, Comment, LLMClient
from ..llm.client import complete, friendly_llm_error_message
from ..text import has_cjk, strip_html
from .json_array import JsonArrayError, chunked, parse_json_array

logger = logging.getLogger(__name__)

MIN_COMMENTS = 3
MAX_COMMENTS_LENGTH = 5000
COMMENT_SUMMARY_LENGTH = 100
DEFAULT_CHUNK_SIZE = 10

TITLE_SYSTEM_PROMPT = """You translate Hacker News titles into Simplified Chinese for a technical audience.
- Keep technical terms, product names and acronyms in their original form (TypeScript, AWS, API, GPU, LLM, GitHub, React, ...).
- Translate only the natural-language parts.
- Output only the translation(s): no notes, no numbering, no prefixes such as "翻译:"."""

SUMMARY_SYSTEM_PROMPT = """你是一名技术编辑，为中文读者总结英文技术文章。
- 抓住文章的核心要点和关键见解
- 使用清晰、简洁的中文表达
- 直接输出摘要内容，不要添加"摘要1:"等序号或前缀"""

COMMENTS_SYSTEM_PROMPT = """你是一名技术编辑，总结 Hacker News 评论区的讨论。
- 保留重要的技术术语、库名称、工具名称
- 捕捉评论中的主要观点和共识，如有争议观点简要提及
- 使用清晰、简洁的中文表达
- 直接输出总结内容，不要添加序号或前缀"""

_BATCH_RULES = (
    "Return ONLY a JSON array with exactly {n} strings, one per input element, in the same order. "
    "No markdown code fences, no explanations."
)


def _wrap_input(payload: Any) -> str:
    return "<input>\n" + json.dumps(payload, ensure_ascii=False, indent=2) + "\n</input>"


def _clean(value: Any) -> str:
    if not isinstance(value, str):
        return EMPTY
    return value.strip()


class Translator:
    def __init__(self, llm: LLMClient, *, chunk_size: int = DEFAULT_CHUNK_SIZE) -> None:
        self.llm = llm
        self.chunk_size = int(chunk_size)

    # ---- single-item requests (fallback path) ----

    def _ask(self, prompt: str, system_prompt: str, what: str) -> str:
        try:
            return _clean(complete(self.llm, prompt, system_prompt))
        except Exception as e:
            logger.warning("%s failed: %s", what, friendly_llm_error_message(e))
            return EMPTY

    def translate_title(self, title: str) -> str:
        title = (title or "").strip()
        if not title:
            return EMPTY
        if has_cjk(title):
            return title
        prompt = "Translate this Hacker News title to Chinese.\n" + _wrap_input(title)
        return self._ask(prompt, TITLE_SYSTEM_PROMPT, "Title translation")

    def summarize_content(self, text: str, max_length: int) -> str:
        if not text or not text.strip():
            return EMPTY
        prompt = f"请用中文总结以下文章内容，长度约为 {max_length} 个字符。\n" + _wrap_input(text)
        return self._ask(prompt, SUMMARY_SYSTEM_PROMPT, "Content summary")

    def summarize_comments(self, combined: str, max_length: int) -> str:
        if not combined:
            return EMPTY
        prompt = (
            f"总结以下 HackerNews 评论中的关键讨论要点，长度约为 {max_length} 个字符。\n"
            + _wrap_input(combined)
        )
        return self._ask(prompt, COMMENTS_SYSTEM_PROMPT, "Comment summary")

    # ---- batch plumbing ----

    def _batched(
            self,
            items: list[tuple[int, Any]],
            out: list[str],
            *,
            label: str,
            build_prompt: Callable[[list[Any]], str],
            system_prompt: str,
            single: Callable[[Any], str],
    ) -> None:
        """
        Fill out[i] for every (i, payload) in items: one array request per
        chunk, then single requests for whatever the array did not cover.
        """
        chunks = chunked(items, self.chunk_size)
        for n, chunk in enumerate(chunks, start=1):
            payloads = [p for _, p in chunk]
            results: list[Any] = []
            try:
                reply = complete(self.llm, build_prompt(payloads), system_prompt)
                results = parse_json_array(reply, expected_length=len(chunk))
            except JsonArrayError as e:
                logger.warning("%s chunk %d/%d: %s; falling back to single requests", label, n, len(chunks), e)
            except Exception as e:
                logger.warning(
                    "%s chunk %d/%d: request failed (%s); falling back",
                    label,
                    n,
                    len(chunks),
                    friendly_llm_error_message(e),
                )

            fallback = 0
            for idx, (i, payload) in enumerate(chunk):
                value = _clean(results[idx]) if idx < len(results) else EMPTY
                if value == EMPTY:
                    fallback += 1
                    value = single(payload)
                out[i] = value

            if fallback:
                logger.info("%s chunk %d/%d: %d/%d items via single requests", label, n, len(chunks), fallback, len(chunk))

        done = sum(1 for i, _ in items if out[i] != EMPTY)
        logger.info("%s: %d/%d items produced", label, done, len(items))

    # ---- Enricher ----

    def translate_titles_batch(self, titles: Sequence[str]) -> list[str]:
        out = [EMPTY] * len(titles)
        todo: list[tuple[int, str]] = []
        for i, raw in enumerate(titles):
            title = (raw or "").strip()
            if not title:
                continue
            if has_cjk(title):
                out[i] = title
            else:
                todo.append((i, title))

        if todo:
            self._batched(
                todo,
                out,
                label="Title translation",
                build_prompt=lambda batch: (
                    "Translate the following Hacker News titles to Chinese. "
                    + _BATCH_RULES.format(n=len(batch)) + "\n" + _wrap_input(batch)
                ),
                system_prompt=TITLE_SYSTEM_PROMPT,
                single=self.translate_title,
            )
        return out

    def summarize_content_batch(self, texts: Sequence[str | None], max_length: int) -> list[str]:
        out = [EMPTY] * len(texts)
        todo = [(i, t) for i, t in enumerate(texts) if t and t.strip()]

        if todo:
            self._batched(
                todo,
                out,
                label="Content summary",
                build_prompt=lambda batch: (
                    f"请用中文分别总结以下每篇文章，每个摘要长度约为 {max_length} 个字符。"
                    + _BATCH_RULES.format(n=len(batch)) + "\n" + _wrap_input(batch)
                ),
                system_prompt=SUMMARY_SYSTEM_PROMPT,
                single=lambda text: self.summarize_content(text, max_length),
            )
        return out

    @staticmethod
    def combine_comments(comments: Sequence[Comment]) -> str:
        """
        Plain-text comments joined with separators, or "" when fewer than
        MIN_COMMENTS have any text. Capped at MAX_COMMENTS_LENGTH.
        """
        texts = [t for t in (strip_html(c.text) for c in comments) if t]
        if len(texts) < MIN_COMMENTS:
            return ""
        combined = "\n---\n".join(texts)
        if len(combined) > MAX_COMMENTS_LENGTH:
            combined = combined[:MAX_COMMENTS_LENGTH] + "..."
        return combined

    def summarize_comments_batch(
            self,
            comment_arrays: Sequence[Sequence[Comment]],
            max_length: int,
    ) -> list[str]:
        out = [EMPTY] * len(comment_arrays)
        length = min(int(max_length), COMMENT_SUMMARY_LENGTH)

        todo: list[tuple[int, str]] = []
        for i, comments in enumerate(comment_arrays):
            combined = self.combine_comments(comments or [])
            if combined:
                todo.append((i, combined))

        if todo:
            self._batched(
                todo,
                out,
                label="Comment summary",
                build_prompt=lambda batch: (
                    f"分别总结以下每组 HackerNews 评论的讨论要点，每条总结长度约为 {length} 个字符。"
                    + _BATCH_RULES.format(n=len(batch)) + "\n" + _wrap_input(batch)
                ),
                system_prompt=COMMENTS_SYSTEM_PROMPT,
                single=lambda combined: self.summarize_comments(combined, length),
            )
        return out
