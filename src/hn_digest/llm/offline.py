# src/hn_digest/llm/offline.py

from __future__ import annotations

import json
import re
from collections.abc import Iterable
from typing import Any

from ..core.ports import ChatMessage

_INPUT_RE = re.compile(r"<input>\s*(.*?)\s*</input>", re.DOTALL)
_PREVIEW_CHARS = 120


def _preview(value: Any) -> str:
    if isinstance(value, dict):
        value = value.get("title") or value.get("content") or value.get("comments") or ""
    text = " ".join(str(value).split())
    if len(text) > _PREVIEW_CHARS:
        text = text[:_PREVIEW_CHARS] + "..."
    return f"[离线] {text}"


class OfflineLLMClient:
    """
    Offline deterministic LLM client used for local runs when no API key is configured.

    Behavior:
    - Classifier prompts -> every title SAFE
    - Batched prompts (JSON array in <input>) -> one "[离线] ..." echo per element
    - Single-item prompts -> one "[离线] ..." echo of the input
    """

    def stream_chat(self, messages: list[ChatMessage], system_prompt: str) -> Iterable[str]:
        user_text = ""
        for m in reversed(messages):
            if m["role"] == "user":
                user_text = m["content"]
                break

        m = _INPUT_RE.search(user_text)
        raw = m.group(1) if m else user_text
        try:
            payload: Any = json.loads(raw)
        except ValueError:
            payload = raw

        if "content moderator" in (system_prompt or "").lower() and isinstance(payload, list):
            yield json.dumps([{"index": i, "classification": "SAFE"} for i in range(len(payload))])
            return

        if isinstance(payload, list):
            yield json.dumps([_preview(p) for p in payload], ensure_ascii=False)
            return

        yield _preview(payload)
