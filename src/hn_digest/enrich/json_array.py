# src/hn_digest/enrich/json_array.py

from __future__ import annotations

import json
import logging
import re
from typing import Any

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json|javascript)?\s*", re.IGNORECASE)
_ARRAY_RE = re.compile(r"\[.*\]", re.DOTALL)
_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")


class JsonArrayError(ValueError):
    """LLM output could not be read as a JSON array."""


def _preview(text: str, limit: int = 200) -> str:
    return text if len(text) <= limit else text[:limit] + "..."


def parse_json_array(content: str | None, expected_length: int | None = None) -> list[Any]:
    """
    Parse a JSON array out of a model reply.

    Tolerates markdown code fences, prose around the array, blank lines and
    trailing commas. A length different from expected_length is logged, not
    rejected: callers decide how to handle a short array.
    """
    if content is None or not content.strip():
        raise JsonArrayError("Empty content")

    clean = _FENCE_RE.sub("", content).strip()

    m = _ARRAY_RE.search(clean)
    if m:
        clean = m.group(0)

    clean = "\n".join(line for line in clean.splitlines() if line.strip())
    clean = _TRAILING_COMMA_RE.sub(r"\1", clean).strip()

    try:
        parsed = json.loads(clean)
    except json.JSONDecodeError as e:
        logger.debug("JSON array parse failed: %s preview=%r", e, _preview(clean))
        raise JsonArrayError(f"Failed to parse JSON: {e.msg}") from e

    if not isinstance(parsed, list):
        raise JsonArrayError(f"Response is not an array (got {type(parsed).__name__})")

    if expected_length is not None and len(parsed) != expected_length:
        logger.warning("Expected %d items, got %d", expected_length, len(parsed))

    return parsed


def chunked(items: list[Any], size: int) -> list[list[Any]]:
    """Split items into consecutive chunks; size <= 0 means one chunk."""
    if size <= 0 or size >= len(items):
        return [list(items)] if items else []
    return [items[i:i + size] for i in range(0, len(items), size)]
