# src/hn_digest/enrich/content_filter.py

from __future__ import annotations

import json
import logging

from ..core.ports import LLMClient, Story
from ..llm.client import complete
from .json_array import parse_json_array

logger = logging.getLogger(__name__)

SENSITIVITY_GUIDELINES = {
    "low": (
        "Only classify as SENSITIVE if the content:\n"
        "- Explicitly violates Chinese law\n"
        "- Contains explicit adult or violent content\n"
        "- Promotes illegal activities"
    ),
    "medium": (
        "Classify as SENSITIVE if the content:\n"
        "- Relates to Chinese political controversies\n"
        "- Discusses topics restricted in mainland China\n"
        "- Contains explicit adult or violent content\n"
        "- Promotes illegal activities or hate speech"
    ),
    "high": (
        "Classify as SENSITIVE if the content:\n"
        "- Relates to any Chinese political topics\n"
        "- Discusses censorship or internet freedom\n"
        "- Contains controversial social or political content\n"
        "- Contains adult, violent, or offensive content\n"
        "- Discusses topics that may be sensitive in China"
    ),
}

CLASSIFIER_SYSTEM_PROMPT = """You are a content moderator for a Chinese news aggregator.
Classify each news title as either "SAFE" or "SENSITIVE".
- Focus on the title content only.
- Consider the context (historical discussion vs current politics).
- When in doubt at the boundary, classify as SAFE.
Respond ONLY with a JSON array: [{"index": 0, "classification": "SAFE"}, ...]"""

_LABELS = {"SAFE", "SENSITIVE"}


class ContentFilter:
    """
    Drops stories whose titles the model classifies as SENSITIVE.

    Fail-open: if the request fails or the reply is unusable, every story is kept.
    """

    def __init__(self, llm: LLMClient, *, sensitivity: str = "medium") -> None:
        if sensitivity not in SENSITIVITY_GUIDELINES:
            raise ValueError(f"Unknown sensitivity level: {sensitivity!r}")
        self.llm = llm
        self.sensitivity = sensitivity

    def _prompt(self, titles: list[str]) -> str:
        payload = [{"index": i, "title": t} for i, t in enumerate(titles)]
        return (
            f"Sensitivity level: {self.sensitivity}\n"
            f"{SENSITIVITY_GUIDELINES[self.sensitivity]}\n\n"
            "Titles to classify:\n"
            "<input>\n" + json.dumps(payload, ensure_ascii=False, indent=2) + "\n</input>"
        )

    def classify(self, titles: list[str]) -> dict[int, str]:
        """index -> SAFE/SENSITIVE; raises ValueError on a malformed or incomplete reply."""
        reply = complete(self.llm, self._prompt(titles), CLASSIFIER_SYSTEM_PROMPT)
        items = parse_json_array(reply)

        labels: dict[int, str] = {}
        for item in items:
            if not isinstance(item, dict):
                raise ValueError(f"Invalid classification item: {item!r}")
            index = item.get("index")
            label = str(item.get("classification", "")).upper()
            if not isinstance(index, int) or label not in _LABELS:
                raise ValueError(f"Invalid classification item: {item!r}")
            labels[index] = label

        missing = [i for i in range(len(titles)) if i not in labels]
        if missing:
            raise ValueError(f"Expected {len(titles)} classifications, missing indices {missing}")
        return labels

    def filter_stories(self, stories: list[Story]) -> list[Story]:
        if not stories:
            return stories

        try:
            labels = self.classify([s.title for s in stories])
        except Exception as e:
            logger.warning("Content filter failed, allowing all stories through: %s", e)
            return stories

        kept = [s for i, s in enumerate(stories) if labels.get(i) == "SAFE"]
        dropped = len(stories) - len(kept)
        if dropped:
            logger.info("Filtered %d stories based on content policy", dropped)
            if dropped > len(stories) * 0.5:
                logger.warning("Over 50%% of stories were filtered; consider lowering the sensitivity level")
        return kept
