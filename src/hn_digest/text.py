# src/hn_digest/text.py

from __future__ import annotations

import re

from bs4 import BeautifulSoup

_WS_RE = re.compile(r"\s+")
_CJK_RE = re.compile(r"[一-龥]")


def strip_html(html: str | None) -> str:
    """HTML fragment (e.g. an HN comment) to one line of plain text."""
    if not html or not html.strip():
        return ""
    soup = BeautifulSoup(html, "lxml")
    return _WS_RE.sub(" ", soup.get_text(" ", strip=True)).strip()


def has_cjk(text: str) -> bool:
    return bool(_CJK_RE.search(text or ""))


def truncate_text(text: str, max_length: int, suffix: str = "...") -> str:
    """
    Cut text to at most max_length characters (plus suffix) without splitting
    a word when the cut region contains a space.
    """
    if max_length <= 0 or len(text) <= max_length:
        return text
    cut = text[:max_length]
    space = cut.rfind(" ")
    if space > 0:
        cut = cut[:space]
    return cut.rstrip() + suffix
