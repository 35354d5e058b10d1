# src/hn_digest/publishers/terminal.py

from __future__ import annotations

import sys
from typing import TextIO

from ..core.ports import PublishContent

SEPARATOR = "=" * 38


def format_terminal_output(content: PublishContent) -> str:
    return (
        f"{SEPARATOR}\n"
        f"HackerNews Daily - {content.date_str}\n"
        f"{SEPARATOR}\n\n"
        f"{content.markdown}\n\n"
        f"{SEPARATOR}\n"
        f"Export completed: {len(content.entries)} stories\n"
        f"{SEPARATOR}"
    )


class TerminalPublisher:
    """Local sink: prints the document between delimiters (local test mode)."""

    name = "terminal"

    def __init__(self, stream: TextIO | None = None) -> None:
        self.stream = stream

    async def publish(self, content: PublishContent) -> None:
        out = self.stream or sys.stdout
        out.write(format_terminal_output(content) + "\n")
        out.flush()
