# src/hn_digest/core/state.py

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from ..tasks.task_executor import TaskExecutor
from ..tasks.task_store import TaskStore
from .ports import LLMClient

logger = logging.getLogger(__name__)


@dataclass
class AppState:
    # Store Settings on the state for easy access in other modules later.
    settings: Any

    llm: LLMClient
    task_store: TaskStore
    executor: TaskExecutor

    # Collaborators owning an httpx.AsyncClient; closed on shutdown.
    closables: list[Any] = field(default_factory=list)

    async def aclose(self) -> None:
        for res in self.closables:
            try:
                await res.aclose()
            except Exception:
                logger.debug("Close failed for %r", res, exc_info=True)
        self.closables.clear()
