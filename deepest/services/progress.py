from __future__ import annotations

import asyncio
import inspect
from typing import Any, Callable, Optional

from loguru import logger

from deepest.models.events import Phase, overall_percent
from deepest.models.research import ProgressUpdate

ProgressSink = Callable[[ProgressUpdate], Any]


class ProgressReporter:
    """Deliver progress updates to a fire-and-forget sink.

    A failing sink is logged and ignored. Coroutine sinks are scheduled, not awaited.
    """

    def __init__(self, sink: Optional[ProgressSink] = None):
        self._sink = sink
        self._pending: set[asyncio.Future] = set()

    def emit(
        self,
        phase: Phase,
        current: int = 0,
        total: int = 1,
        detail: str | None = None,
    ) -> ProgressUpdate:
        update = ProgressUpdate(
            phase=phase.value,
            current=current,
            total=total,
            detail=detail,
            overall_percent=overall_percent(phase, current, total),
        )
        logger.debug(
            f"PROGRESS: {update.phase} ({current}/{total}) {update.overall_percent}%"
            + (f" - {detail}" if detail else "")
        )
        if self._sink is None:
            return update

        try:
            result = self._sink(update)
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._pending.add(task)
                task.add_done_callback(self._on_sink_done)
        except Exception as e:
            logger.warning(f"Progress sink failed for {update.phase}: {e}")
        return update

    def _on_sink_done(self, task: asyncio.Future) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.warning(f"Async progress sink failed: {error}")
