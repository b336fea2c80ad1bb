"""Observable per-document indexing progress.

Each document id has its own latest-value slot. Writers overwrite the slot
(last write wins); readers either poll ``get()`` / ``snapshot()`` or follow a
document with ``watch()``, which yields every value it observes and finishes
when the entry is removed.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from typing import Callable

logger = logging.getLogger(__name__)

ProgressListener = Callable[[int, "float | None"], None]


class ProgressTracker:
    """Latest indexing progress (0.0–1.0) per document id.

    Listeners registered with ``add_listener`` are called synchronously with
    ``(document_id, progress)`` on every update, and with ``(document_id,
    None)`` when the entry is removed.
    """

    def __init__(self) -> None:
        self._values: dict[int, float] = {}
        self._conditions: dict[int, asyncio.Condition] = {}
        self._listeners: list[ProgressListener] = []
        # Strong references so pending wake-ups are not garbage-collected.
        self._wake_tasks: set[asyncio.Task[None]] = set()

    def update(self, document_id: int, progress: float) -> None:
        progress = min(1.0, max(0.0, progress))
        self._values[document_id] = progress
        self._notify(document_id, progress)

    def get(self, document_id: int) -> float | None:
        return self._values.get(document_id)

    def snapshot(self) -> dict[int, float]:
        """Copy of every in-flight document's latest progress."""
        return dict(self._values)

    def remove(self, document_id: int) -> None:
        if self._values.pop(document_id, None) is None:
            return
        self._notify(document_id, None)

    def add_listener(self, listener: ProgressListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: ProgressListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def watch(self, document_id: int) -> AsyncIterator[float]:
        """Yield the document's progress on every change until it is removed.

        The current value is yielded first; an untracked document finishes
        immediately. Intermediate values may be skipped when several updates
        land between two reads.
        """
        condition = self._condition(document_id)
        last: float | None = None
        try:
            while True:
                async with condition:
                    await condition.wait_for(
                        lambda: document_id not in self._values
                        or self._values[document_id] != last
                    )
                    if document_id not in self._values:
                        return
                    last = self._values[document_id]
                yield last
        finally:
            if document_id not in self._values and self._conditions.get(document_id) is condition:
                del self._conditions[document_id]

    # ------------------------------------------------------------------

    def _condition(self, document_id: int) -> asyncio.Condition:
        if document_id not in self._conditions:
            self._conditions[document_id] = asyncio.Condition()
        return self._conditions[document_id]

    def _notify(self, document_id: int, progress: float | None) -> None:
        for listener in list(self._listeners):
            try:
                listener(document_id, progress)
            except Exception:
                logger.exception("Progress listener failed for document %d", document_id)

        condition = self._conditions.get(document_id)
        if condition is not None:
            task = asyncio.get_running_loop().create_task(self._wake(condition))
            self._wake_tasks.add(task)
            task.add_done_callback(self._wake_tasks.discard)
        if progress is None:
            self._conditions.pop(document_id, None)

    @staticmethod
    async def _wake(condition: asyncio.Condition) -> None:
        async with condition:
            condition.notify_all()
