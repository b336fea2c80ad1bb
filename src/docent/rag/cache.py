"""LRU cache of query string → ranked retrieval results.

Entries never expire on their own. The owner must call ``clear()`` whenever
the chunk corpus changes (a document is added or deleted).
"""

from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from docent.rag.search import RetrievalResult

logger = logging.getLogger(__name__)


class RetrievalCache:
    """Fixed-capacity LRU cache keyed by the exact query string.

    ``get`` and ``put`` both refresh recency. Every operation runs under one
    lock, so the cache may be shared between the event loop and worker threads.
    """

    def __init__(self, capacity: int = 50) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.capacity = capacity
        self._entries: OrderedDict[str, list[RetrievalResult]] = OrderedDict()
        self._lock = threading.Lock()

    def get(self, query: str) -> list[RetrievalResult] | None:
        with self._lock:
            results = self._entries.get(query)
            if results is None:
                return None
            self._entries.move_to_end(query)
            return list(results)

    def put(self, query: str, results: list[RetrievalResult]) -> None:
        with self._lock:
            self._entries[query] = list(results)
            self._entries.move_to_end(query)
            if len(self._entries) > self.capacity:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug("Evicted cached query %r", evicted)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, query: object) -> bool:
        with self._lock:
            return query in self._entries
