"""Embedding provider: lazy-loaded, idle-evicted embedding model.

One provider owns at most one loaded model. Loading, embedding, releasing
and the idle check all run under the same ``asyncio.Lock``, so no embed call
ever overlaps a load or unload, and two concurrent first calls trigger a
single load. Blocking native calls run in a worker thread while the lock is
held.

State machine::

    NOT_LOADED -> LOADING -> READY
    READY -> NOT_LOADED        (release() or idle timeout)
    LOADING -> ERROR(message)  (initialize() may be called again to retry)
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable

from docent.config import EmbeddingCfg
from docent.db.vectors import l2_normalize
from docent.embedding.backends import EmbeddingBackend, EmbeddingModel
from docent.errors import EmbeddingError, ModelLoadError

logger = logging.getLogger(__name__)


class ModelStatus(str, Enum):
    NOT_LOADED = "not_loaded"
    LOADING = "loading"
    READY = "ready"
    ERROR = "error"


@dataclass(frozen=True)
class ModelState:
    status: ModelStatus
    message: str | None = None

    def __str__(self) -> str:
        if self.message:
            return f"{self.status.value}: {self.message}"
        return self.status.value


NOT_LOADED = ModelState(ModelStatus.NOT_LOADED)
LOADING = ModelState(ModelStatus.LOADING)
READY = ModelState(ModelStatus.READY)

StateListener = Callable[[ModelState], None]


class EmbeddingProvider:
    """Produce L2-normalised embeddings from a lazily loaded model.

    Args:
        backend: Loads the native model (see docent.embedding.backends).
        config: Artifact lookup and idle-eviction settings.
        clock: Monotonic time source, injectable for tests.
    """

    def __init__(
        self,
        backend: EmbeddingBackend,
        config: EmbeddingCfg | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._backend = backend
        self._config = config or EmbeddingCfg()
        self._clock = clock
        self._lock = asyncio.Lock()
        self._model: EmbeddingModel | None = None
        self._dimension: int | None = None
        self._state = NOT_LOADED
        self._last_used = 0.0
        self._idle_task: asyncio.Task | None = None
        self._listeners: list[StateListener] = []

    # ------------------------------------------------------------------
    # Observable state
    # ------------------------------------------------------------------

    @property
    def state(self) -> ModelState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state.status is ModelStatus.READY

    @property
    def dimension(self) -> int | None:
        """Output dimension of the last loaded model, or None before any load."""
        return self._dimension

    def add_state_listener(self, listener: StateListener) -> None:
        self._listeners.append(listener)

    def _set_state(self, state: ModelState) -> None:
        self._state = state
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception:
                logger.exception("Model state listener failed")

    # ------------------------------------------------------------------
    # Artifact resolution
    # ------------------------------------------------------------------

    def resolve_model_path(self) -> Path:
        """Find the model file in the configured search dirs, in priority order.

        Raises:
            ModelLoadError: The file is in none of the directories.
        """
        model_file = self._config.model_file
        for directory in self._config.search_dirs:
            candidate = Path(directory).expanduser() / model_file
            if candidate.is_file():
                logger.debug("Using embedding model at %s", candidate)
                return candidate
        searched = ", ".join(str(Path(d).expanduser()) for d in self._config.search_dirs)
        raise ModelLoadError(
            f"Embedding model '{model_file}' not found. Searched: {searched}. "
            "Copy the model file into one of these directories or set DOCENT_MODEL_DIR."
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """Load the model if needed. Idempotent.

        Raises:
            ModelLoadError: The artifact is missing or the backend failed to load it.
        """
        async with self._lock:
            await self._ensure_loaded()

    async def release(self) -> None:
        """Free the model and return to NOT_LOADED. No-op when nothing is loaded."""
        async with self._lock:
            self._cancel_idle_check()
            await self._unload("released")

    async def aclose(self) -> None:
        """Release the model and wait for the idle checker to stop."""
        task = self._idle_task
        await self.release()
        if task is not None and task is not asyncio.current_task():
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def _ensure_loaded(self) -> None:
        # Caller holds self._lock.
        if self._model is not None:
            self._touch()
            return

        self._set_state(LOADING)
        try:
            path = self.resolve_model_path() if self._backend.requires_artifact else None
            model = await asyncio.to_thread(self._backend.load, path)
        except ModelLoadError as exc:
            self._set_state(ModelState(ModelStatus.ERROR, str(exc)))
            logger.error("Embedding model load failed: %s", exc)
            raise
        except Exception as exc:
            message = f"Embedding backend '{self._backend.name}' failed to load: {exc}"
            self._set_state(ModelState(ModelStatus.ERROR, message))
            logger.error(message)
            raise ModelLoadError(message) from exc

        self._model = model
        self._dimension = model.dimension
        self._touch()
        self._set_state(READY)
        self._start_idle_check()
        logger.info(
            "Embedding model loaded (backend=%s, dimension=%d)",
            self._backend.name,
            model.dimension,
        )

    async def _unload(self, reason: str) -> None:
        # Caller holds self._lock.
        model, self._model = self._model, None
        if model is None:
            return
        try:
            await asyncio.to_thread(model.close)
        finally:
            self._set_state(NOT_LOADED)
            logger.info("Embedding model unloaded (%s)", reason)

    def _touch(self) -> None:
        self._last_used = self._clock()

    # ------------------------------------------------------------------
    # Idle eviction
    # ------------------------------------------------------------------

    def _start_idle_check(self) -> None:
        self._cancel_idle_check()
        self._idle_task = asyncio.create_task(self._idle_check_loop())

    def _cancel_idle_check(self) -> None:
        task, self._idle_task = self._idle_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    async def _idle_check_loop(self) -> None:
        timeout = self._config.idle_timeout
        while True:
            await asyncio.sleep(self._config.idle_check_interval)
            async with self._lock:
                if self._model is None:
                    return
                idle = self._clock() - self._last_used
                if idle >= timeout:
                    self._idle_task = None
                    try:
                        await self._unload(f"idle for {idle:.0f}s")
                    except Exception:
                        logger.exception("Freeing the idle embedding model failed")
                    return

    # ------------------------------------------------------------------
    # Embedding
    # ------------------------------------------------------------------

    async def embed(self, text: str) -> list[float] | None:
        """Embed *text*, loading the model first if necessary.

        Returns:
            The unit-length embedding, or None if this call failed. A None
            result means "skip this chunk" / "fail this query", not a broken
            engine.

        Raises:
            ModelLoadError: The model had to be loaded and could not be.
        """
        async with self._lock:
            await self._ensure_loaded()
            model = self._model
            try:
                vector = await asyncio.to_thread(self._forward, model, text)
            except Exception as exc:
                logger.warning("Embedding failed for %d-char text: %s", len(text), exc)
                return None
            finally:
                self._touch()
        return vector

    async def embed_batch(self, texts: Sequence[str]) -> list[list[float] | None]:
        """Embed each text in turn; failures are None at their position."""
        return [await self.embed(text) for text in texts]

    @staticmethod
    def _forward(model: EmbeddingModel, text: str) -> list[float]:
        model.reset()
        raw = model.embed(text)
        if not raw:
            raise EmbeddingError("model returned an empty vector")
        if len(raw) != model.dimension:
            raise EmbeddingError(
                f"model returned {len(raw)} dimensions, expected {model.dimension}"
            )
        vector = l2_normalize(raw)
        if not any(vector):
            logger.warning("Embedding model returned an all-zero vector")
        return vector
