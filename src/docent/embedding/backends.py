"""Embedding backends: the native model behind the embedding provider.

A backend knows how to load a model and hand back an :class:`EmbeddingModel`
handle. Handles are not thread-safe; the provider serialises every call to
them under its own lock.

Backends:
  - ``llama_cpp``: on-device GGUF model through llama-cpp-python (install
    the ``local`` extra).
  - ``litellm``: any LiteLLM embedding model, e.g. a local Ollama server.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Protocol

import litellm

from docent.config import EmbeddingCfg
from docent.errors import EmbeddingError, ModelLoadError

logger = logging.getLogger(__name__)

# Disable LiteLLM verbose logging unless explicitly enabled
litellm.suppress_debug_info = True


class EmbeddingModel(Protocol):
    """A loaded embedding model."""

    dimension: int

    def embed(self, text: str) -> list[float]:
        """Return the raw (unnormalised) embedding of *text*.

        Raises:
            EmbeddingError: Tokenisation or the forward pass failed.
        """
        ...

    def reset(self) -> None:
        """Clear per-call state (KV cache) left over from the previous call."""
        ...

    def close(self) -> None:
        """Free native resources."""
        ...


class EmbeddingBackend(Protocol):
    """Factory for :class:`EmbeddingModel` handles."""

    name: str
    requires_artifact: bool

    def load(self, path: Path | None) -> EmbeddingModel:
        """Load the model (blocking). *path* is None when no artifact is needed.

        Raises:
            ModelLoadError: The model could not be loaded.
        """
        ...


# ------------------------------------------------------------------
# llama.cpp (on-device GGUF)
# ------------------------------------------------------------------


class _LlamaCppModel:
    def __init__(self, llm) -> None:
        self._llm = llm
        self.dimension: int = llm.n_embd()

    def embed(self, text: str) -> list[float]:
        try:
            output = self._llm.embed(text)
        except (RuntimeError, ValueError) as exc:
            raise EmbeddingError(f"llama.cpp embedding failed: {exc}") from exc
        if output and isinstance(output[0], list):
            # Per-token output (model without pooling): mean-pool it.
            n = len(output)
            output = [sum(col) / n for col in zip(*output)]
        return [float(x) for x in output]

    def reset(self) -> None:
        self._llm.reset()

    def close(self) -> None:
        close = getattr(self._llm, "close", None)
        if close is not None:
            close()
        self._llm = None


class LlamaCppBackend:
    """On-device embedding with a GGUF sentence-embedding model."""

    name = "llama_cpp"
    requires_artifact = True

    def __init__(self, context_size: int = 512, threads: int = 4) -> None:
        self.context_size = context_size
        self.threads = threads

    def load(self, path: Path | None) -> EmbeddingModel:
        if path is None:
            raise ModelLoadError("The llama_cpp backend needs a model file path.")
        try:
            from llama_cpp import Llama
        except ImportError as exc:
            raise ModelLoadError(
                "The llama_cpp backend needs llama-cpp-python. "
                "Install it with: pip install 'docent[local]'"
            ) from exc

        try:
            llm = Llama(
                model_path=str(path),
                embedding=True,
                n_ctx=self.context_size,
                n_threads=self.threads,
                verbose=False,
            )
        except (OSError, RuntimeError, ValueError) as exc:
            raise ModelLoadError(f"Failed to load embedding model '{path}': {exc}") from exc
        return _LlamaCppModel(llm)


# ------------------------------------------------------------------
# LiteLLM
# ------------------------------------------------------------------

_PROVIDER_ENV: dict[str, str | None] = {
    "openai": "OPENAI_API_KEY",
    "azure": "AZURE_API_KEY",
    "cohere": "COHERE_API_KEY",
    "mistral": "MISTRAL_API_KEY",
    "voyage": "VOYAGE_API_KEY",
    "ollama": None,  # Local, no key required
}

_DIMENSION_PROBE = "dimension probe"


def validate_api_key(model: str) -> None:
    """Check that the API key env var required by *model*'s provider is set.

    Raises:
        ModelLoadError: If the required key is missing from the environment.
    """
    provider = model.split("/")[0].lower() if "/" in model else "openai"
    env_var = _PROVIDER_ENV.get(provider)
    if env_var is None:
        return
    if not os.getenv(env_var):
        raise ModelLoadError(
            f"API key not found for provider '{provider}'. "
            f"Set the {env_var} environment variable."
        )


class _LiteLLMModel:
    def __init__(self, model: str, dimension: int, num_retries: int) -> None:
        self.model = model
        self.dimension = dimension
        self.num_retries = num_retries

    def embed(self, text: str) -> list[float]:
        try:
            response = litellm.embedding(
                model=self.model, input=[text], num_retries=self.num_retries
            )
            return list(response.data[0]["embedding"])
        except Exception as exc:
            raise EmbeddingError(f"LiteLLM embedding failed: {exc}") from exc

    def reset(self) -> None:
        # Remote calls keep no state between requests.
        pass

    def close(self) -> None:
        pass


class LiteLLMBackend:
    """Embedding through ``litellm.embedding()``. No local artifact is needed."""

    name = "litellm"
    requires_artifact = False

    def __init__(self, model: str = "ollama/all-minilm", num_retries: int = 3) -> None:
        self.model = model
        self.num_retries = num_retries

    def load(self, path: Path | None) -> EmbeddingModel:
        validate_api_key(self.model)
        probe = _LiteLLMModel(self.model, dimension=0, num_retries=self.num_retries)
        try:
            vector = probe.embed(_DIMENSION_PROBE)
        except EmbeddingError as exc:
            raise ModelLoadError(
                f"Embedding model '{self.model}' is not reachable: {exc}"
            ) from exc
        probe.dimension = len(vector)
        return probe


def backend_from_config(cfg: EmbeddingCfg) -> EmbeddingBackend:
    """Build the backend named by ``cfg.backend``."""
    if cfg.backend == "litellm":
        return LiteLLMBackend(model=cfg.model)
    if cfg.backend == "llama_cpp":
        return LlamaCppBackend(context_size=cfg.context_size, threads=cfg.threads)
    raise ValueError(f"Unknown embedding backend '{cfg.backend}'")
