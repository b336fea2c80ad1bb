"""Embedding provider and backends."""

from docent.embedding.backends import (
    EmbeddingBackend,
    EmbeddingModel,
    LiteLLMBackend,
    LlamaCppBackend,
    backend_from_config,
)
from docent.embedding.provider import EmbeddingProvider, ModelState, ModelStatus

__all__ = [
    "EmbeddingBackend",
    "EmbeddingModel",
    "EmbeddingProvider",
    "LiteLLMBackend",
    "LlamaCppBackend",
    "ModelState",
    "ModelStatus",
    "backend_from_config",
]
