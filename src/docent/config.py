"""Docent configuration loader.

Priority (high → low):
  1. CLI flags           (handled at call site, not in this module)
  2. Environment variables  (DOCENT_EMBEDDING_BACKEND, DOCENT_EMBEDDING_MODEL,
     DOCENT_MODEL_DIR)
  3. Per-project docent.yaml  (next to the knowledge database)
  4. Global ~/.docent/config.yaml  (defaults only, no API keys)
  5. Hardcoded defaults

Global config must never contain API keys; use environment variables instead.
All YAML reads use yaml.safe_load(), never yaml.load().
"""

from __future__ import annotations

import os
import re
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_GLOBAL_CONFIG_DIR: Path = Path.home() / ".docent"
_GLOBAL_CONFIG_PATH: Path = _GLOBAL_CONFIG_DIR / "config.yaml"
_PROJECT_CONFIG_NAME: str = "docent.yaml"

# Matches: api_key, apikey, api-key, api_secret, _token (suffix), standalone token,
# standalone secret, _secret (suffix), password, passwd, credential(s).
_API_KEY_RE: re.Pattern[str] = re.compile(
    r"api[_\-]?(?:key|secret)"
    r"|_token$"
    r"|^token$"
    r"|_secret$"
    r"|^secret$"
    r"|passw(?:ord|d)"
    r"|credential",
    re.IGNORECASE,
)

_KNOWN_SECTIONS: frozenset[str] = frozenset(["chunker", "embedding", "retrieval", "ingest"])

_BACKENDS: frozenset[str] = frozenset(["llama_cpp", "litellm"])


def _default_search_dirs() -> list[str]:
    # bundled asset → external app storage → downloads fallback
    return [
        str(Path(__file__).parent / "assets"),
        str(_GLOBAL_CONFIG_DIR / "models"),
        str(Path.home() / "Downloads"),
    ]


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ConfigError(ValueError):
    """Raised when a config file contains an invalid or forbidden value."""


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass
class ChunkerCfg:
    """Semantic chunker configuration (docent.yaml: chunker:).

    Sizes are measured in characters of chunk content; the context prefix
    copied from the previous chunk does not count toward them.
    """

    target_chunk_size: int = 400
    max_chunk_size: int = 600
    min_chunk_size: int = 100
    overlap_sentences: int = 1
    detect_headings: bool = True
    detect_topic_boundary: bool = True
    topic_change_threshold: float = 0.7

    def __post_init__(self) -> None:
        if not 1 <= self.min_chunk_size <= self.target_chunk_size <= self.max_chunk_size:
            raise ValueError(
                "chunk sizes must satisfy 1 <= min_chunk_size <= target_chunk_size "
                f"<= max_chunk_size, got min={self.min_chunk_size} "
                f"target={self.target_chunk_size} max={self.max_chunk_size}"
            )
        if self.overlap_sentences < 0:
            raise ValueError("overlap_sentences must be >= 0")
        if not 0.0 <= self.topic_change_threshold <= 1.0:
            raise ValueError("topic_change_threshold must be in [0.0, 1.0]")


@dataclass
class EmbeddingCfg:
    """Embedding model configuration (docent.yaml: embedding:).

    Attributes:
        backend: ``llama_cpp`` (on-device GGUF) or ``litellm``.
        model_file: GGUF artifact name searched for in *search_dirs*.
        model: LiteLLM model string, used only by the ``litellm`` backend.
        search_dirs: Artifact directories in priority order.
        context_size: Model context window in tokens.
        threads: CPU threads for the native backend.
        idle_timeout: Seconds of inactivity before the model is released.
        idle_check_interval: Seconds between idle checks.
    """

    backend: str = "llama_cpp"
    model_file: str = "all-minilm-l6-v2-q8_0.gguf"
    model: str = "ollama/all-minilm"
    search_dirs: list[str] = field(default_factory=_default_search_dirs)
    context_size: int = 512
    threads: int = 4
    idle_timeout: float = 300.0
    idle_check_interval: float = 60.0


@dataclass
class RetrievalCfg:
    """Retrieval configuration (docent.yaml: retrieval:)."""

    top_k: int = 3
    similarity_threshold: float = 0.15
    use_keyword_reranking: bool = True
    keyword_weight: float = 0.2
    cache_size: int = 50


@dataclass
class IngestCfg:
    """Ingestion pipeline configuration (docent.yaml: ingest:)."""

    insert_batch_size: int = 10
    completion_hold_seconds: float = 1.0


@dataclass
class DocentConfig:
    """Root configuration object, built by load_config() from merged YAML layers."""

    chunker: ChunkerCfg = field(default_factory=ChunkerCfg)
    embedding: EmbeddingCfg = field(default_factory=EmbeddingCfg)
    retrieval: RetrievalCfg = field(default_factory=RetrievalCfg)
    ingest: IngestCfg = field(default_factory=IngestCfg)


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _check_no_api_keys(data: dict[str, Any], source: Path) -> None:
    """Raise ConfigError if *data* contains any API-key-like key names."""

    def _scan(obj: Any, path: str) -> None:
        if isinstance(obj, dict):
            for k, v in obj.items():
                full = f"{path}.{k}" if path else k
                if _API_KEY_RE.search(str(k)):
                    raise ConfigError(
                        f"Global config '{source}' contains a forbidden key '{full}'.\n"
                        f"  API keys must be set via environment variables, not config files.\n"
                        f"  Remove '{full}' from {source.name} and use:\n"
                        f"    export {str(k).upper().replace('-', '_')}=<value>"
                    )
                _scan(v, full)

    _scan(data, "")


def _warn_unknown_keys(data: dict[str, Any], source: Path) -> None:
    """Emit a UserWarning for unrecognised top-level keys."""
    for key in data:
        if key not in _KNOWN_SECTIONS:
            warnings.warn(
                f"Unknown config key '{key}' in '{source}'; ignored.",
                UserWarning,
                stacklevel=4,
            )


# ---------------------------------------------------------------------------
# Merge + build
# ---------------------------------------------------------------------------


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Return a new dict that is *base* deep-merged with *override*."""
    result = dict(base)
    for k, v in override.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge(result[k], v)
        else:
            result[k] = v
    return result


def _cfg_from_dict(data: dict[str, Any]) -> DocentConfig:
    """Build a *DocentConfig* from a merged raw YAML dict."""
    cfg = DocentConfig()

    try:
        if "chunker" in data:
            c = data["chunker"]
            d = cfg.chunker
            cfg.chunker = ChunkerCfg(
                target_chunk_size=int(c.get("target_chunk_size", d.target_chunk_size)),
                max_chunk_size=int(c.get("max_chunk_size", d.max_chunk_size)),
                min_chunk_size=int(c.get("min_chunk_size", d.min_chunk_size)),
                overlap_sentences=int(c.get("overlap_sentences", d.overlap_sentences)),
                detect_headings=bool(c.get("detect_headings", d.detect_headings)),
                detect_topic_boundary=bool(
                    c.get("detect_topic_boundary", d.detect_topic_boundary)
                ),
                topic_change_threshold=float(
                    c.get("topic_change_threshold", d.topic_change_threshold)
                ),
            )
    except ValueError as exc:
        raise ConfigError(f"Invalid chunker config: {exc}") from exc

    if "embedding" in data:
        e = data["embedding"]
        d = cfg.embedding
        cfg.embedding = EmbeddingCfg(
            backend=str(e.get("backend", d.backend)),
            model_file=str(e.get("model_file", d.model_file)),
            model=str(e.get("model", d.model)),
            search_dirs=[str(p) for p in e.get("search_dirs", d.search_dirs)],
            context_size=int(e.get("context_size", d.context_size)),
            threads=int(e.get("threads", d.threads)),
            idle_timeout=float(e.get("idle_timeout", d.idle_timeout)),
            idle_check_interval=float(e.get("idle_check_interval", d.idle_check_interval)),
        )

    if "retrieval" in data:
        r = data["retrieval"]
        d = cfg.retrieval
        cfg.retrieval = RetrievalCfg(
            top_k=int(r.get("top_k", d.top_k)),
            similarity_threshold=float(r.get("similarity_threshold", d.similarity_threshold)),
            use_keyword_reranking=bool(
                r.get("use_keyword_reranking", d.use_keyword_reranking)
            ),
            keyword_weight=float(r.get("keyword_weight", d.keyword_weight)),
            cache_size=int(r.get("cache_size", d.cache_size)),
        )

    if "ingest" in data:
        i = data["ingest"]
        d = cfg.ingest
        cfg.ingest = IngestCfg(
            insert_batch_size=int(i.get("insert_batch_size", d.insert_batch_size)),
            completion_hold_seconds=float(
                i.get("completion_hold_seconds", d.completion_hold_seconds)
            ),
        )

    return cfg


def _validate(cfg: DocentConfig) -> None:
    if cfg.embedding.backend not in _BACKENDS:
        raise ConfigError(
            f"embedding.backend must be one of {sorted(_BACKENDS)}, "
            f"got '{cfg.embedding.backend}'"
        )
    if cfg.retrieval.top_k < 1:
        raise ConfigError(f"retrieval.top_k must be >= 1, got {cfg.retrieval.top_k}")
    if not 0.0 <= cfg.retrieval.keyword_weight <= 1.0:
        raise ConfigError("retrieval.keyword_weight must be in [0.0, 1.0]")
    if cfg.retrieval.cache_size < 1:
        raise ConfigError("retrieval.cache_size must be >= 1")
    if cfg.ingest.insert_batch_size < 1:
        raise ConfigError("ingest.insert_batch_size must be >= 1")


def _apply_env_overrides(cfg: DocentConfig) -> DocentConfig:
    """Apply DOCENT_* environment variable overrides (layer 2)."""
    if backend := os.environ.get("DOCENT_EMBEDDING_BACKEND"):
        cfg.embedding.backend = backend
    if model := os.environ.get("DOCENT_EMBEDDING_MODEL"):
        cfg.embedding.model = model
    if model_dir := os.environ.get("DOCENT_MODEL_DIR"):
        # An explicit model directory outranks every default location.
        cfg.embedding.search_dirs = [model_dir, *cfg.embedding.search_dirs]
    return cfg


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(
    project_dir: Path | None = None,
    *,
    global_config_path: Path | None = None,
) -> DocentConfig:
    """Load and return a merged *DocentConfig*.

    Applies layers in order: global → per-project → env vars.
    CLI flag overrides must be applied by the caller after this function.

    Args:
        project_dir: Directory to search for *docent.yaml*. Defaults to CWD.
        global_config_path: Override the global config path (for testing).

    Returns:
        Fully merged *DocentConfig* with env var overrides applied.

    Raises:
        ConfigError: If global config contains API-key-like fields, or if a
            value is out of range.
    """
    global_path = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    search_dir = project_dir if project_dir is not None else Path.cwd()

    merged: dict[str, Any] = {}

    # Layer 1: global config
    if global_path.exists():
        raw_global = yaml.safe_load(global_path.read_text(encoding="utf-8")) or {}
        _check_no_api_keys(raw_global, global_path)
        _warn_unknown_keys(raw_global, global_path)
        merged = _deep_merge(merged, raw_global)

    # Layer 2: per-project config
    project_cfg_path = search_dir / _PROJECT_CONFIG_NAME
    if project_cfg_path.exists():
        raw_project = yaml.safe_load(project_cfg_path.read_text(encoding="utf-8")) or {}
        _warn_unknown_keys(raw_project, project_cfg_path)
        merged = _deep_merge(merged, raw_project)

    cfg = _cfg_from_dict(merged)

    # Layer 3: env var overrides
    cfg = _apply_env_overrides(cfg)
    _validate(cfg)

    return cfg


def write_project_config(project_dir: Path) -> Path:
    """Write a commented default ``docent.yaml`` into *project_dir* if missing.

    Returns:
        Path to the project config file.
    """
    target = project_dir / _PROJECT_CONFIG_NAME
    if not target.exists():
        content = (
            "# Docent project configuration.\n"
            "# NEVER store API keys here; use environment variables.\n"
            "\n"
            "chunker:\n"
            "  target_chunk_size: 400\n"
            "  max_chunk_size: 600\n"
            "  min_chunk_size: 100\n"
            "  overlap_sentences: 1\n"
            "\n"
            "embedding:\n"
            "  backend: llama_cpp\n"
            "  model_file: all-minilm-l6-v2-q8_0.gguf\n"
            "\n"
            "retrieval:\n"
            "  top_k: 3\n"
            "  similarity_threshold: 0.15\n"
        )
        target.write_text(content, encoding="utf-8")
    return target
