"""
Engine Configuration
=====================
Typed configuration for every tunable of the engine, loaded from
``configs/settings.yaml``.

The fusion constants (alpha, score threshold, lexical bonus/penalty) and
the chunk budgets are empirical values carried over from the first
version of the engine.  They live here as defaults rather than as
constants in the code so they can be tuned per collection.

Loading order:
  1. Dataclass defaults below.
  2. Sections of ``settings.yaml`` (``chunking``, ``search``, ``models``,
     ``generation``, ``store``, ``agent``) override matching fields.
  3. ``MILVUS_ADDRESS`` / ``MILVUS_USERNAME`` / ``MILVUS_PASSWORD``
     environment variables override the remote store credentials.

Unknown keys in the YAML are ignored with a warning.
"""

import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger(__name__)

SETTINGS_PATH = Path(__file__).resolve().parent.parent / "configs" / "settings.yaml"


@dataclass
class ChunkingConfig:
    small_chunk_size: int = 175     # approx tokens (whitespace words) per small chunk
    parent_chunk_size: int = 512    # approx tokens per context-expanded parent
    agent_chunk_size: int = 1000    # chunk size for the agent's sentence store


@dataclass
class SearchConfig:
    top_k: int = 50                 # candidates retrieved for reranking
    context_k: int = 10             # reranked results kept for the final context
    alpha: float = 0.3              # sparse weight (dense gets 1 - alpha)
    score_threshold: float = 0.1    # hybrid scores <= this are dropped
    lexical_bonus: float = 1.2      # multiplier when any keyword overlaps
    lexical_penalty: float = 0.8    # multiplier when no keyword overlaps
    sparse_dimension: int = 32000   # hashing-trick vector size


@dataclass
class ModelConfig:
    embedding_model: str = "sentence-transformers/all-MiniLM-L6-v2"
    device: str = "cpu"
    cache_dir: Optional[str] = None
    ollama_url: str = "http://localhost:11434"
    generator_model: str = "mistral"
    # Separate Ollama model for reranking; None reuses the generator.
    reranker_model: Optional[str] = None
    request_timeout: float = 300.0


@dataclass
class GenerationConfig:
    hyde_max_new_tokens: int = 128
    hyde_temperature: float = 0.7
    rerank_max_new_tokens: int = 2
    rerank_temperature: float = 0.1
    compress_max_new_tokens: int = 512
    compress_temperature: float = 0.2
    compress_fallback_chars: int = 3000
    answer_max_new_tokens: int = 1024
    answer_temperature: float = 0.3


@dataclass
class StoreConfig:
    backend: str = "local"          # "local" (FAISS) or "milvus" (REST)
    index_dir: str = "data/index"
    agent_dir: str = "data/agent"
    feedback_path: str = "data/feedback/chunk_relevance.json"
    milvus_address: str = "localhost:19530"
    milvus_username: str = ""
    milvus_password: str = ""
    milvus_collection: str = "rag_hybrid_index_prod_v1"
    dimension: int = 384
    request_timeout: float = 30.0


@dataclass
class AgentConfig:
    max_iterations: int = 5
    tool_top_k: int = 3
    max_new_tokens: int = 300
    temperature: float = 0.1


@dataclass
class RAGConfig:
    chunking: ChunkingConfig = field(default_factory=ChunkingConfig)
    search: SearchConfig = field(default_factory=SearchConfig)
    models: ModelConfig = field(default_factory=ModelConfig)
    generation: GenerationConfig = field(default_factory=GenerationConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    agent: AgentConfig = field(default_factory=AgentConfig)


def load_settings(path: Optional[Path] = None) -> dict:
    """
    Load the raw settings mapping from YAML.

    Returns:
        The parsed YAML as a dict, or an empty dict if the file is absent.
    """
    settings_path = Path(path) if path is not None else SETTINGS_PATH
    if not settings_path.exists():
        logger.warning("Settings file not found: %s (using defaults)", settings_path)
        return {}
    with open(settings_path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Settings file {settings_path} must contain a mapping")
    return data


def _apply_section(target: Any, section: str, values: Dict[str, Any]) -> None:
    known = {f.name for f in fields(target)}
    for key, value in values.items():
        if key not in known:
            logger.warning("Ignoring unknown setting '%s.%s'", section, key)
            continue
        setattr(target, key, value)


def load_config(path: Optional[Path] = None) -> RAGConfig:
    """Build a ``RAGConfig`` from defaults, YAML, and environment overrides."""
    config = RAGConfig()
    settings = load_settings(path)

    for section in ("chunking", "search", "models", "generation", "store", "agent"):
        values = settings.get(section) or {}
        if not isinstance(values, dict):
            raise ValueError(f"Settings section '{section}' must be a mapping")
        _apply_section(getattr(config, section), section, values)

    env_overrides = {
        "MILVUS_ADDRESS": "milvus_address",
        "MILVUS_USERNAME": "milvus_username",
        "MILVUS_PASSWORD": "milvus_password",
    }
    for env_name, attr in env_overrides.items():
        value = os.environ.get(env_name)
        if value:
            setattr(config.store, attr, value)

    logger.debug("Loaded configuration: %s", config)
    return config
