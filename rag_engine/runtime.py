"""
Model Runtime
==============
Explicit holder for the models the engine talks to.

The runtime is built once by the caller and handed to the pipeline and
the agent; nothing inside the engine loads a model on its own.  Roles:

    embedder    -- Embedder, dense vectors for chunks and queries (required)
    generator   -- Generator, HyDE / compression / agent / answers (required)
    reranker    -- Generator used for relevance verdicts (falls back to generator)
    classifier  -- Embedder used by the query classifier (falls back to embedder)

``require(role)`` raises ``ModelUnavailable`` when a role is empty, so a
missing model surfaces as one well-defined error instead of an
``AttributeError`` deep inside a stage.
"""

import logging
from typing import Any, Optional, Protocol

import numpy as np

from rag_engine.errors import ModelUnavailable

logger = logging.getLogger(__name__)

ROLES = ("embedder", "generator", "reranker", "classifier")


class Embedder(Protocol):
    def embed(self, text: str) -> np.ndarray:
        ...


class Generator(Protocol):
    def generate(
        self,
        prompt: str,
        max_new_tokens: int = 256,
        temperature: float = 0.3,
        do_sample: bool = True,
        **kwargs: Any,
    ) -> str:
        ...


class ModelRuntime:
    """
    Usage:
        runtime = ModelRuntime.from_config(load_config())
        vector = runtime.require("embedder").embed("hello")
    """

    def __init__(
        self,
        embedder: Optional[Embedder] = None,
        generator: Optional[Generator] = None,
        reranker: Optional[Generator] = None,
        classifier: Optional[Embedder] = None,
    ):
        self.embedder = embedder
        self.generator = generator
        self.reranker = reranker
        self.classifier = classifier

    def require(self, role: str):
        """Return the model for ``role`` or raise ``ModelUnavailable``."""
        if role not in ROLES:
            raise ValueError(f"Unknown model role '{role}' (expected one of {ROLES})")
        model = getattr(self, role)
        if model is None and role == "reranker":
            model = self.generator
        elif model is None and role == "classifier":
            model = self.embedder
        if model is None:
            raise ModelUnavailable(f"No {role} model configured")
        return model

    @classmethod
    def from_config(cls, config) -> "ModelRuntime":
        """
        Build the default runtime: a sentence-transformers embedder and an
        Ollama generator (plus a separate Ollama reranker when configured).
        """
        from rag_engine.embeddings.encoder import EmbeddingEncoder
        from rag_engine.llm.ollama_client import OllamaClient

        models = config.models
        embedder = EmbeddingEncoder(
            model_name=models.embedding_model,
            device=models.device,
            cache_dir=models.cache_dir,
        )
        generator = OllamaClient(
            base_url=models.ollama_url,
            model=models.generator_model,
            timeout=models.request_timeout,
        )
        reranker = None
        if models.reranker_model:
            reranker = OllamaClient(
                base_url=models.ollama_url,
                model=models.reranker_model,
                timeout=models.request_timeout,
            )
        logger.info(
            "Model runtime ready: embedder=%s generator=%s reranker=%s",
            models.embedding_model,
            models.generator_model,
            models.reranker_model or models.generator_model,
        )
        return cls(embedder=embedder, generator=generator, reranker=reranker)
