"""
Embedding Encoder
==================
Converts text into dense vectors with a sentence-transformers model.

Model choice:
  - Default is all-MiniLM-L6-v2 (384 dimensions, ~80 MB, fast on CPU).
  - Any sentence-transformers model works; the index dimension must
    match ``encoder.dimension``.

Design decisions:
  - Vectors are L2-normalised by default so inner product == cosine.
  - ``embed()`` is the single-text call used by the engine (the
    ``Embedder`` protocol); ``encode()`` is the batch call.
  - The encoder is constructed once by the caller and handed to the
    ``ModelRuntime``; the engine never loads models on its own.
"""

import logging
from typing import List, Optional

import numpy as np

from rag_engine.errors import ModelUnavailable

logger = logging.getLogger(__name__)

# Guard the sentence-transformers import
try:
    from sentence_transformers import SentenceTransformer

    ST_AVAILABLE = True
except ImportError:
    ST_AVAILABLE = False

DEFAULT_MODEL_NAME = "sentence-transformers/all-MiniLM-L6-v2"
EMBEDDING_DIM = 384  # output dimension of all-MiniLM-L6-v2


class EmbeddingEncoder:
    """
    Wraps sentence-transformers to produce dense embeddings from text.

    Usage:
        encoder = EmbeddingEncoder()
        vector = encoder.embed("Hello world")          # shape (384,)
        vectors = encoder.encode(["a", "b"])           # shape (2, 384)
    """

    def __init__(
        self,
        model_name: str = DEFAULT_MODEL_NAME,
        device: str = "cpu",
        cache_dir: Optional[str] = None,
    ):
        """
        Args:
            model_name : HuggingFace model identifier
            device     : "cpu" or "cuda"
            cache_dir  : where to cache downloaded model weights
        """
        if not ST_AVAILABLE:
            raise ModelUnavailable(
                "sentence-transformers is required. "
                "Install: pip install sentence-transformers"
            )
        self.model_name = model_name
        self.device = device
        logger.info("Loading embedding model: %s on %s", model_name, device)
        try:
            self.model = SentenceTransformer(
                model_name,
                device=device,
                cache_folder=cache_dir,
            )
        except Exception as exc:
            raise ModelUnavailable(
                f"Could not load embedding model '{model_name}': {exc}"
            ) from exc
        test_emb = self.model.encode(["test"], convert_to_numpy=True)
        self._dim = test_emb.shape[1]
        logger.info("Embedding dimension: %d", self._dim)

    @property
    def dimension(self) -> int:
        """Return the embedding vector dimensionality."""
        return self._dim

    def encode(
        self,
        texts: List[str],
        batch_size: int = 32,
        show_progress: bool = False,
        normalize: bool = True,
    ) -> np.ndarray:
        """
        Encode a list of text strings into dense vectors.

        Returns:
            np.ndarray of shape (len(texts), dimension), dtype float32
        """
        if not texts:
            return np.empty((0, self._dim), dtype=np.float32)

        embeddings = self.model.encode(
            texts,
            batch_size=batch_size,
            show_progress_bar=show_progress,
            convert_to_numpy=True,
            normalize_embeddings=normalize,
        )
        logger.debug("Encoded %d texts -> shape %s", len(texts), embeddings.shape)
        return embeddings.astype(np.float32)

    def embed(self, text: str) -> np.ndarray:
        """Encode one string, return a 1-D normalised vector."""
        return self.encode([text], normalize=True)[0]
