"""
Query Classifier
=================
Decides whether a query needs retrieval at all.

"Hello", "thanks" or "how are you?" should be answered directly; running
HyDE, hybrid search, reranking and compression for them wastes several
model calls and drags random chunks into a chit-chat reply.

Method (prototype centroids):
  1. Embed a handful of informational exemplars and a handful of
     conversational exemplars (English + Spanish) once, and average each
     set into a centroid.
  2. Embed the query and compare it to both centroids by cosine.
  3. Retrieval is needed when the informational centroid is closer.

A question-word prefix (who/what/how/define/..., quién/qué/cómo/...)
overrides the comparison and forces retrieval.

The classifier never raises: if the embedding model fails, the query is
treated as conversational and answered directly.
"""

import logging
import re
from typing import List, Optional, Sequence

import numpy as np

from rag_engine.index.fusion import cosine_similarity

logger = logging.getLogger(__name__)

INFORMATIONAL_EXEMPLARS = (
    "What is the capital of France?",
    "Explain the theory of relativity.",
    "Who wrote Don Quixote?",
    "How does photosynthesis work?",
    "Define machine learning.",
    "¿Cuál es la capital de Francia?",
    "Explica la teoría de la relatividad.",
    "¿Quién escribió Don Quijote?",
)

CONVERSATIONAL_EXEMPLARS = (
    "Hello",
    "Hi",
    "Good morning",
    "How are you?",
    "Nice to meet you",
    "Hola",
    "Buenos días",
    "¿Cómo estás?",
    "Gracias",
    "Adiós",
)

QUESTION_PREFIX_RE = re.compile(
    r"^\s*¿?\s*(who|what|where|when|why|how|define|explain|"
    r"quién|qué|dónde|cuándo|por qué|cómo|explica)\b",
    re.IGNORECASE,
)


def compute_centroid(vectors: Sequence[np.ndarray]) -> np.ndarray:
    """Component-wise mean of ``vectors``."""
    return np.mean(np.stack([np.asarray(v, dtype=np.float32) for v in vectors]), axis=0)


class QueryClassifier:
    """
    Usage:
        classifier = QueryClassifier(runtime.require("classifier"))
        classifier.is_retrieval_needed("Hola")                # False
        classifier.is_retrieval_needed("What is Inled Group?")  # True
    """

    def __init__(
        self,
        embedder,
        informational: Sequence[str] = INFORMATIONAL_EXEMPLARS,
        conversational: Sequence[str] = CONVERSATIONAL_EXEMPLARS,
    ):
        self.embedder = embedder
        self.informational = tuple(informational)
        self.conversational = tuple(conversational)
        self._informational_centroid: Optional[np.ndarray] = None
        self._conversational_centroid: Optional[np.ndarray] = None

    @property
    def initialized(self) -> bool:
        return self._informational_centroid is not None

    def _embed_all(self, texts: List[str]) -> List[np.ndarray]:
        return [self.embedder.embed(t) for t in texts]

    def initialize(self) -> None:
        """Embed the exemplars and fix both centroids. Runs at most once."""
        if self.initialized:
            return
        info = compute_centroid(self._embed_all(list(self.informational)))
        chat = compute_centroid(self._embed_all(list(self.conversational)))
        info.setflags(write=False)
        chat.setflags(write=False)
        self._conversational_centroid = chat
        self._informational_centroid = info
        logger.info(
            "Query classifier initialised (%d informational, %d conversational exemplars)",
            len(self.informational),
            len(self.conversational),
        )

    def is_retrieval_needed(self, query: str) -> bool:
        if QUESTION_PREFIX_RE.match(query):
            logger.debug("Question-word override: retrieval needed for '%s'", query[:60])
            return True

        try:
            self.initialize()
            query_vec = self.embedder.embed(query)
            sim_info = cosine_similarity(query_vec, self._informational_centroid)
            sim_chat = cosine_similarity(query_vec, self._conversational_centroid)
        except Exception as exc:
            logger.warning("Query classification failed, answering directly: %s", exc)
            return False

        logger.debug(
            "Classifier similarities for '%s': informational=%.3f conversational=%.3f",
            query[:60],
            sim_info,
            sim_chat,
        )
        return sim_info > sim_chat
