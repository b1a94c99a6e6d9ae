"""
Hybrid score fusion
====================
Shared scoring used by every ``VectorIndex`` backend.

For each candidate chunk::

    dense  = max(0, cosine(dense_query, chunk.dense))
    sparse = 0                                   if no shared index
           = min(1, log1p(Σ q[i] * d[i]) / 5)    otherwise
    bonus  = lexical_bonus (1.2) if sparse > 0 else lexical_penalty (0.8)
    hybrid = (dense * (1 - alpha) + sparse * alpha) * bonus

Candidates with ``hybrid <= score_threshold`` (0.1) are dropped.

The bonus/penalty pair rewards any keyword overlap and penalises its
total absence: a chunk that is only "semantically near" the query with
no shared word is the typical hallucination source in small corpora.
The log1p/5 normalisation maps the raw sparse dot product into [0, 1]
so it can be blended with cosine similarity.
"""

import math
from dataclasses import dataclass
from typing import Iterable, List, Tuple

import numpy as np

from rag_engine.index.base import SearchResult, SparseVector


@dataclass(frozen=True)
class FusionParams:
    alpha: float = 0.3
    score_threshold: float = 0.1
    lexical_bonus: float = 1.2
    lexical_penalty: float = 0.8

    def __post_init__(self):
        if not 0.0 <= self.alpha <= 1.0:
            raise ValueError(f"alpha must be in [0, 1] (got {self.alpha})")


def cosine_similarity(a, b) -> float:
    """Cosine similarity of two vectors; 0.0 when either has zero norm."""
    a = np.asarray(a, dtype=np.float64)
    b = np.asarray(b, dtype=np.float64)
    denom = np.linalg.norm(a) * np.linalg.norm(b)
    if denom == 0:
        return 0.0
    return float(np.dot(a, b) / denom)


def normalized_log_dot(query: SparseVector, doc: SparseVector) -> float:
    """Log-normalised sparse dot product; exactly 0 with no shared index."""
    dot = 0.0
    matches = 0
    for index, weight in query.items():
        doc_weight = doc.get(index)
        if doc_weight:
            dot += weight * doc_weight
            matches += 1
    if matches == 0:
        return 0.0
    return min(1.0, math.log1p(dot) / 5)


def hybrid_score(dense_score: float, sparse_score: float, params: FusionParams) -> float:
    dense_score = max(0.0, dense_score)
    bonus = params.lexical_bonus if sparse_score > 0 else params.lexical_penalty
    return (dense_score * (1 - params.alpha) + sparse_score * params.alpha) * bonus


def fuse(
    candidates: Iterable[Tuple[SearchResult, float, SparseVector]],
    sparse_query: SparseVector,
    params: FusionParams,
    limit: int,
) -> List[SearchResult]:
    """
    Score, filter, sort and truncate candidates.

    Args:
        candidates   : (result shell, dense cosine score, entity sparse vector)
        sparse_query : hashed query vector
        params       : fusion constants
        limit        : maximum number of results

    Returns:
        Results with ``score`` set to the hybrid score, best first.
    """
    scored: List[SearchResult] = []
    for result, dense_score, sparse_vector in candidates:
        sparse_score = normalized_log_dot(sparse_query, sparse_vector)
        score = hybrid_score(dense_score, sparse_score, params)
        if score <= params.score_threshold:
            continue
        result.score = score
        scored.append(result)

    scored.sort(key=lambda r: r.score, reverse=True)
    return scored[:limit]
