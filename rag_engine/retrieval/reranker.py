"""
Reranker and Repacker
======================
Second-stage precision for the hybrid search results.

Two-stage retrieval:
  1. Recall: hybrid search returns up to ``top_k`` (50) candidates cheaply.
  2. Precision: each candidate is re-scored here, one model call per
     candidate, and only the best ``context_k`` survive.

Scoring per candidate::

    base = fusion score
    base *= 2.0                                  if the whole query phrase
                                                 appears in the content
    base *= 1 + (matched / query_words) * 0.5    otherwise, matched = query
                                                 words (> 3 chars) present
    model = 1.0 if the verdict contains "true"/"yes" else 0.05
    rerank_score = base * model

The verdict comes from a monoT5-style prompt
``"Query: {q} Document: {d} Relevant:"`` on the generator (or a
dedicated reranker model).  It is a crude binary signal, so the lexical
boosts keep an ordering among documents with the same verdict.

A model failure on one document scores that document 0; the batch goes on.
An unavailable model is fatal and propagates.

Repacking:
  ``reverse_repack`` puts the best result *last*.  Models attend most
  reliably to the end of a long prompt ("lost in the middle"), and the
  end is where the question sits.
"""

import logging
import re
from typing import List, Optional

from rag_engine.cancellation import CancellationToken, checkpoint
from rag_engine.errors import MalformedModelOutput, ModelUnavailable
from rag_engine.index.base import SearchResult
from rag_engine.llm.prompts import RERANK_PROMPT

logger = logging.getLogger(__name__)

PHRASE_BOOST = 2.0
WORD_BOOST = 0.5
MIN_WORD_LENGTH = 4          # query words must be longer than 3 characters
RELEVANT_SCORE = 1.0
IRRELEVANT_SCORE = 0.05

_VERDICT_RE = re.compile(r"\b(true|yes)\b", re.IGNORECASE)
_PUNCT = "?!.,;:¿¡\"'()"


def lexical_boost(query: str, content: str, base: float) -> float:
    """Apply the phrase / word-overlap boosts to ``base``."""
    query_lower = query.lower().strip()
    content_lower = content.lower()
    if query_lower and query_lower in content_lower:
        return base * PHRASE_BOOST

    words = [w.strip(_PUNCT) for w in query_lower.split()]
    words = [w for w in words if w]
    if not words:
        return base
    matched = sum(1 for w in words if len(w) >= MIN_WORD_LENGTH and w in content_lower)
    return base * (1 + (matched / len(words)) * WORD_BOOST)


def reverse_repack(results: List[SearchResult]) -> List[SearchResult]:
    """Return a reversed copy: best result last. Applying it twice is a no-op."""
    return list(reversed(results))


class Reranker:
    """
    Usage:
        reranker = Reranker(runtime.require("reranker"))
        ranked = reranker.rerank(query, hits, top_k=50)
    """

    def __init__(self, generator, max_new_tokens: int = 2, temperature: float = 0.1):
        self.generator = generator
        self.max_new_tokens = max_new_tokens
        self.temperature = temperature

    def _model_score(self, query: str, document: str) -> float:
        output = self.generator.generate(
            RERANK_PROMPT.format(query=query, document=document),
            max_new_tokens=self.max_new_tokens,
            temperature=self.temperature,
            do_sample=False,
        )
        if not isinstance(output, str):
            raise MalformedModelOutput("Reranker returned no text", raw_output=repr(output))
        return RELEVANT_SCORE if _VERDICT_RE.search(output) else IRRELEVANT_SCORE

    def rerank(
        self,
        query: str,
        results: List[SearchResult],
        top_k: int = 50,
        cancel: Optional[CancellationToken] = None,
    ) -> List[SearchResult]:
        """
        Re-score the first ``top_k`` results.

        Returns:
            Those results sorted by ``rerank_score`` (ties: fusion score,
            then original order).  Results past ``top_k`` are dropped.
        """
        candidates = results[:top_k]
        for result in candidates:
            checkpoint(cancel, "rerank")
            base = lexical_boost(query, result.content, result.score)
            try:
                model_score = self._model_score(query, result.content)
            except ModelUnavailable:
                raise
            except Exception as exc:
                logger.warning("Reranking failed for %s, scoring 0: %s", result.id, exc)
                result.rerank_score = 0.0
                continue
            result.rerank_score = base * model_score

        ranked = sorted(candidates, key=lambda r: (-r.rerank_score, -r.score))
        logger.info(
            "Reranked %d candidates, top rerank score %s",
            len(ranked),
            f"{ranked[0].rerank_score:.4f}" if ranked else "n/a",
        )
        return ranked
