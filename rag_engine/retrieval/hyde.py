"""
HyDE (Hypothetical Document Embeddings)
========================================
Expands a query into a hypothetical answer before dense retrieval.

A short question and the passage that answers it look quite different to
an embedding model.  A generated answer, even a partly wrong one, uses
the vocabulary and shape of a real answer passage and therefore lands
much closer to it in embedding space.

Only the dense half of the search uses the hypothetical text.  The
sparse half still encodes the raw query, so exact keywords typed by the
user are never diluted by generated prose.
"""

import logging

from rag_engine.llm.prompts import HYDE_PROMPT

logger = logging.getLogger(__name__)


class HypotheticalDocumentGenerator:
    def __init__(self, generator, max_new_tokens: int = 128, temperature: float = 0.7):
        self.generator = generator
        self.max_new_tokens = max_new_tokens
        self.temperature = temperature

    def expand(self, query: str) -> str:
        """Return a hypothetical answer to ``query`` (the query itself if blank)."""
        text = self.generator.generate(
            HYDE_PROMPT.format(query=query),
            max_new_tokens=self.max_new_tokens,
            temperature=self.temperature,
            do_sample=True,
        )
        text = (text or "").strip()
        if not text:
            logger.warning("HyDE produced no text, embedding the raw query instead")
            return query
        logger.debug("HyDE document: %s...", text[:80])
        return text
