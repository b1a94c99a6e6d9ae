"""
Context Compressor
===================
Abstractive compression (RECOMP style) of the repacked context.

Ten parent chunks easily exceed what a 7B model answers well from.  The
generator is asked to keep only what bears on the query and drop
repetition between overlapping parents.

Compression is an optimisation, not a correctness step: if the model is
unreachable or returns nothing, the raw context is hard-truncated to
``fallback_chars`` and the pipeline carries on.
"""

import logging

from rag_engine.errors import CompressionFailure
from rag_engine.llm.prompts import COMPRESS_PROMPT

logger = logging.getLogger(__name__)


class ContextCompressor:
    def __init__(
        self,
        generator,
        max_new_tokens: int = 512,
        temperature: float = 0.2,
        repetition_penalty: float = 1.2,
        fallback_chars: int = 3000,
    ):
        self.generator = generator
        self.max_new_tokens = max_new_tokens
        self.temperature = temperature
        self.repetition_penalty = repetition_penalty
        self.fallback_chars = fallback_chars

    def _summarise(self, context: str, query: str) -> str:
        output = self.generator.generate(
            COMPRESS_PROMPT.format(query=query, context=context),
            max_new_tokens=self.max_new_tokens,
            temperature=self.temperature,
            do_sample=True,
            repetition_penalty=self.repetition_penalty,
        )
        summary = (output or "").strip()
        if not summary:
            raise CompressionFailure("Compressor returned an empty summary")
        return summary

    def compress(self, context: str, query: str) -> str:
        """Compressed context, or the first ``fallback_chars`` of it on failure."""
        try:
            summary = self._summarise(context, query)
        except Exception as exc:
            logger.warning("Compression failed, truncating context: %s", exc)
            return context[: self.fallback_chars]

        logger.info("Compressed context %d -> %d chars", len(context), len(summary))
        return summary
