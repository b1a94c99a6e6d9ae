"""
Hierarchical Chunker
=====================
Splits raw document text into "small-to-big" chunk pairs.

Why two granularities?
  Small chunks (~175 words) embed sharply: one topic, one vector, good
  retrieval precision.  But a small chunk on its own is often too
  little context for the generator to answer from.  So each small chunk
  is paired with a *parent*: the same sentences plus neighbouring
  sentences on both sides, up to a larger budget (~512 words).

  Index the small text, serve the parent text.

Chunking strategy:
  1. Sentence split on ``[.!?]+`` followed by whitespace.  The
     punctuation stays attached to the sentence it closes.
  2. Greedily pack consecutive sentences into small chunks until the
     next sentence would exceed ``small_chunk_size``.  A sentence longer
     than the budget becomes a chunk of its own; sentences are never cut.
  3. For every small chunk, grow a window outward one sentence at a
     time, alternating left and right, admitting a neighbour only if the
     total stays within ``parent_chunk_size``.  A side whose next
     sentence does not fit is closed for good.

Token counts are approximate: whitespace-separated words.

This regex splitter is the only tokenizer in the engine, so the same
text always produces the same chunk boundaries.
"""

import logging
import re
from dataclasses import dataclass
from typing import List, Tuple

logger = logging.getLogger(__name__)

DEFAULT_SMALL_CHUNK_SIZE = 175
DEFAULT_PARENT_CHUNK_SIZE = 512

# The capture group keeps the delimiter (punctuation + whitespace) so it
# can be re-attached to the sentence it terminates.
_SENTENCE_SPLIT_RE = re.compile(r"([.!?]+\s+)")

Span = Tuple[int, int]  # inclusive sentence index range


@dataclass
class ChunkPair:
    """
    One small chunk and its context-expanded parent.

    Attributes:
        small       : the token-budgeted sentence run that gets embedded
        parent      : ``small`` plus neighbouring sentences (served to the LLM)
        small_span  : inclusive (first, last) sentence indices of ``small``
        parent_span : inclusive (first, last) sentence indices of ``parent``
    """
    small: str
    parent: str
    small_span: Span
    parent_span: Span


def count_tokens(text: str) -> int:
    """Approximate token count: number of whitespace-separated words."""
    return len(text.split())


def split_sentences(text: str) -> List[str]:
    """
    Split text into sentences, keeping terminal punctuation.

    ``"Hi there! How are you?  Fine."`` -> ``["Hi there!", "How are you?", "Fine."]``

    A delimiter with no text before it (e.g. a document starting with
    "... ") is appended to the previous sentence, or kept as a sentence
    of its own when there is none, so no punctuation is lost.
    """
    parts = _SENTENCE_SPLIT_RE.split(text)
    sentences: List[str] = []
    for i in range(0, len(parts), 2):
        body = parts[i]
        delimiter = parts[i + 1] if i + 1 < len(parts) else ""
        if body.strip():
            sentences.append((body + delimiter).strip())
        elif delimiter.strip():
            if sentences:
                sentences[-1] = sentences[-1] + delimiter.strip()
            else:
                sentences.append(delimiter.strip())
    return sentences


def group_sentences(sentences: List[str], budget: int) -> List[Span]:
    """
    Greedily pack consecutive sentences into spans of at most ``budget``
    words.  A single sentence over budget gets a span of its own.
    """
    spans: List[Span] = []
    start = 0
    current = 0
    for i, sentence in enumerate(sentences):
        tokens = count_tokens(sentence)
        if current + tokens > budget and i > start:
            spans.append((start, i - 1))
            start = i
            current = tokens
        else:
            current += tokens
    if sentences:
        spans.append((start, len(sentences) - 1))
    return spans


class HierarchicalChunker:
    """
    Small-to-big chunker.

    Usage::

        chunker = HierarchicalChunker(small_chunk_size=175, parent_chunk_size=512)
        pairs = chunker.split(document_text)
        for pair in pairs:
            embed(pair.small); store(pair.parent)
    """

    def __init__(
        self,
        small_chunk_size: int = DEFAULT_SMALL_CHUNK_SIZE,
        parent_chunk_size: int = DEFAULT_PARENT_CHUNK_SIZE,
    ):
        if small_chunk_size <= 0:
            raise ValueError(f"small_chunk_size must be positive (got {small_chunk_size})")
        if parent_chunk_size < small_chunk_size:
            raise ValueError(
                f"parent_chunk_size ({parent_chunk_size}) must be >= "
                f"small_chunk_size ({small_chunk_size})"
            )
        self.small_chunk_size = small_chunk_size
        self.parent_chunk_size = parent_chunk_size

    def split(self, text: str) -> List[ChunkPair]:
        """
        Split ``text`` into chunk pairs.

        Returns:
            List of ChunkPair in document order.  Empty list for blank text.
        """
        if not text or not text.strip():
            logger.debug("Empty text, skipping chunking")
            return []

        sentences = split_sentences(text)
        if not sentences:
            return []
        token_counts = [count_tokens(s) for s in sentences]

        pairs: List[ChunkPair] = []
        for start, end in group_sentences(sentences, self.small_chunk_size):
            parent_start, parent_end = self._expand(start, end, token_counts)
            pairs.append(ChunkPair(
                small=" ".join(sentences[start:end + 1]).strip(),
                parent=" ".join(sentences[parent_start:parent_end + 1]).strip(),
                small_span=(start, end),
                parent_span=(parent_start, parent_end),
            ))

        logger.info(
            "Chunked %d sentences into %d small/parent pairs (small=%d, parent=%d)",
            len(sentences), len(pairs), self.small_chunk_size, self.parent_chunk_size,
        )
        return pairs

    def _expand(self, start: int, end: int, token_counts: List[int]) -> Span:
        """Grow the window [start, end] alternately left and right."""
        n = len(token_counts)
        total = sum(token_counts[start:end + 1])
        budget = self.parent_chunk_size
        left, right = start - 1, end + 1
        first, last = start, end

        while (left >= 0 or right < n) and total < budget:
            if left >= 0:
                if total + token_counts[left] <= budget:
                    total += token_counts[left]
                    first = left
                    left -= 1
                else:
                    left = -1

            if right < n and total < budget:
                if total + token_counts[right] <= budget:
                    total += token_counts[right]
                    last = right
                    right += 1
                else:
                    right = n

            if left < 0 and right >= n:
                break

        return first, last
