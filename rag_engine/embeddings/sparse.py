"""
Sparse Vectorizer
==================
Deterministic bag-of-words encoder using the hashing trick.

Why not BM25 directly?
  BM25 needs corpus statistics (document frequencies, average length)
  that change every time a document is added.  A hashed term-frequency
  vector needs nothing but the text itself, so each chunk can be encoded
  once at index time and never touched again, and any backend that can
  store a ``{index: weight}`` map can hold it.

Encoding:
  1. Lowercase and split on word boundaries.
  2. Drop tokens shorter than 3 characters and stop words (English +
     Spanish).
  3. Count term frequency per surviving token.
  4. Hash each token with 32-bit FNV-1a modulo ``DIMENSION`` and add
     ``log(1 + tf)`` at that index.  Hash collisions simply add up.

The log saturation keeps a word repeated twenty times from drowning out
everything else in the chunk.
"""

import logging
import math
import re
from collections import Counter
from typing import Dict

logger = logging.getLogger(__name__)

DIMENSION = 32000   # roughly a BERT vocabulary; keeps collisions rare

FNV_OFFSET_BASIS = 0x811C9DC5
FNV_PRIME = 0x01000193

MIN_TOKEN_LENGTH = 3

STOP_WORDS = frozenset({
    # English
    "the", "is", "at", "which", "on", "a", "an", "and", "or", "of", "to",
    "in", "for", "with", "as", "by", "it", "that", "this",
    # Spanish
    "el", "la", "los", "las", "un", "una", "unos", "unas", "y", "o", "de",
    "en", "para", "con", "por", "como", "que", "es", "su",
})

_WORD_RE = re.compile(r"\w+")


def fnv1a_32(token: str) -> int:
    """
    32-bit FNV-1a hash over the UTF-16 code units of ``token`` (not its
    UTF-8 bytes), one code unit per round.
    """
    data = token.encode("utf-16-le")
    h = FNV_OFFSET_BASIS
    for i in range(0, len(data), 2):
        h ^= int.from_bytes(data[i:i + 2], "little")
        h = (h * FNV_PRIME) & 0xFFFFFFFF
    return h


def tokenize(text: str):
    """Lowercased word tokens that survive the length and stop-word filters."""
    return [
        token for token in _WORD_RE.findall(text.lower())
        if len(token) >= MIN_TOKEN_LENGTH and token not in STOP_WORDS
    ]


class SparseVectorizer:
    """
    Hashing-trick sparse encoder.

    Usage::

        vectorizer = SparseVectorizer()
        vec = vectorizer.encode("Inled Group is a lighting company")
        # {5120: 0.693..., 17002: 0.693..., ...}
    """

    def __init__(self, dimension: int = DIMENSION):
        if dimension <= 0:
            raise ValueError(f"dimension must be positive (got {dimension})")
        self.dimension = dimension

    def encode(self, text: str) -> Dict[int, float]:
        """Encode ``text`` into a ``{index: weight}`` map with indices in [0, dimension)."""
        vector: Dict[int, float] = {}
        if not text:
            return vector

        tf = Counter(tokenize(text))
        for token, count in tf.items():
            index = fnv1a_32(token) % self.dimension
            vector[index] = vector.get(index, 0.0) + math.log(1 + count)

        logger.debug("Sparse-encoded %d terms into %d indices", len(tf), len(vector))
        return vector
