"""
Ingestion subpackage -- turning extracted document text into chunks.

    HierarchicalChunker  -- small-to-big chunk pairs for hybrid retrieval
    split_sentences      -- the shared regex sentence splitter
    group_sentences      -- greedy sentence packing (also used by the agent)
"""

from rag_engine.ingestion.chunker import (
    ChunkPair,
    HierarchicalChunker,
    group_sentences,
    split_sentences,
)
