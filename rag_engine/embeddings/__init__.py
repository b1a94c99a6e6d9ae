"""
Embeddings subpackage -- text-to-vector encoding.

    EmbeddingEncoder  -- dense vectors via sentence-transformers
    SparseVectorizer  -- hashed term-frequency vectors (no model needed)
"""

from rag_engine.embeddings.encoder import EmbeddingEncoder
from rag_engine.embeddings.sparse import SparseVectorizer
