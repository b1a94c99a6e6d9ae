"""
RAG Engine -- root package.

Hybrid retrieval-and-reasoning over a locally indexed document collection:
    ingestion  -> split text into small-to-big chunk pairs
    embeddings -> dense (sentence-transformers) and sparse (hashing) vectors
    index      -> hybrid vector store (FAISS locally, or Milvus)
    retrieval  -> classify, HyDE, search, rerank, repack, compress
    agent      -> iterative tool-using retrieval agent
    feedback   -> user relevance votes as score boosts
    llm        -> generation via Ollama
"""

__version__ = "0.1.0"
