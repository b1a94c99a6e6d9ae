"""
Index subpackage -- hybrid (dense + sparse) vector storage.

Two interchangeable backends behind one interface:
    LocalVectorIndex   -- embedded FAISS store persisted to disk (default)
    MilvusVectorIndex  -- remote Milvus collection over REST v2

Both rank with the shared fusion in ``fusion.py``; pick one with
``store.backend`` in settings.yaml.
"""

import logging
from pathlib import Path

from rag_engine.index.base import IndexedEntity, SearchResult, SparseVector, VectorIndex
from rag_engine.index.fusion import FusionParams
from rag_engine.index.local_index import LocalVectorIndex
from rag_engine.index.milvus_index import MilvusVectorIndex

logger = logging.getLogger(__name__)


def create_vector_index(config) -> VectorIndex:
    """
    Build the backend named by ``config.store.backend``.

    The local backend reloads a previously saved index from
    ``store.index_dir`` when one exists.
    """
    fusion = FusionParams(
        alpha=config.search.alpha,
        score_threshold=config.search.score_threshold,
        lexical_bonus=config.search.lexical_bonus,
        lexical_penalty=config.search.lexical_penalty,
    )
    store = config.store
    backend = store.backend.lower()

    if backend == "local":
        index = LocalVectorIndex(
            dimension=store.dimension,
            fusion=fusion,
            sparse_dimension=config.search.sparse_dimension,
        )
        if (Path(store.index_dir) / "index.faiss").exists():
            index.load(store.index_dir)
        return index

    if backend == "milvus":
        index = MilvusVectorIndex(
            address=store.milvus_address,
            collection_name=store.milvus_collection,
            dimension=store.dimension,
            username=store.milvus_username,
            password=store.milvus_password,
            fusion=fusion,
            timeout=store.request_timeout,
        )
        index.connect()
        return index

    raise ValueError(f"Unknown store backend '{store.backend}' (expected 'local' or 'milvus')")
