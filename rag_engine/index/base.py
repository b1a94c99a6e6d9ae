"""
Vector Index interface
=======================
Every storage backend (the local FAISS store, the remote Milvus service)
implements ``VectorIndex`` so the pipeline never needs to know which one
it is talking to.

Contract:
    insert(entities)                    -- append entities; atomic per entity
    search_hybrid(dense, sparse, limit) -- fused dense+sparse ranking
    delete_document(document_id)        -- cascade-delete a document's entities
    size                                -- number of stored entities

Backends must honour the same fusion semantics (see ``fusion.py``) and
the same degrade-gracefully rule: a backend failure during search is
logged and yields an empty result list instead of an exception.
"""

import abc
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import numpy as np

SparseVector = Dict[int, float]


@dataclass
class IndexedEntity:
    """
    One indexed small/parent chunk.

    Attributes:
        id            : unique entity id (uuid4 string)
        dense_vector  : embedding of ``small_content``, length == index dimension
        sparse_vector : hashing-trick vector of ``small_content``
        content       : the parent chunk (what retrieval serves)
        small_content : the small chunk (what was embedded)
        metadata      : document metadata; always carries ``document_id``
    """
    id: str
    dense_vector: np.ndarray
    sparse_vector: SparseVector
    content: str
    small_content: str
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def document_id(self) -> Optional[str]:
        return self.metadata.get("document_id")


@dataclass
class SearchResult:
    """A single hybrid search hit."""
    id: str
    score: float
    content: str
    small_content: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    rerank_score: Optional[float] = None

    def __repr__(self) -> str:
        preview = self.content[:80].replace("\n", " ")
        return f"SearchResult(score={self.score:.4f}, chunk='{preview}...')"


class VectorIndex(abc.ABC):
    """Backend-agnostic hybrid vector store."""

    @property
    @abc.abstractmethod
    def size(self) -> int:
        """Number of stored entities."""

    @abc.abstractmethod
    def insert(self, entities: List[IndexedEntity]) -> None:
        """Store ``entities``.  Readers never observe a partial entity."""

    @abc.abstractmethod
    def search_hybrid(
        self,
        dense_query: np.ndarray,
        sparse_query: SparseVector,
        limit: int = 50,
    ) -> List[SearchResult]:
        """Return up to ``limit`` fused results, best first."""

    @abc.abstractmethod
    def delete_document(self, document_id: str) -> List[str]:
        """Delete every entity of ``document_id``; return the deleted ids."""
