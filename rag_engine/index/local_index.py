"""
Local Vector Index (FAISS)
===========================
Embedded hybrid store: a FAISS index for the dense half plus an entity
table holding the sparse vectors, parent/small text and metadata.

Index strategy:
  ``IndexIDMap2(IndexFlatIP)`` over L2-normalised vectors.  Inner product
  on unit vectors equals cosine similarity, the flat index gives exact
  scores for every stored vector, and the ID map lets a document's
  vectors be removed when the document is deleted.

  Hybrid fusion needs the dense score of *every* entity (a chunk with a
  weak cosine but strong keyword overlap can still win), so searches ask
  FAISS for all ``ntotal`` neighbours and fuse them in Python.  That is
  O(N·d) per query, which is fine for a personal collection
  (< ~100 k chunks).

Concurrency:
  Inserts, deletes and searches are serialised by one lock.  A reader
  therefore sees a batch either entirely absent or entirely present,
  never half an entity.

Persistence:
  ``save(dir)`` writes ``index.faiss`` plus an ``entities.json`` sidecar;
  ``load(dir)`` restores both.
"""

import json
import logging
import threading
from pathlib import Path
from typing import Dict, List, Optional

import numpy as np

from rag_engine.embeddings.sparse import DIMENSION
from rag_engine.index.base import IndexedEntity, SearchResult, SparseVector, VectorIndex
from rag_engine.index.fusion import FusionParams, fuse

logger = logging.getLogger(__name__)

try:
    import faiss

    FAISS_AVAILABLE = True
except ImportError:
    FAISS_AVAILABLE = False


def _normalise_rows(matrix: np.ndarray) -> np.ndarray:
    norms = np.linalg.norm(matrix, axis=1, keepdims=True)
    norms[norms == 0] = 1.0
    return np.ascontiguousarray(matrix / norms, dtype=np.float32)


class LocalVectorIndex(VectorIndex):
    """
    FAISS-backed hybrid index.

    Usage:
        idx = LocalVectorIndex(dimension=384)
        idx.insert(entities)
        hits = idx.search_hybrid(dense_query, sparse_query, limit=50)
        idx.save("data/index")
    """

    def __init__(
        self,
        dimension: int = 384,
        fusion: Optional[FusionParams] = None,
        sparse_dimension: int = DIMENSION,
    ):
        if not FAISS_AVAILABLE:
            raise ImportError("FAISS is required. Install: pip install faiss-cpu")
        self.dimension = dimension
        self.fusion = fusion or FusionParams()
        self.sparse_dimension = sparse_dimension
        self._index = faiss.IndexIDMap2(faiss.IndexFlatIP(dimension))
        # faiss int64 id -> entity record (everything except the dense vector)
        self._entities: Dict[int, Dict] = {}
        self._next_id = 0
        self._lock = threading.RLock()

    @property
    def size(self) -> int:
        return self._index.ntotal

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def _validate(self, entity: IndexedEntity) -> np.ndarray:
        vector = np.asarray(entity.dense_vector, dtype=np.float32)
        if vector.ndim != 1 or vector.shape[0] != self.dimension:
            raise ValueError(
                f"Entity {entity.id}: dense vector shape {vector.shape} does not "
                f"match index dimension {self.dimension}"
            )
        for index in entity.sparse_vector:
            if not 0 <= int(index) < self.sparse_dimension:
                raise ValueError(
                    f"Entity {entity.id}: sparse index {index} outside "
                    f"[0, {self.sparse_dimension})"
                )
        return vector

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def insert(self, entities: List[IndexedEntity]) -> None:
        if not entities:
            return
        vectors = np.stack([self._validate(e) for e in entities])
        matrix = _normalise_rows(vectors)

        with self._lock:
            ids = np.arange(self._next_id, self._next_id + len(entities), dtype=np.int64)
            self._index.add_with_ids(matrix, ids)
            for faiss_id, entity in zip(ids.tolist(), entities):
                self._entities[faiss_id] = {
                    "id": entity.id,
                    "sparse_vector": {int(k): float(v) for k, v in entity.sparse_vector.items()},
                    "content": entity.content,
                    "small_content": entity.small_content,
                    "metadata": dict(entity.metadata),
                }
            self._next_id += len(entities)
            total = self._index.ntotal

        logger.info("Inserted %d entities (total: %d)", len(entities), total)

    def delete_document(self, document_id: str) -> List[str]:
        with self._lock:
            doomed = [
                fid for fid, record in self._entities.items()
                if record["metadata"].get("document_id") == document_id
            ]
            if not doomed:
                return []
            self._index.remove_ids(np.array(doomed, dtype=np.int64))
            removed = [self._entities.pop(fid)["id"] for fid in doomed]

        logger.info("Deleted %d entities of document %s", len(removed), document_id)
        return removed

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def search_hybrid(
        self,
        dense_query: np.ndarray,
        sparse_query: SparseVector,
        limit: int = 50,
    ) -> List[SearchResult]:
        query = np.asarray(dense_query, dtype=np.float32).reshape(1, -1)
        if query.shape[1] != self.dimension:
            raise ValueError(
                f"Query dimension {query.shape[1]} does not match index "
                f"dimension {self.dimension}"
            )
        query = _normalise_rows(query)

        with self._lock:
            total = self._index.ntotal
            if total == 0:
                logger.warning("Search called on empty index")
                return []
            try:
                scores, ids = self._index.search(query, total)
            except RuntimeError as exc:
                logger.error("FAISS search failed, treating as empty: %s", exc)
                return []
            candidates = []
            for score, fid in zip(scores[0], ids[0]):
                if fid < 0:
                    continue  # FAISS pads missing results with -1
                record = self._entities[int(fid)]
                shell = SearchResult(
                    id=record["id"],
                    score=0.0,
                    content=record["content"],
                    small_content=record["small_content"],
                    metadata=dict(record["metadata"]),
                )
                candidates.append((shell, float(score), record["sparse_vector"]))

        results = fuse(candidates, sparse_query, self.fusion, limit)
        logger.info(
            "Hybrid search over %d chunks: %d matches, top score %s",
            total,
            len(results),
            f"{results[0].score:.4f}" if results else "n/a",
        )
        return results

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save(self, directory: str) -> None:
        """
        Save the FAISS index and entity sidecar to disk.

        Creates two files:
          - <directory>/index.faiss
          - <directory>/entities.json
        """
        out_dir = Path(directory)
        out_dir.mkdir(parents=True, exist_ok=True)

        with self._lock:
            faiss.write_index(self._index, str(out_dir / "index.faiss"))
            payload = {
                "dimension": self.dimension,
                "sparse_dimension": self.sparse_dimension,
                "next_id": self._next_id,
                "entities": [
                    {**record, "faiss_id": fid}
                    for fid, record in self._entities.items()
                ],
            }
            with open(out_dir / "entities.json", "w", encoding="utf-8") as fh:
                json.dump(payload, fh, ensure_ascii=False)

        logger.info("Saved index (%d vectors) to %s", self.size, out_dir)

    def load(self, directory: str) -> None:
        """Load a previously saved index and entity sidecar."""
        in_dir = Path(directory)
        index_path = in_dir / "index.faiss"
        meta_path = in_dir / "entities.json"

        if not index_path.exists():
            raise FileNotFoundError(f"Index file not found: {index_path}")
        if not meta_path.exists():
            raise FileNotFoundError(f"Entity file not found: {meta_path}")

        with open(meta_path, "r", encoding="utf-8") as fh:
            payload = json.load(fh)

        with self._lock:
            self._index = faiss.read_index(str(index_path))
            self.dimension = self._index.d
            self.sparse_dimension = payload.get("sparse_dimension", DIMENSION)
            self._next_id = payload.get("next_id", 0)
            self._entities = {}
            for record in payload.get("entities", []):
                fid = int(record.pop("faiss_id"))
                # JSON object keys are strings; sparse indices are ints
                record["sparse_vector"] = {
                    int(k): float(v) for k, v in record["sparse_vector"].items()
                }
                self._entities[fid] = record

        logger.info(
            "Loaded index: %d vectors, dim=%d from %s",
            self.size,
            self.dimension,
            in_dir,
        )
