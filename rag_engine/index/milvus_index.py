"""
Milvus Vector Index (REST v2)
==============================
Remote hybrid store backed by a Milvus server, spoken to over its
RESTful API v2 with plain ``urllib`` (the same way the Ollama client
talks to its server, so no gRPC stack is needed).

Collection schema (created by ``connect()`` when missing):
  id             VARCHAR primary key
  dense_vector   FLOAT_VECTOR(dimension), COSINE metric
  sparse_vector  SPARSE_FLOAT_VECTOR
  content        VARCHAR (parent chunk)
  small_content  VARCHAR (small chunk)
  metadata       JSON

Search:
  Two searches run per query: dense neighbours (COSINE) and sparse
  neighbours (IP), both returning the stored sparse vectors. Their union
  is fused client-side with ``fusion.fuse`` so this backend ranks like
  the local one. Sparse-only hits get their cosine computed locally from
  the stored dense vector.

Failure handling:
  Every transport, HTTP or API error is raised as ``StoreBackendError``.
  ``search_hybrid`` catches it, and malformed hits, logs them and returns
  ``[]`` so a broken server degrades into "nothing retrieved".
"""

import json
import logging
import urllib.error
import urllib.request
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from rag_engine.embeddings.sparse import DIMENSION
from rag_engine.errors import StoreBackendError
from rag_engine.index.base import IndexedEntity, SearchResult, SparseVector, VectorIndex
from rag_engine.index.fusion import FusionParams, cosine_similarity, fuse

logger = logging.getLogger(__name__)

DEFAULT_COLLECTION = "rag_hybrid_index_prod_v1"
OUTPUT_FIELDS = ["id", "content", "small_content", "metadata", "sparse_vector"]


def _quote(value: str) -> str:
    return json.dumps(value)


class MilvusVectorIndex(VectorIndex):
    """
    Hybrid index stored in a Milvus collection.

    Usage:
        idx = MilvusVectorIndex("localhost:19530", dimension=384)
        idx.connect()
        idx.insert(entities)
        hits = idx.search_hybrid(dense_query, sparse_query)
    """

    def __init__(
        self,
        address: str = "localhost:19530",
        collection_name: str = DEFAULT_COLLECTION,
        dimension: int = 384,
        username: str = "",
        password: str = "",
        fusion: Optional[FusionParams] = None,
        timeout: float = 30.0,
    ):
        address = address.rstrip("/")
        if not address.startswith("http"):
            address = f"http://{address}"
        self.base_url = address
        self.collection_name = collection_name
        self.dimension = dimension
        self.fusion = fusion or FusionParams()
        self.timeout = timeout
        self._token = f"{username}:{password}" if username else ""

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _request(self, endpoint: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self.base_url}/v2/vectordb{endpoint}"
        headers = {"Content-Type": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        req = urllib.request.Request(
            url,
            data=json.dumps(payload).encode("utf-8"),
            headers=headers,
            method="POST",
        )
        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as resp:
                result = json.loads(resp.read().decode("utf-8"))
        except urllib.error.HTTPError as exc:
            raise StoreBackendError(f"Milvus HTTP {exc.code} on {endpoint}: {exc.reason}") from exc
        except urllib.error.URLError as exc:
            raise StoreBackendError(f"Milvus not reachable at {self.base_url}: {exc.reason}") from exc
        except (OSError, ValueError) as exc:
            raise StoreBackendError(f"Milvus request {endpoint} failed: {exc}") from exc

        code = result.get("code", 0)
        if code != 0:
            raise StoreBackendError(
                f"Milvus API error {code} on {endpoint}: {result.get('message', '')}"
            )
        return result

    # ------------------------------------------------------------------
    # Collection management
    # ------------------------------------------------------------------

    def connect(self) -> None:
        """Make sure the collection exists, creating it when missing."""
        result = self._request("/collections/has", {"collectionName": self.collection_name})
        if result.get("data", {}).get("has"):
            logger.info("Using Milvus collection '%s'", self.collection_name)
            return

        logger.info("Creating Milvus collection '%s' (dim=%d)", self.collection_name, self.dimension)
        self._request("/collections/create", {
            "collectionName": self.collection_name,
            "schema": {
                "autoId": False,
                "enableDynamicField": False,
                "fields": [
                    {"fieldName": "id", "dataType": "VarChar", "isPrimary": True,
                     "elementTypeParams": {"max_length": 64}},
                    {"fieldName": "dense_vector", "dataType": "FloatVector",
                     "elementTypeParams": {"dim": self.dimension}},
                    {"fieldName": "sparse_vector", "dataType": "SparseFloatVector"},
                    {"fieldName": "content", "dataType": "VarChar",
                     "elementTypeParams": {"max_length": 65535}},
                    {"fieldName": "small_content", "dataType": "VarChar",
                     "elementTypeParams": {"max_length": 65535}},
                    {"fieldName": "metadata", "dataType": "JSON"},
                ],
            },
            "indexParams": [
                {"fieldName": "dense_vector", "indexName": "dense_idx",
                 "metricType": "COSINE", "indexType": "AUTOINDEX"},
                {"fieldName": "sparse_vector", "indexName": "sparse_idx",
                 "metricType": "IP", "indexType": "SPARSE_INVERTED_INDEX"},
            ],
        })

    @property
    def size(self) -> int:
        result = self._request("/collections/get_stats", {"collectionName": self.collection_name})
        return int(result.get("data", {}).get("rowCount", 0))

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _row(self, entity: IndexedEntity) -> Dict[str, Any]:
        vector = np.asarray(entity.dense_vector, dtype=np.float32)
        if vector.ndim != 1 or vector.shape[0] != self.dimension:
            raise ValueError(
                f"Entity {entity.id}: dense vector shape {vector.shape} does not "
                f"match collection dimension {self.dimension}"
            )
        for index in entity.sparse_vector:
            if not 0 <= int(index) < DIMENSION:
                raise ValueError(f"Entity {entity.id}: sparse index {index} out of range")
        return {
            "id": entity.id,
            "dense_vector": vector.tolist(),
            "sparse_vector": {str(k): float(v) for k, v in entity.sparse_vector.items()},
            "content": entity.content,
            "small_content": entity.small_content,
            "metadata": entity.metadata,
        }

    def insert(self, entities: List[IndexedEntity]) -> None:
        if not entities:
            return
        rows = [self._row(e) for e in entities]
        result = self._request("/entities/insert", {
            "collectionName": self.collection_name,
            "data": rows,
        })
        logger.info(
            "Inserted %d entities into '%s'",
            result.get("data", {}).get("insertCount", len(rows)),
            self.collection_name,
        )

    def delete_document(self, document_id: str) -> List[str]:
        doc_filter = f'metadata["document_id"] == {_quote(document_id)}'
        found = self._request("/entities/query", {
            "collectionName": self.collection_name,
            "filter": doc_filter,
            "outputFields": ["id"],
        })
        ids = [row["id"] for row in found.get("data", [])]
        if not ids:
            return []
        self._request("/entities/delete", {
            "collectionName": self.collection_name,
            "filter": doc_filter,
        })
        logger.info("Deleted %d entities of document %s", len(ids), document_id)
        return ids

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def _search(self, field: str, query: Any, metric: str, limit: int, output_fields: List[str]):
        result = self._request("/entities/search", {
            "collectionName": self.collection_name,
            "data": [query],
            "annsField": field,
            "limit": limit,
            "outputFields": output_fields,
            "searchParams": {"metricType": metric},
        })
        return result.get("data") or []

    @staticmethod
    def _shell(hit: Dict[str, Any]) -> Tuple[SearchResult, SparseVector]:
        metadata = hit.get("metadata") or {}
        if isinstance(metadata, str):
            metadata = json.loads(metadata)
        sparse = {int(k): float(v) for k, v in (hit.get("sparse_vector") or {}).items()}
        shell = SearchResult(
            id=str(hit["id"]),
            score=0.0,
            content=hit.get("content", ""),
            small_content=hit.get("small_content", ""),
            metadata=metadata,
        )
        return shell, sparse

    def _collect(
        self, vector: np.ndarray, sparse_query: SparseVector, limit: int,
    ) -> Dict[str, Tuple[SearchResult, float, SparseVector]]:
        """Union of the dense (COSINE) and sparse (IP) neighbours, keyed by id."""
        candidates: Dict[str, Tuple[SearchResult, float, SparseVector]] = {}
        for hit in self._search("dense_vector", vector.tolist(), "COSINE", limit, OUTPUT_FIELDS):
            shell, sparse = self._shell(hit)
            candidates[shell.id] = (shell, float(hit.get("distance", 0.0)), sparse)

        if not sparse_query:
            return candidates
        sparse_data = {str(k): float(v) for k, v in sparse_query.items()}
        lexical = self._search(
            "sparse_vector", sparse_data, "IP", limit, OUTPUT_FIELDS + ["dense_vector"],
        )
        for hit in lexical:
            shell, sparse = self._shell(hit)
            if shell.id in candidates:
                continue
            # IP distance is not a cosine; score the stored dense vector here.
            stored = hit.get("dense_vector")
            dense_score = cosine_similarity(vector, stored) if stored else 0.0
            candidates[shell.id] = (shell, dense_score, sparse)
        return candidates

    def search_hybrid(
        self,
        dense_query: np.ndarray,
        sparse_query: SparseVector,
        limit: int = 50,
    ) -> List[SearchResult]:
        vector = np.asarray(dense_query, dtype=np.float32).ravel()
        try:
            candidates = self._collect(vector, sparse_query, limit)
        except StoreBackendError as exc:
            logger.error("Hybrid search failed, treating as empty: %s", exc)
            return []
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            logger.error("Malformed Milvus search reply, treating as empty: %r", exc)
            return []

        results = fuse(candidates.values(), sparse_query, self.fusion, limit)
        logger.info("Milvus hybrid search: %d candidates, %d matches", len(candidates), len(results))
        return results
