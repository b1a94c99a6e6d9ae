"""Tests for the FAISS-backed local hybrid index."""

import threading
import uuid

import numpy as np
import pytest

from helpers import FAKE_DIM, HashingEmbedder
from rag_engine.config import RAGConfig
from rag_engine.embeddings.sparse import SparseVectorizer
from rag_engine.index import create_vector_index
from rag_engine.index.base import IndexedEntity
from rag_engine.index.local_index import LocalVectorIndex

EMBEDDER = HashingEmbedder()
VECTORIZER = SparseVectorizer()


def make_entity(text, document_id="doc-1", **metadata):
    return IndexedEntity(
        id=str(uuid.uuid4()),
        dense_vector=EMBEDDER.embed(text),
        sparse_vector=VECTORIZER.encode(text),
        content=f"{text} (parent)",
        small_content=text,
        metadata={"document_id": document_id, **metadata},
    )


def search(index, text, limit=50):
    return index.search_hybrid(EMBEDDER.embed(text), VECTORIZER.encode(text), limit=limit)


class TestInsertAndSearch:
    def test_empty_index_returns_nothing(self, local_index):
        assert local_index.size == 0
        assert search(local_index, "anything") == []

    def test_exact_match_ranks_first(self, local_index):
        local_index.insert([
            make_entity("Inled Group builds LED luminaires"),
            make_entity("Paella needs saffron and rice"),
            make_entity("Chlorophyll makes leaves green"),
        ])
        results = search(local_index, "Inled Group builds LED luminaires")
        assert results[0].small_content == "Inled Group builds LED luminaires"
        assert results[0].content.endswith("(parent)")
        assert results[0].metadata["document_id"] == "doc-1"
        # unit vectors, full keyword overlap: (1 * 0.7 + sparse * 0.3) * 1.2
        assert results[0].score > 0.84

    def test_results_sorted_and_above_threshold(self, local_index):
        local_index.insert([make_entity(f"lamp model number {i} warehouse") for i in range(8)])
        results = search(local_index, "warehouse lamp")
        assert results
        scores = [r.score for r in results]
        assert scores == sorted(scores, reverse=True)
        assert all(s > 0.1 for s in scores)

    def test_limit(self, local_index):
        local_index.insert([make_entity(f"lamp {i}") for i in range(10)])
        assert len(search(local_index, "lamp", limit=3)) == 3

    def test_orthogonal_query_without_keywords_is_filtered(self, local_index):
        entity = make_entity("Inled Group builds LED luminaires")
        entity.dense_vector = np.eye(FAKE_DIM, dtype=np.float32)[0]
        local_index.insert([entity])
        query = np.eye(FAKE_DIM, dtype=np.float32)[1]
        assert local_index.search_hybrid(query, VECTORIZER.encode("zebra"), limit=5) == []

    def test_dimension_mismatch_on_insert(self, local_index):
        bad = make_entity("lamp")
        bad.dense_vector = np.ones(FAKE_DIM + 1, dtype=np.float32)
        with pytest.raises(ValueError):
            local_index.insert([bad])
        assert local_index.size == 0

    def test_sparse_index_out_of_range(self):
        index = LocalVectorIndex(dimension=FAKE_DIM, sparse_dimension=10)
        bad = make_entity("lamp")
        bad.sparse_vector = {10: 1.0}
        with pytest.raises(ValueError):
            index.insert([bad])

    def test_dimension_mismatch_on_query(self, local_index):
        local_index.insert([make_entity("lamp")])
        with pytest.raises(ValueError):
            local_index.search_hybrid(np.ones(3), {}, limit=5)


class TestDelete:
    def test_delete_document_cascades(self, local_index):
        keep = make_entity("Paella needs saffron", document_id="cooking")
        gone = [make_entity(f"Inled lamp {i}", document_id="inled") for i in range(3)]
        local_index.insert([keep] + gone)

        removed = local_index.delete_document("inled")

        assert sorted(removed) == sorted(e.id for e in gone)
        assert local_index.size == 1
        assert all(r.metadata["document_id"] == "cooking" for r in search(local_index, "Paella saffron"))
        assert all(r.metadata["document_id"] != "inled" for r in search(local_index, "Inled lamp"))

    def test_delete_unknown_document(self, local_index):
        local_index.insert([make_entity("lamp")])
        assert local_index.delete_document("missing") == []
        assert local_index.size == 1


class TestPersistence:
    def test_save_and_load(self, local_index, tmp_path):
        entity = make_entity("Inled Group builds LED luminaires", chunk_index=0)
        local_index.insert([entity, make_entity("Paella needs saffron")])
        local_index.save(str(tmp_path))

        restored = LocalVectorIndex(dimension=FAKE_DIM)
        restored.load(str(tmp_path))

        assert restored.size == 2
        results = search(restored, "Inled Group luminaires")
        assert results[0].id == entity.id
        assert results[0].metadata == {"document_id": "doc-1", "chunk_index": 0}

    def test_ids_keep_counting_after_load(self, local_index, tmp_path):
        local_index.insert([make_entity("first lamp")])
        local_index.save(str(tmp_path))

        restored = LocalVectorIndex(dimension=FAKE_DIM)
        restored.load(str(tmp_path))
        restored.insert([make_entity("second lamp")])
        assert restored.size == 2
        assert len(search(restored, "lamp")) == 2

    def test_load_missing_files(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            LocalVectorIndex(dimension=FAKE_DIM).load(str(tmp_path))


class TestConcurrency:
    def test_readers_never_see_partial_entities(self, local_index):
        errors = []

        def writer():
            for i in range(20):
                local_index.insert([make_entity(f"warehouse lamp batch {i} item {j}") for j in range(5)])

        def reader():
            for _ in range(40):
                for result in search(local_index, "warehouse lamp"):
                    if not (result.content and result.small_content and result.metadata.get("document_id")):
                        errors.append(result)

        threads = [threading.Thread(target=writer)] + [threading.Thread(target=reader) for _ in range(3)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert local_index.size == 100


class TestCreateVectorIndex:
    def _config(self, tmp_path, backend="local"):
        config = RAGConfig()
        config.store.backend = backend
        config.store.dimension = FAKE_DIM
        config.store.index_dir = str(tmp_path)
        config.search.alpha = 0.5
        return config

    def test_local_backend(self, tmp_path):
        index = create_vector_index(self._config(tmp_path))
        assert isinstance(index, LocalVectorIndex)
        assert index.size == 0
        assert index.fusion.alpha == 0.5

    def test_local_backend_reloads_saved_index(self, tmp_path):
        saved = LocalVectorIndex(dimension=FAKE_DIM)
        saved.insert([make_entity("lamp")])
        saved.save(str(tmp_path))
        assert create_vector_index(self._config(tmp_path)).size == 1

    def test_unknown_backend(self, tmp_path):
        with pytest.raises(ValueError):
            create_vector_index(self._config(tmp_path, backend="redis"))
