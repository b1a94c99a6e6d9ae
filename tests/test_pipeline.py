"""End-to-end tests for indexing and the query state machine."""

import pytest

from helpers import (
    COOKING_DOC,
    INLED_DOC,
    PHOTOSYNTHESIS_DOC,
    HashingEmbedder,
    PrototypeEmbedder,
    ScriptedGenerator,
)
from rag_engine.agent.store import AgentStore
from rag_engine.cancellation import CancellationToken
from rag_engine.errors import ModelUnavailable, QueryCancelled, StoreBackendError
from rag_engine.feedback.relevance import RelevanceStore
from rag_engine.index.base import SearchResult, VectorIndex
from rag_engine.llm.prompts import DIRECT_SYSTEM_PROMPT, PROMPT_TEMPLATES
from rag_engine.retrieval.pipeline import AdvancedRAGPipeline, PipelineStage
from rag_engine.runtime import ModelRuntime


class BrokenIndex(VectorIndex):
    """Backend whose search always fails."""

    @property
    def size(self):
        return 0

    def insert(self, entities):
        raise StoreBackendError("insert refused")

    def search_hybrid(self, dense_query, sparse_query, limit=50):
        raise StoreBackendError("server unreachable")

    def delete_document(self, document_id):
        return []


@pytest.fixture
def pipeline(runtime, local_index):
    return AdvancedRAGPipeline(runtime, local_index)


@pytest.fixture
def corpus(pipeline):
    pipeline.index_document(INLED_DOC, {"document_id": "inled", "source": "inled.txt"})
    pipeline.index_document(PHOTOSYNTHESIS_DOC, {"document_id": "biology"})
    pipeline.index_document(COOKING_DOC, {"document_id": "cooking"})
    return pipeline


class TestIndexing:
    def test_index_document(self, pipeline, local_index):
        count = pipeline.index_document(INLED_DOC, {"source": "inled.txt"})

        assert count == 1
        assert local_index.size == 1
        hits = local_index.search_hybrid(
            HashingEmbedder().embed("Inled Group"), pipeline.vectorizer.encode("Inled Group"),
        )
        metadata = hits[0].metadata
        assert metadata["source"] == "inled.txt"
        assert metadata["chunk_index"] == 0
        assert metadata["document_id"]  # generated
        assert hits[0].content == INLED_DOC

    def test_blank_document(self, pipeline, local_index):
        assert pipeline.index_document("   ") == 0
        assert local_index.size == 0

    def test_index_only_runtime(self, embedder, local_index):
        pipeline = AdvancedRAGPipeline(ModelRuntime(embedder=embedder), local_index)
        assert pipeline.index_document(COOKING_DOC) == 1

    def test_cancelled_indexing_stores_nothing(self, pipeline, local_index):
        token = CancellationToken()
        token.cancel()
        with pytest.raises(QueryCancelled):
            pipeline.index_document(INLED_DOC, cancel=token)
        assert local_index.size == 0

    def test_agent_store_is_filled(self, runtime, local_index):
        store = AgentStore()
        pipeline = AdvancedRAGPipeline(runtime, local_index, agent_store=store)
        pipeline.index_document(INLED_DOC, {"document_id": "inled"})

        assert store.num_chunks == 1
        assert store.num_sentences == 3
        assert store.all_chunks()[0].document_id == "inled"


class TestExecute:
    def test_informational_query_returns_context(self, corpus, generator):
        response = corpus.execute("What is Inled Group?")

        assert response.mode == "rag"
        assert "Inled Group" in response.context
        assert response.sources[-1]["metadata"]["document_id"] == "inled"
        assert response.context.endswith(INLED_DOC)
        assert len(generator.prompts_starting_with("Write a comprehensive answer")) == 1
        assert len(generator.prompts_starting_with("Task: Compress")) == 1

    def test_sparse_half_uses_raw_query(self, corpus, generator, embedder):
        generator.hyde_text = "Paella needs saffron and short grain rice."
        calls = []
        search = corpus.index.search_hybrid

        def recording_search(dense_query, sparse_query, limit=50):
            calls.append((dense_query, sparse_query, limit))
            return search(dense_query, sparse_query, limit=limit)

        corpus.index.search_hybrid = recording_search
        corpus.execute("What is Inled Group?")

        dense_query, sparse_query, limit = calls[0]
        assert sparse_query == corpus.vectorizer.encode("What is Inled Group?")
        assert dense_query.tolist() == embedder.embed(generator.hyde_text).tolist()
        assert limit == 50

    def test_greeting_goes_direct(self, corpus, generator):
        response = corpus.execute("Hola")

        assert response.mode == "direct"
        assert response.context is None
        assert response.sources == []
        assert generator.prompts == []

    def test_empty_index_means_no_context(self, pipeline):
        response = pipeline.execute("What is Inled Group?")
        assert response.mode == "rag"
        assert response.context is None
        assert response.sources == []

    def test_backend_failure_means_no_context(self, runtime):
        response = AdvancedRAGPipeline(runtime, BrokenIndex()).execute("What is Inled Group?")
        assert response.to_dict() == {"mode": "rag", "context": None, "sources": [], "answer": None}

    def test_progress_order(self, corpus):
        events = []
        corpus.execute("What is Inled Group?", on_progress=lambda *e: events.append(e))

        assert [e[0] for e in events] == [
            "classification", "hyde", "embedding", "search", "boost",
            "reranking", "repack", "compression", "completed",
        ]
        assert [e[1] for e in events] == [10, 30, 50, 60, 65, 70, 80, 90, 100]

    def test_progress_for_direct_query(self, corpus):
        events = []
        corpus.execute("Hola", on_progress=lambda *e: events.append(e))
        assert [e[0] for e in events] == [PipelineStage.CLASSIFY.value, PipelineStage.DIRECT.value]
        assert events[-1][1] == 100

    def test_context_is_limited_to_context_k(self, runtime, local_index):
        pipeline = AdvancedRAGPipeline(runtime, local_index)
        pipeline.config.search.context_k = 2
        for i in range(4):
            pipeline.index_document(f"Inled Group catalogue volume {i}. It lists lamps.")

        response = pipeline.execute("What is Inled Group?")
        assert len(response.sources) == 2

    def test_missing_generator(self, embedder, local_index):
        pipeline = AdvancedRAGPipeline(ModelRuntime(embedder=embedder), local_index)
        pipeline.index_document(INLED_DOC)
        with pytest.raises(ModelUnavailable):
            pipeline.execute("What is Inled Group?")

    def test_reranker_outage_is_fatal(self, embedder, generator, local_index):
        class DownReranker:
            def generate(self, prompt, **kwargs):
                raise ModelUnavailable("reranker server is down")

        runtime = ModelRuntime(
            embedder, generator, reranker=DownReranker(), classifier=PrototypeEmbedder(),
        )
        pipeline = AdvancedRAGPipeline(runtime, local_index)
        pipeline.index_document(INLED_DOC)
        with pytest.raises(ModelUnavailable):
            pipeline.execute("What is Inled Group?")


class TestCancellation:
    def test_cancel_before_hyde(self, corpus, generator):
        token = CancellationToken()
        token.cancel()
        with pytest.raises(QueryCancelled):
            corpus.execute("What is Inled Group?", cancel=token)
        assert generator.prompts == []

    def test_cancel_during_reranking(self, corpus, generator):
        token = CancellationToken()

        def on_progress(stage, percent, message):
            if stage == "reranking":
                token.cancel()

        with pytest.raises(QueryCancelled):
            corpus.execute("What is Inled Group?", on_progress=on_progress, cancel=token)
        assert generator.prompts_starting_with("Query:") == []
        assert generator.prompts_starting_with("Task: Compress") == []


class TestFeedback:
    def test_boosts_reorder_hits(self, pipeline):
        hits = [
            SearchResult(id="a", score=0.5, content="a", small_content="a"),
            SearchResult(id="b", score=0.4, content="b", small_content="b"),
        ]
        for _ in range(3):
            pipeline.update_chunk_relevance("b", "up")
        pipeline.update_chunk_relevance("a", "down")

        boosted = pipeline._apply_boosts(hits)
        assert [h.id for h in boosted] == ["b", "a"]
        assert boosted[0].score == pytest.approx(0.4 * 1.3)
        assert boosted[1].score == pytest.approx(0.5 * 0.9)

    def test_vote_reaches_store(self, pipeline):
        entry = pipeline.update_chunk_relevance("chunk-1", "up")
        assert entry.boost == pytest.approx(1.1)
        assert pipeline.relevance_store.get_vote("chunk-1").votes == 1


class TestDelete:
    def test_delete_cascades(self, runtime, local_index):
        relevance = RelevanceStore()
        agent_store = AgentStore()
        pipeline = AdvancedRAGPipeline(
            runtime, local_index, relevance_store=relevance, agent_store=agent_store,
        )
        pipeline.index_document(INLED_DOC, {"document_id": "inled"})
        pipeline.index_document(COOKING_DOC, {"document_id": "cooking"})

        chunk_id = pipeline.execute("What is Inled Group?").sources[-1]["id"]
        pipeline.update_chunk_relevance(chunk_id, "up")

        assert pipeline.delete_document("inled") == 1
        assert local_index.size == 1
        assert len(relevance) == 0
        assert [c.document_id for c in agent_store.all_chunks()] == ["cooking"]

    def test_delete_unknown_document(self, corpus):
        assert corpus.delete_document("missing") == 0


class TestAnswer:
    def test_grounded_answer(self, corpus, generator):
        response = corpus.answer("What is Inled Group?")

        assert response.answer == generator.answer_text
        system = generator.kwargs[-1]["system"]
        assert "CONTEXT:" in system
        assert "Inled Group" in system
        assert generator.prompts[-1].endswith("What is Inled Group?")

    def test_direct_answer_without_context(self, corpus, generator):
        response = corpus.answer("Hola", template="concise")

        assert response.mode == "direct"
        assert response.answer == generator.answer_text
        assert generator.prompts == ["Hola"]
        assert generator.kwargs[0]["system"] == DIRECT_SYSTEM_PROMPT

    def test_concise_template(self, corpus, generator):
        corpus.answer("What is Inled Group?", template="concise")

        system = generator.kwargs[-1]["system"]
        assert system.startswith("Extract the answer from the context below.")
        assert "Inled Group" in system
        assert generator.prompts[-1] == "What is Inled Group?"

    def test_templates_only_ask_for_what_the_context_holds(self):
        # the compressed context is an unnumbered summary
        assert sorted(PROMPT_TEMPLATES) == ["concise", "default"]
        for template in PROMPT_TEMPLATES.values():
            assert "[Source" not in template["system"]
