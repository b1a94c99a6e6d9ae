"""
Advanced RAG Pipeline
======================
Orchestrates indexing and query-time retrieval.

Indexing (``index_document``)::

    text -> small/parent chunk pairs -> dense(small) + sparse(small)
         -> entities (content = parent) -> vector index
         [-> agent store, when one is attached]

Query (``execute``), a linear state machine::

    Classify --direct--> END {mode: "direct", context: None}
        |
        +--> HyDE -> Embed -> Search -> Boost -> Rerank -> Repack -> Compress
             -> END {mode: "rag", context, sources}

  - HyDE text feeds the dense half of the search; the raw query feeds
    the sparse half.
  - Boost multiplies each hit's fusion score by its relevance-feedback
    boost before reranking.
  - Only the best ``context_k`` reranked hits are repacked (best last)
    and compressed.
  - Nothing above the fusion threshold (or a failing backend) ends the
    query with ``{mode: "rag", context: None, sources: []}`` so the
    caller can answer without augmentation.

Each stage reports ``(stage, percent, message)`` to an optional progress
callback, and a ``CancellationToken`` is checked before HyDE, before the
search, before each rerank call and before compression.
"""

import logging
import time
import uuid
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from tqdm import tqdm

from rag_engine.agent.indexer import AgentIndexer
from rag_engine.agent.store import AgentStore
from rag_engine.cancellation import CancellationToken, checkpoint
from rag_engine.config import RAGConfig
from rag_engine.embeddings.sparse import SparseVectorizer
from rag_engine.errors import RetrievalEmpty, StoreBackendError
from rag_engine.feedback.relevance import RelevanceStore
from rag_engine.index.base import IndexedEntity, SearchResult, VectorIndex
from rag_engine.ingestion.chunker import HierarchicalChunker
from rag_engine.llm.prompts import build_rag_prompt
from rag_engine.retrieval.classifier import QueryClassifier
from rag_engine.retrieval.compressor import ContextCompressor
from rag_engine.retrieval.hyde import HypotheticalDocumentGenerator
from rag_engine.retrieval.reranker import Reranker, reverse_repack
from rag_engine.runtime import ModelRuntime

logger = logging.getLogger(__name__)

ProgressFn = Callable[[str, int, str], None]


class PipelineStage(str, Enum):
    CLASSIFY = "classification"
    DIRECT = "direct"
    HYDE = "hyde"
    EMBED = "embedding"
    SEARCH = "search"
    BOOST = "boost"
    RERANK = "reranking"
    REPACK = "repack"
    COMPRESS = "compression"
    COMPLETED = "completed"


@dataclass
class RAGResponse:
    """
    Result of one query.

    Attributes:
        mode    : "direct" (no retrieval) or "rag"
        context : compressed context, None in direct mode or when nothing
                  relevant was found
        sources : [{"id": ..., "metadata": {...}}] in repacked order
        answer  : final generated answer (only set by ``answer()``)
    """
    mode: str
    context: Optional[str] = None
    sources: List[Dict[str, Any]] = field(default_factory=list)
    answer: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class AdvancedRAGPipeline:
    """
    Usage:
        config = load_config()
        runtime = ModelRuntime.from_config(config)
        pipeline = AdvancedRAGPipeline(runtime, create_vector_index(config), config)

        pipeline.index_document(text, {"source": "inled.pdf"})
        response = pipeline.execute("What is Inled Group?")
        print(response.context)
    """

    def __init__(
        self,
        runtime: ModelRuntime,
        index: VectorIndex,
        config: Optional[RAGConfig] = None,
        relevance_store: Optional[RelevanceStore] = None,
        agent_store: Optional[AgentStore] = None,
    ):
        self.runtime = runtime
        self.index = index
        self.config = config or RAGConfig()
        self.relevance_store = relevance_store if relevance_store is not None else RelevanceStore()
        self.agent_store = agent_store

        self.chunker = HierarchicalChunker(
            small_chunk_size=self.config.chunking.small_chunk_size,
            parent_chunk_size=self.config.chunking.parent_chunk_size,
        )
        self.vectorizer = SparseVectorizer(self.config.search.sparse_dimension)

        # Model-backed stages are built on first use so an index-only
        # runtime (no generator) can still ingest documents.
        self._classifier: Optional[QueryClassifier] = None
        self._hyde: Optional[HypotheticalDocumentGenerator] = None
        self._reranker: Optional[Reranker] = None
        self._compressor: Optional[ContextCompressor] = None

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    @property
    def classifier(self) -> QueryClassifier:
        if self._classifier is None:
            self._classifier = QueryClassifier(self.runtime.require("classifier"))
        return self._classifier

    @property
    def hyde(self) -> HypotheticalDocumentGenerator:
        if self._hyde is None:
            gen = self.config.generation
            self._hyde = HypotheticalDocumentGenerator(
                self.runtime.require("generator"),
                max_new_tokens=gen.hyde_max_new_tokens,
                temperature=gen.hyde_temperature,
            )
        return self._hyde

    @property
    def reranker(self) -> Reranker:
        if self._reranker is None:
            gen = self.config.generation
            self._reranker = Reranker(
                self.runtime.require("reranker"),
                max_new_tokens=gen.rerank_max_new_tokens,
                temperature=gen.rerank_temperature,
            )
        return self._reranker

    @property
    def compressor(self) -> ContextCompressor:
        if self._compressor is None:
            gen = self.config.generation
            self._compressor = ContextCompressor(
                self.runtime.require("generator"),
                max_new_tokens=gen.compress_max_new_tokens,
                temperature=gen.compress_temperature,
                fallback_chars=gen.compress_fallback_chars,
            )
        return self._compressor

    # ------------------------------------------------------------------
    # Indexing
    # ------------------------------------------------------------------

    def index_document(
        self,
        text: str,
        metadata: Optional[Dict[str, Any]] = None,
        cancel: Optional[CancellationToken] = None,
        show_progress: bool = False,
    ) -> int:
        """
        Chunk, embed and store one document.

        Args:
            text          : extracted document text
            metadata      : stored with every chunk; a ``document_id`` is
                            generated when missing
            cancel        : optional cancellation token
            show_progress : show a tqdm bar while embedding

        Returns:
            Number of small/parent chunks indexed.
        """
        metadata = dict(metadata or {})
        metadata.setdefault("document_id", str(uuid.uuid4()))

        pairs = self.chunker.split(text)
        if not pairs:
            logger.warning("Document %s produced no chunks", metadata["document_id"])
            return 0

        embedder = self.runtime.require("embedder")
        entities: List[IndexedEntity] = []
        for i, pair in enumerate(tqdm(pairs, desc="Embedding chunks", disable=not show_progress)):
            checkpoint(cancel, "index")
            entities.append(IndexedEntity(
                id=str(uuid.uuid4()),
                dense_vector=embedder.embed(pair.small),
                sparse_vector=self.vectorizer.encode(pair.small),
                content=pair.parent,
                small_content=pair.small,
                metadata={**metadata, "chunk_index": i},
            ))
            time.sleep(0)  # let concurrent queries run between chunks

        self.index.insert(entities)

        if self.agent_store is not None:
            AgentIndexer(
                self.agent_store,
                embedder,
                chunk_size=self.config.chunking.agent_chunk_size,
            ).index(text, metadata)

        logger.info(
            "Indexed document %s: %d chunks",
            metadata["document_id"],
            len(entities),
        )
        return len(entities)

    # ------------------------------------------------------------------
    # Query
    # ------------------------------------------------------------------

    def _search(self, query: str, dense_query, cancel: Optional[CancellationToken]) -> List[SearchResult]:
        checkpoint(cancel, "search")
        sparse_query = self.vectorizer.encode(query)
        try:
            hits = self.index.search_hybrid(dense_query, sparse_query, limit=self.config.search.top_k)
        except StoreBackendError as exc:
            logger.error("Vector index search failed: %s", exc)
            raise RetrievalEmpty(str(exc)) from exc
        if not hits:
            raise RetrievalEmpty(f"No chunk cleared the score threshold for '{query[:60]}'")
        return hits

    def _apply_boosts(self, hits: List[SearchResult]) -> List[SearchResult]:
        boosts = self.relevance_store.get_boosts(h.id for h in hits)
        for hit in hits:
            hit.score *= boosts[hit.id]
        hits.sort(key=lambda h: h.score, reverse=True)
        return hits

    def execute(
        self,
        query: str,
        on_progress: Optional[ProgressFn] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> RAGResponse:
        """Run the query state machine and return the context for ``query``."""

        def report(stage: PipelineStage, percent: int, message: str) -> None:
            if on_progress:
                on_progress(stage.value, percent, message)

        report(PipelineStage.CLASSIFY, 10, "Classifying query...")
        if not self.classifier.is_retrieval_needed(query):
            logger.info("Query classified as direct/chat: '%s'", query[:60])
            report(PipelineStage.DIRECT, 100, "No retrieval needed.")
            return RAGResponse(mode="direct")
        logger.info("Query classified as information seeking: '%s'", query[:60])

        checkpoint(cancel, "hyde")
        report(PipelineStage.HYDE, 30, "Generating hypothetical answer (HyDE)...")
        hypothetical = self.hyde.expand(query)

        report(PipelineStage.EMBED, 50, "Hybrid search (dense + sparse)...")
        dense_query = self.runtime.require("embedder").embed(hypothetical)

        report(PipelineStage.SEARCH, 60, "Searching the index...")
        try:
            hits = self._search(query, dense_query, cancel)
        except RetrievalEmpty as exc:
            logger.warning("Retrieval empty, no context: %s", exc)
            report(PipelineStage.COMPLETED, 100, "No relevant context found.")
            return RAGResponse(mode="rag", context=None, sources=[])
        logger.info("Retrieved %d candidates", len(hits))

        report(PipelineStage.BOOST, 65, "Applying relevance feedback...")
        hits = self._apply_boosts(hits)

        report(PipelineStage.RERANK, 70, "Reranking results...")
        reranked = self.reranker.rerank(query, hits, top_k=self.config.search.top_k, cancel=cancel)
        top = reranked[: self.config.search.context_k]

        report(PipelineStage.REPACK, 80, "Repacking context...")
        repacked = reverse_repack(top)

        checkpoint(cancel, "compress")
        report(PipelineStage.COMPRESS, 90, "Compressing context...")
        full_context = "\n\n".join(h.content for h in repacked)
        context = self.compressor.compress(full_context, query)

        report(PipelineStage.COMPLETED, 100, "Context ready.")
        return RAGResponse(
            mode="rag",
            context=context,
            sources=[{"id": h.id, "metadata": h.metadata} for h in repacked],
        )

    def answer(
        self,
        query: str,
        template: str = "default",
        on_progress: Optional[ProgressFn] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> RAGResponse:
        """``execute`` plus a final answer grounded on the returned context."""
        response = self.execute(query, on_progress=on_progress, cancel=cancel)
        checkpoint(cancel, "answer")

        gen = self.config.generation
        prompt = build_rag_prompt(query, response.context or "", template)
        response.answer = self.runtime.require("generator").generate(
            prompt["user"],
            max_new_tokens=gen.answer_max_new_tokens,
            temperature=gen.answer_temperature,
            system=prompt["system"],
        )
        logger.info("Answered '%s' in %s mode (%d chars)", query[:60], response.mode, len(response.answer))
        return response

    # ------------------------------------------------------------------
    # Feedback and deletion
    # ------------------------------------------------------------------

    def update_chunk_relevance(self, chunk_id: str, vote: str):
        return self.relevance_store.update_chunk_relevance(chunk_id, vote)

    def delete_document(self, document_id: str) -> int:
        """Remove a document's entities, agent chunks and relevance boosts."""
        removed = self.index.delete_document(document_id)
        self.relevance_store.delete(removed)
        if self.agent_store is not None:
            self.agent_store.delete_document(document_id)
        logger.info("Deleted document %s (%d chunks)", document_id, len(removed))
        return len(removed)
