"""
Retrieval subpackage -- query-time stages and their orchestration.

    QueryClassifier                -- does this query need retrieval at all?
    HypotheticalDocumentGenerator  -- HyDE query expansion
    Reranker / reverse_repack      -- second-stage scoring, best-last ordering
    ContextCompressor              -- abstractive context compression
    AdvancedRAGPipeline            -- index_document / execute / answer
"""

from rag_engine.retrieval.classifier import QueryClassifier
from rag_engine.retrieval.compressor import ContextCompressor
from rag_engine.retrieval.hyde import HypotheticalDocumentGenerator
from rag_engine.retrieval.pipeline import AdvancedRAGPipeline, PipelineStage, RAGResponse
from rag_engine.retrieval.reranker import Reranker, reverse_repack
