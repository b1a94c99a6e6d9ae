"""
Agent Indexer
==============
Builds the agent's chunk/sentence hierarchy for one document.

  1. Split the text into sentences (the same regex splitter as the
     hierarchical chunker).
  2. Pack sentences into ~``chunk_size``-word chunks.
  3. Embed every sentence of every chunk, one chunk at a time, yielding
     the thread between chunks so indexing a large document does not
     starve concurrent queries.
  4. Store the chunks and sentences together.
"""

import logging
import time
import uuid
from typing import Callable, Dict, List, Optional

import numpy as np

from rag_engine.agent.store import AgentChunk, AgentSentence, AgentStore
from rag_engine.ingestion.chunker import group_sentences, split_sentences

logger = logging.getLogger(__name__)

ProgressFn = Callable[[float, str], None]


class AgentIndexer:
    def __init__(self, store: AgentStore, embedder, chunk_size: int = 1000):
        self.store = store
        self.embedder = embedder
        self.chunk_size = chunk_size

    def index(
        self,
        text: str,
        metadata: Optional[Dict] = None,
        on_progress: Optional[ProgressFn] = None,
    ) -> int:
        """Index ``text``; returns the number of chunks created."""
        metadata = dict(metadata or {})
        document_id = metadata.get("document_id", "unknown")

        if on_progress:
            on_progress(5, "Analysing document structure...")
        sentences = split_sentences(text)
        chunks: List[AgentChunk] = [
            AgentChunk(
                id=str(uuid.uuid4()),
                document_id=document_id,
                content=" ".join(sentences[start:end + 1]),
                metadata=metadata,
            )
            for start, end in group_sentences(sentences, self.chunk_size)
        ]

        agent_sentences: List[AgentSentence] = []
        for i, chunk in enumerate(chunks):
            chunk_sentences = split_sentences(chunk.content)
            if on_progress:
                on_progress(
                    10 + (i / len(chunks)) * 80,
                    f"Indexing chunk {i + 1}/{len(chunks)} ({len(chunk_sentences)} sentences)...",
                )
            for sentence in chunk_sentences:
                agent_sentences.append(AgentSentence(
                    id=str(uuid.uuid4()),
                    chunk_id=chunk.id,
                    content=sentence,
                    embedding=np.asarray(self.embedder.embed(sentence), dtype=np.float32),
                ))
            time.sleep(0)

        if on_progress:
            on_progress(95, "Saving agent index...")
        self.store.save_hierarchy(chunks, agent_sentences)
        if on_progress:
            on_progress(100, "Agent indexing complete.")

        logger.info(
            "Agent-indexed document %s: %d chunks, %d sentences",
            document_id,
            len(chunks),
            len(agent_sentences),
        )
        return len(chunks)
