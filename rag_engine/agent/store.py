"""
Agent Store
============
Chunk + sentence hierarchy searched by the iterative agent's tools.

Where the hybrid index stores small/parent pairs, the agent works at two
other granularities:
  - chunks    (~1000 words) that ``chunk_read`` returns whole
  - sentences (one embedding each) that ``semantic_search`` scores

Layout on disk (``save(dir)`` / ``load(dir)``):
  chunks.json       -- list of chunk records
  sentences.json    -- list of sentence records without embeddings
  embeddings.npy    -- float32 matrix, row i belongs to sentences.json[i]

Writes take a lock so a document's chunks and sentences appear together.
"""

import json
import logging
import threading
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

logger = logging.getLogger(__name__)


@dataclass
class AgentChunk:
    id: str
    document_id: str
    content: str
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class AgentSentence:
    id: str
    chunk_id: str
    content: str
    embedding: np.ndarray


class AgentStore:
    """In-memory chunk/sentence store with optional persistence."""

    def __init__(self):
        self._chunks: Dict[str, AgentChunk] = {}
        self._sentences: List[AgentSentence] = []
        self._matrix: Optional[np.ndarray] = None   # stacked embeddings cache
        self._lock = threading.Lock()

    @property
    def num_chunks(self) -> int:
        return len(self._chunks)

    @property
    def num_sentences(self) -> int:
        return len(self._sentences)

    def save_hierarchy(self, chunks: List[AgentChunk], sentences: List[AgentSentence]) -> None:
        with self._lock:
            for chunk in chunks:
                self._chunks[chunk.id] = chunk
            self._sentences.extend(sentences)
            self._matrix = None
        logger.info("Stored %d agent chunks, %d sentences", len(chunks), len(sentences))

    def get_chunk(self, chunk_id: str) -> Optional[AgentChunk]:
        return self._chunks.get(chunk_id)

    def all_chunks(self) -> List[AgentChunk]:
        return list(self._chunks.values())

    def sentence_matrix(self) -> Tuple[List[AgentSentence], np.ndarray]:
        """All sentences with their embeddings stacked into one matrix."""
        with self._lock:
            sentences = list(self._sentences)
            if self._matrix is None and sentences:
                self._matrix = np.stack([s.embedding for s in sentences]).astype(np.float32)
            matrix = self._matrix
        if matrix is None:
            matrix = np.empty((0, 0), dtype=np.float32)
        return sentences, matrix

    def delete_document(self, document_id: str) -> List[str]:
        """Drop a document's chunks and their sentences; return the chunk ids."""
        with self._lock:
            doomed = {cid for cid, c in self._chunks.items() if c.document_id == document_id}
            for cid in doomed:
                del self._chunks[cid]
            self._sentences = [s for s in self._sentences if s.chunk_id not in doomed]
            self._matrix = None
        if doomed:
            logger.info("Deleted %d agent chunks of document %s", len(doomed), document_id)
        return sorted(doomed)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save(self, directory: str) -> None:
        out_dir = Path(directory)
        out_dir.mkdir(parents=True, exist_ok=True)
        sentences, matrix = self.sentence_matrix()

        with open(out_dir / "chunks.json", "w", encoding="utf-8") as f:
            json.dump([asdict(c) for c in self._chunks.values()], f, ensure_ascii=False)
        with open(out_dir / "sentences.json", "w", encoding="utf-8") as f:
            json.dump(
                [{"id": s.id, "chunk_id": s.chunk_id, "content": s.content} for s in sentences],
                f,
                ensure_ascii=False,
            )
        np.save(out_dir / "embeddings.npy", matrix)
        logger.info("Saved agent store (%d chunks) to %s", self.num_chunks, out_dir)

    def load(self, directory: str) -> None:
        in_dir = Path(directory)
        chunks_path = in_dir / "chunks.json"
        if not chunks_path.exists():
            raise FileNotFoundError(f"Agent store not found: {chunks_path}")

        with open(chunks_path, "r", encoding="utf-8") as f:
            chunks = [AgentChunk(**c) for c in json.load(f)]
        with open(in_dir / "sentences.json", "r", encoding="utf-8") as f:
            records = json.load(f)
        matrix = np.load(in_dir / "embeddings.npy")
        if records and matrix.shape[0] != len(records):
            raise ValueError(
                f"Agent store is inconsistent: {len(records)} sentences, "
                f"{matrix.shape[0]} embeddings"
            )

        with self._lock:
            self._chunks = {c.id: c for c in chunks}
            self._sentences = [
                AgentSentence(embedding=matrix[i], **record)
                for i, record in enumerate(records)
            ]
            self._matrix = matrix.astype(np.float32) if records else None
        logger.info(
            "Loaded agent store: %d chunks, %d sentences from %s",
            self.num_chunks,
            self.num_sentences,
            in_dir,
        )
