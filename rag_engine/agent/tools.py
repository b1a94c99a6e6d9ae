"""
Agent Tools
============
The three tools the iterative agent can call.

    keyword_search(keywords, k)  -- exact term lookup; chunks scored by
                                    Σ occurrences × keyword length, snippet
                                    made of the sentences that mention a keyword
    semantic_search(query, k)    -- cosine over every stored sentence,
                                    best sentence per chunk
    chunk_read(chunk_ids)        -- full text of the given chunks

Longer keywords weigh more because they are rarer: one hit on
"photoluminescence" says more than one hit on "led".
"""

import logging
import re
from typing import Dict, List

import numpy as np

from rag_engine.agent.store import AgentStore

logger = logging.getLogger(__name__)

SNIPPET_CHARS = 500
_SNIPPET_SPLIT_RE = re.compile(r"[.!?]+")


class AgentTools:
    def __init__(self, store: AgentStore, embedder):
        self.store = store
        self.embedder = embedder

    def keyword_search(self, keywords: List[str], k: int = 3) -> List[Dict[str, str]]:
        keywords = [kw.lower() for kw in keywords if kw and kw.strip()]
        if not keywords:
            return []

        scored = []
        for chunk in self.store.all_chunks():
            content_lower = chunk.content.lower()
            score = sum(content_lower.count(kw) * len(kw) for kw in keywords)
            if score > 0:
                scored.append((score, chunk))
        scored.sort(key=lambda item: item[0], reverse=True)

        results = []
        for score, chunk in scored[:k]:
            sentences = [
                s for s in _SNIPPET_SPLIT_RE.split(chunk.content)
                if any(kw in s.lower() for kw in keywords)
            ]
            results.append({
                "chunk_id": chunk.id,
                "snippet": "... ".join(sentences)[:SNIPPET_CHARS] + "...",
            })
        logger.debug("keyword_search %s -> %d chunks", keywords, len(results))
        return results

    def semantic_search(self, query: str, k: int = 3) -> List[Dict[str, str]]:
        sentences, matrix = self.store.sentence_matrix()
        if not sentences:
            return []

        query_vec = np.asarray(self.embedder.embed(query), dtype=np.float32)
        norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query_vec)
        norms[norms == 0] = 1.0
        similarities = (matrix @ query_vec) / norms

        best: Dict[str, tuple] = {}
        for sentence, similarity in zip(sentences, similarities.tolist()):
            current = best.get(sentence.chunk_id)
            if current is None or similarity > current[0]:
                best[sentence.chunk_id] = (similarity, sentence.content)

        top = sorted(best.items(), key=lambda item: item[1][0], reverse=True)[:k]
        logger.debug("semantic_search '%s' -> %d chunks", query[:60], len(top))
        return [{"chunk_id": cid, "snippet": content} for cid, (_, content) in top]

    def chunk_read(self, chunk_ids: List[str]) -> List[Dict[str, str]]:
        results = []
        for cid in chunk_ids:
            chunk = self.store.get_chunk(cid)
            if chunk is not None:
                results.append({"chunk_id": cid, "content": chunk.content})
        return results
