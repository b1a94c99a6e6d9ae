"""
Relevance Feedback Store
=========================
Per-chunk boosts learned from user votes (thumbs up / down in a UI).

Each vote moves a chunk's boost by 0.1, clamped to [0.5, 2.0], starting
from 1.0 on the first vote.  The pipeline multiplies a chunk's hybrid
score by its boost before reranking, so repeatedly useful chunks float
up and repeatedly useless ones sink, but no chunk can be buried or
promoted without bound.

Updates are plain read-modify-write without a lock: two concurrent
votes on one chunk may lose one of them.  Votes are soft signals, so
last-writer-wins is acceptable.

Persistence is a single JSON file keyed by chunk id.
"""

import json
import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, Optional

logger = logging.getLogger(__name__)

DEFAULT_BOOST = 1.0
VOTE_STEP = 0.1
MIN_BOOST = 0.5
MAX_BOOST = 2.0
VOTES = ("up", "down")


@dataclass
class RelevanceBoost:
    chunk_id: str
    boost: float = DEFAULT_BOOST
    votes: int = 0
    last_vote: Optional[str] = None
    last_updated: Optional[str] = None


class RelevanceStore:
    """
    Usage:
        store = RelevanceStore("data/feedback/chunk_relevance.json")
        store.update_chunk_relevance(chunk_id, "up")
        boosts = store.get_boosts([chunk_id])   # {chunk_id: 1.1}
    """

    def __init__(self, path: Optional[str] = None):
        self.path = Path(path) if path else None
        self._boosts: Dict[str, RelevanceBoost] = {}
        if self.path is not None and self.path.exists():
            self.load()

    def __len__(self) -> int:
        return len(self._boosts)

    def update_chunk_relevance(self, chunk_id: str, vote: str) -> RelevanceBoost:
        if vote not in VOTES:
            raise ValueError(f"vote must be 'up' or 'down' (got {vote!r})")

        entry = self._boosts.get(chunk_id) or RelevanceBoost(chunk_id=chunk_id)
        step = VOTE_STEP if vote == "up" else -VOTE_STEP
        entry.boost = round(min(MAX_BOOST, max(MIN_BOOST, entry.boost + step)), 4)
        entry.votes += 1
        entry.last_vote = vote
        entry.last_updated = datetime.now(timezone.utc).isoformat()
        self._boosts[chunk_id] = entry

        logger.info("Chunk %s voted %s -> boost %.2f", chunk_id, vote, entry.boost)
        if self.path is not None:
            self.save()
        return entry

    def get_vote(self, chunk_id: str) -> Optional[RelevanceBoost]:
        return self._boosts.get(chunk_id)

    def get_boosts(self, chunk_ids: Iterable[str]) -> Dict[str, float]:
        """Boost per chunk id; chunks nobody voted on get 1.0."""
        return {
            cid: self._boosts[cid].boost if cid in self._boosts else DEFAULT_BOOST
            for cid in chunk_ids
        }

    def delete(self, chunk_ids: Iterable[str]) -> int:
        removed = 0
        for cid in chunk_ids:
            if self._boosts.pop(cid, None) is not None:
                removed += 1
        if removed and self.path is not None:
            self.save()
        return removed

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save(self, path: Optional[str] = None) -> None:
        target = Path(path) if path else self.path
        if target is None:
            raise ValueError("No path given for saving relevance feedback")
        target.parent.mkdir(parents=True, exist_ok=True)
        with open(target, "w", encoding="utf-8") as f:
            json.dump({cid: asdict(b) for cid, b in self._boosts.items()}, f, indent=2)
        logger.debug("Saved %d relevance boosts to %s", len(self._boosts), target)

    def load(self, path: Optional[str] = None) -> None:
        source = Path(path) if path else self.path
        if source is None:
            raise ValueError("No path given for loading relevance feedback")
        with open(source, "r", encoding="utf-8") as f:
            data = json.load(f)
        self._boosts = {cid: RelevanceBoost(**entry) for cid, entry in data.items()}
        logger.info("Loaded %d relevance boosts from %s", len(self._boosts), source)
