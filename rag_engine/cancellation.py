"""Cooperative cancellation for long-running queries."""

import logging
import threading
from typing import Optional

from rag_engine.errors import QueryCancelled

logger = logging.getLogger(__name__)


class CancellationToken:
    """
    Thread-safe flag checked at every suspension point of a query
    (HyDE, search, each rerank call, compression, each agent round).

    Usage::

        token = CancellationToken()
        threading.Thread(target=pipeline.execute, args=(q,),
                         kwargs={"cancel": token}).start()
        token.cancel()   # the query stops at its next checkpoint
    """

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, stage: str = "") -> None:
        if self._event.is_set():
            logger.info("Query cancelled at stage '%s'", stage or "unknown")
            raise QueryCancelled(f"Query cancelled at stage '{stage}'")


def checkpoint(token: Optional[CancellationToken], stage: str) -> None:
    """Raise ``QueryCancelled`` if ``token`` is set; no-op when it is None."""
    if token is not None:
        token.raise_if_cancelled(stage)
