"""
Error taxonomy
===============
Every failure the engine can surface derives from ``RAGEngineError`` so
callers can catch the whole family in one place.

Which errors are fatal and which are recovered locally:

    ModelUnavailable      -- fatal.  The embedder or generator is not
                             ready; surfaced to the caller unchanged.
    MalformedModelOutput  -- recovered.  The reranker scores the document
                             0; the agent counts it and eventually forces
                             an emergency keyword search.
    RetrievalEmpty        -- recovered.  No candidate cleared the fusion
                             threshold; the pipeline returns a null
                             context so the caller can answer directly.
    CompressionFailure    -- recovered.  The compressor truncates the
                             raw context instead.
    StoreBackendError     -- recovered during search (treated as an empty
                             result), propagated during insert/delete.
    QueryCancelled        -- propagated.  Raised at a suspension point
                             after the caller cancelled the query.
"""


class RAGEngineError(Exception):
    """Base class for all engine errors."""


class ModelUnavailable(RAGEngineError):
    """A model role (embedder, generator, ...) is missing or unreachable."""


class MalformedModelOutput(RAGEngineError):
    """A model produced text that could not be interpreted."""

    def __init__(self, message: str, raw_output: str = ""):
        super().__init__(message)
        self.raw_output = raw_output


class RetrievalEmpty(RAGEngineError):
    """No indexed chunk cleared the hybrid score threshold."""


class CompressionFailure(RAGEngineError):
    """The abstractive compressor could not produce a summary."""


class StoreBackendError(RAGEngineError):
    """The vector store backend failed (unreachable, bad response, I/O)."""


class QueryCancelled(RAGEngineError):
    """The caller cancelled the query."""
