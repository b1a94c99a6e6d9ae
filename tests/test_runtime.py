"""Tests for the model runtime and the error taxonomy."""

import pytest

from helpers import HashingEmbedder, ScriptedGenerator
from rag_engine.cancellation import CancellationToken, checkpoint
from rag_engine.errors import (
    MalformedModelOutput,
    ModelUnavailable,
    QueryCancelled,
    RAGEngineError,
    RetrievalEmpty,
)
from rag_engine.runtime import ModelRuntime


class TestModelRuntime:
    def test_require_returns_model(self):
        embedder, generator = HashingEmbedder(), ScriptedGenerator()
        runtime = ModelRuntime(embedder=embedder, generator=generator)
        assert runtime.require("embedder") is embedder
        assert runtime.require("generator") is generator

    def test_fallback_roles(self):
        embedder, generator = HashingEmbedder(), ScriptedGenerator()
        runtime = ModelRuntime(embedder=embedder, generator=generator)
        assert runtime.require("reranker") is generator
        assert runtime.require("classifier") is embedder

    def test_dedicated_roles_win(self):
        reranker, classifier = ScriptedGenerator(), HashingEmbedder()
        runtime = ModelRuntime(
            embedder=HashingEmbedder(), generator=ScriptedGenerator(),
            reranker=reranker, classifier=classifier,
        )
        assert runtime.require("reranker") is reranker
        assert runtime.require("classifier") is classifier

    @pytest.mark.parametrize("role", ["embedder", "generator", "reranker", "classifier"])
    def test_missing_role(self, role):
        with pytest.raises(ModelUnavailable):
            ModelRuntime().require(role)

    def test_unknown_role(self):
        with pytest.raises(ValueError):
            ModelRuntime().require("translator")


class TestErrors:
    def test_family(self):
        for exc in (ModelUnavailable, RetrievalEmpty, QueryCancelled, MalformedModelOutput):
            assert issubclass(exc, RAGEngineError)

    def test_malformed_output_keeps_raw_text(self):
        assert MalformedModelOutput("bad", raw_output="{oops").raw_output == "{oops"


class TestCancellation:
    def test_checkpoint(self):
        checkpoint(None, "search")
        token = CancellationToken()
        checkpoint(token, "search")
        token.cancel()
        assert token.cancelled
        with pytest.raises(QueryCancelled, match="search"):
            checkpoint(token, "search")
