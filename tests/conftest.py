"""Shared fixtures for the engine tests."""

import pytest

from helpers import FAKE_DIM, HashingEmbedder, PrototypeEmbedder, ScriptedGenerator
from rag_engine.index.local_index import LocalVectorIndex
from rag_engine.runtime import ModelRuntime


@pytest.fixture
def embedder():
    return HashingEmbedder()


@pytest.fixture
def generator():
    return ScriptedGenerator()


@pytest.fixture
def runtime(embedder, generator):
    return ModelRuntime(embedder=embedder, generator=generator, classifier=PrototypeEmbedder())


@pytest.fixture
def local_index():
    return LocalVectorIndex(dimension=FAKE_DIM)
