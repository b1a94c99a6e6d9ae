"""
Test doubles: deterministic stand-ins for the embedding model and the
generator so the whole engine runs without downloads or an Ollama server.
"""

import re
from typing import List, Optional

import numpy as np

from rag_engine.embeddings.sparse import fnv1a_32
from rag_engine.retrieval.classifier import CONVERSATIONAL_EXEMPLARS

FAKE_DIM = 256

_WORD_RE = re.compile(r"\w+")


class HashingEmbedder:
    """Bag-of-words embedder: one hashed dimension per word, L2-normalised."""

    def __init__(self, dimension: int = FAKE_DIM):
        self.dimension = dimension
        self.calls = 0

    def embed(self, text: str) -> np.ndarray:
        self.calls += 1
        vec = np.zeros(self.dimension, dtype=np.float32)
        for word in _WORD_RE.findall(text.lower()):
            vec[fnv1a_32(word) % self.dimension] += 1.0
        norm = np.linalg.norm(vec)
        return vec / norm if norm else vec


class PrototypeEmbedder:
    """
    Two-direction embedder for the query classifier: greetings map to one
    axis, everything else to the other.
    """

    INFO = np.array([1.0, 0.0, 0.0], dtype=np.float32)
    CHAT = np.array([0.0, 1.0, 0.0], dtype=np.float32)

    def __init__(self):
        self.calls = 0
        self.chat_phrases = {self._key(p) for p in CONVERSATIONAL_EXEMPLARS}

    @staticmethod
    def _key(text: str) -> str:
        return text.lower().strip(" ¿?¡!.")

    def embed(self, text: str) -> np.ndarray:
        self.calls += 1
        return self.CHAT if self._key(text) in self.chat_phrases else self.INFO


class FailingEmbedder:
    def __init__(self):
        self.calls = 0

    def embed(self, text: str) -> np.ndarray:
        self.calls += 1
        raise RuntimeError("embedding backend crashed")


class ScriptedGenerator:
    """
    Dispatches on the prompt prefix:
      rerank prompts   -> "true" when the document mentions a relevant term
      compress prompts -> echoes the context back
      HyDE prompts     -> ``hyde_text``
      agent prompts    -> next entry of ``agent_replies`` ("" once exhausted)
      anything else    -> ``answer_text``
    """

    def __init__(
        self,
        relevant_terms=("inled",),
        hyde_text: str = "Inled Group is a lighting company.",
        agent_replies: Optional[List[str]] = None,
        answer_text: str = "Inled Group is a Spanish lighting company.",
    ):
        self.relevant_terms = tuple(t.lower() for t in relevant_terms)
        self.hyde_text = hyde_text
        self.agent_replies = list(agent_replies or [])
        self.answer_text = answer_text
        self.prompts: List[str] = []
        self.kwargs: List[dict] = []

    def generate(self, prompt, max_new_tokens=256, temperature=0.3, do_sample=True, **kwargs):
        self.prompts.append(prompt)
        self.kwargs.append(dict(
            max_new_tokens=max_new_tokens,
            temperature=temperature,
            do_sample=do_sample,
            **kwargs,
        ))
        if prompt.startswith("Query:"):
            document = prompt.split(" Document: ", 1)[1].lower()
            return "true" if any(t in document for t in self.relevant_terms) else "false"
        if prompt.startswith("Task: Compress"):
            return prompt.split("Context: ", 1)[1].rsplit("\nCompressed Summary:", 1)[0]
        if prompt.startswith("Write a comprehensive answer"):
            return self.hyde_text
        if prompt.startswith("System: You are an expert Research Agent"):
            return self.agent_replies.pop(0) if self.agent_replies else ""
        return self.answer_text

    def prompts_starting_with(self, prefix: str) -> List[str]:
        return [p for p in self.prompts if p.startswith(prefix)]


INLED_DOC = (
    "Inled Group is a lighting company based in Valencia, Spain. "
    "The company designs LED luminaires for offices and warehouses. "
    "Inled Group was founded in 2009 and exports to twenty countries."
)

PHOTOSYNTHESIS_DOC = (
    "Photosynthesis converts sunlight into chemical energy. "
    "Plants absorb carbon dioxide through their leaves. "
    "Chlorophyll gives leaves their green colour."
)

COOKING_DOC = (
    "Paella needs short grain rice and saffron. "
    "Cook the rice slowly without stirring. "
    "Serve the paella straight from the pan."
)
