"""
Agent Action Protocol
======================
Schema for what the agent's model is allowed to say each round.

The model answers with one JSON object, in one of three shapes::

    {"thought": "..."}                                        -> Thought
    {"thought": "...", "tool_call": {"name": ..., "args": ...}} -> ToolCall
    {"final_answer": "..."}                                   -> FinalAnswer

Tool arguments are validated per tool: the ``name`` field selects the
argument schema (a pydantic discriminated union), so
``{"name": "chunk_read", "args": {"keywords": [...]}}`` is rejected
instead of silently calling the tool with nothing.

``parse_action`` is the only entry point.  It strips Markdown fences,
takes the text from the first ``{`` to the last ``}`` (small models like
to chat around their JSON) and validates it.  Anything that does not fit
raises ``MalformedModelOutput``.
"""

from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field, ValidationError, model_validator

from rag_engine.errors import MalformedModelOutput

# ---------------------------------------------------------------------------
# Tool calls
# ---------------------------------------------------------------------------

class KeywordSearchArgs(BaseModel):
    keywords: List[str] = Field(min_length=1)


class SemanticSearchArgs(BaseModel):
    query: str = Field(min_length=1)


class ChunkReadArgs(BaseModel):
    chunk_ids: List[str] = Field(min_length=1)


class KeywordSearchCall(BaseModel):
    name: Literal["keyword_search"]
    args: KeywordSearchArgs


class SemanticSearchCall(BaseModel):
    name: Literal["semantic_search"]
    args: SemanticSearchArgs


class ChunkReadCall(BaseModel):
    name: Literal["chunk_read"]
    args: ChunkReadArgs


ToolCallSpec = Annotated[
    Union[KeywordSearchCall, SemanticSearchCall, ChunkReadCall],
    Field(discriminator="name"),
]


# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------

class Thought(BaseModel):
    kind: Literal["thought"] = "thought"
    thought: str


class ToolCall(BaseModel):
    kind: Literal["tool_call"] = "tool_call"
    thought: Optional[str] = None
    tool_call: ToolCallSpec


class FinalAnswer(BaseModel):
    kind: Literal["final_answer"] = "final_answer"
    thought: Optional[str] = None
    final_answer: str = Field(min_length=1)


Action = Union[Thought, ToolCall, FinalAnswer]


class _Envelope(BaseModel):
    """What the model actually emits; resolved into one ``Action``."""
    thought: Optional[str] = None
    tool_call: Optional[ToolCallSpec] = None
    final_answer: Optional[str] = None

    @model_validator(mode="after")
    def _not_empty(self):
        if not (self.final_answer and self.final_answer.strip()) \
                and self.tool_call is None \
                and not (self.thought and self.thought.strip()):
            raise ValueError('expected "thought", "tool_call" or "final_answer"')
        return self

    def resolve(self) -> Action:
        if self.final_answer and self.final_answer.strip():
            return FinalAnswer(thought=self.thought, final_answer=self.final_answer.strip())
        if self.tool_call is not None:
            return ToolCall(thought=self.thought, tool_call=self.tool_call)
        return Thought(thought=self.thought)


def _strip_fences(text: str) -> str:
    lines = [line for line in text.strip().splitlines() if not line.strip().startswith("```")]
    return "\n".join(lines)


def parse_action(raw: str) -> Action:
    """
    Parse one model turn into an ``Action``.

    Raises:
        MalformedModelOutput: no JSON object, invalid JSON, or a schema
        violation.
    """
    text = _strip_fences(raw or "")
    start, end = text.find("{"), text.rfind("}")
    if start == -1 or end <= start:
        raise MalformedModelOutput("No JSON object found in agent output", raw_output=raw or "")

    try:
        envelope = _Envelope.model_validate_json(text[start:end + 1])
    except ValidationError as exc:
        raise MalformedModelOutput(
            f"Invalid agent action: {exc.error_count()} validation error(s)",
            raw_output=raw,
        ) from exc
    return envelope.resolve()
