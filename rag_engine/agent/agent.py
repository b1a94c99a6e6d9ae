"""
Iterative Retrieval Agent
==========================
Answers a question by letting the generator drive the agent tools.

Loop (at most ``max_iterations`` rounds):
  1. Send the running transcript to the generator (greedy decoding).
  2. Parse the reply with ``parse_action``:
       FinalAnswer -> return it
       ToolCall    -> run the tool, append call + observation
       Thought     -> append it, next round
  3. On a malformed reply, count an error.  The first one gets a format
     reminder; from the second consecutive one the agent runs a keyword
     search over the question's content words, feeds the result back and
     tells the model to answer now.  A well-formed reply resets the
     count.

``chunk_read`` is idempotent within one run: chunks already read are
not returned again, the model gets an "already read" notice instead.

Running out of rounds returns a fixed "insufficient information"
message, never an empty answer.
"""

import json
import logging
from typing import Callable, List, Optional, Set

from rag_engine.agent.actions import FinalAnswer, ToolCall, parse_action
from rag_engine.agent.tools import AgentTools
from rag_engine.cancellation import CancellationToken, checkpoint
from rag_engine.embeddings.sparse import tokenize
from rag_engine.errors import MalformedModelOutput
from rag_engine.llm.prompts import (
    AGENT_ALREADY_READ,
    AGENT_EMERGENCY,
    AGENT_FORMAT_ERROR,
    AGENT_INSUFFICIENT_INFORMATION,
    AGENT_SYSTEM_PROMPT,
)

logger = logging.getLogger(__name__)

EMERGENCY_AFTER_ERRORS = 2

ProgressFn = Callable[[str], None]


class RetrievalAgent:
    """
    Usage:
        agent = RetrievalAgent(AgentTools(store, embedder), generator)
        answer = agent.run("What is Inled Group?")
    """

    def __init__(
        self,
        tools: AgentTools,
        generator,
        max_iterations: int = 5,
        tool_top_k: int = 3,
        max_new_tokens: int = 300,
        temperature: float = 0.1,
        repetition_penalty: float = 1.2,
    ):
        self.tools = tools
        self.generator = generator
        self.max_iterations = max_iterations
        self.tool_top_k = tool_top_k
        self.max_new_tokens = max_new_tokens
        self.temperature = temperature
        self.repetition_penalty = repetition_penalty

    def _execute(self, action: ToolCall, chunks_read: Set[str]):
        call = action.tool_call
        if call.name == "keyword_search":
            return self.tools.keyword_search(call.args.keywords, k=self.tool_top_k)
        if call.name == "semantic_search":
            return self.tools.semantic_search(call.args.query, k=self.tool_top_k)

        unread: List[str] = [cid for cid in call.args.chunk_ids if cid not in chunks_read]
        if not unread:
            return AGENT_ALREADY_READ
        chunks_read.update(unread)
        return self.tools.chunk_read(unread)

    def run(
        self,
        question: str,
        on_progress: Optional[ProgressFn] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> str:
        transcript = AGENT_SYSTEM_PROMPT.format(question=question)
        chunks_read: Set[str] = set()
        errors = 0

        for iteration in range(self.max_iterations):
            checkpoint(cancel, "agent")
            if on_progress:
                on_progress(f"Research round {iteration + 1}...")

            raw = self.generator.generate(
                transcript,
                max_new_tokens=self.max_new_tokens,
                temperature=self.temperature,
                do_sample=False,
                repetition_penalty=self.repetition_penalty,
            )

            try:
                action = parse_action(raw)
            except MalformedModelOutput as exc:
                errors += 1
                logger.warning("Agent round %d: malformed action (%d in a row): %s",
                               iteration + 1, errors, exc)
                if errors >= EMERGENCY_AFTER_ERRORS:
                    if on_progress:
                        on_progress("Recovering: running emergency keyword search...")
                    emergency = self.tools.keyword_search(tokenize(question), k=self.tool_top_k)
                    transcript += "\n" + AGENT_EMERGENCY.format(
                        observation=json.dumps(emergency, ensure_ascii=False)
                    )
                else:
                    transcript += "\n" + AGENT_FORMAT_ERROR
                continue

            errors = 0
            if isinstance(action, FinalAnswer):
                logger.info("Agent answered after %d round(s)", iteration + 1)
                return action.final_answer

            step = action.model_dump_json(exclude={"kind"}, exclude_none=True)
            if isinstance(action, ToolCall):
                if on_progress:
                    on_progress(f"Running {action.tool_call.name}...")
                observation = self._execute(action, chunks_read)
                logger.debug("Agent tool %s -> %s", action.tool_call.name, str(observation)[:120])
                transcript += (
                    f"\nAssistant: {step}"
                    f"\nObservation: {json.dumps(observation, ensure_ascii=False)}"
                )
            else:
                transcript += f"\nAssistant: {step}"

        logger.info("Agent exhausted %d rounds without a final answer", self.max_iterations)
        return AGENT_INSUFFICIENT_INFORMATION
