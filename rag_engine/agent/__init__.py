"""
Agent subpackage -- iterative, tool-using retrieval.

    AgentStore      -- chunks (~1000 words) and per-sentence embeddings
    AgentIndexer    -- builds the store from document text
    AgentTools      -- keyword_search / semantic_search / chunk_read
    parse_action    -- strict Thought | ToolCall | FinalAnswer parsing
    RetrievalAgent  -- the bounded reasoning loop
"""

from rag_engine.agent.actions import FinalAnswer, Thought, ToolCall, parse_action
from rag_engine.agent.agent import RetrievalAgent
from rag_engine.agent.indexer import AgentIndexer
from rag_engine.agent.store import AgentChunk, AgentSentence, AgentStore
from rag_engine.agent.tools import AgentTools
