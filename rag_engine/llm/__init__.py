"""
LLM subpackage -- text generation with a local language model.

    OllamaClient  -- Mistral 7B (or any pulled model) via the Ollama HTTP API
    prompts       -- every prompt template the engine sends
"""

from rag_engine.llm.ollama_client import OllamaClient
