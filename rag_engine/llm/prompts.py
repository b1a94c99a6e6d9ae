"""
Prompt Templates
=================
Every prompt the engine sends to the generator, in one place so the
exact text can be inspected and tuned.

Stages:
    HYDE_PROMPT          -- hypothetical answer used for dense retrieval
    RERANK_PROMPT        -- monoT5-style relevance verdict ("true"/"false")
    COMPRESS_PROMPT      -- abstractive compression of the retrieved context
    AGENT_SYSTEM_PROMPT  -- tool protocol of the iterative agent
    PROMPT_TEMPLATES     -- final grounded answer (system + user pairs)
"""

from typing import Dict

HYDE_PROMPT = 'Write a comprehensive answer to the question: "{query}"'

RERANK_PROMPT = "Query: {query} Document: {document} Relevant:"

COMPRESS_PROMPT = """Task: Compress the following context to retain only information relevant to the query. Remove redundancies.
Query: {query}
Context: {context}
Compressed Summary:"""


# ---------------------------------------------------------------------------
# Iterative agent
# ---------------------------------------------------------------------------

AGENT_SYSTEM_PROMPT = """System: You are an expert Research Agent. Your mission is to extract precise information from local documents.

AVAILABLE TOOLS:
1. keyword_search(keywords: string[]): Finds exact names or technical terms.
2. semantic_search(query: string): Finds related concepts or explanations.
3. chunk_read(chunk_ids: string[]): Reads the full text of specific chunks.

STRICT RULES:
- ALWAYS answer with a single JSON object.
- Do not hallucinate. If nothing is found after investigating, say "I don't have enough information".
- Use "keyword_search" for company or product names such as "Inled Group".
- When you know the answer, reply with {{"final_answer": "..."}}.

EXAMPLE RESPONSE:
{{
  "thought": "I need to find out what Inled Group is, I will use keyword search.",
  "tool_call": {{"name": "keyword_search", "args": {{"keywords": ["Inled Group"]}}}}
}}

User: {question}"""

AGENT_FORMAT_ERROR = (
    'System: ERROR: You must answer ONLY with a JSON object containing '
    '"thought" and ("tool_call" or "final_answer").'
)

AGENT_EMERGENCY = (
    "System: The previous format was incorrect. Here is data to answer "
    'directly: {observation}. Answer with {{"final_answer": "..."}}'
)

AGENT_ALREADY_READ = "You have already read these chunks."

AGENT_INSUFFICIENT_INFORMATION = (
    "I tried to research your documents but could not extract a clear "
    "answer on this topic (insufficient information)."
)


# ---------------------------------------------------------------------------
# Final answer templates
# ---------------------------------------------------------------------------
# The model has no memory of the documents: it sees the compressed context
# and the question once.  The system prompt decides whether it stays
# grounded and admits when the context is not enough.

RAG_SYSTEM_PROMPT = """You are a helpful AI assistant that answers questions based on the provided context.
Use ONLY the information from the context below to answer the question.
If the context does not contain enough information to answer, say so honestly.
Do not make up information.

CONTEXT:
{context}
"""

RAG_USER_TEMPLATE = """Based on the context provided, please answer the following question:

{question}"""

# Concise: short factual answers (dates, names, amounts).
RAG_SYSTEM_PROMPT_CONCISE = """Extract the answer from the context below.
Reply with ONLY the answer, no explanation and no preamble.
If the answer is not in the context, reply "Not found."

Context:
{context}
"""

RAG_USER_TEMPLATE_CONCISE = """{question}"""

# Used when the classifier decides no retrieval is needed.
DIRECT_SYSTEM_PROMPT = "You are a friendly, concise AI assistant."


PROMPT_TEMPLATES: Dict[str, Dict[str, str]] = {
    "default": {
        "system": RAG_SYSTEM_PROMPT,
        "user": RAG_USER_TEMPLATE,
        "description": "Balanced: grounded answers, admits uncertainty",
    },
    "concise": {
        "system": RAG_SYSTEM_PROMPT_CONCISE,
        "user": RAG_USER_TEMPLATE_CONCISE,
        "description": "Short factual answers: dates, names, amounts",
    },
}


def build_rag_prompt(question: str, context: str, template: str = "default") -> Dict[str, str]:
    """
    Build the system and user messages for a grounded answer.

    Args:
        question : the user's question
        context  : compressed context from the pipeline
        template : one of "default", "concise"

    Returns:
        Dict with "system" and "user" keys.
    """
    tmpl = PROMPT_TEMPLATES.get(template, PROMPT_TEMPLATES["default"])
    system_msg = tmpl["system"].format(context=context) if context else DIRECT_SYSTEM_PROMPT
    user_msg = tmpl["user"].format(question=question) if context else question
    return {"system": system_msg, "user": user_msg}
