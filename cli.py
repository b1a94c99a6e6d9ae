"""
RAG Engine -- Command Line Interface
======================================
Entry point for all user-facing operations.

Commands:
  index     -- Chunk, embed and index plain-text documents
  search    -- Hybrid search over indexed chunks (no LLM)
  ask       -- Full pipeline: classify, HyDE, search, rerank, compress, answer
  agent     -- Answer with the iterative tool-using agent
  feedback  -- Vote a chunk up or down
  delete    -- Remove a document and everything derived from it
  stats     -- Show index, agent store and model backend status

Usage examples:
  python cli.py index docs/inled.txt --agent
  python cli.py search "Inled Group lighting"
  python cli.py ask "What is Inled Group?"
  python cli.py agent "Who founded Inled Group?"
  python cli.py feedback 3f2a... up
  python cli.py delete inled-2024
  python cli.py stats

Design notes:
  - Uses argparse from the standard library.
  - Each command maps to a handler that wires the engine modules
    together from ``configs/settings.yaml``.
  - Text extraction is out of scope: ``index`` reads UTF-8 text files.
  - Logging is configured at startup based on --verbose flag.
"""

import argparse
import logging
import sys
from pathlib import Path


def setup_logging(verbose: bool = False) -> None:
    """Configure root logger."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


# ===================================================================
# Wiring helpers
# ===================================================================

def _load_config(args: argparse.Namespace):
    from rag_engine.config import load_config

    return load_config(args.config)


def _load_agent_store(config):
    from rag_engine.agent.store import AgentStore

    store = AgentStore()
    if (Path(config.store.agent_dir) / "chunks.json").exists():
        store.load(config.store.agent_dir)
    return store


def _build_pipeline(config, with_agent: bool = False):
    from rag_engine.feedback.relevance import RelevanceStore
    from rag_engine.index import create_vector_index
    from rag_engine.retrieval.pipeline import AdvancedRAGPipeline
    from rag_engine.runtime import ModelRuntime

    runtime = ModelRuntime.from_config(config)
    return AdvancedRAGPipeline(
        runtime,
        create_vector_index(config),
        config,
        relevance_store=RelevanceStore(config.store.feedback_path),
        agent_store=_load_agent_store(config) if with_agent else None,
    )


def _persist(pipeline, config) -> None:
    """Write local stores back to disk (Milvus persists on its own)."""
    from rag_engine.index.local_index import LocalVectorIndex

    if isinstance(pipeline.index, LocalVectorIndex):
        pipeline.index.save(config.store.index_dir)
    if pipeline.agent_store is not None:
        pipeline.agent_store.save(config.store.agent_dir)


def _print_progress(stage: str, percent: int, message: str) -> None:
    print(f"  [{percent:3d}%] {stage:<15s} {message}")


# ===================================================================
# Command handlers
# ===================================================================

def cmd_index(args: argparse.Namespace) -> None:
    """Index one or more UTF-8 text files."""
    config = _load_config(args)
    pipeline = _build_pipeline(config, with_agent=args.agent)

    if args.document_id and len(args.files) > 1:
        print("ERROR: --document-id can only be used with a single file.")
        sys.exit(1)

    total = 0
    for file_name in args.files:
        path = Path(file_name)
        if not path.is_file():
            print(f"ERROR: File not found: {path}")
            sys.exit(1)
        text = path.read_text(encoding="utf-8")
        metadata = {"source": path.name, "document_id": args.document_id or path.stem}
        count = pipeline.index_document(text, metadata, show_progress=True)
        print(f"Indexed {path.name}: {count} chunks (document_id={metadata['document_id']})")
        total += count

    _persist(pipeline, config)
    print(f"\nDone. {total} chunks indexed, index size {pipeline.index.size}.")


def cmd_search(args: argparse.Namespace) -> None:
    """
    Hybrid search with the raw query for both halves.
    No LLM involved: no HyDE, no reranking.
    """
    from rag_engine.embeddings.sparse import SparseVectorizer
    from rag_engine.index import create_vector_index
    from rag_engine.runtime import ModelRuntime

    config = _load_config(args)
    runtime = ModelRuntime.from_config(config)
    index = create_vector_index(config)

    dense = runtime.require("embedder").embed(args.query)
    sparse = SparseVectorizer(config.search.sparse_dimension).encode(args.query)
    results = index.search_hybrid(dense, sparse, limit=args.top_k)

    if not results:
        print("No results found.")
        return

    print(f"\n{'='*60}")
    print(f"Search results for: \"{args.query}\"")
    print(f"{'='*60}")
    for i, r in enumerate(results, 1):
        print(f"\n--- Result {i} (score: {r.score:.4f}) ---")
        print(f"Document: {r.metadata.get('document_id')}")
        print(f"Chunk:    {r.id}")
        preview = r.small_content[:300].replace("\n", " ")
        print(f"Text:     {preview}")
    print(f"\n{'='*60}")


def cmd_ask(args: argparse.Namespace) -> None:
    """Run the full pipeline and print the answer (or only the context)."""
    config = _load_config(args)
    pipeline = _build_pipeline(config)

    llm = pipeline.runtime.generator
    if not llm.is_available():
        print(
            "ERROR: Ollama is not available.\n"
            "Start Ollama with:  ollama serve\n"
            f"Pull model with:    ollama pull {llm.model}\n"
        )
        sys.exit(1)

    print(f"\nQuestion: {args.question}\n")
    if args.context_only:
        response = pipeline.execute(args.question, on_progress=_print_progress)
    else:
        response = pipeline.answer(args.question, template=args.template, on_progress=_print_progress)

    print(f"\n{'='*60}")
    print(f"Mode: {response.mode}")
    if response.context is not None:
        print(f"--- Context ---\n{response.context}")
    elif response.mode == "rag":
        print("No relevant context found in the knowledge base.")
    if response.answer is not None:
        print(f"--- Answer ---\n{response.answer}")
    if response.sources:
        print(f"--- Sources ({len(response.sources)}, best last) ---")
        for source in response.sources:
            meta = source["metadata"]
            print(f"  {source['id']}  {meta.get('source', '')}  {meta.get('document_id', '')}")
    print(f"{'='*60}")


def cmd_agent(args: argparse.Namespace) -> None:
    """Answer a question with the iterative retrieval agent."""
    from rag_engine.agent.agent import RetrievalAgent
    from rag_engine.agent.tools import AgentTools
    from rag_engine.runtime import ModelRuntime

    config = _load_config(args)
    store = _load_agent_store(config)
    if store.num_chunks == 0:
        print("ERROR: Agent store is empty. Run 'python cli.py index <file> --agent' first.")
        sys.exit(1)

    runtime = ModelRuntime.from_config(config)
    agent = RetrievalAgent(
        AgentTools(store, runtime.require("embedder")),
        runtime.require("generator"),
        max_iterations=config.agent.max_iterations,
        tool_top_k=config.agent.tool_top_k,
        max_new_tokens=config.agent.max_new_tokens,
        temperature=config.agent.temperature,
    )
    answer = agent.run(args.question, on_progress=lambda msg: print(f"  {msg}"))

    print(f"\n{'='*60}")
    print(f"Question: {args.question}")
    print(f"{'='*60}")
    print(f"\n{answer}\n")
    print(f"{'='*60}")


def cmd_feedback(args: argparse.Namespace) -> None:
    """Record a relevance vote for one chunk."""
    from rag_engine.feedback.relevance import RelevanceStore

    config = _load_config(args)
    store = RelevanceStore(config.store.feedback_path)
    entry = store.update_chunk_relevance(args.chunk_id, args.vote)
    print(f"Chunk {entry.chunk_id}: boost={entry.boost:.2f} votes={entry.votes}")


def cmd_delete(args: argparse.Namespace) -> None:
    """Delete a document from the index, the agent store and the feedback store."""
    from rag_engine.feedback.relevance import RelevanceStore
    from rag_engine.index import create_vector_index
    from rag_engine.retrieval.pipeline import AdvancedRAGPipeline
    from rag_engine.runtime import ModelRuntime

    config = _load_config(args)
    # Deletion needs no models: an empty runtime is enough.
    pipeline = AdvancedRAGPipeline(
        ModelRuntime(),
        create_vector_index(config),
        config,
        relevance_store=RelevanceStore(config.store.feedback_path),
        agent_store=_load_agent_store(config),
    )
    removed = pipeline.delete_document(args.document_id)
    _persist(pipeline, config)
    print(f"Deleted document {args.document_id}: {removed} indexed chunks.")


def cmd_stats(args: argparse.Namespace) -> None:
    """Display statistics about the current state of the engine."""
    from rag_engine.feedback.relevance import RelevanceStore
    from rag_engine.index import create_vector_index
    from rag_engine.llm.ollama_client import OllamaClient

    config = _load_config(args)
    print(f"\n{'='*60}")
    print("RAG Engine -- Statistics")
    print(f"{'='*60}")

    print(f"\nVector index ({config.store.backend}):")
    index = create_vector_index(config)
    print(f"  Indexed chunks: {index.size}")

    print(f"\nAgent store: {config.store.agent_dir}")
    store = _load_agent_store(config)
    print(f"  Chunks: {store.num_chunks}  Sentences: {store.num_sentences}")

    print(f"\nRelevance feedback: {config.store.feedback_path}")
    print(f"  Voted chunks: {len(RelevanceStore(config.store.feedback_path))}")

    print("\nLLM backend:")
    client = OllamaClient(config.models.ollama_url, config.models.generator_model)
    if client.is_available():
        print(f"  Ollama: AVAILABLE (model: {client.model})")
    else:
        print(f"  Ollama: model '{client.model}' not found or server not running")

    print(f"\n{'='*60}")


# ===================================================================
# Argument parser
# ===================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="rag-engine",
        description=(
            "Hybrid retrieval-and-reasoning engine over a local document "
            "collection.  Dense + sparse search, reranking and compression."
        ),
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to settings.yaml (default: configs/settings.yaml)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # -- index --
    p_index = subparsers.add_parser(
        "index",
        help="Index plain-text documents",
    )
    p_index.add_argument(
        "files",
        nargs="+",
        help="UTF-8 text files to index",
    )
    p_index.add_argument(
        "--document-id",
        type=str,
        default=None,
        dest="document_id",
        help="Document id to use (single file only; default: file stem)",
    )
    p_index.add_argument(
        "--agent",
        action="store_true",
        help="Also build the sentence store used by the 'agent' command",
    )
    p_index.set_defaults(func=cmd_index)

    # -- search --
    p_search = subparsers.add_parser(
        "search",
        help="Hybrid search over indexed chunks (no LLM)",
    )
    p_search.add_argument(
        "query",
        type=str,
        help="Search query",
    )
    p_search.add_argument(
        "--top-k",
        type=int,
        default=5,
        dest="top_k",
        help="Number of results to return (default: 5)",
    )
    p_search.set_defaults(func=cmd_search)

    # -- ask --
    p_ask = subparsers.add_parser(
        "ask",
        help="Ask a question (full retrieval pipeline + LLM answer)",
    )
    p_ask.add_argument(
        "question",
        type=str,
        help="Natural-language question",
    )
    p_ask.add_argument(
        "--template",
        choices=["default", "concise"],
        default="default",
        help="Answer prompt template (default: default)",
    )
    p_ask.add_argument(
        "--context-only",
        action="store_true",
        dest="context_only",
        help="Print the compressed context without generating an answer",
    )
    p_ask.set_defaults(func=cmd_ask)

    # -- agent --
    p_agent = subparsers.add_parser(
        "agent",
        help="Ask a question using the iterative retrieval agent",
    )
    p_agent.add_argument(
        "question",
        type=str,
        help="Natural-language question",
    )
    p_agent.set_defaults(func=cmd_agent)

    # -- feedback --
    p_feedback = subparsers.add_parser(
        "feedback",
        help="Vote a retrieved chunk up or down",
    )
    p_feedback.add_argument("chunk_id", type=str, help="Chunk id (from 'ask' sources)")
    p_feedback.add_argument("vote", choices=["up", "down"], help="Vote direction")
    p_feedback.set_defaults(func=cmd_feedback)

    # -- delete --
    p_delete = subparsers.add_parser(
        "delete",
        help="Delete a document and its chunks, agent data and votes",
    )
    p_delete.add_argument("document_id", type=str, help="Document id to delete")
    p_delete.set_defaults(func=cmd_delete)

    # -- stats --
    p_stats = subparsers.add_parser(
        "stats",
        help="Show index and backend statistics",
    )
    p_stats.set_defaults(func=cmd_stats)

    return parser


# ===================================================================
# Main entry point
# ===================================================================

def main() -> None:
    parser = build_parser()
    args = parser.parse_args()

    setup_logging(verbose=getattr(args, "verbose", False))

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    try:
        args.func(args)
    except KeyboardInterrupt:
        print("\nInterrupted by user.")
        sys.exit(130)
    except Exception as exc:
        logging.error("Command failed: %s", exc, exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
