"""
Ollama LLM Client
===================
Text generation through a locally-running model served by Ollama
(Mistral 7B Instruct by default).

The engine uses one generator for several jobs, each with its own
decoding settings:
  - HyDE expansion      (sampled, temperature 0.7)
  - reranking verdicts  (2 tokens, temperature 0.1)
  - context compression (temperature 0.2, repetition penalty 1.2)
  - the iterative agent (greedy)
  - final grounded answers (templates in ``prompts.py``)

``generate()`` is the single call behind all of them; it satisfies the
``Generator`` protocol of ``rag_engine.runtime``.

Failures:
  An unreachable server raises ``ModelUnavailable``; callers decide
  whether that is fatal (answering) or recoverable (compression).

Prerequisites:
  1. Install Ollama: https://ollama.ai/download
  2. Pull the model: ollama pull mistral
  3. Ollama must be running: ollama serve (background process)
"""

import json
import logging
import time
import urllib.error
import urllib.request
from typing import List, Optional

from rag_engine.errors import ModelUnavailable

logger = logging.getLogger(__name__)


DEFAULT_OLLAMA_URL = "http://localhost:11434"
DEFAULT_MODEL = "mistral"


class OllamaClient:
    """
    Client for the Ollama local LLM server.

    Usage:
        client = OllamaClient()
        if client.is_available():
            text = client.generate("Summarise: ...", max_new_tokens=200)
    """

    def __init__(
        self,
        base_url: str = DEFAULT_OLLAMA_URL,
        model: str = DEFAULT_MODEL,
        timeout: float = 300.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = timeout

    # ------------------------------------------------------------------
    # Health check
    # ------------------------------------------------------------------

    def is_available(self) -> bool:
        """Check if Ollama server is running and the model is pulled."""
        try:
            url = f"{self.base_url}/api/tags"
            req = urllib.request.Request(url, method="GET")
            with urllib.request.urlopen(req, timeout=5) as resp:
                data = json.loads(resp.read().decode("utf-8"))
                models = [m["name"] for m in data.get("models", [])]
                # Ollama model names may include tags like ":latest"
                available = any(self.model in m for m in models)
                if not available:
                    logger.warning(
                        "Model '%s' not found. Available: %s. "
                        "Run: ollama pull %s",
                        self.model,
                        models,
                        self.model,
                    )
                return available
        except (urllib.error.URLError, OSError, ValueError) as exc:
            logger.error("Ollama not reachable at %s: %s", self.base_url, exc)
            return False

    def list_models(self) -> List[str]:
        """List all models available on the Ollama server."""
        try:
            url = f"{self.base_url}/api/tags"
            req = urllib.request.Request(url, method="GET")
            with urllib.request.urlopen(req, timeout=5) as resp:
                data = json.loads(resp.read().decode("utf-8"))
                return [m["name"] for m in data.get("models", [])]
        except (urllib.error.URLError, OSError, ValueError):
            return []

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    def generate(
        self,
        prompt: str,
        max_new_tokens: int = 256,
        temperature: float = 0.3,
        do_sample: bool = True,
        top_p: float = 0.9,
        repetition_penalty: Optional[float] = None,
        system: Optional[str] = None,
    ) -> str:
        """
        Run one completion and return the generated text.

        Args:
            prompt             : the full prompt text
            max_new_tokens     : generation budget (Ollama ``num_predict``)
            temperature        : sampling temperature
            do_sample          : False forces greedy decoding (temperature 0)
            top_p              : nucleus sampling threshold
            repetition_penalty : Ollama ``repeat_penalty`` when given
            system             : optional system prompt

        Raises:
            ModelUnavailable: the server cannot be reached or fails.
        """
        options = {
            "temperature": temperature if do_sample else 0.0,
            "top_p": top_p,
            "num_predict": max_new_tokens,
        }
        if repetition_penalty is not None:
            options["repeat_penalty"] = repetition_penalty

        payload = {
            "model": self.model,
            "prompt": prompt,
            "stream": False,
            "options": options,
        }
        if system:
            payload["system"] = system

        url = f"{self.base_url}/api/generate"
        req = urllib.request.Request(
            url,
            data=json.dumps(payload).encode("utf-8"),
            headers={"Content-Type": "application/json"},
            method="POST",
        )

        try:
            start_time = time.time()
            with urllib.request.urlopen(req, timeout=self.timeout) as resp:
                result = json.loads(resp.read().decode("utf-8"))
            elapsed = time.time() - start_time
        except urllib.error.URLError as exc:
            logger.error("Ollama request failed: %s", exc)
            raise ModelUnavailable(
                f"Could not reach Ollama at {self.base_url}. Is it running?"
            ) from exc
        except (OSError, ValueError) as exc:
            logger.error("LLM generation failed: %s", exc)
            raise ModelUnavailable(f"Generation failed: {exc}") from exc

        text = result.get("response", "").strip()

        eval_count = result.get("eval_count", 0)
        eval_duration = result.get("eval_duration", 0)
        tokens_per_sec = eval_count / (eval_duration / 1e9) if eval_duration else 0

        logger.debug(
            "Generated %d chars (%d tokens, %.1f tok/s, %.1fs)",
            len(text),
            eval_count,
            tokens_per_sec,
            elapsed,
        )
        return text
