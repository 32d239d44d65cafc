"""Ollama embedding backend."""

from __future__ import annotations

import logging
import time

import httpx

from mail_insight.embeddings.base import BaseEmbedder
from mail_insight.exceptions import EmbeddingError

logger = logging.getLogger(__name__)

MAX_RETRIES = 3


class OllamaEmbedder(BaseEmbedder):
    """Ollama local embeddings with retry on connection problems."""

    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        model: str = "nomic-embed-text",
        timeout: float = 30.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = timeout

    def _call_api(self, text: str) -> list[float]:
        for attempt in range(MAX_RETRIES):
            try:
                with httpx.Client(timeout=self.timeout) as client:
                    response = client.post(
                        f"{self.base_url}/api/embeddings",
                        json={"model": self.model, "prompt": text},
                    )
                    response.raise_for_status()
                    return response.json()["embedding"]
            except (httpx.ConnectError, httpx.TimeoutException) as e:
                wait = 2 ** attempt
                logger.warning(f"Ollama connection issue ({e}), retrying in {wait}s (attempt {attempt + 1})")
                time.sleep(wait)
            except (httpx.HTTPError, KeyError, ValueError) as e:
                raise EmbeddingError(f"Ollama embedding failed: {e}") from e
        raise EmbeddingError(f"Ollama embedding failed after {MAX_RETRIES} retries")

    def embed(self, text: str) -> list[float]:
        return self._call_api(text)

    def embed_query(self, text: str) -> list[float]:
        return self._call_api(text)
