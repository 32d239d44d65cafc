"""OpenAI embedding backend."""

from __future__ import annotations

import logging
import time

import httpx

from mail_insight.embeddings.base import BaseEmbedder
from mail_insight.exceptions import EmbeddingError

logger = logging.getLogger(__name__)

MAX_RETRIES = 3
EMBEDDINGS_URL = "https://api.openai.com/v1/embeddings"


class OpenAIEmbedder(BaseEmbedder):
    """OpenAI embeddings API with retry on rate limits and timeouts."""

    def __init__(self, api_key: str | None, model: str = "text-embedding-3-small", timeout: float = 30.0):
        if not api_key:
            raise EmbeddingError(
                "OpenAI API key is required. "
                "Pass it directly or set OPENAI_API_KEY in your environment."
            )
        self.api_key = api_key
        self.model = model
        self.timeout = timeout

    def _call_api(self, texts: list[str]) -> list[list[float]]:
        for attempt in range(MAX_RETRIES):
            try:
                with httpx.Client(timeout=self.timeout) as client:
                    response = client.post(
                        EMBEDDINGS_URL,
                        json={"input": texts, "model": self.model},
                        headers={
                            "Authorization": f"Bearer {self.api_key}",
                            "Content-Type": "application/json",
                        },
                    )
                    response.raise_for_status()
                    data = response.json()
                    # Sort by index to maintain order
                    sorted_data = sorted(data["data"], key=lambda x: x["index"])
                    return [item["embedding"] for item in sorted_data]
            except httpx.HTTPStatusError as e:
                if e.response.status_code != 429:
                    raise EmbeddingError(f"OpenAI embedding failed: {e}") from e
                wait = 2 ** (attempt + 1)
                logger.warning(f"Rate limited, retrying in {wait}s (attempt {attempt + 1})")
                time.sleep(wait)
            except httpx.TimeoutException:
                wait = 2 ** attempt
                logger.warning(f"Embedding timeout, retrying in {wait}s (attempt {attempt + 1})")
                time.sleep(wait)
            except (httpx.HTTPError, KeyError, ValueError) as e:
                raise EmbeddingError(f"OpenAI embedding failed: {e}") from e
        raise EmbeddingError(f"OpenAI embedding failed after {MAX_RETRIES} retries")

    def embed(self, text: str) -> list[float]:
        return self._call_api([text])[0]

    def embed_query(self, text: str) -> list[float]:
        return self._call_api([text])[0]
