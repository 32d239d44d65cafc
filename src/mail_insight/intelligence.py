"""Text intelligence gateway: summarize, embed and complete."""

from __future__ import annotations

import logging

from mail_insight.embeddings.base import BaseEmbedder
from mail_insight.exceptions import GenerationError
from mail_insight.llm.client import LLMClient

logger = logging.getLogger(__name__)

SUMMARY_SYSTEM_PROMPT = (
    "You are an expert at analyzing and summarizing email content. Provide a concise "
    "but comprehensive summary of the key points, patterns and important information "
    "from the provided emails."
)

COMPLETION_SYSTEM_PROMPT = (
    "You are an expert email analyst. Answer precisely and only from the material provided."
)


class TextIntelligence:
    """Hosted-model operations used by the analysis pipeline.

    Generation goes through :class:`LLMClient`, vectors through any
    :class:`BaseEmbedder`. Every failure surfaces as :class:`GenerationError`.
    """

    def __init__(self, llm: LLMClient, embedder: BaseEmbedder, max_tokens: int = 2048):
        self.llm = llm
        self.embedder = embedder
        self.max_tokens = max_tokens

    def _generate(self, system_prompt: str, content: str) -> str:
        try:
            result = self.llm.generate(system_prompt, content, max_tokens=self.max_tokens)
        except GenerationError:
            raise
        except Exception as e:
            raise GenerationError(f"Text generation failed: {e}") from e
        logger.debug(
            f"Generated {result['output_tokens']} tokens from {result['input_tokens']} with {result['model']}"
        )
        return result["text"]

    def summarize(self, text: str) -> str:
        return self._generate(
            SUMMARY_SYSTEM_PROMPT,
            f"Please analyze and summarize the following email batch:\n\n{text}",
        )

    def complete(self, prompt: str) -> str:
        return self._generate(COMPLETION_SYSTEM_PROMPT, prompt)

    def embed(self, text: str) -> list[float]:
        try:
            return self.embedder.embed(text)
        except GenerationError:
            raise
        except Exception as e:
            raise GenerationError(f"Embedding failed: {e}") from e

    def embed_query(self, text: str) -> list[float]:
        try:
            return self.embedder.embed_query(text)
        except GenerationError:
            raise
        except Exception as e:
            raise GenerationError(f"Query embedding failed: {e}") from e
