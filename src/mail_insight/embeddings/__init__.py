"""Embedding backends with abstract base."""

from mail_insight.embeddings.base import BaseEmbedder
from mail_insight.embeddings.openai import OpenAIEmbedder
from mail_insight.embeddings.ollama import OllamaEmbedder

__all__ = [
    "BaseEmbedder",
    "OpenAIEmbedder",
    "OllamaEmbedder",
]
