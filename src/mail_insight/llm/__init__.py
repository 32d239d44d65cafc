"""LLM client wrapper (Anthropic Claude)."""

from mail_insight.llm.client import DEFAULT_MODEL, LLMClient

__all__ = ["DEFAULT_MODEL", "LLMClient"]
