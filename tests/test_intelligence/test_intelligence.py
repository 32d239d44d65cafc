"""Tests for the TextIntelligence gateway."""

from unittest.mock import MagicMock

import pytest

from mail_insight.exceptions import EmbeddingError, GenerationError, LLMError
from mail_insight.intelligence import SUMMARY_SYSTEM_PROMPT, TextIntelligence


@pytest.fixture
def llm():
    mock = MagicMock()
    mock.generate.return_value = {"text": "generated", "input_tokens": 10, "output_tokens": 2, "model": "m"}
    return mock


@pytest.fixture
def embedder():
    mock = MagicMock()
    mock.embed.return_value = [0.1, 0.2]
    mock.embed_query.return_value = [0.3, 0.4]
    return mock


def test_summarize_uses_summary_prompt(llm, embedder):
    intel = TextIntelligence(llm, embedder, max_tokens=512)
    assert intel.summarize("batch text") == "generated"
    system, content = llm.generate.call_args.args
    assert system == SUMMARY_SYSTEM_PROMPT
    assert content.endswith("batch text")
    assert llm.generate.call_args.kwargs["max_tokens"] == 512


def test_complete_passes_prompt(llm, embedder):
    assert TextIntelligence(llm, embedder).complete("question") == "generated"
    assert llm.generate.call_args.args[1] == "question"


def test_embed_and_embed_query_route_to_embedder(llm, embedder):
    intel = TextIntelligence(llm, embedder)
    assert intel.embed("doc") == [0.1, 0.2]
    assert intel.embed_query("q") == [0.3, 0.4]


def test_unexpected_errors_are_wrapped(llm, embedder):
    llm.generate.side_effect = ConnectionError("reset")
    embedder.embed.side_effect = OSError("socket")
    intel = TextIntelligence(llm, embedder)
    with pytest.raises(GenerationError, match="Text generation failed"):
        intel.summarize("x")
    with pytest.raises(GenerationError, match="Embedding failed"):
        intel.embed("x")


def test_generation_errors_pass_through(llm, embedder):
    llm.generate.side_effect = LLMError("rate limited")
    embedder.embed_query.side_effect = EmbeddingError("down")
    intel = TextIntelligence(llm, embedder)
    with pytest.raises(LLMError):
        intel.complete("x")
    with pytest.raises(EmbeddingError):
        intel.embed_query("x")
