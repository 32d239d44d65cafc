"""Shared fakes for the provider, intelligence and store contracts."""

import hashlib
import threading
from datetime import datetime, timedelta, timezone

import pytest

from mail_insight.credentials import TokenStore
from mail_insight.ingestion import IngestionPipeline
from mail_insight.models import Message
from mail_insight.providers.base import AuthResult, EmailProvider
from mail_insight.providers.registry import ProviderRegistry
from mail_insight.search import SimilaritySearch
from mail_insight.service import MailAnalyzer
from mail_insight.store.memory import InMemoryCorpusStore
from mail_insight.summarizer import BatchSummarizer

BASE_TIME = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


def _vector(text: str, dims: int = 8) -> list[float]:
    digest = hashlib.sha256(text.encode()).digest()
    return [b / 255.0 + 0.01 for b in digest[:dims]]


class FakeIntelligence:
    """Deterministic stand-in for the hosted model. Records every call."""

    def __init__(self, fail_on=None, query_vectors=None):
        self.fail_on = set(fail_on or ())
        self.query_vectors = dict(query_vectors or {})
        self.calls = []
        self._lock = threading.Lock()
        self._summaries = 0

    def _record(self, kind, arg):
        with self._lock:
            self.calls.append((kind, arg))
        if kind in self.fail_on:
            raise RuntimeError(f"{kind} unavailable")

    def count(self, kind):
        with self._lock:
            return sum(1 for k, _ in self.calls if k == kind)

    def summarize(self, text):
        self._record("summarize", text)
        first_subject = text.splitlines()[0]
        return f"summary of [{first_subject}]"

    def embed(self, text):
        self._record("embed", text)
        return _vector(text)

    def embed_query(self, text):
        self._record("embed_query", text)
        return self.query_vectors.get(text, _vector(text))

    def complete(self, prompt):
        self._record("complete", prompt)
        return "synthesized overview"


class FakeProvider(EmailProvider):
    """In-memory provider returning canned messages."""

    def __init__(self, tokens, name="gmail", messages=None, refresh_ok=True):
        super().__init__(tokens)
        self.name = name
        self.messages = list(messages or [])
        self.refresh_ok = refresh_ok
        self.refresh_calls = 0
        self.list_calls = []

    def authorization_url(self):
        return f"https://auth.example.com/{self.name}?state={self.name}"

    def authenticate(self, code):
        if code == "bad":
            return AuthResult(success=False, error="invalid_grant")
        return AuthResult(
            success=True,
            access_token=f"access-{code}",
            refresh_token=f"refresh-{code}",
            expires_at=datetime.now(timezone.utc) + timedelta(hours=1),
        )

    def list_messages(self, start, end, credential):
        self.list_calls.append((start, end, credential.access_token))
        return [m for m in self.messages if start <= m.received_at <= end]

    def refresh(self, credential):
        self.refresh_calls += 1
        if not self.refresh_ok:
            return False
        self.tokens.store(
            self.name,
            "refreshed-access",
            credential.refresh_token,
            datetime.now(timezone.utc) + timedelta(hours=1),
        )
        return True


def make_messages(count, provider="gmail", start=BASE_TIME):
    return [
        Message(
            source_id=f"msg-{i}",
            subject=f"Subject {i}",
            sender=f"sender{i}@example.com",
            received_at=start + timedelta(minutes=i),
            preview=f"Preview text {i}",
            provider=provider,
        )
        for i in range(count)
    ]


@pytest.fixture
def messages_factory():
    return make_messages


@pytest.fixture
def intelligence():
    return FakeIntelligence()


@pytest.fixture
def intelligence_factory():
    return FakeIntelligence


@pytest.fixture
def token_store(tmp_path):
    return TokenStore(tmp_path / "credentials")


@pytest.fixture
def provider_factory(token_store):
    def _make(**kwargs):
        return FakeProvider(token_store, **kwargs)
    return _make


@pytest.fixture
def corpus_store():
    return InMemoryCorpusStore()


@pytest.fixture
def analyzer_factory(token_store, corpus_store):
    """Build a MailAnalyzer over fakes; the ingestion pipeline is closed on teardown."""
    built = []

    def _make(intelligence, providers, batch_size=10, queue_size=64):
        pipeline = IngestionPipeline(intelligence, corpus_store, workers=2, queue_size=queue_size)
        analyzer = MailAnalyzer(
            registry=ProviderRegistry(providers),
            tokens=token_store,
            store=corpus_store,
            summarizer=BatchSummarizer(intelligence, batch_size=batch_size, max_workers=3),
            ingestion=pipeline,
            searcher=SimilaritySearch(intelligence, corpus_store),
        )
        built.append(analyzer)
        return analyzer

    yield _make
    for analyzer in built:
        analyzer.close()
