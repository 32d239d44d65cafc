"""Corpus store backends with abstract base."""

from mail_insight.store.base import RETENTION_DAYS, BaseCorpusStore, retention_cutoff
from mail_insight.store.memory import InMemoryCorpusStore


def __getattr__(name):
    """Lazy import for the ChromaDB backend."""
    if name == "ChromaCorpusStore":
        from mail_insight.store.chroma import ChromaCorpusStore
        return ChromaCorpusStore
    raise AttributeError(f"module 'mail_insight.store' has no attribute {name!r}")


__all__ = [
    "RETENTION_DAYS",
    "BaseCorpusStore",
    "ChromaCorpusStore",
    "InMemoryCorpusStore",
    "retention_cutoff",
]
