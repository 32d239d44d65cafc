"""Abstract base class for corpus store backends."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime, timedelta

from mail_insight.models import AnalysisResult, DateRange, MessageDocument, utcnow

RETENTION_DAYS = 30


def retention_cutoff(now: datetime | None = None, days: int = RETENTION_DAYS) -> datetime:
    """Documents fetched before this moment are expired."""
    return (now or utcnow()) - timedelta(days=days)


class BaseCorpusStore(ABC):
    """Durable store of message documents and analysis results.

    ``upsert_message`` is the only mutation path for message documents and
    must be atomic per ``(provider, source_id)`` key.
    """

    retention_days: int = RETENTION_DAYS

    @abstractmethod
    def upsert_message(self, doc: MessageDocument) -> None:
        """Insert or wholly replace the document with the same key."""
        ...

    @abstractmethod
    def query_messages(
        self,
        provider: str,
        date_range: DateRange | None = None,
        now: datetime | None = None,
    ) -> list[MessageDocument]:
        """Unexpired documents for ``provider`` received inside ``date_range``."""
        ...

    @abstractmethod
    def insert_analysis(self, result: AnalysisResult) -> str:
        """Append an analysis result and return its id."""
        ...

    @abstractmethod
    def query_analyses(
        self,
        provider: str,
        date_range: DateRange,
        limit: int = 10,
    ) -> list[AnalysisResult]:
        """Analyses whose range overlaps ``date_range``, newest first."""
        ...

    @abstractmethod
    def prune_expired(self, now: datetime | None = None) -> int:
        """Delete expired message documents. Returns the number removed."""
        ...

    @abstractmethod
    def count(self) -> int:
        """Number of stored message documents, expired or not."""
        ...
