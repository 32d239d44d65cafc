"""Data models shared across the analysis pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone

from mail_insight.exceptions import InvalidRequestError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and normalise aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class DateRange:
    """Inclusive [start, end] interval in UTC."""

    start: datetime
    end: datetime

    def __post_init__(self):
        if not isinstance(self.start, datetime) or not isinstance(self.end, datetime):
            raise InvalidRequestError("Date range bounds must be datetimes")
        object.__setattr__(self, "start", as_utc(self.start))
        object.__setattr__(self, "end", as_utc(self.end))
        if self.start > self.end:
            raise InvalidRequestError(
                f"Start date {self.start.isoformat()} is after end date {self.end.isoformat()}"
            )

    def contains(self, moment: datetime) -> bool:
        return self.start <= as_utc(moment) <= self.end

    def overlaps(self, other: DateRange) -> bool:
        return self.start <= other.end and other.start <= self.end


@dataclass(frozen=True)
class CredentialRecord:
    """Access/refresh token state for one provider. Replaced wholesale, never merged."""

    provider: str
    access_token: str
    refresh_token: str | None
    expires_at: datetime

    def __post_init__(self):
        object.__setattr__(self, "expires_at", as_utc(self.expires_at))

    def expires_within(self, seconds: float, now: datetime | None = None) -> bool:
        now = now or utcnow()
        return (self.expires_at - now).total_seconds() <= seconds

    def to_dict(self) -> dict:
        return {
            "provider": self.provider,
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "expires_at": self.expires_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> CredentialRecord:
        return cls(
            provider=data["provider"],
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            expires_at=datetime.fromisoformat(data["expires_at"]),
        )

    def masked(self) -> dict:
        """Diagnostic view without secrets."""
        return {
            "provider": self.provider,
            "expires_at": self.expires_at.isoformat(),
            "has_refresh_token": bool(self.refresh_token),
        }


@dataclass(frozen=True)
class Message:
    """A message as returned by a provider. Immutable once fetched."""

    source_id: str
    subject: str
    sender: str
    received_at: datetime
    preview: str
    provider: str

    def __post_init__(self):
        object.__setattr__(self, "received_at", as_utc(self.received_at))

    def render(self) -> str:
        """Canonical text used for summarization batches and embeddings."""
        return (
            f"Subject: {self.subject}\n"
            f"From: {self.sender}\n"
            f"Date: {self.received_at:%Y-%m-%d %H:%M}\n"
            f"Preview: {self.preview}"
        )

    def to_dict(self) -> dict:
        return {
            "source_id": self.source_id,
            "subject": self.subject,
            "sender": self.sender,
            "received_at": self.received_at.isoformat(),
            "preview": self.preview,
            "provider": self.provider,
        }


@dataclass
class MessageDocument:
    """Persisted projection of a :class:`Message` plus its embedding.

    Keyed by ``(provider, source_id)``. ``similarity`` is only set on
    documents returned by a search and is never persisted.
    """

    provider: str
    source_id: str
    subject: str
    sender: str
    received_at: datetime
    content: str
    embedding: list[float] = field(default_factory=list)
    fetched_at: datetime = field(default_factory=utcnow)
    analyzed_at: datetime | None = None
    labels: list[str] = field(default_factory=list)
    similarity: float | None = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.provider, self.source_id)

    @property
    def doc_id(self) -> str:
        return f"{self.provider}:{self.source_id}"

    @classmethod
    def from_message(
        cls,
        message: Message,
        embedding: list[float],
        fetched_at: datetime | None = None,
        analyzed_at: datetime | None = None,
    ) -> MessageDocument:
        return cls(
            provider=message.provider,
            source_id=message.source_id,
            subject=message.subject,
            sender=message.sender,
            received_at=message.received_at,
            content=message.preview,
            embedding=list(embedding),
            fetched_at=fetched_at or utcnow(),
            analyzed_at=analyzed_at,
        )

    def with_similarity(self, score: float) -> MessageDocument:
        return replace(self, similarity=score)


@dataclass(frozen=True)
class BatchSummary:
    index: int
    message_count: int
    source_ids: list[str]
    summary: str
    embedding: list[float]

    def to_dict(self) -> dict:
        return {
            "index": self.index,
            "message_count": self.message_count,
            "source_ids": list(self.source_ids),
            "summary": self.summary,
            "embedding": list(self.embedding),
        }

    @classmethod
    def from_dict(cls, data: dict) -> BatchSummary:
        return cls(
            index=data["index"],
            message_count=data["message_count"],
            source_ids=list(data["source_ids"]),
            summary=data["summary"],
            embedding=list(data.get("embedding", [])),
        )


@dataclass
class AnalysisResult:
    """Outcome of one map-reduce analysis.

    Self-contained: batch summaries keep their source ids and embeddings so
    the result stays readable after the underlying documents expire.
    """

    provider: str
    date_range: DateRange
    total_messages: int
    batches: list[BatchSummary]
    final_summary: str
    embedding: list[float] = field(default_factory=list)
    earliest_received: datetime | None = None
    latest_received: datetime | None = None
    created_at: datetime = field(default_factory=utcnow)
    analysis_id: str | None = None

    @property
    def source_ids(self) -> list[str]:
        return [sid for batch in self.batches for sid in batch.source_ids]

    def to_dict(self) -> dict:
        return {
            "analysis_id": self.analysis_id,
            "provider": self.provider,
            "start": self.date_range.start.isoformat(),
            "end": self.date_range.end.isoformat(),
            "total_messages": self.total_messages,
            "batches": [b.to_dict() for b in self.batches],
            "final_summary": self.final_summary,
            "embedding": list(self.embedding),
            "earliest_received": self.earliest_received.isoformat() if self.earliest_received else None,
            "latest_received": self.latest_received.isoformat() if self.latest_received else None,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> AnalysisResult:
        def _dt(value):
            return datetime.fromisoformat(value) if value else None

        return cls(
            analysis_id=data.get("analysis_id"),
            provider=data["provider"],
            date_range=DateRange(_dt(data["start"]), _dt(data["end"])),
            total_messages=data["total_messages"],
            batches=[BatchSummary.from_dict(b) for b in data["batches"]],
            final_summary=data["final_summary"],
            embedding=list(data.get("embedding", [])),
            earliest_received=_dt(data.get("earliest_received")),
            latest_received=_dt(data.get("latest_received")),
            created_at=_dt(data["created_at"]),
        )


@dataclass
class SearchHit:
    source_id: str
    subject: str
    sender: str
    received_at: datetime
    similarity: float
    content: str

    def to_dict(self) -> dict:
        return {
            "source_id": self.source_id,
            "subject": self.subject,
            "sender": self.sender,
            "received_at": self.received_at.isoformat(),
            "similarity": self.similarity,
            "content": self.content,
        }


@dataclass
class SearchResponse:
    query: str
    results: list[SearchHit]
    analysis: str

    @property
    def total_results(self) -> int:
        return len(self.results)

    def to_dict(self) -> dict:
        return {
            "query": self.query,
            "total_results": self.total_results,
            "results": [hit.to_dict() for hit in self.results],
            "analysis": self.analysis,
        }
