"""In-process corpus store backend."""

from __future__ import annotations

import copy
import logging
import threading
import uuid
from dataclasses import replace
from datetime import datetime

from mail_insight.models import AnalysisResult, DateRange, MessageDocument
from mail_insight.store.base import BaseCorpusStore, retention_cutoff

logger = logging.getLogger(__name__)


class InMemoryCorpusStore(BaseCorpusStore):
    """Lock-guarded dictionaries. Not durable; for tests and local runs.

    Documents are returned in first-insertion order, which an overwrite
    does not change.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._messages: dict[tuple[str, str], MessageDocument] = {}
        self._analyses: list[AnalysisResult] = []

    def upsert_message(self, doc: MessageDocument) -> None:
        stored = replace(doc, embedding=list(doc.embedding), labels=list(doc.labels), similarity=None)
        with self._lock:
            self._messages[doc.key] = stored

    def query_messages(
        self,
        provider: str,
        date_range: DateRange | None = None,
        now: datetime | None = None,
    ) -> list[MessageDocument]:
        cutoff = retention_cutoff(now, self.retention_days)
        with self._lock:
            docs = list(self._messages.values())
        return [
            replace(doc, embedding=list(doc.embedding), labels=list(doc.labels))
            for doc in docs
            if doc.provider == provider
            and doc.fetched_at >= cutoff
            and (date_range is None or date_range.contains(doc.received_at))
        ]

    def get_message(self, provider: str, source_id: str) -> MessageDocument | None:
        with self._lock:
            doc = self._messages.get((provider, source_id))
        return copy.deepcopy(doc) if doc else None

    def insert_analysis(self, result: AnalysisResult) -> str:
        analysis_id = uuid.uuid4().hex
        stored = copy.deepcopy(result)
        stored.analysis_id = analysis_id
        with self._lock:
            self._analyses.append(stored)
        result.analysis_id = analysis_id
        return analysis_id

    def query_analyses(
        self,
        provider: str,
        date_range: DateRange,
        limit: int = 10,
    ) -> list[AnalysisResult]:
        with self._lock:
            matches = [
                copy.deepcopy(a)
                for a in self._analyses
                if a.provider == provider and a.date_range.overlaps(date_range)
            ]
        matches.sort(key=lambda a: a.created_at, reverse=True)
        return matches[:limit]

    def prune_expired(self, now: datetime | None = None) -> int:
        cutoff = retention_cutoff(now, self.retention_days)
        with self._lock:
            expired = [key for key, doc in self._messages.items() if doc.fetched_at < cutoff]
            for key in expired:
                del self._messages[key]
        if expired:
            logger.info(f"Pruned {len(expired)} expired documents")
        return len(expired)

    def count(self) -> int:
        with self._lock:
            return len(self._messages)
