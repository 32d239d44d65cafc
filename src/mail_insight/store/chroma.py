"""ChromaDB corpus store backend."""

from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime, timezone
from pathlib import Path

from mail_insight.exceptions import PersistenceError, VectorStoreError
from mail_insight.models import AnalysisResult, DateRange, MessageDocument
from mail_insight.store.base import BaseCorpusStore, retention_cutoff

logger = logging.getLogger(__name__)

MESSAGES_COLLECTION = "messages"
ANALYSES_COLLECTION = "analyses"


def _ts(value: datetime) -> float:
    return value.timestamp()


def _from_ts(value: float) -> datetime:
    return datetime.fromtimestamp(value, tz=timezone.utc)


def _where(*clauses: dict) -> dict:
    # Chroma rejects an $and with fewer than two operands
    if len(clauses) == 1:
        return clauses[0]
    return {"$and": list(clauses)}


class ChromaCorpusStore(BaseCorpusStore):
    """Persistent ChromaDB collections for message documents and analyses.

    Embeddings are stored verbatim and handed back to the caller; similarity
    is computed in application code, so only provider, date and retention
    filters are pushed down to Chroma.
    """

    def __init__(self, persist_dir: Path):
        self.persist_dir = Path(persist_dir)
        self.persist_dir.mkdir(parents=True, exist_ok=True)
        try:
            import chromadb
        except ImportError:
            raise ImportError(
                "chromadb is required for ChromaCorpusStore. "
                "Install with: pip install mail-insight"
            )
        try:
            self.client = chromadb.PersistentClient(path=str(self.persist_dir))
            self.messages = self.client.get_or_create_collection(
                name=MESSAGES_COLLECTION,
                metadata={"hnsw:space": "cosine"},
            )
            self.analyses = self.client.get_or_create_collection(
                name=ANALYSES_COLLECTION,
                metadata={"hnsw:space": "cosine"},
            )
        except Exception as e:
            raise VectorStoreError(f"Failed to initialize ChromaDB: {e}") from e

    # ---- Messages ----

    @staticmethod
    def _metadata(doc: MessageDocument) -> dict:
        metadata = {
            "provider": doc.provider,
            "source_id": doc.source_id,
            "subject": doc.subject,
            "sender": doc.sender,
            "received_ts": _ts(doc.received_at),
            "fetched_ts": _ts(doc.fetched_at),
            "labels": ",".join(doc.labels),
        }
        if doc.analyzed_at is not None:
            metadata["analyzed_ts"] = _ts(doc.analyzed_at)
        return metadata

    @staticmethod
    def _document(meta: dict, content: str | None, embedding) -> MessageDocument:
        analyzed = meta.get("analyzed_ts")
        labels = meta.get("labels") or ""
        return MessageDocument(
            provider=meta["provider"],
            source_id=meta["source_id"],
            subject=meta.get("subject", ""),
            sender=meta.get("sender", ""),
            received_at=_from_ts(meta["received_ts"]),
            content=content or "",
            embedding=[float(x) for x in embedding] if embedding is not None else [],
            fetched_at=_from_ts(meta["fetched_ts"]),
            analyzed_at=_from_ts(analyzed) if analyzed is not None else None,
            labels=[label for label in labels.split(",") if label],
        )

    def upsert_message(self, doc: MessageDocument) -> None:
        if not doc.embedding:
            raise PersistenceError(f"Refusing to store {doc.doc_id} without an embedding")
        try:
            self.messages.upsert(
                ids=[doc.doc_id],
                documents=[doc.content],
                embeddings=[list(doc.embedding)],
                metadatas=[self._metadata(doc)],
            )
        except Exception as e:
            raise VectorStoreError(f"ChromaDB upsert of {doc.doc_id} failed: {e}") from e

    def query_messages(
        self,
        provider: str,
        date_range: DateRange | None = None,
        now: datetime | None = None,
    ) -> list[MessageDocument]:
        clauses = [
            {"provider": provider},
            {"fetched_ts": {"$gte": _ts(retention_cutoff(now, self.retention_days))}},
        ]
        if date_range is not None:
            clauses.append({"received_ts": {"$gte": _ts(date_range.start)}})
            clauses.append({"received_ts": {"$lte": _ts(date_range.end)}})
        try:
            raw = self.messages.get(
                where=_where(*clauses),
                include=["embeddings", "metadatas", "documents"],
            )
        except Exception as e:
            raise VectorStoreError(f"ChromaDB message query failed: {e}") from e

        ids = raw.get("ids") or []
        embeddings = raw.get("embeddings")
        if embeddings is None:
            embeddings = [None] * len(ids)
        documents = raw.get("documents") or [None] * len(ids)
        metadatas = raw.get("metadatas") or [{}] * len(ids)

        return [
            self._document(meta or {}, content, embedding)
            for meta, content, embedding in zip(metadatas, documents, embeddings)
            if meta
        ]

    # ---- Analyses ----

    def insert_analysis(self, result: AnalysisResult) -> str:
        if not result.embedding:
            raise PersistenceError("Refusing to store an analysis without an embedding")
        analysis_id = uuid.uuid4().hex
        result.analysis_id = analysis_id
        metadata = {
            "provider": result.provider,
            "start_ts": _ts(result.date_range.start),
            "end_ts": _ts(result.date_range.end),
            "created_ts": _ts(result.created_at),
            "total_messages": result.total_messages,
        }
        try:
            self.analyses.add(
                ids=[analysis_id],
                documents=[json.dumps(result.to_dict())],
                embeddings=[list(result.embedding)],
                metadatas=[metadata],
            )
        except Exception as e:
            result.analysis_id = None
            raise VectorStoreError(f"ChromaDB analysis insert failed: {e}") from e
        return analysis_id

    def query_analyses(
        self,
        provider: str,
        date_range: DateRange,
        limit: int = 10,
    ) -> list[AnalysisResult]:
        where = _where(
            {"provider": provider},
            {"start_ts": {"$lte": _ts(date_range.end)}},
            {"end_ts": {"$gte": _ts(date_range.start)}},
        )
        try:
            raw = self.analyses.get(where=where, include=["documents"])
        except Exception as e:
            raise VectorStoreError(f"ChromaDB analysis query failed: {e}") from e

        results = [AnalysisResult.from_dict(json.loads(doc)) for doc in raw.get("documents") or [] if doc]
        results.sort(key=lambda a: a.created_at, reverse=True)
        return results[:limit]

    # ---- Maintenance ----

    def prune_expired(self, now: datetime | None = None) -> int:
        cutoff = _ts(retention_cutoff(now, self.retention_days))
        try:
            raw = self.messages.get(where={"fetched_ts": {"$lt": cutoff}}, include=[])
            ids_to_delete = raw.get("ids") or []
            if ids_to_delete:
                self.messages.delete(ids=ids_to_delete)
        except Exception as e:
            raise VectorStoreError(f"ChromaDB prune failed: {e}") from e
        if ids_to_delete:
            logger.info(f"Pruned {len(ids_to_delete)} expired documents")
        return len(ids_to_delete)

    def count(self) -> int:
        return self.messages.count()
