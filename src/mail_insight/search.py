"""Embedding similarity search with a generated analysis of the matches."""

from __future__ import annotations

import logging
import math
from typing import Sequence

from mail_insight.exceptions import GenerationError, InvalidRequestError
from mail_insight.models import DateRange, MessageDocument, SearchHit, SearchResponse
from mail_insight.store.base import BaseCorpusStore

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 5
MAX_LIMIT = 100
NO_RESULTS_ANALYSIS = "No stored emails matched the query."


def norm(vector: Sequence[float]) -> float:
    return math.sqrt(math.fsum(x * x for x in vector))


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """dot(a, b) / (|a| * |b|). Raises ValueError on mismatched or zero vectors."""
    if len(a) != len(b):
        raise ValueError(f"Dimension mismatch: {len(a)} != {len(b)}")
    denominator = norm(a) * norm(b)
    if denominator == 0:
        raise ValueError("Cosine similarity is undefined for a zero vector")
    return math.fsum(x * y for x, y in zip(a, b)) / denominator


def rank(
    query_embedding: Sequence[float],
    candidates: Sequence[MessageDocument],
    limit: int,
) -> list[MessageDocument]:
    """Top ``limit`` candidates by descending similarity, score attached.

    Candidates with an empty, mis-sized or zero embedding are skipped rather
    than scored. Ties keep the candidates' original order.
    """
    scored: list[tuple[float, MessageDocument]] = []
    skipped = 0
    for doc in candidates:
        if not doc.embedding:
            skipped += 1
            continue
        try:
            score = cosine_similarity(doc.embedding, query_embedding)
        except ValueError:
            skipped += 1
            continue
        scored.append((score, doc))
    if skipped:
        logger.warning(f"Skipped {skipped} documents with unusable embeddings")

    scored.sort(key=lambda pair: pair[0], reverse=True)
    return [doc.with_similarity(score) for score, doc in scored[:limit]]


def build_analysis_prompt(query: str, results: Sequence[MessageDocument]) -> str:
    lines = [
        f'A user searched their mailbox for: "{query}"',
        "",
        "The most similar emails, best match first:",
        "",
    ]
    for i, doc in enumerate(results, start=1):
        lines.append(f"{i}. Subject: {doc.subject}")
        lines.append(f"   From: {doc.sender}")
        lines.append(f"   Similarity: {doc.similarity:.3f}")
        lines.append(f"   Content: {doc.content}")
        lines.append("")
    lines.append(
        "Give a concise analysis of how these emails relate to the search, "
        "noting common themes and anything that needs attention."
    )
    return "\n".join(lines)


class SimilaritySearch:
    """Embeds a query, ranks stored documents and narrates the ranking.

    Args:
        intelligence: Object exposing ``embed_query`` and ``complete``.
        store: Corpus store the candidates come from.
    """

    def __init__(self, intelligence, store: BaseCorpusStore):
        self.intelligence = intelligence
        self.store = store

    def search(
        self,
        provider: str,
        query: str,
        date_range: DateRange | None = None,
        limit: int = DEFAULT_LIMIT,
    ) -> SearchResponse:
        if not query or not query.strip():
            raise InvalidRequestError("Search query must not be empty")
        if not isinstance(limit, int) or isinstance(limit, bool) or not 1 <= limit <= MAX_LIMIT:
            raise InvalidRequestError(f"Limit must be an integer between 1 and {MAX_LIMIT}")
        query = query.strip()

        try:
            query_embedding = self.intelligence.embed_query(query)
        except GenerationError:
            raise
        except Exception as e:
            raise GenerationError(f"Query embedding failed: {e}") from e

        candidates = self.store.query_messages(provider, date_range)
        top = rank(query_embedding, candidates, limit)
        logger.info(f"Search over {len(candidates)} {provider} documents returned {len(top)} results")

        if not top:
            return SearchResponse(query=query, results=[], analysis=NO_RESULTS_ANALYSIS)

        try:
            analysis = self.intelligence.complete(build_analysis_prompt(query, top))
        except GenerationError:
            raise
        except Exception as e:
            raise GenerationError(f"Search analysis failed: {e}") from e

        hits = [
            SearchHit(
                source_id=doc.source_id,
                subject=doc.subject,
                sender=doc.sender,
                received_at=doc.received_at,
                similarity=doc.similarity,
                content=doc.content,
            )
            for doc in top
        ]
        return SearchResponse(query=query, results=hits, analysis=analysis)
