"""Map-reduce summarization of an arbitrary number of messages."""

from __future__ import annotations

import logging
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from typing import Sequence

from mail_insight.exceptions import EmptyCorpusError, GenerationError
from mail_insight.models import AnalysisResult, BatchSummary, DateRange, Message

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 10
DEFAULT_MAP_WORKERS = 4
BATCH_SEPARATOR = "\n\n---\n\n"

REDUCE_INSTRUCTION = (
    "Below are summaries of consecutive batches of emails from one mailbox. Combine them "
    "into one cohesive final summary. Focus on overall patterns, trends and key insights "
    "rather than repeating each batch."
)


def partition(messages: Sequence[Message], batch_size: int) -> list[list[Message]]:
    """Split into consecutive batches of at most ``batch_size``, preserving order."""
    if batch_size < 1:
        raise ValueError(f"batch_size must be positive, got {batch_size}")
    return [list(messages[i : i + batch_size]) for i in range(0, len(messages), batch_size)]


def render_batch(messages: Sequence[Message]) -> str:
    return "\n\n".join(message.render() for message in messages)


def build_reduce_prompt(summaries: Sequence[str]) -> str:
    sections = [f"Batch {i + 1} summary:\n{summary}" for i, summary in enumerate(summaries)]
    return f"{REDUCE_INSTRUCTION}\n\n{BATCH_SEPARATOR.join(sections)}"


class BatchSummarizer:
    """Turns a message list into an :class:`AnalysisResult`.

    Map: each batch is rendered, summarized and the summary embedded. Batches
    are independent and run on at most ``max_workers`` threads. Reduce: one
    batch is returned verbatim; several are synthesized by a single
    ``complete`` call. Any model failure aborts the whole analysis.

    Args:
        intelligence: Object exposing ``summarize``, ``embed`` and ``complete``.
        batch_size: Messages per map step.
        max_workers: Upper bound on concurrent map steps.
    """

    def __init__(
        self,
        intelligence,
        batch_size: int = DEFAULT_BATCH_SIZE,
        max_workers: int = DEFAULT_MAP_WORKERS,
    ):
        if batch_size < 1:
            raise ValueError(f"batch_size must be positive, got {batch_size}")
        self.intelligence = intelligence
        self.batch_size = batch_size
        self.max_workers = max(1, max_workers)

    def _map_batch(self, index: int, batch: list[Message]) -> BatchSummary:
        try:
            summary = self.intelligence.summarize(render_batch(batch))
            embedding = self.intelligence.embed(summary)
        except GenerationError:
            raise
        except Exception as e:
            raise GenerationError(f"Batch {index} failed: {e}") from e
        logger.debug(f"Summarized batch {index} ({len(batch)} messages)")
        return BatchSummary(
            index=index,
            message_count=len(batch),
            source_ids=[m.source_id for m in batch],
            summary=summary,
            embedding=list(embedding),
        )

    def _map(self, batches: list[list[Message]]) -> list[BatchSummary]:
        if len(batches) == 1 or self.max_workers == 1:
            return [self._map_batch(i, batch) for i, batch in enumerate(batches)]

        workers = min(self.max_workers, len(batches))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="summarize") as executor:
            futures = [executor.submit(self._map_batch, i, batch) for i, batch in enumerate(batches)]
            done, pending = wait(futures, return_when=FIRST_EXCEPTION)
            for future in pending:
                future.cancel()
            for future in futures:
                if future in done and future.exception() is not None:
                    raise future.exception()
            # Results are read in submission order, not completion order.
            return [future.result() for future in futures]

    def _reduce(self, batch_summaries: list[BatchSummary]) -> tuple[str, list[float]]:
        if len(batch_summaries) == 1:
            only = batch_summaries[0]
            return only.summary, list(only.embedding)
        prompt = build_reduce_prompt([b.summary for b in batch_summaries])
        try:
            final = self.intelligence.complete(prompt)
            embedding = self.intelligence.embed(final)
        except GenerationError:
            raise
        except Exception as e:
            raise GenerationError(f"Final synthesis failed: {e}") from e
        return final, list(embedding)

    def summarize(
        self,
        provider: str,
        messages: Sequence[Message],
        date_range: DateRange,
    ) -> AnalysisResult:
        if not messages:
            raise EmptyCorpusError(f"No {provider} messages to analyze in the requested range")

        batches = partition(messages, self.batch_size)
        logger.info(f"Divided {len(messages)} emails into {len(batches)} batches")

        batch_summaries = self._map(batches)
        final_summary, embedding = self._reduce(batch_summaries)

        received = [m.received_at for m in messages]
        return AnalysisResult(
            provider=provider,
            date_range=date_range,
            total_messages=len(messages),
            batches=batch_summaries,
            final_summary=final_summary,
            embedding=embedding,
            earliest_received=min(received),
            latest_received=max(received),
        )
