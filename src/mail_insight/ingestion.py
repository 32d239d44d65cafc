"""Background embedding and persistence of fetched messages."""

from __future__ import annotations

import logging
import queue
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Sequence

from mail_insight.models import Message, MessageDocument, utcnow
from mail_insight.store.base import BaseCorpusStore

logger = logging.getLogger(__name__)

DEFAULT_WORKERS = 2
DEFAULT_QUEUE_SIZE = 64
DEFAULT_PRUNE_INTERVAL = 60 * 60

_STOP = object()


@dataclass
class IngestionJob:
    provider: str
    messages: list[Message]
    analyzed_at: datetime | None = None


@dataclass
class IngestionStats:
    """Counters reported out of band; ingestion errors never reach callers."""

    submitted: int = 0
    dropped: int = 0
    processed: int = 0
    failed: int = 0
    pruned: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def incr(self, name: str, amount: int = 1) -> None:
        with self._lock:
            setattr(self, name, getattr(self, name) + amount)

    def snapshot(self) -> dict:
        with self._lock:
            return {
                "submitted": self.submitted,
                "dropped": self.dropped,
                "processed": self.processed,
                "failed": self.failed,
                "pruned": self.pruned,
            }


class IngestionPipeline:
    """Fixed pool of worker threads consuming a bounded job queue.

    ``submit`` never blocks: when the queue is full the job is dropped,
    logged and counted. Workers run independently of the request that
    submitted the job.

    Args:
        intelligence: Object exposing ``embed``.
        store: Corpus store documents are upserted into.
        workers: Number of worker threads.
        queue_size: Maximum queued jobs.
        prune_interval: Minimum seconds between expired-document sweeps run
            by the workers. ``None`` disables the sweep.
        clock: Monotonic time source for the sweep throttle.
    """

    def __init__(
        self,
        intelligence,
        store: BaseCorpusStore,
        workers: int = DEFAULT_WORKERS,
        queue_size: int = DEFAULT_QUEUE_SIZE,
        prune_interval: float | None = DEFAULT_PRUNE_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.intelligence = intelligence
        self.store = store
        self.prune_interval = prune_interval
        self._clock = clock
        self._last_prune: float | None = None
        self._prune_lock = threading.Lock()
        self.stats = IngestionStats()
        self._queue: queue.Queue = queue.Queue(maxsize=max(1, queue_size))
        self._closed = False
        self._threads = [
            threading.Thread(target=self._worker, name=f"ingest-{i}", daemon=True)
            for i in range(max(1, workers))
        ]
        for thread in self._threads:
            thread.start()

    def submit(
        self,
        provider: str,
        messages: Sequence[Message],
        analyzed_at: datetime | None = None,
    ) -> bool:
        """Queue messages for ingestion. Returns False if the job was dropped."""
        if not messages:
            return True
        if self._closed:
            logger.warning(f"Ingestion pipeline closed, dropping {len(messages)} {provider} messages")
            self.stats.incr("dropped", len(messages))
            return False
        try:
            self._queue.put_nowait(IngestionJob(provider, list(messages), analyzed_at))
        except queue.Full:
            logger.warning(f"Ingestion queue full, dropping {len(messages)} {provider} messages")
            self.stats.incr("dropped", len(messages))
            return False
        self.stats.incr("submitted", len(messages))
        return True

    def ingest(self, job: IngestionJob) -> int:
        """Embed and upsert every message of ``job``. Returns the number stored."""
        stored = 0
        for message in job.messages:
            try:
                embedding = self.intelligence.embed(message.render())
                doc = MessageDocument.from_message(
                    message,
                    embedding,
                    fetched_at=utcnow(),
                    analyzed_at=job.analyzed_at,
                )
                self.store.upsert_message(doc)
            except Exception as e:
                self.stats.incr("failed")
                logger.error(f"Failed to process email {message.source_id} for {job.provider}: {e}")
                continue
            stored += 1
            self.stats.incr("processed")
            logger.debug(f"Processed and saved email {message.source_id} with embedding")
        logger.info(f"Ingested {stored}/{len(job.messages)} {job.provider} messages")
        return stored

    def prune_if_due(self) -> int:
        """Sweep expired documents if ``prune_interval`` has elapsed since the last sweep."""
        if self.prune_interval is None:
            return 0
        now = self._clock()
        with self._prune_lock:
            if self._last_prune is not None and now - self._last_prune < self.prune_interval:
                return 0
            self._last_prune = now
        try:
            removed = self.store.prune_expired()
        except Exception as e:
            logger.error(f"Expired document sweep failed: {e}")
            return 0
        self.stats.incr("pruned", removed)
        return removed

    def _worker(self) -> None:
        while True:
            job = self._queue.get()
            try:
                if job is _STOP:
                    return
                self.ingest(job)
                self.prune_if_due()
            except Exception:
                logger.exception("Ingestion worker error")
            finally:
                self._queue.task_done()

    def join(self) -> None:
        """Block until every queued job has been processed."""
        self._queue.join()

    def close(self, timeout: float | None = None) -> None:
        """Drain queued jobs, then stop the workers."""
        if self._closed:
            return
        self._closed = True
        for _ in self._threads:
            self._queue.put(_STOP)
        for thread in self._threads:
            thread.join(timeout)
