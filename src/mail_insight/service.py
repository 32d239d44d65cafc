"""MailAnalyzer: the operations exposed to the surrounding application."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from mail_insight.config import Settings, get_settings
from mail_insight.credentials import TokenStore
from mail_insight.exceptions import InvalidRequestError, ProviderApiError
from mail_insight.ingestion import IngestionPipeline
from mail_insight.models import (
    AnalysisResult,
    CredentialRecord,
    DateRange,
    Message,
    MessageDocument,
    SearchResponse,
    utcnow,
)
from mail_insight.providers.base import EmailProvider, normalize_provider_name
from mail_insight.providers.registry import ProviderRegistry
from mail_insight.search import DEFAULT_LIMIT, SimilaritySearch
from mail_insight.store.base import BaseCorpusStore
from mail_insight.summarizer import BatchSummarizer

logger = logging.getLogger(__name__)

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _required_range(start: datetime | None, end: datetime | None) -> DateRange:
    if start is None or end is None:
        raise InvalidRequestError("Both start and end dates are required")
    return DateRange(start, end)


def _check_limit(limit: int) -> None:
    if not isinstance(limit, int) or isinstance(limit, bool) or limit < 1:
        raise InvalidRequestError("Limit must be a positive integer")


def _optional_range(start: datetime | None, end: datetime | None) -> DateRange | None:
    if start is None and end is None:
        return None
    return DateRange(start or EPOCH, end or utcnow())


class MailAnalyzer:
    """Fetch, analyze and search a mailbox through one provider at a time.

    Every public method resolves the provider name first, so an unknown name
    fails with :class:`~mail_insight.exceptions.UnknownProviderError` before
    any other work.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        tokens: TokenStore,
        store: BaseCorpusStore,
        summarizer: BatchSummarizer,
        ingestion: IngestionPipeline,
        searcher: SimilaritySearch,
    ):
        self.registry = registry
        self.tokens = tokens
        self.store = store
        self.summarizer = summarizer
        self.ingestion = ingestion
        self.searcher = searcher

    # ---- Authorization ----

    def authorization_url(self, provider: str) -> str:
        return self.registry.get(provider).authorization_url()

    def authenticate(self, provider: str, code: str) -> CredentialRecord:
        """Exchange ``code`` and store the resulting credential."""
        gateway = self.registry.get(provider)
        if not code:
            raise InvalidRequestError("Authorization code is required")
        result = gateway.authenticate(code)
        if not result.success or not result.access_token:
            raise ProviderApiError(f"{gateway.name} authentication failed: {result.error or 'no access token'}")
        return self.tokens.store(
            gateway.name,
            result.access_token,
            result.refresh_token,
            result.expires_at or utcnow(),
        )

    def callback(self, code: str, state: str | None) -> CredentialRecord:
        """OAuth redirect handler. ``state`` carries the provider name."""
        provider = normalize_provider_name(state)
        if not provider:
            raise InvalidRequestError("Invalid callback: no provider specified")
        logger.info(f"Received callback for {provider} with code length {len(code or '')}")
        return self.authenticate(provider, code)

    def check_connection(self, provider: str) -> dict:
        gateway = self.registry.get(provider)
        record = self.tokens.get(gateway.name)
        if record is None:
            return {"provider": gateway.name, "connected": False}
        return {"connected": True, **record.masked()}

    # ---- Credentials ----

    def store_credential(
        self,
        provider: str,
        access_token: str,
        refresh_token: str | None,
        expires_at: datetime,
    ) -> CredentialRecord:
        gateway = self.registry.get(provider)
        if not access_token:
            raise InvalidRequestError("Access token is required")
        return self.tokens.store(gateway.name, access_token, refresh_token, expires_at)

    def get_credential(self, provider: str) -> CredentialRecord | None:
        return self.tokens.get(self.registry.get(provider).name)

    def remove_credential(self, provider: str) -> bool:
        return self.tokens.remove(self.registry.get(provider).name)

    def list_credentials(self) -> list[dict]:
        return [record.masked() for _, record in sorted(self.tokens.list_all().items())]

    # ---- Corpus operations ----

    def _list(self, gateway: EmailProvider, date_range: DateRange) -> list[Message]:
        credential = self.tokens.ensure_fresh(gateway)
        return gateway.list_messages(date_range.start, date_range.end, credential)

    def fetch(self, provider: str, start: datetime, end: datetime) -> list[Message]:
        """Messages in the range. Ingestion runs detached and is not awaited."""
        gateway = self.registry.get(provider)
        date_range = _required_range(start, end)
        messages = self._list(gateway, date_range)
        self.ingestion.submit(gateway.name, messages)
        return messages

    def analyze(self, provider: str, start: datetime, end: datetime) -> AnalysisResult:
        """Re-fetch the range, summarize it map-reduce style and persist the result."""
        gateway = self.registry.get(provider)
        date_range = _required_range(start, end)
        messages = self._list(gateway, date_range)

        try:
            result = self.summarizer.summarize(gateway.name, messages, date_range)
            self.store.insert_analysis(result)
        except Exception:
            # Still ingest the fetched messages, but never mark them analyzed.
            self.ingestion.submit(gateway.name, messages)
            raise
        self.ingestion.submit(gateway.name, messages, analyzed_at=result.created_at)
        logger.info(
            f"Stored analysis {result.analysis_id} of {result.total_messages} {gateway.name} "
            f"messages in {len(result.batches)} batches"
        )
        return result

    def search(
        self,
        provider: str,
        query: str,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int = DEFAULT_LIMIT,
    ) -> SearchResponse:
        gateway = self.registry.get(provider)
        return self.searcher.search(gateway.name, query, _optional_range(start, end), limit)

    def list_analyses(
        self,
        provider: str,
        start: datetime,
        end: datetime,
        limit: int = 10,
    ) -> list[AnalysisResult]:
        gateway = self.registry.get(provider)
        _check_limit(limit)
        return self.store.query_analyses(gateway.name, _required_range(start, end), limit)

    def stored_messages(
        self,
        provider: str,
        start: datetime,
        end: datetime,
        limit: int = 100,
    ) -> list[MessageDocument]:
        gateway = self.registry.get(provider)
        _check_limit(limit)
        docs = self.store.query_messages(gateway.name, _required_range(start, end))
        docs.sort(key=lambda d: d.received_at, reverse=True)
        return docs[:limit]

    def prune_expired(self) -> int:
        return self.store.prune_expired()

    def close(self) -> None:
        self.ingestion.close()


def build_analyzer(settings: Settings | None = None) -> MailAnalyzer:
    """Wire concrete collaborators from ``settings``."""
    from mail_insight.embeddings import OllamaEmbedder, OpenAIEmbedder
    from mail_insight.intelligence import TextIntelligence
    from mail_insight.llm.client import LLMClient
    from mail_insight.providers.gmail import GmailProvider
    from mail_insight.providers.outlook import OutlookProvider
    from mail_insight.store.memory import InMemoryCorpusStore

    settings = settings or get_settings()
    tokens = TokenStore(settings.credentials_dir)

    registry = ProviderRegistry([
        GmailProvider(
            tokens,
            client_id=settings.google_client_id,
            client_secret=settings.google_client_secret,
            redirect_uri=settings.google_redirect_uri,
            scopes=settings.google_scopes,
            page_size=settings.page_size,
            timeout=settings.request_timeout,
        ),
        OutlookProvider(
            tokens,
            client_id=settings.microsoft_client_id,
            client_secret=settings.microsoft_client_secret,
            redirect_uri=settings.microsoft_redirect_uri,
            tenant=settings.microsoft_tenant,
            scopes=settings.microsoft_scopes,
            page_size=settings.page_size,
            timeout=settings.request_timeout,
        ),
    ])

    backend = settings.embedding_backend.lower()
    if backend == "openai":
        embedder = OpenAIEmbedder(
            settings.openai_api_key,
            model=settings.embedding_model,
            timeout=settings.request_timeout,
        )
    elif backend == "ollama":
        embedder = OllamaEmbedder(
            settings.ollama_url,
            model=settings.embedding_model,
            timeout=settings.request_timeout,
        )
    else:
        raise ValueError(f"Unsupported embedding backend: {settings.embedding_backend}")

    llm = LLMClient(
        api_key=settings.anthropic_api_key,
        model=settings.llm_model,
        timeout=settings.request_timeout,
    )
    intelligence = TextIntelligence(llm, embedder)

    store_backend = settings.store_backend.lower()
    if store_backend == "chroma":
        from mail_insight.store.chroma import ChromaCorpusStore

        store: BaseCorpusStore = ChromaCorpusStore(settings.store_dir)
    elif store_backend == "memory":
        store = InMemoryCorpusStore()
    else:
        raise ValueError(f"Unsupported store backend: {settings.store_backend}")
    removed = store.prune_expired()
    if removed:
        logger.info(f"Removed {removed} expired documents at startup")

    return MailAnalyzer(
        registry=registry,
        tokens=tokens,
        store=store,
        summarizer=BatchSummarizer(
            intelligence,
            batch_size=settings.analysis_batch_size,
            max_workers=settings.map_workers,
        ),
        ingestion=IngestionPipeline(
            intelligence,
            store,
            workers=settings.ingestion_workers,
            queue_size=settings.ingestion_queue_size,
            prune_interval=settings.prune_interval,
        ),
        searcher=SimilaritySearch(intelligence, store),
    )
