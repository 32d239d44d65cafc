"""Unified exception hierarchy for mail-insight.

Each class carries a stable ``code`` and a ``client_fault`` flag so the
request boundary (:mod:`mail_insight.handlers`) can turn any of them into a
response without inspecting messages.
"""


class MailInsightError(Exception):
    """Base exception for all mail-insight errors."""

    code = "internal_error"
    client_fault = False


# Client faults
class AuthRequiredError(MailInsightError):
    """No credential, or the credential is expired and could not be refreshed."""

    code = "auth_required"
    client_fault = True


class UnknownProviderError(MailInsightError):
    """The provider name does not match any registered provider."""

    code = "unknown_provider"
    client_fault = True

    def __init__(self, provider: str):
        super().__init__(f"Unknown email provider: {provider!r}")
        self.provider = provider


class InvalidRequestError(MailInsightError):
    """Missing or malformed query, date range or limit."""

    code = "invalid_request"
    client_fault = True


class EmptyCorpusError(MailInsightError):
    """Analysis requested for a date range containing no messages."""

    code = "empty_corpus"
    client_fault = True


# Server faults
class ProviderApiError(MailInsightError):
    """Upstream mail provider failed to list messages or exchange tokens."""

    code = "provider_error"


class GenerationError(MailInsightError):
    """A summarize, embed or complete call failed."""

    code = "generation_error"


class LLMError(GenerationError):
    """Failure in the text generation client."""


class EmbeddingError(GenerationError):
    """Failure in an embedding backend."""


class PersistenceError(MailInsightError):
    """Corpus store or credential file read/write failure."""

    code = "persistence_error"


class VectorStoreError(PersistenceError):
    """Failure in the vector-backed corpus store."""
