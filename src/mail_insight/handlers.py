"""Request boundary: every entry point returns an :class:`ApiResponse`.

Client faults carry the exception message back to the caller. Server
faults are logged in full and surfaced with a generic message only.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable

from mail_insight.exceptions import MailInsightError
from mail_insight.search import DEFAULT_LIMIT
from mail_insight.service import MailAnalyzer

logger = logging.getLogger(__name__)

STATUS_BY_CODE = {
    "invalid_request": 400,
    "auth_required": 401,
    "unknown_provider": 404,
    "not_found": 404,
    "empty_corpus": 422,
    "provider_error": 502,
    "generation_error": 502,
    "persistence_error": 500,
    "internal_error": 500,
}

GENERIC_MESSAGES = {
    "provider_error": "The mail provider could not be reached. Please try again later.",
    "generation_error": "The analysis service failed. Please try again later.",
    "persistence_error": "A storage error occurred. Please try again later.",
    "internal_error": "An unexpected error occurred.",
}


@dataclass
class ApiResponse:
    ok: bool
    status: int
    data: Any = None
    error: dict | None = None

    @classmethod
    def success(cls, data: Any, status: int = 200) -> ApiResponse:
        return cls(ok=True, status=status, data=data)

    @classmethod
    def failure(cls, code: str, message: str) -> ApiResponse:
        return cls(
            ok=False,
            status=STATUS_BY_CODE.get(code, 500),
            error={"code": code, "message": message},
        )

    def to_dict(self) -> dict:
        body: dict[str, Any] = {"ok": self.ok, "status": self.status}
        if self.ok:
            body["data"] = self.data
        else:
            body["error"] = self.error
        return body


def _error_response(exc: Exception, operation: str) -> ApiResponse:
    if isinstance(exc, MailInsightError) and exc.client_fault:
        logger.info(f"{operation} rejected ({exc.code}): {exc}")
        return ApiResponse.failure(exc.code, str(exc))
    code = exc.code if isinstance(exc, MailInsightError) else "internal_error"
    logger.exception(f"{operation} failed")
    return ApiResponse.failure(code, GENERIC_MESSAGES.get(code, GENERIC_MESSAGES["internal_error"]))


class RequestHandlers:
    """Transport-neutral handlers around a :class:`MailAnalyzer`."""

    def __init__(self, analyzer: MailAnalyzer):
        self.analyzer = analyzer

    def _run(self, operation: str, fn: Callable[[], Any]) -> ApiResponse:
        try:
            return ApiResponse.success(fn())
        except Exception as e:
            return _error_response(e, operation)

    # ---- Auth ----

    def auth_url(self, provider: str) -> ApiResponse:
        return self._run("auth_url", lambda: {"url": self.analyzer.authorization_url(provider)})

    def authenticate(self, provider: str, code: str) -> ApiResponse:
        return self._run("authenticate", lambda: self.analyzer.authenticate(provider, code).masked())

    def callback(self, code: str, state: str | None) -> ApiResponse:
        return self._run("callback", lambda: self.analyzer.callback(code, state).masked())

    def test_connection(self, provider: str) -> ApiResponse:
        return self._run("test_connection", lambda: self.analyzer.check_connection(provider))

    # ---- Tokens ----

    def store_token(
        self,
        provider: str,
        access_token: str,
        refresh_token: str | None,
        expires_at: datetime,
    ) -> ApiResponse:
        return self._run(
            "store_token",
            lambda: self.analyzer.store_credential(provider, access_token, refresh_token, expires_at).masked(),
        )

    def get_token(self, provider: str) -> ApiResponse:
        try:
            record = self.analyzer.get_credential(provider)
        except Exception as e:
            return _error_response(e, "get_token")
        if record is None:
            return ApiResponse.failure("not_found", f"No token found for {provider}")
        return ApiResponse.success(record.masked())

    def remove_token(self, provider: str) -> ApiResponse:
        return self._run("remove_token", lambda: {"removed": self.analyzer.remove_credential(provider)})

    def list_tokens(self) -> ApiResponse:
        return self._run("list_tokens", self.analyzer.list_credentials)

    # ---- Corpus ----

    def fetch(self, provider: str, start: datetime, end: datetime) -> ApiResponse:
        return self._run(
            "fetch",
            lambda: [m.to_dict() for m in self.analyzer.fetch(provider, start, end)],
        )

    def analyze(self, provider: str, start: datetime, end: datetime) -> ApiResponse:
        return self._run("analyze", lambda: self.analyzer.analyze(provider, start, end).to_dict())

    def search(
        self,
        provider: str,
        query: str,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int = DEFAULT_LIMIT,
    ) -> ApiResponse:
        return self._run(
            "search",
            lambda: self.analyzer.search(provider, query, start, end, limit).to_dict(),
        )

    def analyses(self, provider: str, start: datetime, end: datetime, limit: int = 10) -> ApiResponse:
        return self._run(
            "analyses",
            lambda: [a.to_dict() for a in self.analyzer.list_analyses(provider, start, end, limit)],
        )
