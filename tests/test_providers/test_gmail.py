"""Tests for the Gmail provider with the API client mocked out."""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch
from urllib.parse import parse_qs, urlparse

import httplib2
import pytest
from googleapiclient.errors import HttpError

from mail_insight.exceptions import AuthRequiredError, ProviderApiError
from mail_insight.models import CredentialRecord
from mail_insight.providers.gmail import GmailProvider

UTC = timezone.utc
START = datetime(2024, 1, 1, tzinfo=UTC)
END = datetime(2024, 1, 2, tzinfo=UTC)


@pytest.fixture
def gmail(token_store):
    return GmailProvider(
        token_store,
        client_id="client-id.apps.googleusercontent.com",
        client_secret="secret",
        redirect_uri="http://localhost/callback",
        page_size=10,
    )


def _credential(refresh="refresh-token"):
    return CredentialRecord("gmail", "access-token", refresh, datetime.now(UTC) + timedelta(hours=1))


def _raw(msg_id, internal_ms, subject):
    return {
        "id": msg_id,
        "snippet": f"snippet {msg_id}",
        "internalDate": str(internal_ms),
        "payload": {"headers": [
            {"name": "Subject", "value": subject},
            {"name": "From", "value": "Bob <bob@example.com>"},
        ]},
    }


def _mock_service(refs, raws):
    service = MagicMock()
    messages = service.users.return_value.messages.return_value
    messages.list.return_value.execute.return_value = {"messages": refs}
    messages.get.side_effect = lambda **kw: MagicMock(execute=MagicMock(return_value=raws[kw["id"]]))
    return service


def test_authorization_url(gmail):
    url = urlparse(gmail.authorization_url())
    params = parse_qs(url.query)
    assert url.netloc == "accounts.google.com"
    assert params["state"] == ["gmail"]
    assert params["access_type"] == ["offline"]
    assert params["prompt"] == ["consent"]


def test_list_messages_newest_first(gmail):
    raws = {
        "a": _raw("a", 1704070800000, "Older"),
        "b": _raw("b", 1704078000000, "Newer"),
    }
    service = _mock_service([{"id": "a"}, {"id": "b"}], raws)

    with patch.object(GmailProvider, "_service", return_value=service) as svc:
        messages = gmail.list_messages(START, END, _credential())

    svc.assert_called_once_with("access-token")
    assert [m.subject for m in messages] == ["Newer", "Older"]
    list_kwargs = service.users.return_value.messages.return_value.list.call_args.kwargs
    assert list_kwargs["q"] == "after:1704067200 before:1704153601"
    assert list_kwargs["maxResults"] == 10


def test_list_messages_empty(gmail):
    service = _mock_service([], {})
    with patch.object(GmailProvider, "_service", return_value=service):
        assert gmail.list_messages(START, END, _credential()) == []


def test_list_messages_unauthorized(gmail):
    service = MagicMock()
    error = HttpError(httplib2.Response({"status": 401}), b'{"error": {"message": "Invalid Credentials"}}')
    service.users.return_value.messages.return_value.list.return_value.execute.side_effect = error
    with patch.object(GmailProvider, "_service", return_value=service):
        with pytest.raises(AuthRequiredError):
            gmail.list_messages(START, END, _credential())


def test_list_messages_api_error(gmail):
    service = MagicMock()
    error = HttpError(httplib2.Response({"status": 500}), b'{"error": {"message": "Backend Error"}}')
    service.users.return_value.messages.return_value.list.return_value.execute.side_effect = error
    with patch.object(GmailProvider, "_service", return_value=service):
        with pytest.raises(ProviderApiError):
            gmail.list_messages(START, END, _credential())


def test_authenticate_failure_returns_result(gmail):
    flow = MagicMock()
    flow.fetch_token.side_effect = ValueError("invalid_grant")
    with patch.object(GmailProvider, "_flow", return_value=flow):
        result = gmail.authenticate("bad-code")
    assert result.success is False
    assert "invalid_grant" in result.error


def test_authenticate_success(gmail):
    flow = MagicMock()
    flow.credentials.token = "new-access"
    flow.credentials.refresh_token = "new-refresh"
    flow.credentials.expiry = datetime(2030, 1, 1)
    with patch.object(GmailProvider, "_flow", return_value=flow):
        result = gmail.authenticate("good-code")
    flow.fetch_token.assert_called_once_with(code="good-code")
    assert result.success
    assert result.access_token == "new-access"
    assert result.expires_at == datetime(2030, 1, 1, tzinfo=UTC)


def test_refresh_without_refresh_token(gmail):
    assert gmail.refresh(_credential(refresh=None)) is False


def test_refresh_uses_configured_timeout(token_store):
    import google_auth_httplib2
    from google.oauth2.credentials import Credentials

    gmail = GmailProvider(
        token_store,
        client_id="client-id",
        client_secret="secret",
        redirect_uri="http://localhost/callback",
        timeout=7.0,
    )
    seen = []

    def fake_refresh(creds, request):
        seen.append(request)
        creds.token = "refreshed"
        creds.expiry = datetime(2030, 1, 1)

    with patch.object(Credentials, "refresh", autospec=True, side_effect=fake_refresh):
        assert gmail.refresh(_credential()) is True

    assert isinstance(seen[0], google_auth_httplib2.Request)
    assert seen[0].http.timeout == 7.0
    record = token_store.get("gmail")
    assert record.access_token == "refreshed"
    assert record.refresh_token == "refresh-token"


def test_refresh_failure_returns_false(gmail, token_store):
    from google.auth.exceptions import RefreshError
    from google.oauth2.credentials import Credentials

    with patch.object(Credentials, "refresh", side_effect=RefreshError("invalid_grant")):
        assert gmail.refresh(_credential()) is False
    assert token_store.get("gmail") is None
