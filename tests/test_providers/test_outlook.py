"""Tests for the Outlook provider using a mocked HTTP transport."""

from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from mail_insight.exceptions import AuthRequiredError, ProviderApiError
from mail_insight.models import CredentialRecord
from mail_insight.providers.outlook import OutlookProvider

UTC = timezone.utc
START = datetime(2024, 1, 1, tzinfo=UTC)
END = datetime(2024, 1, 31, 23, 59, 59, tzinfo=UTC)


@pytest.fixture
def requests_seen():
    return []


@pytest.fixture
def mock_http(monkeypatch, requests_seen):
    """Route every httpx.Client through a MockTransport driven by ``routes``."""
    routes = {}
    real_client = httpx.Client

    def handler(request):
        requests_seen.append(request)
        key = (request.method, request.url.path)
        if key not in routes:
            return httpx.Response(404, json={"error": "not found"})
        return routes[key](request)

    def client_factory(**kwargs):
        return real_client(transport=httpx.MockTransport(handler), **kwargs)

    monkeypatch.setattr(httpx, "Client", client_factory)
    return routes


@pytest.fixture
def outlook(token_store):
    return OutlookProvider(
        token_store,
        client_id="client-id",
        client_secret="client-secret",
        redirect_uri="http://localhost/callback",
        page_size=25,
        timeout=5.0,
    )


def _credential(access="access-token", refresh="refresh-token"):
    return CredentialRecord("outlook", access, refresh, datetime.now(UTC) + timedelta(hours=1))


def test_authorization_url(outlook):
    url = urlparse(outlook.authorization_url())
    params = parse_qs(url.query)
    assert url.netloc == "login.microsoftonline.com"
    assert url.path == "/common/oauth2/v2.0/authorize"
    assert params["state"] == ["outlook"]
    assert params["client_id"] == ["client-id"]
    assert "Mail.Read" in params["scope"][0].split()


def test_authenticate_success(outlook, mock_http, requests_seen):
    mock_http[("POST", "/common/oauth2/v2.0/token")] = lambda r: httpx.Response(
        200, json={"access_token": "new-access", "refresh_token": "new-refresh", "expires_in": 3600}
    )
    result = outlook.authenticate("auth-code")
    assert result.success
    assert result.access_token == "new-access"
    assert result.refresh_token == "new-refresh"
    assert result.expires_at > datetime.now(UTC) + timedelta(minutes=50)
    body = parse_qs(requests_seen[0].content.decode())
    assert body["grant_type"] == ["authorization_code"]
    assert body["code"] == ["auth-code"]


def test_authenticate_failure_does_not_raise(outlook, mock_http):
    mock_http[("POST", "/common/oauth2/v2.0/token")] = lambda r: httpx.Response(400, json={"error": "invalid_grant"})
    result = outlook.authenticate("bad-code")
    assert result.success is False
    assert result.error == "Authentication failed"


def test_list_messages(outlook, mock_http, requests_seen):
    mock_http[("GET", "/v1.0/me/messages")] = lambda r: httpx.Response(200, json={"value": [
        {
            "id": "AAA",
            "subject": "Quarterly report",
            "from": {"emailAddress": {"address": "boss@example.com"}},
            "receivedDateTime": "2024-01-15T10:00:00Z",
            "bodyPreview": "Numbers attached",
        },
        {"id": "BBB", "subject": None, "receivedDateTime": "2024-01-10T08:00:00Z"},
    ]})

    messages = outlook.list_messages(START, END, _credential())

    assert [m.source_id for m in messages] == ["AAA", "BBB"]
    assert messages[0].sender == "boss@example.com"
    assert messages[0].received_at == datetime(2024, 1, 15, 10, tzinfo=UTC)
    assert messages[0].provider == "outlook"
    assert messages[1].subject == "[No subject]"
    assert messages[1].sender == "unknown@email.com"

    request = requests_seen[0]
    assert request.headers["Authorization"] == "Bearer access-token"
    assert request.url.params["$top"] == "25"
    assert "receivedDateTime ge 2024-01-01T00:00:00Z" in request.url.params["$filter"]
    assert request.url.params["$orderby"] == "receivedDateTime desc"


def test_list_messages_unauthorized(outlook, mock_http):
    mock_http[("GET", "/v1.0/me/messages")] = lambda r: httpx.Response(401, json={"error": "expired"})
    with pytest.raises(AuthRequiredError):
        outlook.list_messages(START, END, _credential())


def test_list_messages_server_error(outlook, mock_http):
    mock_http[("GET", "/v1.0/me/messages")] = lambda r: httpx.Response(503, text="unavailable")
    with pytest.raises(ProviderApiError):
        outlook.list_messages(START, END, _credential())


def test_refresh_stores_new_token(outlook, mock_http, token_store):
    mock_http[("POST", "/common/oauth2/v2.0/token")] = lambda r: httpx.Response(
        200, json={"access_token": "rotated", "expires_in": 3600}
    )
    assert outlook.refresh(_credential()) is True
    record = token_store.get("outlook")
    assert record.access_token == "rotated"
    assert record.refresh_token == "refresh-token"


def test_refresh_failure(outlook, mock_http, token_store):
    mock_http[("POST", "/common/oauth2/v2.0/token")] = lambda r: httpx.Response(400, json={"error": "invalid_grant"})
    assert outlook.refresh(_credential()) is False
    assert token_store.get("outlook") is None


def test_refresh_without_refresh_token(outlook):
    assert outlook.refresh(_credential(refresh=None)) is False


@pytest.mark.parametrize("response", [
    httpx.Response(200, text="<html>not json</html>"),
    httpx.Response(200, json={"token_type": "Bearer"}),
    httpx.Response(200, json={"access_token": "a", "expires_in": "soon"}),
])
def test_authenticate_malformed_token_payload(outlook, mock_http, response):
    mock_http[("POST", "/common/oauth2/v2.0/token")] = lambda r: response
    result = outlook.authenticate("auth-code")
    assert result.success is False
    assert result.error == "Authentication failed"


def test_refresh_malformed_token_payload(outlook, mock_http, token_store):
    mock_http[("POST", "/common/oauth2/v2.0/token")] = lambda r: httpx.Response(200, json={"error": None})
    assert outlook.refresh(_credential()) is False
    assert token_store.get("outlook") is None


def test_list_messages_non_json_body(outlook, mock_http):
    mock_http[("GET", "/v1.0/me/messages")] = lambda r: httpx.Response(200, text="oops")
    with pytest.raises(ProviderApiError):
        outlook.list_messages(START, END, _credential())
