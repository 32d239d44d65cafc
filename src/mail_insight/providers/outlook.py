"""Outlook provider backed by the Microsoft identity platform and Graph."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING
from urllib.parse import urlencode

import dateutil.parser
import httpx

from mail_insight.exceptions import AuthRequiredError, ProviderApiError
from mail_insight.models import CredentialRecord, Message, as_utc
from mail_insight.providers.base import AuthResult, EmailProvider

if TYPE_CHECKING:
    from mail_insight.credentials import TokenStore

logger = logging.getLogger(__name__)

AUTHORITY = "https://login.microsoftonline.com"
GRAPH_MESSAGES_URL = "https://graph.microsoft.com/v1.0/me/messages"
DEFAULT_SCOPES = ("offline_access", "User.Read", "Mail.Read")


def _graph_time(value: datetime) -> str:
    return as_utc(value).strftime("%Y-%m-%dT%H:%M:%SZ")


class OutlookProvider(EmailProvider):
    """Outlook / Microsoft 365 variant of :class:`EmailProvider`.

    Args:
        tokens: Credential store refreshed tokens are written to.
        client_id: Application (client) ID of the Entra app registration.
        client_secret: Client secret of the app registration.
        redirect_uri: Registered redirect URI.
        tenant: Tenant segment of the authority, ``common`` by default.
        scopes: Delegated scopes to request.
        page_size: Maximum messages per listing (Graph ``$top``).
        timeout: Per-request timeout in seconds.
    """

    name = "outlook"

    def __init__(
        self,
        tokens: TokenStore,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        tenant: str = "common",
        scopes: tuple[str, ...] = DEFAULT_SCOPES,
        page_size: int = 50,
        timeout: float = 30.0,
    ):
        super().__init__(tokens, page_size)
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.tenant = tenant
        self.scopes = list(scopes)
        self.timeout = timeout

    @property
    def _token_url(self) -> str:
        return f"{AUTHORITY}/{self.tenant}/oauth2/v2.0/token"

    def authorization_url(self) -> str:
        params = {
            "client_id": self.client_id,
            "response_type": "code",
            "redirect_uri": self.redirect_uri,
            "response_mode": "query",
            "scope": " ".join(self.scopes),
            "prompt": "select_account",
            "state": self.name,
        }
        logger.info("Generated Outlook authorization URL")
        return f"{AUTHORITY}/{self.tenant}/oauth2/v2.0/authorize?{urlencode(params)}"

    def _token_request(self, form: dict) -> dict:
        data = {
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "scope": " ".join(self.scopes),
            **form,
        }
        with httpx.Client(timeout=self.timeout) as client:
            response = client.post(self._token_url, data=data)
            response.raise_for_status()
            return response.json()

    @staticmethod
    def _expires_at(payload: dict) -> datetime:
        seconds = int(payload.get("expires_in", 3600))
        return datetime.now(timezone.utc) + timedelta(seconds=seconds)

    def authenticate(self, code: str) -> AuthResult:
        logger.info("Exchanging Outlook authorization code")
        try:
            payload = self._token_request({
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": self.redirect_uri,
            })
            result = AuthResult(
                success=True,
                access_token=payload["access_token"],
                refresh_token=payload.get("refresh_token"),
                expires_at=self._expires_at(payload),
            )
        except (httpx.HTTPError, ValueError, KeyError, TypeError) as e:
            logger.error(f"Outlook authentication failed: {e!r}")
            return AuthResult(success=False, error="Authentication failed")

        logger.info("Successfully authenticated with Outlook")
        return result

    def list_messages(
        self,
        start: datetime,
        end: datetime,
        credential: CredentialRecord,
    ) -> list[Message]:
        params = {
            "$filter": f"receivedDateTime ge {_graph_time(start)} and receivedDateTime le {_graph_time(end)}",
            "$select": "id,subject,from,receivedDateTime,bodyPreview",
            "$orderby": "receivedDateTime desc",
            "$top": str(self.page_size),
        }
        logger.info(f"Fetching Outlook messages from {_graph_time(start)} to {_graph_time(end)}")
        try:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.get(
                    GRAPH_MESSAGES_URL,
                    params=params,
                    headers={"Authorization": f"Bearer {credential.access_token}"},
                )
                response.raise_for_status()
                items = response.json().get("value", [])
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 401:
                raise AuthRequiredError("Outlook rejected the access token. Please re-authenticate.") from e
            raise ProviderApiError(f"Microsoft Graph API error ({e.response.status_code}): {e}") from e
        except (httpx.HTTPError, ValueError) as e:
            raise ProviderApiError(f"Failed to fetch Outlook messages: {e}") from e

        messages = [self._to_message(item) for item in items]
        logger.info(f"Retrieved {len(messages)} emails from Graph API")
        return messages

    def _to_message(self, item: dict) -> Message:
        received = item.get("receivedDateTime")
        return Message(
            source_id=item.get("id") or str(uuid.uuid4()),
            subject=item.get("subject") or "[No subject]",
            sender=(item.get("from") or {}).get("emailAddress", {}).get("address") or "unknown@email.com",
            received_at=dateutil.parser.isoparse(received) if received else datetime.now(timezone.utc),
            preview=item.get("bodyPreview") or "",
            provider=self.name,
        )

    def refresh(self, credential: CredentialRecord) -> bool:
        if not credential.refresh_token:
            logger.error("No refresh token available for Outlook")
            return False
        try:
            payload = self._token_request({
                "grant_type": "refresh_token",
                "refresh_token": credential.refresh_token,
            })
            access_token = payload["access_token"]
            expires_at = self._expires_at(payload)
        except (httpx.HTTPError, ValueError, KeyError, TypeError) as e:
            logger.warning(f"Failed to refresh Outlook token: {e!r}")
            return False

        self.tokens.store(
            self.name,
            access_token,
            payload.get("refresh_token") or credential.refresh_token,
            expires_at,
        )
        logger.info("Successfully refreshed Outlook token")
        return True
