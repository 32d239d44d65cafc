"""Gmail provider backed by google-auth and the Gmail REST API."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from mail_insight.exceptions import AuthRequiredError, ProviderApiError
from mail_insight.models import CredentialRecord, Message, as_utc
from mail_insight.providers.base import AuthResult, EmailProvider
from mail_insight.providers.parser import parse_message

if TYPE_CHECKING:
    from mail_insight.credentials import TokenStore

logger = logging.getLogger(__name__)

AUTH_URI = "https://accounts.google.com/o/oauth2/auth"
TOKEN_URI = "https://oauth2.googleapis.com/token"
DEFAULT_SCOPES = ("https://www.googleapis.com/auth/gmail.readonly",)


def _expiry(creds) -> datetime:
    # google-auth reports expiry as naive UTC
    if creds.expiry is None:
        return datetime.now(timezone.utc) + timedelta(hours=1)
    return as_utc(creds.expiry)


class GmailProvider(EmailProvider):
    """Gmail variant of :class:`EmailProvider`.

    Args:
        tokens: Credential store refreshed tokens are written to.
        client_id: OAuth client ID from Google Cloud Console.
        client_secret: OAuth client secret.
        redirect_uri: Registered redirect URI for the web flow.
        scopes: OAuth scopes to request.
        page_size: Maximum messages per listing.
        timeout: Socket timeout in seconds for Gmail API calls.
    """

    name = "gmail"

    def __init__(
        self,
        tokens: TokenStore,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        scopes: tuple[str, ...] = DEFAULT_SCOPES,
        page_size: int = 50,
        timeout: float = 30.0,
    ):
        super().__init__(tokens, page_size)
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.scopes = list(scopes)
        self.timeout = timeout

    def _flow(self):
        from google_auth_oauthlib.flow import Flow

        client_config = {
            "web": {
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "auth_uri": AUTH_URI,
                "token_uri": TOKEN_URI,
                "redirect_uris": [self.redirect_uri],
            }
        }
        # The code exchange happens on a fresh Flow, so PKCE cannot be used.
        return Flow.from_client_config(
            client_config,
            scopes=self.scopes,
            redirect_uri=self.redirect_uri,
            autogenerate_code_verifier=False,
        )

    def _service(self, access_token: str):
        import google_auth_httplib2
        import httplib2
        from google.oauth2.credentials import Credentials
        from googleapiclient.discovery import build

        creds = Credentials(token=access_token)
        http = google_auth_httplib2.AuthorizedHttp(creds, http=httplib2.Http(timeout=self.timeout))
        return build("gmail", "v1", http=http, cache_discovery=False)

    def authorization_url(self) -> str:
        try:
            url, _state = self._flow().authorization_url(
                access_type="offline",
                prompt="consent",
                state=self.name,
            )
        except Exception as e:
            raise ProviderApiError(f"Failed to build Gmail authorization URL: {e}") from e
        logger.info("Generated Gmail authorization URL")
        return url

    def authenticate(self, code: str) -> AuthResult:
        logger.info("Exchanging Gmail authorization code")
        try:
            flow = self._flow()
            flow.fetch_token(code=code)
            creds = flow.credentials
        except Exception as e:
            logger.error(f"Gmail authentication failed: {e}")
            return AuthResult(success=False, error=str(e))

        logger.info("Successfully authenticated with Gmail")
        return AuthResult(
            success=True,
            access_token=creds.token,
            refresh_token=creds.refresh_token,
            expires_at=_expiry(creds),
        )

    def list_messages(
        self,
        start: datetime,
        end: datetime,
        credential: CredentialRecord,
    ) -> list[Message]:
        from googleapiclient.errors import HttpError

        query = f"after:{int(as_utc(start).timestamp())} before:{int(as_utc(end).timestamp()) + 1}"
        logger.info(f"Fetching Gmail messages with query: {query}")

        try:
            service = self._service(credential.access_token)
            response = (
                service.users()
                .messages()
                .list(userId="me", q=query, maxResults=self.page_size)
                .execute()
            )
            messages: list[Message] = []
            for ref in response.get("messages", []):
                raw = (
                    service.users()
                    .messages()
                    .get(
                        userId="me",
                        id=ref["id"],
                        format="metadata",
                        metadataHeaders=["Subject", "From", "Date"],
                    )
                    .execute()
                )
                messages.append(parse_message(raw))
        except HttpError as e:
            status = getattr(e.resp, "status", None)
            if status == 401:
                raise AuthRequiredError("Gmail rejected the access token. Please re-authenticate.") from e
            raise ProviderApiError(f"Gmail API error ({status}): {e}") from e
        except Exception as e:
            raise ProviderApiError(f"Failed to fetch Gmail messages: {e}") from e

        messages.sort(key=lambda m: m.received_at, reverse=True)
        logger.info(f"Fetched {len(messages)} Gmail messages")
        return messages

    def refresh(self, credential: CredentialRecord) -> bool:
        if not credential.refresh_token:
            logger.warning("Gmail credential has no refresh token")
            return False

        import google_auth_httplib2
        import httplib2
        from google.auth.exceptions import RefreshError, TransportError
        from google.oauth2.credentials import Credentials

        creds = Credentials(
            token=None,
            refresh_token=credential.refresh_token,
            client_id=self.client_id,
            client_secret=self.client_secret,
            token_uri=TOKEN_URI,
            scopes=self.scopes,
        )
        try:
            creds.refresh(google_auth_httplib2.Request(httplib2.Http(timeout=self.timeout)))
        except (RefreshError, TransportError) as e:
            logger.warning(f"Failed to refresh Gmail token: {e}")
            return False

        self.tokens.store(
            self.name,
            creds.token,
            creds.refresh_token or credential.refresh_token,
            _expiry(creds),
        )
        logger.info("Successfully refreshed Gmail token")
        return True
