"""Abstract base class for mail provider gateways."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from mail_insight.models import CredentialRecord, Message

if TYPE_CHECKING:
    from mail_insight.credentials import TokenStore

# Characters that leak into the OAuth ``state`` parameter from redirects.
_STRAY_CHARS = "\"' {}"


def normalize_provider_name(name: str | None) -> str:
    """Trim quoting/brace noise and lowercase a provider name."""
    if not name:
        return ""
    return name.strip(_STRAY_CHARS).lower()


@dataclass
class AuthResult:
    """Outcome of exchanging an authorization code for tokens."""

    success: bool
    access_token: str | None = None
    refresh_token: str | None = None
    expires_at: datetime | None = None
    error: str | None = None


class EmailProvider(ABC):
    """Capability set shared by every mail provider.

    Args:
        tokens: Store the provider writes refreshed credentials into.
        page_size: Upper bound on messages returned by one listing.
    """

    name: str = ""

    def __init__(self, tokens: TokenStore, page_size: int = 50):
        self.tokens = tokens
        self.page_size = page_size

    @abstractmethod
    def authorization_url(self) -> str:
        """URL the user visits to grant access. ``state`` carries :attr:`name`."""
        ...

    @abstractmethod
    def authenticate(self, code: str) -> AuthResult:
        """Exchange an authorization code. Never raises for upstream rejection."""
        ...

    @abstractmethod
    def list_messages(
        self,
        start: datetime,
        end: datetime,
        credential: CredentialRecord,
    ) -> list[Message]:
        """Messages received in [start, end], newest first, at most ``page_size``."""
        ...

    @abstractmethod
    def refresh(self, credential: CredentialRecord) -> bool:
        """Obtain a new access token and store it. Returns False on failure."""
        ...
