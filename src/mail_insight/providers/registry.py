"""Closed name -> provider map resolved at the request boundary."""

from __future__ import annotations

from typing import Iterable

from mail_insight.exceptions import UnknownProviderError
from mail_insight.providers.base import EmailProvider, normalize_provider_name


class ProviderRegistry:
    """Resolves case-insensitive provider names to :class:`EmailProvider` instances."""

    def __init__(self, providers: Iterable[EmailProvider]):
        self._providers: dict[str, EmailProvider] = {}
        for provider in providers:
            self._providers[normalize_provider_name(provider.name)] = provider

    def get(self, name: str | None) -> EmailProvider:
        """Return the provider for ``name`` or raise :class:`UnknownProviderError`."""
        provider = self._providers.get(normalize_provider_name(name))
        if provider is None:
            raise UnknownProviderError(name or "")
        return provider

    def __contains__(self, name: str) -> bool:
        return normalize_provider_name(name) in self._providers

    def names(self) -> list[str]:
        return sorted(self._providers)
