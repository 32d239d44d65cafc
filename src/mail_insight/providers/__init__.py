"""Mail provider gateways (Gmail, Outlook).

Heavy imports are deferred. Use explicit imports:
    from mail_insight.providers.gmail import GmailProvider
    from mail_insight.providers.outlook import OutlookProvider
"""

# Light imports only (no external deps)
from mail_insight.providers.base import AuthResult, EmailProvider, normalize_provider_name
from mail_insight.providers.registry import ProviderRegistry


def __getattr__(name):
    """Lazy imports for classes that require optional dependencies."""
    if name == "GmailProvider":
        from mail_insight.providers.gmail import GmailProvider
        return GmailProvider
    if name == "OutlookProvider":
        from mail_insight.providers.outlook import OutlookProvider
        return OutlookProvider
    if name == "parse_message":
        from mail_insight.providers.parser import parse_message
        return parse_message
    raise AttributeError(f"module 'mail_insight.providers' has no attribute {name!r}")


__all__ = [
    "AuthResult",
    "EmailProvider",
    "GmailProvider",
    "OutlookProvider",
    "ProviderRegistry",
    "normalize_provider_name",
    "parse_message",
]
