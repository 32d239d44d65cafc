"""Email corpus analysis: map-reduce summaries and semantic search over a mailbox.

Heavy imports are deferred. Use explicit imports:
    from mail_insight.service import MailAnalyzer, build_analyzer
    from mail_insight.handlers import RequestHandlers
"""

from mail_insight.exceptions import MailInsightError

__version__ = "0.1.0"


def __getattr__(name):
    """Lazy imports for classes that pull in third-party dependencies."""
    if name in ("MailAnalyzer", "build_analyzer"):
        from mail_insight import service
        return getattr(service, name)
    if name == "RequestHandlers":
        from mail_insight.handlers import RequestHandlers
        return RequestHandlers
    raise AttributeError(f"module 'mail_insight' has no attribute {name!r}")


__all__ = [
    "MailAnalyzer",
    "MailInsightError",
    "RequestHandlers",
    "build_analyzer",
]
