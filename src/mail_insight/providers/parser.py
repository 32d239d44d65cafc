"""Parse Gmail API message payloads into :class:`Message` objects."""

from __future__ import annotations

import base64
import re
from datetime import datetime, timezone
from email.utils import parseaddr

import dateutil.parser
from bs4 import BeautifulSoup

from mail_insight.models import Message

NO_SUBJECT = "[No Subject]"
UNKNOWN_SENDER = "unknown@email.com"


def parse_message(raw_message: dict, max_preview_length: int = 1000) -> Message:
    """Extract a :class:`Message` from a Gmail API payload.

    Pure parsing, no network calls. Accepts ``format=full`` or
    ``format=metadata`` payloads. The snippet is preferred as preview; the
    decoded body is used when Gmail returns no snippet.
    """
    payload = raw_message.get("payload", {})
    headers = _extract_headers(payload)

    preview = raw_message.get("snippet") or _extract_body(payload)
    if len(preview) > max_preview_length:
        preview = preview[:max_preview_length]

    return Message(
        source_id=raw_message["id"],
        subject=headers.get("subject") or NO_SUBJECT,
        sender=_parse_sender(headers.get("from", "")),
        received_at=_received_at(raw_message, headers),
        preview=preview,
        provider="gmail",
    )


def _extract_headers(payload: dict) -> dict[str, str]:
    return {
        h["name"].lower(): h["value"]
        for h in payload.get("headers", [])
    }


def _parse_sender(from_header: str) -> str:
    name, email = parseaddr(from_header)
    if name and email:
        return f"{name} <{email}>"
    return email or name or UNKNOWN_SENDER


def _received_at(raw_message: dict, headers: dict[str, str]) -> datetime:
    internal = raw_message.get("internalDate")
    if internal:
        return datetime.fromtimestamp(int(internal) / 1000, tz=timezone.utc)
    date_header = headers.get("date")
    if date_header:
        try:
            parsed = dateutil.parser.parse(date_header)
        except (ValueError, OverflowError):
            parsed = None
        if parsed is not None:
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return datetime.now(timezone.utc)


def _extract_body(payload: dict) -> str:
    mime_type = payload.get("mimeType", "")

    if mime_type == "text/plain":
        return _decode_body_data(payload)

    if mime_type.startswith("multipart/"):
        parts = payload.get("parts", [])
        for part in parts:
            if part.get("mimeType") == "text/plain":
                text = _decode_body_data(part)
                if text:
                    return text
        for part in parts:
            text = _extract_body(part)
            if text:
                return text

    if mime_type == "text/html":
        html = _decode_body_data(payload)
        return _strip_html(html) if html else ""

    return ""


def _decode_body_data(payload: dict) -> str:
    data = payload.get("body", {}).get("data", "")
    if not data:
        return ""
    try:
        return base64.urlsafe_b64decode(data).decode("utf-8", errors="replace")
    except (ValueError, TypeError):
        return ""


def _strip_html(html: str) -> str:
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style", "head"]):
        tag.decompose()
    text = soup.get_text(separator=" ")
    return re.sub(r"\s+", " ", text).strip()
