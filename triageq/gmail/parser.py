"""
Convert Gmail API message payloads into EmailDetail.

Side-effect free. Bodies prefer text/plain; HTML-only messages are reduced to
text with tags and entities stripped.
"""

from __future__ import annotations

import base64
import binascii
import html
import re
from collections.abc import Iterable
from typing import Any

from triageq.observability.telemetry import counter
from triageq.storage.models import EmailDetail

_TEXT_PLAIN = "text/plain"
_TEXT_HTML = "text/html"
_TAG_RE = re.compile(r"<(script|style)[^>]*>.*?</\1>|<[^>]+>", re.DOTALL | re.IGNORECASE)
_WS_RE = re.compile(r"\s+")


class GmailParsingError(ValueError):
    """Raised when a Gmail payload cannot be converted into EmailDetail."""


def _header_lookup(headers: Iterable[dict[str, str]], name: str) -> str | None:
    name_lower = name.lower()
    for header in headers:
        if header.get("name", "").lower() == name_lower:
            return header.get("value")
    return None


def _decode_base64(data: str) -> str:
    """Decode Gmail's URL-safe base64 payloads."""
    padding = "=" * (-len(data) % 4)
    try:
        decoded = base64.urlsafe_b64decode((data + padding).encode("utf-8"))
    except (binascii.Error, ValueError) as exc:
        raise GmailParsingError("failed to decode message body") from exc
    return decoded.decode("utf-8", errors="replace")


def html_to_text(markup: str) -> str:
    return _WS_RE.sub(" ", html.unescape(_TAG_RE.sub(" ", markup))).strip()


def _collect_bodies(payload: dict[str, Any], found: dict[str, str]) -> None:
    mime_type = payload.get("mimeType", "")
    data = (payload.get("body") or {}).get("data")
    if data and mime_type in (_TEXT_PLAIN, _TEXT_HTML) and mime_type not in found:
        found[mime_type] = _decode_base64(data)
    for part in payload.get("parts") or []:
        _collect_bodies(part, found)


def parse_message(message: dict[str, Any]) -> EmailDetail:
    """Convert a `format=full` Gmail message into EmailDetail.

    Raises:
        GmailParsingError: If the id or payload is missing
    """
    if not isinstance(message, dict) or "id" not in message:
        raise GmailParsingError("message must be a dict with an id")

    payload = message.get("payload") or {}
    headers = payload.get("headers") or []

    bodies: dict[str, str] = {}
    _collect_bodies(payload, bodies)
    body = bodies.get(_TEXT_PLAIN)
    if body is None and _TEXT_HTML in bodies:
        counter("gmail.parse.html_only")
        body = html_to_text(bodies[_TEXT_HTML])

    return EmailDetail(
        id=message["id"],
        thread_id=message.get("threadId", ""),
        subject=_header_lookup(headers, "Subject") or "(no subject)",
        sender=_header_lookup(headers, "From") or "",
        date=_header_lookup(headers, "Date") or "",
        snippet=html.unescape(message.get("snippet", "")),
        body=body or "",
        labels=list(message.get("labelIds") or []),
    )
