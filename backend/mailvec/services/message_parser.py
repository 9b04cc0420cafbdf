"""Message parser: converts Gmail API message resources into structured data."""

import base64
import binascii
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Optional

from bs4 import BeautifulSoup

from mailvec.services.errors import MessageParseError

DEFAULT_SUBJECT = "(No Subject)"
DEFAULT_ADDRESS = "Unknown"


@dataclass
class ParsedMessage:
    """Structured representation of a fetched Gmail message."""
    gmail_id: str
    subject: str
    from_address: str
    to_address: str
    body: str
    snippet: str
    received_at: datetime


def header_value(headers: list, name: str) -> Optional[str]:
    """Case-insensitive lookup in Gmail's list of {name, value} headers."""
    wanted = name.lower()
    for header in headers or []:
        if str(header.get("name", "")).lower() == wanted:
            return header.get("value")
    return None


def decode_body_data(data: str) -> str:
    """Decode Gmail's URL-safe base64 body data into text."""
    padded = data + "=" * (-len(data) % 4)
    try:
        raw = base64.urlsafe_b64decode(padded)
    except (binascii.Error, ValueError) as e:
        raise MessageParseError(f"Invalid body encoding: {e}") from e
    return raw.decode("utf-8", errors="replace")


def html_to_text(html: str) -> str:
    soup = BeautifulSoup(html, "lxml")
    return soup.get_text(separator="\n", strip=True)


def find_plain_text_part(parts: list) -> Optional[dict]:
    """First text/plain part with body data, searching nested multiparts depth-first."""
    for part in parts or []:
        if part.get("mimeType") == "text/plain" and (part.get("body") or {}).get("data"):
            return part
        nested = find_plain_text_part(part.get("parts"))
        if nested is not None:
            return nested
    return None


def extract_body(payload: dict, snippet: str) -> str:
    """Direct body payload first, then the first plain-text part, then the snippet."""
    direct = (payload.get("body") or {}).get("data")
    if direct:
        text = decode_body_data(direct)
        if payload.get("mimeType") == "text/html":
            text = html_to_text(text)
        return text

    part = find_plain_text_part(payload.get("parts"))
    if part is not None:
        return decode_body_data(part["body"]["data"])

    return snippet


def parse_date(value: Optional[str], now: datetime) -> datetime:
    if not value:
        return now
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return now
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_gmail_message(raw: dict, now: Optional[datetime] = None) -> ParsedMessage:
    """Parse a ``messages.get?format=full`` response.

    Missing headers fall back to "(No Subject)", "Unknown" and the current
    time respectively.
    """
    gmail_id = str(raw.get("id") or "")
    if not gmail_id:
        raise MessageParseError("Missing message ID")

    now = now or datetime.now(timezone.utc)
    payload = raw.get("payload") or {}
    headers = payload.get("headers") or []
    snippet = raw.get("snippet") or ""

    return ParsedMessage(
        gmail_id=gmail_id,
        subject=header_value(headers, "subject") or DEFAULT_SUBJECT,
        from_address=header_value(headers, "from") or DEFAULT_ADDRESS,
        to_address=header_value(headers, "to") or DEFAULT_ADDRESS,
        body=extract_body(payload, snippet),
        snippet=snippet,
        received_at=parse_date(header_value(headers, "date"), now),
    )


def build_embedding_text(subject: str, body: Optional[str], max_chars: int = 8000) -> str:
    """Subject and body joined for embedding, hard-cut at ``max_chars``."""
    return f"{subject}\n\n{body or ''}"[:max_chars]
