"""Normalization helpers shared by the connectors."""

from __future__ import annotations

import calendar
import html
import re
import time
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Optional

from collector.models.domain import EXCERPT_MAX_LENGTH

ELLIPSIS = "..."

_TAG_RE = re.compile(r"<[^>]*>")
_WS_RE = re.compile(r"\s+")
_CHAR_COUNT_SUFFIX_RE = re.compile(r"\s*\[\+\d+ chars\]\s*$")


def truncate_excerpt(text: Optional[str], limit: int = EXCERPT_MAX_LENGTH) -> Optional[str]:
    """Trim ``text`` and cap it at ``limit`` characters, ellipsis included."""
    if text is None:
        return None
    cleaned = text.strip()
    if not cleaned:
        return None
    if len(cleaned) > limit:
        return cleaned[: limit - len(ELLIPSIS)] + ELLIPSIS
    return cleaned


def strip_html(text: str) -> str:
    stripped = _TAG_RE.sub(" ", text)
    return _WS_RE.sub(" ", html.unescape(stripped)).strip()


def strip_char_count_suffix(text: str) -> str:
    """Drop the ``[+1234 chars]`` marker NewsAPI appends to truncated content."""
    return _CHAR_COUNT_SUFFIX_RE.sub("", text).strip()


def to_iso8601(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt = dt.astimezone(timezone.utc)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_datetime(value: Any) -> Optional[datetime]:
    """Best-effort conversion of feed/API date representations to aware UTC.

    Accepts ``datetime``, ``time.struct_time`` (feedparser), epoch seconds,
    ISO-8601 strings and RFC 822 strings. Returns ``None`` when nothing
    parses.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, time.struct_time):
        dt = datetime.fromtimestamp(calendar.timegm(value), tz=timezone.utc)
    elif isinstance(value, (int, float)):
        try:
            dt = datetime.fromtimestamp(value, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    elif isinstance(value, str):
        raw = value.strip()
        if not raw:
            return None
        dt = _parse_iso(raw) or _parse_rfc822(raw)
        if dt is None:
            return None
    else:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _parse_iso(raw: str) -> Optional[datetime]:
    try:
        return datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        return None


def _parse_rfc822(raw: str) -> Optional[datetime]:
    try:
        return parsedate_to_datetime(raw)
    except (TypeError, ValueError, IndexError):
        return None


def is_http_url(value: Any) -> bool:
    return isinstance(value, str) and (value.startswith("http://") or value.startswith("https://"))
