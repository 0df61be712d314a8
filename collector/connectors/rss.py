"""RSS/Atom connector: configured feeds fetched over HTTP, parsed by feedparser."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, List, Mapping, Optional

import feedparser

from collector.config import (
    DEFAULT_FEED_CONCURRENCY,
    DEFAULT_MAX_AGE_HOURS,
    DEFAULT_MAX_ITEMS_PER_FEED,
    DEFAULT_RSS_TIMEOUT_MS,
    RSSConfig,
    RSSSource,
)
from collector.models.domain import CollectorSource, ItemDTO
from collector.services.validator import safe_validate
from collector.settings import DEFAULT_USER_AGENT
from collector.utils.http import HttpClient, RequestOptions
from collector.utils.logging import get_logger
from collector.utils.text import is_http_url, parse_datetime, strip_html, to_iso8601, truncate_excerpt

from .base import BaseConnector, PermanentError

logger = get_logger(__name__)

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RSSFeedParser:
    """Downloads a feed with our User-Agent and timeout, then parses it."""

    def __init__(
        self,
        http: HttpClient,
        *,
        timeout_ms: int = DEFAULT_RSS_TIMEOUT_MS,
        user_agent: str = DEFAULT_USER_AGENT,
    ) -> None:
        self._http = http
        self._options = RequestOptions(
            headers={
                "User-Agent": user_agent,
                "Accept": "application/rss+xml, application/atom+xml, application/xml;q=0.9, */*;q=0.8",
            },
            timeout_ms=timeout_ms,
            retries=1,
        )

    async def parse_feed(self, url: str) -> feedparser.FeedParserDict:
        logger.info("rss.feed.parse", extra={"url": url})
        body = await self._http.request(url, self._options)
        feed = feedparser.parse(body if isinstance(body, (str, bytes)) else str(body))
        if feed.bozo and not feed.entries:
            raise PermanentError(f"Unparseable feed {url}: {feed.get('bozo_exception')}")
        logger.info(
            "rss.feed.parsed",
            extra={"url": url, "title": feed.feed.get("title"), "items": len(feed.entries)},
        )
        return feed


def _resolve_published(entry: Mapping[str, Any]) -> Optional[datetime]:
    for key in ("isoDate", "published_parsed", "updated_parsed", "pubDate", "published", "updated"):
        value = entry.get(key)
        if value is None:
            continue
        parsed = parse_datetime(value)
        if parsed is not None:
            return parsed
    return None


def _resolve_url(entry: Mapping[str, Any]) -> Optional[str]:
    link = entry.get("link")
    if link:
        return link
    for key in ("guid", "id"):
        candidate = entry.get(key)
        if is_http_url(candidate):
            return candidate
    return None


def _resolve_author(entry: Mapping[str, Any]) -> Optional[str]:
    for key in ("creator", "author"):
        value = entry.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def _resolve_excerpt(entry: Mapping[str, Any]) -> Optional[str]:
    snippet = entry.get("contentSnippet")
    if isinstance(snippet, str) and snippet.strip():
        return truncate_excerpt(snippet)

    content = entry.get("summary") or entry.get("content")
    if isinstance(content, list):
        content = next((c.get("value") for c in content if c.get("value")), None)
    if isinstance(content, str) and content.strip():
        return truncate_excerpt(strip_html(content))
    return None


def normalize_rss_entry(
    entry: Mapping[str, Any],
    source_name: str,
    max_age_hours: int = DEFAULT_MAX_AGE_HOURS,
    now: Optional[datetime] = None,
) -> Optional[ItemDTO]:
    title = (entry.get("title") or "").strip()
    url = _resolve_url(entry)
    if not title or not url:
        logger.warning("rss.item.skipped", extra={"feed": source_name, "reason": "missing_title_or_link"})
        return None

    published = _resolve_published(entry)
    if published is None:
        logger.warning("rss.item.skipped", extra={"feed": source_name, "reason": "no_date", "title": title})
        return None

    age = (now or _utcnow()) - published
    if age > timedelta(hours=max_age_hours):
        logger.info(
            "rss.item.too_old",
            extra={"feed": source_name, "title": title, "age_hours": round(age.total_seconds() / 3600)},
        )
        return None

    item = safe_validate(
        {
            "source": CollectorSource.RSS,
            "title": title,
            "url": url,
            "published_at": to_iso8601(published),
            "author": _resolve_author(entry),
            "excerpt": _resolve_excerpt(entry),
        }
    )
    if item is None:
        logger.warning("rss.item.invalid", extra={"feed": source_name, "title": title, "url": url})
    return item


class RSSConnector(BaseConnector):
    """Collects from every configured feed.

    Feeds are handled ``feed_concurrency`` at a time (1 by default, i.e.
    strictly sequential). A feed that fails contributes nothing and the run
    moves on to the next one.
    """

    source = CollectorSource.RSS

    def __init__(
        self,
        http: HttpClient,
        rss_config: RSSConfig,
        *,
        timeout_ms: int = DEFAULT_RSS_TIMEOUT_MS,
        max_items_per_feed: Optional[int] = None,
        max_age_hours: Optional[int] = None,
        feed_concurrency: int = DEFAULT_FEED_CONCURRENCY,
        user_agent: str = DEFAULT_USER_AGENT,
        clock: Clock = _utcnow,
    ) -> None:
        if not rss_config.sources:
            raise PermanentError("No RSS sources configured")
        if feed_concurrency < 1:
            raise ValueError("feed_concurrency must be >= 1")
        self.sources = list(rss_config.sources)
        self.max_items_per_feed = max_items_per_feed or rss_config.max_items_per_feed or DEFAULT_MAX_ITEMS_PER_FEED
        self.max_age_hours = max_age_hours or rss_config.max_age_hours or DEFAULT_MAX_AGE_HOURS
        self.feed_concurrency = feed_concurrency
        self.parser = RSSFeedParser(http, timeout_ms=timeout_ms, user_agent=user_agent)
        self._clock = clock
        logger.info("rss.sources.loaded", extra={"sources": [s.name for s in self.sources]})

    async def _collect(self) -> List[ItemDTO]:
        now = self._clock()
        items: List[ItemDTO] = []
        for start in range(0, len(self.sources), self.feed_concurrency):
            chunk = self.sources[start : start + self.feed_concurrency]
            for feed_items in await asyncio.gather(*(self._collect_feed(s, now) for s in chunk)):
                items.extend(feed_items)
        return items

    async def _collect_feed(self, source: RSSSource, now: datetime) -> List[ItemDTO]:
        try:
            feed = await self.parser.parse_feed(source.url)
        except Exception as exc:
            logger.error("rss.feed.failed", extra={"feed": source.name, "url": source.url, "error": str(exc)})
            return []

        entries = list(feed.entries)
        if not entries:
            logger.warning("rss.feed.empty", extra={"feed": source.name})
            return []

        items: List[ItemDTO] = []
        for entry in entries[: self.max_items_per_feed]:
            item = normalize_rss_entry(entry, source.name, self.max_age_hours, now)
            if item is not None:
                items.append(item)
        logger.info("rss.feed.collected", extra={"feed": source.name, "items": len(items)})
        return items
