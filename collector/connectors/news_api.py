"""NewsAPI connector: top headlines for one country + category."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import httpx

from collector.config import DEFAULT_CATEGORY, DEFAULT_COUNTRY, DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, NewsAPIConfig
from collector.models.domain import CollectorSource, ItemDTO
from collector.services.validator import safe_validate
from collector.utils.http import HttpClient, RequestOptions
from collector.utils.logging import get_logger
from collector.utils.text import parse_datetime, strip_char_count_suffix, to_iso8601, truncate_excerpt

from .base import BaseConnector, PermanentError, normalize_all

logger = get_logger(__name__)

NEWSAPI_BASE_URL = "https://newsapi.org/v2"
# Free tier quota
DEFAULT_MAX_REQUESTS_PER_DAY = 1000

_HEADLINES_OPTIONS = RequestOptions(timeout_ms=15_000, retries=2)


class NewsAPIClient:
    """Authenticated NewsAPI client.

    ``request_count`` tracks successful requests made by this instance so the
    caller can watch the daily quota; the limit is only reported, never
    enforced.
    """

    def __init__(
        self,
        api_key: Optional[str],
        http: HttpClient,
        *,
        base_url: str = NEWSAPI_BASE_URL,
        max_requests_per_day: int = DEFAULT_MAX_REQUESTS_PER_DAY,
    ) -> None:
        if not api_key or not api_key.strip():
            raise PermanentError("NEWSAPI_KEY is not set.")
        self._api_key = api_key.strip()
        self._http = http
        self._base_url = base_url.rstrip("/")
        self.max_requests_per_day = max_requests_per_day
        self.request_count = 0

    def reset_request_count(self) -> None:
        self.request_count = 0

    async def fetch_top_headlines(
        self,
        country: str = DEFAULT_COUNTRY,
        category: str = DEFAULT_CATEGORY,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> Dict[str, Any]:
        if self.request_count >= self.max_requests_per_day:
            logger.warning(
                "newsapi.rate_limit.approaching",
                extra={"request_count": self.request_count, "max_requests": self.max_requests_per_day},
            )

        params = httpx.QueryParams(
            {
                "country": country,
                "category": category,
                "pageSize": min(page_size, MAX_PAGE_SIZE),
                "apiKey": self._api_key,
            }
        )
        logger.info(
            "newsapi.headlines.fetch",
            extra={"country": country, "category": category, "page_size": page_size},
        )
        response = await self._http.request(f"{self._base_url}/top-headlines?{params}", _HEADLINES_OPTIONS)
        self.request_count += 1

        if not isinstance(response, dict) or response.get("status") != "ok":
            status = response.get("status") if isinstance(response, dict) else type(response).__name__
            raise PermanentError(f"NewsAPI returned status: {status}")

        logger.info(
            "newsapi.headlines.fetched",
            extra={"articles": len(response.get("articles") or []), "total_results": response.get("totalResults")},
        )
        return response


def _resolve_author(article: Dict[str, Any]) -> Optional[str]:
    author = article.get("author")
    if isinstance(author, str) and author.strip():
        return author.strip()
    source = article.get("source") or {}
    name = source.get("name") if isinstance(source, dict) else None
    return name or None


def _resolve_excerpt(article: Dict[str, Any]) -> Optional[str]:
    description = article.get("description")
    if isinstance(description, str) and description.strip():
        return truncate_excerpt(description)
    content = article.get("content")
    if isinstance(content, str) and content.strip():
        return truncate_excerpt(strip_char_count_suffix(content))
    return None


def normalize_news_api_article(article: Dict[str, Any]) -> Optional[ItemDTO]:
    title = (article.get("title") or "").strip()
    url = article.get("url")
    if not title or not url:
        logger.warning("newsapi.article.skipped", extra={"reason": "missing_title_or_url"})
        return None

    published = parse_datetime(article.get("publishedAt"))
    if published is None:
        logger.warning("newsapi.article.skipped", extra={"reason": "invalid_date", "title": title})
        return None

    item = safe_validate(
        {
            "source": CollectorSource.NEWSAPI,
            "title": title,
            "url": url,
            "published_at": to_iso8601(published),
            "author": _resolve_author(article),
            "excerpt": _resolve_excerpt(article),
        }
    )
    if item is None:
        logger.warning("newsapi.article.invalid", extra={"title": title, "url": url})
    return item


class NewsAPIConnector(BaseConnector):
    source = CollectorSource.NEWSAPI

    def __init__(self, client: NewsAPIClient, config: Optional[NewsAPIConfig] = None) -> None:
        self.client = client
        self.config = config or NewsAPIConfig()

    async def _collect(self) -> List[ItemDTO]:
        response = await self.client.fetch_top_headlines(
            self.config.country,
            self.config.category,
            self.config.page_size,
        )
        articles = response.get("articles") or []
        if not articles:
            logger.warning("newsapi.articles.empty")
            return []
        return normalize_all(articles, normalize_news_api_article)
