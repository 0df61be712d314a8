"""Hacker News connector: top stories via the public Firebase API."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from collector.config import DEFAULT_CONCURRENT_REQUESTS, DEFAULT_MAX_STORIES, HNConfig
from collector.models.domain import CollectorSource, ItemDTO
from collector.services.validator import safe_validate
from collector.utils.http import HttpClient, RequestOptions
from collector.utils.logging import get_logger
from collector.utils.text import parse_datetime, to_iso8601

from .base import BaseConnector, PermanentError, normalize_all

logger = get_logger(__name__)

HN_API_BASE = "https://hacker-news.firebaseio.com/v0"
SKIPPED_TYPES = frozenset({"job", "poll"})

_ID_LIST_OPTIONS = RequestOptions(timeout_ms=10_000, retries=3)
_STORY_OPTIONS = RequestOptions(timeout_ms=10_000, retries=2)


class HNAPIClient:
    def __init__(
        self,
        http: HttpClient,
        *,
        base_url: str = HN_API_BASE,
        concurrent_requests: int = DEFAULT_CONCURRENT_REQUESTS,
    ) -> None:
        self._http = http
        self._base_url = base_url.rstrip("/")
        self.concurrent_requests = concurrent_requests

    def story_url(self, story_id: int) -> str:
        return f"{self._base_url}/item/{story_id}.json"

    async def fetch_top_story_ids(self, limit: int = DEFAULT_MAX_STORIES) -> List[int]:
        logger.info("hn.top_ids.fetch", extra={"limit": limit})
        ids = await self._http.request(f"{self._base_url}/topstories.json", _ID_LIST_OPTIONS)
        if not isinstance(ids, list):
            raise PermanentError(f"Unexpected topstories payload: {type(ids).__name__}")
        return ids[:limit]

    async def fetch_stories(self, ids: List[int]) -> List[Dict[str, Any]]:
        """Fetch story bodies with bounded concurrency; failed ones are dropped."""
        logger.info(
            "hn.stories.fetch",
            extra={"count": len(ids), "concurrency": self.concurrent_requests},
        )
        results = await self._http.request_batch(
            [self.story_url(i) for i in ids],
            _STORY_OPTIONS,
            self.concurrent_requests,
        )
        stories: List[Dict[str, Any]] = []
        for result in results:
            if not result.ok:
                logger.warning("hn.story.failed", extra={"url": result.url, "error": str(result.error)})
            elif isinstance(result.value, dict):
                stories.append(result.value)
        logger.info("hn.stories.fetched", extra={"fetched": len(stories), "requested": len(ids)})
        return stories


def normalize_hn_story(story: Dict[str, Any]) -> Optional[ItemDTO]:
    story_id = story.get("id")
    if story.get("type") in SKIPPED_TYPES:
        logger.info("hn.story.skipped", extra={"story_id": story_id, "reason": story.get("type")})
        return None
    if not story.get("url"):
        logger.info("hn.story.skipped", extra={"story_id": story_id, "reason": "no_url"})
        return None

    published = parse_datetime(story.get("time"))
    if published is None:
        logger.warning("hn.story.invalid", extra={"story_id": story_id, "reason": "time"})
        return None

    candidate = {
        "source": CollectorSource.HN,
        "title": (story.get("title") or "").strip(),
        "url": story["url"],
        "published_at": to_iso8601(published),
        "author": story.get("by"),
        "score": story.get("score"),
        "comment_count": story.get("descendants"),
    }
    item = safe_validate(candidate)
    if item is None:
        logger.warning("hn.story.invalid", extra={"story_id": story_id, "url": story.get("url")})
    return item


class HackerNewsConnector(BaseConnector):
    source = CollectorSource.HN

    def __init__(self, http: HttpClient, config: Optional[HNConfig] = None, *, base_url: str = HN_API_BASE) -> None:
        self.config = config or HNConfig()
        self.client = HNAPIClient(
            http,
            base_url=base_url,
            concurrent_requests=self.config.concurrent_requests,
        )

    async def _collect(self) -> List[ItemDTO]:
        ids = await self.client.fetch_top_story_ids(self.config.max_stories)
        if not ids:
            logger.warning("hn.top_ids.empty")
            return []
        stories = await self.client.fetch_stories(ids)
        return normalize_all(stories, normalize_hn_story)
