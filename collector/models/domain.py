"""Domain DTOs for the collection pipeline."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import AnyUrl, BaseModel, ConfigDict, Field, TypeAdapter, field_validator

TITLE_MAX_LENGTH = 500
EXCERPT_MAX_LENGTH = 1000

_URL_ADAPTER = TypeAdapter(AnyUrl)


class CollectorSource(str, Enum):
    HN = "hn"
    RSS = "rss"
    NEWSAPI = "newsapi"


ALL_SOURCES: tuple[CollectorSource, ...] = (
    CollectorSource.HN,
    CollectorSource.RSS,
    CollectorSource.NEWSAPI,
)


class ItemDTO(BaseModel):
    """Canonical, source-agnostic item handed from connectors to storage."""

    model_config = ConfigDict(frozen=True, use_enum_values=False)

    source: CollectorSource = Field(..., description="Connector that produced the item")
    title: str = Field(..., min_length=1, max_length=TITLE_MAX_LENGTH)
    url: str = Field(..., description="Absolute URL; the deduplication key")
    published_at: str = Field(..., description="ISO-8601 timestamp")
    author: Optional[str] = None
    excerpt: Optional[str] = Field(None, max_length=EXCERPT_MAX_LENGTH)
    score: Optional[int] = Field(None, ge=0, strict=True)
    comment_count: Optional[int] = Field(None, ge=0, strict=True)

    @field_validator("url")
    @classmethod
    def _absolute_url(cls, value: str) -> str:
        try:
            parsed = _URL_ADAPTER.validate_python(value)
        except ValueError as exc:
            raise ValueError("url must be an absolute URL") from exc
        if not parsed.host:
            raise ValueError("url must be an absolute URL with a host")
        return value

    @field_validator("published_at")
    @classmethod
    def _iso_datetime(cls, value: str) -> str:
        if "T" not in value:
            raise ValueError("published_at must be an ISO-8601 datetime")
        try:
            datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError as exc:
            raise ValueError("published_at must be an ISO-8601 datetime") from exc
        return value

    def published_datetime(self) -> datetime:
        dt = datetime.fromisoformat(self.published_at.replace("Z", "+00:00"))
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt


class CollectionResult(BaseModel):
    """Per-run, per-source outcome; reporting only, never persisted."""

    source: CollectorSource
    success: bool = True
    items_collected: int = 0
    items_stored: int = 0
    duplicates_skipped: int = 0
    errors: List[str] = Field(default_factory=list)
    duration_ms: int = 0
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class BatchCollectionResult(BaseModel):
    results: List[CollectionResult] = Field(default_factory=list)
    total_duration_ms: int = 0
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def total_items_collected(self) -> int:
        return sum(r.items_collected for r in self.results)

    @property
    def total_items_stored(self) -> int:
        return sum(r.items_stored for r in self.results)

    @property
    def total_duplicates_skipped(self) -> int:
        return sum(r.duplicates_skipped for r in self.results)

    @property
    def total_errors(self) -> int:
        return sum(len(r.errors) for r in self.results)

    @property
    def has_failures(self) -> bool:
        return any(not r.success for r in self.results)
