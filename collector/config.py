"""JSON configuration files: collector defaults and RSS feed sources."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Type, TypeVar

from pydantic import AnyHttpUrl, BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

from collector.settings import Settings
from collector.utils.logging import get_logger

logger = get_logger(__name__)

M = TypeVar("M", bound=BaseModel)
_URL_ADAPTER = TypeAdapter(AnyHttpUrl)

DEFAULT_MAX_STORIES = 30
DEFAULT_CONCURRENT_REQUESTS = 5
DEFAULT_RSS_TIMEOUT_MS = 15_000
DEFAULT_MAX_ITEMS_PER_FEED = 20
DEFAULT_MAX_AGE_HOURS = 24
# Feeds are fetched one at a time unless raised deliberately; third-party
# servers see at most this many concurrent requests from us.
DEFAULT_FEED_CONCURRENCY = 1
DEFAULT_COUNTRY = "us"
DEFAULT_CATEGORY = "technology"
DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 100


class ConfigError(Exception):
    """Missing or invalid configuration file."""

    def __init__(self, message: str, *, path: Optional[Path] = None, problems: Optional[List[str]] = None) -> None:
        self.path = path
        self.problems = problems or []
        details = "".join(f"\n  - {p}" for p in self.problems)
        super().__init__(f"{message}{details}")


class _ConfigModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)


class HNConfig(_ConfigModel):
    max_stories: int = Field(DEFAULT_MAX_STORIES, alias="maxStories", gt=0)
    concurrent_requests: int = Field(DEFAULT_CONCURRENT_REQUESTS, alias="concurrentRequests", gt=0)


class RSSCollectorConfig(_ConfigModel):
    timeout_ms: int = Field(DEFAULT_RSS_TIMEOUT_MS, alias="timeout", gt=0)
    max_items_per_feed: int = Field(DEFAULT_MAX_ITEMS_PER_FEED, alias="maxItemsPerFeed", gt=0)
    max_age_hours: int = Field(DEFAULT_MAX_AGE_HOURS, alias="maxAgeHours", gt=0)
    feed_concurrency: int = Field(DEFAULT_FEED_CONCURRENCY, alias="feedConcurrency", gt=0)


class NewsAPIConfig(_ConfigModel):
    country: str = Field(DEFAULT_COUNTRY, min_length=2, max_length=2)
    category: str = DEFAULT_CATEGORY
    page_size: int = Field(DEFAULT_PAGE_SIZE, alias="pageSize", gt=0, le=MAX_PAGE_SIZE)

    @field_validator("country")
    @classmethod
    def _lower_country(cls, value: str) -> str:
        return value.lower()


class CollectorConfig(_ConfigModel):
    hn: HNConfig = Field(default_factory=HNConfig)
    rss: RSSCollectorConfig = Field(default_factory=RSSCollectorConfig)
    newsapi: NewsAPIConfig = Field(default_factory=NewsAPIConfig)


class RSSSource(_ConfigModel):
    name: str = Field(..., min_length=1)
    url: str
    category: Optional[str] = None

    @field_validator("url")
    @classmethod
    def _http_url(cls, value: str) -> str:
        _URL_ADAPTER.validate_python(value)
        return value


class RSSConfig(_ConfigModel):
    sources: List[RSSSource]
    max_items_per_feed: int = Field(DEFAULT_MAX_ITEMS_PER_FEED, alias="maxItemsPerFeed", gt=0)
    max_age_hours: int = Field(DEFAULT_MAX_AGE_HOURS, alias="maxAgeHours", gt=0)


def _format_problems(exc: ValidationError) -> List[str]:
    return [f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}" for err in exc.errors()]


def _load_json_model(path: Path, model: Type[M], label: str) -> M:
    if not path.exists():
        raise ConfigError(f"{label} file not found: {path}", path=path)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Invalid JSON in {label} file {path}: {exc}", path=path) from exc
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise ConfigError(f"Invalid {label} in {path}:", path=path, problems=_format_problems(exc)) from exc


def load_collector_config(path: str | Path, *, required: bool = False) -> CollectorConfig:
    """Load the collector defaults file.

    The file is optional: unless ``required`` is set, a missing or invalid
    file logs a warning and yields the built-in defaults.
    """
    try:
        return _load_json_model(Path(path), CollectorConfig, "collector configuration")
    except ConfigError as exc:
        if required:
            raise
        logger.warning("config.collector.defaults", extra={"reason": str(exc)})
        return CollectorConfig()


def load_rss_config(path: str | Path) -> RSSConfig:
    config = _load_json_model(Path(path), RSSConfig, "RSS sources configuration")
    if not config.sources:
        raise ConfigError(f"RSS configuration must have at least one source: {path}", path=Path(path))
    return config


@dataclass
class ConfigValidationReport:
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors


def validate_environment(settings: Settings, *, include_newsapi: bool = False) -> None:
    """Raise :class:`ConfigError` if settings required for storage are missing."""
    problems: List[str] = []
    if not settings.database_url.startswith(("sqlite", "postgresql", "mysql")):
        problems.append(f"DATABASE_URL: unsupported scheme in {settings.database_url.split('://')[0]!r}")
    if include_newsapi and settings.news_api_key is None:
        problems.append("NEWSAPI_KEY: NewsAPI.org API key (https://newsapi.org/register)")
    if problems:
        raise ConfigError("Missing or invalid environment variables:", problems=problems)


def validate_configuration(
    settings: Settings,
    *,
    check_rss: bool = False,
    check_newsapi: bool = False,
) -> ConfigValidationReport:
    report = ConfigValidationReport()
    try:
        validate_environment(settings, include_newsapi=check_newsapi)
    except ConfigError as exc:
        report.errors.append(str(exc))

    try:
        load_collector_config(settings.collector_config_path, required=True)
    except ConfigError as exc:
        report.warnings.append(f"{exc}\nUsing default values for collector settings.")

    if check_rss:
        try:
            load_rss_config(settings.rss_sources_path)
        except ConfigError as exc:
            report.errors.append(str(exc))
    return report
