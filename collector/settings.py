"""Environment settings for the collector."""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import AliasChoices, Field, SecretStr, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_DATABASE_URL = "sqlite:///./var/collector.db"
DEFAULT_USER_AGENT = "Mozilla/5.0 (compatible; TrendWatch/1.0)"


class Settings(BaseSettings):
    """Collector environment configuration."""

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
        populate_by_name=True,
    )

    database_url: str = Field(
        DEFAULT_DATABASE_URL,
        alias="DATABASE_URL",
        description="SQLAlchemy DSN of the item store.",
    )
    news_api_key: Optional[SecretStr] = Field(
        None,
        validation_alias=AliasChoices("NEWSAPI_KEY", "NEWS_API_KEY", "news_api_key"),
        description="NewsAPI.org API key.",
    )
    news_api_base_url: str = Field("https://newsapi.org/v2", alias="NEWSAPI_BASE_URL")
    hn_api_base_url: str = Field("https://hacker-news.firebaseio.com/v0", alias="HN_API_BASE_URL")
    collector_config_path: str = Field(
        "config/collector.config.json",
        alias="COLLECTOR_CONFIG_PATH",
        description="JSON file with per-collector defaults.",
    )
    rss_sources_path: str = Field(
        "config/rss_sources.json",
        alias="RSS_SOURCES_PATH",
        description="JSON file listing RSS/Atom feeds.",
    )
    user_agent: str = Field(DEFAULT_USER_AGENT, alias="USER_AGENT")
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_json: bool = Field(False, alias="LOG_JSON")

    @field_validator("database_url")
    @classmethod
    def _validate_database_url(cls, value: str) -> str:
        if "://" not in value:
            raise ValueError("DATABASE_URL must be a valid DSN (e.g. postgresql://...)")
        return value

    @field_validator("news_api_key")
    @classmethod
    def _blank_key_is_missing(cls, value: Optional[SecretStr]) -> Optional[SecretStr]:
        if value is not None and not value.get_secret_value().strip():
            return None
        return value

    @field_validator("news_api_base_url", "hn_api_base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")


@lru_cache()
def get_settings() -> Settings:
    """Return settings resolved from the environment."""
    try:
        return Settings()
    except ValidationError as exc:
        raise RuntimeError(f"Environment validation failed: {exc}") from exc


def reset_settings_cache() -> None:
    """Clear the settings cache (tests)."""
    get_settings.cache_clear()  # type: ignore[attr-defined]
