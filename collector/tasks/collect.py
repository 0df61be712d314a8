"""Collection orchestrator: runs connectors one after another and stores results."""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, Sequence

from collector.config import CollectorConfig, load_collector_config, load_rss_config
from collector.connectors.base import BaseConnector
from collector.connectors.hackernews import HackerNewsConnector
from collector.connectors.news_api import NewsAPIClient, NewsAPIConnector
from collector.connectors.rss import RSSConnector
from collector.db.session import ensure_schema, session_scope
from collector.models.domain import (
    ALL_SOURCES,
    BatchCollectionResult,
    CollectionResult,
    CollectorSource,
    ItemDTO,
)
from collector.services.deduplicator import (
    DeduplicationResult,
    create_collection_result,
    deduplicate_and_store,
    deduplicate_and_store_individually,
)
from collector.settings import Settings, get_settings
from collector.utils.http import HttpClient
from collector.utils.logging import get_logger

logger = get_logger(__name__)

StoreFn = Callable[[Sequence[ItemDTO], CollectorSource], DeduplicationResult]
ConnectorFactory = Callable[[CollectorSource, HttpClient, CollectorConfig, Settings], BaseConnector]
ItemsHook = Callable[[CollectorSource, List[ItemDTO]], None]

MAX_SUMMARY_ERRORS = 3


class StorageMode(str, Enum):
    BULK = "bulk"
    INDIVIDUAL = "individual"


@dataclass
class RunOptions:
    collectors: List[CollectorSource] = field(default_factory=lambda: list(ALL_SOURCES))
    dry_run: bool = False
    continue_on_error: bool = True
    use_config: bool = True
    storage_mode: StorageMode = StorageMode.BULK


def build_connector(
    source: CollectorSource,
    http: HttpClient,
    config: CollectorConfig,
    settings: Settings,
) -> BaseConnector:
    """Default factory wiring connectors from config + settings."""
    if source is CollectorSource.HN:
        return HackerNewsConnector(http, config.hn, base_url=settings.hn_api_base_url)
    if source is CollectorSource.RSS:
        rss_sources = load_rss_config(settings.rss_sources_path)
        return RSSConnector(
            http,
            rss_sources,
            timeout_ms=config.rss.timeout_ms,
            max_items_per_feed=config.rss.max_items_per_feed,
            max_age_hours=config.rss.max_age_hours,
            feed_concurrency=config.rss.feed_concurrency,
            user_agent=settings.user_agent,
        )
    if source is CollectorSource.NEWSAPI:
        key = settings.news_api_key.get_secret_value() if settings.news_api_key else None
        client = NewsAPIClient(key, http, base_url=settings.news_api_base_url)
        return NewsAPIConnector(client, config.newsapi)
    raise ValueError(f"Unknown collector: {source}")


def build_store(settings: Settings, mode: StorageMode = StorageMode.BULK) -> StoreFn:
    ensure_schema(settings)
    store = deduplicate_and_store if mode is StorageMode.BULK else deduplicate_and_store_individually

    def _store(items: Sequence[ItemDTO], source: CollectorSource) -> DeduplicationResult:
        return store(items, source, lambda: session_scope(settings))

    return _store


async def run_source(
    source: CollectorSource,
    build: Callable[[], BaseConnector],
    store: Optional[StoreFn],
    on_collected: Optional[ItemsHook] = None,
) -> CollectionResult:
    """Collect one source and store its items; never raises.

    ``store=None`` means dry-run: items are collected and counted only.
    """
    started = time.monotonic()
    try:
        connector = build()
        items = await connector.collect()
        if on_collected is not None:
            on_collected(source, items)
        if store is None:
            logger.info("orchestrator.dry_run", extra={"source": source.value, "items_collected": len(items)})
            dedup = DeduplicationResult()
        else:
            dedup = store(items, source)
        return create_collection_result(source, len(items), dedup, _elapsed_ms(started))
    except Exception as exc:
        message = str(exc) or type(exc).__name__
        logger.error("orchestrator.source.failed", extra={"source": source.value, "error": message})
        return CollectionResult(
            source=source,
            success=False,
            errors=[message],
            duration_ms=_elapsed_ms(started),
        )


async def run_collection(
    options: RunOptions,
    *,
    settings: Optional[Settings] = None,
    connector_factory: ConnectorFactory = build_connector,
    store: Optional[StoreFn] = None,
    http: Optional[HttpClient] = None,
    config: Optional[CollectorConfig] = None,
    on_collected: Optional[ItemsHook] = None,
) -> BatchCollectionResult:
    """Run the selected sources in order and aggregate their results.

    Sources never overlap. With ``continue_on_error`` off, a failed source
    stops the run before the next one starts.
    """
    cfg = settings or get_settings()
    started = time.monotonic()
    run_id = str(uuid.uuid4())
    logger.info(
        "orchestrator.start",
        extra={
            "run_id": run_id,
            "collectors": [s.value for s in options.collectors],
            "dry_run": options.dry_run,
            "continue_on_error": options.continue_on_error,
            "use_config": options.use_config,
        },
    )

    if config is None:
        config = load_collector_config(cfg.collector_config_path) if options.use_config else CollectorConfig()
    if not options.dry_run and store is None:
        store = build_store(cfg, options.storage_mode)

    batch = BatchCollectionResult()
    owns_http = http is None
    client = http or HttpClient(user_agent=cfg.user_agent)
    try:
        for source in options.collectors:
            result = await run_source(
                source,
                lambda s=source: connector_factory(s, client, config, cfg),
                None if options.dry_run else store,
                on_collected,
            )
            batch.results.append(result)
            if not result.success and not options.continue_on_error:
                logger.error("orchestrator.stopped", extra={"run_id": run_id, "source": source.value})
                break
    finally:
        if owns_http:
            await client.aclose()

    batch.total_duration_ms = _elapsed_ms(started)
    logger.info(
        "orchestrator.complete",
        extra={
            "run_id": run_id,
            "items_collected": batch.total_items_collected,
            "items_stored": batch.total_items_stored,
            "duplicates_skipped": batch.total_duplicates_skipped,
            "failures": sum(1 for r in batch.results if not r.success),
            "duration_ms": batch.total_duration_ms,
        },
    )
    return batch


def render_summary(batch: BatchCollectionResult) -> str:
    rule = "=" * 60
    succeeded = sum(1 for r in batch.results if r.success)
    lines = [
        rule,
        "COLLECTION SUMMARY",
        rule,
        f"Total collectors run: {len(batch.results)}",
        f"Successful: {succeeded}",
        f"Failed: {len(batch.results) - succeeded}",
        f"Total duration: {batch.total_duration_ms / 1000:.2f}s",
        "-" * 60,
    ]
    for result in batch.results:
        lines.append(f"{'✓' if result.success else '✗'} {result.source.value.upper()}")
        lines.append(f"  Duration: {result.duration_ms / 1000:.2f}s")
        lines.append(f"  Items collected: {result.items_collected}")
        lines.append(f"  Items stored: {result.items_stored}")
        lines.append(f"  Duplicates skipped: {result.duplicates_skipped}")
        if result.errors:
            lines.append(f"  Errors: {len(result.errors)}")
            lines.extend(f"    - {err}" for err in result.errors[:MAX_SUMMARY_ERRORS])
            if len(result.errors) > MAX_SUMMARY_ERRORS:
                lines.append(f"    ... and {len(result.errors) - MAX_SUMMARY_ERRORS} more")
    lines += [
        rule,
        "Totals:",
        f"  Items collected: {batch.total_items_collected}",
        f"  Items stored: {batch.total_items_stored}",
        f"  Duplicates skipped: {batch.total_duplicates_skipped}",
        rule,
    ]
    return "\n".join(lines)


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)
