"""Command line entry point.

Usage:
  python -m collector all --collectors hn,rss --dry-run
  python -m collector hn --max-stories 50 --concurrent 10
  python -m collector rss --max-items 10 --max-age 12
  python -m collector newsapi --country gb --category business
  python -m collector validate-config --all
  python -m collector stats

Exit codes: 0 on success, 1 on any failure (``validate-config`` also returns
2 when the configuration is valid but has warnings).
"""

from __future__ import annotations

import argparse
import asyncio
import sys
import traceback
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Sequence

from collector.config import (
    DEFAULT_CATEGORY,
    DEFAULT_CONCURRENT_REQUESTS,
    DEFAULT_COUNTRY,
    DEFAULT_MAX_AGE_HOURS,
    DEFAULT_MAX_ITEMS_PER_FEED,
    DEFAULT_MAX_STORIES,
    DEFAULT_PAGE_SIZE,
    DEFAULT_RSS_TIMEOUT_MS,
    MAX_PAGE_SIZE,
    CollectorConfig,
    ConfigError,
    HNConfig,
    NewsAPIConfig,
    RSSCollectorConfig,
    validate_configuration,
    validate_environment,
)
from collector.db.session import ensure_schema, session_scope
from collector.models.domain import ALL_SOURCES, CollectorSource, ItemDTO
from collector.repositories.items import count_by_source, count_published_since, latest_items
from collector.settings import Settings, get_settings
from collector.tasks.collect import RunOptions, StorageMode, render_summary, run_collection
from collector.utils.logging import configure_logging, get_logger

logger = get_logger("collector.cli")

SAMPLE_SIZE = 3
MIN_RSS_TIMEOUT_MS = 1000


def _positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"expected a positive integer, got {value!r}") from exc
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be a positive number, got {number}")
    return number


def _rss_timeout(value: str) -> int:
    number = _positive_int(value)
    if number < MIN_RSS_TIMEOUT_MS:
        raise argparse.ArgumentTypeError(f"must be at least {MIN_RSS_TIMEOUT_MS}ms")
    return number


def _page_size(value: str) -> int:
    number = _positive_int(value)
    if number > MAX_PAGE_SIZE:
        raise argparse.ArgumentTypeError(f"must be <= {MAX_PAGE_SIZE}")
    return number


def _collector_list(value: str) -> List[CollectorSource]:
    names = [v.strip() for v in value.split(",") if v.strip()]
    valid = {s.value: s for s in ALL_SOURCES}
    invalid = [n for n in names if n not in valid]
    if invalid or not names:
        raise argparse.ArgumentTypeError(
            f"Invalid collectors: {', '.join(invalid) or '<empty>'}. Valid: {', '.join(valid)}"
        )
    return [valid[n] for n in names]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="collector", description="Trend item collection pipeline")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging and tracebacks")
    sub = parser.add_subparsers(dest="command", required=True)

    p_all = sub.add_parser("all", help="Run several collectors in sequence")
    p_all.add_argument(
        "--collectors",
        type=_collector_list,
        default=list(ALL_SOURCES),
        help="Comma-separated list (default: hn,rss,newsapi)",
    )
    p_all.add_argument("--stop-on-error", action="store_true", help="Stop after the first failed collector")
    p_all.add_argument("--no-config", action="store_true", help="Ignore the collector config file, use defaults")
    p_all.add_argument("--individual", action="store_true", help="Insert items one by one (race-safe)")

    p_hn = sub.add_parser("hn", help="Collect Hacker News top stories")
    p_hn.add_argument("--max-stories", type=_positive_int, default=DEFAULT_MAX_STORIES)
    p_hn.add_argument("--concurrent", type=_positive_int, default=DEFAULT_CONCURRENT_REQUESTS)

    p_rss = sub.add_parser("rss", help="Collect configured RSS/Atom feeds")
    p_rss.add_argument("--max-items", type=_positive_int, default=DEFAULT_MAX_ITEMS_PER_FEED)
    p_rss.add_argument("--max-age", type=_positive_int, default=DEFAULT_MAX_AGE_HOURS, help="Hours")
    p_rss.add_argument("--timeout", type=_rss_timeout, default=DEFAULT_RSS_TIMEOUT_MS, help="Milliseconds")

    p_news = sub.add_parser("newsapi", help="Collect NewsAPI top headlines")
    p_news.add_argument("--country", default=DEFAULT_COUNTRY)
    p_news.add_argument("--category", default=DEFAULT_CATEGORY)
    p_news.add_argument("--page-size", type=_page_size, default=DEFAULT_PAGE_SIZE)

    for p in (p_all, p_hn, p_rss, p_news):
        p.add_argument("--dry-run", action="store_true", help="Collect but don't store")

    p_val = sub.add_parser("validate-config", help="Validate configuration files and environment")
    p_val.add_argument("--newsapi", action="store_true", help="Require NEWSAPI_KEY")
    p_val.add_argument("--rss", action="store_true", help="Validate the RSS sources file")
    p_val.add_argument("--all", action="store_true", help="Same as --newsapi --rss")

    sub.add_parser("stats", help="Show what is in the item store")
    return parser


def _single_source_config(args: argparse.Namespace) -> CollectorConfig:
    if args.command == "hn":
        return CollectorConfig(hn=HNConfig(max_stories=args.max_stories, concurrent_requests=args.concurrent))
    if args.command == "rss":
        return CollectorConfig(
            rss=RSSCollectorConfig(
                timeout_ms=args.timeout,
                max_items_per_feed=args.max_items,
                max_age_hours=args.max_age,
            )
        )
    return CollectorConfig(
        newsapi=NewsAPIConfig(country=args.country, category=args.category, page_size=args.page_size)
    )


def _print_samples(samples: Dict[CollectorSource, List[ItemDTO]]) -> None:
    for source, items in samples.items():
        print(f"\nSample items ({source.value}):")
        for index, item in enumerate(items[:SAMPLE_SIZE], start=1):
            print(f"\n{index}. {item.title}")
            print(f"   URL: {item.url}")
            print(f"   Author: {item.author or 'N/A'}")
            print(f"   Published: {item.published_at}")
            if source is CollectorSource.HN:
                print(f"   Score: {item.score or 0}")
                print(f"   Comments: {item.comment_count or 0}")


def _run_collect(args: argparse.Namespace, settings: Settings) -> int:
    if args.command == "all":
        options = RunOptions(
            collectors=args.collectors,
            dry_run=args.dry_run,
            continue_on_error=not args.stop_on_error,
            use_config=not args.no_config,
            storage_mode=StorageMode.INDIVIDUAL if args.individual else StorageMode.BULK,
        )
        config: Optional[CollectorConfig] = None
    else:
        options = RunOptions(collectors=[CollectorSource(args.command)], dry_run=args.dry_run, use_config=False)
        config = _single_source_config(args)

    if not options.dry_run:
        validate_environment(settings, include_newsapi=CollectorSource.NEWSAPI in options.collectors)

    samples: Dict[CollectorSource, List[ItemDTO]] = {}

    def _keep_samples(source: CollectorSource, items: List[ItemDTO]) -> None:
        samples[source] = items[:SAMPLE_SIZE]

    batch = asyncio.run(
        run_collection(
            options,
            settings=settings,
            config=config,
            on_collected=_keep_samples if options.dry_run and args.command != "all" else None,
        )
    )
    if samples:
        _print_samples(samples)
    print("\n" + render_summary(batch))

    if batch.has_failures:
        print("\n✗ Collection completed with failures")
        return 1
    print("\n✓ Collection completed successfully")
    return 0


def _run_validate(args: argparse.Namespace, settings: Settings) -> int:
    report = validate_configuration(
        settings,
        check_rss=args.rss or args.all,
        check_newsapi=args.newsapi or args.all,
    )
    for error in report.errors:
        print(f"\n✗ {error}", file=sys.stderr)
    for warning in report.warnings:
        print(f"\n! {warning}")
    if not report.valid:
        print("\nConfiguration validation failed")
        return 1
    if report.warnings:
        print("\nConfiguration validation passed with warnings")
        return 2
    print("\n✓ Configuration validation passed")
    return 0


def _run_stats(settings: Settings) -> int:
    ensure_schema(settings)
    since = datetime.now(timezone.utc) - timedelta(hours=24)
    with session_scope(settings) as session:
        by_source = count_by_source(session)
        recent = count_published_since(session, since)
        latest = latest_items(session, limit=10)
        print(f"\nTotal items in database: {sum(by_source.values())}\n")
        print("Items by source:")
        for source, count in by_source.items():
            print(f"  {source}: {count}")
        print(f"\nItems published in last 24h: {recent}")
        print("\nLatest 10 items:")
        for index, item in enumerate(latest, start=1):
            print(f"  {index}. [{item.source}] {item.title[:50]} (score: {item.score})")
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        settings = get_settings()
    except RuntimeError as exc:
        print(f"\n✗ {exc}", file=sys.stderr)
        return 1
    configure_logging("DEBUG" if args.verbose else settings.log_level, json_enabled=settings.log_json)

    try:
        if args.command == "validate-config":
            return _run_validate(args, settings)
        if args.command == "stats":
            return _run_stats(settings)
        return _run_collect(args, settings)
    except ConfigError as exc:
        print(f"\n✗ {exc}", file=sys.stderr)
        return 1
    except Exception as exc:
        logger.error("cli.failed", extra={"command": args.command, "error": str(exc)})
        if args.verbose:
            traceback.print_exc()
        print(f"\n✗ {args.command} failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
