"""URL-keyed deduplication against the item store, plus insertion.

Two modes:

- :func:`deduplicate_and_store` checks existing URLs once for the whole batch
  and inserts the new items in a single write. A failed write stores nothing
  and is reported in ``errors``.
- :func:`deduplicate_and_store_individually` checks and inserts one item at a
  time in its own transaction. A unique violation on insert (another writer
  got there first) counts as a duplicate, not an error.

Storage is append-only: a URL that is already stored is never updated.
"""

from __future__ import annotations

from contextlib import AbstractContextManager
from dataclasses import dataclass, field
from typing import Callable, List, Sequence, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from collector.db.session import session_scope
from collector.models.domain import CollectionResult, CollectorSource, ItemDTO
from collector.repositories.items import get_existing_urls, insert_item, insert_items, url_exists
from collector.utils.logging import get_logger

logger = get_logger(__name__)

SessionFactory = Callable[[], AbstractContextManager[Session]]

# Markers identifying the url unique constraint in driver error messages
# (constraint name on PostgreSQL/MySQL, column on SQLite).
_URL_CONFLICT_MARKERS = ("uq_items_url", "UNIQUE constraint failed: items.url")


@dataclass
class DeduplicationResult:
    items_stored: int = 0
    duplicates_skipped: int = 0
    errors: List[str] = field(default_factory=list)


def is_url_conflict(exc: IntegrityError) -> bool:
    message = str(exc.orig) if exc.orig is not None else str(exc)
    return any(marker in message for marker in _URL_CONFLICT_MARKERS)


def _log_duplicate(source: CollectorSource, url: str) -> None:
    logger.info("dedupe.duplicate", extra={"source": source.value, "url": url})


def _split_new(
    items: Sequence[ItemDTO], existing: set[str], source: CollectorSource
) -> Tuple[List[ItemDTO], int]:
    # First occurrence of a URL within the batch wins; later ones are duplicates.
    seen = set(existing)
    fresh: List[ItemDTO] = []
    duplicates = 0
    for item in items:
        if item.url in seen:
            _log_duplicate(source, item.url)
            duplicates += 1
            continue
        seen.add(item.url)
        fresh.append(item)
    return fresh, duplicates


def deduplicate_and_store(
    items: Sequence[ItemDTO],
    source: CollectorSource,
    session_factory: SessionFactory = session_scope,
) -> DeduplicationResult:
    result = DeduplicationResult()
    if not items:
        return result

    try:
        with session_factory() as session:
            existing = get_existing_urls(session, (i.url for i in items))
            fresh, result.duplicates_skipped = _split_new(items, existing, source)
            if not fresh:
                logger.info("dedupe.all_duplicates", extra={"source": source.value})
                return result
            inserted = insert_items(session, fresh)
    except Exception as exc:
        message = str(exc).splitlines()[0] if str(exc) else type(exc).__name__
        logger.error("dedupe.store.failed", extra={"source": source.value, "error": message})
        result.items_stored = 0
        result.errors.append(message)
        return result

    result.items_stored = len(inserted)
    logger.info(
        "dedupe.stored",
        extra={
            "source": source.value,
            "items_stored": result.items_stored,
            "duplicates_skipped": result.duplicates_skipped,
        },
    )
    return result


def deduplicate_and_store_individually(
    items: Sequence[ItemDTO],
    source: CollectorSource,
    session_factory: SessionFactory = session_scope,
) -> DeduplicationResult:
    result = DeduplicationResult()
    for item in items:
        try:
            with session_factory() as session:
                if url_exists(session, item.url):
                    _log_duplicate(source, item.url)
                    result.duplicates_skipped += 1
                    continue
                insert_item(session, item)
        except IntegrityError as exc:
            if not is_url_conflict(exc):
                _record_item_error(result, source, item, exc)
                continue
            # Lost a race with another writer between the check and the insert.
            _log_duplicate(source, item.url)
            result.duplicates_skipped += 1
            continue
        except Exception as exc:
            _record_item_error(result, source, item, exc)
            continue
        result.items_stored += 1

    logger.info(
        "dedupe.stored",
        extra={
            "source": source.value,
            "items_stored": result.items_stored,
            "duplicates_skipped": result.duplicates_skipped,
            "errors": len(result.errors),
        },
    )
    return result


def _record_item_error(
    result: DeduplicationResult, source: CollectorSource, item: ItemDTO, exc: Exception
) -> None:
    message = str(exc).splitlines()[0] if str(exc) else type(exc).__name__
    logger.error("dedupe.item.failed", extra={"source": source.value, "url": item.url, "error": message})
    result.errors.append(f"{item.url}: {message}")


def create_collection_result(
    source: CollectorSource,
    items_collected: int,
    dedup: DeduplicationResult,
    duration_ms: int,
    *,
    success: bool = True,
) -> CollectionResult:
    return CollectionResult(
        source=source,
        success=success,
        items_collected=items_collected,
        items_stored=dedup.items_stored,
        duplicates_skipped=dedup.duplicates_skipped,
        errors=list(dedup.errors),
        duration_ms=duration_ms,
    )
