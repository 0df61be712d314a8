from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from collector.db.models import Item
from collector.db.session import ensure_schema, session_scope
from collector.models.domain import CollectorSource, ItemDTO
from collector.repositories.items import count_by_source, get_existing_urls
from collector.services import deduplicator as dedup_mod
from collector.services.deduplicator import (
    DeduplicationResult,
    create_collection_result,
    deduplicate_and_store,
    deduplicate_and_store_individually,
)
from collector.settings import Settings


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    cfg = Settings(DATABASE_URL=f"sqlite:///{tmp_path / 'items.db'}")
    ensure_schema(cfg)
    return cfg


@pytest.fixture()
def sessions(settings: Settings):
    return lambda: session_scope(settings)


def _item(n: int, **overrides) -> ItemDTO:
    data = {
        "source": CollectorSource.RSS,
        "title": f"Item {n}",
        "url": f"https://example.com/items/{n}",
        "published_at": "2025-01-01T12:00:00.000Z",
    }
    data.update(overrides)
    return ItemDTO(**data)


def _stored_count(settings: Settings) -> int:
    with session_scope(settings) as session:
        return session.execute(select(func.count()).select_from(Item)).scalar_one()


def test_second_run_stores_nothing(settings, sessions):
    items = [_item(n) for n in range(5)]

    first = deduplicate_and_store(items, CollectorSource.RSS, sessions)
    second = deduplicate_and_store(items, CollectorSource.RSS, sessions)

    assert (first.items_stored, first.duplicates_skipped) == (5, 0)
    assert (second.items_stored, second.duplicates_skipped) == (0, 5)
    assert _stored_count(settings) == 5


def test_duplicates_within_one_batch_keep_the_first(settings, sessions):
    items = [_item(1, title="First"), _item(1, title="Second"), _item(2)]

    result = deduplicate_and_store(items, CollectorSource.RSS, sessions)

    assert (result.items_stored, result.duplicates_skipped) == (2, 1)
    with session_scope(settings) as session:
        title = session.execute(select(Item.title).where(Item.url == items[0].url)).scalar_one()
    assert title == "First"


def test_same_url_from_another_source_is_a_duplicate(settings, sessions):
    deduplicate_and_store([_item(1)], CollectorSource.RSS, sessions)

    result = deduplicate_and_store([_item(1, source=CollectorSource.HN, score=3)], CollectorSource.HN, sessions)

    assert result.duplicates_skipped == 1
    with session_scope(settings) as session:
        assert count_by_source(session) == {"rss": 1}


def test_empty_batch_is_a_noop(sessions):
    assert deduplicate_and_store([], CollectorSource.HN, sessions) == DeduplicationResult()


def test_bulk_failure_stores_nothing_and_reports(settings):
    @contextmanager
    def broken():
        raise RuntimeError("database is locked")
        yield  # pragma: no cover

    result = deduplicate_and_store([_item(1), _item(2)], CollectorSource.RSS, broken)

    assert result.items_stored == 0
    assert result.errors == ["database is locked"]
    assert _stored_count(settings) == 0


def test_existing_urls_are_queried_in_chunks(settings, sessions):
    deduplicate_and_store([_item(n) for n in range(0, 250, 2)], CollectorSource.RSS, sessions)
    urls = [f"https://example.com/items/{n}" for n in range(250)]

    with session_scope(settings) as session:
        existing = get_existing_urls(session, urls, batch_size=100)

    assert len(existing) == 125


def test_individual_mode_skips_existing(settings, sessions):
    deduplicate_and_store([_item(1)], CollectorSource.RSS, sessions)

    result = deduplicate_and_store_individually([_item(1), _item(2), _item(2)], CollectorSource.RSS, sessions)

    assert (result.items_stored, result.duplicates_skipped, result.errors) == (1, 2, [])
    assert _stored_count(settings) == 2


def test_individual_mode_counts_lost_race_as_duplicate(settings, sessions, monkeypatch):
    deduplicate_and_store([_item(1)], CollectorSource.RSS, sessions)
    # Simulate another writer inserting between the existence check and the insert.
    monkeypatch.setattr(dedup_mod, "url_exists", lambda _session, _url: False)

    result = deduplicate_and_store_individually([_item(1), _item(3)], CollectorSource.RSS, sessions)

    assert (result.items_stored, result.duplicates_skipped, result.errors) == (1, 1, [])


def test_create_collection_result_copies_counts():
    dedup = DeduplicationResult(items_stored=3, duplicates_skipped=2, errors=["x"])

    result = create_collection_result(CollectorSource.HN, 5, dedup, 120)

    assert result.success
    assert (result.items_collected, result.items_stored, result.duplicates_skipped) == (5, 3, 2)
    assert result.errors == ["x"]
    assert result.duration_ms == 120


def test_individual_mode_records_other_constraint_failures(settings, sessions, monkeypatch):
    def _not_null_failure(_session, _item):
        raise IntegrityError("INSERT INTO items ...", {}, Exception("NOT NULL constraint failed: items.title"))

    monkeypatch.setattr(dedup_mod, "insert_item", _not_null_failure)

    result = deduplicate_and_store_individually([_item(7)], CollectorSource.RSS, sessions)

    assert result.duplicates_skipped == 0
    assert result.items_stored == 0
    assert len(result.errors) == 1
    assert "NOT NULL constraint failed" in result.errors[0]


def test_url_conflict_detection():
    assert dedup_mod.is_url_conflict(
        IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed: items.url"))
    )
    assert dedup_mod.is_url_conflict(
        IntegrityError("INSERT", {}, Exception('duplicate key value violates unique constraint "uq_items_url"'))
    )
    assert not dedup_mod.is_url_conflict(
        IntegrityError("INSERT", {}, Exception("NOT NULL constraint failed: items.url"))
    )
