"""Repository functions over the ``items`` table."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Dict, Iterable, List, Sequence

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from collector.db.models import Item
from collector.models.domain import ItemDTO

URL_QUERY_BATCH_SIZE = 100


def get_existing_urls(session: Session, urls: Iterable[str], *, batch_size: int = URL_QUERY_BATCH_SIZE) -> set[str]:
    """Return the subset of ``urls`` already stored, querying in chunks."""
    candidates = list(dict.fromkeys(urls))
    existing: set[str] = set()
    for start in range(0, len(candidates), batch_size):
        chunk = candidates[start : start + batch_size]
        stmt = select(Item.url).where(Item.url.in_(chunk))
        existing.update(row[0] for row in session.execute(stmt))
    return existing


def url_exists(session: Session, url: str) -> bool:
    return session.execute(select(Item.id).where(Item.url == url).limit(1)).first() is not None


def _to_entity(dto: ItemDTO) -> Item:
    return Item(
        source=dto.source.value,
        title=dto.title,
        url=dto.url,
        excerpt=dto.excerpt,
        author=dto.author,
        score=dto.score or 0,
        comment_count=dto.comment_count or 0,
        published_at=dto.published_datetime(),
    )


def insert_items(session: Session, items: Sequence[ItemDTO]) -> List[uuid.UUID]:
    """Insert all items in one flush; any constraint violation fails the batch."""
    entities = [_to_entity(dto) for dto in items]
    session.add_all(entities)
    session.flush()
    return [e.id for e in entities]


def insert_item(session: Session, item: ItemDTO) -> uuid.UUID:
    entity = _to_entity(item)
    session.add(entity)
    session.flush()
    return entity.id


def count_by_source(session: Session) -> Dict[str, int]:
    stmt = select(Item.source, func.count()).group_by(Item.source).order_by(Item.source)
    return {source: count for source, count in session.execute(stmt)}


def count_published_since(session: Session, since: datetime) -> int:
    stmt = select(func.count()).select_from(Item).where(Item.published_at >= since)
    return int(session.execute(stmt).scalar_one())


def latest_items(session: Session, limit: int = 10) -> List[Item]:
    stmt = select(Item).order_by(Item.published_at.desc()).limit(limit)
    return list(session.execute(stmt).scalars())
