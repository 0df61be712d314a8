"""Database utilities for the item store."""

from .models import Base, Item  # noqa: F401
from .session import ensure_schema, get_engine, get_sessionmaker, session_scope  # noqa: F401

__all__ = [
    "Base",
    "Item",
    "ensure_schema",
    "get_engine",
    "get_sessionmaker",
    "session_scope",
]
