"""Connector abstraction and error taxonomy."""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from typing import Callable, Iterable, List, Optional, TypeVar

from collector.models.domain import CollectorSource, ItemDTO
from collector.utils.logging import get_logger

R = TypeVar("R")


class ConnectorError(Exception):
    """Base connector error."""


class PermanentError(ConnectorError):
    """Non-retryable error (e.g., 4xx semantics, bad upstream status)."""


class CollectionError(ConnectorError):
    """The whole source failed; raised out of ``collect()``."""

    def __init__(self, source: CollectorSource, message: str) -> None:
        super().__init__(message)
        self.source = source


def normalize_all(records: Iterable[R], normalize: Callable[[R], Optional[ItemDTO]]) -> List[ItemDTO]:
    return [dto for dto in (normalize(r) for r in records) if dto is not None]


class BaseConnector(ABC):
    """Source adapter contract.

    ``collect()`` returns validated items and raises :class:`CollectionError`
    only when the source as a whole is unusable. Per-item problems are logged
    and dropped by the normalizers.
    """

    source: CollectorSource

    async def collect(self) -> List[ItemDTO]:
        logger = get_logger(type(self).__module__)
        started = time.monotonic()
        logger.info(f"{self.source.value}.collect.start")
        try:
            items = await self._collect()
        except CollectionError:
            self._log_failure(logger, started)
            raise
        except Exception as exc:
            self._log_failure(logger, started, exc)
            raise CollectionError(self.source, str(exc) or type(exc).__name__) from exc
        logger.info(
            f"{self.source.value}.collect.complete",
            extra={"items_collected": len(items), "duration_ms": _elapsed_ms(started)},
        )
        return items

    @abstractmethod
    async def _collect(self) -> List[ItemDTO]:
        """Fetch upstream records and return normalized items."""

    def _log_failure(self, logger, started: float, exc: Optional[BaseException] = None) -> None:  # noqa: ANN001
        logger.error(
            f"{self.source.value}.collect.failed",
            extra={"error": str(exc) if exc else None, "duration_ms": _elapsed_ms(started)},
        )


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)
