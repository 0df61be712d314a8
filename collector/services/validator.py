"""Schema checkpoint every normalized item passes before storage."""

from __future__ import annotations

from typing import Any, Iterable, List, Mapping, Optional, Union

from pydantic import ValidationError

from collector.models.domain import ItemDTO

Candidate = Union[ItemDTO, Mapping[str, Any]]


class ItemValidationError(ValueError):
    """Raised by :func:`validate` when a candidate item is rejected."""

    def __init__(self, message: str, *, errors: Optional[list] = None) -> None:
        super().__init__(message)
        self.errors = errors or []


def format_validation_error(exc: ValidationError) -> str:
    return ", ".join(
        f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()
    )


def validate(candidate: Candidate) -> ItemDTO:
    data = candidate.model_dump() if isinstance(candidate, ItemDTO) else candidate
    try:
        return ItemDTO.model_validate(data)
    except ValidationError as exc:
        raise ItemValidationError(format_validation_error(exc), errors=exc.errors()) from exc


def safe_validate(candidate: Candidate) -> Optional[ItemDTO]:
    try:
        return validate(candidate)
    except ItemValidationError:
        return None


def validate_many(candidates: Iterable[Candidate]) -> List[ItemDTO]:
    """Validate each candidate, dropping the ones that fail."""
    return [dto for dto in (safe_validate(c) for c in candidates) if dto is not None]
