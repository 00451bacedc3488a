"""Create-or-fetch by natural key, absorbing duplicate and racing creates."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any, TypeVar

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..domain_errors import ConflictError

logger = logging.getLogger(__name__)

T = TypeVar("T")

UNIQUE_VIOLATION_SQLSTATE = "23505"


def is_unique_violation(exc: IntegrityError) -> bool:
    """True when the store rejected the write because of a uniqueness constraint."""
    orig = getattr(exc, "orig", None)
    sqlstate = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if sqlstate is not None:
        return sqlstate == UNIQUE_VIOLATION_SQLSTATE
    message = str(orig if orig is not None else exc)
    return "UNIQUE constraint failed" in message


def create_or_fetch(
    *,
    db: Session,
    lookup: Callable[[], T | None],
    create: Callable[[], T],
) -> tuple[T, bool]:
    """Return ``(row, created)``.

    ``lookup`` queries by natural key. ``create`` adds the row plus everything
    that must be committed with it (created event, seeded children); this
    function commits. A unique violation means a concurrent caller won, so the
    winner's row is re-read and returned.
    """
    existing = lookup()
    if existing is not None:
        return existing, False

    try:
        row = create()
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        if not is_unique_violation(exc):
            raise
        existing = lookup()
        if existing is None:
            raise
        logger.warning("Absorbed concurrent create; returning existing row %s", getattr(existing, "id", None))
        return existing, False

    return row, True


def ensure_same_inputs(existing: Any, *, code: str = "DUPLICATE_CONFLICT", **requested: Any) -> None:
    """Raise ConflictError when a repeated create asks for different values.

    ``None`` in ``requested`` means "not specified" and is never a conflict.
    """
    mismatched: dict[str, dict[str, Any]] = {}
    for name, wanted in requested.items():
        if wanted is None:
            continue
        stored = getattr(existing, name, None)
        if stored != wanted:
            mismatched[name] = {"existing": _jsonable(stored), "requested": _jsonable(wanted)}

    if mismatched:
        raise ConflictError(
            code=code,
            message="Entity already exists with different values",
            details={"id": _jsonable(getattr(existing, "id", None)), "fields": mismatched},
        )


def _jsonable(value: Any) -> Any:
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    return str(value)
