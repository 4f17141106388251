"""Atomic create-or-reuse keyed by a unique constraint.

PostgreSQL and SQLite get a single ``INSERT ... ON CONFLICT DO UPDATE ...
RETURNING id`` statement: the no-op update makes the statement hand back the
row that owns the key whether it was just inserted or already existed, so
there is no window between deciding to insert and inserting. Other dialects
fall back to a savepoint-guarded insert with a bounded retry on conflict.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Any

from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.services.renewals.errors import ConflictResolutionError

logger = logging.getLogger(__name__)

MAX_CONFLICT_RETRIES = 3

_NATIVE_UPSERT = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


@dataclass(frozen=True)
class UpsertResult:
    id: uuid.UUID
    created: bool


def create_or_reuse(
    db: Session,
    model: Any,
    values: dict[str, Any],
    key_columns: list[str],
) -> UpsertResult:
    """Insert ``values`` unless a row already holds the same key; return its id.

    Does not commit; the caller owns the transaction.
    """
    missing = [column for column in key_columns if column not in values]
    if missing:
        raise ValueError(f"Key columns missing from values: {', '.join(missing)}")
    proposed_id = values.get("id") or uuid.uuid4()
    row = {**values, "id": proposed_id}

    insert_fn = _NATIVE_UPSERT.get(db.get_bind().dialect.name)
    if insert_fn is not None:
        stmt = insert_fn(model).values(**row)
        anchor = key_columns[0]
        stmt = stmt.on_conflict_do_update(
            index_elements=key_columns,
            set_={anchor: getattr(stmt.excluded, anchor)},
        ).returning(model.id)
        winner_id = db.execute(stmt).scalar_one()
        return UpsertResult(id=winner_id, created=winner_id == proposed_id)

    return _create_or_reuse_with_retry(db, model, row, key_columns)


def _find_existing(
    db: Session, model: Any, row: dict[str, Any], key_columns: list[str]
) -> uuid.UUID | None:
    stmt = select(model.id).where(
        *[getattr(model, column) == row[column] for column in key_columns]
    )
    return db.execute(stmt).scalar_one_or_none()


def _create_or_reuse_with_retry(
    db: Session, model: Any, row: dict[str, Any], key_columns: list[str]
) -> UpsertResult:
    for attempt in range(1, MAX_CONFLICT_RETRIES + 1):
        existing_id = _find_existing(db, model, row, key_columns)
        if existing_id is not None:
            return UpsertResult(id=existing_id, created=False)
        try:
            with db.begin_nested():
                db.add(model(**row))
        except IntegrityError:
            logger.info(
                "Conflict inserting %s on %s (attempt %s), re-reading",
                model.__name__,
                ", ".join(key_columns),
                attempt,
            )
            continue
        return UpsertResult(id=row["id"], created=True)
    raise ConflictResolutionError(
        f"Could not resolve a single {model.__name__} row for key "
        f"({', '.join(key_columns)}) after {MAX_CONFLICT_RETRIES} attempts"
    )
