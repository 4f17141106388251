"""Publish unpublished outbox rows to the renewals queue.

Delivery is at-least-once: a crash between a confirmed publish and the
published_at write re-sends the row on the next run, and the handler absorbs
the duplicate.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, date, datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.metrics import OUTBOX_PUBLISH_FAILURES, OUTBOX_PUBLISHED
from app.models.renewal import OutboxEntry
from app.schemas.renewal import RenewalEvent
from app.services.common import apply_ordering, apply_pagination, coerce_uuid
from app.services.renewals.config import RenewalConfig
from app.services.renewals.periods import add_interval, derive_idempotency_key
from app.services.renewals.publisher import RenewalPublisher
from app.services.response import ListResponseMixin

logger = logging.getLogger(__name__)

MAX_ERROR_LENGTH = 2000


@dataclass(frozen=True)
class RelayResult:
    selected: int
    published: int
    failed: int


def build_event(entry: OutboxEntry) -> RenewalEvent:
    """Renewal message for an outbox row, with the period pinned to its due date."""
    event = RenewalEvent.model_validate(entry.payload)
    due_date: date = entry.due_date
    return event.model_copy(
        update={
            "period_start": due_date,
            "period_end": add_interval(due_date, event.interval),
            "idempotency_key": derive_idempotency_key(event.subscription_id, due_date),
        }
    )


def pending_entries(db: Session, limit: int) -> list[OutboxEntry]:
    # Rows that keep failing sink behind fresh ones instead of filling every batch.
    stmt = (
        select(OutboxEntry)
        .where(OutboxEntry.published_at.is_(None))
        .order_by(
            OutboxEntry.publish_attempts.asc(),
            OutboxEntry.created_at.asc(),
            OutboxEntry.id.asc(),
        )
        .limit(limit)
    )
    return list(db.scalars(stmt).all())


def relay_outbox(
    db: Session, publisher: RenewalPublisher, config: RenewalConfig
) -> RelayResult:
    entries = pending_entries(db, config.batch_size)
    published = 0
    failed = 0
    for entry in entries:
        entry_id = entry.id
        try:
            message = build_event(entry).to_message()
            publisher.publish(message, message_id=str(entry_id))
        except Exception as exc:
            db.rollback()
            entry = db.get(OutboxEntry, entry_id)
            entry.publish_attempts = (entry.publish_attempts or 0) + 1
            entry.last_error = str(exc)[:MAX_ERROR_LENGTH]
            db.commit()
            failed += 1
            OUTBOX_PUBLISH_FAILURES.inc()
            logger.warning(
                "Publish failed for outbox entry %s: %s",
                entry_id,
                exc,
                extra={"subscription_id": str(entry.subscription_id)},
            )
            continue
        entry.published_at = datetime.now(UTC)
        entry.publish_attempts = (entry.publish_attempts or 0) + 1
        entry.last_error = None
        db.commit()
        published += 1
        OUTBOX_PUBLISHED.inc()

    logger.info(
        "Published messages: %s (failed=%s, selected=%s)",
        published,
        failed,
        len(entries),
    )
    return RelayResult(selected=len(entries), published=published, failed=failed)


class OutboxEntries(ListResponseMixin):
    @staticmethod
    def list(
        db: Session,
        published: bool | None,
        subscription_id: str | None,
        order_by: str,
        order_dir: str,
        limit: int,
        offset: int,
    ) -> tuple[list[OutboxEntry], int]:
        query = db.query(OutboxEntry)
        if published is True:
            query = query.filter(OutboxEntry.published_at.is_not(None))
        elif published is False:
            query = query.filter(OutboxEntry.published_at.is_(None))
        if subscription_id:
            query = query.filter(OutboxEntry.subscription_id == coerce_uuid(subscription_id))
        total = query.count()
        query = apply_ordering(
            query,
            order_by,
            order_dir,
            {"created_at": OutboxEntry.created_at, "due_date": OutboxEntry.due_date},
        )
        items = list(apply_pagination(query, limit, offset).all())
        return items, total


outbox_entries = OutboxEntries()
