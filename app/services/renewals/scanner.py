"""Find subscriptions due today and record each one in the renewal outbox."""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import UTC, date, datetime

from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from app.metrics import OUTBOX_INSERTED
from app.models.billing import Plan, Subscription, SubscriptionStatus
from app.models.renewal import OutboxEntry
from app.services.renewals.config import RenewalConfig
from app.services.renewals.periods import due_instant, local_today, scan_window
from app.services.renewals.upsert import create_or_reuse

logger = logging.getLogger(__name__)

_NATIVE_INSERT = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


@dataclass(frozen=True)
class ScanResult:
    schedule_date: date
    window_start: datetime
    window_end: datetime
    candidates: int
    inserted: int


def build_payload(subscription: Subscription, plan: Plan) -> dict:
    return {
        "subscription_id": str(subscription.id),
        "customer_id": str(subscription.customer_id),
        "plan_id": str(plan.id),
        "interval": plan.interval.value,
        "amount_cents": plan.price_cents,
        "currency": plan.currency,
    }


def _due_rows(
    db: Session, config: RenewalConfig, window_start: datetime, window_end: datetime
):
    """Yield outbox rows for active subscriptions whose due instant is in the window."""
    zone = config.zone
    last_id = None
    while True:
        stmt = (
            select(Subscription, Plan)
            .join(Plan, Plan.id == Subscription.plan_id)
            .where(Subscription.status == SubscriptionStatus.active)
            .where(Subscription.renewed_at.is_not(None))
            .order_by(Subscription.id)
            .limit(config.chunk_size)
        )
        if last_id is not None:
            stmt = stmt.where(Subscription.id > last_id)
        chunk = db.execute(stmt).all()
        if not chunk:
            return
        rows = []
        for subscription, plan in chunk:
            due = due_instant(subscription.renewed_at, plan.interval, zone)
            if window_start <= due < window_end:
                rows.append(
                    {
                        "subscription_id": subscription.id,
                        "due_date": due.date(),
                        "payload": build_payload(subscription, plan),
                    }
                )
        last_id = chunk[-1][0].id
        exhausted = len(chunk) < config.chunk_size
        yield rows
        if exhausted:
            return


def _insert_ignoring_duplicates(db: Session, rows: list[dict]) -> int:
    if not rows:
        return 0
    insert_fn = _NATIVE_INSERT.get(db.get_bind().dialect.name)
    if insert_fn is None:
        return sum(
            create_or_reuse(
                db, OutboxEntry, row, ["subscription_id", "due_date"]
            ).created
            for row in rows
        )
    now = datetime.now(UTC)
    stmt = (
        insert_fn(OutboxEntry)
        .values(
            [
                {
                    **row,
                    "id": uuid.uuid4(),
                    "publish_attempts": 0,
                    "created_at": now,
                }
                for row in rows
            ]
        )
        .on_conflict_do_nothing(index_elements=["subscription_id", "due_date"])
        .returning(OutboxEntry.id)
    )
    return len(db.execute(stmt).all())


def scan_due_renewals(
    db: Session, config: RenewalConfig, today: date | None = None
) -> ScanResult:
    """Ensure one outbox entry per (subscription, local due date) for today.

    Re-running for the same day inserts nothing new. Subscriptions that were
    never billed (renewed_at NULL) are not renewal candidates.
    """
    zone = config.zone
    schedule_date = today or local_today(zone)
    window_start, window_end = scan_window(schedule_date, zone)

    candidates = 0
    inserted = 0
    for rows in _due_rows(db, config, window_start, window_end):
        candidates += len(rows)
        inserted += _insert_ignoring_duplicates(db, rows)
        db.commit()

    OUTBOX_INSERTED.inc(inserted)
    logger.info(
        "Outbox rows inserted: %s (candidates=%s, date=%s, tz=%s)",
        inserted,
        candidates,
        schedule_date.isoformat(),
        config.timezone,
    )
    return ScanResult(
        schedule_date=schedule_date,
        window_start=window_start,
        window_end=window_end,
        candidates=candidates,
        inserted=inserted,
    )
