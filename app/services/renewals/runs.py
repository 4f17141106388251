"""Single-flight launcher for the daily scan + relay batch.

A run instance is identified by (job, schedule_date, run_key). The scheduled
run uses the fixed ``scheduled`` key, so a second launch on the same day finds
the existing instance and does not execute. A forced run gets its own key.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import UTC, date, datetime

from fastapi import HTTPException
from sqlalchemy import select, update
from sqlalchemy.orm import Session

from app.models.renewal import RenewalRun, RenewalRunStatus
from app.services.common import apply_ordering, apply_pagination, coerce_uuid, validate_enum
from app.services.renewals.config import RenewalConfig
from app.services.renewals.periods import local_today
from app.services.renewals.publisher import RenewalPublisher
from app.services.renewals.relay import relay_outbox
from app.services.renewals.scanner import scan_due_renewals
from app.services.renewals.upsert import create_or_reuse
from app.services.response import ListResponseMixin

logger = logging.getLogger(__name__)

SCHEDULED_RUN_KEY = "scheduled"


@dataclass(frozen=True)
class LaunchResult:
    run: RenewalRun
    executed: bool


def _claim(
    db: Session, config: RenewalConfig, schedule_date: date, run_key: str, force: bool
) -> uuid.UUID | None:
    """Create the run row, or re-claim it if its last execution failed."""
    now = datetime.now(UTC)
    result = create_or_reuse(
        db,
        RenewalRun,
        {
            "job_name": config.job_name,
            "schedule_date": schedule_date,
            "run_key": run_key,
            "timezone": config.timezone,
            "force": force,
            "status": RenewalRunStatus.running,
            "inserted_count": 0,
            "published_count": 0,
            "publish_failed_count": 0,
            "started_at": now,
            "created_at": now,
            "updated_at": now,
        },
        ["job_name", "schedule_date", "run_key"],
    )
    if result.created:
        db.commit()
        return result.id
    reclaimed = db.execute(
        update(RenewalRun)
        .where(RenewalRun.id == result.id)
        .where(RenewalRun.status == RenewalRunStatus.failed)
        .values(
            status=RenewalRunStatus.running,
            started_at=now,
            finished_at=None,
            error=None,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    ).rowcount
    db.commit()
    return result.id if reclaimed == 1 else None


def launch_run(
    db: Session,
    config: RenewalConfig,
    publisher: RenewalPublisher,
    *,
    schedule_date: date | None = None,
    run_key: str | None = None,
    force: bool = False,
) -> LaunchResult:
    schedule_date = schedule_date or local_today(config.zone)
    if force and not run_key:
        run_key = uuid.uuid4().hex
    run_key = run_key or SCHEDULED_RUN_KEY
    log_extra = {"run_id": None}

    run_id = _claim(db, config, schedule_date, run_key, force)
    if run_id is None:
        existing = db.scalars(
            select(RenewalRun)
            .where(RenewalRun.job_name == config.job_name)
            .where(RenewalRun.schedule_date == schedule_date)
            .where(RenewalRun.run_key == run_key)
        ).one()
        logger.info(
            "Renewal run for %s/%s already %s, not executing",
            schedule_date.isoformat(),
            run_key,
            existing.status.value,
            extra={"run_id": str(existing.id)},
        )
        return LaunchResult(run=existing, executed=False)

    log_extra["run_id"] = str(run_id)
    logger.info(
        "Starting renewal run for %s/%s", schedule_date.isoformat(), run_key, extra=log_extra
    )
    try:
        scan = scan_due_renewals(db, config, schedule_date)
        relay = relay_outbox(db, publisher, config)
    except Exception as exc:
        db.rollback()
        run = db.get(RenewalRun, run_id)
        run.status = RenewalRunStatus.failed
        run.error = str(exc)[:2000]
        run.finished_at = datetime.now(UTC)
        db.commit()
        db.refresh(run)
        logger.exception("Renewal run failed", extra=log_extra)
        return LaunchResult(run=run, executed=True)

    run = db.get(RenewalRun, run_id)
    run.status = RenewalRunStatus.completed
    run.inserted_count = scan.inserted
    run.published_count = relay.published
    run.publish_failed_count = relay.failed
    run.finished_at = datetime.now(UTC)
    db.commit()
    db.refresh(run)
    logger.info(
        "Renewal run completed: inserted=%s published=%s failed=%s",
        scan.inserted,
        relay.published,
        relay.failed,
        extra=log_extra,
    )
    return LaunchResult(run=run, executed=True)


class RenewalRuns(ListResponseMixin):
    @staticmethod
    def get(db: Session, run_id: str) -> RenewalRun:
        run = db.get(RenewalRun, coerce_uuid(run_id))
        if not run:
            raise HTTPException(status_code=404, detail="Renewal run not found")
        return run

    @staticmethod
    def list(
        db: Session,
        status: str | None,
        schedule_date: date | None,
        order_by: str,
        order_dir: str,
        limit: int,
        offset: int,
    ) -> tuple[list[RenewalRun], int]:
        query = db.query(RenewalRun)
        if status:
            query = query.filter(
                RenewalRun.status == validate_enum(status, RenewalRunStatus, "status")
            )
        if schedule_date:
            query = query.filter(RenewalRun.schedule_date == schedule_date)
        total = query.count()
        query = apply_ordering(
            query,
            order_by,
            order_dir,
            {
                "created_at": RenewalRun.created_at,
                "schedule_date": RenewalRun.schedule_date,
            },
        )
        items = list(apply_pagination(query, limit, offset).all())
        return items, total


renewal_runs = RenewalRuns()
