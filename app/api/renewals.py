from datetime import date

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.api.deps import get_db, get_publisher, get_renewal_config
from app.schemas.common import ErrorResponse, ListResponse
from app.schemas.renewal import (
    DeadLetterRead,
    OutboxEntryRead,
    RenewalRunParameters,
    RenewalRunRead,
    RenewalRunTrigger,
    RenewalRunTriggerResponse,
)
from app.services.renewals.config import RenewalConfig
from app.services.renewals.dead_letters import dead_letters
from app.services.renewals.publisher import RenewalPublisher
from app.services.renewals.relay import outbox_entries
from app.services.renewals.runs import launch_run, renewal_runs

router = APIRouter(
    prefix="/renewals",
    tags=["renewals"],
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
    },
)


@router.post(
    "/runs",
    response_model=RenewalRunTriggerResponse,
    status_code=status.HTTP_200_OK,
)
def trigger_renewal_run(
    payload: RenewalRunTrigger | None = None,
    db: Session = Depends(get_db),
    config: RenewalConfig = Depends(get_renewal_config),
    publisher: RenewalPublisher = Depends(get_publisher),
):
    payload = payload or RenewalRunTrigger()
    launched = launch_run(
        db, config, publisher, run_key=payload.run_key, force=payload.force
    )
    run = launched.run
    return RenewalRunTriggerResponse(
        job=run.job_name,
        run_id=run.id,
        status=run.status,
        executed=launched.executed,
        parameters=RenewalRunParameters(
            schedule_date=run.schedule_date,
            run_key=run.run_key,
            timezone=run.timezone,
        ),
        inserted_count=run.inserted_count,
        published_count=run.published_count,
        publish_failed_count=run.publish_failed_count,
        error=run.error,
    )


@router.get("/runs", response_model=ListResponse[RenewalRunRead])
def list_renewal_runs(
    status: str | None = None,
    schedule_date: date | None = None,
    order_by: str = Query(default="created_at"),
    order_dir: str = Query(default="desc", pattern="^(asc|desc)$"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
):
    return renewal_runs.list_response(
        db, status, schedule_date, order_by, order_dir, limit, offset
    )


@router.get("/runs/{run_id}", response_model=RenewalRunRead)
def get_renewal_run(run_id: str, db: Session = Depends(get_db)):
    return renewal_runs.get(db, run_id)


@router.get("/outbox", response_model=ListResponse[OutboxEntryRead])
def list_outbox_entries(
    published: bool | None = None,
    subscription_id: str | None = None,
    order_by: str = Query(default="created_at"),
    order_dir: str = Query(default="asc", pattern="^(asc|desc)$"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
):
    return outbox_entries.list_response(
        db, published, subscription_id, order_by, order_dir, limit, offset
    )


@router.get("/dead-letters", response_model=ListResponse[DeadLetterRead])
def list_dead_letters(
    reason: str | None = None,
    subscription_id: str | None = None,
    order_by: str = Query(default="created_at"),
    order_dir: str = Query(default="desc", pattern="^(asc|desc)$"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
):
    return dead_letters.list_response(
        db, reason, subscription_id, order_by, order_dir, limit, offset
    )
