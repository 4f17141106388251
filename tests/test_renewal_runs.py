from datetime import UTC, date, datetime

import pytest
from fastapi import HTTPException
from sqlalchemy import func, select

from app.models.renewal import OutboxEntry, RenewalRun, RenewalRunStatus
from app.services.renewals import runs as runs_service
from app.services.renewals.runs import SCHEDULED_RUN_KEY, launch_run, renewal_runs

SCHEDULE_DATE = date(2024, 2, 15)


@pytest.fixture()
def due_subscription(make_subscription):
    return make_subscription(renewed_at=datetime(2024, 1, 15, 8, 0, tzinfo=UTC))


def _run_count(db_session) -> int:
    return db_session.scalar(select(func.count()).select_from(RenewalRun))


def test_scheduled_run_scans_and_relays(
    db_session, due_subscription, renewal_config, fake_publisher
):
    launched = launch_run(
        db_session, renewal_config, fake_publisher, schedule_date=SCHEDULE_DATE
    )

    run = launched.run
    assert launched.executed is True
    assert run.status == RenewalRunStatus.completed
    assert run.run_key == SCHEDULED_RUN_KEY
    assert run.job_name == "renewalJob"
    assert run.timezone == "Europe/Brussels"
    assert (run.inserted_count, run.published_count, run.publish_failed_count) == (
        1,
        1,
        0,
    )
    assert run.finished_at is not None
    assert len(fake_publisher.sent) == 1


def test_second_scheduled_launch_same_day_does_not_execute(
    db_session, due_subscription, renewal_config, fake_publisher
):
    first = launch_run(
        db_session, renewal_config, fake_publisher, schedule_date=SCHEDULE_DATE
    )
    second = launch_run(
        db_session, renewal_config, fake_publisher, schedule_date=SCHEDULE_DATE
    )

    assert second.executed is False
    assert second.run.id == first.run.id
    assert _run_count(db_session) == 1
    assert len(fake_publisher.sent) == 1


def test_forced_run_gets_its_own_identity(
    db_session, due_subscription, renewal_config, fake_publisher
):
    first = launch_run(
        db_session, renewal_config, fake_publisher, schedule_date=SCHEDULE_DATE
    )
    forced = launch_run(
        db_session,
        renewal_config,
        fake_publisher,
        schedule_date=SCHEDULE_DATE,
        force=True,
    )

    assert forced.executed is True
    assert forced.run.id != first.run.id
    assert forced.run.force is True
    assert forced.run.run_key != SCHEDULED_RUN_KEY
    # the outbox row already exists, so the forced rescan adds nothing
    assert forced.run.inserted_count == 0
    assert db_session.scalar(select(func.count()).select_from(OutboxEntry)) == 1


def test_caller_supplied_run_key_is_single_flight_too(
    db_session, renewal_config, fake_publisher
):
    first = launch_run(
        db_session,
        renewal_config,
        fake_publisher,
        schedule_date=SCHEDULE_DATE,
        run_key="rerun-1",
        force=True,
    )
    again = launch_run(
        db_session,
        renewal_config,
        fake_publisher,
        schedule_date=SCHEDULE_DATE,
        run_key="rerun-1",
        force=True,
    )

    assert first.executed is True
    assert again.executed is False
    assert again.run.id == first.run.id


def test_failed_run_is_recorded_and_can_be_relaunched(
    db_session, due_subscription, renewal_config, fake_publisher, monkeypatch
):
    def _boom(*args, **kwargs):
        raise RuntimeError("database went away")

    monkeypatch.setattr(runs_service, "scan_due_renewals", _boom)
    launched = launch_run(
        db_session, renewal_config, fake_publisher, schedule_date=SCHEDULE_DATE
    )
    assert launched.executed is True
    assert launched.run.status == RenewalRunStatus.failed
    assert launched.run.finished_at is not None
    failed = db_session.scalars(select(RenewalRun)).one()
    assert failed.status == RenewalRunStatus.failed
    assert "database went away" in failed.error

    monkeypatch.undo()
    relaunched = launch_run(
        db_session, renewal_config, fake_publisher, schedule_date=SCHEDULE_DATE
    )

    assert relaunched.executed is True
    assert relaunched.run.id == failed.id
    assert relaunched.run.status == RenewalRunStatus.completed
    assert relaunched.run.error is None


def test_list_and_get_runs(db_session, renewal_config, fake_publisher):
    launched = launch_run(
        db_session, renewal_config, fake_publisher, schedule_date=SCHEDULE_DATE
    )

    items, total = renewal_runs.list(
        db_session, "completed", None, "created_at", "desc", 50, 0
    )
    assert total == 1
    assert items[0].id == launched.run.id
    assert renewal_runs.get(db_session, str(launched.run.id)).id == launched.run.id


def test_get_unknown_run_is_404(db_session):
    with pytest.raises(HTTPException) as exc_info:
        renewal_runs.get(db_session, "00000000-0000-0000-0000-000000000000")
    assert exc_info.value.status_code == 404


def test_list_runs_rejects_unknown_status(db_session):
    with pytest.raises(HTTPException) as exc_info:
        renewal_runs.list(db_session, "sleeping", None, "created_at", "desc", 50, 0)
    assert exc_info.value.status_code == 400
