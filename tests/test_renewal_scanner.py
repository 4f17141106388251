from datetime import UTC, date, datetime

from sqlalchemy import select

from app.models.billing import SubscriptionStatus
from app.models.renewal import OutboxEntry
from app.services.renewals.scanner import scan_due_renewals


def _outbox(db_session):
    return list(db_session.scalars(select(OutboxEntry)).all())


def test_due_subscription_gets_one_outbox_entry(
    db_session, make_subscription, renewal_config, monthly_plan
):
    sub = make_subscription(renewed_at=datetime(2024, 1, 15, 8, 0, tzinfo=UTC))

    result = scan_due_renewals(db_session, renewal_config, today=date(2024, 2, 15))

    assert result.inserted == 1
    entries = _outbox(db_session)
    assert len(entries) == 1
    entry = entries[0]
    assert entry.subscription_id == sub.id
    assert entry.due_date == date(2024, 2, 15)
    assert entry.published_at is None
    assert entry.payload == {
        "subscription_id": str(sub.id),
        "customer_id": str(sub.customer_id),
        "plan_id": str(monthly_plan.id),
        "interval": "month",
        "amount_cents": 1999,
        "currency": "EUR",
    }


def test_rescan_same_day_inserts_nothing(db_session, make_subscription, renewal_config):
    make_subscription(renewed_at=datetime(2024, 1, 15, 8, 0, tzinfo=UTC))

    first = scan_due_renewals(db_session, renewal_config, today=date(2024, 2, 15))
    second = scan_due_renewals(db_session, renewal_config, today=date(2024, 2, 15))

    assert first.inserted == 1
    assert second.inserted == 0
    assert second.candidates == 1
    assert len(_outbox(db_session)) == 1


def test_not_due_and_never_billed_are_skipped(
    db_session, make_subscription, renewal_config
):
    make_subscription(renewed_at=datetime(2024, 1, 20, 8, 0, tzinfo=UTC))
    make_subscription(renewed_at=None)
    make_subscription(
        renewed_at=datetime(2024, 1, 15, 8, 0, tzinfo=UTC),
        status=SubscriptionStatus.paused,
    )

    result = scan_due_renewals(db_session, renewal_config, today=date(2024, 2, 15))

    assert result.inserted == 0
    assert _outbox(db_session) == []


def test_due_date_follows_local_calendar_day(
    db_session, make_subscription, renewal_config
):
    # 23:30 UTC on Jan 15 is 00:30 on Jan 16 in Brussels
    make_subscription(renewed_at=datetime(2024, 1, 15, 23, 30, tzinfo=UTC))

    assert scan_due_renewals(
        db_session, renewal_config, today=date(2024, 2, 15)
    ).inserted == 0
    assert scan_due_renewals(
        db_session, renewal_config, today=date(2024, 2, 16)
    ).inserted == 1
    assert _outbox(db_session)[0].due_date == date(2024, 2, 16)


def test_yearly_plan_due_after_one_year(
    db_session, make_subscription, renewal_config, yearly_plan
):
    make_subscription(
        renewed_at=datetime(2023, 6, 1, 7, 0, tzinfo=UTC), plan=yearly_plan
    )

    assert scan_due_renewals(
        db_session, renewal_config, today=date(2024, 5, 1)
    ).inserted == 0
    assert scan_due_renewals(
        db_session, renewal_config, today=date(2024, 6, 1)
    ).inserted == 1


def test_scan_walks_every_chunk(db_session, make_subscription, renewal_config):
    # chunk_size is 2, so five subscriptions span three chunks
    for _ in range(5):
        make_subscription(renewed_at=datetime(2024, 1, 15, 8, 0, tzinfo=UTC))

    result = scan_due_renewals(db_session, renewal_config, today=date(2024, 2, 15))

    assert result.candidates == 5
    assert result.inserted == 5
    assert len({e.subscription_id for e in _outbox(db_session)}) == 5
