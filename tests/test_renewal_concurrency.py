"""Two workers handling the same renewal at the same time.

Runs against a file-backed SQLite database so each thread has its own
connection; transactions start IMMEDIATE so writers serialize the way row
locks would on PostgreSQL.
"""
import threading
import time
from datetime import UTC, date, datetime

import pytest
from sqlalchemy import create_engine, event, func, select
from sqlalchemy.orm import sessionmaker

from app.db import Base
from app.models.billing import (
    Charge,
    Customer,
    Invoice,
    Payment,
    PaymentStatus,
    Plan,
    PlanInterval,
    Subscription,
    SubscriptionStatus,
)
from app.schemas.renewal import RenewalEvent
from app.services.payment_gateway import CaptureResult
from app.services.renewals.config import RenewalConfig
from app.services.renewals.errors import CaptureInProgress
from app.services.renewals.handler import RenewalEventHandler


class SlowCountingChannel:
    name = "CARD"

    def __init__(self, delay: float) -> None:
        self.delay = delay
        self.calls = 0
        self._lock = threading.Lock()

    def attempt_capture(self, payment_id, amount_cents, currency, timeout):
        with self._lock:
            self.calls += 1
        time.sleep(self.delay)
        return CaptureResult(succeeded=True)


@pytest.fixture()
def file_engine(tmp_path):
    engine = create_engine(
        f"sqlite+pysqlite:///{tmp_path / 'renewals.db'}",
        connect_args={"timeout": 30, "check_same_thread": False},
    )

    @event.listens_for(engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def renewal_event(file_engine) -> RenewalEvent:
    Session = sessionmaker(bind=file_engine, autoflush=False)
    with Session() as session:
        customer = Customer(name="Concurrent", email="concurrent@example.com")
        plan = Plan(
            name="Monthly", interval=PlanInterval.month, price_cents=500, currency="EUR"
        )
        session.add_all([customer, plan])
        session.flush()
        subscription = Subscription(
            customer_id=customer.id,
            plan_id=plan.id,
            status=SubscriptionStatus.active,
            renewed_at=datetime(2024, 1, 15, 8, 0, tzinfo=UTC),
        )
        session.add(subscription)
        session.commit()
        return RenewalEvent(
            subscription_id=subscription.id,
            customer_id=customer.id,
            plan_id=plan.id,
            interval=PlanInterval.month,
            amount_cents=500,
            currency="EUR",
            period_start=date(2024, 2, 15),
            period_end=date(2024, 3, 15),
        )


@pytest.mark.parametrize("delay", [0.0, 0.3])
def test_concurrent_deliveries_capture_once(file_engine, renewal_event, delay):
    channel = SlowCountingChannel(delay)
    handler = RenewalEventHandler(channel, RenewalConfig())
    Session = sessionmaker(bind=file_engine, autoflush=False)
    barrier = threading.Barrier(2)
    results = []
    in_progress = []
    errors = []

    def worker():
        session = Session()
        barrier.wait()
        try:
            results.append(handler.handle(session, renewal_event))
        except CaptureInProgress as exc:
            in_progress.append(exc)
        except Exception as exc:  # noqa: BLE001
            errors.append(exc)
        finally:
            session.close()

    threads = [threading.Thread(target=worker) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=60)

    assert errors == []
    assert len(results) + len(in_progress) == 2
    assert results
    assert channel.calls == 1

    with Session() as session:
        assert session.scalar(select(func.count()).select_from(Invoice)) == 1
        assert session.scalar(select(func.count()).select_from(Charge)) == 1
        payments = list(session.scalars(select(Payment)).all())
        assert len(payments) == 1
        assert payments[0].status == PaymentStatus.succeeded
        assert payments[0].attempt_count == 1
