import sys
import uuid
from collections.abc import Generator
from datetime import UTC, datetime
from types import ModuleType

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import DateTime, create_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

# Create a test engine BEFORE any app imports
_test_engine = create_engine(
    "sqlite+pysqlite:///:memory:",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


class TestBase(DeclarativeBase):
    pass


_TestSessionLocal = sessionmaker(bind=_test_engine, autoflush=False, autocommit=False)


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )


def _test_get_db() -> Generator[Session, None, None]:
    db = _TestSessionLocal()
    try:
        yield db
    finally:
        db.close()


mock_db_module = ModuleType("app.db")
mock_db_module.Base = TestBase
mock_db_module.TimestampMixin = TimestampMixin
mock_db_module.SessionLocal = _TestSessionLocal
mock_db_module.get_engine = lambda: _test_engine
mock_db_module.get_db = _test_get_db

# Also mock app.config to prevent .env loading
mock_config_module = ModuleType("app.config")

TEST_API_KEY = "test-renewals-api-key-0123456789abcdef"


class MockSettings:
    database_url = "sqlite+pysqlite:///:memory:"
    redis_url = "redis://localhost:6379/0"
    db_pool_size = 5
    db_max_overflow = 10
    db_pool_timeout = 30
    db_pool_recycle = 1800
    renewal_timezone = "Europe/Brussels"
    renewal_schedule_cron = "0 3 * * *"
    renewal_chunk_size = 1000
    renewal_batch_size = 5000
    renewal_anchor_hour = 9
    renewal_queue = "billing.renewals"
    renewal_max_attempts = 5
    renewal_retry_backoff_seconds = 60
    renewal_retry_backoff_max_seconds = 3600
    payment_channel = "simulated"
    payment_channel_url = ""
    payment_channel_secret_key = ""
    payment_channel_name = "CARD"
    payment_capture_timeout_seconds = 10.0
    renewals_api_key = TEST_API_KEY
    cors_origins = ""


mock_config_module.settings = MockSettings()
mock_config_module.Settings = MockSettings
mock_config_module.validate_settings = lambda s: []

# Insert mocks before any app imports
sys.modules["app.config"] = mock_config_module
sys.modules["app.db"] = mock_db_module

# Now import the models - they'll use our mocked db module
from app.models.billing import (  # noqa: E402
    Customer,
    Plan,
    PlanInterval,
    Subscription,
    SubscriptionStatus,
)
from app.models.renewal import OutboxEntry  # noqa: E402,F401
from app.services.payment_gateway import CaptureResult  # noqa: E402
from app.services.renewals.config import RenewalConfig  # noqa: E402

# Create all tables
TestBase.metadata.create_all(_test_engine)

Base = TestBase


@pytest.fixture(scope="session")
def engine():
    return _test_engine


@pytest.fixture(autouse=True)
def _clean_tables(engine):
    """The in-memory database is shared, so every test starts empty."""
    yield
    with engine.begin() as conn:
        for table in reversed(TestBase.metadata.sorted_tables):
            conn.execute(table.delete())


@pytest.fixture()
def db_session(engine):
    Session = sessionmaker(bind=engine, autoflush=False, autocommit=False)
    session = Session()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def renewal_config() -> RenewalConfig:
    return RenewalConfig(timezone="Europe/Brussels", chunk_size=2, batch_size=100)


class FakeChannel:
    """Payment channel double that records calls and returns queued outcomes."""

    name = "CARD"

    def __init__(self, *outcomes: CaptureResult) -> None:
        self.outcomes = list(outcomes)
        self.calls: list[tuple] = []

    def attempt_capture(self, payment_id, amount_cents, currency, timeout):
        self.calls.append((payment_id, amount_cents, currency))
        if self.outcomes:
            return self.outcomes.pop(0)
        return CaptureResult(succeeded=True)


class FakePublisher:
    def __init__(self, fail_for: set[str] | None = None) -> None:
        self.fail_for = fail_for or set()
        self.sent: list[tuple[dict, str]] = []

    def publish(self, message: dict, message_id: str) -> None:
        if message["subscription_id"] in self.fail_for:
            raise ConnectionError("broker unavailable")
        self.sent.append((message, message_id))


@pytest.fixture()
def fake_channel() -> FakeChannel:
    return FakeChannel()


@pytest.fixture()
def fake_publisher() -> FakePublisher:
    return FakePublisher()


@pytest.fixture()
def publisher_factory():
    return FakePublisher


@pytest.fixture()
def channel_factory():
    return FakeChannel


def _unique_email() -> str:
    return f"test-{uuid.uuid4().hex}@example.com"


@pytest.fixture()
def customer(db_session):
    customer = Customer(name="Test Customer", email=_unique_email())
    db_session.add(customer)
    db_session.commit()
    db_session.refresh(customer)
    return customer


@pytest.fixture()
def monthly_plan(db_session):
    plan = Plan(
        name="Monthly", interval=PlanInterval.month, price_cents=1999, currency="EUR"
    )
    db_session.add(plan)
    db_session.commit()
    db_session.refresh(plan)
    return plan


@pytest.fixture()
def yearly_plan(db_session):
    plan = Plan(
        name="Yearly", interval=PlanInterval.year, price_cents=19900, currency="EUR"
    )
    db_session.add(plan)
    db_session.commit()
    db_session.refresh(plan)
    return plan


@pytest.fixture()
def make_subscription(db_session, customer, monthly_plan):
    def _make(
        renewed_at: datetime | None = None,
        plan: Plan | None = None,
        status: SubscriptionStatus = SubscriptionStatus.active,
        owner: Customer | None = None,
    ) -> Subscription:
        subscription = Subscription(
            customer_id=(owner or customer).id,
            plan_id=(plan or monthly_plan).id,
            status=status,
            renewed_at=renewed_at,
            start_at=renewed_at,
        )
        db_session.add(subscription)
        db_session.commit()
        db_session.refresh(subscription)
        return subscription

    return _make


@pytest.fixture()
def api_headers() -> dict[str, str]:
    return {"X-API-Key": TEST_API_KEY}


@pytest.fixture()
def client(db_session, fake_publisher, renewal_config):
    """Test client with database and publisher dependency overrides."""
    from app.api.deps import get_db as api_get_db
    from app.api.deps import get_publisher, get_renewal_config
    from app.main import app

    def override_get_db():
        yield db_session

    app.dependency_overrides[api_get_db] = override_get_db
    app.dependency_overrides[get_publisher] = lambda: fake_publisher
    app.dependency_overrides[get_renewal_config] = lambda: renewal_config

    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client

    app.dependency_overrides.clear()
