from datetime import date, datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.models.billing import PlanInterval
from app.models.renewal import DeadLetterReason, RenewalRunStatus

RENEWAL_EVENT_VERSION = 1


class RenewalEvent(BaseModel):
    """Message on the renewals queue. Unknown fields are ignored."""

    model_config = ConfigDict(extra="ignore")

    version: int = RENEWAL_EVENT_VERSION
    subscription_id: UUID
    customer_id: UUID
    plan_id: UUID
    interval: PlanInterval
    amount_cents: int = Field(ge=0)
    currency: str = Field(min_length=3, max_length=3)
    idempotency_key: str | None = Field(default=None, max_length=255)
    period_start: date | None = None
    period_end: date | None = None

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, value: str) -> str:
        return value.upper()

    def to_message(self) -> dict:
        return self.model_dump(mode="json")


class RenewalRunTrigger(BaseModel):
    force: bool = False
    run_key: str | None = Field(default=None, min_length=1, max_length=80)


class RenewalRunParameters(BaseModel):
    schedule_date: date
    run_key: str
    timezone: str


class RenewalRunRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    job_name: str
    schedule_date: date
    run_key: str
    timezone: str
    force: bool
    status: RenewalRunStatus
    inserted_count: int
    published_count: int
    publish_failed_count: int
    error: str | None
    started_at: datetime | None
    finished_at: datetime | None
    created_at: datetime


class RenewalRunTriggerResponse(BaseModel):
    job: str
    run_id: UUID
    status: RenewalRunStatus
    executed: bool
    parameters: RenewalRunParameters
    inserted_count: int
    published_count: int
    publish_failed_count: int
    error: str | None = None


class OutboxEntryRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    subscription_id: UUID
    due_date: date
    payload: dict
    publish_attempts: int
    last_error: str | None
    created_at: datetime
    published_at: datetime | None


class DeadLetterRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    message_id: str | None
    subscription_id: UUID | None
    reason: DeadLetterReason
    error: str | None
    payload: str
    attempts: int
    created_at: datetime
