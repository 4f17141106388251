"""Turn one renewal event into invoice, charge and payment state.

Every step is safe to repeat. Redeliveries and concurrent copies of the same
renewal find the rows created by whoever got there first through the unique
keys on invoices, charges and payments, and the payment's capture claim keeps
the external channel from being called twice at the same time.

    1. period       event period, or today + one plan interval
    2. key          event key, or ``sub-<subscription_id>|<period_start>``
    3. invoice      create-or-reuse on (customer, period_start, period_end, currency)
    4. charge       create-or-reuse on (subscription, due_date, amount, currency)
    5. payment      create-or-reuse on idempotency_key
    6. capture      claim, call the channel, record succeeded/failed
    7. finalize     charge settled, invoice paid, renewed_at advanced (success only)
"""
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from dataclasses import dataclass
from datetime import UTC, date, datetime, timedelta
from uuid import UUID

from sqlalchemy import or_, update
from sqlalchemy.orm import Session

from app.metrics import RENEWAL_PAYMENTS
from app.models.billing import (
    Charge,
    ChargeStatus,
    Invoice,
    InvoiceStatus,
    Payment,
    PaymentStatus,
    Subscription,
)
from app.schemas.renewal import RenewalEvent
from app.services.payment_gateway import CaptureResult, PaymentChannel
from app.services.renewals.config import RenewalConfig
from app.services.renewals.errors import CaptureInProgress, MalformedRenewalEvent
from app.services.renewals.periods import (
    billing_period,
    derive_idempotency_key,
    local_today,
    parse_derived_key,
    renewal_anchor,
)
from app.services.renewals.upsert import create_or_reuse

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HandleResult:
    subscription_id: UUID
    invoice_id: UUID
    charge_id: UUID
    payment_id: UUID
    idempotency_key: str
    period_start: date
    period_end: date
    status: PaymentStatus
    replayed: bool = False
    failure_reason: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == PaymentStatus.succeeded


def resolve_period(
    event: RenewalEvent, today: date
) -> tuple[date, date]:
    period_start, period_end = billing_period(
        event.interval, today, event.period_start, event.period_end
    )
    if period_end <= period_start:
        raise MalformedRenewalEvent(
            f"period_end {period_end} is not after period_start {period_start}"
        )
    return period_start, period_end


def resolve_idempotency_key(event: RenewalEvent, period_start: date) -> str:
    """Explicit key when given, otherwise derived from subscription and period.

    An explicit key in the derived form must agree with the event it rides on.
    """
    explicit = (event.idempotency_key or "").strip()
    if not explicit:
        return derive_idempotency_key(event.subscription_id, period_start)
    parsed = parse_derived_key(explicit)
    if parsed is not None:
        subscription_part, key_date = parsed
        try:
            same_subscription = UUID(subscription_part) == UUID(str(event.subscription_id))
        except ValueError:
            same_subscription = False
        if not same_subscription or key_date != period_start:
            raise MalformedRenewalEvent(
                f"idempotency_key {explicit!r} does not match subscription "
                f"{event.subscription_id} and period_start {period_start}"
            )
    return explicit


class RenewalEventHandler:
    def __init__(self, payment_channel: PaymentChannel, config: RenewalConfig) -> None:
        self._channel = payment_channel
        self._config = config

    def handle(
        self, db: Session, event: RenewalEvent, today: date | None = None
    ) -> HandleResult:
        today = today or local_today(self._config.zone)
        period_start, period_end = resolve_period(event, today)
        key = resolve_idempotency_key(event, period_start)
        log_extra = {
            "subscription_id": str(event.subscription_id),
            "idempotency_key": key,
        }

        subscription = db.get(Subscription, event.subscription_id)
        if subscription is None:
            raise MalformedRenewalEvent(
                f"Subscription {event.subscription_id} does not exist"
            )
        if subscription.customer_id != event.customer_id:
            raise MalformedRenewalEvent(
                f"Subscription {event.subscription_id} does not belong to "
                f"customer {event.customer_id}"
            )

        invoice_id = self._ensure_invoice(db, event, period_start, period_end)
        charge_id = self._ensure_charge(db, event, invoice_id, period_end)
        payment_id = self._ensure_payment(db, event, charge_id, key)

        payment = db.get(Payment, payment_id)
        result_kwargs = {
            "subscription_id": event.subscription_id,
            "payment_id": payment_id,
            "idempotency_key": key,
            "period_start": period_start,
            "period_end": period_end,
        }
        if payment.status == PaymentStatus.succeeded:
            logger.info(
                "Payment already succeeded, re-applying finalize", extra=log_extra
            )
            charge = self._finalize(db, payment, event.subscription_id, period_end)
            return HandleResult(
                **result_kwargs,
                invoice_id=charge.invoice_id,
                charge_id=charge.id,
                status=PaymentStatus.succeeded,
                replayed=True,
            )

        token = self._claim_capture(db, payment)
        if token is None:
            db.expire_all()
            payment = db.get(Payment, payment_id)
            if payment.status == PaymentStatus.succeeded:
                charge = self._finalize(db, payment, event.subscription_id, period_end)
                return HandleResult(
                    **result_kwargs,
                    invoice_id=charge.invoice_id,
                    charge_id=charge.id,
                    status=PaymentStatus.succeeded,
                    replayed=True,
                )
            raise CaptureInProgress(payment_id)

        outcome = self._capture(payment)
        if not outcome.succeeded:
            self._mark_failed(db, payment_id, token, outcome.reason)
            RENEWAL_PAYMENTS.labels(status=PaymentStatus.failed.value).inc()
            logger.warning(
                "Capture failed: %s",
                outcome.reason,
                extra={**log_extra, "payment_id": str(payment_id)},
            )
            return HandleResult(
                **result_kwargs,
                invoice_id=invoice_id,
                charge_id=charge_id,
                status=PaymentStatus.failed,
                failure_reason=outcome.reason,
            )

        self._mark_succeeded(db, payment_id)
        RENEWAL_PAYMENTS.labels(status=PaymentStatus.succeeded.value).inc()
        payment = db.get(Payment, payment_id)
        charge = self._finalize(db, payment, event.subscription_id, period_end)
        logger.info(
            "Renewal billed through %s",
            period_end.isoformat(),
            extra={**log_extra, "payment_id": str(payment_id)},
        )
        return HandleResult(
            **result_kwargs,
            invoice_id=charge.invoice_id,
            charge_id=charge.id,
            status=PaymentStatus.succeeded,
        )

    # ── Create-or-reuse steps ────────────────────────────

    def _ensure_invoice(
        self, db: Session, event: RenewalEvent, period_start: date, period_end: date
    ) -> UUID:
        result = create_or_reuse(
            db,
            Invoice,
            {
                "customer_id": event.customer_id,
                "period_start": period_start,
                "period_end": period_end,
                "total_cents": event.amount_cents,
                "currency": event.currency,
                "status": InvoiceStatus.posted,
            },
            ["customer_id", "period_start", "period_end", "currency"],
        )
        db.commit()
        return result.id

    def _ensure_charge(
        self, db: Session, event: RenewalEvent, invoice_id: UUID, due_date: date
    ) -> UUID:
        result = create_or_reuse(
            db,
            Charge,
            {
                "subscription_id": event.subscription_id,
                "invoice_id": invoice_id,
                "amount_cents": event.amount_cents,
                "currency": event.currency,
                "status": ChargeStatus.pending,
                "due_date": due_date,
            },
            ["subscription_id", "due_date", "amount_cents", "currency"],
        )
        db.commit()
        return result.id

    def _ensure_payment(
        self, db: Session, event: RenewalEvent, charge_id: UUID, key: str
    ) -> UUID:
        result = create_or_reuse(
            db,
            Payment,
            {
                "charge_id": charge_id,
                "amount_cents": event.amount_cents,
                "currency": event.currency,
                "channel": self._config.payment_channel_name,
                "idempotency_key": key,
                "status": PaymentStatus.pending,
                "attempt_count": 0,
            },
            ["idempotency_key"],
        )
        db.commit()
        if result.created:
            logger.info(
                "Created pending payment %s", result.id, extra={"idempotency_key": key}
            )
        return result.id

    # ── Capture ──────────────────────────────────────────

    def _claim_capture(self, db: Session, payment: Payment) -> int | None:
        """Take the capture claim; return the attempt number that owns it."""
        now = datetime.now(UTC)
        stale_before = now - timedelta(seconds=2 * self._config.capture_timeout_seconds)
        seen_attempt = payment.attempt_count or 0
        stmt = (
            update(Payment)
            .where(Payment.id == payment.id)
            .where(Payment.attempt_count == seen_attempt)
            .where(Payment.status != PaymentStatus.succeeded)
            .where(
                or_(
                    Payment.capture_started_at.is_(None),
                    Payment.capture_started_at < stale_before,
                )
            )
            .values(
                attempt_count=seen_attempt + 1,
                capture_started_at=now,
                status=PaymentStatus.pending,
                failure_reason=None,
            )
            .execution_options(synchronize_session=False)
        )
        claimed = db.execute(stmt).rowcount == 1
        db.commit()
        return seen_attempt + 1 if claimed else None

    def _capture(self, payment: Payment) -> CaptureResult:
        """Call the channel on its own thread, bounded by the capture timeout.

        A hung call keeps only its own thread; later captures always reach the
        channel instead of queueing behind it.
        """
        timeout = self._config.capture_timeout_seconds
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="capture")
        try:
            future = executor.submit(
                self._channel.attempt_capture,
                payment.id,
                payment.amount_cents,
                payment.currency,
                timeout,
            )
            try:
                return future.result(timeout=timeout)
            except FuturesTimeoutError:
                return CaptureResult(succeeded=False, reason="timeout")
            except Exception as exc:
                logger.exception(
                    "Payment channel raised during capture",
                    extra={"payment_id": str(payment.id)},
                )
                return CaptureResult(succeeded=False, reason=f"channel error: {exc}")
        finally:
            executor.shutdown(wait=False)

    def _mark_failed(
        self, db: Session, payment_id: UUID, token: int, reason: str | None
    ) -> None:
        db.execute(
            update(Payment)
            .where(Payment.id == payment_id)
            .where(Payment.attempt_count == token)
            .where(Payment.status != PaymentStatus.succeeded)
            .values(
                status=PaymentStatus.failed,
                capture_started_at=None,
                failure_reason=reason,
            )
            .execution_options(synchronize_session=False)
        )
        db.commit()

    def _mark_succeeded(self, db: Session, payment_id: UUID) -> None:
        db.execute(
            update(Payment)
            .where(Payment.id == payment_id)
            .where(Payment.status != PaymentStatus.succeeded)
            .values(
                status=PaymentStatus.succeeded,
                completed_at=datetime.now(UTC),
                capture_started_at=None,
                failure_reason=None,
            )
            .execution_options(synchronize_session=False)
        )
        db.commit()

    # ── Finalize ─────────────────────────────────────────

    def _finalize(
        self, db: Session, payment: Payment, subscription_id: UUID, period_end: date
    ) -> Charge:
        """Absolute writes only, so re-applying after a replay changes nothing."""
        charge = db.get(Charge, payment.charge_id)
        anchor = renewal_anchor(period_end, self._config.zone, self._config.anchor_hour)
        db.execute(
            update(Charge)
            .where(Charge.id == charge.id)
            .values(status=ChargeStatus.settled)
            .execution_options(synchronize_session=False)
        )
        db.execute(
            update(Invoice)
            .where(Invoice.id == charge.invoice_id)
            .values(status=InvoiceStatus.paid)
            .execution_options(synchronize_session=False)
        )
        db.execute(
            update(Subscription)
            .where(Subscription.id == subscription_id)
            .where(
                or_(
                    Subscription.renewed_at.is_(None),
                    Subscription.renewed_at < anchor,
                )
            )
            .values(renewed_at=anchor)
            .execution_options(synchronize_session=False)
        )
        db.commit()
        return charge
