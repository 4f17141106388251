"""Celery tasks for the renewal pipeline.

``run_renewal_batch`` is the scheduled scan + relay. ``handle_renewal``
consumes one renewal message; redelivery and dead-lettering are decided by
the consumer's ``RedeliveryPolicy``, and Celery only executes the decision.
"""

import logging
import time

from app.celery_app import celery_app
from app.config import settings
from app.db import SessionLocal
from app.metrics import observe_job
from app.models.renewal import RenewalRunStatus
from app.services.payment_gateway import build_payment_channel
from app.services.renewals.config import RenewalConfig
from app.services.renewals.consumer import RenewalConsumer
from app.services.renewals.errors import RenewalRunFailed
from app.services.renewals.handler import RenewalEventHandler
from app.services.renewals.publisher import HANDLE_RENEWAL_TASK, CeleryRenewalPublisher
from app.services.renewals.redelivery import RedeliveryPolicy
from app.services.renewals.runs import launch_run

logger = logging.getLogger(__name__)


def _build_consumer() -> RenewalConsumer:
    config = RenewalConfig.from_settings(settings)
    handler = RenewalEventHandler(build_payment_channel(), config)
    return RenewalConsumer(handler, RedeliveryPolicy.from_settings(settings))


@celery_app.task(name="app.tasks.renewals.run_renewal_batch")
def run_renewal_batch(run_key: str | None = None, force: bool = False):
    config = RenewalConfig.from_settings(settings)
    publisher = CeleryRenewalPublisher(celery_app, config.queue)
    started = time.monotonic()
    status = "success"
    session = SessionLocal()
    try:
        launched = launch_run(session, config, publisher, run_key=run_key, force=force)
        if launched.run.status == RenewalRunStatus.failed:
            raise RenewalRunFailed(launched.run.id, launched.run.error)
        return {
            "run_id": str(launched.run.id),
            "status": launched.run.status.value,
            "executed": launched.executed,
        }
    except Exception:
        status = "error"
        session.rollback()
        raise
    finally:
        session.close()
        observe_job("run_renewal_batch", status, time.monotonic() - started)


@celery_app.task(
    name=HANDLE_RENEWAL_TASK,
    bind=True,
    acks_late=True,
    max_retries=None,
)
def handle_renewal(self, body: str):
    attempt = self.request.retries + 1
    message_id = self.request.id
    started = time.monotonic()
    session = SessionLocal()
    try:
        outcome = _build_consumer().process(
            session, body, attempt=attempt, message_id=message_id
        )
    except Exception:
        session.rollback()
        observe_job("handle_renewal", "error", time.monotonic() - started)
        raise
    finally:
        session.close()

    observe_job("handle_renewal", outcome.action, time.monotonic() - started)
    if outcome.action == "retry":
        raise self.retry(exc=outcome.error, countdown=outcome.delay_seconds)
    if outcome.action == "ack" and outcome.result is not None:
        logger.info(
            "Renewal %s handled (replayed=%s)",
            outcome.result.idempotency_key,
            outcome.result.replayed,
            extra={
                "task_id": message_id,
                "subscription_id": str(outcome.result.subscription_id),
                "payment_id": str(outcome.result.payment_id),
            },
        )
    return outcome.action
