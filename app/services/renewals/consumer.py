"""Message boundary in front of the renewal handler.

Parses the raw message, runs the handler and turns every outcome into an
explicit decision: acknowledge, redeliver later, or dead-letter.
"""
from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError
from sqlalchemy.orm import Session

from app.schemas.renewal import RenewalEvent
from app.services.renewals.dead_letters import dead_letters
from app.services.renewals.errors import CaptureFailed, MalformedRenewalEvent
from app.services.renewals.handler import HandleResult, RenewalEventHandler
from app.services.renewals.redelivery import (
    RedeliveryAction,
    RedeliveryPolicy,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConsumeOutcome:
    action: str  # "ack" | "retry" | "dead_letter"
    delay_seconds: int = 0
    result: HandleResult | None = None
    error: Exception | None = None


def parse_event(body: Any) -> RenewalEvent:
    if isinstance(body, (bytes, bytearray)):
        body = body.decode("utf-8", errors="replace")
    if isinstance(body, str):
        try:
            body = json.loads(body)
        except ValueError as exc:
            raise MalformedRenewalEvent(f"Unparseable renewal message: {exc}") from exc
    if not isinstance(body, dict):
        raise MalformedRenewalEvent("Renewal message must be a JSON object")
    try:
        return RenewalEvent.model_validate(body)
    except ValidationError as exc:
        raise MalformedRenewalEvent(f"Invalid renewal message: {exc}") from exc


def _raw_text(body: Any) -> str:
    if isinstance(body, (bytes, bytearray)):
        return body.decode("utf-8", errors="replace")
    if isinstance(body, str):
        return body
    return json.dumps(body, default=str)


def _subscription_hint(body: Any) -> uuid.UUID | None:
    try:
        data = body if isinstance(body, dict) else json.loads(_raw_text(body))
        return uuid.UUID(str(data["subscription_id"]))
    except (ValueError, KeyError, TypeError):
        return None


class RenewalConsumer:
    def __init__(self, handler: RenewalEventHandler, policy: RedeliveryPolicy) -> None:
        self.handler = handler
        self.policy = policy

    def process(
        self, db: Session, body: Any, attempt: int, message_id: str | None = None
    ) -> ConsumeOutcome:
        try:
            event = parse_event(body)
            result = self.handler.handle(db, event)
            if not result.succeeded:
                raise CaptureFailed(result.payment_id, result.failure_reason or "declined")
        except Exception as exc:
            db.rollback()
            return self._on_error(db, body, attempt, message_id, exc)
        return ConsumeOutcome(action="ack", result=result)

    def _on_error(
        self,
        db: Session,
        body: Any,
        attempt: int,
        message_id: str | None,
        exc: Exception,
    ) -> ConsumeOutcome:
        decision = self.policy.decide(attempt, exc)
        if decision.action == RedeliveryAction.dead_letter:
            dead_letters.record(
                db,
                payload=_raw_text(body),
                reason=decision.reason,
                error=str(exc),
                attempts=attempt,
                message_id=message_id,
                subscription_id=_subscription_hint(body),
            )
            return ConsumeOutcome(action="dead_letter", error=exc)
        if isinstance(exc, MalformedRenewalEvent | CaptureFailed):
            logger.warning(
                "Renewal message %s failed (attempt %s), redelivering in %ss: %s",
                message_id,
                attempt,
                decision.delay_seconds,
                exc,
                extra={"attempt": attempt},
            )
        else:
            logger.exception(
                "Renewal message %s raised (attempt %s), redelivering in %ss",
                message_id,
                attempt,
                decision.delay_seconds,
                extra={"attempt": attempt},
            )
        return ConsumeOutcome(
            action="retry", delay_seconds=decision.delay_seconds, error=exc
        )
