import logging

from sqlalchemy.orm import Session

from app.metrics import DEAD_LETTERS
from app.models.renewal import DeadLetterReason, RenewalDeadLetter
from app.services.common import apply_ordering, apply_pagination, coerce_uuid, validate_enum
from app.services.response import ListResponseMixin

logger = logging.getLogger(__name__)


class DeadLetters(ListResponseMixin):
    @staticmethod
    def record(
        db: Session,
        payload: str,
        reason: DeadLetterReason,
        error: str | None,
        attempts: int,
        message_id: str | None = None,
        subscription_id=None,
    ) -> RenewalDeadLetter:
        item = RenewalDeadLetter(
            message_id=message_id,
            subscription_id=subscription_id,
            reason=reason,
            error=error,
            payload=payload,
            attempts=attempts,
        )
        db.add(item)
        db.commit()
        db.refresh(item)
        DEAD_LETTERS.labels(reason=reason.value).inc()
        logger.error(
            "Dead-lettered renewal message %s (%s): %s",
            message_id,
            reason.value,
            error,
            extra={"subscription_id": str(subscription_id) if subscription_id else None},
        )
        return item

    @staticmethod
    def list(
        db: Session,
        reason: str | None,
        subscription_id: str | None,
        order_by: str,
        order_dir: str,
        limit: int,
        offset: int,
    ) -> tuple[list[RenewalDeadLetter], int]:
        query = db.query(RenewalDeadLetter)
        if reason:
            query = query.filter(
                RenewalDeadLetter.reason
                == validate_enum(reason, DeadLetterReason, "reason")
            )
        if subscription_id:
            query = query.filter(
                RenewalDeadLetter.subscription_id == coerce_uuid(subscription_id)
            )
        total = query.count()
        query = apply_ordering(
            query,
            order_by,
            order_dir,
            {"created_at": RenewalDeadLetter.created_at},
        )
        items = list(apply_pagination(query, limit, offset).all())
        return items, total


dead_letters = DeadLetters()
