from __future__ import annotations

import enum
from dataclasses import dataclass

from app.models.renewal import DeadLetterReason
from app.services.renewals.errors import MalformedRenewalEvent


class RedeliveryAction(str, enum.Enum):
    retry = "retry"
    dead_letter = "dead_letter"


@dataclass(frozen=True)
class RedeliveryDecision:
    action: RedeliveryAction
    delay_seconds: int = 0
    reason: DeadLetterReason | None = None


@dataclass(frozen=True)
class RedeliveryPolicy:
    """What happens to a delivery that did not complete.

    ``attempt`` is the 1-based delivery number of the message being judged.
    Malformed messages get ``malformed_max_attempts`` deliveries, everything
    else ``max_attempts``; after that the message goes to the dead-letter table.
    """

    max_attempts: int = 5
    backoff_seconds: int = 60
    backoff_max_seconds: int = 3600
    malformed_max_attempts: int = 1

    def __post_init__(self) -> None:
        if self.max_attempts < 1 or self.malformed_max_attempts < 1:
            raise ValueError("attempt limits must be >= 1")
        if self.backoff_seconds < 0 or self.backoff_max_seconds < self.backoff_seconds:
            raise ValueError("invalid backoff bounds")

    @classmethod
    def from_settings(cls, settings) -> RedeliveryPolicy:
        return cls(
            max_attempts=settings.renewal_max_attempts,
            backoff_seconds=settings.renewal_retry_backoff_seconds,
            backoff_max_seconds=settings.renewal_retry_backoff_max_seconds,
        )

    def delay_for(self, attempt: int) -> int:
        # 60, 120, 240, ... capped
        return min(self.backoff_seconds * 2 ** max(attempt - 1, 0), self.backoff_max_seconds)

    def decide(self, attempt: int, error: Exception) -> RedeliveryDecision:
        if isinstance(error, MalformedRenewalEvent):
            if attempt >= self.malformed_max_attempts:
                return RedeliveryDecision(
                    RedeliveryAction.dead_letter, reason=DeadLetterReason.malformed
                )
            return RedeliveryDecision(RedeliveryAction.retry, self.delay_for(attempt))
        if attempt >= self.max_attempts:
            return RedeliveryDecision(
                RedeliveryAction.dead_letter, reason=DeadLetterReason.exhausted
            )
        return RedeliveryDecision(RedeliveryAction.retry, self.delay_for(attempt))
