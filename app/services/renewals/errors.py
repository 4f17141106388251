class RenewalError(Exception):
    """Base class for renewal pipeline failures."""


class MalformedRenewalEvent(RenewalError):
    """The event can never be processed; redelivery will not help."""


class CaptureFailed(RenewalError):
    def __init__(self, payment_id, reason: str) -> None:
        super().__init__(f"Capture failed for payment {payment_id}: {reason}")
        self.payment_id = payment_id
        self.reason = reason


class CaptureInProgress(RenewalError):
    def __init__(self, payment_id) -> None:
        super().__init__(f"Capture already in progress for payment {payment_id}")
        self.payment_id = payment_id


class ConflictResolutionError(RenewalError):
    """Create-or-reuse could not settle on a single row for a unique key."""


class RenewalRunFailed(RenewalError):
    def __init__(self, run_id, error: str | None) -> None:
        super().__init__(f"Renewal run {run_id} failed: {error}")
        self.run_id = run_id
