from app.models.billing import (  # noqa: F401
    Charge,
    ChargeStatus,
    Customer,
    Invoice,
    InvoiceStatus,
    Payment,
    PaymentStatus,
    Plan,
    PlanInterval,
    Subscription,
    SubscriptionStatus,
)
from app.models.renewal import (  # noqa: F401
    DeadLetterReason,
    OutboxEntry,
    RenewalDeadLetter,
    RenewalRun,
    RenewalRunStatus,
)
