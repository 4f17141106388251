from prometheus_client import Counter, Histogram

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)
REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "path", "status"],
)
REQUEST_ERRORS = Counter(
    "http_request_errors_total",
    "Total HTTP 5xx responses",
    ["method", "path", "status"],
)

JOB_DURATION = Histogram(
    "job_duration_seconds",
    "Background job duration",
    ["task", "status"],
)

OUTBOX_INSERTED = Counter(
    "renewal_outbox_inserted_total",
    "Renewal outbox rows inserted by the scanner",
)
OUTBOX_PUBLISHED = Counter(
    "renewal_outbox_published_total",
    "Renewal outbox rows confirmed published",
)
OUTBOX_PUBLISH_FAILURES = Counter(
    "renewal_outbox_publish_failures_total",
    "Renewal outbox publish attempts that failed",
)
RENEWAL_PAYMENTS = Counter(
    "renewal_payments_total",
    "Renewal capture outcomes",
    ["status"],
)
DEAD_LETTERS = Counter(
    "renewal_dead_letters_total",
    "Renewal events routed to the dead-letter table",
    ["reason"],
)


def observe_job(task_name: str, status: str, duration: float) -> None:
    JOB_DURATION.labels(task=task_name, status=status).observe(duration)
