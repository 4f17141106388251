import logging
import os

from celery.schedules import crontab

from app.config import settings
from app.services.renewals.config import RenewalConfig

logger = logging.getLogger(__name__)

RENEWAL_BATCH_TASK = "app.tasks.renewals.run_renewal_batch"


def _env_value(name: str) -> str | None:
    value = os.getenv(name)
    if value is None or value == "":
        return None
    return value


def _env_int(name: str) -> int | None:
    raw = _env_value(name)
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring non-integer %s=%r", name, raw)
        return None


def get_celery_config() -> dict:
    broker = (
        _env_value("CELERY_BROKER_URL")
        or _env_value("REDIS_URL")
        or "redis://localhost:6379/0"
    )
    backend = (
        _env_value("CELERY_RESULT_BACKEND")
        or _env_value("REDIS_URL")
        or "redis://localhost:6379/1"
    )
    timezone = _env_value("CELERY_TIMEZONE") or settings.renewal_timezone
    config = {"broker_url": broker, "result_backend": backend, "timezone": timezone}
    config["beat_max_loop_interval"] = _env_int("CELERY_BEAT_MAX_LOOP_INTERVAL") or 5
    # Renewal messages are acknowledged only after the handler returns.
    config["task_acks_late"] = True
    config["task_reject_on_worker_lost"] = True
    config["worker_prefetch_multiplier"] = 1
    config["broker_transport_options"] = {"confirm_publish": True}
    config["task_default_queue"] = "celery"
    config["task_routes"] = {
        "app.tasks.renewals.handle_renewal": {"queue": settings.renewal_queue},
    }
    return config


def parse_cron(expression: str) -> crontab:
    fields = expression.split()
    if len(fields) != 5:
        raise ValueError(f"Cron expression must have five fields: {expression!r}")
    minute, hour, day_of_month, month_of_year, day_of_week = fields
    return crontab(
        minute=minute,
        hour=hour,
        day_of_month=day_of_month,
        month_of_year=month_of_year,
        day_of_week=day_of_week,
    )


def build_beat_schedule(config: RenewalConfig | None = None) -> dict:
    config = config or RenewalConfig.from_settings(settings)
    return {
        "renewal_daily_batch": {
            "task": RENEWAL_BATCH_TASK,
            "schedule": parse_cron(config.schedule_cron),
            "kwargs": {},
        }
    }
