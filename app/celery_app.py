import os

from celery import Celery
from celery.signals import worker_process_init

from app.logging import configure_logging
from app.services.scheduler_config import build_beat_schedule, get_celery_config
from app.telemetry import setup_worker_otel

celery_app = Celery("renewals")
celery_app.conf.update(get_celery_config())
celery_app.conf.beat_schedule = build_beat_schedule()
celery_app.autodiscover_tasks(["app.tasks"])


@worker_process_init.connect
def _init_worker_process(**_kwargs) -> None:
    configure_logging(os.getenv("LOG_LEVEL", "INFO"))
    setup_worker_otel()
