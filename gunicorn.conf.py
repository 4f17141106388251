"""Gunicorn settings for the renewals API.

    gunicorn -c gunicorn.conf.py app.main:app

The API only lists runs and triggers manual batches; the heavy lifting runs
in Celery workers, so a small worker count is enough.
"""
from __future__ import annotations

import multiprocessing
import os


def _int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


bind = os.getenv("GUNICORN_BIND", "0.0.0.0:8000")

workers = _int("GUNICORN_WORKERS", min(multiprocessing.cpu_count() + 1, 4))
worker_class = "uvicorn.workers.UvicornWorker"
worker_tmp_dir = "/dev/shm"

# A manual POST /renewals/runs executes scan + relay inline.
timeout = _int("GUNICORN_TIMEOUT", 300)
graceful_timeout = _int("GUNICORN_GRACEFUL_TIMEOUT", 60)
keepalive = _int("GUNICORN_KEEPALIVE", 5)

max_requests = _int("GUNICORN_MAX_REQUESTS", 2000)
max_requests_jitter = _int("GUNICORN_MAX_REQUESTS_JITTER", 100)

preload_app = os.getenv("GUNICORN_PRELOAD", "false").lower() == "true"

# Requests are logged as JSON by the app itself.
accesslog = os.getenv("GUNICORN_ACCESSLOG") or None
errorlog = os.getenv("GUNICORN_ERRORLOG", "-")
loglevel = os.getenv("GUNICORN_LOGLEVEL", "info")

proc_name = "subscription_renewals"
