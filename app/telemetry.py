"""Optional OpenTelemetry tracing for the API and the Celery worker.

Off unless ``OTEL_ENABLED`` is truthy. The exporter packages live in the
``otel`` extra; when they are missing tracing stays off and a log line says so.
"""

import logging
import os

logger = logging.getLogger(__name__)


def _enabled() -> bool:
    return os.getenv("OTEL_ENABLED", "false").lower() in {"1", "true", "yes", "on"}


def _install_provider(component: str) -> bool:
    try:
        from opentelemetry import trace
        from opentelemetry.exporter.otlp.proto.http.trace_exporter import (
            OTLPSpanExporter,
        )
        from opentelemetry.sdk.resources import Resource
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor
    except ImportError:
        logger.exception("OpenTelemetry dependencies not available.")
        return False

    resource = Resource.create(
        {
            "service.name": os.getenv("OTEL_SERVICE_NAME", "subscription-renewals"),
            "service.component": component,
        }
    )
    provider = TracerProvider(resource=resource)
    endpoint = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
    exporter = OTLPSpanExporter(endpoint=endpoint) if endpoint else OTLPSpanExporter()
    provider.add_span_processor(BatchSpanProcessor(exporter))
    trace.set_tracer_provider(provider)
    return True


def _instrument_database() -> None:
    from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor

    from app.db import SessionLocal

    SQLAlchemyInstrumentor().instrument(engine=SessionLocal.kw["bind"])


def setup_otel(app) -> None:
    if not _enabled() or not _install_provider("api"):
        return
    from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

    FastAPIInstrumentor.instrument_app(app, excluded_urls="health,metrics")
    _instrument_database()


def setup_worker_otel() -> None:
    if not _enabled() or not _install_provider("worker"):
        return
    from opentelemetry.instrumentation.celery import CeleryInstrumentor

    CeleryInstrumentor().instrument()
    _instrument_database()
