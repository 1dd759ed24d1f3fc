"""Logging and tracing setup for the back-office workflows."""

from __future__ import annotations

import logging
from logging.config import dictConfig
from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from backoffice.core.config import Settings

APP_LOGGER = "backoffice"
# Client libraries stay at WARNING unless the app itself is quieter.
_LIBRARY_LOGGERS = ("asyncpg", "httpx")

_provider: TracerProvider | None = None


def _parse_headers(header_string: str | None) -> dict[str, str]:
    """Parse ``key=value`` pairs separated by commas, skipping malformed items."""

    pairs = (item.split("=", 1) for item in (header_string or "").split(",") if "=" in item)
    return {key.strip(): value.strip() for key, value in pairs}


def _logging_config(settings: Settings, level: int) -> dict[str, Any]:
    library_level = max(level, logging.WARNING)
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {"plain": {"format": settings.log_format}},
        "handlers": {
            "console": {"class": "logging.StreamHandler", "formatter": "plain", "level": level},
        },
        "root": {"handlers": ["console"], "level": level},
        "loggers": {
            APP_LOGGER: {"level": level},
            **{name: {"level": library_level} for name in _LIBRARY_LOGGERS},
        },
    }


def configure_logging(settings: Settings) -> logging.Logger:
    """Install console logging and return the ``backoffice`` logger."""

    level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO
    dictConfig(_logging_config(settings, level))
    return logging.getLogger(APP_LOGGER)


def _exporter_options(settings: Settings) -> dict[str, Any]:
    options: dict[str, Any] = {}
    if settings.otel_exporter_otlp_endpoint:
        options["endpoint"] = settings.otel_exporter_otlp_endpoint
    headers = _parse_headers(settings.otel_exporter_otlp_headers)
    if headers:
        options["headers"] = headers
    return options


def init_tracer(settings: Settings) -> TracerProvider | None:
    """Install an OTLP tracer provider once, when tracing is enabled."""

    global _provider
    if _provider is not None or not settings.otel_enabled:
        return None

    provider = TracerProvider(resource=Resource(attributes={"service.name": settings.otel_service_name}))
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(**_exporter_options(settings))))
    trace.set_tracer_provider(provider)
    _provider = provider
    return provider


def shutdown_tracer(provider: TracerProvider | None) -> None:
    global _provider
    if provider is None:
        return
    provider.shutdown()
    if provider is _provider:
        _provider = None


def get_tracer() -> trace.Tracer:
    return trace.get_tracer(APP_LOGGER)
