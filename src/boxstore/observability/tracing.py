"""Opt-in OpenTelemetry tracing for boxstore.

Environment Variables:
    BOXSTORE_OTEL_ENABLED: "1" enables tracing (default: disabled)
    BOXSTORE_REQUIRE_OTEL: "1" turns a tracing setup failure into a startup error
    BOXSTORE_OTEL_SERVICE_NAME: service.name resource attribute (default: "boxstore")
    BOXSTORE_OTEL_EXPORTER: "otlp" or "console" (default: "otlp")
    BOXSTORE_OTEL_EXPORTER_OTLP_ENDPOINT: OTLP/HTTP endpoint URL (optional)

The tracer provider is installed once per process. Later calls to
configure_tracing() only attach extra exporters to it.
"""

from __future__ import annotations

import logging
import os
import threading
from collections.abc import Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import SpanExporter

logger = logging.getLogger(__name__)

OTEL_ENABLED_ENV = "BOXSTORE_OTEL_ENABLED"
OTEL_REQUIRED_ENV = "BOXSTORE_REQUIRE_OTEL"
OTEL_SERVICE_NAME_ENV = "BOXSTORE_OTEL_SERVICE_NAME"
OTEL_EXPORTER_ENV = "BOXSTORE_OTEL_EXPORTER"
OTEL_ENDPOINT_ENV = "BOXSTORE_OTEL_EXPORTER_OTLP_ENDPOINT"

_TRUE_VALUES = ("1", "true", "yes")

_provider: TracerProvider | None = None
_provider_lock = threading.Lock()


class TracingConfigError(Exception):
    """Raised when tracing is required but could not be set up."""


@dataclass(frozen=True)
class TracingOptions:
    """Tracing switches read from the environment."""

    enabled: bool = False
    required: bool = False
    service_name: str = "boxstore"
    exporter: str = "otlp"
    endpoint: str | None = None

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> TracingOptions:
        env = os.environ if env is None else env
        return cls(
            enabled=env.get(OTEL_ENABLED_ENV, "").strip().lower() in _TRUE_VALUES,
            required=env.get(OTEL_REQUIRED_ENV, "").strip().lower() in _TRUE_VALUES,
            service_name=env.get(OTEL_SERVICE_NAME_ENV, "").strip() or "boxstore",
            exporter=env.get(OTEL_EXPORTER_ENV, "").strip().lower() or "otlp",
            endpoint=env.get(OTEL_ENDPOINT_ENV, "").strip() or None,
        )


def is_tracing_enabled() -> bool:
    """Check if OpenTelemetry tracing is enabled."""
    return TracingOptions.from_env().enabled


def _default_exporter(options: TracingOptions) -> tuple[SpanExporter, bool]:
    """Build the configured exporter; the flag says whether to batch it."""
    if options.exporter == "console":
        from opentelemetry.sdk.trace.export import ConsoleSpanExporter

        return ConsoleSpanExporter(), False

    from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter

    if options.endpoint:
        return OTLPSpanExporter(endpoint=options.endpoint), True
    return OTLPSpanExporter(), True


def _install_provider(options: TracingOptions, exporter: SpanExporter | None) -> TracerProvider:
    from opentelemetry import trace
    from opentelemetry.sdk.resources import Resource
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import BatchSpanProcessor, SimpleSpanProcessor

    provider = TracerProvider(resource=Resource.create({"service.name": options.service_name}))
    if exporter is None:
        default, batched = _default_exporter(options)
        processor = BatchSpanProcessor(default) if batched else SimpleSpanProcessor(default)
        provider.add_span_processor(processor)
    trace.set_tracer_provider(provider)

    logger.info(
        "OpenTelemetry tracing configured: service=%s exporter=%s",
        options.service_name,
        "custom" if exporter is not None else options.exporter,
    )
    return provider


def configure_tracing(exporter: SpanExporter | None = None) -> bool:
    """Install the boxstore tracer provider if tracing is enabled.

    Args:
        exporter: Extra exporter to attach (e.g. an in-memory exporter in
            tests). When given on first setup it replaces the configured
            default exporter.

    Returns:
        True if tracing is enabled and a provider is installed.

    Raises:
        TracingConfigError: If setup fails and BOXSTORE_REQUIRE_OTEL=1.
    """
    global _provider

    options = TracingOptions.from_env()
    if not options.enabled:
        logger.debug("OpenTelemetry tracing disabled (%s not set)", OTEL_ENABLED_ENV)
        return False

    try:
        with _provider_lock:
            if _provider is None:
                _provider = _install_provider(options, exporter)
            if exporter is not None:
                from opentelemetry.sdk.trace.export import SimpleSpanProcessor

                _provider.add_span_processor(SimpleSpanProcessor(exporter))
    except Exception as e:
        logger.error("Failed to configure OpenTelemetry tracing: %s", e)
        if options.required:
            raise TracingConfigError(f"Tracing required but setup failed: {e}") from e
        return False
    return True


def instrument_fastapi(app: Any) -> None:
    """Instrument the boxstore app; /health is not traced."""
    if not is_tracing_enabled():
        return

    try:
        from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

        FastAPIInstrumentor.instrument_app(app, excluded_urls="health")
    except Exception as e:
        logger.warning("Failed to instrument FastAPI: %s", e)


def instrument_sqlalchemy(engine: Any) -> None:
    """Instrument the metadata SQLAlchemy engine."""
    if not is_tracing_enabled():
        return

    try:
        from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor

        SQLAlchemyInstrumentor().instrument(engine=engine, enable_commenter=False)
    except Exception as e:
        logger.warning("Failed to instrument SQLAlchemy: %s", e)
