"""OpenTelemetry spans around reconcile cycles and Vault calls.

Tracing is off unless ``OTEL_TRACES_ENABLED=true``. While it is off every
helper here is a no-op, so callers never check whether a tracer exists.
"""

from __future__ import annotations

import logging
import os
from contextlib import contextmanager
from typing import Any, Iterator

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.trace import Span, Tracer

from . import __version__

logger = logging.getLogger(__name__)

DEFAULT_SERVICE_NAME = "vault-config-operator"
DEFAULT_OTLP_ENDPOINT = "http://localhost:4317"

_tracer: Tracer | None = None


def tracing_enabled() -> bool:
    return os.getenv("OTEL_TRACES_ENABLED", "false").lower() == "true"


def initialize_tracing(service_name: str = DEFAULT_SERVICE_NAME) -> None:
    """Install an OTLP span exporter when tracing is enabled.

    ``OTEL_SERVICE_NAME`` and ``OTEL_EXPORTER_OTLP_ENDPOINT`` override the
    service name and collector address.
    """
    global _tracer

    if not tracing_enabled():
        logger.debug("Tracing disabled")
        return

    service_name = os.getenv("OTEL_SERVICE_NAME", service_name)
    endpoint = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT", DEFAULT_OTLP_ENDPOINT)
    try:
        provider = TracerProvider(
            resource=Resource.create({"service.name": service_name, "service.version": __version__})
        )
        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint)))
        trace.set_tracer_provider(provider)
        _tracer = trace.get_tracer(service_name)
    except Exception as e:
        # Reconciling without spans beats not reconciling.
        logger.warning(f"Failed to initialize tracing: {e}")
        return

    logger.info(f"Exporting spans for {service_name} to {endpoint}")


def get_tracer() -> Tracer | None:
    return _tracer


@contextmanager
def trace_span(
    name: str,
    kind: str | None = None,
    attributes: dict[str, Any] | None = None,
) -> Iterator[Span | None]:
    """Run the enclosed block inside a span named ``name``.

    ``kind`` is recorded as ``resource.kind``. An exception escaping the
    block marks the span as failed and is re-raised unchanged.
    """
    tracer = get_tracer()
    if tracer is None:
        yield None
        return

    span_attributes = dict(attributes or {})
    if kind:
        span_attributes["resource.kind"] = kind

    with tracer.start_as_current_span(
        name, attributes=span_attributes, record_exception=False, set_status_on_exception=False
    ) as span:
        try:
            yield span
        except Exception as e:
            if span.is_recording():
                span.record_exception(e)
                span.set_status(trace.Status(trace.StatusCode.ERROR, str(e)))
            raise


def add_span_attribute(key: str, value: Any) -> None:
    span = trace.get_current_span()
    if span.is_recording():
        span.set_attribute(key, value)
