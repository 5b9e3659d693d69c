"""
OpenTelemetry Tracing Setup
===========================
Optional distributed tracing for pipeline runs.

One span is opened per pipeline, stage, job and task, nested in that order,
so a trace mirrors the RunLog it produced. Tracing is off by default and the
tracer is then the OpenTelemetry no-op tracer. Set TINYCI_ENABLE_TRACING=true
to export spans over OTLP/HTTP to OTLP_ENDPOINT.
"""

import atexit
import json
from contextlib import contextmanager
from typing import Any, Iterator, Mapping, Optional

from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource, SERVICE_NAME

from tinyci.config import TRACING

SERVICE_NAME_VALUE = TRACING.SERVICE_NAME
OTLP_ENDPOINT = TRACING.OTLP_ENDPOINT
ENABLE_TRACING = TRACING.ENABLED

_MAX_ATTRIBUTE_LENGTH = 2048

_provider: Optional[TracerProvider] = None


def _cleanup_tracing() -> None:
    """Flush pending spans and drop the provider."""
    global _provider
    if _provider is not None:
        try:
            _provider.shutdown()
        except Exception:
            # Exit-time flush; the collector may already be gone.
            pass
        _provider = None


def setup_tracing(service_name: str = SERVICE_NAME_VALUE, endpoint: str = OTLP_ENDPOINT) -> trace.Tracer:
    """
    Install a global tracer provider that exports batches over OTLP/HTTP.

    Args:
        service_name: Reported as the trace's service.name
        endpoint: OTLP/HTTP traces endpoint

    Returns:
        Tracer for the runner
    """
    global _provider

    _provider = TracerProvider(resource=Resource.create({SERVICE_NAME: service_name}))
    _provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint)))
    trace.set_tracer_provider(_provider)

    atexit.register(_cleanup_tracing)

    return trace.get_tracer(service_name)


def get_tracer(name: str = SERVICE_NAME_VALUE) -> trace.Tracer:
    """Get a tracer instance for creating spans."""
    return trace.get_tracer(name)


def _attribute_value(value: Any) -> Any:
    if isinstance(value, str):
        return value[:_MAX_ATTRIBUTE_LENGTH]
    if isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, dict):
        return json.dumps(value, sort_keys=True, default=str)[:_MAX_ATTRIBUTE_LENGTH]
    return str(value)[:_MAX_ATTRIBUTE_LENGTH]


def safe_set_span_attributes(span: Any, attributes: Mapping[str, Any]) -> None:
    """Set span attributes, coercing values to types OpenTelemetry accepts.

    None values and non-string keys are skipped, and an attribute the span
    refuses is dropped without failing the run. A span without
    set_attribute (or no span at all) is ignored.
    """
    setter = getattr(span, "set_attribute", None)
    if not callable(setter):
        return

    for key, value in attributes.items():
        if not isinstance(key, str) or not key or value is None:
            continue
        try:
            setter(key, _attribute_value(value))
        except Exception:
            continue


@contextmanager
def run_span(tracer: trace.Tracer, kind: str, attributes: Mapping[str, Any]) -> Iterator[Any]:
    """Open a span for one level of a pipeline run ("pipeline", "stage", "job" or "task")."""
    with tracer.start_as_current_span(f"tinyci.{kind}") as span:
        safe_set_span_attributes(span, attributes)
        yield span


_tracer = None


def init_tracing() -> trace.Tracer:
    """
    Initialize tracing if not already done.

    Returns:
        The global tracer instance (or NoOp tracer if disabled)
    """
    global _tracer
    if _tracer is None:
        if ENABLE_TRACING:
            _tracer = setup_tracing()
        else:
            _tracer = trace.get_tracer(SERVICE_NAME_VALUE)
    return _tracer
