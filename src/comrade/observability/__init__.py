"""Comrade Observability: OpenTelemetry tracing and metrics.

Opt-in via OTEL_EXPORTER_OTLP_ENDPOINT env var.
Without it, all tracing/metrics calls are no-ops.
"""

from comrade.observability.metrics import (
    measure_provider_request,
    record_approval,
    record_provider_request,
    record_tool_call,
    record_tool_duration,
)
from comrade.observability.tracing import get_tracer, init_tracing

__all__ = [
    "init_tracing",
    "get_tracer",
    "measure_provider_request",
    "record_approval",
    "record_provider_request",
    "record_tool_call",
    "record_tool_duration",
]
