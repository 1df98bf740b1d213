"""OpenTelemetry metrics for Comrade.

Counters and histograms for tool calls, approvals and provider requests.
Instruments come from the OpenTelemetry API, which records nothing until an
SDK meter provider is installed.
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from typing import TYPE_CHECKING

from opentelemetry import metrics

from comrade import __version__

if TYPE_CHECKING:
    from collections.abc import Generator

_meter = None
_tool_calls_total = None
_tool_duration = None
_approvals_total = None
_provider_requests_total = None
_provider_duration = None


def _ensure_meter() -> None:
    """Lazily create the meter and instruments on first use."""
    global _meter, _tool_calls_total, _tool_duration, _approvals_total
    global _provider_requests_total, _provider_duration

    if _meter is not None:
        return

    _meter = metrics.get_meter("comrade", __version__)
    _tool_calls_total = _meter.create_counter(
        "comrade.tool_calls.total",
        description="Total tool calls handled by the tool manager",
        unit="1",
    )
    _tool_duration = _meter.create_histogram(
        "comrade.tool_call.duration_ms",
        description="Tool executor wall-clock time",
        unit="ms",
    )
    _approvals_total = _meter.create_counter(
        "comrade.approvals.total",
        description="Approval decisions by path",
        unit="1",
    )
    _provider_requests_total = _meter.create_counter(
        "comrade.provider_requests.total",
        description="Requests sent to LLM providers",
        unit="1",
    )
    _provider_duration = _meter.create_histogram(
        "comrade.provider_request.duration_seconds",
        description="Provider request duration in seconds",
        unit="s",
    )


def record_tool_call(*, tool_name: str, success: bool, error_code: str | None = None) -> None:
    """Record one handled tool call."""
    _ensure_meter()
    _tool_calls_total.add(
        1,
        {
            "comrade.tool_name": tool_name,
            "comrade.success": str(success),
            "comrade.error_code": error_code or "NONE",
        },
    )


def record_tool_duration(*, tool_name: str, duration_ms: float) -> None:
    _ensure_meter()
    _tool_duration.record(duration_ms, {"comrade.tool_name": tool_name})


def record_approval(*, tool_name: str, approved: bool, path: str) -> None:
    """Record one approval decision."""
    _ensure_meter()
    _approvals_total.add(
        1,
        {"comrade.tool_name": tool_name, "comrade.approved": str(approved), "comrade.path": path},
    )


def record_provider_request(*, provider: str, streaming: bool, success: bool) -> None:
    """Record one request to an LLM provider."""
    _ensure_meter()
    _provider_requests_total.add(
        1,
        {"comrade.provider": provider, "comrade.streaming": str(streaming), "comrade.success": str(success)},
    )


@contextmanager
def measure_provider_request(provider: str) -> Generator[None, None, None]:
    """Context manager to measure and record provider request duration."""
    _ensure_meter()
    start = time.monotonic()
    try:
        yield
    finally:
        _provider_duration.record(time.monotonic() - start, {"comrade.provider": provider})
