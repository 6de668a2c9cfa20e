from __future__ import annotations

from relayhub.services.telemetry import (
    availability,
    counters_snapshot,
    external_latency_by_integration,
    increment_counter,
    record_external_call,
    record_request,
)


def test_availability_counts_server_errors() -> None:
    # Only 5xx responses reduce availability.
    assert availability(60) is None
    record_request(path="/health", status_code=200, latency_ms=1.0)
    record_request(path="/webhook", status_code=403, latency_ms=1.0)
    record_request(path="/api/widget/message", status_code=500, latency_ms=1.0)
    record_request(path="/health", status_code=200, latency_ms=1.0)
    assert availability(60) == 75.0


def test_external_latency_and_counters() -> None:
    # External calls aggregate per integration and bump success/failure counters.
    record_external_call(integration="channel.graph", latency_ms=10.0, success=True)
    record_external_call(integration="channel.graph", latency_ms=30.0, success=False)
    increment_counter("pipeline.messaging.done", 2)
    stats = external_latency_by_integration(60)["channel.graph"]
    assert stats == {"calls": 2, "failures": 1, "p95": 30.0, "max": 30.0}
    counters = counters_snapshot()
    assert counters["external.channel.graph.success"] == 1
    assert counters["external.channel.graph.failure"] == 1
    assert counters["pipeline.messaging.done"] == 2
