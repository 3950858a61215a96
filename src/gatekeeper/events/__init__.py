"""Gatekeeper metrics and downstream event delivery.

Metrics:
- GatekeeperMetrics: Container for all Prometheus metrics
- get_metrics: Get or create the metrics instance
- generate_metrics_output: Generate Prometheus format output for /metrics

Event Sinks:
- EventSink: Abstract base class for validated-event consumers
- LoggingEventSink: Records events as structured log entries
- CallbackEventSink: Forwards events to an async callable
- CompositeEventSink: Delivers to multiple sinks
- NullEventSink: Discards events (for testing)
"""

from src.gatekeeper.events.metrics import (
    GatekeeperMetrics,
    generate_metrics_output,
    get_metrics,
)
from src.gatekeeper.events.sink import (
    CallbackEventSink,
    CompositeEventSink,
    EventSink,
    LoggingEventSink,
    NullEventSink,
)

__all__ = [
    # Metrics
    "GatekeeperMetrics",
    "get_metrics",
    "generate_metrics_output",
    # Event sinks
    "EventSink",
    "LoggingEventSink",
    "CallbackEventSink",
    "CompositeEventSink",
    "NullEventSink",
]
