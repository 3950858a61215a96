"""Unit tests for event sinks and metrics."""

import asyncio
import logging
from unittest.mock import AsyncMock

from prometheus_client import CollectorRegistry

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
from src.gatekeeper.webhook.models import RejectionReason, WebhookEvent


def run_async(coro):
    return asyncio.run(coro)


EVENT = WebhookEvent(
    event_type="pull_request",
    delivery_id="d-1",
    payload={"action": "opened"},
)


class FailingSink(EventSink):

    async def deliver(self, event: WebhookEvent) -> None:
        raise RuntimeError("downstream unavailable")

    async def close(self) -> None:
        raise RuntimeError("close failed")


class TestSinks:

    def test_callback_sink(self):
        handler = AsyncMock()
        run_async(CallbackEventSink(handler).deliver(EVENT))
        handler.assert_awaited_once_with(EVENT)

    def test_logging_sink_omits_payload(self, caplog):
        with caplog.at_level(logging.INFO):
            run_async(LoggingEventSink("gatekeeper.test").deliver(EVENT))

        record = caplog.records[-1]
        assert record.name == "gatekeeper.test"
        assert record.delivery_id == "d-1"
        assert record.action == "opened"
        assert not hasattr(record, "payload")

    def test_composite_isolates_failures(self):
        handler = AsyncMock()
        sink = CompositeEventSink([FailingSink(), CallbackEventSink(handler)])

        run_async(sink.deliver(EVENT))
        run_async(sink.close())

        handler.assert_awaited_once_with(EVENT)

    def test_composite_add_sink_and_copy(self):
        sink = CompositeEventSink()
        sink.add_sink(NullEventSink())

        children = sink.sinks
        children.clear()

        assert len(sink.sinks) == 1

    def test_null_sink(self):
        assert run_async(NullEventSink().deliver(EVENT)) is None


class TestMetrics:

    def test_record_delivery_labels(self):
        registry = CollectorRegistry()
        metrics = GatekeeperMetrics(registry=registry)

        metrics.record_delivery(None)
        metrics.record_delivery(RejectionReason.SIGNATURE_MISMATCH)
        metrics.record_delivery(RejectionReason.SIGNATURE_MISMATCH)

        assert registry.get_sample_value(
            "gatekeeper_webhook_deliveries_total",
            {"result": "accepted", "reason": "none"},
        ) == 1.0
        assert registry.get_sample_value(
            "gatekeeper_webhook_deliveries_total",
            {"result": "rejected", "reason": "signature_mismatch"},
        ) == 2.0

    def test_token_metrics(self):
        registry = CollectorRegistry()
        metrics = GatekeeperMetrics(registry=registry)

        metrics.record_token_exchange(success=False)
        metrics.record_invalidation(all_entries=True)
        metrics.record_auth_failure()

        assert registry.get_sample_value(
            "gatekeeper_token_exchanges_total", {"result": "failure"}
        ) == 1.0
        assert registry.get_sample_value(
            "gatekeeper_token_invalidations_total", {"scope": "all"}
        ) == 1.0
        assert registry.get_sample_value("gatekeeper_auth_failures_total") == 1.0

    def test_negative_duration_clamped(self):
        registry = CollectorRegistry()
        GatekeeperMetrics(registry=registry).record_validation_duration(-1.0)
        assert registry.get_sample_value(
            "gatekeeper_webhook_validation_duration_seconds_sum"
        ) == 0.0

    def test_get_metrics_with_registry_is_fresh(self):
        registry = CollectorRegistry()
        assert get_metrics(registry).registry is registry

    def test_generate_output(self):
        registry = CollectorRegistry()
        GatekeeperMetrics(registry=registry).record_delivery(None)

        output = generate_metrics_output(registry)

        assert b"gatekeeper_webhook_deliveries_total" in output
