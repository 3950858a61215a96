"""Unit tests for the webhook validation pipeline."""

import asyncio
import json
from unittest.mock import MagicMock

from prometheus_client import CollectorRegistry

from src.gatekeeper.events.metrics import GatekeeperMetrics
from src.gatekeeper.webhook.models import RejectionReason
from src.gatekeeper.webhook.pipeline import (
    GITHUB_HEADER_NAMES,
    ValidationPipeline,
    WebhookHeaderNames,
    WebhookRequest,
)
from src.gatekeeper.webhook.replay import ReplayGuard
from src.gatekeeper.webhook.signature import compute_signature


SECRET = "webhook-secret"
ALLOWED = ["pull_request", "ping"]
PAYLOAD = {"action": "opened", "number": 7}


def run_async(coro):
    return asyncio.run(coro)


def _request(
    body=None,
    event_type="pull_request",
    delivery_id="delivery-1",
    signature=None,
    secret=SECRET,
    content_length="auto",
    timestamp=None,
    header_names=GITHUB_HEADER_NAMES,
) -> WebhookRequest:
    raw = json.dumps(PAYLOAD).encode() if body is None else body
    headers = {}
    if event_type is not None:
        headers[header_names.event_type] = event_type
    if delivery_id is not None:
        headers[header_names.delivery_id] = delivery_id
    if signature is None:
        signature = compute_signature(raw, secret)
    if signature:
        headers[header_names.signature] = signature
    if content_length == "auto":
        headers[header_names.content_length] = str(len(raw))
    elif content_length is not None:
        headers[header_names.content_length] = content_length
    if timestamp is not None and header_names.delivery_timestamp:
        headers[header_names.delivery_timestamp] = timestamp
    return WebhookRequest(raw_body=raw, raw_headers=headers)


def _pipeline(**kwargs) -> ValidationPipeline:
    kwargs.setdefault("header_names", GITHUB_HEADER_NAMES)
    kwargs.setdefault("replay_guard", ReplayGuard(rng=lambda: 1.0))
    return ValidationPipeline(secret=SECRET, allowed_event_types=ALLOWED, **kwargs)


class _FailingBodyRequest:
    def __init__(self, headers):
        self.headers = headers

    async def body(self) -> bytes:
        raise RuntimeError("client disconnected")


class TestValidRequest:

    def test_end_to_end_valid(self):
        result = run_async(_pipeline().validate(_request()))
        assert result.valid
        assert result.reason is None
        assert result.event_type == "pull_request"
        assert result.payload == PAYLOAD
        assert result.event.delivery_id == "delivery-1"
        assert result.event.action == "opened"

    def test_headers_are_case_insensitive(self):
        request = _request()
        lowered = WebhookRequest(
            raw_body=request.raw_body,
            raw_headers={k.lower(): v for k, v in request.raw_headers.items()},
        )
        assert run_async(_pipeline().validate(lowered)).valid

    def test_missing_content_length_is_allowed(self):
        assert run_async(_pipeline().validate(_request(content_length=None))).valid

    def test_generic_header_names(self):
        names = WebhookHeaderNames()
        pipeline = _pipeline(header_names=names)
        request = _request(header_names=names)
        assert "X-Signature" in request.raw_headers
        assert run_async(pipeline.validate(request)).valid


class TestRejections:

    def test_oversized_payload(self):
        pipeline = _pipeline(max_payload_bytes=10)
        result = run_async(pipeline.validate(_request()))
        assert result.reason == RejectionReason.PAYLOAD_TOO_LARGE

    def test_invalid_length_header(self):
        result = run_async(_pipeline().validate(_request(content_length="abc")))
        assert result.reason == RejectionReason.INVALID_LENGTH_HEADER

    def test_missing_event_type(self):
        result = run_async(_pipeline().validate(_request(event_type=None)))
        assert result.reason == RejectionReason.MISSING_EVENT_TYPE

    def test_unsupported_event_type(self):
        result = run_async(_pipeline().validate(_request(event_type="fork")))
        assert result.reason == RejectionReason.UNSUPPORTED_EVENT_TYPE

    def test_missing_signature(self):
        result = run_async(_pipeline().validate(_request(signature="")))
        assert result.reason == RejectionReason.MISSING_CREDENTIAL

    def test_wrong_secret(self):
        result = run_async(_pipeline().validate(_request(secret="other")))
        assert result.reason == RejectionReason.SIGNATURE_MISMATCH

    def test_malformed_signature(self):
        result = run_async(_pipeline().validate(_request(signature="sha256=abc")))
        assert result.reason == RejectionReason.MALFORMED_SIGNATURE

    def test_replayed_delivery(self):
        pipeline = _pipeline()
        assert run_async(pipeline.validate(_request())).valid
        result = run_async(pipeline.validate(_request()))
        assert result.reason == RejectionReason.ALREADY_PROCESSED

    def test_malformed_json(self):
        result = run_async(_pipeline().validate(_request(body=b"{not json")))
        assert result.reason == RejectionReason.MALFORMED_JSON

    def test_unreadable_body(self):
        headers = _request().headers
        result = run_async(_pipeline().validate(_FailingBodyRequest(headers)))
        assert result.reason == RejectionReason.UNREADABLE_BODY

    def test_stale_timestamp_with_generic_headers(self):
        names = WebhookHeaderNames()
        guard = ReplayGuard(clock=lambda: 10_000.0, rng=lambda: 1.0)
        pipeline = _pipeline(header_names=names, replay_guard=guard)
        result = run_async(
            pipeline.validate(_request(header_names=names, timestamp="9000"))
        )
        assert result.reason == RejectionReason.STALE_TIMESTAMP


class TestOrdering:

    def test_size_checked_before_event_type(self):
        pipeline = _pipeline(max_payload_bytes=10)
        result = run_async(pipeline.validate(_request(event_type="fork")))
        assert result.reason == RejectionReason.PAYLOAD_TOO_LARGE

    def test_event_type_checked_before_body_read(self):
        headers = _request(event_type="fork").headers
        result = run_async(_pipeline().validate(_FailingBodyRequest(headers)))
        assert result.reason == RejectionReason.UNSUPPORTED_EVENT_TYPE

    def test_forged_request_does_not_consume_delivery_id(self):
        pipeline = _pipeline()
        forged = run_async(pipeline.validate(_request(secret="attacker")))
        assert forged.reason == RejectionReason.SIGNATURE_MISMATCH

        genuine = run_async(pipeline.validate(_request()))
        assert genuine.valid

    def test_malformed_json_still_consumes_delivery_id(self):
        pipeline = _pipeline()
        run_async(pipeline.validate(_request(body=b"[")))
        result = run_async(pipeline.validate(_request(body=b"[")))
        assert result.reason == RejectionReason.ALREADY_PROCESSED


class TestDeliveryIdPolicy:

    def test_missing_delivery_id_allowed_by_default(self):
        result = run_async(_pipeline().validate(_request(delivery_id=None)))
        assert result.valid
        assert result.event.delivery_id is None

    def test_missing_delivery_id_rejected_when_required(self):
        pipeline = _pipeline(require_delivery_id=True)
        result = run_async(pipeline.validate(_request(delivery_id=None)))
        assert result.reason == RejectionReason.MISSING_DELIVERY_ID


class TestMetrics:

    def test_outcomes_are_counted(self):
        registry = CollectorRegistry()
        pipeline = _pipeline(metrics=GatekeeperMetrics(registry=registry))

        run_async(pipeline.validate(_request()))
        run_async(pipeline.validate(_request()))

        accepted = registry.get_sample_value(
            "gatekeeper_webhook_deliveries_total",
            {"result": "accepted", "reason": "none"},
        )
        replayed = registry.get_sample_value(
            "gatekeeper_webhook_deliveries_total",
            {"result": "rejected", "reason": "already_processed"},
        )
        observed = registry.get_sample_value(
            "gatekeeper_webhook_validation_duration_seconds_count"
        )
        assert accepted == 1.0
        assert replayed == 1.0
        assert observed == 2.0

    def test_custom_verifier_is_used(self):
        verifier = MagicMock()
        verifier.verify.return_value.valid = True
        pipeline = _pipeline(verifier=verifier)

        assert run_async(pipeline.validate(_request(signature="sha256=x"))).valid
        verifier.verify.assert_called_once()
