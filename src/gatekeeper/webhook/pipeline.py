"""Webhook validation pipeline.

Runs the admission checks for one inbound delivery, cheapest first, and
stops at the first failure:

    Received -> SizeOk -> EventTypeOk -> BodyRead -> SignatureOk
             -> NotReplay -> Valid

Any state may move to Rejected(reason). The body is read exactly once and
the same bytes are used for the signature check and for JSON parsing. The
signature is verified strictly before replay admission so that a forged
request can never consume a legitimate delivery id.
"""

import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Collection, Mapping, Optional, Protocol

from src.gatekeeper.events.metrics import GatekeeperMetrics
from src.gatekeeper.webhook.guards import DEFAULT_MAX_PAYLOAD_BYTES, PayloadGuard
from src.gatekeeper.webhook.models import (
    RejectionReason,
    ValidationResult,
    WebhookEvent,
)
from src.gatekeeper.webhook.replay import ReplayGuard
from src.gatekeeper.webhook.signature import SignatureVerifier


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WebhookHeaderNames:
    """Names of the headers the pipeline reads.

    Attributes:
        signature: Header carrying ``sha256=<hex>``.
        event_type: Header carrying the event type.
        delivery_id: Header carrying the delivery id.
        delivery_timestamp: Optional header carrying the send time.
        content_length: Header carrying the declared body size.
    """

    signature: str = "X-Signature"
    event_type: str = "X-Event-Type"
    delivery_id: str = "X-Delivery-Id"
    delivery_timestamp: Optional[str] = "X-Delivery-Timestamp"
    content_length: str = "Content-Length"


GITHUB_HEADER_NAMES = WebhookHeaderNames(
    signature="X-Hub-Signature-256",
    event_type="X-GitHub-Event",
    delivery_id="X-GitHub-Delivery",
    delivery_timestamp=None,
)


class InboundRequest(Protocol):
    """What the pipeline needs from an HTTP request.

    Starlette's ``Request`` satisfies this protocol as-is.
    """

    @property
    def headers(self) -> Mapping[str, str]:
        ...

    async def body(self) -> bytes:
        ...


class _CaseInsensitiveHeaders(dict):
    def __init__(self, headers: Mapping[str, str]):
        super().__init__((key.lower(), value) for key, value in headers.items())

    def get(self, key: str, default: Any = None) -> Any:
        return super().get(key.lower(), default)


@dataclass
class WebhookRequest:
    """A buffered inbound request, for adapters and tests.

    Header lookup is case-insensitive. ``body()`` may be awaited more than
    once but the pipeline only awaits it once.
    """

    raw_body: bytes = b""
    raw_headers: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self._headers = _CaseInsensitiveHeaders(self.raw_headers)

    @property
    def headers(self) -> Mapping[str, str]:
        return self._headers

    async def body(self) -> bytes:
        return self.raw_body


class ValidationPipeline:
    """Validates inbound webhook deliveries.

    The pipeline is stateless apart from the replay guard's store, so one
    instance serves every request.

    Attributes:
        secret: Shared webhook secret.
        guard: Size and event-type checks.
        verifier: Signature verifier.
        replay_guard: Delivery-id de-duplication.
        header_names: Header names to read.
        require_delivery_id: Reject deliveries without a delivery id.
        metrics: Optional Prometheus metrics.
    """

    def __init__(
        self,
        secret: str,
        allowed_event_types: Collection[str],
        replay_guard: Optional[ReplayGuard] = None,
        verifier: Optional[SignatureVerifier] = None,
        max_payload_bytes: int = DEFAULT_MAX_PAYLOAD_BYTES,
        header_names: WebhookHeaderNames = WebhookHeaderNames(),
        require_delivery_id: bool = False,
        metrics: Optional[GatekeeperMetrics] = None,
        clock: Callable[[], float] = time.perf_counter,
    ):
        self.secret = secret
        self.guard = PayloadGuard(
            allowed_event_types=allowed_event_types,
            max_bytes=max_payload_bytes,
        )
        self.verifier = verifier or SignatureVerifier()
        self.replay_guard = replay_guard or ReplayGuard()
        self.header_names = header_names
        self.require_delivery_id = require_delivery_id
        self.metrics = metrics
        self._clock = clock

    async def validate(self, request: InboundRequest) -> ValidationResult:
        """Run every check against ``request``.

        Args:
            request: Object exposing ``headers.get`` and ``await body()``.

        Returns:
            ValidationResult with the parsed event, or the first rejection.
            Never raises for data-dependent failures.
        """
        started = self._clock()
        result = await self._validate(request)
        if self.metrics is not None:
            self.metrics.record_delivery(result.reason)
            self.metrics.record_validation_duration(self._clock() - started)
        return result

    async def _validate(self, request: InboundRequest) -> ValidationResult:
        names = self.header_names
        headers = request.headers
        event_type = headers.get(names.event_type)
        delivery_id = headers.get(names.delivery_id)

        size_check = self.guard.check_size(headers.get(names.content_length))
        if not size_check.valid:
            return self._reject(size_check.reason, size_check.detail, delivery_id)

        event_check = self.guard.check_event_type(event_type)
        if not event_check.valid:
            return self._reject(event_check.reason, event_check.detail, delivery_id)

        try:
            raw_body = await request.body()
        except Exception as e:
            logger.warning(
                "Failed to read webhook body",
                extra={"delivery_id": delivery_id, "error": str(e)},
            )
            return self._reject(
                RejectionReason.UNREADABLE_BODY,
                "Failed to read request body",
                delivery_id,
            )

        signature_check = self.verifier.verify(
            raw_body,
            headers.get(names.signature),
            self.secret,
        )
        if not signature_check.valid:
            return self._reject(
                signature_check.reason, signature_check.detail, delivery_id
            )

        timestamp = None
        if names.delivery_timestamp:
            timestamp = headers.get(names.delivery_timestamp)

        replay_check = self.replay_guard.admit(delivery_id, timestamp)
        if replay_check.is_replay:
            return self._reject(replay_check.reason, None, delivery_id)
        if (
            replay_check.reason == RejectionReason.MISSING_DELIVERY_ID
            and self.require_delivery_id
        ):
            return self._reject(
                RejectionReason.MISSING_DELIVERY_ID,
                "No delivery ID provided",
                delivery_id,
            )

        try:
            payload = json.loads(raw_body)
        except (ValueError, TypeError) as e:
            return self._reject(
                RejectionReason.MALFORMED_JSON,
                f"Invalid JSON payload: {e}",
                delivery_id,
            )

        event = WebhookEvent(
            event_type=event_type,
            delivery_id=delivery_id,
            payload=payload,
        )
        logger.info(
            "Webhook delivery accepted",
            extra={
                "delivery_id": delivery_id,
                "event_type": event_type,
                "action": event.action,
            },
        )
        return ValidationResult.accepted(event)

    def _reject(
        self,
        reason: RejectionReason,
        detail: Optional[str],
        delivery_id: Optional[str],
    ) -> ValidationResult:
        logger.warning(
            "Webhook delivery rejected",
            extra={
                "delivery_id": delivery_id,
                "reason": reason.value,
                "detail": detail,
            },
        )
        return ValidationResult.rejected(reason, detail)

