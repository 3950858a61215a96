"""Data models for inbound webhook validation.

Validation failures are expected, data-dependent outcomes, so every check
returns a result model tagged with a RejectionReason instead of raising.
The models use Pydantic, consistent with the auth and config models.
"""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class RejectionReason(str, Enum):
    """Why a webhook delivery was not accepted.

    Attributes:
        MISSING_CREDENTIAL: Signature header or shared secret absent.
        MALFORMED_SIGNATURE: Signature length differs from the expected digest.
        SIGNATURE_MISMATCH: Signature does not match the body.
        PAYLOAD_TOO_LARGE: Declared Content-Length exceeds the ceiling.
        INVALID_LENGTH_HEADER: Content-Length is not a non-negative integer.
        MISSING_EVENT_TYPE: Event type header absent.
        UNSUPPORTED_EVENT_TYPE: Event type not in the allow-list.
        STALE_TIMESTAMP: Delivery timestamp outside the freshness window.
        ALREADY_PROCESSED: Delivery id seen within the freshness window.
        MISSING_DELIVERY_ID: Delivery id header absent.
        MALFORMED_JSON: Body is not valid JSON.
        UNREADABLE_BODY: The request body could not be read.
    """

    MISSING_CREDENTIAL = "missing_credential"
    MALFORMED_SIGNATURE = "malformed_signature"
    SIGNATURE_MISMATCH = "signature_mismatch"
    PAYLOAD_TOO_LARGE = "payload_too_large"
    INVALID_LENGTH_HEADER = "invalid_length_header"
    MISSING_EVENT_TYPE = "missing_event_type"
    UNSUPPORTED_EVENT_TYPE = "unsupported_event_type"
    STALE_TIMESTAMP = "stale_timestamp"
    ALREADY_PROCESSED = "already_processed"
    MISSING_DELIVERY_ID = "missing_delivery_id"
    MALFORMED_JSON = "malformed_json"
    UNREADABLE_BODY = "unreadable_body"


SIGNATURE_REASONS = frozenset(
    {
        RejectionReason.MISSING_CREDENTIAL,
        RejectionReason.MALFORMED_SIGNATURE,
        RejectionReason.SIGNATURE_MISMATCH,
    }
)


class CheckResult(BaseModel):
    """Outcome of a single admission check.

    Attributes:
        valid: Whether the check passed.
        reason: Rejection reason when the check failed.
        detail: Human-readable detail for logs (never returned to callers).
        measured: Measured value for size checks.
        limit: Configured limit for size checks.
        declared: Offending header value for event-type checks.
    """

    model_config = ConfigDict(frozen=True)

    valid: bool
    reason: Optional[RejectionReason] = None
    detail: Optional[str] = None
    measured: Optional[int] = None
    limit: Optional[int] = None
    declared: Optional[str] = None

    @classmethod
    def ok(cls) -> "CheckResult":
        return cls(valid=True)

    @classmethod
    def reject(
        cls,
        reason: RejectionReason,
        detail: Optional[str] = None,
        **kwargs: Any,
    ) -> "CheckResult":
        return cls(valid=False, reason=reason, detail=detail, **kwargs)


class ReplayResult(BaseModel):
    """Outcome of replay admission.

    A missing delivery id yields ``is_replay=False`` with
    ``reason=MISSING_DELIVERY_ID`` so policy layers can tell it apart from a
    clean pass (``reason is None``).
    """

    model_config = ConfigDict(frozen=True)

    is_replay: bool
    reason: Optional[RejectionReason] = None

    @property
    def admitted(self) -> bool:
        """True only for a clean pass with a recorded delivery id."""
        return not self.is_replay and self.reason is None


class DeliveryRecord(BaseModel):
    """A delivery id accepted by the replay guard."""

    model_config = ConfigDict(frozen=True)

    delivery_id: str = Field(..., min_length=1)
    received_at_ms: int = Field(..., ge=0)

    def age_ms(self, now_ms: int) -> int:
        return now_ms - self.received_at_ms


class WebhookEvent(BaseModel):
    """A delivery that passed every check.

    The payload is handed downstream untouched; the gatekeeper does not
    interpret its business content.

    Attributes:
        event_type: Value of the event type header (e.g. "pull_request").
        delivery_id: Value of the delivery id header, if any.
        payload: Parsed JSON body.
    """

    model_config = ConfigDict(frozen=True)

    event_type: str
    delivery_id: Optional[str] = None
    payload: Any = None

    @property
    def action(self) -> Optional[str]:
        """The payload's ``action`` field when the payload is an object."""
        if isinstance(self.payload, dict):
            action = self.payload.get("action")
            if isinstance(action, str):
                return action
        return None


class ValidationResult(BaseModel):
    """Outcome of the full validation pipeline.

    Attributes:
        valid: Whether the delivery was accepted.
        reason: Rejection reason when ``valid`` is False.
        detail: Log-only detail for the rejection.
        event: The accepted event when ``valid`` is True.
    """

    model_config = ConfigDict(frozen=True)

    valid: bool
    reason: Optional[RejectionReason] = None
    detail: Optional[str] = None
    event: Optional[WebhookEvent] = None

    @property
    def event_type(self) -> Optional[str]:
        return self.event.event_type if self.event else None

    @property
    def payload(self) -> Any:
        return self.event.payload if self.event else None

    @classmethod
    def accepted(cls, event: WebhookEvent) -> "ValidationResult":
        return cls(valid=True, event=event)

    @classmethod
    def rejected(
        cls,
        reason: RejectionReason,
        detail: Optional[str] = None,
    ) -> "ValidationResult":
        return cls(valid=False, reason=reason, detail=detail)
