"""Cheap header-only admission checks run before the body is read.

Both checks are independent and order-independent. A missing
Content-Length header cannot be enforced here and is let through; the
request body is not measured after the fact.
"""

import logging
from typing import Collection, Optional

from src.gatekeeper.webhook.models import CheckResult, RejectionReason


logger = logging.getLogger(__name__)

DEFAULT_MAX_PAYLOAD_BYTES = 5 * 1024 * 1024


class PayloadGuard:
    """Size and event-type admission checks.

    Attributes:
        max_bytes: Largest accepted declared Content-Length.
        allowed_event_types: Event types accepted by the gate.
    """

    def __init__(
        self,
        allowed_event_types: Collection[str],
        max_bytes: int = DEFAULT_MAX_PAYLOAD_BYTES,
    ):
        if max_bytes < 1:
            raise ValueError("max_bytes must be at least 1")
        self.max_bytes = max_bytes
        self.allowed_event_types = frozenset(allowed_event_types)

    def check_size(self, declared_content_length: Optional[str]) -> CheckResult:
        return check_size(declared_content_length, self.max_bytes)

    def check_event_type(self, declared_type: Optional[str]) -> CheckResult:
        return check_event_type(declared_type, self.allowed_event_types)


def check_size(
    declared_content_length: Optional[str],
    max_bytes: int = DEFAULT_MAX_PAYLOAD_BYTES,
) -> CheckResult:
    """Validate the declared Content-Length against a ceiling.

    Args:
        declared_content_length: Raw Content-Length header value, if any.
        max_bytes: Largest accepted size in bytes.

    Returns:
        CheckResult; PAYLOAD_TOO_LARGE carries ``measured`` and ``limit``.
    """
    if declared_content_length is None:
        return CheckResult.ok()

    text = declared_content_length.strip()
    # ASCII digits only: int() would also take "+5", "1_000" and non-ASCII digits
    if not (text.isascii() and text.isdigit()):
        return CheckResult.reject(
            RejectionReason.INVALID_LENGTH_HEADER,
            "Invalid content-length header",
        )
    size = int(text)

    if size > max_bytes:
        logger.warning(
            "Webhook payload too large",
            extra={"size": size, "max_bytes": max_bytes},
        )
        return CheckResult.reject(
            RejectionReason.PAYLOAD_TOO_LARGE,
            f"Payload too large: {size} bytes (max: {max_bytes})",
            measured=size,
            limit=max_bytes,
        )

    return CheckResult.ok()


def check_event_type(
    declared_type: Optional[str],
    allow_list: Collection[str],
) -> CheckResult:
    """Validate the declared event type against an allow-list."""
    if not declared_type:
        return CheckResult.reject(
            RejectionReason.MISSING_EVENT_TYPE,
            "Missing event type header",
        )

    if declared_type not in allow_list:
        return CheckResult.reject(
            RejectionReason.UNSUPPORTED_EVENT_TYPE,
            f"Unsupported event type: {declared_type}",
            declared=declared_type,
        )

    return CheckResult.ok()
