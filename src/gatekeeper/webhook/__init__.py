"""Inbound webhook validation.

Checks run cheapest first and stop at the first failure; every outcome is a
typed result rather than an exception.
"""

from src.gatekeeper.webhook.models import (
    CheckResult,
    DeliveryRecord,
    RejectionReason,
    ReplayResult,
    ValidationResult,
    WebhookEvent,
)
from src.gatekeeper.webhook.signature import (
    SignatureVerifier,
    compute_signature,
    generate_webhook_secret,
)
from src.gatekeeper.webhook.guards import PayloadGuard
from src.gatekeeper.webhook.replay import (
    DeliveryStore,
    InMemoryDeliveryStore,
    ReplayGuard,
)
from src.gatekeeper.webhook.pipeline import (
    GITHUB_HEADER_NAMES,
    ValidationPipeline,
    WebhookHeaderNames,
    WebhookRequest,
)

__all__ = [
    # Models
    "CheckResult",
    "DeliveryRecord",
    "RejectionReason",
    "ReplayResult",
    "ValidationResult",
    "WebhookEvent",
    # Checks
    "PayloadGuard",
    "SignatureVerifier",
    "compute_signature",
    "generate_webhook_secret",
    "DeliveryStore",
    "InMemoryDeliveryStore",
    "ReplayGuard",
    # Pipeline
    "GITHUB_HEADER_NAMES",
    "ValidationPipeline",
    "WebhookHeaderNames",
    "WebhookRequest",
]
