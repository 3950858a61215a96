"""HMAC-SHA256 signature verification for webhook deliveries.

GitHub signs every delivery with the shared webhook secret and sends the
digest as ``sha256=<hex>``. The expected value is recomputed over the raw,
unparsed body and compared in constant time so the comparison cost does not
depend on the position of the first differing byte.
"""

import hashlib
import hmac
import logging
import secrets
from typing import Optional, Union

from src.gatekeeper.webhook.models import CheckResult, RejectionReason


logger = logging.getLogger(__name__)

SIGNATURE_PREFIX = "sha256="


def _as_bytes(value: Union[bytes, str]) -> bytes:
    if isinstance(value, bytes):
        return value
    return value.encode("utf-8")


def compute_signature(body: Union[bytes, str], secret: str) -> str:
    """Compute the ``sha256=<hex>`` signature of a body.

    Args:
        body: Raw request body.
        secret: Shared webhook secret.

    Returns:
        The signature header value GitHub would send for this body.
    """
    digest = hmac.new(
        key=secret.encode("utf-8"),
        msg=_as_bytes(body),
        digestmod=hashlib.sha256,
    ).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


def generate_webhook_secret(length: int = 32) -> str:
    """Generate a random webhook secret as a hex string of ``length`` bytes."""
    if length < 1:
        raise ValueError("length must be at least 1")
    return secrets.token_hex(length)


class SignatureVerifier:
    """Verifies webhook signatures against a shared secret.

    The verifier is stateless; one instance can be shared by every request.

    Example:
        >>> verifier = SignatureVerifier()
        >>> body = b'{"action": "opened"}'
        >>> result = verifier.verify(body, compute_signature(body, "s3cret"), "s3cret")
        >>> result.valid
        True
    """

    def verify(
        self,
        raw_body: Union[bytes, str],
        provided_signature: Optional[str],
        shared_secret: Optional[str],
    ) -> CheckResult:
        """Check that ``provided_signature`` signs ``raw_body``.

        Args:
            raw_body: The body exactly as received.
            provided_signature: Value of the signature header, if any.
            shared_secret: The configured webhook secret.

        Returns:
            CheckResult with reason MISSING_CREDENTIAL, MALFORMED_SIGNATURE
            or SIGNATURE_MISMATCH on failure.
        """
        if not provided_signature or not shared_secret:
            return CheckResult.reject(
                RejectionReason.MISSING_CREDENTIAL,
                "Missing signature or secret",
            )

        expected = compute_signature(raw_body, shared_secret).encode("utf-8")
        provided = provided_signature.encode("utf-8")

        # compare_digest needs equal-length inputs to stay constant time
        if len(provided) != len(expected):
            logger.warning(
                "Webhook signature has unexpected length",
                extra={
                    "provided_length": len(provided),
                    "expected_length": len(expected),
                },
            )
            return CheckResult.reject(
                RejectionReason.MALFORMED_SIGNATURE,
                "Invalid signature format",
            )

        if not hmac.compare_digest(provided, expected):
            logger.warning("Webhook signature verification failed")
            return CheckResult.reject(
                RejectionReason.SIGNATURE_MISMATCH,
                "Signature verification failed",
            )

        return CheckResult.ok()


def verify_webhook_signature(
    raw_body: Union[bytes, str],
    provided_signature: Optional[str],
    shared_secret: Optional[str],
) -> CheckResult:
    """Functional shortcut for ``SignatureVerifier().verify``."""
    return SignatureVerifier().verify(raw_body, provided_signature, shared_secret)
