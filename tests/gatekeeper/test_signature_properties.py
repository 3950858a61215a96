"""Property-based tests for webhook signature verification.

Testing Configuration:
- Library: Hypothesis (Python)
- Minimum iterations: 100 per property test
"""

from hypothesis import assume, given, settings, strategies as st

from src.gatekeeper.webhook.models import RejectionReason
from src.gatekeeper.webhook.signature import SignatureVerifier, compute_signature


secrets_strategy = st.text(
    alphabet=st.characters(blacklist_categories=("Cs",)),
    min_size=1,
    max_size=64,
)
bodies = st.binary(max_size=4096)
HEX_DIGITS = "0123456789abcdef"

verifier = SignatureVerifier()


@settings(max_examples=100)
@given(body=bodies, secret=secrets_strategy)
def test_signature_of_body_always_verifies(body: bytes, secret: str):
    """Property: verify(b, sign(b, s), s) is valid for all bodies and secrets."""
    result = verifier.verify(body, compute_signature(body, secret), secret)
    assert result.valid


@settings(max_examples=100)
@given(
    body=bodies,
    secret=secrets_strategy,
    index=st.integers(min_value=0, max_value=63),
    replacement=st.sampled_from(HEX_DIGITS),
)
def test_single_digit_change_is_mismatch(
    body: bytes,
    secret: str,
    index: int,
    replacement: str,
):
    """Property: changing one hex digit of a valid signature fails."""
    signature = compute_signature(body, secret)
    position = len("sha256=") + index
    assume(signature[position] != replacement)
    mutated = signature[:position] + replacement + signature[position + 1:]

    result = verifier.verify(body, mutated, secret)

    assert result.reason == RejectionReason.SIGNATURE_MISMATCH


@settings(max_examples=100)
@given(body=bodies, secret=secrets_strategy, extra=st.text(min_size=1, max_size=8))
def test_length_change_is_malformed(body: bytes, secret: str, extra: str):
    """Property: appending to a valid signature is reported as malformed."""
    result = verifier.verify(body, compute_signature(body, secret) + extra, secret)
    assert result.reason == RejectionReason.MALFORMED_SIGNATURE


@settings(max_examples=100)
@given(body=bodies, secret=secrets_strategy, other=secrets_strategy)
def test_other_secret_never_verifies(body: bytes, secret: str, other: str):
    """Property: a signature made with a different secret is rejected."""
    # HMAC zero-pads short keys, so trailing NULs do not change the key
    assume(secret.rstrip("\x00") != other.rstrip("\x00"))
    result = verifier.verify(body, compute_signature(body, other), secret)
    assert not result.valid
