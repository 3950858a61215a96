"""GitHub App identity assertions.

A GitHub App authenticates as itself with a short-lived RS256 JWT signed by
the App's private key. GitHub rejects assertions whose lifetime exceeds ten
minutes, and tolerates some clock drift only if ``iat`` is in the past, so
every assertion is issued 60 seconds in the past and expires 600 seconds
after the real issuance instant.
"""

import logging
import time
from typing import Callable, List, Optional

import jwt
from pydantic import BaseModel, ConfigDict

from src.gatekeeper.auth.models import AppCredentialClaims


logger = logging.getLogger(__name__)

JWT_ALGORITHM = "RS256"
CLOCK_DRIFT_SECONDS = 60
MAX_ASSERTION_LIFETIME_SECONDS = 600


class SigningError(Exception):
    """Raised when an App assertion cannot be produced.

    Covers missing or malformed configuration as well as signing failures.
    These are not transient: signing cannot proceed until the configuration
    is fixed.

    Attributes:
        message: Human-readable error description.
        original_error: The underlying exception, if any.
    """

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        self.message = message
        self.original_error = original_error
        super().__init__(message)


class ConfigurationReport(BaseModel):
    """Result of checking the GitHub App credentials."""

    model_config = ConfigDict(frozen=True)

    is_valid: bool
    errors: List[str]
    app_id: Optional[str] = None
    has_private_key: bool = False


def normalize_private_key(raw_key: str) -> str:
    """Normalize a PEM private key taken from an environment variable.

    Strips surrounding whitespace and one layer of wrapping quotes, and
    turns escaped ``\\n`` sequences into real newlines.
    """
    key = raw_key.strip()
    if len(key) >= 2 and key[0] == key[-1] and key[0] in ("'", '"'):
        key = key[1:-1]
    return key.replace("\\n", "\n")


def build_claims(app_id: str, now: Optional[float] = None) -> AppCredentialClaims:
    """Build the claim set for an App assertion issued at ``now``."""
    issued = int(time.time() if now is None else now)
    return AppCredentialClaims(
        iss=app_id,
        iat=issued - CLOCK_DRIFT_SECONDS,
        exp=issued + MAX_ASSERTION_LIFETIME_SECONDS,
    )


def mint_app_jwt(
    app_id: Optional[str],
    private_key: Optional[str],
    now: Optional[float] = None,
) -> str:
    """Sign an App assertion.

    Args:
        app_id: The GitHub App id (the ``iss`` claim).
        private_key: PEM-encoded RSA private key.
        now: Issuance time in epoch seconds (defaults to the current time).

    Returns:
        The encoded JWT.

    Raises:
        SigningError: If the app id or key is missing, the key is
            malformed, or signing fails.
    """
    if not app_id:
        raise SigningError("GitHub App ID is not configured")
    if not private_key:
        raise SigningError("GitHub App private key is not configured")

    claims = build_claims(str(app_id), now)
    try:
        return jwt.encode(
            claims.model_dump(),
            normalize_private_key(private_key),
            algorithm=JWT_ALGORITHM,
        )
    except Exception as e:
        logger.error(
            "Failed to sign GitHub App JWT",
            extra={"app_id": app_id, "error_type": type(e).__name__},
        )
        raise SigningError(f"Failed to generate GitHub App JWT: {e}", e) from e


class CredentialMinter:
    """Mints App assertions for one GitHub App.

    Attributes:
        app_id: The GitHub App id.

    Example:
        >>> minter = CredentialMinter(app_id="12345", private_key=pem)
        >>> assertion = minter.mint()
    """

    def __init__(
        self,
        app_id: Optional[str],
        private_key: Optional[str],
        clock: Callable[[], float] = time.time,
    ):
        self.app_id = app_id
        self._private_key = private_key
        self._clock = clock

    @property
    def has_private_key(self) -> bool:
        return bool(self._private_key)

    def mint(self) -> str:
        """Sign a fresh assertion.

        Raises:
            SigningError: On missing configuration or signing failure.
        """
        return mint_app_jwt(self.app_id, self._private_key, now=self._clock())

    def validate_configuration(self) -> ConfigurationReport:
        """Check the configured credentials by attempting a mint."""
        errors: List[str] = []
        if not self.app_id:
            errors.append("GitHub App ID is not set")
        if not self._private_key:
            errors.append("GitHub App private key is not set")
        else:
            try:
                mint_app_jwt(self.app_id or "0", self._private_key, now=self._clock())
            except SigningError:
                errors.append("Invalid GitHub App private key format")

        return ConfigurationReport(
            is_valid=not errors,
            errors=errors,
            app_id=self.app_id or None,
            has_private_key=self.has_private_key,
        )

    def __repr__(self) -> str:
        return f"CredentialMinter(app_id={self.app_id!r})"
