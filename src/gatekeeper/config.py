"""Gatekeeper configuration using pydantic-settings.

Settings are read from environment variables with the GATEKEEPER_ prefix
(e.g. GATEKEEPER_GITHUB_WEBHOOK_SECRET). The surrounding system supplies the
shared webhook secret, the GitHub App identity and the event allow-list;
everything else has a default matching GitHub's documented limits.
"""

import json
from typing import Annotated, Any, List, Optional

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from src.gatekeeper.auth.credentials import normalize_private_key


DEFAULT_ALLOWED_EVENTS = [
    "pull_request",
    "pull_request_review",
    "installation",
    "ping",
]


class GatekeeperSettings(BaseSettings):
    """Webhook gate and GitHub App configuration from environment variables.

    Required fields:
    - github_webhook_secret: Shared secret used to sign webhook deliveries

    The GitHub App fields are optional so the webhook gate can run on its
    own; outbound token minting fails fast with SigningError when they are
    missing.
    """

    model_config = SettingsConfigDict(
        env_prefix="GATEKEEPER_",
        case_sensitive=False,
    )

    # -------------------------------------------------------------------------
    # Inbound webhooks
    # -------------------------------------------------------------------------
    github_webhook_secret: str

    # Comma-separated or JSON list in the environment
    allowed_event_types: Annotated[List[str], NoDecode] = list(DEFAULT_ALLOWED_EVENTS)

    # 5 MiB
    max_payload_bytes: int = 5 * 1024 * 1024

    freshness_window_seconds: float = 300.0

    replay_sweep_probability: float = 0.01

    require_delivery_id: bool = False

    # X-Hub-Signature-256 / X-GitHub-Event / X-GitHub-Delivery instead of
    # the generic X-Signature / X-Event-Type / X-Delivery-Id names
    use_github_headers: bool = True

    # -------------------------------------------------------------------------
    # GitHub App
    # -------------------------------------------------------------------------
    github_app_id: Optional[str] = None

    github_app_private_key: Optional[str] = None

    github_base_url: str = "https://api.github.com"

    refresh_buffer_seconds: float = 300.0

    token_lifetime_seconds: float = 3600.0

    # -------------------------------------------------------------------------
    # Server
    # -------------------------------------------------------------------------
    host: str = "0.0.0.0"

    port: int = 8080

    log_level: str = "INFO"

    # -------------------------------------------------------------------------
    # Validators
    # -------------------------------------------------------------------------
    @field_validator("github_webhook_secret")
    @classmethod
    def validate_webhook_secret(cls, v: str) -> str:
        """Validate that webhook secret is not empty."""
        if not v or not v.strip():
            raise ValueError("github_webhook_secret cannot be empty")
        return v

    @field_validator("allowed_event_types", mode="before")
    @classmethod
    def parse_allowed_event_types(cls, v: Any) -> Any:
        """Accept a JSON list or a comma-separated string."""
        if isinstance(v, str):
            stripped = v.strip()
            if stripped.startswith("["):
                return json.loads(stripped)
            return [item.strip() for item in stripped.split(",") if item.strip()]
        return v

    @field_validator("allowed_event_types")
    @classmethod
    def validate_allowed_event_types(cls, v: List[str]) -> List[str]:
        """Ensure at least one event type is allowed."""
        if not v:
            raise ValueError("allowed_event_types cannot be empty")
        return v

    @field_validator("github_app_private_key")
    @classmethod
    def normalize_app_private_key(cls, v: Optional[str]) -> Optional[str]:
        """Unescape newlines and strip quotes from a PEM taken from env."""
        if v is None or not v.strip():
            return None
        return normalize_private_key(v)

    @field_validator("github_app_id")
    @classmethod
    def validate_app_id(cls, v: Optional[str]) -> Optional[str]:
        if v is None or not v.strip():
            return None
        return v.strip()

    @field_validator("max_payload_bytes")
    @classmethod
    def validate_max_payload_bytes(cls, v: int) -> int:
        """Validate that the payload ceiling is positive."""
        if v < 1:
            raise ValueError("max_payload_bytes must be at least 1")
        return v

    @field_validator(
        "freshness_window_seconds",
        "refresh_buffer_seconds",
        "token_lifetime_seconds",
    )
    @classmethod
    def validate_positive_duration(cls, v: float) -> float:
        """Validate that durations are positive."""
        if v <= 0:
            raise ValueError("durations must be positive")
        return v

    @field_validator("replay_sweep_probability")
    @classmethod
    def validate_sweep_probability(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError("replay_sweep_probability must be between 0 and 1")
        return v

    @field_validator("github_base_url")
    @classmethod
    def validate_github_base_url(cls, v: str) -> str:
        """Validate that the API base URL is an http(s) URL."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("github_base_url must start with http:// or https://")
        return v.rstrip("/")

    @model_validator(mode="after")
    def validate_refresh_buffer(self) -> "GatekeeperSettings":
        """Ensure a freshly issued token starts outside the refresh buffer."""
        if self.refresh_buffer_seconds >= self.token_lifetime_seconds:
            raise ValueError(
                "refresh_buffer_seconds must be less than token_lifetime_seconds"
            )
        return self

    @field_validator("port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        """Validate that port is in valid range."""
        if not 1 <= v <= 65535:
            raise ValueError("port must be between 1 and 65535")
        return v

    @property
    def github_app_configured(self) -> bool:
        """Whether both GitHub App credentials are present."""
        return bool(self.github_app_id and self.github_app_private_key)


def get_settings() -> GatekeeperSettings:
    """Create and return GatekeeperSettings instance.

    Returns:
        GatekeeperSettings: Configured settings instance.

    Raises:
        pydantic.ValidationError: If required fields are missing or invalid.
    """
    return GatekeeperSettings()
