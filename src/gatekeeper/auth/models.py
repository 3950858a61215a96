"""Data models for GitHub App authentication.

Source:
- POST /app/installations/{installation_id}/access_tokens response
- GET /app/installations/{installation_id} response
"""

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class AppCredentialClaims(BaseModel):
    """Claims of a GitHub App identity assertion.

    Attributes:
        iss: The GitHub App id.
        iat: Issued-at, epoch seconds, backdated for clock drift.
        exp: Expiry, epoch seconds.
    """

    model_config = ConfigDict(frozen=True)

    iss: str = Field(..., min_length=1)
    iat: int
    exp: int

    @property
    def lifetime_seconds(self) -> int:
        return self.exp - self.iat


class InstallationAccessToken(BaseModel):
    """Raw result of exchanging an App assertion for an installation token.

    Attributes:
        token: The installation access token.
        expires_at: Expiry reported by the platform, if any.
        permissions: Granted permission name to scope ("read", "write").
        repository_selection: "all" or "selected", if reported.
    """

    model_config = ConfigDict(frozen=True)

    token: str = Field(..., min_length=1)
    expires_at: Optional[datetime] = None
    permissions: Dict[str, str] = Field(default_factory=dict)
    repository_selection: Optional[str] = None


class InstallationTokenEntry(BaseModel):
    """A cached installation token.

    Entries are immutable; the cache replaces them on refresh and hands out
    the same frozen instance to readers.

    Attributes:
        installation_id: The installation the token is scoped to.
        token: The bearer token.
        expires_at_ms: Expiry in epoch milliseconds.
        permissions: Granted permission name to scope.
    """

    model_config = ConfigDict(frozen=True)

    installation_id: int
    token: str = Field(..., min_length=1, repr=False)
    expires_at_ms: int
    permissions: Dict[str, str] = Field(default_factory=dict)

    def remaining_ms(self, now_ms: int) -> int:
        return self.expires_at_ms - now_ms

    def is_fresh(self, now_ms: int, refresh_buffer_ms: int) -> bool:
        """Whether the token is still usable outside the refresh buffer."""
        return self.remaining_ms(now_ms) > refresh_buffer_ms


class InstallationInfo(BaseModel):
    """A GitHub App installation as reported by the platform."""

    model_config = ConfigDict(frozen=True)

    id: int
    account_id: Optional[int] = None
    account_login: Optional[str] = None
    account_type: Optional[str] = None
    permissions: Dict[str, str] = Field(default_factory=dict)
    repository_selection: Optional[str] = None
    suspended_at: Optional[datetime] = None

    @property
    def is_suspended(self) -> bool:
        return self.suspended_at is not None

    @classmethod
    def from_github_response(cls, data: Dict[str, Any]) -> "InstallationInfo":
        """Create from a GitHub installation API response."""
        account = data.get("account") or {}
        return cls(
            id=data["id"],
            account_id=account.get("id"),
            account_login=account.get("login"),
            account_type=account.get("type"),
            permissions=data.get("permissions") or {},
            repository_selection=data.get("repository_selection"),
            suspended_at=data.get("suspended_at"),
        )
