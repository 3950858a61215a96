"""Errors raised by the GitHub platform clients."""

import json
import time
from typing import Any, Optional

import httpx


def _int_header(headers: httpx.Headers, name: str) -> Optional[int]:
    value = headers.get(name)
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


class GitHubAPIError(Exception):
    """A GitHub API request failed.

    Attributes:
        message: Human-readable error description.
        status_code: HTTP status, or None if no response was received.
        response_body: Raw response text, if any.
        request_url: URL of the failed request.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response_body: Optional[str] = None,
        request_url: Optional[str] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.response_body = response_body
        self.request_url = request_url
        super().__init__(message)

    @classmethod
    def from_response(cls, response: httpx.Response) -> "GitHubAPIError":
        return cls(
            message=f"GitHub API error: {response.status_code}",
            status_code=response.status_code,
            response_body=response.text,
            request_url=str(response.url),
        )

    @property
    def github_message(self) -> Optional[str]:
        """The ``message`` field of GitHub's JSON error body, e.g. "Bad credentials"."""
        if not self.response_body:
            return None
        try:
            data = json.loads(self.response_body)
        except ValueError:
            return None
        message = data.get("message") if isinstance(data, dict) else None
        return message if isinstance(message, str) else None


class RateLimitError(GitHubAPIError):
    """GitHub refused the request because a rate limit is exhausted.

    GitHub reports an exhausted primary rate limit as 403, so callers that
    treat 403 as an authentication failure must check for this first.

    Attributes:
        reset_at: Unix timestamp when the limit resets.
        retry_after: Seconds to wait before retrying.
    """

    def __init__(
        self,
        message: str,
        reset_at: Optional[int] = None,
        retry_after: Optional[int] = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.reset_at = reset_at
        self.retry_after = retry_after

    @classmethod
    def from_response(cls, response: httpx.Response) -> "RateLimitError":
        """Build from a 403/429 response, preferring ``Retry-After``."""
        reset_at = _int_header(response.headers, "x-ratelimit-reset")
        retry_after = _int_header(response.headers, "retry-after")
        if retry_after is None and reset_at is not None:
            retry_after = max(0, reset_at - int(time.time()))
        return cls(
            message="GitHub API rate limit exceeded",
            reset_at=reset_at,
            retry_after=retry_after,
            status_code=response.status_code,
            response_body=response.text,
            request_url=str(response.url),
        )


def is_rate_limited(response: httpx.Response) -> bool:
    """Whether ``response`` signals an exhausted rate limit."""
    if response.status_code == 429:
        return True
    return (
        response.status_code == 403
        and _int_header(response.headers, "x-ratelimit-remaining") == 0
    )
