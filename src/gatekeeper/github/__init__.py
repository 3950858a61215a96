"""GitHub API clients.

Includes rate limiting and retry logic for API resilience.
"""

from src.gatekeeper.github.errors import GitHubAPIError, RateLimitError
from src.gatekeeper.github.client import GitHubAppClient, GitHubClient

__all__ = [
    "GitHubAPIError",
    "GitHubAppClient",
    "GitHubClient",
    "RateLimitError",
]
