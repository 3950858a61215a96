"""GitHub API clients for App and installation authentication.

- GitHubClient: requests authorized by a token provider, typically an
  InstallationTokenCache bound to one installation
- GitHubAppClient: App-level endpoints authorized by an App assertion,
  including the installation token exchange

Transient failures are retried with jittered exponential backoff. Rate
limit responses are raised immediately as RateLimitError.
"""

import asyncio
import logging
import random
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from src.gatekeeper.auth.credentials import CredentialMinter
from src.gatekeeper.auth.models import InstallationAccessToken, InstallationInfo
from src.gatekeeper.github.errors import GitHubAPIError, RateLimitError, is_rate_limited


logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.github.com"
API_VERSION = "2022-11-28"
USER_AGENT = "Gatekeeper/1.0"

TokenProvider = Callable[[], Awaitable[str]]


class GitHubClient:
    """Async GitHub REST client that resolves its bearer token per request.

    Because the token is fetched from ``token_provider`` on every attempt,
    one client instance keeps working across token refreshes and
    invalidations; nothing needs to be rebuilt.

    Attributes:
        base_url: API root; override for GitHub Enterprise Server.
        max_retries: Retries after the first attempt for transient failures.
        base_delay: Backoff base in seconds.
        max_delay: Backoff ceiling in seconds.
        timeout: Per-request timeout in seconds.

    Example:
        >>> client = GitHubClient(token_provider=cache.token_provider(12345))
        >>> async with client:
        ...     repos = await client.list_installation_repositories()
    """

    RETRYABLE_STATUS_CODES = frozenset({408, 500, 502, 503, 504})

    def __init__(
        self,
        token_provider: TokenProvider,
        base_url: str = DEFAULT_BASE_URL,
        max_retries: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.token_provider = token_provider
        self.base_url = base_url.rstrip("/")
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def client(self) -> httpx.AsyncClient:
        """The underlying HTTP client, created lazily."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers={
                    "Accept": "application/vnd.github+json",
                    "X-GitHub-Api-Version": API_VERSION,
                    "User-Agent": USER_AGENT,
                },
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    async def __aenter__(self) -> "GitHubClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    def _backoff(self, attempt: int) -> float:
        # Full jitter
        return random.uniform(0, min(self.base_delay * (2 ** attempt), self.max_delay))

    async def _wait_before_retry(self, attempt: int, path: str, **context: Any) -> None:
        delay = self._backoff(attempt)
        logger.warning(
            "Retrying GitHub API request",
            extra={"path": path, "attempt": attempt + 1, "delay": delay, **context},
        )
        await asyncio.sleep(delay)

    async def _request(
        self,
        method: str,
        path: str,
        json_data: Optional[Dict[str, Any]] = None,
        token: Optional[str] = None,
        max_retries: Optional[int] = None,
    ) -> httpx.Response:
        """Send a request, retrying transient failures.

        Args:
            method: HTTP method.
            path: API path relative to ``base_url``.
            json_data: Optional JSON body.
            token: Bearer token to use instead of the token provider.
            max_retries: Override of ``self.max_retries`` for this call.

        Raises:
            RateLimitError: On a rate limit response (never retried).
            GitHubAPIError: On any other error response, or when every
                attempt failed at the transport level.
        """
        retries = self.max_retries if max_retries is None else max_retries
        transport_error: Optional[httpx.TransportError] = None

        for attempt in range(retries + 1):
            can_retry = attempt < retries
            bearer = token if token is not None else await self.token_provider()
            try:
                response = await self.client.request(
                    method,
                    path,
                    json=json_data,
                    headers={"Authorization": f"Bearer {bearer}"},
                )
            except httpx.TransportError as e:
                transport_error = e
                if can_retry:
                    await self._wait_before_retry(attempt, path, error=str(e))
                continue

            if is_rate_limited(response):
                error = RateLimitError.from_response(response)
                logger.warning(
                    "GitHub API rate limit exceeded",
                    extra={
                        "path": path,
                        "reset_at": error.reset_at,
                        "retry_after": error.retry_after,
                    },
                )
                raise error

            if response.status_code in self.RETRYABLE_STATUS_CODES and can_retry:
                await self._wait_before_retry(
                    attempt, path, status_code=response.status_code
                )
                continue

            if response.is_error:
                error = GitHubAPIError.from_response(response)
                logger.error(
                    "GitHub API error",
                    extra={
                        "method": method,
                        "path": path,
                        "status_code": response.status_code,
                        "github_message": error.github_message,
                    },
                )
                raise error

            return response

        logger.error(
            "GitHub API unreachable",
            extra={"method": method, "path": path, "error": str(transport_error)},
        )
        raise GitHubAPIError(
            message=f"Request failed after {retries} retries: {transport_error}",
            request_url=f"{self.base_url}{path}",
        )

    async def get_json(self, path: str) -> Any:
        response = await self._request("GET", path)
        return response.json()

    async def list_installation_repositories(self) -> List[Dict[str, Any]]:
        """Repositories visible to the installation token (first page)."""
        data = await self.get_json("/installation/repositories")
        return data.get("repositories", [])


class GitHubAppClient(GitHubClient):
    """Client for endpoints that require App (JWT) authorization.

    Implements the TokenExchanger protocol consumed by
    InstallationTokenCache.

    Example:
        >>> app_client = GitHubAppClient(minter)
        >>> installations = await app_client.list_installations()
    """

    def __init__(self, minter: CredentialMinter, **kwargs: Any):
        self.minter = minter

        async def mint() -> str:
            return minter.mint()

        super().__init__(token_provider=mint, **kwargs)

    async def exchange(
        self,
        assertion: str,
        installation_id: int,
    ) -> InstallationAccessToken:
        """Trade ``assertion`` for an installation token in one round trip.

        Raises:
            GitHubAPIError: If GitHub rejects the exchange or is unreachable.
        """
        logger.debug(
            "Requesting installation access token",
            extra={"installation_id": installation_id},
        )
        response = await self._request(
            "POST",
            f"/app/installations/{installation_id}/access_tokens",
            token=assertion,
            max_retries=0,
        )
        return InstallationAccessToken.model_validate(response.json())

    async def create_installation_access_token(
        self,
        installation_id: int,
    ) -> InstallationAccessToken:
        """Mint a fresh assertion and exchange it, bypassing any cache."""
        return await self.exchange(self.minter.mint(), installation_id)

    async def get_installation(self, installation_id: int) -> InstallationInfo:
        data = await self.get_json(f"/app/installations/{installation_id}")
        return InstallationInfo.from_github_response(data)

    async def list_installations(self) -> List[InstallationInfo]:
        """Installations of the App (first page, up to 100)."""
        data = await self.get_json("/app/installations?per_page=100")
        return [InstallationInfo.from_github_response(item) for item in data]
