"""Authenticated call execution with token invalidation.

Wraps calls made with an installation token. When the platform rejects the
token, the cached entry for that installation is dropped and the caller is
told to rebuild its client; the call itself is never retried here.
"""

import logging
from typing import Awaitable, Callable, Optional, TypeVar

from src.gatekeeper.auth.token_cache import InstallationTokenCache
from src.gatekeeper.events.metrics import GatekeeperMetrics
from src.gatekeeper.github.errors import RateLimitError


logger = logging.getLogger(__name__)

T = TypeVar("T")

AUTH_FAILURE_STATUS_CODES = frozenset({401, 403})
AUTH_FAILURE_PATTERNS = ("bad credentials", "token expired", "authorization")


class TokenExpiredNeedsRebuild(Exception):
    """Raised when a call failed because its installation token was rejected.

    The cached token has already been invalidated; the next ``get_token``
    mints a new one.

    Attributes:
        installation_id: The installation whose token was rejected.
        original_error: The error raised by the call.
    """

    def __init__(self, installation_id: int, original_error: Exception):
        self.installation_id = installation_id
        self.original_error = original_error
        super().__init__(
            f"Authentication failed for installation {installation_id}; "
            "token invalidated, client needs to be recreated"
        )


def _status_code_of(error: BaseException) -> Optional[int]:
    status = getattr(error, "status_code", None)
    if status is None:
        response = getattr(error, "response", None)
        status = getattr(response, "status_code", None)
    return status if isinstance(status, int) else None


def is_authentication_failure(error: BaseException) -> bool:
    """Classify ``error`` as an authentication failure.

    401 and 403 responses count, except 403s that signal an exhausted rate
    limit. Anything else is matched on its message, including the message
    GitHub put in the error body.
    """
    if isinstance(error, RateLimitError):
        return False
    if _status_code_of(error) in AUTH_FAILURE_STATUS_CODES:
        return True
    message = f"{error} {getattr(error, 'github_message', None) or ''}".lower()
    return any(pattern in message for pattern in AUTH_FAILURE_PATTERNS)


class AuthenticatedCallExecutor:
    """Runs installation-scoped calls and reacts to rejected tokens.

    Example:
        >>> executor = AuthenticatedCallExecutor(cache)
        >>> repos = await executor.execute(12345, client.list_repositories)
    """

    def __init__(
        self,
        cache: InstallationTokenCache,
        metrics: Optional[GatekeeperMetrics] = None,
    ):
        self.cache = cache
        self.metrics = metrics

    async def execute(
        self,
        installation_id: int,
        api_call: Callable[[], Awaitable[T]],
    ) -> T:
        """Await ``api_call()``.

        Raises:
            TokenExpiredNeedsRebuild: On an authentication failure.
            Exception: Any other failure, unchanged.
        """
        try:
            return await api_call()
        except Exception as e:
            if not is_authentication_failure(e):
                raise
            self._handle_auth_failure(installation_id, e)
            raise TokenExpiredNeedsRebuild(installation_id, e) from e

    async def execute_with_token(
        self,
        installation_id: int,
        call: Callable[[str], Awaitable[T]],
    ) -> T:
        """Fetch the installation token and await ``call(token)``."""
        token = await self.cache.get_token(installation_id)
        return await self.execute(installation_id, lambda: call(token))

    def _handle_auth_failure(self, installation_id: int, error: Exception) -> None:
        logger.warning(
            "Authentication failure, invalidating installation token",
            extra={
                "installation_id": installation_id,
                "status_code": _status_code_of(error),
                "error_type": type(error).__name__,
            },
        )
        if self.metrics is not None:
            self.metrics.record_auth_failure()
        self.cache.invalidate(installation_id)
