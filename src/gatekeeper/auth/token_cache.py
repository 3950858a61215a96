"""Installation access token cache.

Installation tokens are obtained by exchanging a freshly minted App
assertion with the platform. They live for an hour; this cache keeps one
token per installation and renews it once it enters the refresh buffer
before expiry, so callers never receive a token that is about to lapse.

Source:
- src/gatekeeper/auth/credentials.py (CredentialMinter)
- src/gatekeeper/github/client.py (GitHubAppClient implements TokenExchanger)
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Dict, Optional, Protocol, runtime_checkable

from src.gatekeeper.auth.credentials import CredentialMinter
from src.gatekeeper.auth.models import InstallationAccessToken, InstallationTokenEntry
from src.gatekeeper.events.metrics import GatekeeperMetrics


logger = logging.getLogger(__name__)

DEFAULT_REFRESH_BUFFER_SECONDS = 300
DEFAULT_TOKEN_LIFETIME_SECONDS = 3600

TokenProvider = Callable[[], Awaitable[str]]


class TokenExchangeError(Exception):
    """Raised when an assertion cannot be exchanged for an installation token.

    Exchange failures are usually transient (network, 5xx). They are
    surfaced to the caller and never retried or cached here.

    Attributes:
        message: Human-readable error description.
        installation_id: The installation the exchange was for.
        status_code: HTTP status code from the platform, if any.
        original_error: The underlying exception, if any.
    """

    def __init__(
        self,
        message: str,
        installation_id: Optional[int] = None,
        status_code: Optional[int] = None,
        original_error: Optional[Exception] = None,
    ):
        self.message = message
        self.installation_id = installation_id
        self.status_code = status_code
        self.original_error = original_error
        super().__init__(message)


@runtime_checkable
class TokenExchanger(Protocol):
    """Exchanges an App assertion for an installation access token."""

    async def exchange(
        self,
        assertion: str,
        installation_id: int,
    ) -> InstallationAccessToken:
        ...


@runtime_checkable
class TokenStore(Protocol):
    """Storage for cached installation tokens."""

    def get(self, installation_id: int) -> Optional[InstallationTokenEntry]:
        ...

    def put(self, entry: InstallationTokenEntry) -> None:
        ...

    def delete(self, installation_id: int) -> bool:
        ...

    def clear(self) -> int:
        ...

    def __len__(self) -> int:
        ...


class InMemoryTokenStore:
    """Process-local TokenStore backed by a dict."""

    def __init__(self) -> None:
        self._entries: Dict[int, InstallationTokenEntry] = {}

    def get(self, installation_id: int) -> Optional[InstallationTokenEntry]:
        return self._entries.get(installation_id)

    def put(self, entry: InstallationTokenEntry) -> None:
        self._entries[entry.installation_id] = entry

    def delete(self, installation_id: int) -> bool:
        return self._entries.pop(installation_id, None) is not None

    def clear(self) -> int:
        count = len(self._entries)
        self._entries.clear()
        return count

    def __len__(self) -> int:
        return len(self._entries)


class InstallationTokenCache:
    """Per-installation token cache with proactive refresh.

    A cached token is returned without I/O while more than
    ``refresh_buffer_seconds`` remain before its expiry. Otherwise a new
    assertion is minted and exchanged, and the result replaces the entry.

    With ``single_flight`` enabled (the default) concurrent callers for the
    same installation share one refresh. Disabled, each caller refreshes on
    its own and the last write wins.

    Attributes:
        minter: Produces App assertions.
        exchanger: Trades assertions for installation tokens.
        store: Where entries are kept.
        refresh_buffer_seconds: Renewal margin before expiry.
        token_lifetime_seconds: Assumed token lifetime.
        single_flight: Serialize refreshes per installation.

    Example:
        >>> cache = InstallationTokenCache(minter, app_client)
        >>> token = await cache.get_token(12345)
    """

    def __init__(
        self,
        minter: CredentialMinter,
        exchanger: TokenExchanger,
        store: Optional[TokenStore] = None,
        refresh_buffer_seconds: float = DEFAULT_REFRESH_BUFFER_SECONDS,
        token_lifetime_seconds: float = DEFAULT_TOKEN_LIFETIME_SECONDS,
        clock: Callable[[], float] = time.time,
        single_flight: bool = True,
        metrics: Optional[GatekeeperMetrics] = None,
    ):
        if refresh_buffer_seconds < 0:
            raise ValueError("refresh_buffer_seconds must not be negative")
        if token_lifetime_seconds <= 0:
            raise ValueError("token_lifetime_seconds must be positive")
        if refresh_buffer_seconds >= token_lifetime_seconds:
            raise ValueError(
                "refresh_buffer_seconds must be less than token_lifetime_seconds"
            )

        self.minter = minter
        self.exchanger = exchanger
        self.store = store if store is not None else InMemoryTokenStore()
        self.refresh_buffer_seconds = refresh_buffer_seconds
        self.token_lifetime_seconds = token_lifetime_seconds
        self.single_flight = single_flight
        self.metrics = metrics
        self._clock = clock
        self._locks: Dict[int, asyncio.Lock] = {}

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _fresh_entry(self, installation_id: int) -> Optional[InstallationTokenEntry]:
        entry = self.store.get(installation_id)
        if entry is None:
            return None
        if entry.is_fresh(self._now_ms(), int(self.refresh_buffer_seconds * 1000)):
            return entry
        return None

    async def get_token(self, installation_id: int) -> str:
        """Return a usable token for ``installation_id``.

        Raises:
            SigningError: If an assertion cannot be minted.
            TokenExchangeError: If the exchange fails. Nothing is cached.
        """
        entry = self._fresh_entry(installation_id)
        if entry is not None:
            self._record_lookup(hit=True)
            return entry.token
        self._record_lookup(hit=False)

        if not self.single_flight:
            return (await self._refresh(installation_id)).token

        lock = self._locks.setdefault(installation_id, asyncio.Lock())
        async with lock:
            # Another caller may have refreshed while we waited
            entry = self._fresh_entry(installation_id)
            if entry is not None:
                return entry.token
            return (await self._refresh(installation_id)).token

    async def _refresh(self, installation_id: int) -> InstallationTokenEntry:
        assertion = self.minter.mint()

        try:
            result = await self.exchanger.exchange(assertion, installation_id)
        except TokenExchangeError:
            self._record_exchange(success=False)
            raise
        except Exception as e:
            self._record_exchange(success=False)
            status_code = getattr(e, "status_code", None)
            logger.error(
                "Installation token exchange failed",
                extra={
                    "installation_id": installation_id,
                    "status_code": status_code,
                    "error_type": type(e).__name__,
                },
            )
            raise TokenExchangeError(
                f"Failed to obtain token for installation {installation_id}: {e}",
                installation_id=installation_id,
                status_code=status_code,
                original_error=e,
            ) from e

        now_ms = self._now_ms()
        expires_at_ms = now_ms + int(self.token_lifetime_seconds * 1000)
        if result.expires_at is not None:
            reported_ms = int(result.expires_at.timestamp() * 1000)
            expires_at_ms = min(expires_at_ms, reported_ms)

        entry = InstallationTokenEntry(
            installation_id=installation_id,
            token=result.token,
            expires_at_ms=expires_at_ms,
            permissions=dict(result.permissions),
        )

        # A token already inside the refresh buffer is never handed out
        if not entry.is_fresh(now_ms, int(self.refresh_buffer_seconds * 1000)):
            self._record_exchange(success=False)
            logger.error(
                "Installation token expires inside the refresh buffer",
                extra={
                    "installation_id": installation_id,
                    "expires_in_seconds": (expires_at_ms - now_ms) // 1000,
                    "refresh_buffer_seconds": self.refresh_buffer_seconds,
                },
            )
            raise TokenExchangeError(
                f"Token for installation {installation_id} expires within "
                f"the {self.refresh_buffer_seconds}s refresh buffer",
                installation_id=installation_id,
            )

        self._record_exchange(success=True)
        self.store.put(entry)

        logger.info(
            "Installation token refreshed",
            extra={
                "installation_id": installation_id,
                "expires_in_seconds": (expires_at_ms - now_ms) // 1000,
                "permissions": sorted(entry.permissions),
            },
        )
        return entry

    def invalidate(self, installation_id: Optional[int] = None) -> None:
        """Drop the entry for one installation, or every entry if None."""
        if installation_id is None:
            removed = self.store.clear()
            for key in [k for k, lock in self._locks.items() if not lock.locked()]:
                del self._locks[key]
            if self.metrics is not None:
                self.metrics.record_invalidation(all_entries=True)
            logger.info(
                "Cleared all installation tokens",
                extra={"removed": removed},
            )
            return

        removed = self.store.delete(installation_id)
        lock = self._locks.get(installation_id)
        if lock is not None and not lock.locked():
            del self._locks[installation_id]
        if self.metrics is not None:
            self.metrics.record_invalidation(all_entries=False)
        logger.info(
            "Invalidated installation token",
            extra={"installation_id": installation_id, "removed": removed},
        )

    def get_entry(self, installation_id: int) -> Optional[InstallationTokenEntry]:
        """Return the cached entry, fresh or not, without refreshing."""
        return self.store.get(installation_id)

    def token_provider(self, installation_id: int) -> TokenProvider:
        """Bind this cache to one installation as a zero-argument provider."""

        async def provide() -> str:
            return await self.get_token(installation_id)

        return provide

    def _record_lookup(self, hit: bool) -> None:
        if self.metrics is not None:
            self.metrics.record_token_lookup(hit=hit)

    def _record_exchange(self, success: bool) -> None:
        if self.metrics is not None:
            self.metrics.record_token_exchange(success=success)

    def __len__(self) -> int:
        return len(self.store)
