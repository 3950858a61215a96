"""GitHub App authentication.

- CredentialMinter: Signs short-lived App assertions
- InstallationTokenCache: Caches installation tokens and refreshes them
  before they expire
- AuthenticatedCallExecutor: Invalidates tokens the platform rejects
"""

from src.gatekeeper.auth.models import (
    AppCredentialClaims,
    InstallationAccessToken,
    InstallationInfo,
    InstallationTokenEntry,
)
from src.gatekeeper.auth.credentials import (
    ConfigurationReport,
    CredentialMinter,
    SigningError,
    mint_app_jwt,
    normalize_private_key,
)
from src.gatekeeper.auth.token_cache import (
    InMemoryTokenStore,
    InstallationTokenCache,
    TokenExchangeError,
    TokenExchanger,
    TokenStore,
)
from src.gatekeeper.auth.executor import (
    AuthenticatedCallExecutor,
    TokenExpiredNeedsRebuild,
    is_authentication_failure,
)

__all__ = [
    "AppCredentialClaims",
    "InstallationAccessToken",
    "InstallationInfo",
    "InstallationTokenEntry",
    "ConfigurationReport",
    "CredentialMinter",
    "SigningError",
    "mint_app_jwt",
    "normalize_private_key",
    "InMemoryTokenStore",
    "InstallationTokenCache",
    "TokenExchangeError",
    "TokenExchanger",
    "TokenStore",
    "AuthenticatedCallExecutor",
    "TokenExpiredNeedsRebuild",
    "is_authentication_failure",
]
