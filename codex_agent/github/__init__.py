"""GitHub App authentication and REST client.

This module provides:
- App JWT signing and installation token exchange
- An installation-scoped API client with retry and rate limit handling
- The InstallationAPI protocol that webhook handlers depend on
"""

from codex_agent.github.auth import (
    AppAuthenticator,
    InstallationAuth,
    InstallationToken,
    create_app_jwt,
)
from codex_agent.github.client import (
    GitHubClient,
    InstallationAPI,
    create_installation_client,
)
from codex_agent.github.errors import (
    GitHubAPIError,
    InstallationAuthError,
    RateLimitError,
)

__all__ = [
    "AppAuthenticator",
    "GitHubAPIError",
    "GitHubClient",
    "InstallationAPI",
    "InstallationAuth",
    "InstallationAuthError",
    "InstallationToken",
    "RateLimitError",
    "create_app_jwt",
    "create_installation_client",
]
