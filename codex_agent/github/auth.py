"""GitHub App authentication.

Signs short-lived app JWTs with the App's private key and exchanges them
for installation access tokens. InstallationAuth plugs into httpx so every
request made by an installation client carries a valid token: it mints on
first use, re-mints shortly before expiry, and retries once on a 401.
"""

import asyncio
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator, Dict, Optional

import httpx
import jwt
import structlog

from codex_agent.github.errors import InstallationAuthError

logger = structlog.get_logger(__name__)

JWT_BACKDATE_SECONDS = 60
JWT_LIFETIME_SECONDS = 9 * 60
TOKEN_REFRESH_MARGIN = timedelta(seconds=60)


def default_headers() -> Dict[str, str]:
    """Headers sent with every GitHub REST request."""
    return {
        "Accept": "application/vnd.github+json",
        "X-GitHub-Api-Version": "2022-11-28",
        "User-Agent": "CodexAgent/1.0",
    }


def create_app_jwt(app_id: str, private_key: str, now: Optional[int] = None) -> str:
    """Create an RS256 JWT identifying the GitHub App.

    The issued-at time is backdated to tolerate clock drift between this
    host and GitHub.

    Args:
        app_id: GitHub App identifier (the JWT issuer).
        private_key: PEM-encoded RSA private key of the App.
        now: Override for the current Unix time.

    Returns:
        The encoded JWT.
    """
    issued = int(time.time()) if now is None else now
    payload = {
        "iat": issued - JWT_BACKDATE_SECONDS,
        "exp": issued + JWT_LIFETIME_SECONDS,
        "iss": str(app_id),
    }
    return jwt.encode(payload, private_key, algorithm="RS256")


@dataclass(frozen=True)
class InstallationToken:
    """An installation access token and its expiry."""

    token: str
    expires_at: datetime

    def expires_soon(self, now: Optional[datetime] = None) -> bool:
        current = now or datetime.now(timezone.utc)
        return self.expires_at - current <= TOKEN_REFRESH_MARGIN


class AppAuthenticator:
    """Mints installation access tokens on behalf of a GitHub App.

    Attributes:
        app_id: GitHub App identifier.
        base_url: GitHub REST API base URL.
        timeout: Request timeout in seconds.
    """

    def __init__(
        self,
        app_id: str,
        private_key: str,
        base_url: str = "https://api.github.com",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.app_id = app_id
        self._private_key = private_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    async def mint_installation_token(self, installation_id: int) -> InstallationToken:
        """Exchange an app JWT for an installation access token.

        Args:
            installation_id: The installation to act as.

        Returns:
            InstallationToken with the token and its expiry.

        Raises:
            InstallationAuthError: If GitHub rejects the exchange or the
                request cannot be made.
        """
        path = f"/app/installations/{installation_id}/access_tokens"
        headers = default_headers()
        headers["Authorization"] = (
            f"Bearer {create_app_jwt(self.app_id, self._private_key)}"
        )

        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            ) as client:
                response = await client.post(path, headers=headers)
        except httpx.RequestError as exc:
            raise InstallationAuthError(
                message=f"Installation token request failed: {exc}",
                request_url=f"{self.base_url}{path}",
            ) from exc

        if response.status_code != 201:
            logger.error(
                "Installation token exchange failed",
                installation_id=installation_id,
                status_code=response.status_code,
            )
            raise InstallationAuthError(
                message=f"Installation token exchange failed: {response.status_code}",
                status_code=response.status_code,
                response_body=response.text,
                request_url=str(response.url),
            )

        data = response.json()
        logger.info("Minted installation token", installation_id=installation_id)
        return InstallationToken(
            token=data["token"],
            expires_at=_parse_expiry(data.get("expires_at")),
        )


class InstallationAuth(httpx.Auth):
    """httpx auth flow that authenticates as a GitHub App installation."""

    def __init__(self, authenticator: AppAuthenticator, installation_id: int):
        self.authenticator = authenticator
        self.installation_id = installation_id
        self._token: Optional[InstallationToken] = None
        self._lock = asyncio.Lock()

    async def get_token(self, force_refresh: bool = False) -> str:
        """Return a usable installation token, minting one if needed."""
        async with self._lock:
            if force_refresh or self._token is None or self._token.expires_soon():
                self._token = await self.authenticator.mint_installation_token(
                    self.installation_id
                )
            return self._token.token

    async def async_auth_flow(
        self, request: httpx.Request
    ) -> AsyncGenerator[httpx.Request, httpx.Response]:
        token = await self.get_token()
        request.headers["Authorization"] = f"Bearer {token}"
        response = yield request

        if response.status_code == 401:
            logger.warning(
                "Installation token rejected, re-minting",
                installation_id=self.installation_id,
            )
            token = await self.get_token(force_refresh=True)
            request.headers["Authorization"] = f"Bearer {token}"
            yield request

    def sync_auth_flow(self, request: httpx.Request):
        raise RuntimeError("InstallationAuth only supports httpx.AsyncClient")


def _parse_expiry(value: Optional[str]) -> datetime:
    """Parse GitHub's ISO-8601 expiry, defaulting to the documented hour."""
    if not value:
        return datetime.now(timezone.utc) + timedelta(hours=1)
    return datetime.fromisoformat(value.replace("Z", "+00:00"))
