"""GitHub API client for installation-scoped REST calls.

This module provides an async wrapper around the GitHub API exposing one
named method per call the webhook handlers make:
- Downloading repository tarballs and workflow run logs
- Minting installation access tokens for git pushes
- Creating pull requests, pull request reviews and issues
- Fetching pull request diffs

Includes rate limiting and retry logic for API resilience. Handlers depend
on the InstallationAPI protocol rather than on this concrete client.
"""

import asyncio
import random
import time
from typing import Any, Dict, List, Optional, Protocol

import httpx
import structlog

from codex_agent.config import AppSettings
from codex_agent.github.auth import AppAuthenticator, InstallationAuth, default_headers
from codex_agent.github.errors import GitHubAPIError, RateLimitError

logger = structlog.get_logger(__name__)

__all__ = [
    "GitHubAPIError",
    "GitHubClient",
    "InstallationAPI",
    "RateLimitError",
    "create_installation_client",
]

DIFF_MEDIA_TYPE = "application/vnd.github.diff"


class InstallationAPI(Protocol):
    """The GitHub operations available to a webhook handler."""

    async def download_tarball(self, owner: str, repo: str) -> bytes:
        ...

    async def create_installation_token(self) -> str:
        ...

    async def create_pull_request(
        self, owner: str, repo: str, head: str, base: str, title: str, body: str
    ) -> Dict[str, Any]:
        ...

    async def create_review(
        self, owner: str, repo: str, pull_number: int, event: str, body: str
    ) -> Dict[str, Any]:
        ...

    async def get_pull_request_diff(
        self, owner: str, repo: str, pull_number: int
    ) -> str:
        ...

    async def download_workflow_run_logs(
        self, owner: str, repo: str, run_id: int
    ) -> bytes:
        ...

    async def create_issue(
        self, owner: str, repo: str, title: str, body: str, labels: List[str]
    ) -> Dict[str, Any]:
        ...


class GitHubClient:
    """Async GitHub API client with rate limiting and retry logic.

    This client implements:

    - Automatic retry with exponential backoff for transient failures
    - Rate limit handling by respecting X-RateLimit-* headers
    - Redirect following for archive downloads served from storage hosts
    - Support for both github.com and GitHub Enterprise Server

    Attributes:
        auth: InstallationAuth that supplies installation tokens.
        base_url: Base URL for GitHub API (default: https://api.github.com).
        max_retries: Maximum number of retry attempts for transient failures.
        base_delay: Base delay in seconds for exponential backoff.
        max_delay: Maximum delay in seconds between retries.
        timeout: Request timeout in seconds.

    Example:
        >>> async with create_installation_client(settings, 1234) as client:
        ...     await client.create_issue("owner", "repo", "Title", "Body", [])
    """

    # HTTP status codes that should trigger a retry
    RETRYABLE_STATUS_CODES = {408, 429, 500, 502, 503, 504}

    def __init__(
        self,
        auth: InstallationAuth,
        base_url: str = "https://api.github.com",
        max_retries: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.auth = auth
        self.base_url = base_url.rstrip("/")
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def client(self) -> httpx.AsyncClient:
        """Get the HTTP client, creating it if necessary."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=default_headers(),
                auth=self.auth,
                timeout=self.timeout,
                follow_redirects=True,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client and release resources."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "GitHubClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    def _calculate_backoff(self, attempt: int) -> float:
        """Exponential backoff with full jitter."""
        exponential_delay = self.base_delay * (2 ** attempt)
        capped_delay = min(exponential_delay, self.max_delay)
        return random.uniform(0, capped_delay)

    def _parse_int_header(self, headers: httpx.Headers, name: str) -> Optional[int]:
        value = headers.get(name)
        if value is not None:
            try:
                return int(value)
            except ValueError:
                pass
        return None

    def _raise_rate_limit(self, response: httpx.Response) -> None:
        """Raise RateLimitError with reset information from the response.

        Raises:
            RateLimitError: Always.
        """
        reset_at = self._parse_int_header(response.headers, "x-ratelimit-reset")

        retry_after = None
        if reset_at is not None:
            retry_after = max(0, reset_at - int(time.time()))

        retry_after_header = self._parse_int_header(response.headers, "retry-after")
        if retry_after_header is not None:
            retry_after = retry_after_header

        logger.warning(
            "GitHub API rate limit exceeded",
            reset_at=reset_at,
            retry_after=retry_after,
            limit=self._parse_int_header(response.headers, "x-ratelimit-limit"),
        )

        raise RateLimitError(
            message="GitHub API rate limit exceeded",
            status_code=response.status_code,
            reset_at=reset_at,
            retry_after=retry_after,
            request_url=str(response.url),
        )

    async def _request(
        self,
        method: str,
        path: str,
        json_data: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> httpx.Response:
        """Make an HTTP request with retry logic.

        Args:
            method: HTTP method (GET, POST, PATCH, ...).
            path: API path (e.g., /repos/owner/repo/issues).
            json_data: Optional JSON body for the request.
            headers: Extra headers for this request only.

        Returns:
            The HTTP response from GitHub.

        Raises:
            GitHubAPIError: If the request fails after all retries.
            RateLimitError: If rate limit is exceeded.
        """
        last_exception: Optional[Exception] = None

        for attempt in range(self.max_retries + 1):
            try:
                response = await self.client.request(
                    method=method,
                    url=path,
                    json=json_data,
                    headers=headers,
                )
            except httpx.RequestError as e:
                last_exception = e
                if attempt < self.max_retries:
                    delay = self._calculate_backoff(attempt)
                    logger.warning(
                        "Request error, retrying",
                        error=str(e),
                        attempt=attempt + 1,
                        max_retries=self.max_retries,
                        delay=delay,
                        path=path,
                    )
                    await asyncio.sleep(delay)
                continue

            if response.status_code == 403:
                remaining = self._parse_int_header(
                    response.headers, "x-ratelimit-remaining"
                )
                if remaining == 0:
                    self._raise_rate_limit(response)

            if response.status_code == 429:
                self._raise_rate_limit(response)

            if (
                response.status_code in self.RETRYABLE_STATUS_CODES
                and attempt < self.max_retries
            ):
                delay = self._calculate_backoff(attempt)
                logger.warning(
                    "Retryable error from GitHub API",
                    status_code=response.status_code,
                    attempt=attempt + 1,
                    max_retries=self.max_retries,
                    delay=delay,
                    path=path,
                )
                await asyncio.sleep(delay)
                continue

            if response.status_code >= 400:
                error_body = response.text
                logger.error(
                    "GitHub API error",
                    status_code=response.status_code,
                    path=path,
                    method=method,
                    response_body=error_body[:500],
                )
                raise GitHubAPIError(
                    message=f"GitHub API error: {response.status_code}",
                    status_code=response.status_code,
                    response_body=error_body,
                    request_url=str(response.url),
                )

            return response

        logger.error(
            "GitHub API request failed after all retries",
            path=path,
            method=method,
            max_retries=self.max_retries,
            last_error=str(last_exception),
        )
        raise GitHubAPIError(
            message=f"Request failed after {self.max_retries} retries: {last_exception}",
            request_url=f"{self.base_url}{path}",
        )

    async def download_tarball(self, owner: str, repo: str) -> bytes:
        """Download a gzipped tarball of the default branch.

        Raises:
            GitHubAPIError: If the request fails.
        """
        response = await self._request("GET", f"/repos/{owner}/{repo}/tarball")
        logger.info(
            "Downloaded repository tarball",
            owner=owner,
            repo=repo,
            size_bytes=len(response.content),
        )
        return response.content

    async def create_installation_token(self) -> str:
        """Mint a fresh installation access token, e.g. for git over HTTPS.

        Raises:
            InstallationAuthError: If the token exchange fails.
        """
        return await self.auth.get_token(force_refresh=True)

    async def create_pull_request(
        self,
        owner: str,
        repo: str,
        head: str,
        base: str,
        title: str,
        body: str,
    ) -> Dict[str, Any]:
        """Open a pull request from head into base.

        Returns:
            The created pull request data from GitHub API.

        Raises:
            GitHubAPIError: If the request fails.
        """
        logger.info(
            "Creating pull request",
            owner=owner,
            repo=repo,
            head=head,
            base=base,
            title=title,
        )
        response = await self._request(
            "POST",
            f"/repos/{owner}/{repo}/pulls",
            json_data={"head": head, "base": base, "title": title, "body": body},
        )
        result = response.json()
        logger.info(
            "Pull request created",
            owner=owner,
            repo=repo,
            pr_number=result.get("number"),
            pr_url=result.get("html_url"),
        )
        return result

    async def create_review(
        self,
        owner: str,
        repo: str,
        pull_number: int,
        event: str,
        body: str,
    ) -> Dict[str, Any]:
        """Submit a pull request review.

        Args:
            event: "APPROVE", "COMMENT" or "REQUEST_CHANGES".
            body: Review body in markdown.

        Raises:
            GitHubAPIError: If the request fails.
        """
        response = await self._request(
            "POST",
            f"/repos/{owner}/{repo}/pulls/{pull_number}/reviews",
            json_data={"event": event, "body": body},
        )
        logger.info(
            "Review submitted",
            owner=owner,
            repo=repo,
            pull_number=pull_number,
            review_event=event,
        )
        return response.json()

    async def get_pull_request_diff(
        self, owner: str, repo: str, pull_number: int
    ) -> str:
        """Fetch the unified diff of a pull request.

        Raises:
            GitHubAPIError: If the request fails.
        """
        response = await self._request(
            "GET",
            f"/repos/{owner}/{repo}/pulls/{pull_number}",
            headers={"Accept": DIFF_MEDIA_TYPE},
        )
        return response.text

    async def download_workflow_run_logs(
        self, owner: str, repo: str, run_id: int
    ) -> bytes:
        """Download the raw log archive of a workflow run.

        Raises:
            GitHubAPIError: If the request fails.
        """
        response = await self._request(
            "GET", f"/repos/{owner}/{repo}/actions/runs/{run_id}/logs"
        )
        logger.info(
            "Downloaded workflow run logs",
            owner=owner,
            repo=repo,
            run_id=run_id,
            size_bytes=len(response.content),
        )
        return response.content

    async def create_issue(
        self,
        owner: str,
        repo: str,
        title: str,
        body: str,
        labels: List[str],
    ) -> Dict[str, Any]:
        """Open an issue.

        Raises:
            GitHubAPIError: If the request fails.
        """
        response = await self._request(
            "POST",
            f"/repos/{owner}/{repo}/issues",
            json_data={"title": title, "body": body, "labels": labels},
        )
        result = response.json()
        logger.info(
            "Issue created",
            owner=owner,
            repo=repo,
            issue_number=result.get("number"),
            labels=labels,
        )
        return result


def create_installation_client(
    settings: AppSettings,
    installation_id: int,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> GitHubClient:
    """Build a GitHub client authenticated as one App installation.

    Args:
        settings: Service settings with the App id and private key.
        installation_id: Installation the webhook was delivered for.
        transport: Optional httpx transport shared by token minting and
            API calls.

    Returns:
        A GitHubClient; callers should close it (``async with``).
    """
    authenticator = AppAuthenticator(
        app_id=settings.app_id,
        private_key=settings.private_key,
        base_url=settings.github_api_url,
        transport=transport,
    )
    return GitHubClient(
        auth=InstallationAuth(authenticator, installation_id),
        base_url=settings.github_api_url,
        transport=transport,
    )
