"""Handler for issues labeled "codex".

Downloads the repository, lets Codex work on the issue body, and when
Codex changed anything commits the result to ``codex/issue-<N>``,
force-pushes it and opens a pull request that closes the issue.

The branch is a derived artifact: every run regenerates it from the base
branch and overwrites whatever the remote held.
"""

import asyncio
from typing import Optional

import structlog

from codex_agent.config import AppSettings
from codex_agent.github.errors import GitHubAPIError
from codex_agent.handlers.outcome import ClientFactory, HandlerOutcome
from codex_agent.runner.codex import CodexRunner
from codex_agent.webhook.models import IssueLabeledEvent
from codex_agent.workspace import git
from codex_agent.workspace.manager import workspace

logger = structlog.get_logger(__name__)

TRIGGER_LABEL = "codex"
FALLBACK_PROMPT = "solve this issue"


def is_codex_label(event: IssueLabeledEvent) -> bool:
    return event.label is not None and event.label.name == TRIGGER_LABEL


def branch_name_for(issue_number: int) -> str:
    """Deterministic branch name for an issue."""
    return f"codex/issue-{issue_number}"


def pull_request_title(issue_title: str) -> str:
    return f"Codex: {issue_title}"


def pull_request_body(issue_number: int) -> str:
    return f"Closes #{issue_number}"


def commit_message(issue_number: int) -> str:
    return f"Codex changes for #{issue_number}"


def authenticated_remote_url(host: str, token: str, owner: str, repo: str) -> str:
    return f"https://x-access-token:{token}@{host}/{owner}/{repo}.git"


class IssueLabeledHandler:
    """Turns a "codex"-labeled issue into a pull request.

    Attributes:
        settings: Service settings (base branch, git host, API key).
        client_factory: Builds an installation-scoped GitHub client.
        runner: Codex CLI runner.
    """

    def __init__(
        self,
        settings: AppSettings,
        client_factory: ClientFactory,
        runner: CodexRunner,
        workspace_factory=workspace,
    ):
        self.settings = settings
        self.client_factory = client_factory
        self.runner = runner
        self.workspace_factory = workspace_factory

    async def handle(
        self,
        event: IssueLabeledEvent,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> HandlerOutcome:
        """Run the issue workflow.

        Args:
            event: Parsed issues.labeled payload.
            cancel_event: Set when a newer delivery supersedes this one.

        Returns:
            The terminal HandlerOutcome.

        Raises:
            ExtractionError: If the repository snapshot cannot be prepared.
            GitCommandError: If a git step fails.
            GitHubAPIError: If a GitHub call fails.
        """
        if not is_codex_label(event):
            logger.debug(
                "Ignoring label", label=event.label.name if event.label else None
            )
            return HandlerOutcome.IGNORED

        owner, repo = event.repository.owner_and_name
        number = event.issue.number
        branch = branch_name_for(number)
        base = self.settings.base_branch
        log = logger.bind(repository=event.repository.full_name, issue_number=number)

        async with self.client_factory(event.installation.id) as client:
            async with self.workspace_factory(client, owner, repo) as ws:
                token = await client.create_installation_token()
                await git.attach_history(
                    ws.repo_dir, self._remote_url(token, owner, repo), base
                )

                result = await self.runner.run(
                    ws.repo_dir,
                    event.issue.body or FALLBACK_PROMPT,
                    self.settings.openai_api_key,
                    cancel_event=cancel_event,
                )
                if result.cancelled:
                    log.info("Issue run superseded by a newer delivery")
                    return HandlerOutcome.CANCELLED

                await git.configure_identity(ws.repo_dir)
                await git.create_branch(ws.repo_dir, branch)
                await git.stage_all(ws.repo_dir)

                if not await git.has_staged_changes(ws.repo_dir):
                    log.info("Codex produced no changes", codex_success=result.success)
                    return HandlerOutcome.NO_CHANGES

                await git.commit(ws.repo_dir, commit_message(number))

                # The generator may outlive the first token.
                token = await client.create_installation_token()
                await git.force_push(
                    ws.repo_dir, self._remote_url(token, owner, repo), branch
                )

                try:
                    await client.create_pull_request(
                        owner,
                        repo,
                        head=branch,
                        base=base,
                        title=pull_request_title(event.issue.title),
                        body=pull_request_body(number),
                    )
                except GitHubAPIError as exc:
                    if exc.status_code != 422:
                        raise
                    log.info(
                        "Pull request already open for branch",
                        branch=branch,
                        response_body=(exc.response_body or "")[:200],
                    )
                    return HandlerOutcome.BRANCH_UPDATED

        log.info("Opened pull request for issue", branch=branch)
        return HandlerOutcome.PULL_REQUEST_CREATED

    def _remote_url(self, token: str, owner: str, repo: str) -> str:
        return authenticated_remote_url(self.settings.github_host, token, owner, repo)
