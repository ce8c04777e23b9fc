"""Handler for pull requests that were opened or received new commits.

Codex reads the diff and either replies with exactly "APPROVE", which
becomes an approving review, or with free text, which is posted as a
comment review.
"""

import asyncio
from pathlib import Path
from typing import Optional

import structlog

from codex_agent.config import AppSettings
from codex_agent.handlers.outcome import ClientFactory, HandlerOutcome
from codex_agent.runner.codex import CodexRunner
from codex_agent.webhook.models import PullRequestEvent

logger = structlog.get_logger(__name__)

REVIEW_ACTIONS = ("opened", "synchronize")
APPROVE_VERDICT = "APPROVE"
APPROVAL_BODY = "✅ LGTM – approved by Codex."


def build_review_prompt(diff: str) -> str:
    return f'Review this diff and reply "APPROVE" if perfect:\n{diff}'


def is_approval(review: str) -> bool:
    """True only when the whole reply, trimmed, is the approval verdict."""
    return review.strip() == APPROVE_VERDICT


class PullRequestHandler:
    """Reviews pull requests with Codex.

    No workspace is created: the CLI only needs the diff text, and runs in
    ``cwd`` (the service's working directory by default).
    """

    def __init__(
        self,
        settings: AppSettings,
        client_factory: ClientFactory,
        runner: CodexRunner,
        cwd: Optional[Path] = None,
    ):
        self.settings = settings
        self.client_factory = client_factory
        self.runner = runner
        self.cwd = cwd or Path.cwd()

    async def handle(
        self,
        event: PullRequestEvent,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> HandlerOutcome:
        if event.action not in REVIEW_ACTIONS:
            return HandlerOutcome.IGNORED

        owner, repo = event.repository.owner_and_name
        number = event.pull_request.number
        log = logger.bind(repository=event.repository.full_name, pull_number=number)

        async with self.client_factory(event.installation.id) as client:
            diff = await client.get_pull_request_diff(owner, repo, number)

            result = await self.runner.run(
                self.cwd,
                build_review_prompt(diff),
                self.settings.openai_api_key,
                cancel_event=cancel_event,
            )
            if result.cancelled:
                log.info("Review superseded by a newer delivery")
                return HandlerOutcome.CANCELLED

            review = result.output
            if is_approval(review):
                await client.create_review(
                    owner, repo, number, event=APPROVE_VERDICT, body=APPROVAL_BODY
                )
                log.info("Approved pull request")
                return HandlerOutcome.APPROVED

            await client.create_review(owner, repo, number, event="COMMENT", body=review)
            log.info("Commented on pull request", review_chars=len(review))
            return HandlerOutcome.COMMENTED
