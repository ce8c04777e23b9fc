"""Terminal states reported by the webhook handlers."""

from enum import Enum
from typing import Callable

from codex_agent.github.client import GitHubClient

ClientFactory = Callable[[int], GitHubClient]


class HandlerOutcome(str, Enum):
    """How a handler invocation ended.

    Attributes:
        IGNORED: The event failed the handler's eligibility check.
        CANCELLED: A newer delivery for the same subject superseded this one.
        NO_CHANGES: Codex left the repository untouched; nothing was pushed.
        PULL_REQUEST_CREATED: A branch was pushed and a pull request opened.
        BRANCH_UPDATED: A branch was pushed and its pull request already existed.
        APPROVED: An approving review was submitted.
        COMMENTED: A comment review was submitted.
        ISSUE_CREATED: A diagnosis issue was opened.
    """

    IGNORED = "ignored"
    CANCELLED = "cancelled"
    NO_CHANGES = "no_changes"
    PULL_REQUEST_CREATED = "pull_request_created"
    BRANCH_UPDATED = "branch_updated"
    APPROVED = "approved"
    COMMENTED = "commented"
    ISSUE_CREATED = "issue_created"
