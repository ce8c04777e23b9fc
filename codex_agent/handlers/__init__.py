"""Webhook event handlers.

One handler per event family:
- issues.labeled -> IssueLabeledHandler
- pull_request.opened / synchronize -> PullRequestHandler
- workflow_run.completed -> WorkflowRunHandler
"""

from codex_agent.handlers.issue import IssueLabeledHandler
from codex_agent.handlers.outcome import ClientFactory, HandlerOutcome
from codex_agent.handlers.pull_request import PullRequestHandler
from codex_agent.handlers.workflow_run import WorkflowRunHandler

__all__ = [
    "ClientFactory",
    "HandlerOutcome",
    "IssueLabeledHandler",
    "PullRequestHandler",
    "WorkflowRunHandler",
]
