"""GitHub webhook intake.

This module verifies delivery signatures and parses the payloads the
service reacts to:
- issues.labeled
- pull_request.opened / pull_request.synchronize
- workflow_run.completed

Dispatch lives in ``codex_agent.webhook.router``, which depends on the
handlers and is imported from there directly.
"""

from codex_agent.webhook.models import (
    IssueLabeledEvent,
    PullRequestEvent,
    WorkflowRunEvent,
)
from codex_agent.webhook.signature import (
    SignatureVerificationError,
    compute_signature,
    verify_signature,
)

__all__ = [
    "IssueLabeledEvent",
    "PullRequestEvent",
    "SignatureVerificationError",
    "WorkflowRunEvent",
    "compute_signature",
    "verify_signature",
]
