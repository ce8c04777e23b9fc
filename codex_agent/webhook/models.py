"""GitHub webhook payload models.

Typed views over the three payload families the router dispatches:
issues, pull_request and workflow_run. Only the fields the handlers use
are declared; everything else in the payload is ignored.

GitHub Webhook Payload Structure (issues.labeled event, abridged):
{
  "action": "labeled",
  "label": {"name": "codex"},
  "issue": {"number": 42, "title": "Fix bug", "body": "Please fix X"},
  "repository": {"full_name": "acme/widgets"},
  "installation": {"id": 1234}
}
"""

from typing import Optional, Tuple

from pydantic import BaseModel, Field


class Installation(BaseModel):
    """The App installation a delivery was sent for."""

    id: int


class Repository(BaseModel):
    """Repository reference carried by every event."""

    full_name: str = Field(
        ...,
        pattern=r"^[^/\s]+/[^/\s]+$",
        description="Repository path in the form owner/name",
    )

    @property
    def owner_and_name(self) -> Tuple[str, str]:
        owner, name = self.full_name.split("/", 1)
        return owner, name


class Label(BaseModel):
    name: str


class Issue(BaseModel):
    number: int = Field(..., gt=0)
    title: str
    body: Optional[str] = None


class IssueLabeledEvent(BaseModel):
    """Payload of an ``issues`` delivery with action ``labeled``."""

    action: str
    label: Optional[Label] = None
    issue: Issue
    repository: Repository
    installation: Installation

    @property
    def subject(self) -> str:
        return f"issue:{self.repository.full_name}#{self.issue.number}"


class PullRequest(BaseModel):
    number: int = Field(..., gt=0)
    diff_url: Optional[str] = None


class PullRequestEvent(BaseModel):
    """Payload of a ``pull_request`` delivery."""

    action: str
    pull_request: PullRequest
    repository: Repository
    installation: Installation

    @property
    def subject(self) -> str:
        return f"pull_request:{self.repository.full_name}#{self.pull_request.number}"


class WorkflowRun(BaseModel):
    id: int
    name: Optional[str] = None
    conclusion: Optional[str] = None


class WorkflowRunEvent(BaseModel):
    """Payload of a ``workflow_run`` delivery."""

    action: str
    workflow_run: WorkflowRun
    repository: Repository
    installation: Installation
