"""Repository workspaces for Codex CLI execution.

This module downloads a repository snapshot into a temp directory, anchors
it to the base branch history, and wraps the git commands used to commit
and push generated changes.
"""

from codex_agent.workspace.git import GitCommandError
from codex_agent.workspace.manager import (
    ExtractionError,
    RepoWorkspace,
    WorkspaceError,
    create_workspace,
    destroy_workspace,
    workspace,
)

__all__ = [
    "ExtractionError",
    "GitCommandError",
    "RepoWorkspace",
    "WorkspaceError",
    "create_workspace",
    "destroy_workspace",
    "workspace",
]
