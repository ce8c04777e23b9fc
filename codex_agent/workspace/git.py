"""Git operations executed inside an extracted repository snapshot.

Each function runs one git subcommand with the repository directory as the
working directory. The repository on disk is the only side effect. A git
process that exits with an unexpected status raises GitCommandError so the
caller decides whether the failure is fatal.
"""

import asyncio
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

import structlog

logger = structlog.get_logger(__name__)

GIT_COMMAND_TIMEOUT_SECONDS = 300

BOT_NAME = "Codex Agent"
BOT_EMAIL = "codex@app"

_CREDENTIAL_PATTERN = re.compile(r"(https?://)[^@/\s]+@")


def redact_credentials(text: str) -> str:
    """Strip user:token pairs from any URLs embedded in text."""
    return _CREDENTIAL_PATTERN.sub(r"\1***@", text)


class GitCommandError(Exception):
    """Raised when a git command fails or exits with an unexpected status.

    Attributes:
        args_list: The git arguments (credentials redacted).
        exit_code: Process exit code (-1 for timeout/OS errors).
        stderr: Captured standard error (credentials redacted).
    """

    def __init__(self, args_list: Sequence[str], exit_code: int, stderr: str):
        self.args_list = [redact_credentials(arg) for arg in args_list]
        self.exit_code = exit_code
        self.stderr = redact_credentials(stderr)
        super().__init__(
            f"git {' '.join(self.args_list)} exited with {exit_code}: {self.stderr}"
        )


@dataclass
class GitResult:
    """Outcome of a single git invocation."""

    exit_code: int
    stdout: str
    stderr: str


async def run_git(
    repo_dir: Path,
    *args: str,
    allowed_exit_codes: Sequence[int] = (0,),
) -> GitResult:
    """Run git with the given arguments in repo_dir.

    Args:
        repo_dir: Working directory for the git process.
        *args: Git subcommand and arguments.
        allowed_exit_codes: Exit codes that count as success.

    Returns:
        GitResult with exit code and decoded output.

    Raises:
        GitCommandError: If git cannot be started, times out, or exits with
            a status outside allowed_exit_codes.
    """
    try:
        process = await asyncio.create_subprocess_exec(
            "git",
            *args,
            cwd=str(repo_dir),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, stderr = await asyncio.wait_for(
            process.communicate(),
            timeout=GIT_COMMAND_TIMEOUT_SECONDS,
        )
    except asyncio.TimeoutError as exc:
        process.kill()
        raise GitCommandError(
            args, -1, f"timed out after {GIT_COMMAND_TIMEOUT_SECONDS}s"
        ) from exc
    except OSError as exc:
        raise GitCommandError(args, -1, f"failed to execute git: {exc}") from exc

    result = GitResult(
        exit_code=process.returncode,
        stdout=stdout.decode("utf-8", errors="replace"),
        stderr=stderr.decode("utf-8", errors="replace"),
    )

    if result.exit_code not in allowed_exit_codes:
        raise GitCommandError(args, result.exit_code, result.stderr.strip())

    logger.debug(
        "git command finished",
        command=redact_credentials(" ".join(args)),
        exit_code=result.exit_code,
    )
    return result


async def attach_history(repo_dir: Path, remote_url: str, base_branch: str) -> None:
    """Turn an extracted snapshot into a checkout of base_branch.

    Initializes a repository, shallow-fetches the base branch and hard-resets
    onto it. Archive downloads omit export-ignore paths and expand
    export-subst placeholders, so the working tree is rewritten to the
    fetched commit and only later edits show up as changes.
    """
    await run_git(repo_dir, "init", "--quiet")
    await run_git(repo_dir, "fetch", "--quiet", "--depth", "1", remote_url, base_branch)
    await run_git(repo_dir, "reset", "--hard", "--quiet", "FETCH_HEAD")
    logger.info(
        "Attached snapshot to remote history",
        repo_dir=str(repo_dir),
        base_branch=base_branch,
    )


async def configure_identity(repo_dir: Path) -> None:
    """Set the bot commit identity in the repository-local config."""
    await run_git(repo_dir, "config", "user.email", BOT_EMAIL)
    await run_git(repo_dir, "config", "user.name", BOT_NAME)


async def create_branch(repo_dir: Path, name: str) -> None:
    """Create and switch to a new branch."""
    await run_git(repo_dir, "checkout", "-b", name)


async def stage_all(repo_dir: Path) -> None:
    """Stage the whole working tree, deletions included."""
    await run_git(repo_dir, "add", "-A")


async def has_staged_changes(repo_dir: Path) -> bool:
    """Return True when the index differs from HEAD.

    ``git diff --cached --quiet`` exits 1 when there are differences and 0
    when there are none; any other status raises GitCommandError.
    """
    result = await run_git(
        repo_dir, "diff", "--cached", "--quiet", allowed_exit_codes=(0, 1)
    )
    return result.exit_code == 1


async def commit(repo_dir: Path, message: str) -> None:
    """Commit the staged changes."""
    await run_git(repo_dir, "commit", "--quiet", "-m", message)


async def force_push(repo_dir: Path, remote_url: str, branch_name: str) -> None:
    """Force-push HEAD to refs/heads/<branch_name> on remote_url.

    The branch is regenerated on every run, so whatever the remote branch
    held before is overwritten.
    """
    await run_git(
        repo_dir, "push", "--force", remote_url, f"HEAD:refs/heads/{branch_name}"
    )
    logger.info(
        "Force-pushed branch",
        remote=redact_credentials(remote_url),
        branch=branch_name,
    )
