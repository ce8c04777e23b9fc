"""Temporary workspaces holding an extracted repository snapshot.

A workspace is a uniquely named temp directory containing the tarball of a
repository's default branch. It belongs to the single handler invocation
that created it and is removed when that invocation ends, whether or not
the invocation succeeded.
"""

import asyncio
import io
import shutil
import tarfile
import tempfile
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator

import structlog

from codex_agent.github.client import GitHubAPIError, InstallationAPI

logger = structlog.get_logger(__name__)

WORKSPACE_PREFIX = "codex-"


class WorkspaceError(Exception):
    """Raised when a workspace cannot be prepared."""

    pass


class ExtractionError(WorkspaceError):
    """Raised when the repository tarball cannot be downloaded or unpacked."""

    def __init__(self, repository: str, message: str):
        self.repository = repository
        super().__init__(f"Failed to extract {repository}: {message}")


@dataclass(frozen=True)
class RepoWorkspace:
    """A prepared workspace.

    Attributes:
        work_dir: The temp directory that owns everything below it.
        repo_dir: The extracted repository root inside work_dir.
    """

    work_dir: Path
    repo_dir: Path


async def create_workspace(
    client: InstallationAPI, owner: str, repo: str
) -> RepoWorkspace:
    """Download and unpack a repository into a fresh temp directory.

    Args:
        client: Installation-scoped GitHub client.
        owner: Repository owner.
        repo: Repository name.

    Returns:
        RepoWorkspace with the temp directory and the repository root.

    Raises:
        ExtractionError: If the download or extraction fails. The temp
            directory is removed before raising.
    """
    repository = f"{owner}/{repo}"
    work_dir = Path(tempfile.mkdtemp(prefix=WORKSPACE_PREFIX))

    try:
        archive = await client.download_tarball(owner, repo)
        repo_dir = await asyncio.to_thread(_extract_tarball, archive, work_dir)
    except GitHubAPIError as exc:
        destroy_workspace(work_dir)
        raise ExtractionError(repository, f"download failed: {exc}") from exc
    except (tarfile.TarError, OSError, ValueError) as exc:
        destroy_workspace(work_dir)
        raise ExtractionError(repository, str(exc)) from exc
    except BaseException:
        destroy_workspace(work_dir)
        raise

    logger.info(
        "Workspace created",
        repository=repository,
        work_dir=str(work_dir),
        repo_dir=str(repo_dir),
    )
    return RepoWorkspace(work_dir=work_dir, repo_dir=repo_dir)


def destroy_workspace(work_dir: Path) -> None:
    """Recursively remove a workspace. Failures are logged, never raised."""
    try:
        shutil.rmtree(work_dir)
        logger.info("Workspace removed", work_dir=str(work_dir))
    except FileNotFoundError:
        pass
    except OSError:
        logger.exception("Failed to remove workspace", work_dir=str(work_dir))


@asynccontextmanager
async def workspace(
    client: InstallationAPI, owner: str, repo: str
) -> AsyncIterator[RepoWorkspace]:
    """Create a workspace and guarantee its removal on exit."""
    created = await create_workspace(client, owner, repo)
    try:
        yield created
    finally:
        destroy_workspace(created.work_dir)


def _extract_tarball(archive: bytes, work_dir: Path) -> Path:
    """Unpack a gzipped tarball and return its single top-level directory.

    GitHub tarballs wrap the tree in one ``<owner>-<repo>-<sha>/`` folder.

    Raises:
        tarfile.TarError: If the archive is corrupt.
        ValueError: If the archive does not have exactly one top-level
            directory.
    """
    with tarfile.open(fileobj=io.BytesIO(archive), mode="r:*") as tar:
        tar.extractall(work_dir, filter="data")

    top_level = [entry for entry in work_dir.iterdir() if entry.is_dir()]
    if len(top_level) != 1:
        raise ValueError(
            f"expected one top-level directory in archive, found {len(top_level)}"
        )
    return top_level[0]
