"""Handler for completed workflow runs.

When a run concludes with "failure", its logs are handed to Codex and the
diagnosis is filed as a new issue labeled "pipeline-failure".
"""

import asyncio
import io
import zipfile
from pathlib import Path
from typing import Optional

import structlog

from codex_agent.config import AppSettings
from codex_agent.handlers.outcome import ClientFactory, HandlerOutcome
from codex_agent.runner.codex import CodexRunner
from codex_agent.webhook.models import WorkflowRunEvent

logger = structlog.get_logger(__name__)

FAILURE_CONCLUSION = "failure"
FAILURE_LABEL = "pipeline-failure"
LOG_CHAR_LIMIT = 50_000


def decode_log_archive(data: bytes) -> str:
    """Turn the logs endpoint response into text.

    GitHub serves run logs as a zip with one text file per job step. Each
    member is decoded and emitted in name order under a ``==> name <==``
    header. Bytes that are not a zip archive are decoded as-is.
    """
    if not zipfile.is_zipfile(io.BytesIO(data)):
        return data.decode("utf-8", errors="replace")

    sections = []
    with zipfile.ZipFile(io.BytesIO(data)) as archive:
        for name in sorted(archive.namelist()):
            if name.endswith("/"):
                continue
            text = archive.read(name).decode("utf-8", errors="replace")
            sections.append(f"==> {name} <==\n{text}")
    return "\n".join(sections)


def build_diagnosis_prompt(log_text: str) -> str:
    return "A CI run failed, diagnose briefly:\n" + log_text[:LOG_CHAR_LIMIT]


def issue_title(run_id: int) -> str:
    return f"CI failed – run #{run_id}"


class WorkflowRunHandler:
    """Files a Codex diagnosis for failed CI runs."""

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
        event: WorkflowRunEvent,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> HandlerOutcome:
        run = event.workflow_run
        if run.conclusion != FAILURE_CONCLUSION:
            logger.debug(
                "Ignoring workflow run", run_id=run.id, conclusion=run.conclusion
            )
            return HandlerOutcome.IGNORED

        owner, repo = event.repository.owner_and_name
        log = logger.bind(repository=event.repository.full_name, run_id=run.id)

        async with self.client_factory(event.installation.id) as client:
            archive = await client.download_workflow_run_logs(owner, repo, run.id)
            log_text = decode_log_archive(archive)

            result = await self.runner.run(
                self.cwd,
                build_diagnosis_prompt(log_text),
                self.settings.openai_api_key,
                cancel_event=cancel_event,
            )
            if result.cancelled:
                return HandlerOutcome.CANCELLED

            await client.create_issue(
                owner,
                repo,
                title=issue_title(run.id),
                body=result.output,
                labels=[FAILURE_LABEL],
            )

        log.info("Filed CI failure diagnosis", log_chars=len(log_text))
        return HandlerOutcome.ISSUE_CREATED
