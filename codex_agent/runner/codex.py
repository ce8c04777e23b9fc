"""Codex CLI subprocess management.

Runs the Codex CLI as an async subprocess with the prompt on the command
line and the API key in the child's environment. Output is captured up to
a fixed ceiling, the run is bounded by a timeout, and an optional cancel
event lets the caller abandon a run that is no longer wanted.

Generator failures never raise: a non-zero exit, a timeout, a missing
binary or a cancellation are all reported on the returned CodexResult and
callers carry on with whatever output was captured.
"""

import asyncio
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

import structlog

logger = structlog.get_logger(__name__)

DEFAULT_MAX_OUTPUT_BYTES = 16 * 1024 * 1024
READ_CHUNK_BYTES = 64 * 1024


@dataclass
class CodexResult:
    """Result of a Codex CLI execution.

    Attributes:
        success: True when the CLI exited with code 0.
        exit_code: Process exit code (-1 for timeout/cancel/OS errors).
        stdout: Captured standard output.
        stderr: Captured standard error.
        duration_seconds: Wall-clock execution time.
        timed_out: The run was killed after exceeding the timeout.
        cancelled: The run was killed because the cancel event was set.
        truncated: Output exceeded the ceiling and the run was killed.
    """

    success: bool
    exit_code: int
    stdout: str
    stderr: str
    duration_seconds: float
    timed_out: bool = False
    cancelled: bool = False
    truncated: bool = False

    @property
    def output(self) -> str:
        """Whitespace-trimmed standard output."""
        return self.stdout.strip()


class CodexRunner:
    """Launches the Codex CLI and collects its output.

    Attributes:
        codex_path: Executable name or path of the Codex CLI.
        timeout_seconds: Maximum execution time before the process is killed.
        max_output_bytes: Per-stream capture ceiling.
    """

    def __init__(
        self,
        codex_path: str = "codex",
        timeout_seconds: int = 1800,
        max_output_bytes: int = DEFAULT_MAX_OUTPUT_BYTES,
    ):
        self.codex_path = codex_path
        self.timeout_seconds = timeout_seconds
        self.max_output_bytes = max_output_bytes

    async def run(
        self,
        cwd: Path,
        prompt: str,
        api_key: str,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> CodexResult:
        """Execute the Codex CLI in full-auto mode against cwd.

        Args:
            cwd: Working directory for the CLI.
            prompt: Prompt passed as the final argument.
            api_key: Value for OPENAI_API_KEY in the child environment.
            cancel_event: When set, the run is killed and reported cancelled.

        Returns:
            CodexResult with exit code, captured output, and duration.
        """
        start_time = time.monotonic()

        try:
            process = await self._start_process(cwd, prompt, api_key)
        except OSError as exc:
            return self._handle_os_error(exc, start_time)

        collector = asyncio.ensure_future(self._collect_output(process))
        waiters = {collector}
        cancel_waiter = None
        if cancel_event is not None:
            cancel_waiter = asyncio.ensure_future(cancel_event.wait())
            waiters.add(cancel_waiter)

        try:
            done, _ = await asyncio.wait(
                waiters,
                timeout=self.timeout_seconds,
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            collector.cancel()
            self._kill(process)
            raise
        finally:
            if cancel_waiter is not None:
                cancel_waiter.cancel()

        if collector not in done:
            collector.cancel()
            self._kill(process)
            if cancel_waiter is not None and cancel_waiter in done:
                return self._handle_cancel(start_time)
            return self._handle_timeout(start_time)

        stdout, stderr, truncated = collector.result()
        duration = time.monotonic() - start_time
        exit_code = process.returncode if process.returncode is not None else -1
        return self._build_result(exit_code, stdout, stderr, duration, truncated)

    async def _start_process(
        self, cwd: Path, prompt: str, api_key: str
    ) -> asyncio.subprocess.Process:
        """Launch the Codex CLI subprocess.

        Raises:
            OSError: If the executable cannot be found or started.
        """
        logger.info(
            "Starting codex",
            cwd=str(cwd),
            prompt_chars=len(prompt),
            timeout=self.timeout_seconds,
        )

        env = dict(os.environ)
        env["OPENAI_API_KEY"] = api_key

        return await asyncio.create_subprocess_exec(
            self.codex_path,
            "-q",
            "-a",
            "full-auto",
            prompt,
            cwd=str(cwd),
            env=env,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )

    async def _collect_output(
        self, process: asyncio.subprocess.Process
    ) -> Tuple[str, str, bool]:
        """Read stdout and stderr concurrently and wait for exit.

        Returns:
            Tuple of (stdout_text, stderr_text, truncated).
        """
        (stdout, stdout_truncated), (stderr, stderr_truncated) = await asyncio.gather(
            self._read_capped(process, process.stdout),
            self._read_capped(process, process.stderr),
        )
        await process.wait()
        return (
            stdout.decode("utf-8", errors="replace"),
            stderr.decode("utf-8", errors="replace"),
            stdout_truncated or stderr_truncated,
        )

    async def _read_capped(
        self,
        process: asyncio.subprocess.Process,
        stream: Optional[asyncio.StreamReader],
    ) -> Tuple[bytes, bool]:
        """Read a stream to EOF, killing the process past the ceiling."""
        if stream is None:
            return b"", False

        buffer = bytearray()
        while True:
            chunk = await stream.read(READ_CHUNK_BYTES)
            if not chunk:
                return bytes(buffer), False
            remaining = self.max_output_bytes - len(buffer)
            buffer.extend(chunk[:remaining])
            if len(chunk) > remaining:
                logger.warning(
                    "codex output exceeded ceiling, killing process",
                    max_output_bytes=self.max_output_bytes,
                )
                self._kill(process)
                return bytes(buffer), True

    def _kill(self, process: asyncio.subprocess.Process) -> None:
        try:
            process.kill()
        except ProcessLookupError:
            pass

    def _handle_timeout(self, start_time: float) -> CodexResult:
        duration = time.monotonic() - start_time
        logger.error("codex timed out", timeout_seconds=self.timeout_seconds)
        return CodexResult(
            success=False,
            exit_code=-1,
            stdout="",
            stderr=f"Process timed out after {self.timeout_seconds}s",
            duration_seconds=duration,
            timed_out=True,
        )

    def _handle_cancel(self, start_time: float) -> CodexResult:
        duration = time.monotonic() - start_time
        logger.warning("codex run cancelled", duration_seconds=round(duration, 1))
        return CodexResult(
            success=False,
            exit_code=-1,
            stdout="",
            stderr="Process cancelled",
            duration_seconds=duration,
            cancelled=True,
        )

    def _handle_os_error(self, exc: OSError, start_time: float) -> CodexResult:
        """Return a failure result for OS-level errors (e.g., missing binary)."""
        duration = time.monotonic() - start_time
        logger.error("Failed to start codex", error=str(exc))
        return CodexResult(
            success=False,
            exit_code=-1,
            stdout="",
            stderr=f"Failed to start codex: {exc}",
            duration_seconds=duration,
        )

    def _build_result(
        self,
        exit_code: int,
        stdout: str,
        stderr: str,
        duration: float,
        truncated: bool,
    ) -> CodexResult:
        is_success = exit_code == 0 and not truncated

        if is_success:
            logger.info(
                "codex completed",
                duration_seconds=round(duration, 1),
                output_chars=len(stdout),
            )
        else:
            logger.error(
                "codex failed",
                exit_code=exit_code,
                duration_seconds=round(duration, 1),
                truncated=truncated,
                stderr=stderr[-500:],
            )

        return CodexResult(
            success=is_success,
            exit_code=exit_code,
            stdout=stdout,
            stderr=stderr,
            duration_seconds=duration,
            truncated=truncated,
        )
