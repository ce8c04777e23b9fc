"""Codex CLI subprocess runner.

This module manages Codex CLI execution:
- Subprocess invocation with the prompt and API key
- Timeout enforcement and external cancellation
- stdout/stderr capture with a size ceiling
"""

from codex_agent.runner.codex import CodexResult, CodexRunner

__all__ = ["CodexResult", "CodexRunner"]
