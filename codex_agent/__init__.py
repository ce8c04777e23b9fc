"""GitHub App that runs the Codex CLI in response to repository events.

- Issues labeled "codex" are turned into a pull request
- Opened or updated pull requests receive a review
- Failed workflow runs get a diagnosis issue
"""

__version__ = "1.0.0"
