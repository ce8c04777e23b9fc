"""Service configuration using pydantic-settings.

This module defines the AppSettings class that reads configuration from
environment variables. The GitHub App identity, its private key, the webhook
secret and the Codex API key must be set for the service to start; every
other setting has a default.

Environment variables:
- APP_ID, PRIVATE_KEY, WEBHOOK_SECRET, OPENAI_API_KEY (required)
- PORT (default 3000), HOST, GITHUB_API_URL, GITHUB_HOST, BASE_BRANCH,
  CODEX_PATH, CODEX_TIMEOUT_SECONDS, LOG_LEVEL
"""

import sys

import structlog
from pydantic import ValidationError, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = structlog.get_logger(__name__)

REQUIRED_SETTINGS = ("app_id", "private_key", "webhook_secret", "openai_api_key")


class AppSettings(BaseSettings):
    """Codex agent configuration from environment variables.

    Required fields (must be set via environment variables):
    - app_id: Numeric identifier of the GitHub App
    - private_key: PEM private key used to sign GitHub App JWTs
    - webhook_secret: Shared secret for webhook signature verification
    - openai_api_key: Credential handed to the Codex CLI
    """

    model_config = SettingsConfigDict(
        case_sensitive=False,
        frozen=True,
    )

    # -------------------------------------------------------------------------
    # GitHub App
    # -------------------------------------------------------------------------
    app_id: str

    private_key: str

    webhook_secret: str

    # Base URL for the GitHub REST API (supports GitHub Enterprise)
    github_api_url: str = "https://api.github.com"

    # Host used to build authenticated git push URLs
    github_host: str = "github.com"

    # Branch that pull requests target and that generated commits build on
    base_branch: str = "main"

    # -------------------------------------------------------------------------
    # Codex CLI
    # -------------------------------------------------------------------------
    openai_api_key: str

    codex_path: str = "codex"

    codex_timeout_seconds: int = 1800

    # -------------------------------------------------------------------------
    # Server
    # -------------------------------------------------------------------------
    host: str = "0.0.0.0"

    port: int = 3000

    log_level: str = "INFO"

    # -------------------------------------------------------------------------
    # Validators
    # -------------------------------------------------------------------------
    @field_validator(*REQUIRED_SETTINGS)
    @classmethod
    def validate_not_blank(cls, v: str, info: ValidationInfo) -> str:
        """Reject required settings that are present but empty."""
        if not v or not v.strip():
            raise ValueError(f"{info.field_name} cannot be empty")
        return v

    @field_validator("private_key")
    @classmethod
    def expand_newlines(cls, v: str) -> str:
        """Allow the PEM key to be passed on one line with literal \\n."""
        return v.replace("\\n", "\n")

    @field_validator("codex_timeout_seconds")
    @classmethod
    def validate_codex_timeout(cls, v: int) -> int:
        if v < 1:
            raise ValueError("codex_timeout_seconds must be at least 1")
        return v

    @field_validator("port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        if not 1 <= v <= 65535:
            raise ValueError("port must be between 1 and 65535")
        return v


def _redact_secret(value: str, visible_chars: int = 4) -> str:
    """Redact a secret value, showing only the first few characters."""
    if len(value) <= visible_chars:
        return "*" * len(value)
    return value[:visible_chars] + "*" * (len(value) - visible_chars)


def load_config() -> AppSettings:
    """Load settings from the environment or terminate the process.

    Returns:
        AppSettings: Validated settings.

    Raises:
        SystemExit: With code 1 if a required setting is missing or invalid.
    """
    try:
        settings = AppSettings()
    except ValidationError as exc:
        fields = sorted(
            {str(error["loc"][0]) for error in exc.errors() if error["loc"]}
        )
        logger.error(
            "Missing or invalid environment variables",
            variables=[name.upper() for name in fields],
        )
        sys.exit(1)

    logger.info(
        "Configuration loaded",
        app_id=settings.app_id,
        webhook_secret=_redact_secret(settings.webhook_secret),
        openai_api_key=_redact_secret(settings.openai_api_key),
        github_api_url=settings.github_api_url,
        base_branch=settings.base_branch,
        codex_path=settings.codex_path,
        codex_timeout_seconds=settings.codex_timeout_seconds,
        host=settings.host,
        port=settings.port,
    )
    return settings
