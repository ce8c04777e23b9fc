"""FastAPI application entry point for the Codex agent.

Receives GitHub webhook deliveries on ``POST /``, verifies their signature,
and hands them to the WebhookRouter after the response has been sent.
``GET /`` is a liveness probe.
"""

import json
import logging
from functools import partial
from typing import Optional

import structlog
import uvicorn
from fastapi import BackgroundTasks, FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from codex_agent import __version__
from codex_agent.config import AppSettings, load_config
from codex_agent.github.client import create_installation_client
from codex_agent.handlers import (
    IssueLabeledHandler,
    PullRequestHandler,
    WorkflowRunHandler,
)
from codex_agent.logging_config import configure_logging
from codex_agent.runner.codex import CodexRunner
from codex_agent.webhook.router import WebhookRouter
from codex_agent.webhook.signature import (
    SIGNATURE_HEADER,
    SignatureVerificationError,
    verify_signature,
)

logger = structlog.get_logger(__name__)

EVENT_HEADER = "X-GitHub-Event"
DELIVERY_HEADER = "X-GitHub-Delivery"


def build_router(settings: AppSettings) -> WebhookRouter:
    """Wire the handlers and their dependencies into a WebhookRouter.

    Args:
        settings: Validated service settings.

    Returns:
        Fully wired WebhookRouter.
    """
    client_factory = partial(create_installation_client, settings)
    runner = CodexRunner(
        codex_path=settings.codex_path,
        timeout_seconds=settings.codex_timeout_seconds,
    )
    return WebhookRouter(
        issue_handler=IssueLabeledHandler(settings, client_factory, runner),
        pull_request_handler=PullRequestHandler(settings, client_factory, runner),
        workflow_run_handler=WorkflowRunHandler(settings, client_factory, runner),
    )


def create_app(
    settings: AppSettings,
    router: Optional[WebhookRouter] = None,
) -> FastAPI:
    """Create the FastAPI application.

    Args:
        settings: Validated service settings.
        router: Router to dispatch to; built from settings when omitted.

    Returns:
        The configured FastAPI app.
    """
    webhook_router = router if router is not None else build_router(settings)

    app = FastAPI(
        title="Codex Agent",
        description="GitHub App that runs the Codex CLI on repository events",
        version=__version__,
    )
    app.state.settings = settings
    app.state.router = webhook_router

    @app.get("/", response_class=PlainTextResponse)
    async def liveness() -> str:
        """Liveness probe endpoint."""
        return "OK"

    @app.post("/")
    async def github_webhook(request: Request, background_tasks: BackgroundTasks):
        """GitHub webhook receiver endpoint.

        Returns 401 for a missing or invalid signature and 400 for a
        missing event header or a body that is not a JSON object. Any
        verified delivery is acknowledged with 200 and dispatched in the
        background, so handler failures never change the response.
        """
        body = await request.body()
        delivery_id = request.headers.get(DELIVERY_HEADER)
        event_name = request.headers.get(EVENT_HEADER)

        try:
            verify_signature(
                settings.webhook_secret, body, request.headers.get(SIGNATURE_HEADER)
            )
        except SignatureVerificationError as exc:
            logger.warning(
                "Rejected webhook delivery",
                delivery_id=delivery_id,
                event_name=event_name,
                reason=str(exc),
            )
            return JSONResponse(status_code=401, content={"error": str(exc)})

        if not event_name:
            return JSONResponse(
                status_code=400, content={"error": f"missing {EVENT_HEADER} header"}
            )

        try:
            payload = json.loads(body)
        except (json.JSONDecodeError, UnicodeDecodeError):
            logger.warning("Malformed webhook payload", delivery_id=delivery_id)
            return JSONResponse(status_code=400, content={"error": "malformed JSON"})

        if not isinstance(payload, dict):
            return JSONResponse(
                status_code=400, content={"error": "payload must be a JSON object"}
            )

        background_tasks.add_task(
            webhook_router.dispatch, event_name, delivery_id, payload
        )
        return {"status": "accepted", "event": event_name, "delivery_id": delivery_id}

    return app


def main() -> None:
    """Load configuration and serve the webhook endpoint."""
    configure_logging()
    settings = load_config()
    logging.getLogger().setLevel(settings.log_level.upper())

    router = build_router(settings)
    logger.info(
        "Codex agent listening",
        host=settings.host,
        port=settings.port,
        routes=router.routes(),
    )
    uvicorn.run(
        create_app(settings, router),
        host=settings.host,
        port=settings.port,
        log_config=None,
    )


if __name__ == "__main__":
    main()
