"""Dispatch of verified webhook deliveries to event handlers.

The router maps an (event, action) pair to a handler, parses the payload
into the handler's model, and runs it. Handler errors stop at this
boundary: they are logged with the delivery id and event name and never
reach the HTTP layer.

Deliveries about the same subject (an issue or a pull request) supersede
each other: when a new one arrives, the older in-flight run is told to
abandon its Codex invocation.
"""

import asyncio
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterator, List, Optional, Tuple

import structlog

from codex_agent.handlers import (
    HandlerOutcome,
    IssueLabeledHandler,
    PullRequestHandler,
    WorkflowRunHandler,
)
from codex_agent.handlers.issue import is_codex_label
from codex_agent.webhook.models import (
    IssueLabeledEvent,
    PullRequestEvent,
    WorkflowRunEvent,
)

logger = structlog.get_logger(__name__)

Route = Callable[[Dict[str, Any]], Awaitable[HandlerOutcome]]


class DispatchStatus(str, Enum):
    HANDLED = "handled"
    IGNORED = "ignored"
    FAILED = "failed"


@dataclass
class DispatchResult:
    """What happened to one delivery."""

    status: DispatchStatus
    outcome: Optional[HandlerOutcome] = None
    error: Optional[str] = None


class WebhookRouter:
    """Routes deliveries to the issue, pull request and workflow run handlers."""

    def __init__(
        self,
        issue_handler: IssueLabeledHandler,
        pull_request_handler: PullRequestHandler,
        workflow_run_handler: WorkflowRunHandler,
    ):
        self.issue_handler = issue_handler
        self.pull_request_handler = pull_request_handler
        self.workflow_run_handler = workflow_run_handler
        self._routes: Dict[Tuple[str, str], Route] = {
            ("issues", "labeled"): self._route_issue_labeled,
            ("pull_request", "opened"): self._route_pull_request,
            ("pull_request", "synchronize"): self._route_pull_request,
            ("workflow_run", "completed"): self._route_workflow_run,
        }
        self._in_flight: Dict[str, asyncio.Event] = {}

    def routes(self) -> List[str]:
        """Registered ``event.action`` names."""
        return sorted(f"{event}.{action}" for event, action in self._routes)

    async def dispatch(
        self,
        event_name: str,
        delivery_id: Optional[str],
        payload: Dict[str, Any],
    ) -> DispatchResult:
        """Run the handler registered for this delivery, if any.

        Args:
            event_name: Value of the X-GitHub-Event header.
            delivery_id: Value of the X-GitHub-Delivery header.
            payload: Decoded JSON body.

        Returns:
            DispatchResult; never raises for handler failures.
        """
        action = payload.get("action")
        log = logger.bind(delivery_id=delivery_id, event=event_name, action=action)

        if event_name == "ping":
            log.info("Ping received, webhook connected", zen=payload.get("zen"))
            return DispatchResult(status=DispatchStatus.IGNORED)

        route = self._routes.get((event_name, action))
        if route is None:
            log.debug("No handler for event")
            return DispatchResult(status=DispatchStatus.IGNORED)

        log.info(
            "Dispatching delivery",
            repository=(payload.get("repository") or {}).get("full_name"),
            installation_id=(payload.get("installation") or {}).get("id"),
        )

        try:
            outcome = await route(payload)
        except Exception as exc:
            log.exception("Webhook handler failed", error=str(exc))
            return DispatchResult(status=DispatchStatus.FAILED, error=str(exc))

        log.info("Delivery handled", outcome=outcome.value)
        return DispatchResult(status=DispatchStatus.HANDLED, outcome=outcome)

    async def _route_issue_labeled(self, payload: Dict[str, Any]) -> HandlerOutcome:
        event = IssueLabeledEvent.model_validate(payload)
        if not is_codex_label(event):
            return await self.issue_handler.handle(event)
        with self._supersede(event.subject) as cancel_event:
            return await self.issue_handler.handle(event, cancel_event=cancel_event)

    async def _route_pull_request(self, payload: Dict[str, Any]) -> HandlerOutcome:
        event = PullRequestEvent.model_validate(payload)
        with self._supersede(event.subject) as cancel_event:
            return await self.pull_request_handler.handle(
                event, cancel_event=cancel_event
            )

    async def _route_workflow_run(self, payload: Dict[str, Any]) -> HandlerOutcome:
        event = WorkflowRunEvent.model_validate(payload)
        return await self.workflow_run_handler.handle(event)

    @contextmanager
    def _supersede(self, subject: str) -> Iterator[asyncio.Event]:
        """Register a run for subject, cancelling any older run."""
        previous = self._in_flight.get(subject)
        if previous is not None:
            logger.info("Superseding in-flight delivery", subject=subject)
            previous.set()

        cancel_event = asyncio.Event()
        self._in_flight[subject] = cancel_event
        try:
            yield cancel_event
        finally:
            if self._in_flight.get(subject) is cancel_event:
                del self._in_flight[subject]
