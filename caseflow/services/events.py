# =============================================================================
# Lifecycle Events — Explicit Publish/Subscribe
# =============================================================================
#
# The orchestrator and agents publish lifecycle events here; transports
# (WebSocket push, audit logs, metrics) subscribe. Nothing in the pipeline
# depends on who is listening.
#
# DESIGN DECISION: One EventBus instance per orchestrator, injected into
# its agents, instead of a process-wide emitter. Tests create their own bus
# and observe exactly the events their workflow produced.
#
# DESIGN DECISION: At-most-once, synchronous delivery. Handlers run inline
# in publish order. A handler that raises is logged and skipped; it never
# fails the stage that published the event.
# =============================================================================

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from caseflow.models.cases import utcnow

logger = logging.getLogger(__name__)

WORKFLOW_EVENTS = frozenset({
    "workflow-started",
    "workflow-progress",
    "workflow-stage-started",
    "workflow-stage-completed",
    "workflow-stage-failed",
    "workflow-completed",
    "workflow-failed",
    "workflow-paused",
    "workflow-resumed",
    "workflow-cancelled",
})
AGENT_EVENTS = frozenset({
    "agent-processing-started",
    "agent-processing-completed",
    "agent-processing-failed",
    "agent-progress-update",
})
EVENT_KINDS = WORKFLOW_EVENTS | AGENT_EVENTS
ALL_EVENTS = "*"


@dataclass
class Event:
    """A published lifecycle event."""

    kind: str
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utcnow)

    @property
    def workflow_id(self) -> str | None:
        return self.payload.get("workflow_id")

    @property
    def case_id(self) -> str | None:
        return self.payload.get("case_id")


EventHandler = Callable[[Event], None]


class EventBus:
    """Synchronous publish/subscribe keyed by event kind."""

    def __init__(self) -> None:
        self._handlers: dict[str, list[EventHandler]] = defaultdict(list)

    def subscribe(self, kind: str, handler: EventHandler) -> Callable[[], None]:
        """
        Register `handler` for `kind` ("*" for every kind).

        Returns a callable that removes the subscription.
        """
        if kind != ALL_EVENTS and kind not in EVENT_KINDS:
            raise ValueError(f"Unknown event kind '{kind}'")
        self._handlers[kind].append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers[kind]:
                self._handlers[kind].remove(handler)

        return unsubscribe

    def publish(self, kind: str, **payload: Any) -> Event:
        if kind not in EVENT_KINDS:
            raise ValueError(f"Unknown event kind '{kind}'")

        event = Event(kind=kind, payload=payload)
        for handler in [*self._handlers[kind], *self._handlers[ALL_EVENTS]]:
            try:
                handler(event)
            except Exception:
                logger.exception("Event handler failed for %s", kind)
        return event
