# =============================================================================
# Base Agent — Single-Flight Task Executor
# =============================================================================
#
# Every agent (intake, research, document) wraps its stage logic in the
# same envelope:
#
#   process(case)
#     ├── reject with AgentBusyError if a task is in flight or the agent is
#     │   in maintenance
#     ├── acquire lock → status "processing" → agent-processing-started
#     ├── _execute(case copy)                      (subclass logic)
#     ├── success → running mean, processed count → agent-processing-completed
#     ├── failure → status "error" → agent-processing-failed → re-raise
#     └── always release lock; status back to "idle" unless "error"
#
# DESIGN DECISION: asyncio.Lock as the single-flight guard.
# `locked()` is checked and the lock acquired without an await in between,
# so two coroutines can never both pass the guard. A second caller fails
# fast instead of queueing behind the first; callers that need throughput
# provision one agent per concurrent workflow.
#
# DESIGN DECISION: Structured LLM replies go through one helper.
# `_generate_structured()` = generation call + parse_or_default. Failed
# calls and unparseable replies both return the caller's default and are
# counted in `fallbacks`, surfaced as `fallback_count` in the descriptor.
# =============================================================================

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from abc import ABC, abstractmethod
from collections import Counter
from typing import Any, TypeVar

from caseflow.errors import AgentBusyError, ExternalServiceError
from caseflow.models.cases import LegalCase, utcnow
from caseflow.models.workflow import AgentDescriptor, WorkflowLog
from caseflow.services.events import EventBus
from caseflow.services.llm import GenerationRequest, LLMProvider
from caseflow.services.parsing import parse_or_default

logger = logging.getLogger(__name__)

T = TypeVar("T")


class BaseAgent(ABC):
    """
    Shared envelope for all workflow agents.

    Subclasses set the class attributes below and implement `_execute()`;
    `_health_probe()` is optional.
    """

    name: str = "Agent"
    agent_type: str = "agent"
    description: str = ""
    capabilities: tuple[str, ...] = ()

    def __init__(self, llm: LLMProvider, events: EventBus | None = None) -> None:
        self.llm = llm
        self.events = events or EventBus()
        self.fallbacks: Counter[str] = Counter()
        self._lock = asyncio.Lock()
        self._workflow_id: str | None = None
        self._descriptor = AgentDescriptor(
            id=str(uuid.uuid4()),
            name=self.name,
            type=self.agent_type,
            description=self.description,
            capabilities=list(self.capabilities),
        )

    # ---------------------------------------------------------------------
    # Public API
    # ---------------------------------------------------------------------

    async def process(self, case: LegalCase, workflow_id: str | None = None) -> LegalCase:
        """
        Run this agent's task for the case's current `workflow_stage`.

        The input case is never mutated; the returned case is a new copy.

        Raises:
            AgentBusyError: A task is already in flight, or the agent is in
                maintenance mode.
        """
        if self._lock.locked():
            raise AgentBusyError(self.name)
        if self._descriptor.status == "maintenance":
            raise AgentBusyError(self.name, "in maintenance mode")

        async with self._lock:
            stage = case.workflow_stage
            self._workflow_id = workflow_id
            started = time.perf_counter()
            self._descriptor.status = "processing"
            self._descriptor.current_task = f"Processing case {case.id} ({stage})"

            logger.info("Agent %s started case %s (stage=%s)", self.name, case.id, stage)
            self._publish("agent-processing-started", case.id, workflow_id, stage=stage)

            try:
                result = await self._execute(case.model_copy(deep=True))
            except Exception as e:
                self._descriptor.status = "error"
                logger.error("Agent %s failed case %s: %s", self.name, case.id, e)
                self._publish(
                    "agent-processing-failed", case.id, workflow_id,
                    stage=stage, error=str(e),
                )
                raise
            finally:
                self._descriptor.current_task = None
                self._workflow_id = None
                if self._descriptor.status != "error":
                    self._descriptor.status = "idle"

            elapsed_ms = (time.perf_counter() - started) * 1000
            self._record_timing(elapsed_ms)

            log = WorkflowLog(
                stage=stage,
                agent=self.name,
                action="completed",
                details=f"Successfully processed by {self.name}",
                duration_ms=elapsed_ms,
            )
            logger.info(
                "Agent %s completed case %s in %.0fms", self.name, case.id, elapsed_ms,
            )
            self._publish(
                "agent-processing-completed", case.id, workflow_id,
                stage=stage, processing_time_ms=elapsed_ms, log=log,
            )
            return result

    def info(self) -> AgentDescriptor:
        """Snapshot of the descriptor, including the parse-fallback count."""
        return self._descriptor.model_copy(
            update={"fallback_count": sum(self.fallbacks.values())}, deep=True,
        )

    @property
    def status(self) -> str:
        return self._descriptor.status

    def is_available(self) -> bool:
        return not self._lock.locked() and self._descriptor.status != "maintenance"

    def set_maintenance_mode(self, enabled: bool) -> None:
        if self._lock.locked():
            raise AgentBusyError(self.name, "processing; cannot change maintenance mode")
        self._descriptor.status = "maintenance" if enabled else "idle"
        logger.info(
            "Agent %s maintenance mode %s", self.name, "enabled" if enabled else "disabled",
        )

    async def health_check(self) -> bool:
        """Run the agent's probe. Never raises; failure marks the agent 'error'."""
        try:
            healthy = await self._health_probe()
        except Exception:
            logger.exception("Health check failed for agent %s", self.name)
            healthy = False

        if not healthy and self._descriptor.status == "idle":
            self._descriptor.status = "error"
        return healthy

    # ---------------------------------------------------------------------
    # Subclass Hooks
    # ---------------------------------------------------------------------

    @abstractmethod
    async def _execute(self, case: LegalCase) -> LegalCase:
        ...

    async def _health_probe(self) -> bool:
        return True

    # ---------------------------------------------------------------------
    # Helpers for Subclasses
    # ---------------------------------------------------------------------

    def _log_progress(self, case_id: str, message: str, **details: Any) -> None:
        logger.info("Agent %s progress [%s]: %s", self.name, case_id, message)
        self._publish(
            "agent-progress-update", case_id, self._workflow_id,
            message=message, details=details,
        )

    async def _generate_structured(
        self,
        request: GenerationRequest,
        schema: Any,
        default: T,
        *,
        label: str,
    ) -> T:
        """
        Ask the LLM for a structured reply; fall back to `default`.

        Both a failed call and an unparseable reply return `default` and
        increment `fallbacks[label]`. Nothing here raises.
        """
        try:
            response = await self.llm.generate(request)
        except ExternalServiceError as e:
            logger.warning("%s: '%s' call failed, using fallback: %s", self.name, label, e)
            self.fallbacks[label] += 1
            return default
        return parse_or_default(
            response.content, schema, default, label=label, counter=self.fallbacks,
        )

    # ---------------------------------------------------------------------
    # Internals
    # ---------------------------------------------------------------------

    def _record_timing(self, elapsed_ms: float) -> None:
        descriptor = self._descriptor
        descriptor.processed_cases += 1
        n = descriptor.processed_cases
        descriptor.average_processing_time_ms += (
            (elapsed_ms - descriptor.average_processing_time_ms) / n
        )

    def _publish(
        self, kind: str, case_id: str, workflow_id: str | None, **payload: Any,
    ) -> None:
        if workflow_id is not None:
            payload["workflow_id"] = workflow_id
        self.events.publish(
            kind,
            agent_id=self._descriptor.id,
            agent=self.name,
            agent_type=self.agent_type,
            case_id=case_id,
            agent_state=self.info(),
            timestamp=utcnow(),
            **payload,
        )
