# =============================================================================
# LangGraph Orchestrator — Workflow Stage Graph
# =============================================================================
#
# Drives a LegalCase through the stage pipeline, one agent per stage:
#
#   START ─▶ intake ─▶ research ─▶ argument-generation ─▶ drafting
#                 ─▶ review ─▶ final-formatting ─▶ END
#
# Every stage node has a conditional edge: "continue" to the next stage, or
# "halt" straight to END when the workflow is paused or was cancelled.
#
# STAGE → AGENT:
#   intake                         → intake agent
#   research, argument-generation  → research agent
#   drafting, review,
#   final-formatting               → document agent
#
# DESIGN DECISION: The orchestrator owns its records.
# WorkflowState lives in an injected WorkflowStore, agents and the
# EventBus are injected too. Nothing is process-global, so tests build an
# isolated orchestrator with fakes.
#
# DESIGN DECISION: Fail fast.
# A stage failure records exactly one WorkflowError (severity "high"),
# publishes workflow-stage-failed then workflow-failed, and raises
# StageExecutionError. Later stages assume every earlier one succeeded, so
# there is no partial continuation. The record stays queryable.
#
# DESIGN DECISION: Pause suppresses the next dispatch.
# It never interrupts an agent call already in flight. A paused workflow
# halts before its next stage; resume_workflow() clears the flag and the
# caller re-invokes process_workflow(), which skips completed stages.
#
# DESIGN DECISION: Graph compiled once per orchestrator.
# Nodes are bound to this orchestrator's store, agents and bus.
# =============================================================================

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections import deque
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta
from typing import Any

from langgraph.graph import END, START, StateGraph
from typing_extensions import TypedDict

from caseflow.agents.base import BaseAgent
from caseflow.agents.document import DocumentAgent
from caseflow.agents.intake import IntakeAgent
from caseflow.agents.research import ResearchAgent
from caseflow.config import settings
from caseflow.errors import StageExecutionError, ValidationError, WorkflowNotFoundError
from caseflow.models.cases import LegalCase, utcnow
from caseflow.models.workflow import (
    COMPLETED,
    STAGES,
    WorkflowError,
    WorkflowLog,
    WorkflowState,
    next_stage,
)
from caseflow.services.embedder import get_embedder
from caseflow.services.events import EventBus
from caseflow.services.llm import LLMProvider, get_llm_provider
from caseflow.services.rendering import DocumentRenderer, FileDocumentRenderer
from caseflow.services.retrieval import RetrievalEngine
from caseflow.services.workflow_store import InMemoryWorkflowStore, WorkflowStore

logger = logging.getLogger(__name__)

ORCHESTRATOR = "workflow-orchestrator"

STAGE_AGENTS: dict[str, str] = {
    "intake": "intake",
    "research": "research",
    "argument-generation": "research",
    "drafting": "document",
    "review": "document",
    "final-formatting": "document",
}

# ---------------------------------------------------------------------------
# ETA Constants
# ---------------------------------------------------------------------------
# estimated_completion = now + base × complexity × category (minutes).
# Unknown keys use a multiplier of 1.
# ---------------------------------------------------------------------------

COMPLEXITY_MULTIPLIERS: dict[str, float] = {
    "low": 1.0,
    "medium": 1.5,
    "high": 2.5,
}
CATEGORY_MULTIPLIERS: dict[str, float] = {
    "civil-litigation": 2.0,
    "contract-dispute": 1.5,
    "employment-law": 1.8,
    "personal-injury": 2.2,
    "intellectual-property": 2.5,
    "real-estate": 1.3,
    "family-law": 1.7,
    "criminal-defense": 2.8,
    "business-law": 1.4,
    "other": 1.0,
}


def estimate_completion(case: LegalCase, now: datetime | None = None) -> datetime:
    details = case.case_details
    minutes = (
        settings.workflow_base_minutes
        * COMPLEXITY_MULTIPLIERS.get(details.complexity, 1.0)
        * CATEGORY_MULTIPLIERS.get(details.category, 1.0)
    )
    return (now or utcnow()) + timedelta(minutes=minutes)


# ---------------------------------------------------------------------------
# Graph State Schema
# ---------------------------------------------------------------------------


class StageGraphState(TypedDict, total=False):
    """
    State flowing through the stage graph.

    `case` is replaced by each stage's output. `halted` is set by a node
    that declined to run its stage (paused or cancelled workflow).
    NOTE: LegalCase is not JSON-serialisable as graph state; safe as long
    as no checkpointer is configured.
    """

    workflow_id: str
    case: LegalCase
    halted: bool
    halt_reason: str


LoadCase = Callable[[str], Awaitable[LegalCase]]


class WorkflowOrchestrator:
    """
    Owns workflow records and sequences stages through the agents.

    Usage:
        orchestrator = WorkflowOrchestrator.from_services()
        workflow_id = await orchestrator.start_workflow(case)
        case = await orchestrator.process_workflow(workflow_id, case)
    """

    def __init__(
        self,
        agents: dict[str, BaseAgent],
        events: EventBus | None = None,
        store: WorkflowStore | None = None,
    ) -> None:
        missing = set(STAGE_AGENTS.values()) - set(agents)
        if missing:
            raise ValueError(f"Missing agents for: {', '.join(sorted(missing))}")

        self.agents = agents
        self.events = events or EventBus()
        self.store: WorkflowStore = store if store is not None else InMemoryWorkflowStore()
        self._queue: deque[str] = deque()
        self._drain_lock = asyncio.Lock()
        self._graph = self._build_graph()

        logger.info(
            "Workflow orchestrator initialized with agents: %s", ", ".join(agents),
        )

    @classmethod
    def from_services(
        cls,
        llm: LLMProvider | None = None,
        retrieval: RetrievalEngine | None = None,
        renderer: DocumentRenderer | None = None,
        events: EventBus | None = None,
        store: WorkflowStore | None = None,
    ) -> WorkflowOrchestrator:
        """Wire the three standard agents to shared services and one bus."""
        llm = llm or get_llm_provider()
        retrieval = retrieval or RetrievalEngine(get_embedder())
        renderer = renderer or FileDocumentRenderer()
        events = events or EventBus()

        agents: dict[str, BaseAgent] = {
            "intake": IntakeAgent(llm, events),
            "research": ResearchAgent(llm, retrieval, events),
            "document": DocumentAgent(llm, renderer, events),
        }
        return cls(agents, events=events, store=store)

    # ---------------------------------------------------------------------
    # Graph Assembly
    # ---------------------------------------------------------------------

    def _build_graph(self) -> Any:
        builder = StateGraph(StageGraphState)
        for stage in STAGES:
            builder.add_node(stage, self._stage_node(stage))

        builder.add_edge(START, STAGES[0])
        for stage in STAGES:
            following = next_stage(stage)
            builder.add_conditional_edges(
                stage,
                _route,
                {"continue": END if following == COMPLETED else following, "halt": END},
            )
        return builder.compile()

    def _stage_node(self, stage: str) -> Callable[[StageGraphState], Awaitable[dict]]:
        async def node(state: StageGraphState) -> dict:
            return await self._run_stage(stage, state)

        return node

    # ---------------------------------------------------------------------
    # Public API
    # ---------------------------------------------------------------------

    async def start_workflow(self, case: LegalCase) -> str:
        """Create the workflow record, enqueue it and publish workflow-started."""
        workflow_id = str(uuid.uuid4())
        state = WorkflowState(
            case_id=case.id,
            current_stage=STAGES[0],
            estimated_completion=estimate_completion(case),
        )
        state.logs.append(WorkflowLog(
            stage=STAGES[0], agent=ORCHESTRATOR, action="started", details="Workflow initiated",
        ))
        self.store.save(workflow_id, state)
        self._queue.append(workflow_id)

        logger.info(
            "Workflow started (workflow_id=%s, case_id=%s, eta=%s)",
            workflow_id, case.id, state.estimated_completion.isoformat(),
        )
        self._publish("workflow-started", workflow_id, state)
        return workflow_id

    async def process_workflow(self, workflow_id: str, case: LegalCase) -> LegalCase:
        """
        Run every stage not yet completed, in order.

        Returns the updated case. A paused or cancelled workflow returns
        the case as of the last completed stage. The workflow leaves the
        queue either way; drain_queue() never runs it a second time.

        Raises:
            WorkflowNotFoundError: Unknown workflow id.
            StageExecutionError: A stage failed; the workflow is aborted.
        """
        state = self._require(workflow_id)
        if case.id != state.case_id:
            raise ValidationError(
                f"Case {case.id} does not belong to workflow {workflow_id}"
            )
        if workflow_id in self._queue:
            self._queue.remove(workflow_id)
        if state.current_stage == COMPLETED:
            logger.info("Workflow %s already completed", workflow_id)
            return case

        result: StageGraphState = await self._graph.ainvoke(
            {"workflow_id": workflow_id, "case": case, "halted": False}
        )
        final_case = result["case"]

        if result.get("halted"):
            logger.info(
                "Workflow %s halted before completion (%s)",
                workflow_id, result.get("halt_reason", "unknown"),
            )
            return final_case

        self._complete(workflow_id, final_case)
        return final_case

    async def pause_workflow(self, workflow_id: str) -> None:
        """Stop before the next stage. An in-flight agent call still finishes."""
        state = self._require(workflow_id)
        state.paused = True
        state.logs.append(WorkflowLog(
            stage=state.current_stage, agent=ORCHESTRATOR, action="paused",
            details="Workflow paused by user",
        ))
        self.store.save(workflow_id, state)
        logger.info("Workflow %s paused at %s", workflow_id, state.current_stage)
        self._publish("workflow-paused", workflow_id, state)

    async def resume_workflow(self, workflow_id: str) -> None:
        """Clear the pause flag. Call process_workflow() to continue."""
        state = self._require(workflow_id)
        state.paused = False
        state.logs.append(WorkflowLog(
            stage=state.current_stage, agent=ORCHESTRATOR, action="resumed",
            details="Workflow resumed by user",
        ))
        self.store.save(workflow_id, state)
        logger.info("Workflow %s resumed at %s", workflow_id, state.current_stage)
        self._publish("workflow-resumed", workflow_id, state)

    async def cancel_workflow(self, workflow_id: str) -> None:
        """Remove the workflow record. An in-flight agent call still finishes."""
        state = self._require(workflow_id)
        state.logs.append(WorkflowLog(
            stage=state.current_stage, agent=ORCHESTRATOR, action="cancelled",
            details="Workflow cancelled by user",
        ))
        self.store.delete(workflow_id)
        if workflow_id in self._queue:
            self._queue.remove(workflow_id)
        logger.info("Workflow %s cancelled", workflow_id)
        self._publish("workflow-cancelled", workflow_id, state)

    def get_workflow_state(self, workflow_id: str) -> WorkflowState:
        return self._require(workflow_id).model_copy(deep=True)

    def list_workflows(self) -> dict[str, WorkflowState]:
        return {
            workflow_id: state.model_copy(deep=True)
            for workflow_id, state in self.store.items()
        }

    def queued_workflows(self) -> list[str]:
        return list(self._queue)

    async def get_agent_status(self) -> dict[str, dict[str, Any]]:
        """Descriptor of every agent plus the result of its health probe."""
        status: dict[str, dict[str, Any]] = {}
        for key, agent in self.agents.items():
            healthy = await agent.health_check()
            status[key] = {**agent.info().model_dump(), "healthy": healthy}
        return status

    async def drain_queue(self, load_case: LoadCase) -> dict[str, LegalCase | Exception]:
        """
        Process queued workflows one at a time, oldest first.

        Single worker: a second concurrent drain waits for the first to
        finish. Case data comes from `load_case(case_id)`. Failures are
        already recorded on the workflow; they are logged, returned in the
        result map, and the drain moves on.
        """
        async with self._drain_lock:
            results: dict[str, LegalCase | Exception] = {}
            while self._queue:
                workflow_id = self._queue.popleft()
                state = self.store.get(workflow_id)
                if state is None:
                    continue

                try:
                    case = await load_case(state.case_id)
                    results[workflow_id] = await self.process_workflow(workflow_id, case)
                except Exception as e:
                    logger.error("Queued workflow %s failed: %s", workflow_id, e)
                    results[workflow_id] = e

            logger.info("Workflow queue drained (%d processed)", len(results))
            return results

    # ---------------------------------------------------------------------
    # Stage Execution
    # ---------------------------------------------------------------------

    async def _run_stage(self, stage: str, graph_state: StageGraphState) -> dict:
        workflow_id = graph_state["workflow_id"]
        state = self.store.get(workflow_id)

        if state is None:
            return {"halted": True, "halt_reason": "cancelled"}
        if stage in state.completed_stages:
            return {"halted": False}
        if state.paused:
            return {"halted": True, "halt_reason": "paused"}

        agent = self.agents[STAGE_AGENTS[stage]]
        state.current_stage = stage
        progress = state.advance_progress(stage)
        self.store.save(workflow_id, state)
        self._publish("workflow-progress", workflow_id, state, progress=progress, stage=stage)
        self._publish("workflow-stage-started", workflow_id, state, stage=stage)

        stage_case = graph_state["case"].model_copy(update={"workflow_stage": stage})
        started = time.perf_counter()
        try:
            case = await agent.process(stage_case, workflow_id=workflow_id)
        except Exception as e:
            self._fail_stage(workflow_id, state, stage, agent, e)
            raise StageExecutionError(stage, agent.name, str(e)) from e
        duration_ms = (time.perf_counter() - started) * 1000

        # Cancelled while the agent was running
        if self.store.get(workflow_id) is None:
            return {"case": case, "halted": True, "halt_reason": "cancelled"}

        state.mark_completed(stage)
        state.logs.append(WorkflowLog(
            stage=stage, agent=agent.name, action="completed",
            details="Stage completed successfully", duration_ms=duration_ms,
        ))
        self.store.save(workflow_id, state)

        logger.info(
            "Workflow %s stage %s completed in %.0fms", workflow_id, stage, duration_ms,
        )
        self._publish(
            "workflow-stage-completed", workflow_id, state,
            stage=stage, duration_ms=duration_ms,
        )
        return {"case": case, "halted": False}

    def _fail_stage(
        self,
        workflow_id: str,
        state: WorkflowState,
        stage: str,
        agent: BaseAgent,
        error: Exception,
    ) -> None:
        message = str(error) or type(error).__name__
        state.errors.append(WorkflowError(
            stage=stage, agent=agent.name, error=message, severity="high",
        ))
        if self.store.get(workflow_id) is not None:
            self.store.save(workflow_id, state)

        logger.error(
            "Workflow %s failed at stage %s (%s): %s",
            workflow_id, stage, agent.name, message,
        )
        self._publish(
            "workflow-stage-failed", workflow_id, state,
            stage=stage, agent=agent.name, error=message,
        )
        self._publish(
            "workflow-failed", workflow_id, state,
            stage=stage, agent=agent.name, error=message,
        )

    def _complete(self, workflow_id: str, case: LegalCase) -> None:
        state = self.store.get(workflow_id)
        if state is None:
            return

        state.current_stage = COMPLETED
        state.advance_progress(COMPLETED)
        state.logs.append(WorkflowLog(
            stage=COMPLETED, agent=ORCHESTRATOR, action="completed",
            details="Workflow completed successfully",
        ))
        self.store.save(workflow_id, state)

        logger.info(
            "Workflow %s completed (case_id=%s, stages=%d, documents=%d)",
            workflow_id, case.id, len(state.completed_stages), len(case.documents),
        )
        self._publish("workflow-completed", workflow_id, state, final_case=case)

    # ---------------------------------------------------------------------
    # Internal Helpers
    # ---------------------------------------------------------------------

    def _require(self, workflow_id: str) -> WorkflowState:
        state = self.store.get(workflow_id)
        if state is None:
            raise WorkflowNotFoundError(workflow_id)
        return state

    def _publish(
        self, kind: str, workflow_id: str, state: WorkflowState, **payload: Any,
    ) -> None:
        if "final_case" in payload:
            payload["final_case"] = payload["final_case"].model_copy(deep=True)
        self.events.publish(
            kind,
            workflow_id=workflow_id,
            case_id=state.case_id,
            state=state.model_copy(deep=True),
            **payload,
        )


def _route(state: StageGraphState) -> str:
    return "halt" if state.get("halted") else "continue"
