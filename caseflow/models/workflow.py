# =============================================================================
# Workflow & Agent Models
# =============================================================================
#
# STAGE MACHINE (strict order, no skipping except already-completed
# stages on resume):
#
#   intake → research → argument-generation → drafting → review
#          → final-formatting → completed
#
# "completed" is a terminal marker, not a stage any agent runs. Progress
# is computed over the six working stages only.
# =============================================================================

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from caseflow.models.cases import utcnow

STAGES: tuple[str, ...] = (
    "intake",
    "research",
    "argument-generation",
    "drafting",
    "review",
    "final-formatting",
)
COMPLETED = "completed"

Severity = Literal["low", "medium", "high", "critical"]
AgentStatus = Literal["idle", "processing", "error", "maintenance"]


def next_stage(stage: str) -> str:
    """Return the stage after `stage`; the last stage advances to "completed"."""
    if stage == COMPLETED:
        return COMPLETED
    index = STAGES.index(stage)
    return STAGES[index + 1] if index + 1 < len(STAGES) else COMPLETED


def stage_progress(stage: str) -> int:
    """
    Coarse per-stage-count progress: round(100 × index / total).

    Not cost-weighted: drafting takes far longer than intake but both
    count as one step.
    """
    if stage == COMPLETED:
        return 100
    return round(100 * STAGES.index(stage) / len(STAGES))


# ---------------------------------------------------------------------------
# Log / Error Records
# ---------------------------------------------------------------------------


class WorkflowLog(BaseModel):
    model_config = ConfigDict(frozen=True)

    timestamp: datetime = Field(default_factory=utcnow)
    stage: str
    agent: str
    action: str
    details: str
    duration_ms: float = 0.0


class WorkflowError(BaseModel):
    model_config = ConfigDict(frozen=True)

    timestamp: datetime = Field(default_factory=utcnow)
    stage: str
    agent: str
    error: str
    severity: Severity
    resolved: bool = False


# ---------------------------------------------------------------------------
# Workflow State
# ---------------------------------------------------------------------------


class WorkflowState(BaseModel):
    """
    Mutable progress record for one workflow, owned by the orchestrator.

    Invariants:
    - current_stage ∈ STAGES ∪ {"completed"}
    - completed_stages is ordered, duplicate-free and append-only
    - progress never decreases
    """

    case_id: str
    current_stage: str = STAGES[0]
    completed_stages: list[str] = Field(default_factory=list)
    progress: int = 0
    estimated_completion: datetime
    paused: bool = False
    logs: list[WorkflowLog] = Field(default_factory=list)
    errors: list[WorkflowError] = Field(default_factory=list)

    def mark_completed(self, stage: str) -> None:
        if stage not in self.completed_stages:
            self.completed_stages.append(stage)

    def advance_progress(self, stage: str) -> int:
        self.progress = max(self.progress, stage_progress(stage))
        return self.progress


# ---------------------------------------------------------------------------
# Agent Descriptor
# ---------------------------------------------------------------------------


class AgentDescriptor(BaseModel):
    id: str
    name: str
    type: str
    description: str
    capabilities: list[str] = Field(default_factory=list)
    status: AgentStatus = "idle"
    current_task: str | None = None
    processed_cases: int = 0
    average_processing_time_ms: float = 0.0
    fallback_count: int = 0
