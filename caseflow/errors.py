# =============================================================================
# Error Taxonomy
# =============================================================================
#
#   CaseflowError
#   ├── ValidationError        — malformed input; reported, never retried
#   ├── AgentBusyError         — single-flight violation; retry later
#   ├── ExternalServiceError   — generation/embedding failure or timeout
#   ├── StageExecutionError    — an agent failed a workflow stage
#   └── WorkflowNotFoundError  — unknown workflow id
#
# ExternalServiceError is swallowed (with a logged fallback) only by the
# AI-augmentation steps. Primary content generation lets it propagate, and
# the orchestrator turns it into a StageExecutionError that aborts the
# workflow.
# =============================================================================

from __future__ import annotations


class CaseflowError(Exception):
    """Base class for all errors raised by this package."""


class ValidationError(CaseflowError, ValueError):
    """Input failed validation (case fields, query parameters, vectors)."""

    def __init__(self, message: str, issues: list[str] | None = None) -> None:
        super().__init__(message)
        self.issues = issues or []


class AgentBusyError(CaseflowError):
    """The agent already has a task in flight, or is in maintenance."""

    def __init__(self, agent_name: str, reason: str = "already processing a case") -> None:
        super().__init__(f"Agent {agent_name} is {reason}")
        self.agent_name = agent_name


class ExternalServiceError(CaseflowError):
    """A text-generation or embedding call failed."""

    def __init__(self, service: str, message: str) -> None:
        super().__init__(f"{service} error: {message}")
        self.service = service


class StageExecutionError(CaseflowError):
    """Wraps any agent failure with the stage and agent that produced it."""

    def __init__(self, stage: str, agent: str, message: str) -> None:
        super().__init__(f"Stage '{stage}' failed in {agent}: {message}")
        self.stage = stage
        self.agent = agent
        self.message = message


class WorkflowNotFoundError(CaseflowError, KeyError):
    """Operation against a workflow id that is not (or no longer) tracked."""

    def __init__(self, workflow_id: str) -> None:
        super().__init__(f"Workflow {workflow_id} not found")
        self.workflow_id = workflow_id

    def __str__(self) -> str:
        # KeyError.__str__ would repr() the message
        return f"Workflow {self.workflow_id} not found"
