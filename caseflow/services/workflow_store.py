# =============================================================================
# Workflow Store — Where the Orchestrator Keeps WorkflowState Records
# =============================================================================
#
# The orchestrator owns workflow records through this interface instead of
# a module-level dict, so persistence is swappable (Redis, a database
# table, ...) and each test gets an isolated store.
#
# DESIGN DECISION: Synchronous interface.
# The orchestrator mutates a state and saves it between awaits; a sync
# store keeps each save atomic with respect to the event loop. A remote
# backend would wrap its client calls behind the same methods.
# =============================================================================

from __future__ import annotations

from collections.abc import Iterator
from typing import Protocol

from caseflow.models.workflow import WorkflowState


class WorkflowStore(Protocol):
    def get(self, workflow_id: str) -> WorkflowState | None:
        ...

    def save(self, workflow_id: str, state: WorkflowState) -> None:
        ...

    def delete(self, workflow_id: str) -> None:
        ...

    def items(self) -> Iterator[tuple[str, WorkflowState]]:
        ...


class InMemoryWorkflowStore:
    """Process-local store. Insertion ordered; lost on restart."""

    def __init__(self) -> None:
        self._states: dict[str, WorkflowState] = {}

    def get(self, workflow_id: str) -> WorkflowState | None:
        return self._states.get(workflow_id)

    def save(self, workflow_id: str, state: WorkflowState) -> None:
        self._states[workflow_id] = state

    def delete(self, workflow_id: str) -> None:
        self._states.pop(workflow_id, None)

    def items(self) -> Iterator[tuple[str, WorkflowState]]:
        return iter(list(self._states.items()))

    def __len__(self) -> int:
        return len(self._states)
