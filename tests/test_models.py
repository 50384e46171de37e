# =============================================================================
# Unit Tests — Workflow Models, Events, Parsing, Store
# =============================================================================

from __future__ import annotations

from collections import Counter
from datetime import UTC, datetime

import pytest
from pydantic import BaseModel

from caseflow.errors import StageExecutionError, WorkflowNotFoundError
from caseflow.models.workflow import (
    COMPLETED,
    STAGES,
    WorkflowState,
    next_stage,
    stage_progress,
)
from caseflow.services.events import ALL_EVENTS, EventBus
from caseflow.services.parsing import parse_or_default, strip_code_fence
from caseflow.services.workflow_store import InMemoryWorkflowStore


def _state(**kwargs) -> WorkflowState:
    return WorkflowState(
        case_id="case-1", estimated_completion=datetime(2026, 1, 1, tzinfo=UTC), **kwargs,
    )


# ---------------------------------------------------------------------------
# Test: Stage Machine
# ---------------------------------------------------------------------------


class TestStages:
    def test_order(self):
        assert next_stage("intake") == "research"
        assert next_stage("argument-generation") == "drafting"
        assert next_stage("final-formatting") == COMPLETED
        assert next_stage(COMPLETED) == COMPLETED

    def test_progress(self):
        assert [stage_progress(stage) for stage in STAGES] == [0, 17, 33, 50, 67, 83]
        assert stage_progress(COMPLETED) == 100

    def test_unknown_stage(self):
        with pytest.raises(ValueError):
            next_stage("appeal")


class TestWorkflowState:
    def test_completed_stages_unique(self):
        state = _state()
        state.mark_completed("intake")
        state.mark_completed("intake")
        state.mark_completed("research")
        assert state.completed_stages == ["intake", "research"]

    def test_progress_never_decreases(self):
        state = _state()
        assert state.advance_progress("drafting") == 50
        assert state.advance_progress("research") == 50
        assert state.advance_progress(COMPLETED) == 100


# ---------------------------------------------------------------------------
# Test: Errors
# ---------------------------------------------------------------------------


class TestErrors:
    def test_not_found_message(self):
        error = WorkflowNotFoundError("wf-1")
        assert str(error) == "Workflow wf-1 not found"
        assert isinstance(error, KeyError)

    def test_stage_error_fields(self):
        error = StageExecutionError("research", "Legal Research Agent", "index offline")
        assert error.stage == "research"
        assert "index offline" in str(error)


# ---------------------------------------------------------------------------
# Test: Event Bus
# ---------------------------------------------------------------------------


class TestEventBus:
    def test_delivery_by_kind(self):
        bus = EventBus()
        started, everything = [], []
        bus.subscribe("workflow-started", started.append)
        bus.subscribe(ALL_EVENTS, everything.append)

        bus.publish("workflow-started", workflow_id="wf-1", case_id="case-1")
        bus.publish("workflow-paused", workflow_id="wf-1")

        assert [event.kind for event in started] == ["workflow-started"]
        assert [event.kind for event in everything] == ["workflow-started", "workflow-paused"]
        assert started[0].workflow_id == "wf-1"
        assert started[0].case_id == "case-1"

    def test_unsubscribe(self):
        bus = EventBus()
        seen = []
        unsubscribe = bus.subscribe("workflow-completed", seen.append)
        unsubscribe()
        unsubscribe()
        bus.publish("workflow-completed")
        assert seen == []

    def test_unknown_kind(self):
        bus = EventBus()
        with pytest.raises(ValueError):
            bus.subscribe("workflow-exploded", print)
        with pytest.raises(ValueError):
            bus.publish("workflow-exploded")

    def test_failing_handler_isolated(self):
        bus = EventBus()
        seen = []

        def broken(event):
            raise RuntimeError("handler bug")

        bus.subscribe("workflow-failed", broken)
        bus.subscribe("workflow-failed", seen.append)
        bus.publish("workflow-failed")
        assert len(seen) == 1


# ---------------------------------------------------------------------------
# Test: Structured Reply Parsing
# ---------------------------------------------------------------------------


class Ranking(BaseModel):
    name: str
    score: int


class TestParseOrDefault:
    def test_strip_fence(self):
        assert strip_code_fence('```json\n{"a": 1}\n```') == '{"a": 1}'
        assert strip_code_fence("  plain  ") == "plain"

    def test_valid_reply(self):
        counter = Counter()
        result = parse_or_default(
            '[{"name": "Smith", "score": 9}]', list[Ranking], [],
            label="ranking", counter=counter,
        )
        assert result == [Ranking(name="Smith", score=9)]
        assert counter == Counter()

    def test_prose_falls_back(self):
        counter = Counter()
        result = parse_or_default(
            "Here are the rankings you asked for.", list[Ranking], [],
            label="ranking", counter=counter,
        )
        assert result == []
        assert counter["ranking"] == 1

    def test_wrong_shape_falls_back(self):
        default = Ranking(name="none", score=0)
        result = parse_or_default('{"name": "Smith"}', Ranking, default, label="ranking")
        assert result is default


# ---------------------------------------------------------------------------
# Test: Workflow Store
# ---------------------------------------------------------------------------


class TestInMemoryWorkflowStore:
    def test_crud(self):
        store = InMemoryWorkflowStore()
        store.save("wf-1", _state())
        store.save("wf-2", _state())

        assert store.get("wf-1").case_id == "case-1"
        assert [workflow_id for workflow_id, _ in store.items()] == ["wf-1", "wf-2"]

        store.delete("wf-1")
        store.delete("wf-1")
        assert store.get("wf-1") is None
        assert len(store) == 1
