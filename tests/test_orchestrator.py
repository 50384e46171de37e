# =============================================================================
# Unit Tests — Workflow Orchestrator
# =============================================================================
#
# Runs the real LangGraph stage graph and the real agents against fake
# LLM / retrieval / renderer collaborators.
# =============================================================================

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from caseflow.agents.orchestrator import (
    WorkflowOrchestrator,
    estimate_completion,
)
from caseflow.errors import (
    AgentBusyError,
    ExternalServiceError,
    StageExecutionError,
    ValidationError,
    WorkflowNotFoundError,
)
from caseflow.models.workflow import COMPLETED, STAGES


def _run(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


@pytest.fixture
def orchestrator(llm, retrieval, renderer, events):
    return WorkflowOrchestrator.from_services(
        llm=llm, retrieval=retrieval, renderer=renderer, events=events,
    )


def _kinds(recorded, prefix="workflow-"):
    return [event.kind for event in recorded if event.kind.startswith(prefix)]


# ---------------------------------------------------------------------------
# Test: Construction
# ---------------------------------------------------------------------------


class TestConstruction:
    def test_missing_agent_rejected(self, llm, retrieval, renderer):
        orchestrator = WorkflowOrchestrator.from_services(
            llm=llm, retrieval=retrieval, renderer=renderer,
        )
        agents = dict(orchestrator.agents)
        del agents["research"]
        with pytest.raises(ValueError, match="research"):
            WorkflowOrchestrator(agents)

    def test_agents_share_the_bus(self, orchestrator, events):
        for agent in orchestrator.agents.values():
            assert agent.events is events


# ---------------------------------------------------------------------------
# Test: Starting a Workflow
# ---------------------------------------------------------------------------


class TestStartWorkflow:
    def test_initial_state(self, orchestrator, make_case):
        workflow_id = _run(orchestrator.start_workflow(make_case()))
        state = orchestrator.get_workflow_state(workflow_id)

        assert state.case_id == "case-1"
        assert state.current_stage == "intake"
        assert state.completed_stages == []
        assert state.progress == 0
        assert state.paused is False
        assert state.errors == []
        assert [log.action for log in state.logs] == ["started"]

    def test_enqueued_and_announced(self, orchestrator, make_case, recorded):
        workflow_id = _run(orchestrator.start_workflow(make_case()))

        assert orchestrator.queued_workflows() == [workflow_id]
        assert recorded[-1].kind == "workflow-started"
        assert recorded[-1].workflow_id == workflow_id
        assert recorded[-1].case_id == "case-1"

    def test_unique_ids(self, orchestrator, make_case):
        first = _run(orchestrator.start_workflow(make_case()))
        second = _run(orchestrator.start_workflow(make_case()))
        assert first != second
        assert set(orchestrator.list_workflows()) == {first, second}

    def test_eta_for_simple_case(self, orchestrator, make_case):
        before = datetime.now(UTC)
        workflow_id = _run(orchestrator.start_workflow(make_case()))
        eta = orchestrator.get_workflow_state(workflow_id).estimated_completion

        # other × low → 30 minutes
        assert before + timedelta(minutes=29) < eta < before + timedelta(minutes=31)


class TestEstimateCompletion:
    def test_multipliers_compound(self, make_case):
        now = datetime(2026, 1, 1, tzinfo=UTC)
        case = make_case(category="contract-dispute", complexity="high")
        # 30 × 2.5 × 1.5
        assert estimate_completion(case, now) == now + timedelta(minutes=112.5)

    def test_unknown_values_use_one(self, make_case):
        now = datetime(2026, 1, 1, tzinfo=UTC)
        case = make_case(category="maritime", complexity="extreme")
        assert estimate_completion(case, now) == now + timedelta(minutes=30)


# ---------------------------------------------------------------------------
# Test: Full Pipeline
# ---------------------------------------------------------------------------


class TestProcessWorkflow:
    def test_runs_every_stage(self, orchestrator, make_case):
        case = make_case()

        async def scenario():
            workflow_id = await orchestrator.start_workflow(case)
            final = await orchestrator.process_workflow(workflow_id, case)
            return workflow_id, final

        workflow_id, final = _run(scenario())
        state = orchestrator.get_workflow_state(workflow_id)

        assert state.current_stage == COMPLETED
        assert state.progress == 100
        assert state.completed_stages == list(STAGES)
        assert state.errors == []
        assert final.workflow_stage == COMPLETED
        assert final.status == "completed"
        assert final.research_summary
        assert final.legal_argument
        assert len(final.documents) >= 1

    def test_input_case_not_mutated(self, orchestrator, make_case):
        case = make_case()

        async def scenario():
            workflow_id = await orchestrator.start_workflow(case)
            await orchestrator.process_workflow(workflow_id, case)

        _run(scenario())
        assert case.status == "intake"
        assert case.documents == []
        assert case.research_summary is None

    def test_progress_events_increase(self, orchestrator, make_case, recorded):
        case = make_case()

        async def scenario():
            workflow_id = await orchestrator.start_workflow(case)
            await orchestrator.process_workflow(workflow_id, case)

        _run(scenario())
        progress = [
            event.payload["progress"]
            for event in recorded if event.kind == "workflow-progress"
        ]
        assert progress == [0, 17, 33, 50, 67, 83]

    def test_event_sequence(self, orchestrator, make_case, recorded):
        case = make_case()

        async def scenario():
            workflow_id = await orchestrator.start_workflow(case)
            await orchestrator.process_workflow(workflow_id, case)

        _run(scenario())
        kinds = _kinds(recorded)

        assert kinds[0] == "workflow-started"
        assert kinds[-1] == "workflow-completed"
        assert kinds.count("workflow-stage-started") == len(STAGES)
        assert kinds.count("workflow-stage-completed") == len(STAGES)
        assert "workflow-failed" not in kinds

        completed = recorded[-1]
        assert completed.payload["final_case"].status == "completed"
        assert completed.payload["state"].progress == 100

    def test_agent_events_carry_workflow_id(self, orchestrator, make_case, recorded):
        case = make_case()

        async def scenario():
            workflow_id = await orchestrator.start_workflow(case)
            await orchestrator.process_workflow(workflow_id, case)
            return workflow_id

        workflow_id = _run(scenario())
        agent_events = [event for event in recorded if event.kind.startswith("agent-")]

        assert agent_events
        assert all(event.workflow_id == workflow_id for event in agent_events)

    def test_event_state_is_a_snapshot(self, orchestrator, make_case, recorded):
        case = make_case()

        async def scenario():
            workflow_id = await orchestrator.start_workflow(case)
            await orchestrator.process_workflow(workflow_id, case)
            return workflow_id

        workflow_id = _run(scenario())
        recorded[0].payload["state"].progress = 55
        assert orchestrator.get_workflow_state(workflow_id).progress == 100

    def test_completed_workflow_not_rerun(self, orchestrator, make_case, llm):
        case = make_case()

        async def scenario():
            workflow_id = await orchestrator.start_workflow(case)
            final = await orchestrator.process_workflow(workflow_id, case)
            calls = len(llm.requests)
            again = await orchestrator.process_workflow(workflow_id, final)
            return calls, again, final

        calls, again, final = _run(scenario())
        assert len(llm.requests) == calls
        assert again == final

    def test_case_must_match_workflow(self, orchestrator, make_case):
        async def scenario():
            workflow_id = await orchestrator.start_workflow(make_case())
            await orchestrator.process_workflow(workflow_id, make_case(case_id="case-2"))

        with pytest.raises(ValidationError):
            _run(scenario())

    def test_unknown_workflow(self, orchestrator, make_case):
        with pytest.raises(WorkflowNotFoundError):
            _run(orchestrator.process_workflow("missing", make_case()))
        with pytest.raises(WorkflowNotFoundError):
            orchestrator.get_workflow_state("missing")
        with pytest.raises(WorkflowNotFoundError):
            _run(orchestrator.pause_workflow("missing"))
        with pytest.raises(WorkflowNotFoundError):
            _run(orchestrator.cancel_workflow("missing"))


# ---------------------------------------------------------------------------
# Test: Stage Failure
# ---------------------------------------------------------------------------


class TestStageFailure:
    def test_research_failure_aborts(self, orchestrator, make_case, retrieval, recorded):
        retrieval.error = ExternalServiceError("embeddings", "service unavailable")
        case = make_case()
        holder = {}

        async def scenario():
            holder["id"] = await orchestrator.start_workflow(case)
            await orchestrator.process_workflow(holder["id"], case)

        with pytest.raises(StageExecutionError) as exc_info:
            _run(scenario())

        assert exc_info.value.stage == "research"
        assert exc_info.value.agent == "Legal Research Agent"
        assert isinstance(exc_info.value.__cause__, ExternalServiceError)

        state = orchestrator.get_workflow_state(holder["id"])
        assert len(state.errors) == 1
        assert state.errors[0].stage == "research"
        assert state.errors[0].severity == "high"
        assert state.current_stage == "research"
        assert state.completed_stages == ["intake"]

        kinds = _kinds(recorded)
        assert "workflow-completed" not in kinds
        assert kinds[-2:] == ["workflow-stage-failed", "workflow-failed"]

    def test_retry_skips_completed_stages(self, orchestrator, make_case, retrieval):
        retrieval.error = ExternalServiceError("embeddings", "service unavailable")
        case = make_case()
        intake = orchestrator.agents["intake"]

        async def scenario():
            workflow_id = await orchestrator.start_workflow(case)
            with pytest.raises(StageExecutionError):
                await orchestrator.process_workflow(workflow_id, case)
            retrieval.error = None
            final = await orchestrator.process_workflow(workflow_id, case)
            return workflow_id, final

        workflow_id, final = _run(scenario())
        state = orchestrator.get_workflow_state(workflow_id)

        assert intake.info().processed_cases == 1
        assert state.current_stage == COMPLETED
        assert state.completed_stages == list(STAGES)
        assert len(state.errors) == 1
        assert final.documents

    def test_drafting_failure(self, orchestrator, make_case, llm):
        llm.reply("Generate a complete", ExternalServiceError("anthropic", "overloaded"))
        case = make_case()

        async def scenario():
            workflow_id = await orchestrator.start_workflow(case)
            try:
                await orchestrator.process_workflow(workflow_id, case)
            except StageExecutionError as e:
                return workflow_id, e
            return workflow_id, None

        workflow_id, error = _run(scenario())
        assert error is not None
        assert error.stage == "drafting"
        state = orchestrator.get_workflow_state(workflow_id)
        assert state.completed_stages == ["intake", "research", "argument-generation"]
        assert state.progress == 50


# ---------------------------------------------------------------------------
# Test: Pause / Resume / Cancel
# ---------------------------------------------------------------------------


class TestPauseResume:
    def test_paused_workflow_does_not_start(self, orchestrator, make_case, llm):
        case = make_case()

        async def scenario():
            workflow_id = await orchestrator.start_workflow(case)
            await orchestrator.pause_workflow(workflow_id)
            result = await orchestrator.process_workflow(workflow_id, case)
            return workflow_id, result

        workflow_id, result = _run(scenario())
        state = orchestrator.get_workflow_state(workflow_id)

        assert result == case
        assert state.paused is True
        assert state.completed_stages == []
        assert llm.requests == []

    def test_pause_lets_running_stage_finish(self, orchestrator, make_case, llm, recorded):
        case = make_case()
        holder = {}

        async def pause_during_argument(request):
            if "Draft the formal legal argument" in request.prompt:
                await orchestrator.pause_workflow(holder["id"])

        llm.on_generate = pause_during_argument

        async def scenario():
            holder["id"] = await orchestrator.start_workflow(case)
            return await orchestrator.process_workflow(holder["id"], case)

        result = _run(scenario())
        state = orchestrator.get_workflow_state(holder["id"])

        assert state.completed_stages == ["intake", "research", "argument-generation"]
        assert state.paused is True
        assert result.legal_argument
        assert result.documents == []
        assert "workflow-paused" in _kinds(recorded)
        assert "workflow-completed" not in _kinds(recorded)

    def test_resume_continues_from_next_stage(self, orchestrator, make_case, llm, recorded):
        case = make_case()
        holder = {}

        async def pause_during_argument(request):
            if "Draft the formal legal argument" in request.prompt:
                await orchestrator.pause_workflow(holder["id"])

        llm.on_generate = pause_during_argument

        async def scenario():
            holder["id"] = await orchestrator.start_workflow(case)
            partial = await orchestrator.process_workflow(holder["id"], case)
            llm.on_generate = None
            await orchestrator.resume_workflow(holder["id"])
            return await orchestrator.process_workflow(holder["id"], partial)

        final = _run(scenario())
        state = orchestrator.get_workflow_state(holder["id"])

        assert state.current_stage == COMPLETED
        assert state.completed_stages == list(STAGES)
        assert final.documents
        assert len(llm.prompts_containing("Draft the formal legal argument")) == 1
        assert "workflow-resumed" in _kinds(recorded)
        assert [log.action for log in state.logs].count("resumed") == 1


class TestCancel:
    def test_cancel_removes_workflow(self, orchestrator, make_case, recorded):
        async def scenario():
            workflow_id = await orchestrator.start_workflow(make_case())
            await orchestrator.cancel_workflow(workflow_id)
            return workflow_id

        workflow_id = _run(scenario())

        with pytest.raises(WorkflowNotFoundError):
            orchestrator.get_workflow_state(workflow_id)
        assert orchestrator.queued_workflows() == []
        assert workflow_id not in orchestrator.list_workflows()
        assert recorded[-1].kind == "workflow-cancelled"

    def test_cancel_during_stage(self, orchestrator, make_case, llm, recorded):
        case = make_case()
        holder = {}

        async def cancel_during_argument(request):
            if "Draft the formal legal argument" in request.prompt:
                await orchestrator.cancel_workflow(holder["id"])

        llm.on_generate = cancel_during_argument

        async def scenario():
            holder["id"] = await orchestrator.start_workflow(case)
            return await orchestrator.process_workflow(holder["id"], case)

        result = _run(scenario())

        assert result.documents == []
        assert orchestrator.store.get(holder["id"]) is None
        assert llm.prompts_containing("Generate a complete") == []
        assert "workflow-completed" not in _kinds(recorded)


# ---------------------------------------------------------------------------
# Test: Queue
# ---------------------------------------------------------------------------


class TestConcurrentWorkflows:
    def test_second_workflow_fails_on_busy_agent(self, orchestrator, make_case, llm):
        first_case = make_case(case_id="a")
        second_case = make_case(case_id="b")

        async def scenario():
            gate = asyncio.Event()

            async def hold(request):
                await gate.wait()

            first_id = await orchestrator.start_workflow(first_case)
            second_id = await orchestrator.start_workflow(second_case)

            llm.on_generate = hold
            first = asyncio.create_task(orchestrator.process_workflow(first_id, first_case))
            intake = orchestrator.agents["intake"]
            while intake.status != "processing":
                await asyncio.sleep(0)

            with pytest.raises(StageExecutionError) as exc_info:
                await orchestrator.process_workflow(second_id, second_case)

            llm.on_generate = None
            gate.set()
            final = await first
            return first_id, second_id, exc_info.value, final

        first_id, second_id, error, final = _run(scenario())

        assert error.stage == "intake"
        assert isinstance(error.__cause__, AgentBusyError)
        second = orchestrator.get_workflow_state(second_id)
        assert [e.stage for e in second.errors] == ["intake"]
        assert second.completed_stages == []

        assert final.status == "completed"
        assert orchestrator.get_workflow_state(first_id).errors == []


class TestDrainQueue:
    def test_processes_in_order(self, orchestrator, make_case, recorded):
        cases = {case_id: make_case(case_id=case_id) for case_id in ("a", "b")}

        async def load_case(case_id):
            return cases[case_id]

        async def scenario():
            first = await orchestrator.start_workflow(cases["a"])
            second = await orchestrator.start_workflow(cases["b"])
            results = await orchestrator.drain_queue(load_case)
            return first, second, results

        first, second, results = _run(scenario())

        assert list(results) == [first, second]
        assert results[first].id == "a"
        assert results[second].id == "b"
        assert orchestrator.queued_workflows() == []
        completed = [event.case_id for event in recorded if event.kind == "workflow-completed"]
        assert completed == ["a", "b"]

    def test_failure_does_not_stop_drain(self, orchestrator, make_case):
        cases = {"b": make_case(case_id="b")}

        async def load_case(case_id):
            return cases[case_id]

        async def scenario():
            first = await orchestrator.start_workflow(make_case(case_id="a"))
            second = await orchestrator.start_workflow(cases["b"])
            return first, second, await orchestrator.drain_queue(load_case)

        first, second, results = _run(scenario())

        assert isinstance(results[first], KeyError)
        assert results[second].status == "completed"

    def test_directly_processed_workflow_not_rerun(self, orchestrator, make_case, retrieval):
        retrieval.error = ExternalServiceError("embeddings", "service unavailable")
        case = make_case()

        async def load_case(case_id):
            return case

        async def scenario():
            workflow_id = await orchestrator.start_workflow(case)
            with pytest.raises(StageExecutionError):
                await orchestrator.process_workflow(workflow_id, case)
            queued = orchestrator.queued_workflows()
            return workflow_id, queued, await orchestrator.drain_queue(load_case)

        workflow_id, queued, results = _run(scenario())
        state = orchestrator.get_workflow_state(workflow_id)

        assert queued == []
        assert results == {}
        assert [error.stage for error in state.errors] == ["research"]
        assert len(retrieval.queries) == 1

    def test_cancelled_workflows_skipped(self, orchestrator, make_case):
        async def load_case(case_id):
            return make_case(case_id=case_id)

        async def scenario():
            first = await orchestrator.start_workflow(make_case(case_id="a"))
            second = await orchestrator.start_workflow(make_case(case_id="b"))
            await orchestrator.cancel_workflow(first)
            return second, await orchestrator.drain_queue(load_case)

        second, results = _run(scenario())
        assert list(results) == [second]


# ---------------------------------------------------------------------------
# Test: Agent Status
# ---------------------------------------------------------------------------


class TestAgentStatus:
    def test_reports_every_agent(self, orchestrator):
        status = _run(orchestrator.get_agent_status())

        assert set(status) == {"intake", "research", "document"}
        for entry in status.values():
            assert entry["healthy"] is True
            assert entry["status"] == "idle"
            assert entry["processed_cases"] == 0

    def test_unhealthy_llm(self, orchestrator, llm):
        llm.default = "unavailable"
        status = _run(orchestrator.get_agent_status())

        assert status["intake"]["healthy"] is False
        assert status["intake"]["status"] == "error"
        assert status["research"]["healthy"] is False
        # An 11-character draft is not a usable document
        assert status["document"]["healthy"] is False
