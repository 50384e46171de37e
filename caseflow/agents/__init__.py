# =============================================================================
# Agents Package — Workflow Agents and LangGraph Orchestration
# =============================================================================
#   - base.py: single-flight envelope shared by every agent (timing,
#     metrics, events, health probe, structured-reply helper)
#   - intake.py: intake validation + AI-suggested refinements
#   - research.py: RAG research, precedent/statute extraction, legal argument
#   - document.py: document selection, drafting, review, final formatting
#   - orchestrator.py: LangGraph stage graph, workflow records, queue
#
# Stages: intake → research → argument-generation → drafting → review
#         → final-formatting → completed
# =============================================================================
