# =============================================================================
# Models Package — Pydantic V2 Schemas
# =============================================================================
# Defines the data that flows between orchestrator, agents and services:
#   - cases.py: LegalCase record, plaintiff/case details, generated documents
#   - workflow.py: stage machine constants, WorkflowState, logs/errors,
#     agent descriptors
#   - retrieval.py: reference documents, index records, RAG query/result
#   - requests.py: strict intake validation schemas
#
# DESIGN DECISION: Record models (cases.py) are permissive, validation
# schemas (requests.py) are strict. Records must always load; only intake
# decides whether a case is fit to enter the pipeline.
# =============================================================================
