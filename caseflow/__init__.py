# =============================================================================
# Caseflow — Legal Case Workflow Engine
# =============================================================================
# Drives a legal case through an ordered pipeline of specialised agents
# (intake → research → argument generation → drafting → review → final
# formatting), backed by a retrieval engine that serves reference documents
# to the agents (RAG).
#
# Package structure:
#   caseflow/
#   ├── agents/       → Base agent envelope, intake/research/document agents,
#   │                    LangGraph workflow orchestrator
#   ├── models/       → Pydantic V2 records, workflow state, retrieval and
#   │                    intake validation schemas
#   ├── services/     → LLM providers, embedders, retrieval engine, document
#   │                    generation and rendering, events, workflow store
#   ├── config.py     → pydantic-settings configuration
#   └── errors.py     → Error taxonomy
# =============================================================================
