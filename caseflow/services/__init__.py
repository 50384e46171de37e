# =============================================================================
# Services Package — Business Logic
# =============================================================================
# Contains the collaborators the agents depend on:
#   - llm.py: Multi-provider LLM abstraction (Anthropic, OpenAI-compatible)
#   - embedder.py: Embedder strategies (OpenAI-compatible API, hashing)
#   - retrieval.py: ChromaDB vector index + JSON sidecar, filtered queries
#   - documents.py: Legal document templates, drafting, validation
#   - rendering.py: PDF (fpdf2), HTML and text renditions
#   - parsing.py: Strict parse-or-default for structured LLM replies
#   - events.py: Publish/subscribe lifecycle events
#   - workflow_store.py: Workflow record storage interface
# =============================================================================
