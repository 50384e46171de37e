# =============================================================================
# Application Configuration — Pydantic Settings
# =============================================================================
#
# DESIGN DECISION: We use Pydantic V2's `BaseSettings` for configuration.
# Values load from (highest priority first):
#   1. Environment variables (e.g., `LLM_MODEL=...`)
#   2. Values from the .env file
#   3. Default values defined below
#
# Every external collaborator (LLM, embeddings, vector index directory,
# document output directory) is configured here so agents and services
# never read the environment directly.
#
# USAGE:
#   from caseflow.config import settings
#   print(settings.vector_db_path)
# =============================================================================

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings have sensible defaults for local development. API keys
    have no defaults; without them the LLM factory refuses to build a
    provider and the embedding backend must be set to "hashing".
    """

    # -------------------------------------------------------------------------
    # Application
    # -------------------------------------------------------------------------
    app_name: str = "Caseflow Legal Workflow Engine"
    app_version: str = "0.1.0"

    # -------------------------------------------------------------------------
    # API Keys — External Services
    # -------------------------------------------------------------------------
    # ANTHROPIC_API_KEY: Claude (text generation)
    # OPENAI_API_KEY: embeddings, and generation when provider is
    #   openai_compatible and LLM_API_KEY is unset
    # -------------------------------------------------------------------------
    anthropic_api_key: str = ""
    openai_api_key: str = ""

    # -------------------------------------------------------------------------
    # LLM Configuration — Multi-Provider
    # -------------------------------------------------------------------------
    #   - "anthropic": Claude via native Anthropic SDK
    #   - "openai_compatible": Any OpenAI-compatible API (OpenAI, DeepSeek,
    #     Qwen, a local vLLM server, ...)
    # -------------------------------------------------------------------------
    llm_provider: str = "anthropic"  # "anthropic" or "openai_compatible"
    llm_base_url: str | None = None  # Only needed for openai_compatible
    llm_api_key: str | None = None   # Overrides provider-specific key if set
    llm_model: str = "claude-sonnet-4-6"
    llm_temperature: float = 0.7
    llm_max_tokens: int = 2000

    # -------------------------------------------------------------------------
    # Embedding Configuration
    # -------------------------------------------------------------------------
    # DESIGN DECISION: The embedding backend is chosen explicitly, once.
    #   - "openai": real embeddings through any OpenAI-compatible endpoint
    #   - "hashing": deterministic feature-hashing vectors. Keeps retrieval
    #     working offline and in tests; carries no semantic meaning.
    # Nothing falls back from one to the other at call time.
    # -------------------------------------------------------------------------
    embedding_backend: str = "openai"  # "openai" or "hashing"
    embedding_model: str = "text-embedding-3-small"
    embedding_base_url: str | None = None
    embedding_dimensions: int = 1536
    embedding_max_chars: int = 8000  # Input truncation before embedding

    # -------------------------------------------------------------------------
    # Retrieval Engine
    # -------------------------------------------------------------------------
    # vector_db_path holds the chromadb index directory plus the
    # documents.json metadata sidecar.
    #
    # research_max_results: k requested from the index by the research
    # agent. Filters run AFTER the nearest-neighbour search, so k must be
    # generous relative to how selective the filters are.
    # -------------------------------------------------------------------------
    vector_db_path: str = "data/vector_db"
    research_max_results: int = 20
    retrieval_similarity_threshold: float = 0.7

    # -------------------------------------------------------------------------
    # Document Generation
    # -------------------------------------------------------------------------
    # Every generated document is rendered into each of these formats.
    # At least two are expected (court copy + reviewable copy).
    # -------------------------------------------------------------------------
    document_output_dir: str = "data/documents"
    document_formats: list[str] = ["pdf", "html"]

    # -------------------------------------------------------------------------
    # Workflow
    # -------------------------------------------------------------------------
    # workflow_base_minutes: ETA base before complexity/category multipliers.
    # external_call_timeout_seconds: upper bound on every generation and
    # embedding call. A stalled provider fails the stage instead of
    # stalling it forever.
    # -------------------------------------------------------------------------
    workflow_base_minutes: float = 30.0
    external_call_timeout_seconds: float = 120.0

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


@lru_cache
def get_settings() -> Settings:
    """
    Create and cache a Settings instance.

    In tests, build a fresh `Settings(...)` and pass it explicitly, or
    patch attributes on the module-level `settings` object.
    """
    return Settings()


# ---------------------------------------------------------------------------
# Module-level convenience instance
# ---------------------------------------------------------------------------
settings = get_settings()
