# =============================================================================
# Embedding Service — Pluggable Embedder Strategies
# =============================================================================
#
# The retrieval engine turns text into vectors through the Embedder
# protocol: a fixed `dimensions` attribute and an async `embed(text)`.
#
# Two strategies:
#   - OpenAIEmbedder: any OpenAI-compatible embeddings endpoint (OpenAI,
#     Alibaba Cloud DashScope, a local server, ...)
#   - HashingEmbedder: deterministic signed feature hashing. No external
#     credentials, no semantic meaning. Identical text always yields an
#     identical vector, and texts sharing tokens land close together.
#
# DESIGN DECISION: The strategy is chosen once, at construction.
# `get_embedder()` reads `settings.embedding_backend`. Nothing inspects
# credentials per call or silently swaps strategies mid-run; vectors from
# the two strategies are not comparable.
#
# DESIGN DECISION: Sync OpenAI client run in a worker thread.
# The OpenAI client manages its own HTTP connection pool and is
# thread-safe; asyncio.to_thread keeps the event loop free while
# asyncio.wait_for bounds a stalled call.
# =============================================================================

from __future__ import annotations

import asyncio
import hashlib
import logging
import math
import re
from typing import Protocol

from openai import APIError, OpenAI

from caseflow.config import settings
from caseflow.errors import ExternalServiceError

logger = logging.getLogger(__name__)

_TOKEN_RE = re.compile(r"[a-z0-9]+")


# ---------------------------------------------------------------------------
# Protocol Definition
# ---------------------------------------------------------------------------


class Embedder(Protocol):
    """Turns text into a fixed-length vector."""

    dimensions: int

    async def embed(self, text: str) -> list[float]:
        ...


# ---------------------------------------------------------------------------
# Implementation 1: OpenAI-compatible API
# ---------------------------------------------------------------------------


class OpenAIEmbedder:
    """
    Embeddings through the OpenAI SDK with a configurable base_url.

    API key resolution order:
      1. OPENAI_API_KEY (explicit embedding key)
      2. LLM_API_KEY (shared key, e.g. one DashScope key for both)
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        base_url: str | None = None,
        dimensions: int | None = None,
        max_chars: int | None = None,
        timeout: float | None = None,
    ) -> None:
        resolved_key = api_key or settings.openai_api_key or settings.llm_api_key
        if not resolved_key:
            raise ValueError(
                "No API key configured for embeddings. "
                "Set OPENAI_API_KEY or LLM_API_KEY in .env, "
                "or EMBEDDING_BACKEND=hashing for offline use"
            )

        client_kwargs: dict = {"api_key": resolved_key}
        resolved_base_url = base_url or settings.embedding_base_url
        if resolved_base_url:
            client_kwargs["base_url"] = resolved_base_url

        self._client = OpenAI(**client_kwargs)
        self._model = model or settings.embedding_model
        self.dimensions = dimensions or settings.embedding_dimensions
        self._max_chars = max_chars or settings.embedding_max_chars
        self._timeout = timeout or settings.external_call_timeout_seconds

        logger.info(
            "Initialized OpenAIEmbedder (model=%s, dimensions=%d, base_url=%s)",
            self._model,
            self.dimensions,
            resolved_base_url or "https://api.openai.com/v1",
        )

    def _embed_sync(self, text: str) -> list[float]:
        response = self._client.embeddings.create(
            model=self._model,
            input=text,
            dimensions=self.dimensions,
        )
        return list(response.data[0].embedding)

    async def embed(self, text: str) -> list[float]:
        """
        Embed one text, truncated to `embedding_max_chars`.

        Raises:
            ExternalServiceError: On API failure or timeout.
        """
        truncated = text[: self._max_chars]
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self._embed_sync, truncated),
                timeout=self._timeout,
            )
        except TimeoutError as e:
            logger.error("Embedding call timed out after %.0fs", self._timeout)
            raise ExternalServiceError("embeddings", "request timed out") from e
        except APIError as e:
            logger.error("Embedding call failed: %s", e)
            raise ExternalServiceError("embeddings", str(e)) from e


# ---------------------------------------------------------------------------
# Implementation 2: Deterministic feature hashing
# ---------------------------------------------------------------------------


class HashingEmbedder:
    """
    Deterministic pseudo-embedding for offline runs and tests.

    Each lower-cased alphanumeric token is hashed with blake2b; the digest
    picks a bucket and a sign, and the bucket accumulates ±1. The result is
    L2-normalised so cosine distance behaves. Text with no tokens maps to
    the zero vector's stand-in: a unit vector on bucket 0.
    """

    def __init__(self, dimensions: int | None = None) -> None:
        self.dimensions = dimensions or settings.embedding_dimensions
        if self.dimensions < 1:
            raise ValueError("dimensions must be positive")

    def embed_sync(self, text: str) -> list[float]:
        vector = [0.0] * self.dimensions
        for token in _TOKEN_RE.findall(text.lower()):
            digest = hashlib.blake2b(token.encode("utf-8"), digest_size=8).digest()
            value = int.from_bytes(digest, "big")
            bucket = value % self.dimensions
            sign = 1.0 if (value >> 63) & 1 else -1.0
            vector[bucket] += sign

        norm = math.sqrt(sum(v * v for v in vector))
        if norm == 0.0:
            vector[0] = 1.0
            return vector
        return [v / norm for v in vector]

    async def embed(self, text: str) -> list[float]:
        return self.embed_sync(text)


# ---------------------------------------------------------------------------
# Factory Function
# ---------------------------------------------------------------------------


def get_embedder(backend: str | None = None) -> OpenAIEmbedder | HashingEmbedder:
    """
    Build the configured embedding strategy.

    Reads `embedding_backend` from settings:
    - "openai" → OpenAIEmbedder (default)
    - "hashing" → HashingEmbedder
    """
    selected = backend or settings.embedding_backend
    if selected == "hashing":
        logger.warning(
            "Using HashingEmbedder: retrieval scores carry no semantic meaning"
        )
        return HashingEmbedder()
    if selected != "openai":
        raise ValueError(f"Unknown embedding backend '{selected}'")
    return OpenAIEmbedder()
