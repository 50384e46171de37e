# =============================================================================
# Retrieval Models — Ingestion Input, Index Records, Query Contract
# =============================================================================
#
# RAGQuery mirrors the query contract consumed by the agents:
#   query        3–1000 chars
#   max_results  1–100 (k for the nearest-neighbour search)
#   threshold    0–1 minimum similarity
#
# DESIGN DECISION: Filters are applied AFTER the k-NN search, not pushed
# into the index. `max_results` therefore bounds the candidate pool, and a
# selective filter can return fewer than `max_results` documents even when
# more matching documents exist. The engine does not auto-expand k.
# =============================================================================

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from caseflow.models.cases import utcnow


class ReferenceDocument(BaseModel):
    """A reference document handed to the retrieval engine for indexing."""

    id: str
    title: str
    content: str
    source: str
    metadata: dict[str, Any] = Field(default_factory=dict)


class IndexedDocument(BaseModel):
    """
    A reference document as stored in the metadata sidecar.

    `index` is the internal, monotonically assigned id used as the vector
    index label. Indexed documents are never mutated or deleted.
    """

    index: int
    external_id: str
    title: str
    content: str
    source: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    added_at: datetime = Field(default_factory=utcnow)
    # Only populated for documents inserted in this process; the sidecar
    # does not duplicate vectors already held by the index.
    vector: list[float] = Field(default_factory=list, exclude=True)


class DateRange(BaseModel):
    start: datetime | None = None
    end: datetime | None = None


class RAGFilters(BaseModel):
    document_type: list[str] | None = None
    jurisdiction: list[str] | None = None
    date_range: DateRange | None = None
    relevance_score: float | None = Field(default=None, ge=0.0, le=1.0)


class RAGQuery(BaseModel):
    query: str = Field(..., min_length=3, max_length=1000)
    context: str | None = Field(default=None, max_length=2000)
    filters: RAGFilters | None = None
    max_results: int = Field(default=10, ge=1, le=100)
    threshold: float = Field(default=0.7, ge=0.0, le=1.0)


class RetrievedDocument(BaseModel):
    id: str
    title: str
    content: str
    source: str
    relevance_score: float
    metadata: dict[str, Any] = Field(default_factory=dict)


class RAGResult(BaseModel):
    documents: list[RetrievedDocument] = Field(default_factory=list)
    total_results: int = 0
    query_time_ms: float = 0.0
    confidence: float = 0.0


class IndexStats(BaseModel):
    documents_count: int
    index_size: int
    is_initialized: bool
    dimensions: int | None = None
