# =============================================================================
# Case Records — Pydantic V2 Models
# =============================================================================
#
# A LegalCase is passed BY VALUE through the pipeline: every agent returns
# an updated copy and the orchestrator never persists it. The case store
# (out of scope here) owns durability.
#
# DESIGN DECISION: Record models are permissive, intake is strict.
# These models only enforce shape (types, required fields). Length limits,
# email/phone/zip patterns and enumerations are checked by the intake agent
# against the schemas in models/requests.py, so a malformed case can still
# be represented, stored, and reported on instead of failing to load.
# =============================================================================

from __future__ import annotations

from datetime import UTC, datetime
from typing import Literal

from pydantic import BaseModel, Field

# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

Urgency = Literal["low", "medium", "high", "critical"]
Complexity = Literal["low", "medium", "high"]
CourtLevel = Literal["municipal", "county", "state", "federal", "supreme"]
LegalCategory = Literal[
    "civil-litigation",
    "contract-dispute",
    "employment-law",
    "personal-injury",
    "intellectual-property",
    "real-estate",
    "family-law",
    "criminal-defense",
    "business-law",
    "other",
]
CaseStatus = Literal["intake", "active", "review", "completed", "archived", "cancelled"]

DocumentType = Literal[
    "complaint",
    "motion",
    "brief",
    "contract",
    "settlement-agreement",
    "discovery-request",
    "evidence-summary",
    "legal-memo",
    "court-filing",
    "correspondence",
]
DocumentFormat = Literal["pdf", "html", "txt"]
DocumentStatus = Literal["draft", "review", "approved", "filed", "archived"]


def utcnow() -> datetime:
    return datetime.now(UTC)


# ---------------------------------------------------------------------------
# Plaintiff / Case Details
# ---------------------------------------------------------------------------


class Address(BaseModel):
    street: str
    city: str
    state: str
    zip_code: str
    country: str


class PlaintiffInfo(BaseModel):
    """Who is bringing the case and what they want out of it."""

    name: str
    email: str
    phone: str
    address: Address
    legal_issue: str
    description: str
    desired_outcome: str
    urgency: str


class CaseDetails(BaseModel):
    """
    Legal classification of the case.

    `precedents` and `relevant_laws` only ever grow: research results are
    appended to whatever intake (or a human) already put there.
    """

    title: str
    category: str
    jurisdiction: str
    court_level: str
    estimated_duration: int  # days
    complexity: str
    precedents: list[str] = Field(default_factory=list)
    relevant_laws: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Generated Documents
# ---------------------------------------------------------------------------


class Rendition(BaseModel):
    """One physical rendering of a generated document."""

    format: str
    path: str


class DocumentMetadata(BaseModel):
    word_count: int = 0
    page_count: int = 1
    tags: list[str] = Field(default_factory=list)
    confidentiality_level: Literal["public", "confidential", "attorney-client"] = (
        "attorney-client"
    )


class GeneratedDocument(BaseModel):
    """
    A drafted legal document plus its rendered files.

    `status` is "approved" when structural validation passes and "review"
    when it found issues; validation never blocks the pipeline.
    """

    id: str
    case_id: str
    type: str
    title: str
    content: str
    version: int = 1
    status: DocumentStatus = "draft"
    generated_by: str
    renditions: list[Rendition] = Field(default_factory=list)
    issues: list[str] = Field(default_factory=list)
    metadata: DocumentMetadata = Field(default_factory=DocumentMetadata)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


# ---------------------------------------------------------------------------
# The Case
# ---------------------------------------------------------------------------


class LegalCase(BaseModel):
    id: str
    plaintiff_info: PlaintiffInfo
    case_details: CaseDetails
    status: CaseStatus = "intake"
    workflow_stage: str = "intake"
    documents: list[GeneratedDocument] = Field(default_factory=list)

    # Filled in by the research agent
    research_summary: str | None = None
    legal_argument: str | None = None

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
