# =============================================================================
# Intake Schemas — Strict Pydantic V2 Validation
# =============================================================================
#
# These models define what a case must look like BEFORE it may enter the
# pipeline. The intake agent validates the permissive record models from
# models/cases.py against these and reports every violation at once.
#
# DESIGN DECISION: Constraints live in `Field(...)`, not in agent code.
# One place documents every limit (lengths, patterns, enumerations), and
# pydantic collects all errors in a single pass instead of failing on the
# first one.
# =============================================================================

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from caseflow.models.cases import Complexity, CourtLevel, LegalCategory, Urgency

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
PHONE_PATTERN = r"^\+?[\d\s\-()]+$"
ZIP_PATTERN = r"^\d{5}(-\d{4})?$"


class AddressInput(BaseModel):
    model_config = ConfigDict(extra="ignore")

    street: str = Field(..., min_length=1, max_length=200)
    city: str = Field(..., min_length=1, max_length=100)
    state: str = Field(..., min_length=2, max_length=50)
    zip_code: str = Field(..., pattern=ZIP_PATTERN, description="US ZIP or ZIP+4")
    country: str = Field(..., min_length=2, max_length=50)


class PlaintiffInfoInput(BaseModel):
    """
    Validated plaintiff intake form.

    Example:
        {
            "name": "Jane Roe",
            "email": "jane.roe@example.com",
            "phone": "+1 (555) 123-4567",
            "address": {...},
            "legal_issue": "Unpaid wages after termination",
            "description": "...at least fifty characters of narrative...",
            "desired_outcome": "Recover unpaid wages and penalties",
            "urgency": "high"
        }
    """

    model_config = ConfigDict(extra="ignore")

    name: str = Field(..., min_length=2, max_length=100)
    email: str = Field(..., pattern=EMAIL_PATTERN, max_length=254)
    phone: str = Field(..., pattern=PHONE_PATTERN, max_length=30)
    address: AddressInput
    legal_issue: str = Field(..., min_length=10, max_length=500)
    description: str = Field(..., min_length=50, max_length=2000)
    desired_outcome: str = Field(..., min_length=10, max_length=1000)
    urgency: Urgency


class CaseDetailsInput(BaseModel):
    model_config = ConfigDict(extra="ignore")

    title: str = Field(..., min_length=5, max_length=200)
    category: LegalCategory
    jurisdiction: str = Field(..., min_length=2, max_length=100)
    court_level: CourtLevel
    estimated_duration: int = Field(..., ge=1, le=365, description="Days")
    complexity: Complexity
    precedents: list[str] = Field(default_factory=list)
    relevant_laws: list[str] = Field(default_factory=list)


class IntakeSuggestions(BaseModel):
    """
    Shape of the intake agent's AI-augmentation reply.

    Every field is optional: the model may suggest any subset. Suggested
    values are re-validated against the intake schemas before use.
    """

    model_config = ConfigDict(extra="ignore")

    recommendedUrgency: Urgency | None = None
    suggestedCategory: LegalCategory | None = None
    enhancedDescription: str | None = Field(default=None, min_length=50, max_length=2000)
    complexityAssessment: Complexity | None = None
