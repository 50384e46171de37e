# =============================================================================
# Document Agent — Drafting, Review and Final Formatting
# =============================================================================
#
# Handles the last three stages:
#
#   drafting          Decide which documents the case needs, draft each one
#                     (fatal on LLM failure), render it into every configured
#                     format, run structural validation.
#   review            Re-run structural validation plus an AI review; any
#                     critical issue demotes the document to "review".
#   final-formatting  Normalise whitespace, number complaint lines, bump the
#                     version and re-render. The case becomes "completed",
#                     or "review" when any document still needs a human.
#
# DOCUMENT SELECTION (pure function of category, complexity, urgency):
#   category table → + "brief" if complexity is high
#                  → "motion" first if urgency is critical
#                  → dedupe, first occurrence wins
#
# DESIGN DECISION: One GeneratedDocument per type, many renditions.
# A PDF and an HTML copy of the same complaint share one content record,
# one validation result and one version number.
# =============================================================================

from __future__ import annotations

import logging

from caseflow.agents.base import BaseAgent
from caseflow.config import settings
from caseflow.errors import ValidationError
from caseflow.models.cases import (
    Address,
    CaseDetails,
    GeneratedDocument,
    LegalCase,
    PlaintiffInfo,
    utcnow,
)
from caseflow.models.workflow import next_stage
from caseflow.services.documents import (
    AIReview,
    DocumentGenerator,
    DocumentValidation,
    count_words,
    estimate_pages,
    format_document_content,
    validate_document,
)
from caseflow.services.events import EventBus
from caseflow.services.llm import LLMProvider
from caseflow.services.rendering import DocumentRenderer

logger = logging.getLogger(__name__)

CATEGORY_DOCUMENTS: dict[str, tuple[str, ...]] = {
    "civil-litigation": ("complaint", "discovery-request"),
    "contract-dispute": ("complaint", "motion", "legal-memo"),
    "employment-law": ("complaint", "discovery-request", "legal-memo"),
    "personal-injury": ("complaint", "discovery-request", "evidence-summary"),
    "intellectual-property": ("complaint", "motion", "brief"),
    "real-estate": ("contract", "legal-memo"),
    "family-law": ("complaint", "motion"),
    "criminal-defense": ("motion", "brief"),
    "business-law": ("contract", "legal-memo"),
}
DEFAULT_DOCUMENTS: tuple[str, ...] = ("legal-memo",)
FORMATTED_TAG = "formatted"


def determine_documents_needed(category: str, complexity: str, urgency: str) -> list[str]:
    """
    Document types a case needs, in drafting order.

    >>> determine_documents_needed("contract-dispute", "medium", "medium")
    ['complaint', 'motion', 'legal-memo']
    """
    documents = list(CATEGORY_DOCUMENTS.get(category, DEFAULT_DOCUMENTS))
    if complexity == "high":
        documents.append("brief")
    if urgency == "critical":
        documents.insert(0, "motion")
    return list(dict.fromkeys(documents))


def _synthetic_case() -> LegalCase:
    return LegalCase(
        id="health-check",
        plaintiff_info=PlaintiffInfo(
            name="Test Plaintiff",
            email="test@example.com",
            phone="555-0123",
            address=Address(
                street="123 Test St", city="Test City", state="TS",
                zip_code="12345", country="USA",
            ),
            legal_issue="Test legal issue",
            description="This is a test case for the document generation health check.",
            desired_outcome="Successful test completion",
            urgency="low",
        ),
        case_details=CaseDetails(
            title="Test Case v. Document Generator",
            category="other",
            jurisdiction="Test Jurisdiction",
            court_level="state",
            estimated_duration=30,
            complexity="low",
        ),
        status="active",
        workflow_stage="drafting",
    )


class DocumentAgent(BaseAgent):
    name = "Legal Document Agent"
    agent_type = "document-agent"
    description = "Generates, reviews and formats legal documents from case data"
    capabilities = (
        "Legal document generation",
        "Multi-format output (PDF, HTML, text)",
        "Template-based document creation",
        "Document validation and review",
    )

    def __init__(
        self,
        llm: LLMProvider,
        renderer: DocumentRenderer,
        events: EventBus | None = None,
        formats: list[str] | None = None,
    ) -> None:
        super().__init__(llm, events)
        self.renderer = renderer
        self.generator = DocumentGenerator(llm)
        self.formats = list(dict.fromkeys(formats or settings.document_formats))
        if len(self.formats) < 2:
            raise ValueError(
                f"At least two document formats are required, got {self.formats}"
            )

    async def _execute(self, case: LegalCase) -> LegalCase:
        stage = case.workflow_stage
        if stage == "drafting":
            await self._draft(case)
        elif stage == "review":
            await self._review(case)
        elif stage == "final-formatting":
            await self._finalize(case)
        else:
            raise ValidationError(f"{self.name} cannot handle stage '{stage}'")

        case.workflow_stage = next_stage(stage)
        case.updated_at = utcnow()
        return case

    # ---------------------------------------------------------------------
    # Stage: drafting
    # ---------------------------------------------------------------------

    async def _draft(self, case: LegalCase) -> None:
        document_types = determine_documents_needed(
            case.case_details.category,
            case.case_details.complexity,
            case.plaintiff_info.urgency,
        )
        self._log_progress(
            case.id, "Determined documents to generate", document_types=document_types,
        )

        generated: list[GeneratedDocument] = []
        for document_type in document_types:
            document = await self.generate_specific_document(case, document_type)
            generated.append(document)

        case.documents = [*case.documents, *generated]
        self._log_progress(
            case.id, "Document generation completed",
            documents_generated=len(generated),
            needs_review=sum(1 for doc in generated if doc.status == "review"),
        )

    async def generate_specific_document(
        self,
        case: LegalCase,
        document_type: str,
        formats: list[str] | None = None,
    ) -> GeneratedDocument:
        """
        Draft, render and validate one document.

        Drafting failures propagate; validation problems only set the
        status to "review".
        """
        self._log_progress(case.id, f"Generating {document_type}", document_type=document_type)

        document = await self.generator.generate(case, document_type, generated_by=self.name)
        await self._render(document, formats or self.formats)
        self._apply_validation(document, validate_document(document))

        self._log_progress(
            case.id, f"Generated {document_type}",
            document_id=document.id, status=document.status,
            formats=[rendition.format for rendition in document.renditions],
        )
        return document

    # ---------------------------------------------------------------------
    # Stage: review
    # ---------------------------------------------------------------------

    async def _review(self, case: LegalCase) -> None:
        for document in case.documents:
            validation = validate_document(document)
            review = await self._generate_structured(
                self.generator.review_request(document),
                AIReview,
                AIReview(),
                label="document-review",
            )
            validation.issues.extend(review.criticalIssues)
            validation.suggestions.extend(review.suggestions)
            self._apply_validation(document, validation)

        self._log_progress(
            case.id, "Document review completed",
            documents_reviewed=len(case.documents),
            needs_review=sum(1 for doc in case.documents if doc.status == "review"),
        )

    # ---------------------------------------------------------------------
    # Stage: final-formatting
    # ---------------------------------------------------------------------

    async def _finalize(self, case: LegalCase) -> None:
        for document in case.documents:
            # Already formatted on an earlier run of this stage
            if FORMATTED_TAG in document.metadata.tags:
                continue

            document.content = format_document_content(document.content, document.type)
            document.version += 1
            document.updated_at = utcnow()
            document.metadata.word_count = count_words(document.content)
            document.metadata.page_count = estimate_pages(document.content)
            document.metadata.tags.append(FORMATTED_TAG)

            formats = [rendition.format for rendition in document.renditions] or self.formats
            document.renditions = []
            await self._render(document, formats)

        needs_review = any(doc.status == "review" for doc in case.documents)
        case.status = "review" if needs_review else "completed"
        self._log_progress(
            case.id, "Final formatting completed",
            documents=len(case.documents), case_status=case.status,
        )

    # ---------------------------------------------------------------------
    # Helpers
    # ---------------------------------------------------------------------

    async def _render(self, document: GeneratedDocument, formats: list[str]) -> None:
        for fmt in formats:
            document.renditions.append(await self.renderer.render(document, fmt))

    def _apply_validation(
        self, document: GeneratedDocument, validation: DocumentValidation,
    ) -> None:
        document.issues = list(validation.issues)
        document.status = "approved" if validation.is_valid else "review"
        if not validation.is_valid:
            logger.info(
                "Document %s (%s) needs review: %s",
                document.id, document.type, "; ".join(validation.issues),
            )

    async def _health_probe(self) -> bool:
        document = await self.generator.generate(_synthetic_case(), "legal-memo")
        return len(document.content) > 100
