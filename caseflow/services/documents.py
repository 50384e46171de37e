# =============================================================================
# Document Generation Service — Templates, Drafting, Structural Validation
# =============================================================================
#
# Produces the text of legal documents for a case. Rendering into physical
# formats lives in services/rendering.py; the document agent stitches the
# two together.
#
# PIPELINE (per document type):
#   1. Pick the structural template for the type (fallback: legal memo)
#   2. Build the case context block
#   3. LLM drafts the document (temperature 0.2)
#   4. Structural validation: length, signature block, required sections
#   5. (final-formatting stage) normalise whitespace, number complaint lines
#
# DESIGN DECISION: Drafting failures propagate.
# The drafted text IS the deliverable, so an LLM failure here is fatal for
# the stage. Validation never raises: problems demote the document to
# "review" instead of blocking the pipeline.
# =============================================================================

from __future__ import annotations

import logging
import re
import uuid
from dataclasses import dataclass, field

from pydantic import BaseModel, ConfigDict, Field

from caseflow.models.cases import DocumentMetadata, GeneratedDocument, LegalCase
from caseflow.services.llm import GenerationRequest, LLMProvider

logger = logging.getLogger(__name__)

SIGNATURE_MARKER = "Respectfully submitted"
COURT_FILINGS = frozenset({"complaint", "motion", "brief", "discovery-request"})
MIN_CONTENT_CHARS = 100
WORDS_PER_PAGE = 250
DRAFTING_TEMPERATURE = 0.2
DRAFTING_MAX_TOKENS = 4000

# ---------------------------------------------------------------------------
# Structural Templates
# ---------------------------------------------------------------------------

TEMPLATES: dict[str, str] = {
    "complaint": """\
COMPLAINT FOR [LEGAL ISSUE]

TO THE HONORABLE COURT:

NOW COMES [PLAINTIFF NAME], by and through undersigned counsel, and for their \
Complaint against [DEFENDANT NAME], states as follows:

PARTIES
1. Plaintiff [PLAINTIFF NAME] is [DESCRIPTION].
2. [DEFENDANT INFORMATION]

JURISDICTION AND VENUE
3. This Court has jurisdiction over this matter pursuant to [JURISDICTION BASIS].
4. Venue is proper in this Court under [VENUE BASIS].

FACTUAL ALLEGATIONS
5. [FACTUAL BACKGROUND]
6. [SPECIFIC FACTS SUPPORTING CLAIMS]

CAUSES OF ACTION
COUNT I - [FIRST CAUSE OF ACTION]
7. Plaintiff incorporates all preceding paragraphs.
8. [SPECIFIC ALLEGATIONS FOR THIS COUNT]
9. [DAMAGES/RELIEF SOUGHT]

PRAYER FOR RELIEF
WHEREFORE, Plaintiff respectfully requests that this Court:
a) [SPECIFIC RELIEF REQUESTED]
b) Award costs and attorney's fees
c) Grant such other relief as the Court deems just and proper

Respectfully submitted,
[ATTORNEY SIGNATURE BLOCK]""",
    "motion": """\
MOTION FOR [RELIEF SOUGHT]

TO THE HONORABLE COURT:

NOW COMES [MOVING PARTY], by and through undersigned counsel, and respectfully \
moves this Court for [RELIEF SOUGHT], and in support thereof states:

BACKGROUND
1. [CASE BACKGROUND]
2. [RELEVANT PROCEDURAL HISTORY]

LEGAL STANDARD
3. [APPLICABLE LEGAL STANDARD]

ARGUMENT
4. [LEGAL ARGUMENT SUPPORTING MOTION]
5. [FACTUAL SUPPORT]

CONCLUSION
WHEREFORE, [MOVING PARTY] respectfully requests that this Court grant this Motion.

Respectfully submitted,
[ATTORNEY SIGNATURE BLOCK]""",
    "brief": """\
BRIEF IN SUPPORT OF [POSITION]

TABLE OF CONTENTS
I. STATEMENT OF THE CASE
II. STATEMENT OF FACTS
III. ARGUMENT
IV. CONCLUSION

I. STATEMENT OF THE CASE
[PROCEDURAL HISTORY AND LEGAL ISSUE]

II. STATEMENT OF FACTS
[RELEVANT FACTS PRESENTED FAVORABLY]

III. ARGUMENT
A. [FIRST LEGAL ARGUMENT]
   1. [SUB-ARGUMENT]
   2. [SUPPORTING ANALYSIS]
B. [SECOND LEGAL ARGUMENT]
   1. [SUB-ARGUMENT]
   2. [SUPPORTING ANALYSIS]

IV. CONCLUSION
For the foregoing reasons, [PARTY] respectfully requests [RELIEF SOUGHT].

Respectfully submitted,
[ATTORNEY SIGNATURE BLOCK]""",
    "discovery-request": """\
[PLAINTIFF NAME]'S FIRST SET OF INTERROGATORIES AND REQUESTS FOR PRODUCTION

TO: [DEFENDANT NAME], by and through counsel of record

DEFINITIONS
1. [DEFINED TERMS]

INSTRUCTIONS
2. [RESPONSE DEADLINE AND FORMAT]

INTERROGATORIES
INTERROGATORY NO. 1: [QUESTION]
INTERROGATORY NO. 2: [QUESTION]

REQUESTS FOR PRODUCTION
REQUEST NO. 1: [DOCUMENTS SOUGHT]
REQUEST NO. 2: [DOCUMENTS SOUGHT]

Respectfully submitted,
[ATTORNEY SIGNATURE BLOCK]""",
    "contract": """\
[CONTRACT TYPE]

This [CONTRACT TYPE] ("Agreement") is entered into on [DATE] between:

[PARTY 1 NAME], a [STATE/ENTITY TYPE] ("Party 1")
Address: [ADDRESS]

and

[PARTY 2 NAME], a [STATE/ENTITY TYPE] ("Party 2")
Address: [ADDRESS]

RECITALS
WHEREAS, [BACKGROUND AND PURPOSE];
NOW, THEREFORE, in consideration of the mutual covenants contained herein, \
the parties agree:

1. [MAIN PROVISIONS]
2. [TERMS AND CONDITIONS]
3. [PAYMENT/CONSIDERATION]
4. [PERFORMANCE OBLIGATIONS]
5. [DEFAULT AND REMEDIES]
6. [MISCELLANEOUS PROVISIONS]

IN WITNESS WHEREOF, the parties have executed this Agreement.

[SIGNATURE BLOCKS]""",
    "legal-memo": """\
MEMORANDUM

TO: [RECIPIENT]
FROM: [AUTHOR]
DATE: [DATE]
RE: [SUBJECT MATTER]

EXECUTIVE SUMMARY
[BRIEF SUMMARY OF ANALYSIS AND RECOMMENDATION]

FACTS
[RELEVANT FACTS]

LEGAL ANALYSIS
I. [FIRST LEGAL ISSUE]
   A. [APPLICABLE LAW]
   B. [ANALYSIS]
   C. [CONCLUSION]

II. [SECOND LEGAL ISSUE]
   A. [APPLICABLE LAW]
   B. [ANALYSIS]
   C. [CONCLUSION]

RECOMMENDATION
[STRATEGIC RECOMMENDATION BASED ON ANALYSIS]""",
}

DRAFTING_SYSTEM_PROMPT = """\
You are an expert legal document drafting assistant. Generate professional \
legal documents that are accurate, properly formatted, and \
jurisdiction-appropriate.

Guidelines:
- Use proper legal document structure and formatting
- Include all necessary legal language and clauses
- Use appropriate citations and references
- Keep terminology consistent throughout
- Include proper headings, numbering, and organization"""

REVIEW_SYSTEM_PROMPT = """\
You review drafted legal documents for structure and completeness. \
Respond with ONLY a JSON object of the form \
{"criticalIssues": ["..."], "suggestions": ["..."]}. \
List under criticalIssues only problems that would prevent filing or \
signing the document as-is."""


def get_template(document_type: str) -> str:
    return TEMPLATES.get(document_type, TEMPLATES["legal-memo"])


def build_case_context(case: LegalCase) -> str:
    """Flatten the case into the context block every drafting prompt uses."""
    plaintiff = case.plaintiff_info
    details = case.case_details
    address = plaintiff.address
    lines = [
        f"Case ID: {case.id}",
        f"Case Title: {details.title}",
        f"Legal Category: {details.category}",
        f"Jurisdiction: {details.jurisdiction}",
        f"Court Level: {details.court_level}",
        "",
        "Plaintiff Information:",
        f"- Name: {plaintiff.name}",
        f"- Address: {address.street}, {address.city}, {address.state} {address.zip_code}",
        f"- Legal Issue: {plaintiff.legal_issue}",
        f"- Description: {plaintiff.description}",
        f"- Desired Outcome: {plaintiff.desired_outcome}",
        "",
        "Case Details:",
        f"- Estimated Duration: {details.estimated_duration} days",
        f"- Complexity: {details.complexity}",
        f"- Precedents: {', '.join(details.precedents) or 'none identified'}",
        f"- Relevant Laws: {', '.join(details.relevant_laws) or 'none identified'}",
    ]
    if case.research_summary:
        lines += ["", "Research Summary:", case.research_summary]
    if case.legal_argument:
        lines += ["", "Legal Argument:", case.legal_argument]
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Formatting Helpers
# ---------------------------------------------------------------------------

_BLANK_RUN_RE = re.compile(r"\n{3,}")


def number_lines(content: str) -> str:
    """Prefix every non-blank line with a right-aligned sequential number."""
    numbered: list[str] = []
    counter = 1
    for line in content.split("\n"):
        if not line.strip():
            numbered.append(line)
            continue
        numbered.append(f"{counter:>2}. {line}")
        counter += 1
    return "\n".join(numbered)


def format_document_content(content: str, document_type: str) -> str:
    """Collapse runs of blank lines; complaints also get numbered lines."""
    formatted = _BLANK_RUN_RE.sub("\n\n", content).strip()
    if document_type == "complaint":
        formatted = number_lines(formatted)
    return formatted


def count_words(content: str) -> int:
    return len(content.split())


def estimate_pages(content: str) -> int:
    return max(1, -(-count_words(content) // WORDS_PER_PAGE))


def document_title(document_type: str, case: LegalCase) -> str:
    return f"{document_type.replace('-', ' ').title()} - {case.case_details.title}"


# ---------------------------------------------------------------------------
# Structural Validation
# ---------------------------------------------------------------------------


@dataclass
class DocumentValidation:
    """Outcome of the structural checks; `issues` demote to review."""

    issues: list[str] = field(default_factory=list)
    suggestions: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.issues


def validate_document(document: GeneratedDocument) -> DocumentValidation:
    """
    Deterministic structural checks. Never raises.

    Issues:
      - content shorter than 100 characters
      - court filing without a "Respectfully submitted" signature block
      - complaint without a "CAUSES OF ACTION" section
      - motion without a "WHEREFORE" clause
    """
    result = DocumentValidation()
    content = document.content

    if len(content) < MIN_CONTENT_CHARS:
        result.issues.append("Document appears to be too short for a legal document")
    if document.type in COURT_FILINGS and SIGNATURE_MARKER not in content:
        result.issues.append("Court filing is missing a signature block")
    if document.type == "complaint" and "CAUSES OF ACTION" not in content:
        result.issues.append('Complaint should include a "CAUSES OF ACTION" section')
    if document.type == "motion" and "WHEREFORE" not in content:
        result.issues.append('Motion should include a "WHEREFORE" clause')

    if document.type not in TEMPLATES:
        result.suggestions.append(
            f"No dedicated template for {document.type}; drafted from the legal memo "
            "structure"
        )
    return result


class AIReview(BaseModel):
    """Shape of the LLM review reply."""

    model_config = ConfigDict(extra="ignore")

    criticalIssues: list[str] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Generator
# ---------------------------------------------------------------------------


class DocumentGenerator:
    """
    Drafts legal documents through the configured LLM provider.

    Usage:
        generator = DocumentGenerator(get_llm_provider())
        document = await generator.generate(case, "complaint")
    """

    def __init__(self, llm: LLMProvider) -> None:
        self._llm = llm

    def drafting_request(self, case: LegalCase, document_type: str) -> GenerationRequest:
        prompt = (
            f"Document Type: {document_type}\n\n"
            f"TEMPLATE:\n{get_template(document_type)}\n\n"
            f"Generate a complete {document_type} document for this case. "
            "Ensure it includes:\n"
            "1. Proper document header and title\n"
            "2. All necessary legal sections and clauses from the template\n"
            "3. Appropriate formatting for court filing\n"
            "4. Placeholder fields for signatures and dates\n"
            f"5. Jurisdiction-specific requirements for {case.case_details.jurisdiction}\n\n"
            "The document should be ready for review and filing with minimal "
            "modifications."
        )
        return GenerationRequest(
            prompt=prompt,
            context=build_case_context(case),
            system_prompt=DRAFTING_SYSTEM_PROMPT,
            temperature=DRAFTING_TEMPERATURE,
            max_tokens=DRAFTING_MAX_TOKENS,
        )

    def review_request(self, document: GeneratedDocument) -> GenerationRequest:
        return GenerationRequest(
            prompt=(
                f"Review this {document.type} for legal formatting, missing "
                "sections or clauses, clarity, and compliance with court "
                f"requirements:\n\n{document.content[:2000]}"
            ),
            system_prompt=REVIEW_SYSTEM_PROMPT,
            temperature=0.0,
            max_tokens=1000,
        )

    async def generate(
        self, case: LegalCase, document_type: str, *, generated_by: str = "Document Generator",
    ) -> GeneratedDocument:
        """
        Draft one document. LLM failures propagate (ExternalServiceError).

        The returned document has status "draft" and no renditions yet.
        """
        logger.info(
            "Drafting %s for case %s (template=%s)",
            document_type, case.id,
            document_type if document_type in TEMPLATES else "legal-memo",
        )
        response = await self._llm.generate(self.drafting_request(case, document_type))
        content = response.content.strip()

        document = GeneratedDocument(
            id=str(uuid.uuid4()),
            case_id=case.id,
            type=document_type,
            title=document_title(document_type, case),
            content=content,
            generated_by=generated_by,
            metadata=DocumentMetadata(
                word_count=count_words(content),
                page_count=estimate_pages(content),
                tags=[document_type, case.case_details.category],
            ),
        )
        logger.info(
            "Drafted %s for case %s (%d words, ~%d pages)",
            document_type, case.id,
            document.metadata.word_count, document.metadata.page_count,
        )
        return document
