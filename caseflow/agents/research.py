# =============================================================================
# Research Agent — RAG-Backed Legal Research and Argument Drafting
# =============================================================================
#
# Handles two stages:
#
#   research
#     1. Build a query from legal issue + description + category +
#        jurisdiction; retrieve case law / statutes / regulations for the
#        case's jurisdiction.
#     2. Three separate LLM calls over the retrieved documents:
#        (a) narrative analysis → case.research_summary   (fatal on failure)
#        (b) precedent ranking  → case_details.precedents  (parse-or-default)
#        (c) statute extraction → case_details.relevant_laws (parse-or-default)
#
#   argument-generation
#     Draft the formal legal argument from the case context, precedents and
#     research summary → case.legal_argument (fatal on failure).
#
# DESIGN DECISION: Deterministic fallbacks for (b) and (c).
# When the ranking/extraction reply is unusable, the first five retrieved
# titles of the relevant type are used instead. No matching documents
# means no call at all and nothing appended.
#
# DESIGN DECISION: Append, never replace.
# Research results are added after whatever intake or a human already put
# on the case; entries already present are not repeated.
# =============================================================================

from __future__ import annotations

import logging

from pydantic import BaseModel, ConfigDict

from caseflow.agents.base import BaseAgent
from caseflow.config import settings
from caseflow.errors import ValidationError
from caseflow.models.cases import LegalCase, utcnow
from caseflow.models.retrieval import RAGFilters, RAGQuery, RetrievedDocument
from caseflow.models.workflow import next_stage
from caseflow.services.documents import build_case_context
from caseflow.services.events import EventBus
from caseflow.services.llm import GenerationRequest, LLMProvider, check_connection
from caseflow.services.retrieval import RetrievalEngine

logger = logging.getLogger(__name__)

RESEARCH_DOCUMENT_TYPES = ["case-law", "statute", "regulation"]
ANALYSIS_DOC_LIMIT = 10
PRECEDENT_DOC_LIMIT = 15
STATUTE_DOC_LIMIT = 10
FALLBACK_TITLE_LIMIT = 5
MIN_PRECEDENT_RELEVANCE = 7


class PrecedentRanking(BaseModel):
    model_config = ConfigDict(extra="ignore")

    caseName: str
    citation: str = ""
    relevance: float
    principle: str
    impact: str = ""


class StatuteExtraction(BaseModel):
    model_config = ConfigDict(extra="ignore")

    citation: str
    section: str = ""
    application: str
    favorability: str = ""


def build_research_query(case: LegalCase) -> str:
    plaintiff = case.plaintiff_info
    details = case.case_details
    query = (
        f"{plaintiff.legal_issue} {plaintiff.description} "
        f"{details.category} {details.jurisdiction}"
    )
    return query[:1000]


def build_research_context(case: LegalCase) -> str:
    plaintiff = case.plaintiff_info
    details = case.case_details
    return (
        "Legal Case Research Context:\n"
        f"- Category: {details.category}\n"
        f"- Jurisdiction: {details.jurisdiction}\n"
        f"- Court Level: {details.court_level}\n"
        f"- Legal Issue: {plaintiff.legal_issue}\n"
        f"- Case Description: {plaintiff.description}\n"
        f"- Desired Outcome: {plaintiff.desired_outcome}"
    )


def _append_new(existing: list[str], additions: list[str]) -> list[str]:
    seen = set(existing)
    merged = list(existing)
    for item in additions:
        if item not in seen:
            merged.append(item)
            seen.add(item)
    return merged


class ResearchAgent(BaseAgent):
    name = "Legal Research Agent"
    agent_type = "research-agent"
    description = "Conducts legal research using RAG retrieval and AI analysis"
    capabilities = (
        "Case law research",
        "Statute analysis",
        "Precedent identification",
        "Jurisdiction-specific research",
        "Legal argument drafting",
    )

    def __init__(
        self,
        llm: LLMProvider,
        retrieval: RetrievalEngine,
        events: EventBus | None = None,
    ) -> None:
        super().__init__(llm, events)
        self.retrieval = retrieval

    async def _execute(self, case: LegalCase) -> LegalCase:
        stage = case.workflow_stage
        if stage == "research":
            await self._research(case)
        elif stage == "argument-generation":
            await self._generate_argument(case)
        else:
            raise ValidationError(f"{self.name} cannot handle stage '{stage}'")

        case.workflow_stage = next_stage(stage)
        case.updated_at = utcnow()
        return case

    # ---------------------------------------------------------------------
    # Stage: research
    # ---------------------------------------------------------------------

    async def _research(self, case: LegalCase) -> None:
        details = case.case_details
        self._log_progress(
            case.id, "Starting legal research",
            category=details.category, jurisdiction=details.jurisdiction,
        )

        # Retrieval failures propagate and fail the stage
        result = await self.retrieval.query(RAGQuery(
            query=build_research_query(case),
            context=build_research_context(case)[:2000],
            filters=RAGFilters(
                document_type=RESEARCH_DOCUMENT_TYPES,
                jurisdiction=[details.jurisdiction],
            ),
            max_results=settings.research_max_results,
            threshold=settings.retrieval_similarity_threshold,
        ))
        documents = result.documents
        self._log_progress(
            case.id, "Retrieved relevant documents",
            documents_found=result.total_results, confidence=result.confidence,
        )

        case.research_summary = await self.analyze(case, documents)
        precedents = await self.identify_precedents(case, documents)
        laws = await self.extract_laws(case, documents)

        details.precedents = _append_new(details.precedents, precedents)
        details.relevant_laws = _append_new(details.relevant_laws, laws)

        self._log_progress(
            case.id, "Legal research completed",
            precedents_found=len(precedents), laws_identified=len(laws),
        )

    async def analyze(self, case: LegalCase, documents: list[RetrievedDocument]) -> str:
        """Narrative research memo. Generation failures propagate."""
        documents_text = "\n\n".join(
            f"Title: {doc.title}\nContent: {doc.content[:500]}..."
            for doc in documents[:ANALYSIS_DOC_LIMIT]
        ) or "No reference documents matched this case."

        response = await self.llm.generate(GenerationRequest(
            prompt=(
                "Analyze the following legal research results for the case.\n\n"
                f"Research Documents:\n{documents_text}\n\n"
                "Provide an analysis covering:\n"
                "1. Key legal principles identified\n"
                "2. Strength of available precedents\n"
                "3. Potential arguments for the plaintiff\n"
                "4. Potential counterarguments to address\n"
                "5. Gaps in research that need attention\n"
                "6. Strategic recommendations\n\n"
                "Format as a legal research memo."
            ),
            context=build_research_context(case),
            system_prompt=(
                "You are an expert legal researcher with deep knowledge of "
                "case law analysis and legal strategy."
            ),
            temperature=0.3,
            max_tokens=2500,
        ))
        return response.content

    async def identify_precedents(
        self, case: LegalCase, documents: list[RetrievedDocument],
    ) -> list[str]:
        precedent_docs = [
            doc for doc in documents if doc.metadata.get("type") == "case-law"
        ][:PRECEDENT_DOC_LIMIT]
        if not precedent_docs:
            return []

        documents_text = "\n\n".join(
            f"Case: {doc.title}\n"
            f"Citation: {doc.metadata.get('citation', 'N/A')}\n"
            f"Key Points: {doc.content[:300]}..."
            for doc in precedent_docs
        )
        rankings = await self._generate_structured(
            GenerationRequest(
                prompt=(
                    "Identify the most relevant precedent cases for this legal issue.\n\n"
                    f"Case Issue: {case.plaintiff_info.legal_issue}\n"
                    f"Jurisdiction: {case.case_details.jurisdiction}\n\n"
                    f"Available Cases:\n{documents_text}\n\n"
                    "Return ONLY a JSON array of up to 10 objects with fields: "
                    "caseName, citation, relevance (1-10), principle, impact"
                ),
                system_prompt=(
                    "You are a legal precedent analysis expert with expertise in "
                    "case law relevance assessment."
                ),
                temperature=0.2,
                max_tokens=2000,
            ),
            list[PrecedentRanking],
            None,
            label="precedent-ranking",
        )
        if rankings is None:
            self._log_progress(case.id, "Precedent analysis failed, using retrieved titles")
            return [doc.title for doc in precedent_docs[:FALLBACK_TITLE_LIMIT]]

        return [
            f"{ranking.caseName} - {ranking.principle}"
            for ranking in rankings
            if ranking.relevance >= MIN_PRECEDENT_RELEVANCE
        ]

    async def extract_laws(
        self, case: LegalCase, documents: list[RetrievedDocument],
    ) -> list[str]:
        statute_docs = [
            doc for doc in documents
            if doc.metadata.get("type") in ("statute", "regulation")
        ][:STATUTE_DOC_LIMIT]
        if not statute_docs:
            return []

        documents_text = "\n\n".join(
            f"Law: {doc.title}\nContent: {doc.content[:400]}..."
            for doc in statute_docs
        )
        extractions = await self._generate_structured(
            GenerationRequest(
                prompt=(
                    "Extract the most relevant laws and regulations for this case.\n\n"
                    f"Legal Issue: {case.plaintiff_info.legal_issue}\n"
                    f"Case Category: {case.case_details.category}\n"
                    f"Jurisdiction: {case.case_details.jurisdiction}\n\n"
                    f"Available Laws:\n{documents_text}\n\n"
                    "Return ONLY a JSON array of objects with fields: "
                    "citation, section, application, favorability"
                ),
                system_prompt=(
                    "You are a legal statute analysis expert with expertise in "
                    "regulatory compliance and legal application."
                ),
                temperature=0.2,
                max_tokens=1500,
            ),
            list[StatuteExtraction],
            None,
            label="statute-extraction",
        )
        if extractions is None:
            self._log_progress(case.id, "Statute analysis failed, using retrieved titles")
            return [doc.title for doc in statute_docs[:FALLBACK_TITLE_LIMIT]]

        return [
            f"{law.citation} {law.section} - {law.application}".replace("  ", " ")
            for law in extractions
        ]

    # ---------------------------------------------------------------------
    # Stage: argument-generation
    # ---------------------------------------------------------------------

    async def _generate_argument(self, case: LegalCase) -> None:
        """Primary content: generation failures propagate."""
        self._log_progress(case.id, "Drafting legal argument")

        response = await self.llm.generate(GenerationRequest(
            prompt=(
                "Draft the formal legal argument for the plaintiff. Structure it "
                "as: statement of the issue, governing law, application of the "
                "precedents and statutes to the facts, anticipated "
                "counterarguments with rebuttals, and the relief requested."
            ),
            context=build_case_context(case),
            system_prompt=(
                "You are a senior litigator drafting persuasive, well-cited "
                "legal arguments."
            ),
            temperature=0.4,
            max_tokens=3000,
        ))
        case.legal_argument = response.content

        self._log_progress(
            case.id, "Legal argument drafted", length=len(response.content),
        )

    async def _health_probe(self) -> bool:
        llm_healthy = await check_connection(self.llm)
        retrieval_healthy = await self.retrieval.health_check()
        return llm_healthy and retrieval_healthy
