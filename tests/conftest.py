# =============================================================================
# Shared Test Fixtures
# =============================================================================
#
# Fakes for the external collaborators (LLM, retrieval, renderer) so agent
# and orchestrator tests run without API keys, a vector index or disk I/O.
# The retrieval engine itself is tested against a real chromadb index in
# a temporary directory (test_retrieval.py).
# =============================================================================

from __future__ import annotations

from collections.abc import Awaitable, Callable

import pytest

from caseflow.models.cases import Address, CaseDetails, LegalCase, PlaintiffInfo, Rendition
from caseflow.models.retrieval import RAGQuery, RAGResult, RetrievedDocument
from caseflow.services.events import ALL_EVENTS, Event, EventBus
from caseflow.services.llm import GenerationRequest, GenerationResponse

# Long enough to pass structural validation for every document type, and
# contains "OK" for connection checks. Not JSON, so structured steps fall back.
DEFAULT_REPLY = """\
IN THE SUPERIOR COURT OF THE STATE OF CALIFORNIA

CAUSES OF ACTION

First Cause of Action: failure to pay final wages owed at termination.



WHEREFORE, Plaintiff respectfully requests that the Court grant the relief \
sought above. Status: OK.

Respectfully submitted,

[ATTORNEY NAME]
Attorney for Plaintiff"""


class FakeLLM:
    """
    Records every request and answers from a list of (marker, reply) rules.

    The first rule whose marker appears in the prompt wins; a reply that is
    an exception instance is raised instead. `on_generate` runs before the
    reply is chosen, so tests can act while a call is "in flight".
    """

    def __init__(self, default: str = DEFAULT_REPLY) -> None:
        self.default = default
        self.rules: list[tuple[str, str | Exception]] = []
        self.requests: list[GenerationRequest] = []
        self.on_generate: Callable[[GenerationRequest], Awaitable[None]] | None = None

    def reply(self, marker: str, response: str | Exception) -> FakeLLM:
        self.rules.append((marker, response))
        return self

    def prompts_containing(self, marker: str) -> list[GenerationRequest]:
        return [request for request in self.requests if marker in request.prompt]

    async def generate(self, request: GenerationRequest) -> GenerationResponse:
        self.requests.append(request)
        if self.on_generate is not None:
            await self.on_generate(request)

        response: str | Exception = self.default
        for marker, candidate in self.rules:
            if marker in request.prompt:
                response = candidate
                break
        if isinstance(response, Exception):
            raise response
        return GenerationResponse(content=response, model="fake-model")


class FakeRetrieval:
    """Returns a fixed document list for every query, or raises `error`."""

    def __init__(
        self,
        documents: list[RetrievedDocument] | None = None,
        error: Exception | None = None,
    ) -> None:
        self.documents = documents or []
        self.error = error
        self.queries: list[RAGQuery] = []

    async def query(self, request: RAGQuery) -> RAGResult:
        self.queries.append(request)
        if self.error is not None:
            raise self.error
        documents = self.documents[: request.max_results]
        confidence = (
            sum(doc.relevance_score for doc in documents) / len(documents)
            if documents else 0.0
        )
        return RAGResult(
            documents=documents, total_results=len(documents), confidence=confidence,
        )

    async def health_check(self) -> bool:
        return True


class FakeRenderer:
    def __init__(self) -> None:
        self.calls: list[tuple[str, int, str]] = []

    async def render(self, document, fmt: str) -> Rendition:
        self.calls.append((document.id, document.version, fmt))
        return Rendition(format=fmt, path=f"/tmp/{document.id}_v{document.version}.{fmt}")


def make_reference(
    title: str, doc_type: str, score: float = 0.9, **metadata,
) -> RetrievedDocument:
    return RetrievedDocument(
        id=title.lower().replace(" ", "-"),
        title=title,
        content=f"{title}: reference text about final wages and termination.",
        source="test",
        relevance_score=score,
        metadata={"type": doc_type, "jurisdiction": "California", **metadata},
    )


def build_case(
    case_id: str = "case-1",
    category: str = "other",
    complexity: str = "low",
    urgency: str = "low",
    **plaintiff_overrides,
) -> LegalCase:
    plaintiff = {
        "name": "Jane Roe",
        "email": "jane.roe@example.com",
        "phone": "+1 (555) 123-4567",
        "address": Address(
            street="100 Market St", city="San Francisco", state="CA",
            zip_code="94105", country="USA",
        ),
        "legal_issue": "Unpaid wages after termination",
        "description": (
            "Employer terminated the plaintiff in March and has not paid "
            "the final two weeks of wages or accrued vacation."
        ),
        "desired_outcome": "Recover unpaid wages and waiting-time penalties",
        "urgency": urgency,
        **plaintiff_overrides,
    }
    return LegalCase(
        id=case_id,
        plaintiff_info=PlaintiffInfo(**plaintiff),
        case_details=CaseDetails(
            title="Roe v. Acme Staffing",
            category=category,
            jurisdiction="California",
            court_level="state",
            estimated_duration=90,
            complexity=complexity,
        ),
    )


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def llm() -> FakeLLM:
    return FakeLLM()


@pytest.fixture
def retrieval() -> FakeRetrieval:
    return FakeRetrieval([
        make_reference("Smith v. Jones", "case-law", 0.92),
        make_reference("Doe v. Widget Corp", "case-law", 0.85),
        make_reference("Labor Code 201", "statute", 0.88),
    ])


@pytest.fixture
def renderer() -> FakeRenderer:
    return FakeRenderer()


@pytest.fixture
def events() -> EventBus:
    return EventBus()


@pytest.fixture
def recorded(events: EventBus) -> list[Event]:
    """Every event published on the `events` bus, in order."""
    seen: list[Event] = []
    events.subscribe(ALL_EVENTS, seen.append)
    return seen


@pytest.fixture
def make_case() -> Callable[..., LegalCase]:
    return build_case


@pytest.fixture
def make_ref() -> Callable[..., RetrievedDocument]:
    return make_reference
