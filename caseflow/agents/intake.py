# =============================================================================
# Intake Agent — Validation + AI-Suggested Refinements
# =============================================================================
#
# First stage of every workflow. Two steps:
#
#   1. Strict validation of plaintiff info and case details against the
#      intake schemas (models/requests.py). Every violation is collected
#      and reported in one ValidationError; nothing is retried.
#   2. AI augmentation: the LLM suggests {recommendedUrgency,
#      suggestedCategory, enhancedDescription, complexityAssessment}.
#      Each suggested value is re-validated on its own; invalid values are
#      dropped and the validated original is kept.
#
# DESIGN DECISION: Augmentation never blocks the pipeline.
# A failed call or an unparseable reply falls back to the validated
# originals (counted as a parse fallback). Only step 1 can fail the stage.
#
# DESIGN DECISION: The suggested category only replaces "other".
# A client-chosen category is a deliberate classification; the model may
# refine an unclassified case but never overrides an explicit one.
# =============================================================================

from __future__ import annotations

import logging
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from caseflow.agents.base import BaseAgent
from caseflow.errors import ValidationError
from caseflow.models.cases import LegalCase, utcnow
from caseflow.models.requests import CaseDetailsInput, IntakeSuggestions, PlaintiffInfoInput
from caseflow.models.workflow import next_stage
from caseflow.services.llm import GenerationRequest, check_connection

logger = logging.getLogger(__name__)

INTAKE_SYSTEM_PROMPT = (
    "You are a legal intake specialist with expertise in case categorization "
    "and risk assessment. Respond with ONLY a JSON object."
)


def _format_errors(prefix: str, error: PydanticValidationError) -> list[str]:
    issues: list[str] = []
    for item in error.errors():
        location = ".".join(str(part) for part in item["loc"])
        issues.append(f"{prefix}.{location}: {item['msg']}")
    return issues


def validate_case(case: LegalCase) -> None:
    """
    Check a case against the intake schemas.

    Raises:
        ValidationError: With one issue per violated constraint.
    """
    issues: list[str] = []
    try:
        PlaintiffInfoInput.model_validate(case.plaintiff_info.model_dump())
    except PydanticValidationError as e:
        issues.extend(_format_errors("plaintiff_info", e))
    try:
        CaseDetailsInput.model_validate(case.case_details.model_dump())
    except PydanticValidationError as e:
        issues.extend(_format_errors("case_details", e))

    if issues:
        raise ValidationError(
            f"Case {case.id} failed intake validation ({len(issues)} issues)",
            issues=issues,
        )


def accept_suggestions(raw: dict[str, Any]) -> IntakeSuggestions:
    """Keep each suggested value that validates on its own; drop the rest."""
    accepted: dict[str, Any] = {}
    for field_name in IntakeSuggestions.model_fields:
        if raw.get(field_name) is None:
            continue
        try:
            IntakeSuggestions.model_validate({field_name: raw[field_name]})
        except PydanticValidationError:
            logger.info("Discarding invalid intake suggestion %s=%r", field_name, raw[field_name])
            continue
        accepted[field_name] = raw[field_name]
    return IntakeSuggestions.model_validate(accepted)


class IntakeAgent(BaseAgent):
    name = "Legal Intake Agent"
    agent_type = "intake-agent"
    description = "Processes initial plaintiff intake forms and validates legal case information"
    capabilities = (
        "Plaintiff information validation",
        "Legal issue categorization",
        "Urgency assessment",
        "Initial case evaluation",
    )

    async def _execute(self, case: LegalCase) -> LegalCase:
        self._log_progress(case.id, "Starting intake processing")

        validate_case(case)
        self._log_progress(case.id, "Plaintiff information and case details validated")

        suggestions = await self.suggest(case)
        self._apply(case, suggestions)

        case.status = "active"
        case.workflow_stage = next_stage(case.workflow_stage)
        case.updated_at = utcnow()

        self._log_progress(
            case.id, "Intake processing completed",
            category=case.case_details.category,
            complexity=case.case_details.complexity,
            urgency=case.plaintiff_info.urgency,
        )
        return case

    async def suggest(self, case: LegalCase) -> IntakeSuggestions:
        plaintiff = case.plaintiff_info
        details = case.case_details
        prompt = (
            "Analyze the following plaintiff intake and suggest refinements.\n\n"
            f"Legal Issue: {plaintiff.legal_issue}\n"
            f"Description: {plaintiff.description}\n"
            f"Desired Outcome: {plaintiff.desired_outcome}\n"
            f"Current Urgency: {plaintiff.urgency}\n"
            f"Current Category: {details.category}\n"
            f"Current Complexity: {details.complexity}\n\n"
            "Respond with a JSON object with any of these fields:\n"
            '- "recommendedUrgency": one of low, medium, high, critical\n'
            '- "suggestedCategory": one of civil-litigation, contract-dispute, '
            "employment-law, personal-injury, intellectual-property, real-estate, "
            "family-law, criminal-defense, business-law, other\n"
            '- "enhancedDescription": a clearer description (50-2000 characters)\n'
            '- "complexityAssessment": one of low, medium, high'
        )
        raw = await self._generate_structured(
            GenerationRequest(
                prompt=prompt,
                system_prompt=INTAKE_SYSTEM_PROMPT,
                temperature=0.3,
                max_tokens=1000,
            ),
            dict[str, Any],
            {},
            label="intake-suggestions",
        )
        return accept_suggestions(raw)

    def _apply(self, case: LegalCase, suggestions: IntakeSuggestions) -> None:
        plaintiff = case.plaintiff_info
        details = case.case_details

        if suggestions.recommendedUrgency:
            plaintiff.urgency = suggestions.recommendedUrgency
        if suggestions.enhancedDescription:
            plaintiff.description = suggestions.enhancedDescription
        if suggestions.complexityAssessment:
            details.complexity = suggestions.complexityAssessment
        if suggestions.suggestedCategory and details.category == "other":
            details.category = suggestions.suggestedCategory

    async def _health_probe(self) -> bool:
        return await check_connection(self.llm)
