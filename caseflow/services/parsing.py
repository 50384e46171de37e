# =============================================================================
# Structured Reply Parsing — Strict Parse-or-Default
# =============================================================================
#
# Several agent steps ask the LLM for JSON (intake suggestions, precedent
# ranking, statute extraction, document review). The reply is never
# trusted: it is validated against a pydantic schema, and anything that is
# not exactly the expected structure is replaced by a caller-supplied
# default.
#
# DESIGN DECISION: One combinator, used everywhere.
# Each fallback is logged at WARNING and counted under a label, so silent
# degradation stays observable (agents expose the count in their
# descriptor) without ever failing the pipeline.
# =============================================================================

from __future__ import annotations

import logging
import re
from collections import Counter
from typing import Any, TypeVar

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Models often wrap JSON in a markdown fence despite being told not to
_FENCE_RE = re.compile(r"^```(?:json|JSON)?\s*(.*?)\s*```$", re.DOTALL)


def strip_code_fence(text: str) -> str:
    stripped = text.strip()
    match = _FENCE_RE.match(stripped)
    return match.group(1) if match else stripped


def parse_or_default(
    raw: str,
    schema: type[T] | TypeAdapter[T] | Any,
    default: T,
    *,
    label: str,
    counter: Counter[str] | None = None,
) -> T:
    """
    Validate an LLM reply as JSON of the given schema, or return `default`.

    Args:
        raw: The raw reply text.
        schema: A pydantic model, a type expression such as
            `list[PrecedentRanking]`, or a prepared TypeAdapter.
        default: Returned unchanged when the reply does not validate.
        label: Name of the step, used for logging and counting.
        counter: Optional per-owner counter incremented on fallback.

    Returns:
        The validated value, or `default`.
    """
    adapter = schema if isinstance(schema, TypeAdapter) else TypeAdapter(schema)
    try:
        return adapter.validate_json(strip_code_fence(raw))
    except PydanticValidationError as e:
        logger.warning(
            "Structured reply for '%s' did not validate (%d errors); "
            "using fallback",
            label, e.error_count(),
        )
        if counter is not None:
            counter[label] += 1
        return default
