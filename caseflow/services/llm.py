# =============================================================================
# Multi-Provider LLM Abstraction — Text Generation Contract
# =============================================================================
#
# Every agent talks to the LLM through one contract:
#
#   GenerationRequest {prompt, context?, system_prompt?, temperature,
#                      max_tokens}
#     → GenerationResponse {content, usage {prompt_tokens,
#                           completion_tokens, total_tokens}, model,
#                           timestamp}
#
# Any provider failure (API error, connection error, timeout) surfaces as
# ExternalServiceError carrying a message. Callers decide whether that is
# fatal (primary content) or recoverable (AI augmentation).
#
# DESIGN DECISION: Protocol (structural typing) over ABC.
# Matches the Embedder protocol — test doubles only need a matching
# `generate()` coroutine, no inheritance.
#
# DESIGN DECISION: Native SDKs over LangChain wrappers.
# Direct control over request parameters and error types.
#
# DESIGN DECISION: Explicit timeout on every call.
# A stalled provider would otherwise stall the workflow stage forever.
#
# ARCHITECTURE:
#   LLMProvider (Protocol)
#   ├── AnthropicProvider        — Claude via native Anthropic SDK
#   ├── OpenAICompatibleProvider — Any OpenAI-compatible API
#   ├── get_llm_provider()       — Singleton factory, reads from config
#   └── check_connection()       — Minimal round trip for health probes
# =============================================================================

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol

from caseflow.config import settings
from caseflow.errors import ExternalServiceError
from caseflow.models.cases import utcnow

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass
class GenerationRequest:
    """A single text-generation call."""

    prompt: str
    context: str | None = None
    system_prompt: str | None = None
    temperature: float | None = None  # None → provider default from config
    max_tokens: int | None = None     # None → provider default from config


@dataclass
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


@dataclass
class GenerationResponse:
    """
    Standardised response from any LLM provider.

    Normalises the different response formats (Anthropic vs OpenAI)
    into a single structure that agents consume.
    """

    content: str
    model: str
    usage: TokenUsage = field(default_factory=TokenUsage)
    timestamp: datetime = field(default_factory=utcnow)


# ---------------------------------------------------------------------------
# Protocol Definition
# ---------------------------------------------------------------------------


class LLMProvider(Protocol):
    """Anything with a `generate()` coroutine honouring the contract above."""

    async def generate(self, request: GenerationRequest) -> GenerationResponse:
        ...


def _user_content(request: GenerationRequest) -> str:
    """Prefix the prompt with its context block, when there is one."""
    if request.context:
        return f"Context: {request.context}\n\n{request.prompt}"
    return request.prompt


# ---------------------------------------------------------------------------
# Implementation 1: Anthropic (Claude)
# ---------------------------------------------------------------------------


class AnthropicProvider:
    """
    Anthropic Claude provider using the native SDK.

    KEY API DIFFERENCE: Anthropic takes system prompts as a top-level
    `system=` kwarg, NOT as a message with role "system".
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        timeout: float | None = None,
    ) -> None:
        from anthropic import AsyncAnthropic

        resolved_key = api_key or settings.llm_api_key or settings.anthropic_api_key
        if not resolved_key:
            raise ValueError(
                "No Anthropic API key configured. Set LLM_API_KEY or "
                "ANTHROPIC_API_KEY in .env"
            )

        self._client = AsyncAnthropic(api_key=resolved_key)
        self._model = model or settings.llm_model
        self._temperature = settings.llm_temperature
        self._max_tokens = settings.llm_max_tokens
        self._timeout = timeout or settings.external_call_timeout_seconds

        logger.info("Initialized AnthropicProvider (model=%s)", self._model)

    async def generate(self, request: GenerationRequest) -> GenerationResponse:
        """Generate a completion using Claude."""
        from anthropic import APIError

        kwargs: dict = {
            "model": self._model,
            "messages": [{"role": "user", "content": _user_content(request)}],
            "max_tokens": request.max_tokens or self._max_tokens,
            "temperature": (
                request.temperature
                if request.temperature is not None
                else self._temperature
            ),
        }
        if request.system_prompt:
            kwargs["system"] = request.system_prompt

        try:
            response = await asyncio.wait_for(
                self._client.messages.create(**kwargs), timeout=self._timeout,
            )
        except TimeoutError as e:
            logger.error("Anthropic call timed out after %.0fs", self._timeout)
            raise ExternalServiceError("anthropic", "request timed out") from e
        except APIError as e:
            logger.error("Anthropic call failed: %s", e)
            raise ExternalServiceError("anthropic", str(e)) from e

        # Extract text from the first content block
        content = ""
        for block in response.content:
            if block.type == "text":
                content = block.text
                break

        return GenerationResponse(
            content=content,
            model=response.model,
            usage=TokenUsage(
                prompt_tokens=response.usage.input_tokens,
                completion_tokens=response.usage.output_tokens,
            ),
        )


# ---------------------------------------------------------------------------
# Implementation 2: OpenAI-Compatible
# ---------------------------------------------------------------------------


class OpenAICompatibleProvider:
    """
    Provider for any API that follows the OpenAI chat completions spec.

    Switching providers is a config change:
        LLM_PROVIDER=openai_compatible
        LLM_BASE_URL=https://api.deepseek.com/v1
        LLM_API_KEY=your-key
        LLM_MODEL=deepseek-chat
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
    ) -> None:
        from openai import AsyncOpenAI

        resolved_key = api_key or settings.llm_api_key or settings.openai_api_key
        if not resolved_key:
            raise ValueError(
                "No API key configured for OpenAI-compatible provider. "
                "Set LLM_API_KEY in .env"
            )

        client_kwargs: dict = {"api_key": resolved_key}
        resolved_base_url = base_url or settings.llm_base_url
        if resolved_base_url:
            client_kwargs["base_url"] = resolved_base_url

        self._client = AsyncOpenAI(**client_kwargs)
        self._model = model or settings.llm_model
        self._temperature = settings.llm_temperature
        self._max_tokens = settings.llm_max_tokens
        self._timeout = timeout or settings.external_call_timeout_seconds

        logger.info(
            "Initialized OpenAICompatibleProvider (model=%s, base_url=%s)",
            self._model,
            resolved_base_url or "https://api.openai.com/v1",
        )

    async def generate(self, request: GenerationRequest) -> GenerationResponse:
        """Generate a completion using an OpenAI-compatible API."""
        from openai import APIError

        # OpenAI: system prompt goes as the first message
        messages: list[dict[str, str]] = []
        if request.system_prompt:
            messages.append({"role": "system", "content": request.system_prompt})
        messages.append({"role": "user", "content": _user_content(request)})

        try:
            response = await asyncio.wait_for(
                self._client.chat.completions.create(
                    model=self._model,
                    messages=messages,
                    max_tokens=request.max_tokens or self._max_tokens,
                    temperature=(
                        request.temperature
                        if request.temperature is not None
                        else self._temperature
                    ),
                ),
                timeout=self._timeout,
            )
        except TimeoutError as e:
            logger.error("OpenAI-compatible call timed out after %.0fs", self._timeout)
            raise ExternalServiceError("openai_compatible", "request timed out") from e
        except APIError as e:
            logger.error("OpenAI-compatible call failed: %s", e)
            raise ExternalServiceError("openai_compatible", str(e)) from e

        content = response.choices[0].message.content or ""

        # Token counts: OpenAI uses different field names than Anthropic
        usage = response.usage
        return GenerationResponse(
            content=content,
            model=response.model or self._model,
            usage=TokenUsage(
                prompt_tokens=usage.prompt_tokens if usage else 0,
                completion_tokens=usage.completion_tokens if usage else 0,
            ),
        )


# ---------------------------------------------------------------------------
# Factory Function
# ---------------------------------------------------------------------------

# Lazy singleton — avoid re-creating client on every request
_provider: AnthropicProvider | OpenAICompatibleProvider | None = None


def get_llm_provider() -> AnthropicProvider | OpenAICompatibleProvider:
    """
    Factory that returns the configured LLM provider.

    Reads `llm_provider` from settings:
    - "anthropic" → AnthropicProvider (Claude)
    - "openai_compatible" → OpenAICompatibleProvider
    """
    global _provider
    if _provider is None:
        if settings.llm_provider == "openai_compatible":
            _provider = OpenAICompatibleProvider()
        else:
            _provider = AnthropicProvider()
    return _provider


async def check_connection(llm: LLMProvider) -> bool:
    """Minimal round trip used by agent health probes. Never raises."""
    try:
        response = await llm.generate(GenerationRequest(
            prompt='Respond with "OK" to confirm service availability.',
            max_tokens=10,
            temperature=0.0,
        ))
    except ExternalServiceError as e:
        logger.warning("LLM connection check failed: %s", e)
        return False
    return "OK" in response.content
