"""
Text generation through an OpenAI-compatible chat completions API.

A request names an ordered list of candidate models. They are tried in
turn and the first non-empty reply wins; when every candidate fails or
answers with nothing, :class:`GenerationExhausted` is raised. A whole
fallback run counts as one call for the concurrency gate and one outcome
for the generation breaker.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

from openai import AsyncOpenAI, OpenAIError

from arbiter.configuration.ai_settings import AISettings, ModelTier
from arbiter.core.errors import GenerationExhausted
from arbiter.resilience.circuit_breaker import CircuitBreaker
from arbiter.resilience.concurrency_gate import ConcurrencyGate, PriorityClass
from arbiter.util.logger import get_logger

logger = get_logger("generation_service")


@dataclass(frozen=True, slots=True)
class GenerationRequest:
    prompt: str
    models: List[str]
    temperature: float = 0.3
    max_tokens: int = 1024

    @classmethod
    def for_tier(cls, prompt: str, tier: ModelTier) -> "GenerationRequest":
        return cls(prompt=prompt, models=list(tier.models), temperature=tier.temperature, max_tokens=tier.max_tokens)


@dataclass(frozen=True, slots=True)
class GenerationResult:
    text: str
    model_used: str


class GenerationService:
    """
    Ordered-fallback generation client guarded by a gate class and a breaker.

    Args:
        client: Configured ``AsyncOpenAI`` client.
        breaker: Breaker of the generation dependency.
        gate: Shared concurrency gate.
        settings: ``ai_settings`` view used to resolve model tiers.
    """

    def __init__(
        self,
        client: AsyncOpenAI,
        breaker: CircuitBreaker,
        gate: ConcurrencyGate,
        settings: Optional[AISettings] = None,
    ) -> None:
        self._client = client
        self._breaker = breaker
        self._gate = gate
        self._settings = settings or AISettings()

    @classmethod
    def from_settings(cls, settings: AISettings, breaker: CircuitBreaker, gate: ConcurrencyGate) -> "GenerationService":
        client = AsyncOpenAI(
            api_key=settings.api_key,
            base_url=settings.base_url or None,
            timeout=settings.request_timeout,
            max_retries=0,
        )
        logger.info("[GENERATION] Initialized with base_url=%s", settings.base_url)
        return cls(client, breaker, gate, settings)

    def tier(self, purpose: str) -> ModelTier:
        return self._settings.tier(purpose)

    async def _complete_once(self, request: GenerationRequest, model: str) -> str:
        response = await self._client.chat.completions.create(
            model=model,
            messages=[{"role": "user", "content": request.prompt}],
            temperature=request.temperature,
            max_tokens=request.max_tokens,
        )
        if not response.choices:
            return ""
        return (response.choices[0].message.content or "").strip()

    async def complete(self, request: GenerationRequest) -> GenerationResult:
        """Try each candidate model in order, without gate or breaker."""
        if not request.models:
            raise GenerationExhausted([], ValueError("no candidate models"))

        last_error: Optional[BaseException] = None
        for model in request.models:
            try:
                text = await self._complete_once(request, model)
            except (OpenAIError, TimeoutError) as exc:
                logger.warning("[GENERATION] Model %s failed: %s", model, exc)
                last_error = exc
                continue
            if text:
                return GenerationResult(text=text, model_used=model)
            logger.warning("[GENERATION] Model %s returned an empty response", model)

        raise GenerationExhausted(request.models, last_error)

    async def generate(
        self, request: GenerationRequest, priority: PriorityClass = PriorityClass.BACKGROUND
    ) -> GenerationResult:
        """Run :meth:`complete` inside a gate slot of ``priority`` and through the breaker."""
        async with self._gate.slot(priority):
            result = await self._breaker.execute(lambda: self.complete(request))
        logger.debug("[GENERATION] %s answered (%d chars, %s)", result.model_used, len(result.text), priority)
        return result

    async def generate_for(
        self, prompt: str, purpose: str, priority: PriorityClass = PriorityClass.BACKGROUND
    ) -> GenerationResult:
        """Shortcut resolving the model tier of ``purpose`` from settings."""
        return await self.generate(GenerationRequest.for_tier(prompt, self.tier(purpose)), priority)

    async def close(self) -> None:
        await self._client.close()
