"""Tests for ordered-fallback generation with a mocked OpenAI client."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import httpx
import openai
import pytest

from arbiter.configuration.ai_settings import AISettings
from arbiter.core.errors import BreakerOpen, GenerationExhausted
from arbiter.resilience.circuit_breaker import BreakerState, CircuitBreaker
from arbiter.resilience.concurrency_gate import ConcurrencyGate, PriorityClass
from arbiter.services.generation_service import GenerationRequest, GenerationService


def completion(text):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=text))])


def connection_error():
    return openai.APIConnectionError(request=httpx.Request("POST", "https://models.test/v1/chat/completions"))


def make_service(side_effect, breaker=None, tiers=None):
    client = MagicMock()
    client.chat.completions.create = AsyncMock(side_effect=side_effect)
    client.close = AsyncMock()
    settings = AISettings({"tiers": tiers or {"contradiction": {"models": ["primary", "secondary"]}}})
    service = GenerationService(client, breaker or CircuitBreaker("generation"), ConcurrencyGate(), settings)
    return service, client


@pytest.mark.asyncio
async def test_first_model_answers():
    service, client = make_service([completion("  yes  ")])

    result = await service.generate_for("prompt", "contradiction", PriorityClass.BACKGROUND)

    assert result.text == "yes"
    assert result.model_used == "primary"
    kwargs = client.chat.completions.create.await_args.kwargs
    assert kwargs["model"] == "primary"
    assert kwargs["messages"] == [{"role": "user", "content": "prompt"}]


@pytest.mark.asyncio
async def test_falls_back_on_error_and_empty_reply():
    service, client = make_service([connection_error(), completion("from secondary")])

    result = await service.generate_for("prompt", "contradiction")

    assert result.model_used == "secondary"
    assert client.chat.completions.create.await_count == 2


@pytest.mark.asyncio
async def test_empty_reply_moves_to_next_model():
    service, _ = make_service([completion(""), completion("second try")])

    assert (await service.generate_for("prompt", "contradiction")).text == "second try"


@pytest.mark.asyncio
async def test_all_models_failing_raises_generation_exhausted():
    service, _ = make_service([connection_error(), completion(None)])

    with pytest.raises(GenerationExhausted) as excinfo:
        await service.generate_for("prompt", "contradiction")

    assert excinfo.value.models == ["primary", "secondary"]
    assert isinstance(excinfo.value.last_error, openai.APIConnectionError)


@pytest.mark.asyncio
async def test_fallback_run_counts_once_for_breaker():
    breaker = CircuitBreaker("generation", failure_threshold=2)
    service, client = make_service(connection_error(), breaker)

    for _ in range(2):
        with pytest.raises(GenerationExhausted):
            await service.generate_for("prompt", "contradiction")

    assert breaker.state is BreakerState.OPEN
    assert client.chat.completions.create.await_count == 4
    with pytest.raises(BreakerOpen):
        await service.generate_for("prompt", "contradiction")
    assert client.chat.completions.create.await_count == 4


@pytest.mark.asyncio
async def test_request_without_models_is_exhausted():
    service, _ = make_service([])

    with pytest.raises(GenerationExhausted):
        await service.complete(GenerationRequest(prompt="p", models=[]))


def test_unknown_purpose_uses_default_tier():
    service, _ = make_service([])

    assert service.tier("summarization").models == ["anthropic-claude-3.5-haiku", "mistral-nemo-instruct-2407"]
