from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any, Dict, List


@dataclass(frozen=True, slots=True)
class ModelTier:
    """Ordered candidate models plus sampling parameters for one purpose."""

    models: List[str] = field(default_factory=list)
    temperature: float = 0.3
    max_tokens: int = 1024


# Fallback tiers used when the config file omits a purpose.
DEFAULT_TIERS: Dict[str, ModelTier] = {
    "user_facing": ModelTier(["openai-gpt-5", "anthropic-claude-3.7-sonnet"], 0.8, 2048),
    "contradiction": ModelTier(["openai-gpt-4o-mini", "llama3.3-70b-instruct"], 0.3, 1024),
    "summarization": ModelTier(["anthropic-claude-3.5-haiku", "mistral-nemo-instruct-2407"], 0.5, 1024),
    "misinformation": ModelTier(["openai-gpt-4o", "deepseek-r1-distill-llama-70b"], 0.3, 1536),
}


class AISettings:
    """Helper exposing typed accessors for the ``ai_settings`` block.

    Credentials are never stored in the YAML file; ``api_key`` and
    ``base_url`` fall back to the ``AI_API_KEY`` / ``AI_BASE_URL``
    environment variables.
    """

    def __init__(self, data: Dict[str, Any] | None = None) -> None:
        self.data: Dict[str, Any] = data or {}

    def get(self, key: str, default: Any = None) -> Any:
        """Return the value for `key` or `default` if missing."""
        return self.data.get(key, default)

    def as_dict(self) -> Dict[str, Any]:
        return self.data

    @property
    def base_url(self) -> str:
        return str(os.getenv("AI_BASE_URL") or self.data.get("base_url") or "")

    @property
    def api_key(self) -> str:
        return str(os.getenv("AI_API_KEY") or "")

    @property
    def request_timeout(self) -> float:
        return float(self.data.get("request_timeout_seconds", 60.0))

    def tier(self, purpose: str) -> ModelTier:
        """Return the model tier for ``purpose`` (``user_facing``, ``contradiction``, ...)."""
        tiers = self.data.get("tiers", {})
        raw = tiers.get(purpose) if isinstance(tiers, dict) else None
        default = DEFAULT_TIERS.get(purpose, ModelTier())
        if not isinstance(raw, dict):
            return default

        models = raw.get("models") or default.models
        return ModelTier(
            models=[str(m) for m in models],
            temperature=float(raw.get("temperature", default.temperature)),
            max_tokens=int(raw.get("max_tokens", default.max_tokens)),
        )
