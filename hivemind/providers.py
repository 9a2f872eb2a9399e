"""Per-provider model defaults and environment overrides."""

from __future__ import annotations

import os
from dataclasses import dataclass, replace


@dataclass(frozen=True)
class ProviderConfig:
    """A consensus participant and how much its answers are trusted."""

    name: str
    model: str
    confidence: float
    stop_bonus: float = 0.0  # added when the model finished naturally

    def response_confidence(self, finish_reason: str | None) -> float:
        confidence = self.confidence
        if finish_reason == "stop":
            confidence += self.stop_bonus
        return min(confidence, 1.0)


DEFAULT_PROVIDERS: dict[str, ProviderConfig] = {
    "openai": ProviderConfig(name="openai", model="gpt-4-turbo-preview", confidence=0.8, stop_bonus=0.1),
    "anthropic": ProviderConfig(name="anthropic", model="claude-3-opus-20240229", confidence=0.9),
    "google": ProviderConfig(name="google", model="gemini-pro", confidence=0.85),
}


def get_env_key(provider: str) -> str:
    return f"{provider.upper().replace('-', '_')}_MODEL"


def get_model_from_env(provider: str) -> str | None:
    return os.getenv(get_env_key(provider))


def resolve_provider(name: str) -> ProviderConfig:
    """Default config for ``name`` with the model overridable from the environment."""
    config = DEFAULT_PROVIDERS.get(name) or ProviderConfig(name=name, model=name, confidence=0.8)
    env_model = get_model_from_env(name)
    if env_model:
        return replace(config, model=env_model)
    return config


def resolve_providers(names: list[str]) -> list[ProviderConfig]:
    return [resolve_provider(name) for name in names]
