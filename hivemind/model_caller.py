"""Model Caller contract shared by the consensus engine and the fix generator."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from .costs import TokenUsage


@dataclass(frozen=True)
class ChatMessage:
    role: str  # 'system', 'user', 'assistant'
    content: str


@dataclass(frozen=True)
class ChatOptions:
    provider: str
    model: str
    temperature: float = 0.3
    max_tokens: int = 2000


@dataclass
class ChatResponse:
    """A provider's reply with usage and latency metadata."""

    content: str
    usage: TokenUsage
    latency_ms: int
    provider: str
    model: str
    finish_reason: str | None = None


class ModelCaller(Protocol):
    """Sends a conversation to one AI provider.

    Implementations raise ``errors.ProviderError`` on any provider failure.
    """

    async def chat(self, messages: list[ChatMessage], options: ChatOptions) -> ChatResponse: ...
