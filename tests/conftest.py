"""Shared test fixtures and configuration for pytest."""

import asyncio
from dataclasses import dataclass

import pytest

from hivemind.costs import TokenUsage
from hivemind.debugger import TimeTravelDebugger
from hivemind.errors import ProviderError
from hivemind.fixes import FixRecommender
from hivemind.model_caller import ChatMessage, ChatOptions, ChatResponse
from hivemind.store import InMemoryPatternStore


@dataclass
class ScriptedReply:
    content: str = ""
    error: str | None = None
    delay: float = 0.0
    latency_ms: int = 100
    finish_reason: str | None = "stop"
    input_tokens: int = 100
    output_tokens: int = 50


class FakeModelCaller:
    """Model caller that answers from a per-provider script."""

    def __init__(self) -> None:
        self.replies: dict[str, ScriptedReply] = {}
        self.calls: list[tuple[list[ChatMessage], ChatOptions]] = []
        self.cancelled: list[str] = []

    def script(self, provider: str, content: str = "", **kwargs) -> None:
        self.replies[provider] = ScriptedReply(content=content, **kwargs)

    async def chat(self, messages: list[ChatMessage], options: ChatOptions) -> ChatResponse:
        self.calls.append((messages, options))
        reply = self.replies.get(options.provider)
        if reply is None:
            raise ProviderError(options.provider, "no scripted reply")

        if reply.delay:
            try:
                await asyncio.sleep(reply.delay)
            except asyncio.CancelledError:
                self.cancelled.append(options.provider)
                raise

        if reply.error is not None:
            raise ProviderError(options.provider, reply.error)

        return ChatResponse(
            content=reply.content,
            usage=TokenUsage(
                input_tokens=reply.input_tokens,
                output_tokens=reply.output_tokens,
                model=options.model,
            ),
            latency_ms=reply.latency_ms,
            provider=options.provider,
            model=options.model,
            finish_reason=reply.finish_reason,
        )


@pytest.fixture
def store() -> InMemoryPatternStore:
    return InMemoryPatternStore()


@pytest.fixture
def fake_caller() -> FakeModelCaller:
    return FakeModelCaller()


@pytest.fixture
def recommender(store: InMemoryPatternStore, fake_caller: FakeModelCaller) -> FixRecommender:
    return FixRecommender(store, fake_caller)


@pytest.fixture
def debugger(store: InMemoryPatternStore, recommender: FixRecommender) -> TimeTravelDebugger:
    return TimeTravelDebugger(store, recommender)
