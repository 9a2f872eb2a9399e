"""
Multi-model consensus for code generation.

Every configured provider answers the same prompt; the answers are compared
pairwise and either the agreed answer, a confidence-weighted vote, or the
lone survivor is returned.
"""

from __future__ import annotations

import asyncio
import json
import logging
import threading
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from decimal import Decimal
from enum import StrEnum
from typing import Any

from .costs import TokenUsage, total_cost
from .errors import AllProvidersFailedError, ConsensusCancelledError, InvalidThresholdError
from .model_caller import ChatMessage, ChatOptions, ModelCaller
from .providers import ProviderConfig
from .similarity import mean_pairwise_similarity
from .telemetry import ConsensusTelemetry, TelemetryEmitter

logger = logging.getLogger(__name__)

DEFAULT_SIMILARITY_THRESHOLD = 0.85
FALLBACK_PENALTY = 0.8
VOTING_PENALTY = 0.9


class Decision(StrEnum):
    CONSENSUS = "consensus"
    VOTING = "voting"
    FALLBACK = "fallback"


@dataclass
class ModelResponse:
    """One provider's answer to a consensus prompt."""

    provider: str
    model: str
    content: str
    confidence: float
    latency_ms: int
    usage: TokenUsage

    @property
    def tokens_used(self) -> int:
        return self.usage.total_tokens


@dataclass
class ConsensusResult:
    final_response: str
    confidence: float
    agreement: float
    decision: Decision
    explanation: str
    model_responses: list[ModelResponse] = field(default_factory=list)
    prompt: str = ""
    language: str = ""
    total_latency_ms: int = 0
    failures: dict[str, str] = field(default_factory=dict)

    @property
    def total_tokens(self) -> int:
        return sum(r.tokens_used for r in self.model_responses)

    @property
    def total_cost(self) -> Decimal:
        return total_cost(r.usage for r in self.model_responses)

    def to_dict(self) -> dict[str, Any]:
        return {
            "final_response": self.final_response,
            "confidence": self.confidence,
            "agreement": self.agreement,
            "decision": self.decision.value,
            "explanation": self.explanation,
            "model_responses": [
                {
                    "provider": r.provider,
                    "model": r.model,
                    "confidence": r.confidence,
                    "latency_ms": r.latency_ms,
                    "tokens_used": r.tokens_used,
                }
                for r in self.model_responses
            ],
            "total_latency_ms": self.total_latency_ms,
            "failures": self.failures,
        }


def select_best_response(responses: Sequence[ModelResponse]) -> ModelResponse:
    """70% confidence, 30% speed relative to the slowest response; first wins ties."""
    max_latency = max(r.latency_ms for r in responses)

    def score(response: ModelResponse) -> float:
        speed = 1 - response.latency_ms / max_latency if max_latency > 0 else 0.0
        return response.confidence * 0.7 + speed * 0.3

    best = responses[0]
    for current in responses[1:]:
        if score(current) > score(best):
            best = current
    return best


def conduct_voting(responses: Sequence[ModelResponse]) -> ModelResponse:
    """Confidence-weighted vote; currently the single highest-confidence answer."""
    best = responses[0]
    for current in responses[1:]:
        if current.confidence > best.confidence:
            best = current
    return best


def calculate_consensus(
    responses: Sequence[ModelResponse], threshold: float = DEFAULT_SIMILARITY_THRESHOLD
) -> ConsensusResult:
    if not responses:
        raise ValueError("calculate_consensus needs at least one response")

    if len(responses) == 1:
        only = responses[0]
        return ConsensusResult(
            final_response=only.content,
            confidence=only.confidence * FALLBACK_PENALTY,
            agreement=0.0,
            decision=Decision.FALLBACK,
            explanation="Only one model responded",
            model_responses=list(responses),
        )

    agreement = mean_pairwise_similarity([r.content for r in responses])

    if agreement >= threshold:
        best = select_best_response(responses)
        return ConsensusResult(
            final_response=best.content,
            confidence=best.confidence,
            agreement=agreement,
            decision=Decision.CONSENSUS,
            explanation=f"Models agree with {agreement * 100:.1f}% similarity",
            model_responses=list(responses),
        )

    voted = conduct_voting(responses)
    return ConsensusResult(
        final_response=voted.content,
        confidence=voted.confidence * VOTING_PENALTY,
        agreement=agreement,
        decision=Decision.VOTING,
        explanation=(
            f"Models disagreed ({agreement * 100:.1f}% similarity), "
            "used confidence-weighted voting"
        ),
        model_responses=list(responses),
    )


class ConsensusEngine:
    """Fans a prompt out to every provider and resolves a single answer."""

    def __init__(
        self,
        model_caller: ModelCaller,
        providers: Sequence[ProviderConfig],
        *,
        similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
        provider_timeout: float | None = None,
        telemetry: TelemetryEmitter | None = None,
        temperature: float = 0.3,
        max_tokens: int = 2000,
    ) -> None:
        self._model_caller = model_caller
        self._providers = list(providers)
        self._provider_timeout = provider_timeout
        self._telemetry = telemetry
        self._temperature = temperature
        self._max_tokens = max_tokens
        self._threshold_lock = threading.Lock()
        self._similarity_threshold = DEFAULT_SIMILARITY_THRESHOLD
        self.set_similarity_threshold(similarity_threshold)

    @property
    def similarity_threshold(self) -> float:
        with self._threshold_lock:
            return self._similarity_threshold

    def set_similarity_threshold(self, threshold: float) -> None:
        if not 0 <= threshold <= 1:
            raise InvalidThresholdError("Threshold must be between 0 and 1")
        with self._threshold_lock:
            self._similarity_threshold = threshold
        logger.info("Similarity threshold updated to %.2f", threshold)

    async def generate_with_consensus(
        self,
        prompt: str,
        language: str,
        context: dict[str, Any] | None = None,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> ConsensusResult:
        logger.info("Starting multi-model consensus (%s, %d providers)", language, len(self._providers))
        started = time.perf_counter()
        messages = build_messages(prompt, language, context)

        responses, failures = await self._invoke_all(messages, cancel_event)
        if not responses:
            logger.error("Consensus failed: every provider failed %s", failures)
            raise AllProvidersFailedError(failures)

        result = calculate_consensus(responses, self.similarity_threshold)
        result.prompt = prompt
        result.language = language
        result.failures = failures
        result.total_latency_ms = int((time.perf_counter() - started) * 1000)

        await self._track_statistics(result, context)

        logger.info(
            "Consensus resolved: decision=%s agreement=%.2f confidence=%.2f",
            result.decision.value,
            result.agreement,
            result.confidence,
        )
        return result

    async def _invoke_all(
        self, messages: list[ChatMessage], cancel_event: asyncio.Event | None
    ) -> tuple[list[ModelResponse], dict[str, str]]:
        tasks = [
            asyncio.create_task(self._call_provider(provider, messages), name=f"consensus-{provider.name}")
            for provider in self._providers
        ]
        try:
            await _join_all(tasks, cancel_event)
        finally:
            pending = [task for task in tasks if not task.done()]
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

        responses: list[ModelResponse] = []
        failures: dict[str, str] = {}
        for provider, task in zip(self._providers, tasks, strict=True):
            if task.cancelled():
                failures[provider.name] = "cancelled"
                continue
            exc = task.exception()
            if exc is not None:
                logger.warning("Provider %s failed: %s", provider.name, exc)
                failures[provider.name] = str(exc) or type(exc).__name__
                continue
            responses.append(task.result())
        return responses, failures

    async def _call_provider(
        self, provider: ProviderConfig, messages: list[ChatMessage]
    ) -> ModelResponse:
        options = ChatOptions(
            provider=provider.name,
            model=provider.model,
            temperature=self._temperature,
            max_tokens=self._max_tokens,
        )
        call = self._model_caller.chat(messages, options)
        if self._provider_timeout:
            response = await asyncio.wait_for(call, timeout=self._provider_timeout)
        else:
            response = await call

        return ModelResponse(
            provider=provider.name,
            model=response.model,
            content=response.content,
            confidence=provider.response_confidence(response.finish_reason),
            latency_ms=response.latency_ms,
            usage=response.usage,
        )

    async def _track_statistics(self, result: ConsensusResult, context: dict[str, Any] | None) -> None:
        if self._telemetry is None:
            return
        try:
            latencies: dict[str, int | None] = {p.name: None for p in self._providers}
            for response in result.model_responses:
                latencies[response.provider] = response.latency_ms

            context = context or {}
            record = ConsensusTelemetry(
                prompt=result.prompt,
                language=result.language,
                decision=result.decision.value,
                agreement=result.agreement,
                confidence=result.confidence,
                provider_latencies=latencies,
                total_latency_ms=result.total_latency_ms,
                tokens_used=result.total_tokens,
                total_cost=result.total_cost,
                user_id=context.get("user_id"),
                context=json.loads(json.dumps(context, default=str)) if context else None,
                tags=list(context.get("tags") or []),
            )
            await self._telemetry.emit(record)
        except Exception:
            logger.exception("Failed to track consensus statistics")


def build_messages(prompt: str, language: str, context: dict[str, Any] | None) -> list[ChatMessage]:
    system = (
        f"You are an expert {language} developer. "
        "Generate clean, production-ready code with best practices."
    )
    if context:
        system += f"\n\nContext: {json.dumps(context, default=str)}"
    return [ChatMessage(role="system", content=system), ChatMessage(role="user", content=prompt)]


async def _join_all(tasks: list[asyncio.Task], cancel_event: asyncio.Event | None) -> None:
    """Wait for every task to settle, or until ``cancel_event`` is set."""
    if not tasks:
        return
    if cancel_event is None:
        await asyncio.wait(tasks)
        return

    waiter = asyncio.create_task(cancel_event.wait())
    try:
        pending: set[asyncio.Task] = set(tasks)
        while pending:
            done, pending = await asyncio.wait(pending | {waiter}, return_when=asyncio.FIRST_COMPLETED)
            if waiter in done:
                raise ConsensusCancelledError("Consensus request cancelled by caller")
            pending.discard(waiter)
    finally:
        waiter.cancel()
