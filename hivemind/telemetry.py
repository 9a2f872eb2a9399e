"""
Consensus telemetry records and the sinks they are delivered to.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from redis.asyncio import Redis

from .db import SessionFactory, add_consensus_statistic

logger = logging.getLogger(__name__)

PROMPT_LIMIT = 1000


@dataclass
class ConsensusTelemetry:
    """What gets recorded about one consensus request."""

    prompt: str
    language: str
    decision: str
    agreement: float
    confidence: float
    provider_latencies: dict[str, int | None]
    total_latency_ms: int
    tokens_used: int
    total_cost: Decimal = Decimal("0")
    user_id: str | None = None
    context: dict[str, Any] | None = None
    tags: list[str] = field(default_factory=list)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self) -> None:
        self.prompt = self.prompt[:PROMPT_LIMIT]

    def responded(self, provider: str) -> bool:
        return self.provider_latencies.get(provider) is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "prompt": self.prompt,
            "language": self.language,
            "decision": self.decision,
            "agreement": self.agreement,
            "confidence": self.confidence,
            "provider_latencies": self.provider_latencies,
            "total_latency_ms": self.total_latency_ms,
            "tokens_used": self.tokens_used,
            "total_cost": str(self.total_cost),
            "user_id": self.user_id,
            "tags": self.tags,
            "timestamp": self.timestamp.isoformat(),
        }


TelemetryHandler = Callable[[ConsensusTelemetry], Awaitable[None] | None]


class TelemetryEmitter:
    """Delivers telemetry to registered handlers; handler failures never propagate."""

    def __init__(self, handlers: Iterable[TelemetryHandler] = ()) -> None:
        self._handlers: list[TelemetryHandler] = list(handlers)

    def on_record(self, handler: TelemetryHandler) -> None:
        self._handlers.append(handler)

    async def emit(self, record: ConsensusTelemetry) -> None:
        for handler in self._handlers:
            try:
                result = handler(record)
                if hasattr(result, "__await__"):
                    await result
            except Exception:
                logger.exception("Telemetry handler %r failed", handler)


class DatabaseTelemetrySink:
    """Persists telemetry rows to the consensus_statistics table."""

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session = session_factory

    async def __call__(self, record: ConsensusTelemetry) -> None:
        async with self._session() as session:
            await add_consensus_statistic(
                session,
                prompt=record.prompt,
                language=record.language,
                decision=record.decision,
                agreement=record.agreement,
                final_confidence=record.confidence,
                provider_latencies=record.provider_latencies,
                total_latency=record.total_latency_ms,
                tokens_used=record.tokens_used,
                total_cost=record.total_cost,
                user_id=record.user_id,
                context=record.context,
                tags=record.tags,
                created_at=record.timestamp,
            )


class RedisTelemetryPublisher:
    """Publishes telemetry to Redis Pub/Sub for live dashboards."""

    def __init__(self, redis: Redis) -> None:
        self._redis = redis

    async def __call__(self, record: ConsensusTelemetry) -> None:
        channel = f"channel:consensus:{record.language}"
        await self._redis.publish(channel, json.dumps(record.to_dict()))


def summarize_statistics(rows: list[dict[str, Any]]) -> dict[str, Any]:
    """Fold per-decision aggregates into rates and overall averages."""
    counts = {"consensus": 0, "voting": 0, "fallback": 0}
    for row in rows:
        counts[row["decision"]] = counts.get(row["decision"], 0) + row["count"]
    total = sum(counts.values())

    def weighted(key: str) -> float:
        if total == 0:
            return 0.0
        return sum(row[key] * row["count"] for row in rows) / total

    return {
        "total_requests": total,
        "consensus_rate": counts["consensus"] / total if total else 0.0,
        "voting_rate": counts["voting"] / total if total else 0.0,
        "fallback_rate": counts["fallback"] / total if total else 0.0,
        "avg_agreement": weighted("avg_agreement"),
        "avg_confidence": weighted("avg_confidence"),
        "avg_latency": weighted("avg_latency"),
        "avg_tokens": weighted("avg_tokens"),
        "breakdown": counts,
    }
