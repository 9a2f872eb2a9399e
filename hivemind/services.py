"""Wiring of the core services from settings."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .config import Settings
from .consensus import ConsensusEngine
from .db import SqlPatternStore, get_session
from .debugger import TimeTravelDebugger
from .fixes import FixRecommender
from .gateway_client import ModelGatewayClient
from .model_caller import ModelCaller
from .providers import resolve_providers
from .redis_client import get_redis_client
from .store import PatternStore
from .telemetry import DatabaseTelemetrySink, RedisTelemetryPublisher, TelemetryEmitter

logger = logging.getLogger(__name__)


@dataclass
class Services:
    store: PatternStore
    model_caller: ModelCaller
    telemetry: TelemetryEmitter
    consensus: ConsensusEngine
    debugger: TimeTravelDebugger

    async def aclose(self) -> None:
        close = getattr(self.model_caller, "aclose", None)
        if close is not None:
            await close()


def build_services(
    settings: Settings,
    *,
    store: PatternStore | None = None,
    model_caller: ModelCaller | None = None,
    telemetry: TelemetryEmitter | None = None,
) -> Services:
    """Assemble the engines; any collaborator may be passed in to replace the default."""
    if store is None:
        store = SqlPatternStore(get_session)
    if model_caller is None:
        model_caller = ModelGatewayClient(
            base_url=settings.gateway_url,
            api_key=settings.gateway_api_key,
            timeout_seconds=settings.provider_timeout,
        )
    if telemetry is None:
        telemetry = TelemetryEmitter([DatabaseTelemetrySink(get_session)])
        if settings.telemetry_publish_enabled:
            telemetry.on_record(RedisTelemetryPublisher(get_redis_client(settings.redis_url)))

    providers = resolve_providers(settings.consensus_providers)
    logger.debug("Consensus providers: %s", ", ".join(f"{p.name}/{p.model}" for p in providers))

    consensus = ConsensusEngine(
        model_caller,
        providers,
        similarity_threshold=settings.consensus_threshold,
        provider_timeout=settings.provider_timeout,
        telemetry=telemetry,
    )
    recommender = FixRecommender(
        store,
        model_caller,
        ai_provider=settings.ai_fix_provider,
        ai_model=settings.ai_fix_model,
    )
    debugger = TimeTravelDebugger(
        store,
        recommender,
        candidate_limit=settings.similar_candidate_limit,
        similarity_floor=settings.similarity_floor,
        results_limit=settings.similar_results_limit,
    )
    return Services(
        store=store,
        model_caller=model_caller,
        telemetry=telemetry,
        consensus=consensus,
        debugger=debugger,
    )
