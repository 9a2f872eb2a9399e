"""HTTP client for the model gateway that fronts the AI providers."""

from __future__ import annotations

import logging
import time
from typing import Any

import httpx

from .costs import TokenUsage
from .errors import ProviderError
from .model_caller import ChatMessage, ChatOptions, ChatResponse

logger = logging.getLogger(__name__)


class ModelGatewayClient:
    """Async client for an HTTP model gateway fronting the AI providers.

    The gateway accepts ``POST /v1/chat`` with the provider, model, messages
    and sampling options, and answers with the generated text and token usage.
    """

    def __init__(
        self,
        *,
        base_url: str,
        api_key: str | None = None,
        timeout_seconds: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=httpx.Timeout(timeout_seconds),
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def chat(self, messages: list[ChatMessage], options: ChatOptions) -> ChatResponse:
        body: dict[str, Any] = {
            "provider": options.provider,
            "model": options.model,
            "messages": [{"role": m.role, "content": m.content} for m in messages],
            "temperature": options.temperature,
            "max_tokens": options.max_tokens,
        }

        started = time.perf_counter()
        try:
            resp = await self._client.post("/v1/chat", json=body)
            resp.raise_for_status()
            payload = resp.json()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            raise ProviderError(options.provider, f"gateway error {status}: {e.response.text[:200]}") from e
        except httpx.RequestError as e:
            raise ProviderError(options.provider, f"request failed: {e}") from e
        except ValueError as e:
            raise ProviderError(options.provider, f"invalid JSON response: {e}") from e
        latency_ms = int((time.perf_counter() - started) * 1000)

        if not isinstance(payload, dict) or not isinstance(payload.get("content"), str):
            raise ProviderError(options.provider, f"unexpected response: {str(payload)[:200]}")

        content = payload["content"]
        if not content.strip():
            logger.warning("Gateway returned empty output for %s/%s", options.provider, options.model)

        usage = payload.get("usage") if isinstance(payload.get("usage"), dict) else {}
        model = payload.get("model") or options.model
        try:
            input_tokens = int(usage.get("input_tokens") or 0)
            output_tokens = int(usage.get("output_tokens") or 0)
        except (TypeError, ValueError) as e:
            raise ProviderError(options.provider, f"invalid usage in response: {usage}") from e

        return ChatResponse(
            content=content,
            usage=TokenUsage(input_tokens=input_tokens, output_tokens=output_tokens, model=model),
            latency_ms=latency_ms,
            provider=options.provider,
            model=model,
            finish_reason=payload.get("finish_reason"),
        )
