"""OpenAI Responses API adapter.

Talks to ``POST {base_url}/responses`` with the transcript as ``input`` and
the sandbox tools as function tools. The whole transcript is resent each
round, so no server-side conversation state is used.
"""

from __future__ import annotations

import logging
import time
from typing import Any

import httpx

from sandbox_orchestrator.errors import ModelConfigurationError, SandboxError
from sandbox_orchestrator.llm.base import ModelAdapter
from sandbox_orchestrator.schemas import ModelResponse


logger = logging.getLogger(__name__)


class OpenAIResponsesAdapter(ModelAdapter):
    """OpenAI Responses API adapter over httpx."""

    def __init__(
        self,
        api_key: str | None,
        base_url: str = "https://api.openai.com/v1",
        timeout: float = 600.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        if not api_key:
            raise ModelConfigurationError("OPENAI_API_KEY is not configured for the sandbox orchestrator")
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            },
            timeout=timeout,
            transport=transport,
        )

    @property
    def provider_name(self) -> str:
        return "openai"

    async def create_response(
        self,
        model: str,
        input_items: list[dict[str, Any]],
        tools: list[dict[str, Any]],
    ) -> ModelResponse:
        """Send one Responses API request and return its output items."""
        payload = self._build_request(model=model, input_items=input_items, tools=tools)
        start_time = time.perf_counter()

        try:
            response = await self._client.post("/responses", json=payload)
        except httpx.HTTPError as e:
            raise SandboxError(f"Model request failed: {e}") from e

        latency_ms = int((time.perf_counter() - start_time) * 1000)
        if response.status_code >= 400:
            detail = response.text[:1000] or response.reason_phrase
            raise SandboxError(f"Model request failed with status {response.status_code}: {detail}")

        data = response.json()
        logger.debug(f"Responses API call for {model} took {latency_ms}ms")
        return ModelResponse(
            id=data.get("id"),
            output=data.get("output") or [],
            usage=data.get("usage") or {},
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()
