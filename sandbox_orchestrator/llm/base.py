"""Abstract base class for model adapters."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from sandbox_orchestrator.schemas import ModelResponse


class ModelAdapter(ABC):
    """Interface of a Responses-style model endpoint.

    One call takes the whole transcript plus the tool definitions and returns
    the output items (assistant messages and function calls) with usage.
    """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider name (e.g., 'openai')."""
        ...

    @abstractmethod
    async def create_response(
        self,
        model: str,
        input_items: list[dict[str, Any]],
        tools: list[dict[str, Any]],
    ) -> ModelResponse:
        """Send one round-trip to the model.

        Args:
            model: Model name
            input_items: Transcript items (messages, function calls, outputs)
            tools: Function tool definitions

        Returns:
            ModelResponse with output items and raw usage counters
        """
        ...

    async def close(self) -> None:
        """Release network resources held by the adapter."""
        return None

    def _build_request(
        self,
        model: str,
        input_items: list[dict[str, Any]],
        tools: list[dict[str, Any]],
    ) -> dict[str, Any]:
        """Build the API request payload."""
        payload: dict[str, Any] = {
            "model": model,
            "input": input_items,
        }
        if tools:
            payload["tools"] = tools
        return payload
