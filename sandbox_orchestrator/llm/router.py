"""Model selection per job.

Strategy:
- An explicit model on the job wins
- ECONOMY jobs use the economy model
- Everything else uses the standard model
"""

from __future__ import annotations

import logging

from sandbox_orchestrator.config import Settings, get_settings, resolve_api_key
from sandbox_orchestrator.llm.base import ModelAdapter
from sandbox_orchestrator.llm.openai_responses import OpenAIResponsesAdapter
from sandbox_orchestrator.schemas import SandboxProfile


logger = logging.getLogger(__name__)


class ModelRouter:
    """Resolves the model for a job and hands out the shared adapter."""

    def __init__(self, settings: Settings | None = None, adapter: ModelAdapter | None = None):
        self._settings = settings or get_settings()
        self._adapter = adapter

    def resolve_model(self, profile: SandboxProfile, requested: str | None = None) -> str:
        candidate = (requested or "").strip()
        if candidate:
            return candidate
        if profile is SandboxProfile.ECONOMY and self._settings.cifix_model_economy:
            return self._settings.cifix_model_economy
        return self._settings.cifix_model

    def get_adapter(self) -> ModelAdapter:
        """Get or create the adapter.

        Raises:
            ModelConfigurationError: when no API key can be resolved
        """
        if self._adapter is None:
            self._adapter = OpenAIResponsesAdapter(
                api_key=resolve_api_key(self._settings),
                base_url=self._settings.openai_base_url,
                timeout=self._settings.openai_timeout_seconds,
            )
            logger.info(f"Model adapter ready ({self._adapter.provider_name}, {self._settings.openai_base_url})")
        return self._adapter

    async def close(self) -> None:
        if self._adapter is not None:
            await self._adapter.close()


# Singleton instance
_router: ModelRouter | None = None


def get_router() -> ModelRouter:
    """Get the global model router instance."""
    global _router
    if _router is None:
        _router = ModelRouter()
    return _router
