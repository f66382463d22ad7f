"""Shared fixtures: isolated settings, a recording job log and a scripted model."""

from __future__ import annotations

import shutil
from typing import Any

import pytest

from sandbox_orchestrator.config import Settings
from sandbox_orchestrator.llm.base import ModelAdapter
from sandbox_orchestrator.schemas import ModelResponse


requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git is not installed")


class RecordingLog:
    """Stands in for ``JobLogger``: keeps every line for assertions."""

    def __init__(self):
        self.lines: list[str] = []

    def __call__(self, message: str, level: int = 0) -> None:
        self.lines.append(message)

    def warning(self, message: str) -> None:
        self(message)

    def error(self, message: str) -> None:
        self(message)

    def contains(self, fragment: str) -> bool:
        return any(fragment in line for line in self.lines)


class ScriptedAdapter(ModelAdapter):
    """Returns queued output lists in order and records every request."""

    def __init__(self, outputs: list[list[dict[str, Any]]], usage: dict[str, Any] | None = None):
        self.outputs = list(outputs)
        self.usage = usage or {}
        self.requests: list[list[dict[str, Any]]] = []
        self.closed = False

    @property
    def provider_name(self) -> str:
        return "scripted"

    async def create_response(self, model, input_items, tools) -> ModelResponse:
        self.requests.append(list(input_items))
        output = self.outputs.pop(0) if self.outputs else [assistant_message("done")]
        return ModelResponse(id=f"resp_{len(self.requests)}", output=output, usage=self.usage)

    async def close(self) -> None:
        self.closed = True


def assistant_message(text: str) -> dict[str, Any]:
    return {
        "type": "message",
        "id": "msg_final",
        "role": "assistant",
        "content": [{"type": "output_text", "text": text}],
    }


def function_call(name: str, arguments: str, call_id: str = "call_1") -> dict[str, Any]:
    return {"type": "function_call", "id": f"fc_{call_id}", "call_id": call_id, "name": name, "arguments": arguments}


@pytest.fixture
def make_settings(tmp_path):
    def _make(**overrides: Any) -> Settings:
        values: dict[str, Any] = {
            "sandbox_workdir": tmp_path / "work",
            "openai_api_key": "test-key",
            "github_clone_token": None,
            "github_token": None,
            "github_pr_token": None,
        }
        values.update(overrides)
        return Settings(**values)
    return _make


@pytest.fixture
def settings(make_settings) -> Settings:
    return make_settings()


@pytest.fixture
def log() -> RecordingLog:
    return RecordingLog()
