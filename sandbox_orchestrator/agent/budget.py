"""Context budget policy.

Bounds how much text flows into the model context: the task description,
every string inside a tool result, the serialized tool result as a whole,
and HTTP response bodies. The economy profile uses tighter caps, never
looser than the standard ones.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Callable

from sandbox_orchestrator.config import Settings
from sandbox_orchestrator.schemas import SandboxProfile


ECONOMY_DEFAULTS = {
    "task_description_max_chars": 6_000,
    "tool_output_string_limit": 6_000,
    "tool_output_serialized_limit": 15_000,
    "http_tool_max_response_chars": 8_000,
}


@dataclass(frozen=True)
class ContextBudget:
    """The four character caps in force for one job."""
    profile: SandboxProfile
    task_description_max_chars: int
    tool_output_string_limit: int
    tool_output_serialized_limit: int
    http_tool_max_response_chars: int

    @classmethod
    def for_profile(cls, settings: Settings, profile: SandboxProfile) -> "ContextBudget":
        caps: dict[str, int] = {}
        for field, economy_default in ECONOMY_DEFAULTS.items():
            standard = getattr(settings, field)
            if profile is SandboxProfile.ECONOMY:
                override = getattr(settings, f"economy_{field}")
                caps[field] = min(standard, override or economy_default)
            else:
                caps[field] = standard
        return cls(profile=profile, **caps)


def truncate(value: str, cap: int) -> str:
    """Cut ``value`` to at most ``cap`` characters, noting how much was dropped.

    The kept prefix is followed by ``... [truncated N chars]`` where N is the
    exact number of omitted characters. When the cap cannot even hold the
    notice, the notice itself is clipped to the cap.
    """
    if len(value) <= cap:
        return value
    # the notice is sized for the widest possible N so the total never exceeds cap
    notice_len = len("... [truncated  chars]") + len(str(len(value)))
    keep = max(cap - notice_len, 0)
    notice = f"... [truncated {len(value) - keep} chars]"
    return (value[:keep] + notice)[:cap]


def _truncate_leaves(value: Any, cap: int, hits: list[int]) -> Any:
    if isinstance(value, str):
        if len(value) > cap:
            hits.append(len(value))
            return truncate(value, cap)
        return value
    if isinstance(value, list | tuple):
        return [_truncate_leaves(item, cap, hits) for item in value]
    if isinstance(value, dict):
        return {key: _truncate_leaves(item, cap, hits) for key, item in value.items()}
    return value


def truncate_tool_output(
    value: Any,
    budget: ContextBudget,
    log: Callable[[str], None] | None = None,
) -> str:
    """Serialize a tool result for the model within the budget."""
    hits: list[int] = []
    shrunk = _truncate_leaves(value, budget.tool_output_string_limit, hits)
    if hits and log:
        log(
            f"Truncated {len(hits)} tool output string(s) "
            f"(longest {max(hits)} chars, limit {budget.tool_output_string_limit})"
        )

    serialized = json.dumps(shrunk, ensure_ascii=False, default=str)
    if len(serialized) > budget.tool_output_serialized_limit:
        if log:
            log(
                f"Truncated serialized tool output from {len(serialized)} chars "
                f"(limit {budget.tool_output_serialized_limit})"
            )
        serialized = truncate(serialized, budget.tool_output_serialized_limit)
    return serialized


def truncate_task_description(
    task: str,
    budget: ContextBudget,
    log: Callable[[str], None] | None = None,
) -> str:
    if len(task) > budget.task_description_max_chars:
        if log:
            log(
                f"Task description truncated from {len(task)} chars "
                f"(limit {budget.task_description_max_chars}, profile {budget.profile.value})"
            )
        return truncate(task, budget.task_description_max_chars)
    return task
