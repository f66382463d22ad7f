"""LangGraph workflow for the sandbox agent loop.

Graph structure:
START → call_model ──(tool calls)──→ run_tools ─┐
            ↑                                     │
            └─────────────────────────────────────┘
        call_model ──(no tool calls)──→ END

The model decides when the loop ends: a response without tool calls is the
final summary. The graph imposes no iteration cap of its own.
"""

from __future__ import annotations

import json
import logging
import math
import re
import sys
from typing import Any, Literal, TypedDict

from langgraph.graph import StateGraph, END

from sandbox_orchestrator.agent.budget import truncate, truncate_task_description, truncate_tool_output
from sandbox_orchestrator.agent.tools import TOOL_DEFINITIONS, ToolContext, dispatch_tool
from sandbox_orchestrator.llm.base import ModelAdapter
from sandbox_orchestrator.schemas import Job, JobUsage, ToolCall


logger = logging.getLogger(__name__)

RESULT_LOG_CHARS = 2_000
PREVIEW_CHARS = 240


# =============================================================================
# State Definition
# =============================================================================

class LoopState(TypedDict):
    """State carried between graph nodes.

    Attributes:
        transcript: Every item sent to the model so far, in order
        tool_calls: Calls requested by the latest model response
        summary: Final assistant text once the model stops calling tools
    """
    transcript: list[dict[str, Any]]
    tool_calls: list[ToolCall]
    summary: str


# =============================================================================
# Response helpers
# =============================================================================

def sanitize_id(raw: Any, fallback: str = "msg_default") -> str:
    """Restrict an item id to ``[A-Za-z0-9_-]``."""
    if not isinstance(raw, str) or not raw:
        return fallback
    return re.sub(r"[^a-zA-Z0-9_-]", "_", raw) or fallback


def extract_call_id(item: dict[str, Any], index: int) -> str:
    fallback = f"call_{index}"
    raw = item.get("call_id") or item.get("id") or fallback
    if not isinstance(raw, str) or not raw.strip():
        raw = fallback
    return sanitize_id(raw, fallback)


def output_item_id(call_id: str) -> str:
    base = sanitize_id(call_id.removeprefix("fco_"), "call")
    return f"fco_{base}"


def parse_arguments(raw: Any) -> dict[str, Any]:
    """Decode function-call arguments; anything malformed becomes ``{}``."""
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, str) and raw.strip():
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            return {}
        return parsed if isinstance(parsed, dict) else {}
    return {}


def extract_output_text(message: dict[str, Any] | None) -> str | None:
    if not message or not isinstance(message.get("content"), list):
        return None
    texts = [
        part["text"].strip()
        for part in message["content"]
        if isinstance(part, dict) and part.get("type") == "output_text" and isinstance(part.get("text"), str)
    ]
    texts = [text for text in texts if text]
    return "\n".join(texts).strip() if texts else None


def _read_number(source: dict[str, Any], keys: tuple[str, ...]) -> float | None:
    for key in keys:
        value = source.get(key)
        if isinstance(value, bool):
            continue
        if isinstance(value, str):
            try:
                value = float(value)
            except ValueError:
                continue
        if isinstance(value, int | float) and math.isfinite(value):
            return value
    return None


def usage_from_response(usage: Any) -> JobUsage:
    """Map the usage block of a response onto job counters; unknown shapes count as zero."""
    if not isinstance(usage, dict):
        return JobUsage()
    prompt = _read_number(usage, ("input_tokens", "prompt_tokens", "promptTokens"))
    completion = _read_number(usage, ("output_tokens", "completion_tokens", "completionTokens"))
    total = _read_number(usage, ("total_tokens", "totalTokens"))
    if total is None and prompt is not None and completion is not None:
        total = prompt + completion
    cached = None
    for details_key in ("input_tokens_details", "prompt_tokens_details"):
        details = usage.get(details_key)
        if isinstance(details, dict):
            cached = _read_number(details, ("cached_tokens",))
            if cached is not None:
                break
    cost = _read_number(usage, ("total_cost", "cost"))
    return JobUsage(
        prompt_tokens=int(prompt or 0),
        cached_prompt_tokens=int(cached or 0),
        completion_tokens=int(completion or 0),
        total_tokens=int(total or 0),
        cost=float(cost or 0.0),
    )


def _message(role: str, text: str, item_id: str) -> dict[str, Any]:
    return {
        "type": "message",
        "id": item_id,
        "role": role,
        "content": [{"type": "input_text", "text": text}],
    }


def seed_transcript(system_prompt: str, task: str) -> list[dict[str, Any]]:
    return [
        _message("system", system_prompt, "msg_system"),
        _message("user", task, "msg_user"),
    ]


# =============================================================================
# Workflow Builder
# =============================================================================

def build_workflow(job: Job, adapter: ModelAdapter, model: str, ctx: ToolContext) -> StateGraph:
    """Build the two-node loop graph bound to one job."""
    log = ctx.log

    async def call_model(state: LoopState) -> dict[str, Any]:
        transcript = state["transcript"]
        log(f"Sending transcript to the model (items={len(transcript)}, tools={len(TOOL_DEFINITIONS)})")
        response = await adapter.create_response(model, transcript, TOOL_DEFINITIONS)
        log(f"Model response received (responseId={response.id or 'n/a'}, output_items={len(response.output)})")
        job.usage.add(usage_from_response(response.usage))

        normalized: list[dict[str, Any]] = []
        calls: list[ToolCall] = []
        for index, item in enumerate(response.output):
            if isinstance(item, dict) and item.get("type") == "function_call":
                call_id = extract_call_id(item, index)
                normalized.append({**item, "id": sanitize_id(item.get("id"), call_id), "call_id": call_id})
                calls.append(ToolCall(
                    call_id=call_id,
                    name=str(item.get("name") or ""),
                    arguments=parse_arguments(item.get("arguments")),
                ))
            elif isinstance(item, dict):
                normalized.append(item)

        assistant = next((item for item in normalized if item.get("type") == "message"), None)
        text = extract_output_text(assistant)
        details = ", ".join(f"{call.name or 'unnamed'}(callId={call.call_id})" for call in calls) or "none"
        log(
            f"Model returned {len(calls)} tool call(s) and message={assistant is not None} "
            f"(toolCalls=[{details}], textPreview=\"{truncate(text or '', PREVIEW_CHARS)}\")"
        )

        if not calls:
            summary = text if text is not None else state["summary"]
            log(f"Final model summary: \"{truncate(summary, PREVIEW_CHARS)}\"")
            return {
                "transcript": transcript + ([assistant] if assistant else []),
                "tool_calls": [],
                "summary": summary,
            }
        return {"transcript": transcript + normalized, "tool_calls": calls}

    async def run_tools(state: LoopState) -> dict[str, Any]:
        outputs: list[dict[str, Any]] = []
        for call in state["tool_calls"]:
            log(f"Running tool {call.name} (callId={call.call_id}, args={json.dumps(call.arguments, default=str)})")
            try:
                result: Any = await dispatch_tool(call, ctx)
                log(
                    f"Tool {call.name} result (callId={call.call_id}): "
                    f"{truncate(json.dumps(result, ensure_ascii=False, default=str), RESULT_LOG_CHARS)}"
                )
            except Exception as e:
                log(f"Tool {call.name} failed: {e}")
                result = {"error": str(e)}
            outputs.append({
                "type": "function_call_output",
                "id": output_item_id(call.call_id),
                "call_id": call.call_id,
                "output": truncate_tool_output(result, ctx.budget, log),
            })
        return {"transcript": state["transcript"] + outputs, "tool_calls": []}

    def after_model(state: LoopState) -> Literal["run_tools", "end"]:
        return "run_tools" if state["tool_calls"] else "end"

    workflow = StateGraph(LoopState)
    workflow.add_node("call_model", call_model)
    workflow.add_node("run_tools", run_tools)
    workflow.set_entry_point("call_model")
    workflow.add_conditional_edges(
        "call_model",
        after_model,
        {
            "run_tools": "run_tools",
            "end": END,
        },
    )
    workflow.add_edge("run_tools", "call_model")
    return workflow


# =============================================================================
# Public API
# =============================================================================

async def run_agent_loop(
    job: Job,
    adapter: ModelAdapter,
    model: str,
    ctx: ToolContext,
    system_prompt: str,
) -> str:
    """Drive the model until it answers without tool calls.

    Args:
        job: Job whose usage counters are updated after every response
        adapter: Model endpoint
        model: Model name for this job
        ctx: Tool context (workspace root, environment, budget, log)
        system_prompt: Fully rendered system message

    Returns:
        The final assistant text (may be empty)
    """
    task = truncate_task_description(job.task_description, ctx.budget, ctx.log)
    state: LoopState = {
        "transcript": seed_transcript(system_prompt, task),
        "tool_calls": [],
        "summary": "",
    }
    ctx.log("Model loop started; waiting for tool calls")
    graph = build_workflow(job, adapter, model, ctx).compile()
    logger.debug(f"Compiled agent loop for job {job.job_id} ({adapter.provider_name}/{model})")
    final = await graph.ainvoke(state, config={"recursion_limit": sys.maxsize})
    ctx.log("Model finished without further tool calls")
    return final["summary"]
