"""Tool definitions offered to the model and their dispatch table."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable

import httpx

from sandbox_orchestrator.agent.budget import ContextBudget
from sandbox_orchestrator.config import Settings
from sandbox_orchestrator.errors import ToolError
from sandbox_orchestrator.schemas import ToolCall, ToolName
from sandbox_orchestrator.tools.guard import Resolver, resolve_host_ips
from sandbox_orchestrator.tools.repo import read_file, write_file
from sandbox_orchestrator.tools.sandbox import run_shell
from sandbox_orchestrator.tools.web import http_get


# =============================================================================
# Tool schemas
# =============================================================================

TOOL_DEFINITIONS: list[dict[str, Any]] = [
    {
        "type": "function",
        "name": ToolName.RUN_SHELL.value,
        "description": "Run a command inside the sandboxed repository",
        "parameters": {
            "type": "object",
            "properties": {
                "command": {"type": "array", "items": {"type": "string"}},
                "cwd": {"type": "string", "description": "Directory relative to the repository"},
            },
            "required": ["command", "cwd"],
            "additionalProperties": False,
        },
        "strict": True,
    },
    {
        "type": "function",
        "name": ToolName.READ_FILE.value,
        "description": "Read a file from the repository",
        "parameters": {
            "type": "object",
            "properties": {"path": {"type": "string"}},
            "required": ["path"],
            "additionalProperties": False,
        },
        "strict": True,
    },
    {
        "type": "function",
        "name": ToolName.WRITE_FILE.value,
        "description": "Write a file inside the repository",
        "parameters": {
            "type": "object",
            "properties": {
                "path": {"type": "string"},
                "content": {"type": "string"},
            },
            "required": ["path", "content"],
            "additionalProperties": False,
        },
        "strict": True,
    },
    {
        "type": "function",
        "name": ToolName.HTTP_GET.value,
        "description": "Fetch a public resource over HTTP GET (internal hosts and localhost are blocked)",
        "parameters": {
            "type": "object",
            "properties": {
                "url": {"type": "string", "description": "Public http(s) URL"},
                "headers": {
                    "type": "object",
                    "additionalProperties": {"type": "string"},
                    "description": "Optional headers; Authorization is ignored",
                },
            },
            "required": ["url"],
            "additionalProperties": False,
        },
        "strict": True,
    },
]


# =============================================================================
# Dispatch
# =============================================================================

@dataclass
class ToolContext:
    """Everything a tool handler may touch for one job."""
    root: Path
    env: dict[str, str]
    settings: Settings
    budget: ContextBudget
    log: Callable[[str], None]
    http_client: httpx.AsyncClient | None = None
    resolver: Resolver = resolve_host_ips


Handler = Callable[[dict[str, Any], ToolContext], Awaitable[dict[str, Any]]]


async def _run_shell(args: dict[str, Any], ctx: ToolContext) -> dict[str, Any]:
    return await run_shell(
        args.get("command"),
        args.get("cwd"),
        root=ctx.root,
        env=ctx.env,
        settings=ctx.settings,
        log=ctx.log,
    )


async def _read_file(args: dict[str, Any], ctx: ToolContext) -> dict[str, Any]:
    return await read_file(args.get("path"), root=ctx.root, log=ctx.log)


async def _write_file(args: dict[str, Any], ctx: ToolContext) -> dict[str, Any]:
    return await write_file(args.get("path"), args.get("content"), root=ctx.root, log=ctx.log)


async def _http_get(args: dict[str, Any], ctx: ToolContext) -> dict[str, Any]:
    return await http_get(
        args.get("url"),
        args.get("headers"),
        max_response_chars=ctx.budget.http_tool_max_response_chars,
        timeout=ctx.settings.http_tool_timeout_seconds,
        log=ctx.log,
        client=ctx.http_client,
        resolver=ctx.resolver,
    )


TOOL_HANDLERS: dict[ToolName, Handler] = {
    ToolName.RUN_SHELL: _run_shell,
    ToolName.READ_FILE: _read_file,
    ToolName.WRITE_FILE: _write_file,
    ToolName.HTTP_GET: _http_get,
}

if set(TOOL_HANDLERS) != set(ToolName):
    raise RuntimeError(f"Tools without a handler: {set(ToolName) - set(TOOL_HANDLERS)}")


async def dispatch_tool(call: ToolCall, ctx: ToolContext) -> dict[str, Any]:
    """Run the handler for ``call``.

    Raises:
        ToolError: for unknown tool names and any handler failure the model can act on
    """
    try:
        name = ToolName(call.name)
    except ValueError as e:
        raise ToolError(f"Unknown tool: {call.name}") from e
    return await TOOL_HANDLERS[name](call.arguments, ctx)
