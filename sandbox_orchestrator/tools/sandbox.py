"""Sandboxed command execution for the run_shell tool.

Commands run inside the workspace repo:
- Argument vectors only, never a shell string
- stdin wired to /dev/null
- Independent per-stream byte caps on stdout/stderr
- A timeout that kills the whole process group
"""

from __future__ import annotations

import asyncio
import os
import signal
from pathlib import Path
from typing import Any, Callable

from sandbox_orchestrator.agent.budget import truncate
from sandbox_orchestrator.config import Settings
from sandbox_orchestrator.errors import ToolError
from sandbox_orchestrator.tools.guard import resolve_path


READ_CHUNK_BYTES = 64 * 1024
# Output still in flight after the process exits (or is killed) gets this long to drain.
DRAIN_GRACE_SECONDS = 10.0
RECURSIVE_GREP_GUIDANCE = "grep -R detected. Use rg <pattern> <path> for recursive searches in the sandbox."


class _StreamCapture:
    """Collects one output stream up to a byte cap, discarding the overflow."""

    def __init__(self, name: str, limit: int, log: Callable[[str], None]):
        self.name = name
        self.limit = limit
        self.log = log
        self.buffer = bytearray()
        self.truncated = False

    async def drain(self, stream: asyncio.StreamReader) -> None:
        while True:
            chunk = await stream.read(READ_CHUNK_BYTES)
            if not chunk:
                return
            self.log(f"run_shell {self.name}: {truncate(chunk.decode('utf-8', errors='replace'), 500)}")
            remaining = self.limit - len(self.buffer)
            if remaining <= 0:
                self.truncated = True
                continue
            if len(chunk) > remaining:
                self.truncated = True
                chunk = chunk[:remaining]
            self.buffer.extend(chunk)

    def text(self) -> str:
        return self.buffer.decode("utf-8", errors="replace")


def _normalize_command(command: Any) -> list[str]:
    if not isinstance(command, list) or not command:
        raise ToolError("command is required for run_shell and must be a non-empty array of strings")
    parts = [str(part).strip() for part in command]
    if not parts[0]:
        raise ToolError("command[0] must name an executable")
    return parts


def rewrite_recursive_grep(parts: list[str], log: Callable[[str], None]) -> list[str]:
    """Turn ``grep -R <args...>`` into ``rg <args...>``; bare ``grep -R`` is refused."""
    if len(parts) < 2 or parts[0] != "grep" or parts[1] != "-R":
        return parts
    if len(parts) == 2:
        log(RECURSIVE_GREP_GUIDANCE)
        raise ToolError(RECURSIVE_GREP_GUIDANCE)
    rewritten = ["rg", *parts[2:]]
    log(
        f"grep -R detected; using rg for the recursive search: "
        f"{' '.join(parts)} -> {' '.join(rewritten)}"
    )
    return rewritten


def command_timeout(parts: list[str], settings: Settings, log: Callable[[str], None]) -> float:
    timeout = settings.run_shell_timeout_seconds
    if os.path.basename(parts[0]) == "mvn" and settings.long_build_timeout_seconds > timeout:
        log(f"mvn detected; raising timeout to {int(settings.long_build_timeout_seconds)} seconds")
        return settings.long_build_timeout_seconds
    return timeout


def _kill_group(process: asyncio.subprocess.Process) -> None:
    try:
        os.killpg(process.pid, signal.SIGKILL)
    except (ProcessLookupError, PermissionError):
        try:
            process.kill()
        except ProcessLookupError:
            pass


async def run_shell(
    command: Any,
    cwd: str | None,
    *,
    root: Path,
    env: dict[str, str],
    settings: Settings,
    log: Callable[[str], None],
) -> dict[str, Any]:
    """Run ``command`` inside the workspace and report what happened.

    Args:
        command: Argument vector, executable first
        cwd: Working directory, relative to the repo root (defaults to the root)
        root: Workspace repo root every path is confined to
        env: Job environment for the child process
        settings: Timeouts and buffer caps
        log: Job diagnostic log

    Returns:
        dict with stdout, stderr, exit_code, signal, timed_out and the
        per-stream truncation flags
    """
    parts = _normalize_command(command)
    workdir = resolve_path(root, cwd, log) if cwd else root.resolve()
    if not workdir.is_dir():
        raise ToolError(f"Working directory does not exist: {cwd}")

    parts = rewrite_recursive_grep(parts, log)
    timeout = command_timeout(parts, settings, log)
    max_bytes = settings.run_shell_max_buffer_bytes
    log(f"run_shell: {' '.join(parts)} (cwd={workdir}, timeout={timeout}s, maxBufferBytes={max_bytes})")

    try:
        process = await asyncio.create_subprocess_exec(
            *parts,
            cwd=str(workdir),
            env=env,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            start_new_session=True,
        )
    except FileNotFoundError as e:
        raise ToolError(f"Command not found: {parts[0]}") from e
    except OSError as e:
        raise ToolError(f"Failed to start {parts[0]}: {e}") from e

    stdout = _StreamCapture("stdout", max_bytes, log)
    stderr = _StreamCapture("stderr", max_bytes, log)
    readers = [
        asyncio.create_task(stdout.drain(process.stdout)),
        asyncio.create_task(stderr.drain(process.stderr)),
    ]

    timed_out = False
    try:
        await asyncio.wait_for(process.wait(), timeout=timeout)
    except asyncio.TimeoutError:
        timed_out = True
        log(f"run_shell hit the {timeout}s timeout; killing the process")
        _kill_group(process)
        await process.wait()

    _, pending = await asyncio.wait(readers, timeout=DRAIN_GRACE_SECONDS)
    for task in pending:
        task.cancel()

    if stdout.truncated or stderr.truncated:
        log("run_shell output truncated to respect the buffer limit")

    returncode = process.returncode
    exit_code: int | None = returncode
    signal_name: str | None = None
    if returncode is not None and returncode < 0:
        exit_code = None
        try:
            signal_name = signal.Signals(-returncode).name
        except ValueError:
            signal_name = str(-returncode)

    log(f"run_shell finished (code={exit_code}, signal={signal_name}, timed_out={timed_out})")
    return {
        "stdout": stdout.text(),
        "stderr": stderr.text(),
        "exit_code": exit_code,
        "signal": signal_name,
        "timed_out": timed_out,
        "stdout_truncated": stdout.truncated,
        "stderr_truncated": stderr.truncated,
    }
