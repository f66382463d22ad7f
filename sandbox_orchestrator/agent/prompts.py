"""Prompt templates for the sandbox agent.

The system prompt tells the model where it runs, how to test, and which
optional aids (problem files, decompiler, public web access) it has.
"""

from __future__ import annotations

from pathlib import Path

from sandbox_orchestrator.schemas import SandboxProfile

# =============================================================================
# System Prompt
# =============================================================================

SYSTEM_PROMPT = """You are operating in an isolated sandbox at {sandbox_root}. \
Use the tools to read and change files and to run commands. \
Suggested test command: {test_command}. \
Always work only inside the repository directory. \
Prefer the rg command for recursive searches instead of grep -R, which is slower.\
{economy_instruction}{problem_files_instruction}{decompiler_instruction}{internet_instruction}"""

ECONOMY_INSTRUCTION = (
    "\nEconomy mode is active: avoid long reads, prefer short commands, keep answers "
    "objective and avoid unnecessary re-runs."
)

PROBLEM_FILES_INSTRUCTION = (
    "\nAdditional files sent by the user (including documents or images from the request) "
    "are available in {directory}{file_list}. Take them into account during the "
    "investigation before suggesting changes."
)

DECOMPILER_INSTRUCTION = (
    "\nThe `cfr` utility is installed to decompile Java .class files: run "
    "`cfr <file.class>` to get a readable version of the code."
)

INTERNET_INSTRUCTION = (
    "\nIf you need to consult documentation, articles or any other public material on the "
    "internet, use the `http_get` tool (GET requests only, without authentication or "
    "sensitive headers)."
)


def describe_problem_files(files: list[tuple[str, str | None]], directory: str) -> str:
    """One prompt paragraph listing the saved problem files as (name, content type)."""
    if not files:
        return ""
    names = [f"{name} [{content_type}]" if content_type else name for name, content_type in files]
    file_list = f" (files: {', '.join(names)})" if names else ""
    return PROBLEM_FILES_INSTRUCTION.format(directory=directory, file_list=file_list)


def format_system_prompt(
    sandbox_root: Path,
    test_command: str | None,
    profile: SandboxProfile,
    problem_files: list[tuple[str, str | None]],
    problem_files_dir: str,
) -> str:
    return SYSTEM_PROMPT.format(
        sandbox_root=sandbox_root,
        test_command=test_command or "n/a",
        economy_instruction=ECONOMY_INSTRUCTION if profile is SandboxProfile.ECONOMY else "",
        problem_files_instruction=describe_problem_files(problem_files, problem_files_dir),
        decompiler_instruction=DECOMPILER_INSTRUCTION,
        internet_instruction=INTERNET_INSTRUCTION,
    )
