"""File access tools confined to the workspace repo.

- read_file: Read a UTF-8 text file
- write_file: Create or overwrite a file, creating parent directories
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Callable

from sandbox_orchestrator.errors import ToolError
from sandbox_orchestrator.tools.guard import relative_to_root, resolve_path


async def read_file(
    path: Any,
    *,
    root: Path,
    log: Callable[[str], None] | None = None,
) -> dict[str, Any]:
    """Read a file inside the repo.

    Returns:
        dict with the repo-relative ``path`` and the file ``content``
    """
    if not isinstance(path, str):
        raise ToolError("path is required for read_file")
    full_path = resolve_path(root, path, log)

    if not full_path.exists():
        raise ToolError(f"File not found: {relative_to_root(root, full_path)}")
    if not full_path.is_file():
        raise ToolError(f"Path is not a file: {relative_to_root(root, full_path)}")

    try:
        content = full_path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise ToolError(f"File is not valid UTF-8 text: {relative_to_root(root, full_path)}") from e
    except OSError as e:
        raise ToolError(f"Failed to read {relative_to_root(root, full_path)}: {e}") from e

    return {"path": relative_to_root(root, full_path), "content": content}


async def write_file(
    path: Any,
    content: Any,
    *,
    root: Path,
    log: Callable[[str], None] | None = None,
) -> dict[str, Any]:
    """Write ``content`` to a file inside the repo, creating parents as needed."""
    if not isinstance(path, str):
        raise ToolError("path is required for write_file")
    text = content if isinstance(content, str) else ""
    full_path = resolve_path(root, path, log)
    relative = relative_to_root(root, full_path)

    if full_path.is_dir():
        raise ToolError(f"Path is a directory: {relative}")
    try:
        full_path.parent.mkdir(parents=True, exist_ok=True)
        full_path.write_text(text, encoding="utf-8")
    except OSError as e:
        raise ToolError(f"Failed to write {relative}: {e}") from e

    if log:
        log(f"write_file: {relative} ({len(text)} chars)")
    return {"status": "ok", "path": relative, "content": text}
