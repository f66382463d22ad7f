"""Collect what the agent changed: file list, unified diff and result archive."""

from __future__ import annotations

import io
import os
import zipfile
from pathlib import Path, PurePosixPath
from typing import Callable

from sandbox_orchestrator.errors import GitCommandError
from sandbox_orchestrator.schemas import Job, UploadSource
from sandbox_orchestrator.tools import git_ops


Log = Callable[[str], None]


async def collect_changes(
    repo_dir: Path,
    baseline: str | None,
    env: dict[str, str],
    log: Log,
) -> tuple[list[str], str]:
    """Changed files and patch relative to ``baseline``.

    Files the agent created are included. Both values are empty when there
    is no baseline or the directory is not a repository.
    """
    if not baseline or not git_ops.is_git_repo(repo_dir):
        log("No baseline commit; skipping diff collection")
        return [], ""
    try:
        await git_ops.mark_untracked_intent(repo_dir, env)
        files = await git_ops.changed_files(repo_dir, baseline, env)
        patch = await git_ops.diff_patch(repo_dir, baseline, env)
    except GitCommandError as e:
        log(f"Failed to collect changes: {e}")
        return [], ""
    log(f"Collected {len(files)} changed file(s), patch of {len(patch)} chars")
    return files, patch


def _include_in_archive(relative: PurePosixPath) -> bool:
    return ".git" not in relative.parts


def build_result_archive(repo_dir: Path) -> bytes:
    """Zip the repo tree, leaving out anything under a ``.git`` segment."""
    root = repo_dir.resolve()
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as bundle:
        for dirpath, dirnames, filenames in os.walk(root):
            current = Path(dirpath)
            dirnames[:] = sorted(d for d in dirnames if d != ".git")
            for filename in sorted(filenames):
                path = current / filename
                relative = PurePosixPath(path.relative_to(root).as_posix())
                if not _include_in_archive(relative) or not path.is_file():
                    continue
                bundle.write(path, relative.as_posix())
    return buffer.getvalue()


def result_archive_filename(job: Job) -> str:
    """``<upload stem>-modified.zip``, or ``<jobId>-result.zip`` without an upload name."""
    filename = job.source.filename if isinstance(job.source, UploadSource) else None
    if filename and filename.strip():
        stem = PurePosixPath(filename.strip().replace("\\", "/")).stem
        if not stem or stem == ".":
            stem = "upload"
        return f"{stem}-modified.zip"
    return f"{job.job_id}-result.zip"


def attach_result_archive(job: Job, repo_dir: Path, log: Log) -> None:
    """Store the result archive on the job; failures are logged only."""
    try:
        archive = build_result_archive(repo_dir)
    except (OSError, zipfile.BadZipFile, ValueError) as e:
        log(f"Failed to build the result zip: {e}")
        return
    job.result_archive = archive
    job.result_archive_filename = result_archive_filename(job)
    log(f"Result zip {job.result_archive_filename} ready ({len(archive)} bytes)")
