"""Repository acquisition: clone a remote or unpack an upload, then record the baseline.

Also places auxiliary problem files where the agent can read them without
them ever showing up in the diff.
"""

from __future__ import annotations

import io
import os
import zipfile
from pathlib import Path, PurePosixPath
from typing import Callable

from sandbox_orchestrator.config import Settings
from sandbox_orchestrator.errors import AcquisitionError, GitCommandError, WorkspaceError
from sandbox_orchestrator.schemas import Job, RepositorySource, UploadedFile, UploadSource
from sandbox_orchestrator.tools import git_ops
from sandbox_orchestrator.workspace.manager import Workspace


Log = Callable[[str], None]

PROBLEM_FILES_EXCLUDE = ".sandbox/"


# =============================================================================
# Token resolution
# =============================================================================

def resolve_github_token(settings: Settings, repo_url: str | None) -> tuple[str | None, str]:
    """Pick the GitHub token for clone, push and PR creation.

    Returns:
        Tuple of (token, source name); the token is None when nothing is configured
    """
    for source, token in settings.github_tokens:
        if token and token.strip():
            return token.strip(), source
    if repo_url:
        embedded = git_ops.extract_token_from_repo_url(repo_url)
        if embedded:
            return embedded, "repoUrl"
    return None, "none"


# =============================================================================
# Repository jobs
# =============================================================================

async def clone_repository(
    source: RepositorySource,
    workspace: Workspace,
    token: str | None,
    username: str,
    log: Log,
) -> str | None:
    clone_url = git_ops.build_auth_repo_url(source.repo_url, token, username)
    log(f"Cloning {git_ops.redact_url_credentials(clone_url)} (branch {source.branch})")
    try:
        await git_ops.clone(
            clone_url,
            source.branch,
            workspace.repo_dir,
            env=workspace.build_env(),
            commit_hash=source.commit_hash,
        )
    except GitCommandError as e:
        raise AcquisitionError(f"Failed to clone repository: {e}") from e
    if source.commit_hash:
        log(f"Checked out commit {source.commit_hash}")
    return await git_ops.head_commit(workspace.repo_dir, workspace.build_env())


# =============================================================================
# Upload jobs
# =============================================================================

def _safe_entry_target(root: Path, name: str) -> Path:
    """Where a zip entry lands under ``root``; refuses anything that escapes it."""
    normalized = name.replace("\\", "/")
    if not normalized.strip() or normalized.startswith("/") or PurePosixPath(normalized).is_absolute():
        raise AcquisitionError(f"Invalid zip entry: {name!r}")
    parts = [part for part in PurePosixPath(normalized).parts if part not in ("", ".")]
    if not parts or ".." in parts or ":" in parts[0]:
        raise AcquisitionError(f"Invalid zip entry: {name!r}")
    target = (root / Path(*parts)).resolve()
    if root != target and root not in target.parents:
        raise AcquisitionError(f"Zip entry points outside the workspace: {name!r}")
    return target


def extract_archive(archive: bytes, repo_dir: Path, log: Log) -> int:
    """Extract ``archive`` into ``repo_dir`` after validating every entry.

    Nothing is written unless every entry stays inside ``repo_dir``.
    """
    try:
        bundle = zipfile.ZipFile(io.BytesIO(archive))
    except zipfile.BadZipFile as e:
        raise AcquisitionError(f"Failed to read uploaded zip: {e}") from e

    root = repo_dir.resolve()
    with bundle:
        entries = bundle.infolist()
        targets = [(_safe_entry_target(root, info.filename), info) for info in entries]
        for target, info in targets:
            if info.is_dir():
                target.mkdir(parents=True, exist_ok=True)
                continue
            target.parent.mkdir(parents=True, exist_ok=True)
            with bundle.open(info) as src, open(target, "wb") as dst:
                while chunk := src.read(1024 * 1024):
                    dst.write(chunk)
    log(f"Upload extracted ({len(entries)} entries)")
    return len(entries)


async def prepare_upload(source: UploadSource, workspace: Workspace, log: Log) -> str | None:
    log(
        f"Extracting upload {source.filename or 'source.zip'} "
        f"({len(source.archive_bytes)} bytes) to {workspace.repo_dir}"
    )
    extract_archive(source.archive_bytes, workspace.repo_dir, log)

    env = workspace.build_env()
    try:
        await git_ops.init_from_upload(workspace.repo_dir, source.branch, env)
    except GitCommandError as e:
        log(f"Failed to initialize git for the upload; no baseline available: {e}")
        return None
    return await git_ops.head_commit(workspace.repo_dir, env)


async def acquire_repository(
    job: Job,
    workspace: Workspace,
    settings: Settings,
    github_token: str | None,
    log: Log,
) -> str | None:
    """Materialize the job source in ``workspace.repo_dir``.

    Returns:
        Baseline commit hash, or None when no baseline could be recorded
    """
    if isinstance(job.source, UploadSource):
        return await prepare_upload(job.source, workspace, log)
    return await clone_repository(
        job.source, workspace, github_token, settings.github_clone_username, log
    )


# =============================================================================
# Problem files
# =============================================================================

def sanitize_problem_filename(name: str | None, index: int) -> str:
    fallback = f"problem-{index + 1}.txt"
    if not name:
        return fallback
    normalized = os.path.basename(name.strip().replace("\\", "/")).replace(":", "_")
    if not normalized or normalized in {".", ".."}:
        return fallback
    return normalized


def materialize_problem_files(workspace: Workspace, files: list[UploadedFile], log: Log) -> list[str]:
    """Write auxiliary attachments under ``repo/.sandbox/problem-files``."""
    if not files:
        return []

    target_dir = workspace.problem_files_dir
    try:
        target_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise WorkspaceError(f"Could not prepare the problem files directory: {e}") from e
    try:
        if not git_ops.add_exclude(workspace.repo_dir, PROBLEM_FILES_EXCLUDE):
            log("Repository has no .git directory; problem files are not excluded from git")
    except OSError as e:
        log(f"Could not register the problem files exclusion in git: {e}")

    saved = []
    for index, upload in enumerate(files):
        filename = sanitize_problem_filename(upload.filename, index)
        try:
            data = upload.decode(f"problem file {filename}")
        except ValueError as e:
            raise AcquisitionError(str(e)) from e
        (target_dir / filename).write_bytes(data)
        saved.append(filename)

    relative = target_dir.relative_to(workspace.repo_dir).as_posix()
    log(f"Problem files available in {relative}: {', '.join(saved)}")
    return saved
