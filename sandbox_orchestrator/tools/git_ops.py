"""Git plumbing for job workspaces.

Provides the git operations the job pipeline needs:
- clone / init_from_upload: materialize the baseline
- head_commit: record the baseline commit
- changed_files / diff_patch: collect the agent's changes
- commit_all / push_branch: publish a job branch
- build_auth_repo_url / redact_url_credentials: URL credential handling
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import quote, urlsplit, urlunsplit, unquote

from sandbox_orchestrator.errors import GitCommandError


logger = logging.getLogger(__name__)

DEFAULT_GIT_TIMEOUT_SECONDS = 600.0

_USERINFO_RE = re.compile(r"(://)[^/\s@'\"]+@")


# =============================================================================
# URL helpers
# =============================================================================

def _is_github_https(repo_url: str) -> bool:
    try:
        parsed = urlsplit(repo_url)
        return parsed.scheme == "https" and (parsed.hostname or "").lower() == "github.com"
    except ValueError:
        return False


def build_auth_repo_url(repo_url: str, token: str | None, username: str = "x-access-token") -> str:
    """Embed ``username:token`` into a github.com https URL that carries no credentials."""
    if not token or not _is_github_https(repo_url):
        return repo_url
    parsed = urlsplit(repo_url)
    if parsed.username or parsed.password:
        return repo_url
    netloc = f"{quote(username, safe='')}:{quote(token, safe='')}@{parsed.netloc}"
    return urlunsplit(parsed._replace(netloc=netloc))


def redact_url_credentials(repo_url: str) -> str:
    """Replace any user or password in ``repo_url`` with ``***``."""
    try:
        parsed = urlsplit(repo_url)
    except ValueError:
        return repo_url
    if not parsed.scheme or "@" not in parsed.netloc:
        return repo_url
    userinfo, _, hostport = parsed.netloc.rpartition("@")
    user, has_password, _ = userinfo.partition(":")
    redacted = ("***" if user else "") + (":***" if has_password else "")
    return urlunsplit(parsed._replace(netloc=f"{redacted}@{hostport}"))


def extract_token_from_repo_url(repo_url: str) -> str | None:
    """The password component of ``repo_url``, if any."""
    try:
        password = urlsplit(repo_url).password
    except ValueError:
        return None
    return unquote(password) if password else None


def redact_text(text: str) -> str:
    """Mask credentials of every URL embedded in free text such as git stderr."""
    return _USERINFO_RE.sub(r"\1***@", text)


def _redact_args(args: list[str]) -> list[str]:
    return [redact_url_credentials(arg) if "://" in arg else arg for arg in args]


# =============================================================================
# Command runner
# =============================================================================

@dataclass
class GitResult:
    stdout: str
    stderr: str
    returncode: int


async def run_git(
    args: list[str],
    cwd: Path,
    env: dict[str, str] | None = None,
    *,
    check: bool = True,
    timeout: float = DEFAULT_GIT_TIMEOUT_SECONDS,
) -> GitResult:
    """Run ``git <args>`` and return its output.

    Raises:
        GitCommandError: on a non-zero exit when ``check`` is set, or on timeout
    """
    redacted = _redact_args(args)
    logger.debug(f"git {' '.join(redacted)} (cwd={cwd})")
    try:
        process = await asyncio.create_subprocess_exec(
            "git",
            *args,
            cwd=str(cwd),
            env=env,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        raise GitCommandError(redacted, -1, f"failed to start git: {e}") from e

    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError as e:
        process.kill()
        await process.wait()
        raise GitCommandError(redacted, -1, f"timed out after {timeout} seconds") from e

    result = GitResult(
        stdout=stdout.decode("utf-8", errors="replace"),
        stderr=stderr.decode("utf-8", errors="replace"),
        returncode=process.returncode if process.returncode is not None else -1,
    )
    if check and result.returncode != 0:
        raise GitCommandError(redacted, result.returncode, redact_text(result.stderr))
    return result


def is_git_repo(repo_path: Path) -> bool:
    return (repo_path / ".git").exists()


# =============================================================================
# Baseline
# =============================================================================

async def clone(
    repo_url: str,
    branch: str,
    dest: Path,
    env: dict[str, str] | None = None,
    commit_hash: str | None = None,
) -> None:
    """Shallow-clone ``branch`` into ``dest`` and optionally check out a commit."""
    await run_git(["clone", "--branch", branch, "--depth", "1", repo_url, str(dest)], dest.parent, env)
    if commit_hash:
        await run_git(["checkout", commit_hash], dest, env)


async def configure_identity(repo_path: Path, name: str, email: str, env: dict[str, str] | None = None) -> None:
    await run_git(["config", "user.email", email], repo_path, env)
    await run_git(["config", "user.name", name], repo_path, env)


async def init_from_upload(repo_path: Path, branch: str, env: dict[str, str] | None = None) -> None:
    """Turn extracted upload contents into a repository with one baseline commit."""
    await run_git(["init"], repo_path, env)
    await configure_identity(repo_path, "Sandbox Upload", "sandbox-upload@example.com", env)
    await run_git(["checkout", "-B", branch], repo_path, env)
    await run_git(["add", "-A"], repo_path, env)
    await run_git(["commit", "--allow-empty", "-m", "Initial upload"], repo_path, env)


async def head_commit(repo_path: Path, env: dict[str, str] | None = None) -> str | None:
    if not is_git_repo(repo_path):
        return None
    result = await run_git(["rev-parse", "HEAD"], repo_path, env, check=False)
    commit = result.stdout.strip()
    return commit if result.returncode == 0 and commit else None


def add_exclude(repo_path: Path, pattern: str) -> bool:
    """Append ``pattern`` to ``.git/info/exclude`` once. False when not a repo."""
    git_dir = repo_path / ".git"
    if not git_dir.is_dir():
        return False
    exclude = git_dir / "info" / "exclude"
    exclude.parent.mkdir(parents=True, exist_ok=True)
    existing = exclude.read_text(encoding="utf-8") if exclude.exists() else ""
    if pattern in existing.splitlines():
        return True
    prefix = "" if not existing or existing.endswith("\n") else "\n"
    with exclude.open("a", encoding="utf-8") as f:
        f.write(f"{prefix}{pattern}\n")
    return True


# =============================================================================
# Changes
# =============================================================================

async def mark_untracked_intent(repo_path: Path, env: dict[str, str] | None = None) -> None:
    """Record untracked files as intent-to-add so ``git diff`` reports them."""
    await run_git(["add", "-A", "--intent-to-add"], repo_path, env)


async def changed_files(repo_path: Path, baseline: str, env: dict[str, str] | None = None) -> list[str]:
    result = await run_git(["diff", "--name-only", baseline], repo_path, env)
    return [line.strip() for line in result.stdout.splitlines() if line.strip()]


async def diff_patch(repo_path: Path, baseline: str, env: dict[str, str] | None = None) -> str:
    result = await run_git(["diff", baseline], repo_path, env)
    return result.stdout


# =============================================================================
# Publication
# =============================================================================

async def commit_all(repo_path: Path, branch: str, message: str, env: dict[str, str] | None = None) -> None:
    """Check out ``branch`` at the current state and commit every change onto it."""
    await run_git(["checkout", "-B", branch], repo_path, env)
    await run_git(["add", "-A"], repo_path, env)
    await run_git(["commit", "-m", message], repo_path, env)


async def push_branch(
    repo_path: Path,
    remote_url: str,
    branch: str,
    env: dict[str, str] | None = None,
) -> None:
    await run_git(["remote", "set-url", "origin", remote_url], repo_path, env)
    await run_git(["push", "origin", branch], repo_path, env)
