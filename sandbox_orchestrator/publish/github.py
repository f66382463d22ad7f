"""Pull request publication for repository jobs.

Flow: commit the agent's changes onto ``sandbox/cifix-<jobId>``, push it
with the job token and open a PR against the job branch. Every failure is
logged on the job and never fails it.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Callable
from urllib.parse import urlsplit

import httpx

from sandbox_orchestrator.config import Settings
from sandbox_orchestrator.errors import GitCommandError, PublicationError
from sandbox_orchestrator.schemas import Job, RepositorySource
from sandbox_orchestrator.tools import git_ops


logger = logging.getLogger(__name__)

Log = Callable[[str], None]

BRANCH_PREFIX = "sandbox/cifix-"
TITLE_PREFIX = "Sandbox: "
DEFAULT_TITLE = "Sandbox automated fix"
COMMIT_MESSAGE = "Sandbox automated fix"
TITLE_MAX_CHARS = 256
BODY_INTRO = "Automated fix generated by the sandbox orchestrator."
BOT_NAME = "Sandbox Bot"
BOT_EMAIL = "sandbox-bot@example.com"


# =============================================================================
# Helpers
# =============================================================================

def resolve_repo_slug(source: RepositorySource) -> str | None:
    """``owner/name`` from the explicit slug or a github.com URL."""
    if source.repo_slug and source.repo_slug.strip():
        return source.repo_slug.strip()
    try:
        parsed = urlsplit(source.repo_url)
    except ValueError:
        return None
    if (parsed.hostname or "").lower() != "github.com":
        return None
    path = parsed.path.removesuffix(".git")
    parts = [part for part in path.split("/") if part]
    if len(parts) >= 2:
        return f"{parts[0]}/{parts[1].removesuffix('.git')}"
    return None


def truncate_with_ellipsis(value: str, max_chars: int) -> str:
    if max_chars <= 0:
        return ""
    if len(value) <= max_chars:
        return value
    if max_chars == 1:
        return value[:1]
    return value[: max_chars - 1] + "…"


def build_pr_title(summary: str | None) -> str:
    if not summary or not summary.strip():
        return DEFAULT_TITLE
    available = max(1, TITLE_MAX_CHARS - len(TITLE_PREFIX))
    return TITLE_PREFIX + truncate_with_ellipsis(summary.strip(), available)


def build_pr_body(summary: str | None, task_description: str) -> str:
    sections = [BODY_INTRO]
    if task_description:
        sections.append(f"\n**Task description:**\n{task_description}")
    if summary:
        sections.append(f"\n**Summary of changes:**\n{summary}")
    return "\n".join(sections)


def permission_hint(message: str) -> str | None:
    normalized = message.lower()
    if "permission denied" in normalized or "authentication failed" in normalized:
        return "check that the token has push and pull_request scopes"
    return None


# =============================================================================
# GitHub REST client
# =============================================================================

class GitHubClient:
    """Minimal GitHub REST client for opening pull requests."""

    def __init__(
        self,
        api_url: str,
        token: str,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 30.0,
    ):
        self._client = httpx.AsyncClient(
            base_url=api_url.rstrip("/"),
            headers={
                "Authorization": f"Bearer {token}",
                "Content-Type": "application/json",
                "Accept": "application/vnd.github+json",
            },
            timeout=timeout,
            transport=transport,
        )

    async def create_pull_request(
        self,
        slug: str,
        title: str,
        head: str,
        base: str,
        body: str,
    ) -> dict[str, Any]:
        """Open a pull request.

        Raises:
            PublicationError: on transport failures and non-2xx responses
        """
        try:
            response = await self._client.post(
                f"/repos/{slug}/pulls",
                json={"title": title, "head": head, "base": base, "body": body},
            )
        except httpx.HTTPError as e:
            raise PublicationError(f"Failed to reach the GitHub API: {e}") from e

        if not response.is_success:
            message = response.text or "unknown GitHub API error"
            hint = (
                " (token may lack pull request or push permission)"
                if response.status_code in (401, 403)
                else ""
            )
            raise PublicationError(f"Failed to create PR: {response.status_code} {message}{hint}")
        try:
            return response.json()
        except ValueError as e:
            raise PublicationError(f"GitHub returned an unreadable PR response: {e}") from e

    async def close(self) -> None:
        await self._client.aclose()


# =============================================================================
# Publication
# =============================================================================

async def publish_pull_request(
    job: Job,
    repo_dir: Path,
    env: dict[str, str],
    token: str | None,
    settings: Settings,
    log: Log,
    transport: httpx.AsyncBaseTransport | None = None,
) -> str | None:
    """Push the job branch and open a PR; returns its URL or None.

    Preconditions that are not met (no token, no slug, no repository, empty
    patch) are logged and skip publication.
    """
    source = job.source
    if not isinstance(source, RepositorySource):
        log("Upload job; skipping automatic pull request")
        return None
    if not token:
        log("No GitHub token available; skipping pull request creation")
        return None
    slug = resolve_repo_slug(source)
    if not slug:
        log("repoSlug missing and repoUrl is not on github.com; cannot create a pull request")
        return None
    if not git_ops.is_git_repo(repo_dir):
        log("No git repository in the workspace; cannot create a pull request")
        return None
    if not (job.patch or "").strip():
        log("No changes detected; pull request will not be created")
        return None

    branch = f"{BRANCH_PREFIX}{job.job_id}"
    try:
        await git_ops.configure_identity(repo_dir, BOT_NAME, BOT_EMAIL, env)
        await git_ops.commit_all(repo_dir, branch, COMMIT_MESSAGE, env)
        remote = git_ops.build_auth_repo_url(source.repo_url, token, settings.github_clone_username)
        try:
            await git_ops.push_branch(repo_dir, remote, branch, env)
        except GitCommandError as e:
            hint = permission_hint(str(e))
            raise PublicationError(
                f"Failed to push the PR branch: {e}" + (f" ({hint})" if hint else "")
            ) from e

        client = GitHubClient(settings.github_api_url, token, transport=transport)
        try:
            pr = await client.create_pull_request(
                slug,
                title=build_pr_title(job.summary),
                head=branch,
                base=source.branch,
                body=build_pr_body(job.summary, job.task_description),
            )
        finally:
            await client.close()
    except (PublicationError, GitCommandError) as e:
        log(f"Failed to create pull request: {e}")
        return None
    except Exception as e:
        logger.exception(f"Unexpected error publishing {branch} for {slug}")
        log(f"Failed to create pull request: {e}")
        return None

    url = pr.get("html_url") if isinstance(pr, dict) else None
    if url:
        log(f"Pull request created at {url}")
    else:
        log("Pull request created but the response carried no html_url")
    logger.info(f"Published {branch} for {slug}")
    return url
