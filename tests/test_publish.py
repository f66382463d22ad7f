import asyncio
import io
import json
import zipfile

import httpx
import pytest

from sandbox_orchestrator.publish.collector import build_result_archive, result_archive_filename
from sandbox_orchestrator.publish.github import (
    GitHubClient,
    build_pr_body,
    build_pr_title,
    publish_pull_request,
    resolve_repo_slug,
)
from sandbox_orchestrator.errors import PublicationError
from sandbox_orchestrator.schemas import Job, RepositorySource, UploadSource


def repo_job(**kwargs) -> Job:
    return Job(
        job_id="pub-job",
        source=RepositorySource(
            repo_url=kwargs.pop("repo_url", "https://github.com/acme/widget.git"),
            branch="main",
            repo_slug=kwargs.pop("repo_slug", None),
        ),
        task_description="Fix the build",
        **kwargs,
    )


def test_repo_slug_resolution():
    assert resolve_repo_slug(RepositorySource(repo_url="https://github.com/acme/widget.git", branch="m")) == "acme/widget"
    assert resolve_repo_slug(RepositorySource(repo_url="https://gitlab.com/acme/widget.git", branch="m")) is None
    assert resolve_repo_slug(RepositorySource(repo_url="file:///x", branch="m", repo_slug=" o/n ")) == "o/n"


def test_pr_title_and_body():
    assert build_pr_title(None) == "Sandbox automated fix"
    assert build_pr_title("Fixed NPE") == "Sandbox: Fixed NPE"
    long_title = build_pr_title("x" * 1_000)
    assert len(long_title) == 256
    assert long_title.endswith("…")
    body = build_pr_body("Changed A", "Fix B")
    assert "**Task description:**\nFix B" in body
    assert "**Summary of changes:**\nChanged A" in body


def test_result_archive_excludes_git(tmp_path):
    (tmp_path / ".git").mkdir()
    (tmp_path / ".git" / "HEAD").write_text("ref", encoding="utf-8")
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "a.py").write_text("a", encoding="utf-8")
    (tmp_path / ".sandbox" / "problem-files").mkdir(parents=True)
    (tmp_path / ".sandbox" / "problem-files" / "log.txt").write_text("l", encoding="utf-8")
    names = zipfile.ZipFile(io.BytesIO(build_result_archive(tmp_path))).namelist()
    assert sorted(names) == [".sandbox/problem-files/log.txt", "src/a.py"]


def test_result_archive_filename():
    upload = Job(job_id="u1", source=UploadSource(archive_bytes=b"", filename="my-app.zip"), task_description="x")
    assert result_archive_filename(upload) == "my-app-modified.zip"
    unnamed = Job(job_id="u2", source=UploadSource(archive_bytes=b""), task_description="x")
    assert result_archive_filename(unnamed) == "u2-result.zip"


def test_github_client_success_and_failure():
    def handler(request):
        body = json.loads(request.content)
        if body["head"] == "ok":
            assert request.headers["authorization"] == "Bearer tok"
            return httpx.Response(201, json={"html_url": "https://github.com/acme/widget/pull/1"})
        return httpx.Response(403, text="Resource not accessible")

    async def scenario():
        client = GitHubClient("https://api.github.com", "tok", transport=httpx.MockTransport(handler))
        try:
            created = await client.create_pull_request("acme/widget", "t", "ok", "main", "b")
            with pytest.raises(PublicationError, match="permission"):
                await client.create_pull_request("acme/widget", "t", "denied", "main", "b")
        finally:
            await client.close()
        return created

    assert asyncio.run(scenario())["html_url"].endswith("/pull/1")


@pytest.mark.parametrize(
    "kwargs, token, expected",
    [
        ({"patch": "diff"}, None, "No GitHub token"),
        ({"patch": "diff", "repo_url": "https://gitlab.com/a/b.git"}, "tok", "cannot create a pull request"),
        ({"patch": "diff"}, "tok", "No git repository"),
        ({"patch": ""}, "tok", "No git repository"),
    ],
)
def test_publication_preconditions_skip(tmp_path, settings, log, kwargs, token, expected):
    job = repo_job(**kwargs)
    url = asyncio.run(publish_pull_request(job, tmp_path, {}, token, settings, log))
    assert url is None
    assert log.contains(expected)
