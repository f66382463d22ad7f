"""Sandbox job processor.

Pipeline for one job:
1. Allocate the workspace and materialize cloud/SSH credentials
2. Clone the repository or unpack the upload, recording the baseline
3. Place problem files and the registry token
4. Run the agent loop until the model stops calling tools
5. Collect changed files and patch, then attach the result zip (uploads)
   or open a pull request (repositories)
6. Release the workspace according to the retention policy
"""

from __future__ import annotations

import logging

import httpx

from sandbox_orchestrator.agent.budget import ContextBudget
from sandbox_orchestrator.agent.prompts import format_system_prompt
from sandbox_orchestrator.agent.tools import ToolContext
from sandbox_orchestrator.agent.workflow import run_agent_loop
from sandbox_orchestrator.config import Settings
from sandbox_orchestrator.llm.router import ModelRouter
from sandbox_orchestrator.logging_utils import JobLogger
from sandbox_orchestrator.publish.collector import attach_result_archive, collect_changes
from sandbox_orchestrator.publish.github import publish_pull_request
from sandbox_orchestrator.schemas import Job, JobStatus, RepositorySource, SandboxProfile
from sandbox_orchestrator.tools.guard import Resolver, resolve_host_ips
from sandbox_orchestrator.workspace.acquire import (
    acquire_repository,
    materialize_problem_files,
    resolve_github_token,
)
from sandbox_orchestrator.workspace.credentials import (
    materialize_cloud_credentials,
    materialize_registry_token,
    materialize_ssh_key,
)
from sandbox_orchestrator.workspace.manager import Workspace, WorkspaceManager


logger = logging.getLogger(__name__)


class SandboxJobProcessor:
    """Runs jobs end to end. One ``process`` call owns its job until it returns."""

    def __init__(
        self,
        settings: Settings,
        router: ModelRouter,
        workspaces: WorkspaceManager | None = None,
        http_client: httpx.AsyncClient | None = None,
        github_transport: httpx.AsyncBaseTransport | None = None,
        resolver: Resolver = resolve_host_ips,
    ):
        self.settings = settings
        self.router = router
        self.workspaces = workspaces or WorkspaceManager(settings)
        self.http_client = http_client
        self.github_transport = github_transport
        self.resolver = resolver

    async def process(self, job: Job) -> None:
        """Move ``job`` from PENDING to a terminal state. Never raises."""
        log = JobLogger(job)
        job.status = JobStatus.RUNNING
        job.touch()

        model = self.router.resolve_model(job.profile, job.model)
        job.model = model
        budget = ContextBudget.for_profile(self.settings, job.profile)

        workspace: Workspace | None = None
        try:
            log(f"Preparing workspace under {self.settings.sandbox_workdir}")
            workspace = self.workspaces.allocate(job.job_id)
            job.sandbox_path = str(workspace.root)
            log(f"Workspace created at {workspace.root}")
            log(f"Profile {job.profile.value} selected; model {model}")
            if job.profile is SandboxProfile.ECONOMY:
                log(
                    f"Economy mode: prompt limit={budget.task_description_max_chars}, "
                    f"toolOutput={budget.tool_output_string_limit}, "
                    f"serialized={budget.tool_output_serialized_limit}, "
                    f"http_get={budget.http_tool_max_response_chars}"
                )
            await self._run(job, workspace, model, budget, log)
            self._finish(job, JobStatus.COMPLETED, None, log)
        except Exception as e:
            logger.exception(f"Sandbox job {job.job_id} failed")
            self._finish(job, JobStatus.FAILED, str(e) or e.__class__.__name__, log)
        finally:
            job.touch()
            if workspace is not None:
                self.workspaces.release(workspace, log)

    async def _run(
        self,
        job: Job,
        workspace: Workspace,
        model: str,
        budget: ContextBudget,
        log: JobLogger,
    ) -> None:
        materialize_cloud_credentials(workspace, job.credentials.cloud_credentials, log)
        materialize_ssh_key(workspace, job.credentials.ssh_private_key, log)

        token: str | None = None
        if isinstance(job.source, RepositorySource):
            token, token_source = resolve_github_token(self.settings, job.source.repo_url)
            if token:
                log(f"GitHub token from {token_source} will be used for clone, push and PR creation")
            else:
                log.warning("No GitHub token configured; authenticated operations may fail")

        baseline = await acquire_repository(job, workspace, self.settings, token, log)
        log(f"Baseline commit: {baseline or 'none'}")

        saved = materialize_problem_files(workspace, job.problem_files, log)
        materialize_registry_token(
            workspace,
            job.credentials.registry_token,
            self.settings.registry_url_pattern,
            self.settings.registry_default_server_id,
            log,
        )

        adapter = self.router.get_adapter()
        env = workspace.build_env()
        ctx = ToolContext(
            root=workspace.repo_dir,
            env=env,
            settings=self.settings,
            budget=budget,
            log=log,
            http_client=self.http_client,
            resolver=self.resolver,
        )
        system_prompt = format_system_prompt(
            sandbox_root=workspace.repo_dir,
            test_command=job.test_command,
            profile=job.profile,
            problem_files=[
                (name, upload.content_type) for name, upload in zip(saved, job.problem_files)
            ],
            problem_files_dir=workspace.problem_files_dir.relative_to(workspace.repo_dir).as_posix(),
        )

        log(f"Starting model interaction ({model})")
        job.summary = await run_agent_loop(job, adapter, model, ctx, system_prompt)

        job.changed_files, job.patch = await collect_changes(workspace.repo_dir, baseline, env, log)

        if job.is_upload:
            attach_result_archive(job, workspace.repo_dir, log)
            log("Upload job; skipping automatic pull request")
        else:
            job.pull_request_url = await publish_pull_request(
                job,
                workspace.repo_dir,
                env,
                token,
                self.settings,
                log,
                transport=self.github_transport,
            )
        log("Job finished; patch and changed files collected")

    def _finish(self, job: Job, status: JobStatus, error: str | None, log: JobLogger) -> None:
        if job.status.is_terminal:
            log(f"Job already {job.status.value}; ignoring late {status.value} result")
            return
        job.status = status
        if error is not None:
            job.error = error
            log.error(f"Job failed: {error}")
