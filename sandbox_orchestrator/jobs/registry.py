"""In-memory job registry.

Holds every submitted job for the lifetime of the process, starts its
processing task and fails RUNNING jobs that have gone quiet for too long.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta

from sandbox_orchestrator.config import Settings
from sandbox_orchestrator.jobs.processor import SandboxJobProcessor
from sandbox_orchestrator.logging_utils import JobLogger
from sandbox_orchestrator.schemas import Job, JobStatus, utcnow
from sandbox_orchestrator.tools.git_ops import redact_url_credentials


logger = logging.getLogger(__name__)


class JobRegistry:
    """Maps job ids to jobs and owns their background tasks."""

    def __init__(self, settings: Settings, processor: SandboxJobProcessor):
        self.settings = settings
        self.processor = processor
        self._jobs: dict[str, Job] = {}
        self._tasks: dict[str, asyncio.Task] = {}

    def submit(self, job: Job) -> tuple[Job, bool]:
        """Register ``job`` and start processing it.

        Returns:
            Tuple of (job, created); an existing job with the same id is
            returned unchanged with ``created`` False
        """
        existing = self._jobs.get(job.job_id)
        if existing is not None:
            logger.info(f"Duplicate job {job.job_id}; returning cached status {existing.status.value}")
            return existing, False

        self._jobs[job.job_id] = job
        source = job.source
        label = f"upload {source.filename or 'source.zip'}" if job.is_upload else (
            getattr(source, "repo_slug", None) or redact_url_credentials(getattr(source, "repo_url", ""))
        )
        logger.info(
            f"Registering job {job.job_id} for {label} on branch {job.branch} "
            f"(profile {job.profile.value}{', model ' + job.model if job.model else ''})"
        )
        task = asyncio.create_task(self.processor.process(job), name=f"sandbox-job-{job.job_id}")
        self._tasks[job.job_id] = task
        task.add_done_callback(lambda _: self._tasks.pop(job.job_id, None))
        return job, True

    def get(self, job_id: str) -> Job | None:
        job = self._jobs.get(job_id)
        if job is not None:
            self.mark_stale_if_needed(job)
        return job

    def mark_stale_if_needed(self, job: Job) -> bool:
        """Fail a RUNNING job whose last activity is older than the stale timeout."""
        if job.status is not JobStatus.RUNNING:
            return False
        timeout = timedelta(seconds=self.settings.job_stale_timeout_seconds)
        if utcnow() - job.updated_at <= timeout:
            return False
        job.status = JobStatus.FAILED
        job.error = "Job ran for too long without progress and was marked as failed."
        JobLogger(job)(f"Job expired after {round(timeout.total_seconds() / 60)} minutes")
        return True

    async def shutdown(self) -> None:
        """Cancel jobs still in flight."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
