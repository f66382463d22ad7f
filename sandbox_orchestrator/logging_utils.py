"""Logging helpers: process-wide setup and the per-job diagnostic log."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sandbox_orchestrator.schemas import Job


logger = logging.getLogger("sandbox_orchestrator.jobs")

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(debug: bool = False) -> None:
    """Configure root logging for the API and CLI entry points."""
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format=LOG_FORMAT,
    )
    # httpx logs every request line at INFO, including model calls
    logging.getLogger("httpx").setLevel(logging.WARNING)


class JobLogger:
    """Appends timestamped lines to ``job.logs`` and mirrors them to logging.

    Each line also refreshes ``job.updated_at``, so the stale-job watchdog
    measures inactivity rather than total runtime.
    """

    def __init__(self, job: Job):
        self.job = job

    def __call__(self, message: str, level: int = logging.INFO) -> None:
        timestamp = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
        self.job.logs.append(f"[{timestamp}] {message}")
        self.job.touch()
        logger.log(level, f"Sandbox job {self.job.job_id}: {message}")

    def warning(self, message: str) -> None:
        self(message, level=logging.WARNING)

    def error(self, message: str) -> None:
        self(message, level=logging.ERROR)
