"""Workspace allocation, job environment and retention.

Each job gets a private directory under the configured work dir:

    sandbox-<jobId>-<random>/
        repo/               the repository the agent works on
        .ssh/               SSH key and config
        .config/gcloud/     cloud credentials
        .sandbox/           registry token
        .m2/settings.xml    maven server entries
"""

from __future__ import annotations

import logging
import os
import re
import shutil
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

from sandbox_orchestrator.config import Settings
from sandbox_orchestrator.errors import WorkspaceError


logger = logging.getLogger(__name__)


@dataclass
class Workspace:
    """Filesystem layout and environment overrides for one job."""
    job_id: str
    root: Path
    env_overrides: dict[str, str] = field(default_factory=dict)

    @property
    def repo_dir(self) -> Path:
        return self.root / "repo"

    @property
    def ssh_dir(self) -> Path:
        return self.root / ".ssh"

    @property
    def gcloud_dir(self) -> Path:
        return self.root / ".config" / "gcloud"

    @property
    def secrets_dir(self) -> Path:
        return self.root / ".sandbox"

    @property
    def maven_settings(self) -> Path:
        return self.root / ".m2" / "settings.xml"

    @property
    def problem_files_dir(self) -> Path:
        return self.repo_dir / ".sandbox" / "problem-files"

    def set_env(self, name: str, value: str) -> None:
        self.env_overrides[name] = value

    def build_env(self) -> dict[str, str]:
        """Environment for every subprocess the job runs (shell tool and git)."""
        env = dict(os.environ)
        env["HOME"] = str(self.root)
        env["GIT_TERMINAL_PROMPT"] = "0"
        env["CLOUDSDK_CONFIG"] = str(self.gcloud_dir)
        env.update(self.env_overrides)
        return env


def _safe_component(value: str) -> str:
    return re.sub(r"[^a-zA-Z0-9_.-]", "_", value)[:64] or "job"


class WorkspaceManager:
    """Creates job workspaces and applies the retention policy."""

    def __init__(self, settings: Settings):
        self.settings = settings

    def allocate(self, job_id: str) -> Workspace:
        """Create ``sandbox-<jobId>-<random>`` with an empty ``repo/`` inside."""
        base = Path(self.settings.sandbox_workdir)
        try:
            base.mkdir(parents=True, exist_ok=True)
            root = Path(tempfile.mkdtemp(prefix=f"sandbox-{_safe_component(job_id)}-", dir=base))
        except OSError as e:
            raise WorkspaceError(f"Could not create workspace under {base}: {e}") from e

        workspace = Workspace(job_id=job_id, root=root)
        workspace.repo_dir.mkdir()
        logger.info(f"Allocated workspace {root} for job {job_id}")
        return workspace

    def release(self, workspace: Workspace, log: Callable[[str], None]) -> None:
        """Delete the workspace unless the deployment keeps them for inspection."""
        if self.settings.sandbox_keep_workspace:
            log(f"Keeping workspace {workspace.root} (SANDBOX_KEEP_WORKSPACE enabled)")
            return
        try:
            shutil.rmtree(workspace.root)
        except FileNotFoundError:
            return
        except OSError as e:
            log(f"Failed to remove workspace {workspace.root}: {e}")
            return
        log(f"Removed workspace {workspace.root}")
