"""Exception taxonomy for sandbox jobs.

Tool errors are handed back to the model as data. Acquisition, credential
and infrastructure errors abort the job. Publication errors are logged and
never fail a job.
"""

from __future__ import annotations


class SandboxError(Exception):
    """Base class for every error raised by the orchestrator."""


class ToolError(SandboxError):
    """A single tool call failed; the model is expected to recover."""


class PathEscapeError(ToolError):
    """A requested path resolves outside the workspace root."""


class BlockedUrlError(ToolError):
    """An outbound URL targets a non-public destination."""


class AcquisitionError(SandboxError):
    """The job source could not be materialized in the workspace."""


class CredentialError(AcquisitionError):
    """An uploaded credential is malformed or of the wrong kind."""


class WorkspaceError(SandboxError):
    """The workspace directory could not be created or written."""


class ModelConfigurationError(SandboxError):
    """The model endpoint cannot be used (for example a missing API key)."""


class PublicationError(SandboxError):
    """Pushing the job branch or opening the pull request failed."""


class GitCommandError(SandboxError):
    """A git subprocess exited with a non-zero status."""

    def __init__(self, command: list[str], returncode: int, stderr: str):
        self.command = command
        self.returncode = returncode
        self.stderr = stderr
        detail = stderr.strip() or "no output"
        super().__init__(f"git {' '.join(command)} failed with exit code {returncode}: {detail}")
