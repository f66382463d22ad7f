"""Pydantic schemas for jobs, tool calls and the HTTP surface.

These schemas define the contracts between:
- the job registry and the processor
- the agent loop and the model transport
- API endpoints and clients
"""

from __future__ import annotations

import base64
import binascii
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from sandbox_orchestrator.tools.git_ops import redact_url_credentials


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def decode_base64(value: str, label: str) -> bytes:
    """Decode a base64 payload, raising ``ValueError`` with a readable label."""
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueError(f"{label} is not valid base64: {e}") from e


# =============================================================================
# Enums
# =============================================================================

class JobStatus(str, Enum):
    """Lifecycle state of a sandbox job."""
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class SandboxProfile(str, Enum):
    """Cost profile controlling model choice and context caps."""
    STANDARD = "STANDARD"
    ECONOMY = "ECONOMY"

    @classmethod
    def parse(cls, value: str | None) -> "SandboxProfile":
        if value and value.strip().upper() == cls.ECONOMY.value:
            return cls.ECONOMY
        return cls.STANDARD


class ToolName(str, Enum):
    """The closed set of tools offered to the model."""
    RUN_SHELL = "run_shell"
    READ_FILE = "read_file"
    WRITE_FILE = "write_file"
    HTTP_GET = "http_get"


# =============================================================================
# Job sources
# =============================================================================

class RepositorySource(BaseModel):
    """A remote git repository to clone."""
    kind: Literal["repository"] = "repository"
    repo_url: str = Field(..., description="Clone URL (https or ssh)")
    branch: str = Field(..., description="Branch to clone and target for the PR")
    commit_hash: str | None = Field(default=None, description="Commit to check out after cloning")
    repo_slug: str | None = Field(default=None, description="owner/name on the source host")


class UploadSource(BaseModel):
    """A zip archive uploaded by the caller."""
    kind: Literal["upload"] = "upload"
    archive_bytes: bytes = Field(..., repr=False)
    filename: str | None = None
    branch: str = "upload"


JobSource = Annotated[RepositorySource | UploadSource, Field(discriminator="kind")]


# =============================================================================
# Uploaded attachments and credentials
# =============================================================================

class UploadedFile(BaseModel):
    """A base64 attachment as received from the caller."""
    base64: str = Field(..., repr=False)
    filename: str | None = None
    content_type: str | None = None

    def decode(self, label: str) -> bytes:
        return decode_base64(self.base64, label)


class CredentialBundle(BaseModel):
    """Secrets to materialize inside the workspace. Never serialized to clients."""
    ssh_private_key: UploadedFile | None = None
    cloud_credentials: UploadedFile | None = None
    registry_token: UploadedFile | None = None


# =============================================================================
# Usage and output
# =============================================================================

class JobUsage(BaseModel):
    """Token and cost counters accumulated across model round-trips."""
    prompt_tokens: int = 0
    cached_prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    cost: float = 0.0

    def add(self, other: "JobUsage") -> None:
        self.prompt_tokens += other.prompt_tokens
        self.cached_prompt_tokens += other.cached_prompt_tokens
        self.completion_tokens += other.completion_tokens
        self.total_tokens += other.total_tokens
        self.cost += other.cost


class Job(BaseModel):
    """One submitted task and everything accumulated while processing it."""

    model_config = ConfigDict(validate_assignment=False)

    job_id: str
    source: JobSource
    task_description: str
    test_command: str | None = None
    profile: SandboxProfile = SandboxProfile.STANDARD
    model: str | None = None
    problem_files: list[UploadedFile] = Field(default_factory=list, repr=False)
    credentials: CredentialBundle = Field(default_factory=CredentialBundle, repr=False)

    status: JobStatus = JobStatus.PENDING
    summary: str | None = None
    changed_files: list[str] = Field(default_factory=list)
    patch: str | None = None
    pull_request_url: str | None = None
    result_archive: bytes | None = Field(default=None, repr=False)
    result_archive_filename: str | None = None
    usage: JobUsage = Field(default_factory=JobUsage)
    error: str | None = None
    logs: list[str] = Field(default_factory=list, repr=False)
    sandbox_path: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_upload(self) -> bool:
        return isinstance(self.source, UploadSource)

    @property
    def branch(self) -> str:
        return self.source.branch

    def touch(self) -> None:
        self.updated_at = utcnow()


# =============================================================================
# Tool calls
# =============================================================================

class ToolCall(BaseModel):
    """A function call emitted by the model, with its id normalized."""
    call_id: str
    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)


class ModelResponse(BaseModel):
    """The parts of a model response the agent loop consumes."""
    id: str | None = None
    output: list[dict[str, Any]] = Field(default_factory=list)
    usage: dict[str, Any] = Field(default_factory=dict)


# =============================================================================
# API Request/Response Schemas
# =============================================================================

class UploadedZipPayload(BaseModel):
    base64: str = Field(..., repr=False)
    filename: str | None = None


class UploadedFilePayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    base64: str | None = Field(default=None, repr=False)
    filename: str | None = None
    content_type: str | None = Field(default=None, alias="contentType")


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value


class JobCreateRequest(BaseModel):
    """API request to submit a sandbox job."""

    model_config = ConfigDict(populate_by_name=True)

    job_id: str | None = Field(default=None, alias="jobId")
    task_description: str | None = Field(default=None, alias="taskDescription")
    task: str | None = None
    repo_url: str | None = Field(default=None, alias="repoUrl")
    repo_slug: str | None = Field(default=None, alias="repoSlug")
    branch: str | None = None
    commit: str | None = None
    test_command: str | None = Field(default=None, alias="testCommand")
    model: str | None = None
    profile: str | None = None
    uploaded_zip: UploadedZipPayload | None = Field(default=None, alias="uploadedZip")
    problem_files: list[UploadedFilePayload] = Field(default_factory=list, alias="problemFiles")
    application_default_credentials: UploadedFilePayload | None = Field(
        default=None, alias="applicationDefaultCredentials"
    )
    git_ssh_private_key: UploadedFilePayload | None = Field(default=None, alias="gitSshPrivateKey")
    gitlab_personal_access_token: UploadedFilePayload | None = Field(
        default=None, alias="gitlabPersonalAccessToken"
    )

    @field_validator(
        "job_id", "task_description", "task", "repo_url", "repo_slug",
        "branch", "commit", "test_command", "model", "profile",
        mode="before",
    )
    @classmethod
    def _strip(cls, value: Any) -> Any:
        return _blank_to_none(value)

    @model_validator(mode="after")
    def _check_source(self) -> "JobCreateRequest":
        if not self.job_id or not self.resolved_task:
            raise ValueError("jobId and taskDescription are required")
        if self.uploaded_zip is None:
            if not (self.repo_url or self.repo_slug) or not self.branch:
                raise ValueError("repoUrl/repoSlug and branch are required when no uploadedZip is sent")
        return self

    @property
    def resolved_task(self) -> str | None:
        return self.task_description or _blank_to_none(self.task)

    def to_job(self) -> Job:
        """Build the in-memory job; raises ``ValueError`` on undecodable payloads."""
        source: RepositorySource | UploadSource
        if self.uploaded_zip is not None:
            source = UploadSource(
                archive_bytes=decode_base64(self.uploaded_zip.base64, "uploadedZip"),
                filename=_blank_to_none(self.uploaded_zip.filename),
                branch=self.branch or "upload",
            )
        else:
            repo_url = self.repo_url or f"https://github.com/{self.repo_slug}.git"
            source = RepositorySource(
                repo_url=repo_url,
                branch=self.branch or "",
                commit_hash=self.commit,
                repo_slug=self.repo_slug,
            )

        problem_files = []
        for index, item in enumerate(self.problem_files):
            if not _blank_to_none(item.base64):
                continue
            problem_files.append(UploadedFile(
                base64=item.base64,
                filename=_blank_to_none(item.filename) or f"problem-{index + 1}.txt",
                content_type=_blank_to_none(item.content_type),
            ))

        return Job(
            job_id=self.job_id or "",
            source=source,
            task_description=self.resolved_task or "",
            test_command=self.test_command,
            profile=SandboxProfile.parse(self.profile),
            model=self.model,
            problem_files=problem_files,
            credentials=CredentialBundle(
                ssh_private_key=_as_uploaded_file(self.git_ssh_private_key),
                cloud_credentials=_as_uploaded_file(self.application_default_credentials),
                registry_token=_as_uploaded_file(self.gitlab_personal_access_token),
            ),
        )


def _as_uploaded_file(payload: UploadedFilePayload | None) -> UploadedFile | None:
    if payload is None or not _blank_to_none(payload.base64):
        return None
    return UploadedFile(
        base64=payload.base64,
        filename=_blank_to_none(payload.filename),
        content_type=_blank_to_none(payload.content_type),
    )


class JobView(BaseModel):
    """API response for job status. Carries no secrets and no archive bytes."""

    model_config = ConfigDict(populate_by_name=True, serialize_by_alias=True)

    job_id: str = Field(alias="jobId")
    status: JobStatus
    repo_url: str = Field(alias="repoUrl")
    repo_slug: str | None = Field(default=None, alias="repoSlug")
    branch: str
    task_description: str = Field(alias="taskDescription")
    test_command: str | None = Field(default=None, alias="testCommand")
    profile: SandboxProfile
    model: str | None = None
    summary: str | None = None
    changed_files: list[str] = Field(default_factory=list, alias="changedFiles")
    patch: str | None = None
    pull_request_url: str | None = Field(default=None, alias="pullRequestUrl")
    error: str | None = None
    sandbox_path: str | None = Field(default=None, alias="sandboxPath")
    prompt_tokens: int = Field(default=0, alias="promptTokens")
    cached_prompt_tokens: int = Field(default=0, alias="cachedPromptTokens")
    completion_tokens: int = Field(default=0, alias="completionTokens")
    total_tokens: int = Field(default=0, alias="totalTokens")
    cost: float = 0.0
    logs: list[str] = Field(default_factory=list)
    result_zip_ready: bool = Field(default=False, alias="resultZipReady")
    has_uploaded_zip: bool = Field(default=False, alias="hasUploadedZip")
    problem_files_count: int = Field(default=0, alias="problemFilesCount")
    has_application_default_credentials: bool = Field(default=False, alias="hasApplicationDefaultCredentials")
    has_git_ssh_private_key: bool = Field(default=False, alias="hasGitSshPrivateKey")
    has_gitlab_personal_access_token: bool = Field(default=False, alias="hasGitlabPersonalAccessToken")
    created_at: datetime = Field(alias="createdAt")
    updated_at: datetime = Field(alias="updatedAt")

    @classmethod
    def from_job(cls, job: Job) -> "JobView":
        source = job.source
        if isinstance(source, RepositorySource):
            repo_url, repo_slug = redact_url_credentials(source.repo_url), source.repo_slug
        else:
            repo_url, repo_slug = f"upload://{job.job_id}", None
        return cls(
            job_id=job.job_id,
            status=job.status,
            repo_url=repo_url,
            repo_slug=repo_slug,
            branch=job.branch,
            task_description=job.task_description,
            test_command=job.test_command,
            profile=job.profile,
            model=job.model,
            summary=job.summary,
            changed_files=list(job.changed_files),
            patch=job.patch,
            pull_request_url=job.pull_request_url,
            error=job.error,
            sandbox_path=job.sandbox_path,
            prompt_tokens=job.usage.prompt_tokens,
            cached_prompt_tokens=job.usage.cached_prompt_tokens,
            completion_tokens=job.usage.completion_tokens,
            total_tokens=job.usage.total_tokens,
            cost=job.usage.cost,
            logs=list(job.logs),
            result_zip_ready=job.result_archive is not None,
            has_uploaded_zip=job.is_upload,
            problem_files_count=len(job.problem_files),
            has_application_default_credentials=job.credentials.cloud_credentials is not None,
            has_git_ssh_private_key=job.credentials.ssh_private_key is not None,
            has_gitlab_personal_access_token=job.credentials.registry_token is not None,
            created_at=job.created_at,
            updated_at=job.updated_at,
        )
