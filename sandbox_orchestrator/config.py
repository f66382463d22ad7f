"""Application settings using pydantic-settings."""

from __future__ import annotations

import logging
import tempfile
from functools import lru_cache
from pathlib import Path

from pydantic import Field, PositiveFloat, PositiveInt, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-5-codex"
DEFAULT_ECONOMY_MODEL = "gpt-4.1-mini"

# Secret mount points checked when no key is present in the environment.
API_KEY_FILE_CANDIDATES = (
    "/run/secrets/openai-token/openai_api_key",
    "/run/secrets/openai-token/open_api_key",
)


class Settings(BaseSettings):
    """Orchestrator configuration loaded once from environment variables.

    The object is frozen: components receive it explicitly instead of
    reading ``os.environ`` on their own.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    # ==========================================================================
    # Application
    # ==========================================================================
    app_name: str = "Sandbox Orchestrator"
    app_version: str = "0.1.0"
    debug: bool = False

    # ==========================================================================
    # Workspace
    # ==========================================================================
    sandbox_workdir: Path = Field(default_factory=lambda: Path(tempfile.gettempdir()))
    sandbox_keep_workspace: bool = False

    # ==========================================================================
    # Context budget (standard profile)
    # ==========================================================================
    task_description_max_chars: PositiveInt = 12_000
    tool_output_string_limit: PositiveInt = 12_000
    tool_output_serialized_limit: PositiveInt = 60_000
    http_tool_max_response_chars: PositiveInt = 20_000

    # ==========================================================================
    # Context budget (economy profile, clamped to the standard caps)
    # ==========================================================================
    economy_task_description_max_chars: PositiveInt | None = None
    economy_tool_output_string_limit: PositiveInt | None = None
    economy_tool_output_serialized_limit: PositiveInt | None = None
    economy_http_tool_max_response_chars: PositiveInt | None = None

    # ==========================================================================
    # Tools
    # ==========================================================================
    http_tool_timeout_seconds: PositiveFloat = 15.0
    run_shell_timeout_seconds: PositiveFloat = 300.0
    run_shell_max_buffer_bytes: PositiveInt = 5 * 1024 * 1024
    long_build_timeout_seconds: PositiveFloat = 15 * 60.0

    # ==========================================================================
    # Jobs
    # ==========================================================================
    job_stale_timeout_seconds: PositiveFloat = 6 * 60 * 60.0

    # ==========================================================================
    # GitHub
    # ==========================================================================
    github_api_url: str = "https://api.github.com"
    github_clone_token: str | None = None
    github_token: str | None = None
    github_pr_token: str | None = None
    github_clone_username: str = "x-access-token"

    # ==========================================================================
    # Package registry
    # ==========================================================================
    registry_url_pattern: str = r"gitlab\.[^/\s<]+/-/package-router/maven"
    registry_default_server_id: str = "gitlab-maven"

    # ==========================================================================
    # Model
    # ==========================================================================
    cifix_model: str = DEFAULT_MODEL
    cifix_model_economy: str | None = None
    openai_api_key: str | None = None
    openai_api_key_file: Path | None = None
    openai_base_url: str = "https://api.openai.com/v1"
    openai_timeout_seconds: PositiveFloat = 600.0

    # ==========================================================================
    # API
    # ==========================================================================
    api_host: str = "0.0.0.0"
    api_port: int = 8083
    cors_origins: list[str] = ["*"]

    @model_validator(mode="after")
    def _default_economy_model(self) -> "Settings":
        if not (self.cifix_model_economy or "").strip():
            economy = DEFAULT_ECONOMY_MODEL if self.cifix_model == DEFAULT_MODEL else self.cifix_model
            object.__setattr__(self, "cifix_model_economy", economy)
        return self

    @property
    def github_tokens(self) -> list[tuple[str, str | None]]:
        """Configured GitHub tokens in resolution order, with their source names."""
        return [
            ("GITHUB_CLONE_TOKEN", self.github_clone_token),
            ("GITHUB_TOKEN", self.github_token),
            ("GITHUB_PR_TOKEN", self.github_pr_token),
        ]


def resolve_api_key(settings: Settings) -> str | None:
    """Resolve the model API key from the environment or a secret file."""
    if settings.openai_api_key and settings.openai_api_key.strip():
        logger.info("OPENAI_API_KEY found in the environment")
        return settings.openai_api_key.strip()

    candidates = [str(settings.openai_api_key_file)] if settings.openai_api_key_file else []
    candidates.extend(API_KEY_FILE_CANDIDATES)
    for candidate in candidates:
        try:
            content = Path(candidate).read_text(encoding="utf-8").strip()
        except (FileNotFoundError, PermissionError, IsADirectoryError):
            continue
        except OSError as exc:
            logger.warning(f"Failed to read API key file {candidate}: {exc}")
            continue
        if content:
            logger.info(f"OPENAI_API_KEY loaded from {candidate}")
            return content

    logger.warning(
        f"OPENAI_API_KEY not configured; jobs will not reach the model (checked: {', '.join(candidates)})"
    )
    return None


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
