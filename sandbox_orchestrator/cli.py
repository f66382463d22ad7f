"""CLI entrypoint (Typer).

Goal:
- `sandbox-orchestrator serve` starts the HTTP API
- `sandbox-orchestrator run <dir|zip> "<task>"` runs one job locally and
  prints the summary, changed files and patch
"""

from __future__ import annotations

import asyncio
import io
import os
import uuid
import zipfile
from pathlib import Path

import typer

from sandbox_orchestrator.config import get_settings
from sandbox_orchestrator.jobs.processor import SandboxJobProcessor
from sandbox_orchestrator.llm.router import get_router
from sandbox_orchestrator.logging_utils import configure_logging
from sandbox_orchestrator.schemas import Job, JobStatus, SandboxProfile, UploadSource

app = typer.Typer(help="Sandbox orchestrator CLI.")


def zip_directory(directory: Path) -> bytes:
    """Zip ``directory`` in memory, leaving out ``.git``."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as bundle:
        for dirpath, dirnames, filenames in os.walk(directory):
            dirnames[:] = [d for d in dirnames if d != ".git"]
            for filename in filenames:
                path = Path(dirpath) / filename
                bundle.write(path, path.relative_to(directory).as_posix())
    return buffer.getvalue()


def load_source(path: Path) -> UploadSource:
    if path.is_dir():
        return UploadSource(archive_bytes=zip_directory(path), filename=f"{path.resolve().name}.zip")
    if path.is_file() and zipfile.is_zipfile(path):
        return UploadSource(archive_bytes=path.read_bytes(), filename=path.name)
    raise typer.BadParameter(f"{path} is neither a directory nor a zip archive")


@app.command()
def serve(
    host: str = typer.Option(None, help="Bind address (defaults to API_HOST)"),
    port: int = typer.Option(None, help="Port (defaults to API_PORT)"),
):
    """Start the HTTP API."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "sandbox_orchestrator.api.main:app",
        host=host or settings.api_host,
        port=port or settings.api_port,
    )


@app.command()
def run(
    path: Path = typer.Argument(..., help="Project directory or zip archive"),
    task: str = typer.Argument(..., help="What the agent should do"),
    test_command: str = typer.Option(None, "--test-command", help="Command the agent should use to verify"),
    economy: bool = typer.Option(False, "--economy", help="Use the ECONOMY profile"),
    model: str = typer.Option(None, "--model", help="Override the model"),
    output: Path = typer.Option(None, "--output", "-o", help="Write the modified project zip here"),
):
    """Run one job against a local project."""
    settings = get_settings()
    configure_logging(settings.debug)

    job = Job(
        job_id=f"cli-{uuid.uuid4().hex[:12]}",
        source=load_source(path),
        task_description=task,
        test_command=test_command,
        profile=SandboxProfile.ECONOMY if economy else SandboxProfile.STANDARD,
        model=model,
    )
    router = get_router()
    processor = SandboxJobProcessor(settings, router)

    async def _process() -> None:
        try:
            await processor.process(job)
        finally:
            await router.close()

    asyncio.run(_process())

    typer.echo(f"Job {job.job_id}: {job.status.value}")
    if job.summary:
        typer.echo(f"\nSummary:\n{job.summary}")
    if job.changed_files:
        typer.echo("\nChanged files:")
        for name in job.changed_files:
            typer.echo(f"  {name}")
    if job.patch:
        typer.echo(f"\n{job.patch}")
    if output is not None and job.result_archive is not None:
        output.write_bytes(job.result_archive)
        typer.echo(f"\nResult written to {output}")
    if job.status is JobStatus.FAILED:
        typer.echo(f"\nError: {job.error}", err=True)
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
