"""FastAPI routes for the sandbox orchestrator.

Endpoints:
- GET  /health                 - Liveness probe
- POST /jobs                   - Submit a job (201 new, 200 duplicate)
- GET  /jobs/{id}              - Job status, logs and results
- GET  /jobs/{id}/result-zip   - Modified project archive for upload jobs
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Body, Request
from fastapi.responses import JSONResponse, Response
from pydantic import ValidationError

from sandbox_orchestrator.jobs.registry import JobRegistry
from sandbox_orchestrator.schemas import JobCreateRequest, JobView


logger = logging.getLogger(__name__)
router = APIRouter()


def get_registry(request: Request) -> JobRegistry:
    return request.app.state.registry


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def _validation_message(error: ValidationError) -> str:
    first = error.errors()[0] if error.errors() else {}
    cause = (first.get("ctx") or {}).get("error")
    if cause is not None:
        return str(cause)
    location = ".".join(str(part) for part in first.get("loc", ()))
    message = first.get("msg", "invalid request")
    return f"{location}: {message}" if location else message


def _view(job, status_code: int) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=JobView.from_job(job).model_dump(mode="json", by_alias=True),
    )


# =============================================================================
# Health Check
# =============================================================================

@router.get("/health")
async def health() -> dict:
    """Health check endpoint."""
    return {"status": "ok"}


# =============================================================================
# Jobs Endpoints
# =============================================================================

@router.post("/jobs")
async def create_job(request: Request, payload: Any = Body(default=None)) -> JSONResponse:
    """Submit a job; processing continues in the background."""
    if not isinstance(payload, dict):
        return _error(400, "request body must be a JSON object")
    try:
        create = JobCreateRequest.model_validate(payload)
    except ValidationError as e:
        return _error(400, _validation_message(e))

    registry = get_registry(request)
    existing = registry.get(create.job_id)
    if existing is not None:
        logger.info(f"Job {create.job_id} already registered; returning its status")
        return _view(existing, 200)

    try:
        job = create.to_job()
    except ValueError as e:
        return _error(400, str(e))

    job, created = registry.submit(job)
    return _view(job, 201 if created else 200)


@router.get("/jobs/{job_id}")
async def get_job(job_id: str, request: Request) -> JSONResponse:
    """Current job view; stale RUNNING jobs are failed before answering."""
    job = get_registry(request).get(job_id)
    if job is None:
        return _error(404, "job not found")
    return _view(job, 200)


@router.get("/jobs/{job_id}/result-zip")
async def get_result_zip(job_id: str, request: Request) -> Response:
    """Download the modified project of an upload job."""
    job = get_registry(request).get(job_id)
    if job is None:
        return _error(404, "job not found")
    if job.result_archive is None:
        return _error(409, "result zip not available")
    filename = job.result_archive_filename or f"{job.job_id}-result.zip"
    return Response(
        content=job.result_archive,
        media_type="application/zip",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
