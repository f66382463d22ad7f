"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from sandbox_orchestrator.config import Settings, get_settings
from sandbox_orchestrator.jobs.processor import SandboxJobProcessor
from sandbox_orchestrator.jobs.registry import JobRegistry
from sandbox_orchestrator.llm.router import ModelRouter, get_router
from sandbox_orchestrator.logging_utils import configure_logging
from sandbox_orchestrator.api.routes import router


logger = logging.getLogger(__name__)


def create_app(
    settings: Settings | None = None,
    processor: SandboxJobProcessor | None = None,
) -> FastAPI:
    """Build the application; tests pass their own settings and processor."""
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan handler."""
        logger.info(f"Starting {settings.app_name} v{settings.app_version}")
        model_router: ModelRouter | None = None
        job_processor = processor
        if job_processor is None:
            model_router = get_router()
            job_processor = SandboxJobProcessor(settings, model_router)
        app.state.registry = JobRegistry(settings, job_processor)

        yield

        logger.info("Shutting down...")
        await app.state.registry.shutdown()
        if model_router is not None:
            await model_router.close()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Sandbox orchestrator - runs coding agents against isolated workspaces",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(router)

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "name": settings.app_name,
            "version": settings.app_version,
            "docs": "/docs",
        }

    return app


configure_logging(get_settings().debug)
app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "sandbox_orchestrator.api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
    )
