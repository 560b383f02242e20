"""
Optimized versions server: turns HLS streams into downloadable files.
"""

import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from optimized_versions import __version__
from optimized_versions.config import Settings
from optimized_versions.execution.commands import get_command_template, get_probe_template
from optimized_versions.jobs.engine import JobEngine
from optimized_versions.routes import jobs
from optimized_versions.services.cleanup import CleanupService
from optimized_versions.services.jellyfin import JellyfinClient

logger = logging.getLogger(__name__)

health_router = APIRouter(tags=["health"])


@health_router.get("/health")
async def health():
    return {"service": "optimized-versions-server", "status": "running"}


def build_engine(settings: Settings) -> JobEngine:
    """Create a JobEngine from settings; the only place settings reach the core."""
    return JobEngine(
        cache_dir=settings.cache_dir,
        max_concurrent=settings.max_concurrent_jobs,
        command_template=get_command_template(
            settings.hardware_acceleration,
            ffmpeg_path=settings.ffmpeg_path,
            vaapi_device=settings.vaapi_device,
        ),
        probe_template=get_probe_template(settings.ffprobe_path),
    )


def create_app(
    settings: Optional[Settings] = None,
    engine: Optional[JobEngine] = None,
    jellyfin_client: Optional[JellyfinClient] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Configuration (read from the environment if omitted)
        engine: Pre-built engine (tests inject one with fake tools)
        jellyfin_client: Pre-built client (tests inject a mocked transport)
    """
    settings = settings or Settings()

    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        job_engine = engine or build_engine(settings)
        client = jellyfin_client
        if client is None and settings.jellyfin_url:
            client = JellyfinClient(settings.jellyfin_url)

        app.state.settings = settings
        app.state.job_engine = job_engine
        app.state.jellyfin_client = client

        logger.info(f"Cache dir: {job_engine.cache_dir}")
        logger.info(f"Max concurrent jobs: {job_engine.max_concurrent}")
        logger.info(f"Hardware acceleration: {settings.hardware_acceleration.value}")

        if client is not None:
            await client.check_connection()
        else:
            logger.warning("JELLYFIN_URL is not set: authentication and URL rewriting are disabled")

        cleanup = CleanupService(
            job_engine,
            retention=timedelta(hours=settings.file_retention_hours),
            interval=timedelta(minutes=settings.cleanup_interval_minutes),
        )
        cleanup.start()
        app.state.cleanup_service = cleanup

        yield

        logger.info("Shutting down optimized versions server")
        cleanup.stop()
        await job_engine.shutdown()
        if client is not None:
            await client.aclose()

    app = FastAPI(
        title="Optimized Versions Server",
        description="Converts HLS streams from Jellyfin into single downloadable files",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health_router)
    app.include_router(jobs.router)

    return app


app = create_app()


def run() -> None:
    import uvicorn

    uvicorn.run("optimized_versions.main:app", host="0.0.0.0", port=3000)


if __name__ == "__main__":
    run()
