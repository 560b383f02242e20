"""
Job endpoints.

HTTP adapter over the JobEngine façade. Every route requires a
Jellyfin token when a Jellyfin URL is configured.

Negative results (unknown id, job not finished) map to 404/400;
cancellation never errors.
"""

import logging
import os
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request
from fastapi.responses import FileResponse
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from optimized_versions.jobs.engine import JobEngine
from optimized_versions.jobs.models import Job, EngineStatistics
from optimized_versions.services.jellyfin import JellyfinClient, rewrite_source_url

logger = logging.getLogger(__name__)

MEDIA_TYPES: Dict[str, str] = {
    "mp4": "video/mp4",
    "mkv": "video/x-matroska",
    "mov": "video/quicktime",
    "ts": "video/mp2t",
}


async def require_jellyfin_auth(
    request: Request,
    authorization: Optional[str] = Header(default=None),
) -> None:
    """Reject requests whose Authorization header Jellyfin does not accept."""
    client: Optional[JellyfinClient] = request.app.state.jellyfin_client
    if client is None:
        return

    if not authorization:
        raise HTTPException(status_code=401, detail="Missing Authorization header")

    if not await client.validate_credentials(authorization):
        raise HTTPException(status_code=401, detail="Authentication failed")


router = APIRouter(tags=["jobs"], dependencies=[Depends(require_jellyfin_auth)])


def get_engine(request: Request) -> JobEngine:
    return request.app.state.job_engine


class OptimizeRequest(BaseModel):
    """Request body for POST /optimize-version."""

    model_config = ConfigDict(extra="ignore", alias_generator=to_camel, populate_by_name=True)

    url: str
    file_extension: Optional[str] = None
    device_id: Optional[str] = None
    item_id: Optional[str] = None
    item: Optional[Any] = None


class OptimizeResponse(BaseModel):
    id: str


class MessageResponse(BaseModel):
    message: str


class DeleteCacheResponse(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    message: str
    removed_files: int


# ============================================================================
# ROUTES
# ============================================================================

@router.post("/optimize-version", response_model=OptimizeResponse)
async def optimize_version(body: OptimizeRequest, request: Request):
    """
    Queue a new optimize job.

    The source URL is rewritten onto the configured Jellyfin address.
    """
    logger.info(f"Optimize request for URL: {body.url[:50]}...")
    engine = get_engine(request)
    source_url = rewrite_source_url(body.url, request.app.state.settings.jellyfin_url)

    try:
        job_id = engine.submit(
            source_url,
            file_extension=body.file_extension or "mp4",
            device_id=body.device_id,
            item_id=body.item_id,
            item=body.item,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return OptimizeResponse(id=job_id)


@router.get("/job-status/{job_id}", response_model=Job)
async def job_status(job_id: str, request: Request):
    job = get_engine(request).get_status(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail=f"Job not found: {job_id}")
    return job


@router.post("/start-job/{job_id}", response_model=MessageResponse)
async def start_job(job_id: str, request: Request):
    """Manually move a queued job to the front of the backlog."""
    logger.info(f"Manual start request for job: {job_id}")

    if not get_engine(request).start_now(job_id):
        raise HTTPException(status_code=400, detail="Job not found or already started")
    return MessageResponse(message="Job started successfully")


@router.delete("/cancel-job/{job_id}", response_model=MessageResponse)
async def cancel_job(job_id: str, request: Request):
    logger.info(f"Cancellation request for job: {job_id}")

    if get_engine(request).cancel(job_id):
        return MessageResponse(message="Job cancelled successfully")
    return MessageResponse(message="Job not found or already completed")


@router.get("/all-jobs", response_model=List[Job])
async def all_jobs(request: Request, device_id: Optional[str] = Query(default=None, alias="deviceId")):
    return get_engine(request).list_jobs(device_id=device_id)


@router.get("/download/{job_id}")
async def download(job_id: str, request: Request):
    """
    Stream a completed artifact.

    The file is left in place; the retention sweep removes it later.
    """
    engine = get_engine(request)
    file_path = engine.get_artifact_path(job_id)

    if not file_path or not os.path.isfile(file_path):
        raise HTTPException(status_code=404, detail="File not found or job not completed")

    job = engine.get_status(job_id)
    extension = job.file_extension if job else "mp4"
    logger.info(f"Download request for job: {job_id}")

    return FileResponse(
        file_path,
        media_type=MEDIA_TYPES.get(extension, "application/octet-stream"),
        filename=f"transcoded_{job_id}.{extension}",
    )


@router.get("/statistics", response_model=EngineStatistics)
async def statistics(request: Request):
    return await get_engine(request).get_statistics()


@router.delete("/delete-cache", response_model=DeleteCacheResponse)
async def delete_cache(request: Request):
    removed = await get_engine(request).delete_cache()
    return DeleteCacheResponse(message="Cache deleted successfully", removed_files=removed)
