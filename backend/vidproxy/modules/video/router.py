"""Video API router.

Upload, listing, lookup, deletion, signed download URLs and storage health.
"""

import uuid
from typing import NoReturn

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from vidproxy.core.config import settings
from vidproxy.core.database import get_session
from vidproxy.core.errors import (
    FileTooLarge,
    InputDefect,
    PipelineError,
    RecordNotFound,
    StorageError,
    StorageNotFound,
    StoragePermissionDenied,
)
from vidproxy.core.storage import StorageService
from vidproxy.modules.video.schemas import (
    MAX_PAGE_SIZE,
    DownloadUrlsResponse,
    HealthResponse,
    VideoListResponse,
    VideoResponse,
    VideoUploadResponse,
)
from vidproxy.modules.video.service import VideoSubmissionService, total_pages

router = APIRouter(prefix="/videos", tags=["videos"])


def get_video_service(session: AsyncSession = Depends(get_session)) -> VideoSubmissionService:
    return VideoSubmissionService(session)


def _raise_http(error: PipelineError) -> NoReturn:
    """Translate a pipeline error into an HTTP error response."""
    if isinstance(error, InputDefect):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=error.message)
    if isinstance(error, (RecordNotFound, StorageNotFound)):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=error.message)
    if isinstance(error, StoragePermissionDenied):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=error.message)
    if isinstance(error, StorageError):
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=error.message)
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=error.message)


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """Check that the storage backend is reachable."""
    health = await StorageService().health_check()
    return HealthResponse(
        status="ok" if health.healthy else "degraded",
        storage_backend=health.backend,
        storage_healthy=health.healthy,
        error=health.error,
    )


@router.post("", response_model=VideoUploadResponse, status_code=status.HTTP_201_CREATED)
async def upload_video(
    video: UploadFile = File(...),
    service: VideoSubmissionService = Depends(get_video_service),
):
    """Upload a video and queue it for processing."""
    try:
        if video.size is not None and video.size > settings.MAX_FILE_SIZE:
            raise FileTooLarge(
                f"File size {video.size} bytes exceeds the maximum of {settings.MAX_FILE_SIZE} bytes"
            )
        content = await video.read()
        record = await service.submit_upload(
            original_name=video.filename or "",
            content=content,
            mime_type=video.content_type,
        )
    except PipelineError as e:
        _raise_http(e)

    return VideoUploadResponse(
        id=record.id,
        status=record.status,
        file_name=record.file_name,
        original_url=record.original_url,
    )


@router.get("", response_model=VideoListResponse)
async def list_videos(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=MAX_PAGE_SIZE),
    service: VideoSubmissionService = Depends(get_video_service),
):
    """List videos, newest first."""
    items, total = await service.list_videos(page=page, limit=limit)
    return VideoListResponse(
        items=[VideoResponse.model_validate(item) for item in items],
        total=total,
        page=page,
        limit=limit,
        total_pages=total_pages(total, limit),
    )


@router.get("/{video_id}", response_model=VideoResponse)
async def get_video(
    video_id: uuid.UUID,
    service: VideoSubmissionService = Depends(get_video_service),
):
    """Get a video with its processing status."""
    try:
        return await service.get_video(video_id)
    except PipelineError as e:
        _raise_http(e)


@router.post("/{video_id}/reprocess", response_model=VideoResponse, status_code=status.HTTP_202_ACCEPTED)
async def reprocess_video(
    video_id: uuid.UUID,
    service: VideoSubmissionService = Depends(get_video_service),
):
    """Queue an existing video for another processing run."""
    try:
        return await service.resubmit(video_id)
    except PipelineError as e:
        _raise_http(e)


@router.delete("/{video_id}", status_code=status.HTTP_200_OK)
async def delete_video(
    video_id: uuid.UUID,
    purge_files: bool = Query(False),
    service: VideoSubmissionService = Depends(get_video_service),
):
    """Delete a video record, optionally with its stored files."""
    try:
        await service.delete_video(video_id, purge_files=purge_files)
    except PipelineError as e:
        _raise_http(e)
    return {"message": "Video deleted"}


@router.get("/{video_id}/download-url", response_model=DownloadUrlsResponse)
async def get_download_urls(
    video_id: uuid.UUID,
    service: VideoSubmissionService = Depends(get_video_service),
):
    """Signed URLs for the original and, once processed, the low-res and thumbnail."""
    try:
        return await service.get_download_urls(video_id)
    except PipelineError as e:
        _raise_http(e)
