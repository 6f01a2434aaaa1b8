"""Pydantic schemas for the video API."""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from vidproxy.modules.video.models import VideoStatus

MAX_PAGE_SIZE = 100


class VideoResponse(BaseModel):
    """Response schema for a video job record."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    original_name: str
    file_name: str
    file_size: int
    mime_type: str
    original_url: str
    low_res_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    status: VideoStatus
    duration: Optional[float] = None
    width: Optional[int] = None
    height: Optional[int] = None
    processing_error: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class VideoUploadResponse(BaseModel):
    """Response schema for an accepted upload."""

    id: uuid.UUID
    status: VideoStatus
    file_name: str
    original_url: str
    message: str = "Video uploaded, processing started"


class VideoListResponse(BaseModel):
    """Paginated list of video job records."""

    items: list[VideoResponse]
    total: int
    page: int = Field(..., ge=1)
    limit: int = Field(..., ge=1, le=MAX_PAGE_SIZE)
    total_pages: int


class DownloadUrlsResponse(BaseModel):
    """Signed URLs for the original and, once processed, its outputs."""

    original: str
    low_res: Optional[str] = None
    thumbnail: Optional[str] = None
    expires_in: int


class HealthResponse(BaseModel):
    status: str
    storage_backend: str
    storage_healthy: bool
    error: Optional[str] = None
