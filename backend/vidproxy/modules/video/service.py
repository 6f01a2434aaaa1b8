"""Video service: upload submission and job record management."""

import logging
import math
import mimetypes
import uuid
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from vidproxy.core.config import settings
from vidproxy.core.errors import FileTooLarge, InputDefect, RecordNotFound, StorageNotFound, UnsupportedFormat
from vidproxy.core.logging import log_info, log_warning
from vidproxy.core.storage import StorageService
from vidproxy.modules.job.dispatcher import JobDispatcher, get_dispatcher
from vidproxy.modules.video.models import Video
from vidproxy.modules.video.naming import file_extension, low_res_key, stored_file_name, thumbnail_key
from vidproxy.modules.video.repository import VideoRepository

logger = logging.getLogger(__name__)


def validate_upload(
    original_name: str,
    file_size: int,
    max_file_size: Optional[int] = None,
    allowed_formats: Optional[list[str]] = None,
) -> None:
    """Reject uploads that can never be processed.

    Raises:
        UnsupportedFormat: Extension not in the allowed formats
        FileTooLarge: More than ``max_file_size`` bytes
        InputDefect: Empty file or missing name
    """
    max_file_size = max_file_size or settings.MAX_FILE_SIZE
    allowed = allowed_formats if allowed_formats is not None else settings.allowed_video_formats

    if not original_name:
        raise InputDefect("Missing file name")
    extension = file_extension(original_name)
    if extension not in allowed:
        raise UnsupportedFormat(
            f"Unsupported video format '{extension or original_name}'. "
            f"Allowed formats: {', '.join(allowed)}"
        )
    if file_size <= 0:
        raise InputDefect("Uploaded file is empty")
    if file_size > max_file_size:
        raise FileTooLarge(
            f"File size {file_size} bytes exceeds the maximum of {max_file_size} bytes"
        )


def total_pages(total: int, limit: int) -> int:
    return math.ceil(total / limit) if total else 0


class VideoSubmissionService:
    """Accepts uploads and manages video job records."""

    def __init__(
        self,
        session: AsyncSession,
        storage: Optional[StorageService] = None,
        dispatcher: Optional[JobDispatcher] = None,
    ):
        self.session = session
        self.repo = VideoRepository(session)
        self.storage = storage or StorageService()
        self._dispatcher = dispatcher

    @property
    def dispatcher(self) -> JobDispatcher:
        if self._dispatcher is None:
            self._dispatcher = get_dispatcher()
        return self._dispatcher

    # ==================== Submission ====================

    async def submit_upload(
        self,
        original_name: str,
        content: bytes,
        mime_type: Optional[str] = None,
    ) -> Video:
        """Store an upload, create its job record and queue it for processing.

        The record is committed before dispatch so a worker can always
        claim it.

        Args:
            original_name: Filename as uploaded by the client
            content: File bytes
            mime_type: Declared MIME type, guessed from the name when missing

        Returns:
            Video: The new record in the ``uploading`` state
        """
        validate_upload(original_name, len(content))

        file_name = stored_file_name(original_name)
        mime_type = mime_type or mimetypes.guess_type(original_name)[0] or "application/octet-stream"

        stored = await self.storage.put(file_name, content, mime_type)
        video = await self.repo.create_job(
            original_name=original_name,
            file_name=file_name,
            file_size=len(content),
            mime_type=mime_type,
            original_url=stored.url,
        )
        await self.session.commit()

        await self.dispatcher.dispatch(video.id, file_name, content)
        log_info(
            logger,
            f"Video {video.id} uploaded as {file_name}, processing queued",
            job_id=str(video.id),
            file_name=file_name,
            file_size=len(content),
            transport=self.dispatcher.transport,
        )
        return video

    async def resubmit(self, video_id: uuid.UUID) -> Video:
        """Queue an existing record for another run (original fetched from storage)."""
        video = await self.get_video(video_id)
        await self.dispatcher.dispatch(video.id, video.file_name, None)
        log_info(logger, f"Video {video.id} resubmitted for processing", job_id=str(video.id))
        return video

    # ==================== Queries ====================

    async def get_video(self, video_id: uuid.UUID) -> Video:
        video = await self.repo.get_job(video_id)
        if video is None:
            raise RecordNotFound(video_id)
        return video

    async def list_videos(self, page: int = 1, limit: int = 10) -> tuple[list[Video], int]:
        return await self.repo.list_jobs(page=page, limit=limit)

    async def get_download_urls(self, video_id: uuid.UUID, expires_in: Optional[int] = None) -> dict:
        """Signed URLs for the original and, when completed, the outputs."""
        video = await self.get_video(video_id)
        expires_in = expires_in or settings.SIGNED_URL_TTL_SECONDS

        urls = {
            "original": await self.storage.sign(video.file_name, expires_in),
            "low_res": None,
            "thumbnail": None,
            "expires_in": expires_in,
        }
        if video.is_completed():
            urls["low_res"] = await self.storage.sign(low_res_key(video.file_name), expires_in)
            urls["thumbnail"] = await self.storage.sign(thumbnail_key(video.file_name), expires_in)
        return urls

    # ==================== Deletion ====================

    async def delete_video(self, video_id: uuid.UUID, purge_files: bool = False) -> None:
        """Delete a job record, and optionally its stored files.

        Raises:
            RecordNotFound: Unknown id
        """
        video = await self.get_video(video_id)
        if purge_files:
            for key in (video.file_name, low_res_key(video.file_name), thumbnail_key(video.file_name)):
                try:
                    await self.storage.delete(key)
                except StorageNotFound:
                    log_warning(logger, f"Stored file {key} already absent", job_id=str(video_id))

        if not await self.repo.delete_job(video_id):
            raise RecordNotFound(video_id)
        await self.session.commit()
        log_info(logger, f"Video {video_id} deleted", job_id=str(video_id), purge_files=purge_files)
