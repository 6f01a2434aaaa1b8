"""Video repository for database operations.

All writes are keyed by job id and are safe to apply more than once.
"""

import uuid
from typing import Any, Optional

from sqlalchemy import delete, func as sql_func, select
from sqlalchemy.ext.asyncio import AsyncSession

from vidproxy.core.errors import RecordNotFound
from vidproxy.modules.video.models import Video, VideoStatus

# Columns a processing result may set
RESULT_FIELDS = frozenset((
    "status",
    "low_res_url",
    "thumbnail_url",
    "duration",
    "width",
    "height",
    "processing_error",
))


class VideoRepository:
    """Repository for Video job records."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session."""
        self.session = session

    # ==================== Create ====================

    async def create_job(
        self,
        original_name: str,
        file_name: str,
        file_size: int,
        mime_type: str,
        original_url: str,
        job_id: Optional[uuid.UUID] = None,
    ) -> Video:
        """Create a job record in the ``uploading`` state.

        Args:
            original_name: Filename as uploaded by the client
            file_name: Stored filename (storage key of the original)
            file_size: Size of the original in bytes
            mime_type: MIME type reported at upload
            original_url: Public URL of the original
            job_id: Explicit id, generated when omitted

        Returns:
            Video: Created record
        """
        video = Video(
            id=job_id or uuid.uuid4(),
            original_name=original_name,
            file_name=file_name,
            file_size=file_size,
            mime_type=mime_type,
            original_url=original_url,
            status=VideoStatus.UPLOADING.value,
        )
        self.session.add(video)
        await self.session.flush()
        return video

    # ==================== Read ====================

    async def get_job(self, job_id: uuid.UUID, for_update: bool = False) -> Optional[Video]:
        """Get a job record by id, or None."""
        query = select(Video).where(Video.id == job_id)
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def get_job_or_raise(self, job_id: uuid.UUID, for_update: bool = False) -> Video:
        video = await self.get_job(job_id, for_update=for_update)
        if video is None:
            raise RecordNotFound(job_id)
        return video

    async def list_by_status(self, status: VideoStatus) -> list[Video]:
        """List job records in the given status, oldest first."""
        result = await self.session.execute(
            select(Video)
            .where(Video.status == VideoStatus(status).value)
            .order_by(Video.created_at.asc())
        )
        return list(result.scalars().all())

    async def list_jobs(self, page: int = 1, limit: int = 10) -> tuple[list[Video], int]:
        """List job records newest first.

        Args:
            page: 1-based page number
            limit: Page size

        Returns:
            tuple: (records on the page, total record count)
        """
        offset = (page - 1) * limit
        result = await self.session.execute(
            select(Video).order_by(Video.created_at.desc()).offset(offset).limit(limit)
        )
        count_result = await self.session.execute(select(sql_func.count(Video.id)))
        return list(result.scalars().all()), count_result.scalar_one()

    # ==================== Update ====================

    async def update_status(self, job_id: uuid.UUID, status: VideoStatus) -> Video:
        """Set the status column only."""
        video = await self.get_job_or_raise(job_id, for_update=True)
        video.status = VideoStatus(status).value
        await self.session.flush()
        return video

    async def update_result(self, job_id: uuid.UUID, fields: dict[str, Any]) -> Video:
        """Write processing result fields.

        Applying the same fields twice leaves the record unchanged apart
        from ``updated_at``.

        Raises:
            RecordNotFound: Unknown job id
            ValueError: A field that is not a result column
        """
        unknown = set(fields) - RESULT_FIELDS
        if unknown:
            raise ValueError(f"Not a result field: {', '.join(sorted(unknown))}")

        video = await self.get_job_or_raise(job_id, for_update=True)
        for key, value in fields.items():
            if key == "status" and value is not None:
                value = VideoStatus(value).value
            setattr(video, key, value)
        await self.session.flush()
        return video

    # ==================== Delete ====================

    async def delete_job(self, job_id: uuid.UUID) -> bool:
        """Delete a job record. Returns False if it did not exist."""
        result = await self.session.execute(delete(Video).where(Video.id == job_id))
        await self.session.flush()
        return result.rowcount > 0
