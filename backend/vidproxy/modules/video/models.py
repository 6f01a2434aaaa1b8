"""Video job record model.

One row per uploaded video, tracking it from upload through processing to a
terminal state, plus the outputs and probed metadata of a successful run.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import DateTime, Float, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from vidproxy.core.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class VideoStatus(str, Enum):
    """Lifecycle status of a video job."""

    UPLOADING = "uploading"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset((VideoStatus.COMPLETED.value, VideoStatus.FAILED.value))


class Video(Base):
    """Job record for one uploaded video.

    ``file_name`` is the storage key of the original and never changes;
    the low-res and thumbnail keys are derived from it.
    """

    __tablename__ = "videos"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4
    )

    # Upload information
    original_name: Mapped[str] = mapped_column(String(512), nullable=False)
    file_name: Mapped[str] = mapped_column(String(600), nullable=False, unique=True)
    file_size: Mapped[int] = mapped_column(Integer, nullable=False)
    mime_type: Mapped[str] = mapped_column(String(255), nullable=False)
    original_url: Mapped[str] = mapped_column(String(1024), nullable=False)

    # Processing outputs
    low_res_url: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    thumbnail_url: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)

    # Lifecycle
    status: Mapped[str] = mapped_column(
        String(50), default=VideoStatus.UPLOADING.value, nullable=False, index=True
    )
    processing_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Probed metadata
    duration: Mapped[Optional[float]] = mapped_column(Float, nullable=True)  # in seconds
    width: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    height: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False, index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False
    )

    def is_terminal(self) -> bool:
        """Check if the job reached completed or failed."""
        return self.status in TERMINAL_STATUSES

    def is_completed(self) -> bool:
        return self.status == VideoStatus.COMPLETED.value

    def is_failed(self) -> bool:
        return self.status == VideoStatus.FAILED.value

    def __repr__(self) -> str:
        return f"<Video(id={self.id}, file_name={self.file_name}, status={self.status})>"
