"""Job lifecycle state machine.

uploading -> processing -> completed | failed

Each transition runs in its own transaction and locks the row it changes.
Re-applying ``complete`` to a completed job or ``fail`` to a failed job is
accepted and rewrites the same values, which keeps at-least-once delivery
harmless. Claiming a finished job starts a fresh run over it; derived
output keys make the rerun overwrite the previous outputs.
"""

import logging
import uuid
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from vidproxy.core.database import async_session_maker
from vidproxy.core.errors import InvalidTransition
from vidproxy.core.logging import log_info
from vidproxy.modules.video.models import Video, VideoStatus
from vidproxy.modules.video.repository import VideoRepository

logger = logging.getLogger(__name__)

UPLOADING = VideoStatus.UPLOADING.value
PROCESSING = VideoStatus.PROCESSING.value
COMPLETED = VideoStatus.COMPLETED.value
FAILED = VideoStatus.FAILED.value

# target status -> statuses it may be entered from
ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    PROCESSING: frozenset((UPLOADING, PROCESSING, FAILED, COMPLETED)),
    COMPLETED: frozenset((PROCESSING, COMPLETED)),
    FAILED: frozenset((PROCESSING, FAILED)),
}

_CLEARED_RESULT = {
    "low_res_url": None,
    "thumbnail_url": None,
    "duration": None,
    "width": None,
    "height": None,
    "processing_error": None,
}


def can_transition(current: str, target: str) -> bool:
    """Check whether ``current -> target`` is a legal lifecycle move."""
    return current in ALLOWED_TRANSITIONS.get(target, frozenset())


class JobStateMachine:
    """Applies lifecycle transitions to job records."""

    def __init__(self, session_factory: Optional[Callable[[], AsyncSession]] = None):
        self._session_factory = session_factory or async_session_maker

    async def _transition(self, job_id: uuid.UUID, target: str, fields: dict) -> Video:
        async with self._session_factory() as session:
            async with session.begin():
                repo = VideoRepository(session)
                video = await repo.get_job_or_raise(job_id, for_update=True)
                current = video.status
                if not can_transition(current, target):
                    raise InvalidTransition(job_id, current, target)
                video = await repo.update_result(job_id, {"status": target, **fields})
            log_info(
                logger,
                f"Video job {job_id}: {current} -> {target}",
                job_id=str(job_id),
                from_status=current,
                to_status=target,
            )
            return video

    async def claim(self, job_id: uuid.UUID) -> Video:
        """Mark the job as being processed by a worker.

        Results of a previous run are cleared: metadata is only kept on
        completed records and the error only on failed ones.
        """
        return await self._transition(job_id, PROCESSING, dict(_CLEARED_RESULT))

    async def complete(
        self,
        job_id: uuid.UUID,
        low_res_url: str,
        thumbnail_url: str,
        duration: float,
        width: int,
        height: int,
    ) -> Video:
        """Record a successful run: outputs, metadata, error cleared."""
        return await self._transition(
            job_id,
            COMPLETED,
            {
                "low_res_url": low_res_url,
                "thumbnail_url": thumbnail_url,
                "duration": duration,
                "width": width,
                "height": height,
                "processing_error": None,
            },
        )

    async def fail(self, job_id: uuid.UUID, error_message: str) -> Video:
        """Record a failed run: error set, outputs and metadata cleared."""
        return await self._transition(
            job_id,
            FAILED,
            {**_CLEARED_RESULT, "processing_error": error_message or "Unknown processing error"},
        )
