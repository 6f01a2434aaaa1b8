"""Job dispatch behind a single interface.

The transport is chosen once from ``QUEUE_BACKEND``:

- ``local``: the in-process WorkerPool; the message carries the bytes.
  The API process is the only consumer, so it requeues unfinished
  records when it starts.
- ``celery``: ``process_video_task`` on the Redis broker; the message
  carries the storage key and the worker re-fetches the original.
"""

import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from vidproxy.core.config import settings
from vidproxy.core.database import async_session_maker
from vidproxy.core.logging import log_info
from vidproxy.core.metrics import JOBS_SUBMITTED_TOTAL
from vidproxy.modules.job.processor import ProcessingJob
from vidproxy.modules.job.worker_pool import WorkerPool
from vidproxy.modules.video.models import VideoStatus
from vidproxy.modules.video.repository import VideoRepository

logger = logging.getLogger(__name__)


class JobDispatcher(ABC):
    """Fire-and-forget submission of processing jobs."""

    transport: str = "abstract"

    async def start(self) -> None:
        """Prepare the transport."""

    async def shutdown(self, timeout: Optional[float] = None) -> bool:
        """Drain and stop the transport. Returns True when fully drained."""
        return True

    async def recover_unfinished(self) -> int:
        """Requeue jobs a previous run of this consumer left unfinished.

        Returns:
            Number of jobs requeued
        """
        return 0

    @abstractmethod
    async def dispatch(self, job_id: uuid.UUID, file_name: str, content: Optional[bytes] = None) -> bool:
        """Submit a job. Returns False if it was coalesced with an active one."""


class LocalDispatcher(JobDispatcher):
    """Dispatches into an in-process WorkerPool."""

    transport = "local"

    def __init__(
        self,
        pool: Optional[WorkerPool] = None,
        session_factory: Optional[Callable[[], AsyncSession]] = None,
    ):
        self.pool = pool or WorkerPool()
        self._session_factory = session_factory or async_session_maker

    async def start(self) -> None:
        await self.pool.start()

    async def shutdown(self, timeout: Optional[float] = None) -> bool:
        return await self.pool.shutdown(timeout=timeout)

    async def recover_unfinished(self) -> int:
        """Resubmit records left in ``uploading`` or ``processing``, oldest first.

        The pool lives in this process, so such records were abandoned when
        a previous process stopped. The original is re-fetched from storage.
        """
        recovered = 0
        async with self._session_factory() as session:
            repo = VideoRepository(session)
            for status in (VideoStatus.UPLOADING, VideoStatus.PROCESSING):
                for video in await repo.list_by_status(status):
                    if self.pool.submit(ProcessingJob(job_id=video.id, file_name=video.file_name)):
                        recovered += 1
        log_info(logger, f"Requeued {recovered} unfinished video job(s)", recovered=recovered)
        return recovered

    async def dispatch(self, job_id: uuid.UUID, file_name: str, content: Optional[bytes] = None) -> bool:
        return self.pool.submit(ProcessingJob(job_id=job_id, file_name=file_name, content=content))


class CeleryDispatcher(JobDispatcher):
    """Dispatches to Celery workers; bytes are never put on the broker."""

    transport = "celery"

    def __init__(self, task=None):
        if task is None:
            from vidproxy.modules.job.tasks import process_video_task
            task = process_video_task
        self.task = task

    async def dispatch(self, job_id: uuid.UUID, file_name: str, content: Optional[bytes] = None) -> bool:
        loop = asyncio.get_running_loop()
        async_result = await loop.run_in_executor(
            None,
            lambda: self.task.apply_async(args=[str(job_id), file_name], task_id=str(job_id)),
        )
        JOBS_SUBMITTED_TOTAL.labels(self.transport).inc()
        log_info(
            logger,
            f"Video job {job_id} sent to Celery",
            job_id=str(job_id),
            task_id=async_result.id,
        )
        return True


def create_dispatcher(backend: Optional[str] = None) -> JobDispatcher:
    """Build the dispatcher for ``backend`` (defaults to QUEUE_BACKEND)."""
    backend = (backend or settings.QUEUE_BACKEND).lower()
    if backend == "local":
        return LocalDispatcher()
    if backend == "celery":
        return CeleryDispatcher()
    raise ValueError(f"Unsupported queue backend: {backend!r}")


_dispatcher: Optional[JobDispatcher] = None


def get_dispatcher() -> JobDispatcher:
    """Get the process-wide dispatcher."""
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = create_dispatcher()
    return _dispatcher


def set_dispatcher(dispatcher: Optional[JobDispatcher]) -> None:
    global _dispatcher
    _dispatcher = dispatcher
