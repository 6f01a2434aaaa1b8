"""In-process worker pool.

A fixed number of asyncio worker slots consume one shared queue. Failed
attempts that should be retried are re-enqueued after their backoff delay
by a timer task, so a waiting retry never holds a slot. A job id is active
from submission until it reaches a terminal outcome; submitting an id that
is already active is a no-op.
"""

import asyncio
import logging
import time
import uuid
from collections import OrderedDict
from dataclasses import dataclass
from typing import Optional

from vidproxy.core.config import settings
from vidproxy.core.logging import log_error, log_info, log_warning
from vidproxy.core.metrics import JOBS_SUBMITTED_TOTAL, QUEUE_DEPTH, WORKERS_BUSY
from vidproxy.modules.job.processor import AttemptOutcome, JobProcessor, ProcessingJob

logger = logging.getLogger(__name__)


@dataclass
class FinishedJob:
    """Bookkeeping entry for a job that left the pool."""
    job_id: uuid.UUID
    outcome: str
    attempts: int
    finished_at: float


class WorkerPool:
    """Bounded pool of asyncio workers with delayed retries."""

    def __init__(
        self,
        processor: Optional[JobProcessor] = None,
        size: Optional[int] = None,
        retention_count: Optional[int] = None,
        retention_seconds: Optional[float] = None,
    ):
        self.processor = processor or JobProcessor()
        self.size = size or settings.WORKER_POOL_SIZE
        self.retention_count = retention_count if retention_count is not None else settings.QUEUE_RETENTION_COUNT
        self.retention_seconds = (
            retention_seconds if retention_seconds is not None else settings.QUEUE_RETENTION_SECONDS
        )

        self._queue: Optional[asyncio.Queue] = None
        self._workers: list[asyncio.Task] = []
        self._retry_timers: set[asyncio.Task] = set()
        self._active: set[uuid.UUID] = set()
        self._finished: "OrderedDict[uuid.UUID, FinishedJob]" = OrderedDict()
        self._idle: Optional[asyncio.Event] = None
        self._accepting = False
        self._busy = 0

    # ==================== Lifecycle ====================

    @property
    def running(self) -> bool:
        return bool(self._workers)

    @property
    def accepting(self) -> bool:
        return self._accepting

    async def start(self) -> None:
        """Start the worker slots."""
        if self._workers:
            return
        self._queue = asyncio.Queue()
        self._idle = asyncio.Event()
        self._idle.set()
        self._accepting = True
        self._workers = [
            asyncio.create_task(self._worker(i), name=f"video-worker-{i}")
            for i in range(self.size)
        ]
        log_info(logger, f"Worker pool started with {self.size} slot(s)", pool_size=self.size)

    async def shutdown(self, timeout: Optional[float] = None) -> bool:
        """Stop accepting jobs, drain, then stop the worker slots.

        Waits for queued jobs, running attempts and pending retries.

        Args:
            timeout: Maximum seconds to wait for the drain, None waits forever

        Returns:
            True if the pool drained completely, False if jobs were abandoned
        """
        if not self._workers:
            return True
        self._accepting = False
        log_info(logger, f"Draining worker pool ({len(self._active)} active job(s))")

        drained = True
        try:
            await asyncio.wait_for(self._idle.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            drained = False
            log_warning(
                logger,
                f"Worker pool drain timed out; abandoning {len(self._active)} job(s)",
                abandoned=[str(job_id) for job_id in self._active],
            )

        for timer in list(self._retry_timers):
            timer.cancel()
        for worker in self._workers:
            worker.cancel()
        await asyncio.gather(*self._workers, *self._retry_timers, return_exceptions=True)
        self._workers = []
        self._retry_timers.clear()
        WORKERS_BUSY.set(0)
        QUEUE_DEPTH.set(0)
        log_info(logger, "Worker pool stopped")
        return drained

    async def wait_idle(self) -> None:
        """Wait until no job is queued, running or waiting for a retry."""
        if self._idle is not None:
            await self._idle.wait()

    # ==================== Submission ====================

    def submit(self, job: ProcessingJob) -> bool:
        """Enqueue a job without waiting for it.

        Returns:
            False if the id is already active in the pool

        Raises:
            RuntimeError: The pool is not started or is draining
        """
        if not self._accepting or self._queue is None:
            raise RuntimeError("Worker pool is not accepting jobs")
        if job.job_id in self._active:
            log_info(logger, f"Video job {job.job_id} already queued; duplicate ignored", job_id=str(job.job_id))
            return False

        self._active.add(job.job_id)
        self._idle.clear()
        self._queue.put_nowait((job, 1))
        QUEUE_DEPTH.set(self._queue.qsize())
        JOBS_SUBMITTED_TOTAL.labels("local").inc()
        return True

    def is_active(self, job_id: uuid.UUID) -> bool:
        return job_id in self._active

    def finished(self, job_id: uuid.UUID) -> Optional[FinishedJob]:
        """Bookkeeping entry for a finished job, while retained."""
        return self._finished.get(job_id)

    @property
    def finished_count(self) -> int:
        return len(self._finished)

    def stats(self) -> dict:
        return {
            "size": self.size,
            "busy": self._busy,
            "queued": self._queue.qsize() if self._queue else 0,
            "active": len(self._active),
            "pending_retries": len(self._retry_timers),
            "finished_retained": len(self._finished),
            "accepting": self._accepting,
        }

    # ==================== Workers ====================

    async def _worker(self, index: int) -> None:
        while True:
            job, attempt = await self._queue.get()
            QUEUE_DEPTH.set(self._queue.qsize())
            self._busy += 1
            WORKERS_BUSY.set(self._busy)
            try:
                await self._run_attempt(job, attempt)
            finally:
                self._busy -= 1
                WORKERS_BUSY.set(self._busy)
                self._queue.task_done()

    async def _run_attempt(self, job: ProcessingJob, attempt: int) -> None:
        try:
            result = await self.processor.process(job, attempt)
        except Exception as e:
            log_error(
                logger,
                f"Video job {job.job_id}: could not record outcome of attempt {attempt}",
                exception=e,
                job_id=str(job.job_id),
            )
            self._finish(job.job_id, "error", attempt)
            return

        if result.outcome == AttemptOutcome.RETRY:
            timer = asyncio.create_task(self._requeue_after(result.delay or 0.0, job, attempt + 1))
            self._retry_timers.add(timer)
            timer.add_done_callback(self._retry_timers.discard)
        else:
            self._finish(job.job_id, result.outcome.value, attempt)

    async def _requeue_after(self, delay: float, job: ProcessingJob, attempt: int) -> None:
        await asyncio.sleep(delay)
        self._queue.put_nowait((job, attempt))
        QUEUE_DEPTH.set(self._queue.qsize())

    def _finish(self, job_id: uuid.UUID, outcome: str, attempts: int) -> None:
        self._active.discard(job_id)
        self._finished.pop(job_id, None)
        self._finished[job_id] = FinishedJob(job_id, outcome, attempts, time.monotonic())
        self._prune_finished()
        if not self._active:
            self._idle.set()

    def _prune_finished(self) -> None:
        cutoff = time.monotonic() - self.retention_seconds
        while self._finished:
            oldest = next(iter(self._finished.values()))
            if len(self._finished) > self.retention_count or oldest.finished_at < cutoff:
                self._finished.popitem(last=False)
            else:
                break
