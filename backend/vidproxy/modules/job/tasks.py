"""Celery tasks for video processing."""

import asyncio
import logging
import uuid
from typing import Any

from celery import Task

from vidproxy.core.celery_app import celery_app
from vidproxy.core.logging import log_error
from vidproxy.modules.job.processor import AttemptOutcome, JobProcessor, ProcessingJob
from vidproxy.modules.job.retry import RetryConfig

logger = logging.getLogger(__name__)

_loop = None


def run_async(coro):
    """Run a coroutine on this worker process's event loop.

    One loop is kept per process so pooled database connections stay bound
    to the loop that created them.
    """
    global _loop
    if _loop is None or _loop.is_closed():
        _loop = asyncio.new_event_loop()
        asyncio.set_event_loop(_loop)
    return _loop.run_until_complete(coro)


class BaseTaskWithRetry(Task):
    """Base Celery task with exponential backoff retry logic."""

    abstract = True

    @property
    def retry_config(self) -> RetryConfig:
        """Get the retry configuration for this task."""
        return RetryConfig.from_settings()

    def on_failure(self, exc: Exception, task_id: str, args: tuple, kwargs: dict, einfo: Any) -> None:
        log_error(logger, f"Task {self.name} [{task_id}] failed: {exc}", task_id=task_id)

    def retry_with_backoff(self, exc: Exception, attempt: int) -> None:
        """Retry the task with exponential backoff.

        Args:
            exc: The exception that caused the failure.
            attempt: The attempt that just failed (1-indexed).

        Raises:
            Retry: Always, to reschedule the task.
            MaxRetriesExceededError: If max attempts have been reached.
        """
        config = self.retry_config

        if attempt >= config.max_attempts:
            raise self.MaxRetriesExceededError(
                f"Max retries ({config.max_attempts}) exceeded for task"
            )

        delay = config.calculate_delay(attempt)
        raise self.retry(exc=exc, countdown=delay, max_retries=config.max_attempts - 1)


@celery_app.task(bind=True, base=BaseTaskWithRetry, name="vidproxy.process_video")
def process_video_task(self: BaseTaskWithRetry, job_id: str, file_name: str) -> dict:
    """Run one processing attempt for a video job.

    The message carries only the job id and storage key; the worker fetches
    the original from storage. Retries are scheduled through Celery with the
    backoff delay chosen by the processor.

    Args:
        job_id: UUID of the video job
        file_name: Stored filename (storage key of the original)

    Returns:
        dict with the job id, outcome and attempt number
    """
    attempt = self.request.retries + 1
    job = ProcessingJob(job_id=uuid.UUID(job_id), file_name=file_name)
    result = run_async(JobProcessor().process(job, attempt))

    if result.outcome == AttemptOutcome.RETRY:
        self.retry_with_backoff(result.error, attempt)

    return {"job_id": job_id, "status": result.outcome.value, "attempt": attempt}
