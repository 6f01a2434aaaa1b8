"""Single-attempt job processing.

JobProcessor runs one attempt of a job (claim, pipeline, complete) and,
when the attempt fails, decides between scheduling a retry and recording
the terminal failure. Transports (the in-process worker pool and the
Celery task) only deal with the returned outcome.
"""

import logging
import time
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from vidproxy.core.errors import RecordNotFound, error_kind
from vidproxy.core.logging import job_context, log_error, log_info, log_warning
from vidproxy.core.metrics import (
    JOB_ATTEMPTS_TOTAL,
    JOB_DURATION_SECONDS,
    JOB_RETRIES_TOTAL,
    JOBS_FINISHED_TOTAL,
)
from vidproxy.modules.job.retry import RetryConfig
from vidproxy.modules.transcoding.pipeline import PipelineExecutor, PipelineResult
from vidproxy.modules.video.state import JobStateMachine

logger = logging.getLogger(__name__)


@dataclass
class ProcessingJob:
    """Queue message for one video.

    ``content`` is carried by the in-process queue; when it is None the
    pipeline fetches the original from storage by ``file_name``.
    """
    job_id: uuid.UUID
    file_name: str
    content: Optional[bytes] = None


class AttemptOutcome(str, Enum):
    COMPLETED = "completed"
    RETRY = "retry"
    FAILED = "failed"


@dataclass
class AttemptResult:
    """What happened in one attempt and what should happen next."""
    outcome: AttemptOutcome
    attempt: int
    delay: Optional[float] = None
    error: Optional[BaseException] = None
    result: Optional[PipelineResult] = None


class JobProcessor:
    """Runs pipeline attempts and applies the retry policy."""

    def __init__(
        self,
        executor: Optional[PipelineExecutor] = None,
        state_machine: Optional[JobStateMachine] = None,
        retry_config: Optional[RetryConfig] = None,
    ):
        self.executor = executor or PipelineExecutor()
        self.state_machine = state_machine or JobStateMachine()
        self.retry_config = retry_config or RetryConfig.from_settings()

    async def process(self, job: ProcessingJob, attempt: int = 1) -> AttemptResult:
        """Run one attempt of ``job``.

        Args:
            job: The job to process
            attempt: 1-based attempt number

        Returns:
            AttemptResult; RETRY carries the delay before the next attempt

        Raises:
            Exception: Only when recording the terminal failure itself fails
        """
        with job_context(job.job_id):
            started = time.monotonic()
            log_info(
                logger,
                f"Processing video job {job.job_id} (attempt {attempt}/{self.retry_config.max_attempts})",
                job_id=str(job.job_id),
                attempt=attempt,
            )
            try:
                await self.state_machine.claim(job.job_id)
                result = await self.executor.run(job.job_id, job.file_name, job.content)
                await self.state_machine.complete(
                    job.job_id,
                    low_res_url=result.low_res_url,
                    thumbnail_url=result.thumbnail_url,
                    duration=result.metadata.duration,
                    width=result.metadata.width,
                    height=result.metadata.height,
                )
            except Exception as exc:
                return await self._handle_failure(job, attempt, exc)
            finally:
                JOB_DURATION_SECONDS.observe(time.monotonic() - started)

            JOB_ATTEMPTS_TOTAL.labels("completed").inc()
            JOBS_FINISHED_TOTAL.labels("completed").inc()
            log_info(logger, f"Video job {job.job_id} completed", job_id=str(job.job_id), attempt=attempt)
            return AttemptResult(AttemptOutcome.COMPLETED, attempt, result=result)

    async def _handle_failure(self, job: ProcessingJob, attempt: int, exc: Exception) -> AttemptResult:
        kind = error_kind(exc)
        delay = self.retry_config.next_delay(exc, attempt)

        if delay is not None:
            JOB_ATTEMPTS_TOTAL.labels("retry").inc()
            JOB_RETRIES_TOTAL.labels(kind).inc()
            log_warning(
                logger,
                f"Video job {job.job_id} attempt {attempt} failed, retrying in {delay:.1f}s: {exc}",
                job_id=str(job.job_id),
                attempt=attempt,
                error_kind=kind,
                retry_delay=delay,
            )
            return AttemptResult(AttemptOutcome.RETRY, attempt, delay=delay, error=exc)

        JOB_ATTEMPTS_TOTAL.labels("failed").inc()
        JOBS_FINISHED_TOTAL.labels("failed").inc()
        log_error(
            logger,
            f"Video job {job.job_id} failed after {attempt} attempt(s): {exc}",
            exception=exc,
            job_id=str(job.job_id),
            attempt=attempt,
            error_kind=kind,
        )
        try:
            await self.state_machine.fail(job.job_id, str(exc))
        except RecordNotFound:
            log_warning(
                logger,
                f"Video job {job.job_id} no longer exists; failure not recorded",
                job_id=str(job.job_id),
            )
        return AttemptResult(AttemptOutcome.FAILED, attempt, error=exc)
