"""Processing pipeline for one video job.

Steps:
    1. stage_input  - write the original bytes (fetched if not carried) to a temp file
    2. probe        - read duration and dimensions
    3. transcode    - encode the low-res proxy   } concurrently
    4. thumbnail    - extract one JPEG frame      }
    5. upload       - store both outputs under derived keys (concurrently)

Temp files are removed on every exit path. Any step failure aborts the
remaining steps and surfaces as PipelineStepError naming the step; outputs
already uploaded are left in place and overwritten by the next successful run.
"""

import asyncio
import logging
import os
import tempfile
import time
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Optional

from vidproxy.core.config import settings
from vidproxy.core.errors import PipelineStepError
from vidproxy.core.logging import log_info, log_warning
from vidproxy.core.metrics import PIPELINE_STEP_DURATION_SECONDS
from vidproxy.core.storage import StorageService
from vidproxy.core.tracing import create_span
from vidproxy.modules.transcoding.ffmpeg import Dimensions, MediaMetadata, MediaToolkit
from vidproxy.modules.video.naming import low_res_key, thumbnail_key

logger = logging.getLogger(__name__)

LOW_RES_CONTENT_TYPE = "video/mp4"
THUMBNAIL_CONTENT_TYPE = "image/jpeg"


@dataclass
class PipelineResult:
    """Outputs and metadata of one successful run."""
    low_res_key: str
    low_res_url: str
    thumbnail_key: str
    thumbnail_url: str
    metadata: MediaMetadata
    low_res_dimensions: Dimensions
    thumbnail_dimensions: Dimensions


class TranscodeProgressLogger:
    """Logs transcode progress for one job each time it crosses a step.

    Called from the executor thread running ffmpeg.
    """

    def __init__(self, job_id, step_percent: int = 10):
        self.job_id = job_id
        self.step_percent = step_percent
        self.last_logged = -1

    def __call__(self, fraction: float) -> None:
        percent = int(fraction * 100)
        bucket = percent - percent % self.step_percent
        if bucket <= self.last_logged:
            return
        self.last_logged = bucket
        log_info(
            logger,
            f"Video job {self.job_id}: transcode {percent}% done",
            job_id=str(self.job_id),
            progress_percent=percent,
        )


def default_temp_dir() -> str:
    return settings.TEMP_DIR or os.path.join(tempfile.gettempdir(), "video-processing")


class PipelineExecutor:
    """Runs the processing steps for a single job."""

    def __init__(
        self,
        storage: Optional[StorageService] = None,
        toolkit: Optional[MediaToolkit] = None,
        temp_dir: Optional[str] = None,
    ):
        self.storage = storage or StorageService()
        self.toolkit = toolkit or MediaToolkit()
        self.temp_dir = temp_dir or default_temp_dir()

    def temp_path(self, kind: str, name: str) -> str:
        """Unique per-run temp path: ``<kind>_<ns>_<uuid8>_<name>``."""
        safe_name = os.path.basename(name.replace("\\", "/")) or "video"
        return os.path.join(
            self.temp_dir,
            f"{kind}_{time.time_ns()}_{uuid.uuid4().hex[:8]}_{safe_name}",
        )

    @asynccontextmanager
    async def _step(self, step: str, job_id):
        started = time.monotonic()
        with create_span(f"pipeline.{step}", attributes={"job.id": str(job_id), "pipeline.step": step}):
            try:
                yield
            except PipelineStepError:
                raise
            except Exception as e:
                raise PipelineStepError(step, e) from e
            finally:
                PIPELINE_STEP_DURATION_SECONDS.labels(step).observe(time.monotonic() - started)

    async def _run_blocking(self, func, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, func, *args)

    async def run(self, job_id, stored_file_name: str, content: Optional[bytes] = None) -> PipelineResult:
        """Process one job and return its outputs.

        Args:
            job_id: Job identifier (for logs and spans)
            stored_file_name: Storage key of the original
            content: Original file bytes, fetched from storage when None

        Returns:
            PipelineResult with output locators and probed metadata

        Raises:
            PipelineStepError: A step failed; ``step`` and ``cause`` describe it
        """
        input_path = self.temp_path("input", stored_file_name)
        output_path = self.temp_path("output", stored_file_name)
        thumb_path = self.temp_path("thumb", thumbnail_key(stored_file_name))

        try:
            async with self._step("stage_input", job_id):
                if content is None:
                    content = await self.storage.get(stored_file_name)
                await self._run_blocking(self._write_input, input_path, content)

            async with self._step("probe", job_id):
                metadata = await self._run_blocking(self.toolkit.probe, input_path)

            low_res_dims, thumb_dims = await self._gather_all(
                self._transcode(job_id, input_path, output_path, metadata),
                self._thumbnail(job_id, input_path, thumb_path, metadata),
            )

            lr_key = low_res_key(stored_file_name)
            th_key = thumbnail_key(stored_file_name)
            low_res_result, thumb_result = await self._gather_all(
                self._upload(job_id, lr_key, output_path, LOW_RES_CONTENT_TYPE),
                self._upload(job_id, th_key, thumb_path, THUMBNAIL_CONTENT_TYPE),
            )
        finally:
            self._cleanup(input_path, output_path, thumb_path)

        log_info(
            logger,
            f"Pipeline finished for {stored_file_name}",
            job_id=str(job_id),
            duration=metadata.duration,
            width=metadata.width,
            height=metadata.height,
        )
        return PipelineResult(
            low_res_key=lr_key,
            low_res_url=low_res_result.url,
            thumbnail_key=th_key,
            thumbnail_url=thumb_result.url,
            metadata=metadata,
            low_res_dimensions=low_res_dims,
            thumbnail_dimensions=thumb_dims,
        )

    @staticmethod
    async def _gather_all(*coros):
        """Await every coroutine, then raise the first failure in argument order.

        Both branches must have stopped touching their temp files before
        cleanup runs, so a failure in one never cancels the other.
        """
        results = await asyncio.gather(*coros, return_exceptions=True)
        for result in results:
            if isinstance(result, BaseException):
                raise result
        return results

    async def _transcode(self, job_id, input_path: str, output_path: str, metadata: MediaMetadata) -> Dimensions:
        async with self._step("transcode", job_id):
            return await self._run_blocking(
                self.toolkit.transcode_low_res,
                input_path,
                output_path,
                metadata.dimensions,
                settings.LOW_RES_TARGET_HEIGHT,
                metadata.duration,
                TranscodeProgressLogger(job_id),
            )

    async def _thumbnail(self, job_id, input_path: str, thumb_path: str, metadata: MediaMetadata) -> Dimensions:
        async with self._step("thumbnail", job_id):
            return await self._run_blocking(
                self.toolkit.extract_thumbnail,
                input_path,
                thumb_path,
                metadata.duration,
            )

    async def _upload(self, job_id, key: str, path: str, content_type: str):
        async with self._step("upload", job_id):
            data = await self._run_blocking(_read_file, path)
            return await self.storage.put(key, data, content_type)

    def _write_input(self, path: str, content: bytes) -> None:
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "wb") as f:
            f.write(content)

    def _cleanup(self, *paths: str) -> None:
        for path in paths:
            try:
                os.remove(path)
            except FileNotFoundError:
                continue
            except OSError as e:
                log_warning(logger, f"Failed to remove temp file {path}: {e}", temp_path=path)


def _read_file(path: str) -> bytes:
    with open(path, "rb") as f:
        return f.read()
