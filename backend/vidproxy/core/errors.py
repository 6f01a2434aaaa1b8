"""Error taxonomy for the processing pipeline.

Every error raised by the storage gateway, the media toolkit adapter, the
pipeline executor and the job state machine derives from PipelineError.
The ``retryable`` flag tells the coordinator whether another attempt can
possibly succeed.
"""

from typing import Optional


class PipelineError(Exception):
    """Base class for all pipeline errors."""

    retryable: bool = True

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


# ==================== Input defects (permanent) ====================

class InputDefect(PipelineError):
    """Unsupported or corrupt media. Never succeeds on retry."""

    retryable = False


class NoVideoStream(InputDefect):
    """Source has no decodable video track."""


class UnsupportedFormat(InputDefect):
    """File extension is not in the allowed upload formats."""


class FileTooLarge(InputDefect):
    """Upload exceeds the configured maximum size."""


# ==================== Media toolkit ====================

class ToolkitFailure(PipelineError):
    """The external media toolkit exited with a non-zero status."""

    def __init__(self, message: str, returncode: Optional[int] = None, stderr: str = ""):
        super().__init__(message)
        self.returncode = returncode
        self.stderr = stderr


# ==================== Storage gateway ====================

class StorageError(PipelineError):
    """Base class for storage gateway failures."""

    def __init__(self, message: str, key: Optional[str] = None):
        super().__init__(message)
        self.key = key


class StorageUnavailable(StorageError):
    """Backend unreachable (network or credentials)."""


class StorageNotFound(StorageError):
    """Referenced key does not exist."""

    retryable = False


class StoragePermissionDenied(StorageError):
    """Backend refused the operation."""

    retryable = False


class StorageConfigurationError(Exception):
    """Storage backend is misconfigured. Raised once at startup."""


# ==================== Job records ====================

class RecordNotFound(PipelineError):
    """Unknown job identifier."""

    retryable = False

    def __init__(self, job_id):
        super().__init__(f"Video job {job_id} not found")
        self.job_id = job_id


class InvalidTransition(PipelineError):
    """Lifecycle transition not allowed from the current status."""

    retryable = False

    def __init__(self, job_id, current: str, target: str):
        super().__init__(f"Video job {job_id}: cannot move from '{current}' to '{target}'")
        self.job_id = job_id
        self.current = current
        self.target = target


# ==================== Pipeline steps ====================

class PipelineStepError(PipelineError):
    """A pipeline step failed. Wraps the underlying cause."""

    def __init__(self, step: str, cause: BaseException):
        detail = getattr(cause, "message", None) or str(cause) or type(cause).__name__
        super().__init__(f"{step} failed: {detail}")
        self.step = step
        self.cause = cause

    @property
    def retryable(self) -> bool:  # type: ignore[override]
        return getattr(self.cause, "retryable", True)


def is_retryable(exc: BaseException) -> bool:
    """Whether another attempt could succeed after ``exc``.

    Errors outside the taxonomy are treated as transient.
    """
    return getattr(exc, "retryable", True)


def error_kind(exc: BaseException) -> str:
    """Name of the taxonomy class behind ``exc`` (unwrapping step errors)."""
    if isinstance(exc, PipelineStepError):
        return error_kind(exc.cause)
    for kind in (
        InputDefect,
        ToolkitFailure,
        StorageUnavailable,
        StorageNotFound,
        StoragePermissionDenied,
        RecordNotFound,
        InvalidTransition,
    ):
        if isinstance(exc, kind):
            return kind.__name__
    return type(exc).__name__
