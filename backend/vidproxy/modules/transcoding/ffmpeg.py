"""FFmpeg media toolkit adapter.

Wraps the ``ffprobe``/``ffmpeg`` command-line tools behind three blocking
calls: probe, low-res transcode and thumbnail extraction. Each call either
returns a typed result or raises a typed error; a non-zero exit is always a
failure, and partially written output is left on disk for the caller to
clean up.
"""

import json
import logging
import math
import os
import subprocess
import tempfile
from dataclasses import dataclass
from typing import Callable, Optional

from vidproxy.core.config import settings
from vidproxy.core.errors import InputDefect, NoVideoStream, ToolkitFailure

logger = logging.getLogger(__name__)

STDERR_TAIL_CHARS = 2000

ProgressCallback = Callable[[float], None]


@dataclass(frozen=True)
class Dimensions:
    """Frame size in pixels."""
    width: int
    height: int


@dataclass(frozen=True)
class MediaMetadata:
    """Probed properties of a source video."""
    duration: float  # seconds
    width: int
    height: int

    @property
    def dimensions(self) -> Dimensions:
        return Dimensions(self.width, self.height)


@dataclass
class LowResProfile:
    """Fixed encoding profile for the low-res proxy."""
    target_height: int = 480
    video_bitrate: str = "500k"
    audio_bitrate: str = "128k"
    video_codec: str = "libx264"
    audio_codec: str = "aac"
    preset: str = "fast"

    @classmethod
    def from_settings(cls) -> "LowResProfile":
        return cls(
            target_height=settings.LOW_RES_TARGET_HEIGHT,
            video_bitrate=settings.LOW_RES_VIDEO_BITRATE,
            audio_bitrate=settings.LOW_RES_AUDIO_BITRATE,
        )


# ==================== Pure helpers ====================

def round_up_to_even(value: int) -> int:
    """Round up to the next even integer (4:2:0 chroma needs even sizes)."""
    return value + (value % 2)


def compute_low_res_dimensions(source_width: int, source_height: int, target_height: int) -> Dimensions:
    """Scale to ``target_height`` preserving aspect ratio.

    The width is rounded to the nearest integer, then both sides are
    rounded up to even: 1920x1080 at 480 gives 853.33 -> 853 -> 854x480.
    """
    if source_width <= 0 or source_height <= 0:
        raise InputDefect(f"Invalid source dimensions {source_width}x{source_height}")
    if target_height <= 0:
        raise ValueError("target_height must be positive")

    width = int(math.floor(source_width / source_height * target_height + 0.5))
    return Dimensions(
        width=max(2, round_up_to_even(width)),
        height=round_up_to_even(target_height),
    )


def thumbnail_offset(duration: float, at_percent: float) -> float:
    """Timestamp in seconds for a frame ``at_percent`` into the video."""
    if duration <= 0:
        return 0.0
    return duration * at_percent / 100.0


def parse_probe_output(stdout: str) -> MediaMetadata:
    """Extract duration and video dimensions from ffprobe JSON output.

    Raises:
        NoVideoStream: No stream with ``codec_type == "video"``
        InputDefect: Output is not JSON or the video stream has no size
    """
    try:
        info = json.loads(stdout or "{}")
    except json.JSONDecodeError as e:
        raise InputDefect(f"Unreadable probe output: {e}") from e

    video_stream = next(
        (s for s in info.get("streams", []) if s.get("codec_type") == "video"),
        None,
    )
    if video_stream is None:
        raise NoVideoStream("No video stream found")

    try:
        width = int(video_stream["width"])
        height = int(video_stream["height"])
    except (KeyError, TypeError, ValueError) as e:
        raise InputDefect("Video stream has no usable dimensions") from e

    raw_duration = info.get("format", {}).get("duration") or video_stream.get("duration")
    try:
        duration = float(raw_duration) if raw_duration is not None else 0.0
    except (TypeError, ValueError):
        duration = 0.0

    return MediaMetadata(duration=duration, width=width, height=height)


def parse_progress_line(line: str) -> Optional[tuple[str, str]]:
    """Parse one ``key=value`` line from ``-progress`` output."""
    line = line.strip()
    if "=" not in line:
        return None
    key, _, value = line.partition("=")
    return key.strip(), value.strip()


def progress_fraction(key: str, value: str, duration: float) -> Optional[float]:
    """Convert an ``out_time_us``/``out_time_ms`` progress entry to 0..1."""
    if duration <= 0 or key not in ("out_time_us", "out_time_ms"):
        return None
    try:
        # ffmpeg reports both keys in microseconds
        seconds = int(value) / 1_000_000
    except ValueError:
        return None
    return max(0.0, min(1.0, seconds / duration))


def _tail(text: str) -> str:
    return text[-STDERR_TAIL_CHARS:] if text else ""


class MediaToolkit:
    """Blocking adapter around ffprobe and ffmpeg.

    Run it from an executor thread when used from async code.
    """

    def __init__(
        self,
        ffmpeg_path: Optional[str] = None,
        ffprobe_path: Optional[str] = None,
        profile: Optional[LowResProfile] = None,
    ):
        """Initialize the adapter.

        Args:
            ffmpeg_path: Path to ffmpeg binary
            ffprobe_path: Path to ffprobe binary
            profile: Low-res encoding profile
        """
        self.ffmpeg_path = ffmpeg_path or settings.FFMPEG_PATH
        self.ffprobe_path = ffprobe_path or settings.FFPROBE_PATH
        self.profile = profile or LowResProfile.from_settings()

    # ==================== Commands ====================

    def build_probe_command(self, input_path: str) -> list[str]:
        return [
            self.ffprobe_path,
            "-v", "error",
            "-print_format", "json",
            "-show_format",
            "-show_streams",
            input_path,
        ]

    def build_transcode_command(
        self,
        input_path: str,
        output_path: str,
        dimensions: Dimensions,
        with_progress: bool = False,
    ) -> list[str]:
        """Build the ffmpeg command for the low-res proxy.

        Args:
            input_path: Source video
            output_path: Destination file
            dimensions: Output frame size (already even)
            with_progress: Emit machine-readable progress on stdout

        Returns:
            FFmpeg command as list of arguments
        """
        profile = self.profile
        bufsize = f"{_bitrate_value(profile.video_bitrate) * 2}"
        cmd = [
            self.ffmpeg_path,
            "-y",
            "-i", input_path,
            # Video settings
            "-c:v", profile.video_codec,
            "-preset", profile.preset,
            "-b:v", profile.video_bitrate,
            "-maxrate", profile.video_bitrate,
            "-bufsize", bufsize,
            "-vf", f"scale={dimensions.width}:{dimensions.height}",
            # Audio settings
            "-c:a", profile.audio_codec,
            "-b:a", profile.audio_bitrate,
            # Output format
            "-movflags", "+faststart",
            "-f", "mp4",
        ]
        if with_progress:
            cmd.extend(["-progress", "pipe:1", "-nostats"])
        cmd.append(output_path)
        return cmd

    def build_thumbnail_command(
        self,
        input_path: str,
        output_path: str,
        offset_seconds: float,
        size: Dimensions,
    ) -> list[str]:
        return [
            self.ffmpeg_path,
            "-y",
            "-ss", f"{offset_seconds:.3f}",
            "-i", input_path,
            "-frames:v", "1",
            "-vf", f"scale={size.width}:{size.height}",
            "-q:v", "2",
            output_path,
        ]

    # ==================== Operations ====================

    def probe(self, input_path: str) -> MediaMetadata:
        """Read duration and video dimensions of ``input_path``.

        Raises:
            NoVideoStream: Source has no video track
            InputDefect: ffprobe could not read the file
            ToolkitFailure: ffprobe could not be started
        """
        cmd = self.build_probe_command(input_path)
        try:
            result = subprocess.run(cmd, capture_output=True, text=True)
        except OSError as e:
            raise ToolkitFailure(f"Could not run ffprobe: {e}") from e

        if result.returncode != 0:
            raise InputDefect(
                f"ffprobe could not read input (exit {result.returncode}): "
                f"{_tail(result.stderr).strip()}"
            )
        metadata = parse_probe_output(result.stdout)
        logger.debug(
            f"Probed {os.path.basename(input_path)}: "
            f"{metadata.width}x{metadata.height}, {metadata.duration:.2f}s"
        )
        return metadata

    def transcode_low_res(
        self,
        input_path: str,
        output_path: str,
        source: Dimensions,
        target_height: Optional[int] = None,
        duration: float = 0.0,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> Dimensions:
        """Encode the low-res proxy.

        Args:
            input_path: Source video
            output_path: Destination file
            source: Source frame size from probe
            target_height: Output height, defaults to the profile height
            duration: Source duration, used only for progress fractions
            progress_callback: Receives completion fractions in 0..1

        Returns:
            Dimensions of the encoded output

        Raises:
            ToolkitFailure: ffmpeg exited with a non-zero status
        """
        dimensions = compute_low_res_dimensions(
            source.width, source.height, target_height or self.profile.target_height
        )
        cmd = self.build_transcode_command(
            input_path, output_path, dimensions, with_progress=progress_callback is not None
        )
        self._run_ffmpeg(cmd, output_path, "transcode", duration, progress_callback)
        return dimensions

    def extract_thumbnail(
        self,
        input_path: str,
        output_path: str,
        duration: float,
        at_percent: Optional[float] = None,
        size: Optional[Dimensions] = None,
    ) -> Dimensions:
        """Write one JPEG frame taken ``at_percent`` into the video.

        Raises:
            ToolkitFailure: ffmpeg exited with a non-zero status
        """
        if at_percent is None:
            at_percent = settings.THUMBNAIL_OFFSET_PERCENT
        size = size or Dimensions(settings.THUMBNAIL_WIDTH, settings.THUMBNAIL_HEIGHT)
        cmd = self.build_thumbnail_command(
            input_path, output_path, thumbnail_offset(duration, at_percent), size
        )
        self._run_ffmpeg(cmd, output_path, "thumbnail")
        return size

    def _run_ffmpeg(
        self,
        cmd: list[str],
        output_path: str,
        operation: str,
        duration: float = 0.0,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> None:
        # stderr goes to a file so a chatty encoder can never block on a full pipe
        with tempfile.TemporaryFile(mode="w+", encoding="utf-8", errors="replace") as stderr_file:
            try:
                process = subprocess.Popen(
                    cmd,
                    stdout=subprocess.PIPE if progress_callback else subprocess.DEVNULL,
                    stderr=stderr_file,
                    text=True,
                )
            except OSError as e:
                raise ToolkitFailure(f"Could not run ffmpeg for {operation}: {e}") from e

            if progress_callback and process.stdout is not None:
                for line in process.stdout:
                    self._report_progress(line, duration, progress_callback)
                process.stdout.close()

            returncode = process.wait()
            stderr_file.seek(0)
            stderr = stderr_file.read()

        if returncode != 0:
            raise ToolkitFailure(
                f"ffmpeg {operation} exited with status {returncode}",
                returncode=returncode,
                stderr=_tail(stderr),
            )
        if not os.path.exists(output_path) or os.path.getsize(output_path) == 0:
            raise ToolkitFailure(
                f"ffmpeg {operation} produced no output",
                returncode=returncode,
                stderr=_tail(stderr),
            )

    @staticmethod
    def _report_progress(line: str, duration: float, callback: ProgressCallback) -> None:
        parsed = parse_progress_line(line)
        if parsed is None:
            return
        fraction = progress_fraction(parsed[0], parsed[1], duration)
        if fraction is None:
            return
        try:
            callback(fraction)
        except Exception:
            logger.warning("Progress callback raised; ignoring", exc_info=True)


def _bitrate_value(bitrate: str) -> int:
    """Convert ``500k``/``2M``/``128000`` to bits per second."""
    text = bitrate.strip().lower()
    multiplier = 1
    if text.endswith("k"):
        multiplier, text = 1000, text[:-1]
    elif text.endswith("m"):
        multiplier, text = 1_000_000, text[:-1]
    return int(float(text) * multiplier)
