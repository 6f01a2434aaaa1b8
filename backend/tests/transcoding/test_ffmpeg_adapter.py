"""Tests for the MediaToolkit subprocess handling.

ffprobe/ffmpeg are replaced by mocks; no media toolkit is required.
"""

import io
import json
import subprocess
from unittest.mock import MagicMock, patch

import pytest

from vidproxy.core.errors import InputDefect, NoVideoStream, ToolkitFailure
from vidproxy.modules.transcoding.ffmpeg import Dimensions, LowResProfile, MediaToolkit


def make_toolkit() -> MediaToolkit:
    return MediaToolkit(ffmpeg_path="ffmpeg", ffprobe_path="ffprobe", profile=LowResProfile())


def fake_popen(returncode: int, stderr_text: str = "", stdout_lines=(), output_path=None, output_bytes=b"data"):
    """Build a Popen replacement that writes stderr into the caller's file."""

    def _popen(cmd, stdout=None, stderr=None, text=None):
        if stderr is not None:
            stderr.write(stderr_text)
        if output_path is not None and output_bytes:
            with open(output_path, "wb") as f:
                f.write(output_bytes)
        process = MagicMock()
        process.stdout = io.StringIO("".join(stdout_lines)) if stdout == subprocess.PIPE else None
        process.wait.return_value = returncode
        return process

    return _popen


class TestProbe:
    """probe() maps ffprobe outcomes onto typed results."""

    def test_successful_probe(self) -> None:
        stdout = json.dumps({
            "streams": [{"codec_type": "video", "width": 1920, "height": 1080}],
            "format": {"duration": "30.0"},
        })
        completed = subprocess.CompletedProcess(args=[], returncode=0, stdout=stdout, stderr="")
        with patch("vidproxy.modules.transcoding.ffmpeg.subprocess.run", return_value=completed) as run:
            metadata = make_toolkit().probe("/tmp/in.mov")

        assert metadata.dimensions == Dimensions(1920, 1080)
        assert metadata.duration == 30.0
        assert run.call_args[0][0][0] == "ffprobe"

    def test_no_video_stream(self) -> None:
        stdout = json.dumps({"streams": [{"codec_type": "audio"}], "format": {}})
        completed = subprocess.CompletedProcess(args=[], returncode=0, stdout=stdout, stderr="")
        with patch("vidproxy.modules.transcoding.ffmpeg.subprocess.run", return_value=completed):
            with pytest.raises(NoVideoStream):
                make_toolkit().probe("/tmp/in.mov")

    def test_unreadable_file_is_input_defect(self) -> None:
        completed = subprocess.CompletedProcess(
            args=[], returncode=1, stdout="", stderr="moov atom not found"
        )
        with patch("vidproxy.modules.transcoding.ffmpeg.subprocess.run", return_value=completed):
            with pytest.raises(InputDefect) as exc_info:
                make_toolkit().probe("/tmp/in.mov")
        assert "moov atom not found" in str(exc_info.value)

    def test_missing_binary_is_toolkit_failure(self) -> None:
        with patch(
            "vidproxy.modules.transcoding.ffmpeg.subprocess.run",
            side_effect=FileNotFoundError("ffprobe"),
        ):
            with pytest.raises(ToolkitFailure):
                make_toolkit().probe("/tmp/in.mov")


class TestTranscode:
    """transcode_low_res() treats any non-zero exit as a hard failure."""

    def test_success_returns_even_dimensions(self, tmp_path) -> None:
        output = str(tmp_path / "out.mp4")
        with patch(
            "vidproxy.modules.transcoding.ffmpeg.subprocess.Popen",
            side_effect=fake_popen(0, output_path=output),
        ):
            dims = make_toolkit().transcode_low_res("in.mov", output, Dimensions(1920, 1080), 480)

        assert dims == Dimensions(854, 480)

    def test_non_zero_exit_raises_with_stderr_and_leaves_partial_output(self, tmp_path) -> None:
        output = tmp_path / "out.mp4"
        with patch(
            "vidproxy.modules.transcoding.ffmpeg.subprocess.Popen",
            side_effect=fake_popen(1, stderr_text="Conversion failed!", output_path=str(output)),
        ):
            with pytest.raises(ToolkitFailure) as exc_info:
                make_toolkit().transcode_low_res("in.mov", str(output), Dimensions(1920, 1080), 480)

        assert exc_info.value.returncode == 1
        assert "Conversion failed!" in exc_info.value.stderr
        assert exc_info.value.retryable is True
        # cleanup is the pipeline's job
        assert output.exists()

    def test_zero_exit_without_output_is_failure(self, tmp_path) -> None:
        output = str(tmp_path / "out.mp4")
        with patch(
            "vidproxy.modules.transcoding.ffmpeg.subprocess.Popen",
            side_effect=fake_popen(0, output_path=output, output_bytes=b""),
        ):
            with pytest.raises(ToolkitFailure):
                make_toolkit().transcode_low_res("in.mov", output, Dimensions(1920, 1080), 480)

    def test_progress_callback_receives_fractions(self, tmp_path) -> None:
        output = str(tmp_path / "out.mp4")
        lines = ["frame=10\n", "out_time_us=15000000\n", "out_time_us=30000000\n", "progress=end\n"]
        reported = []
        with patch(
            "vidproxy.modules.transcoding.ffmpeg.subprocess.Popen",
            side_effect=fake_popen(0, stdout_lines=lines, output_path=output),
        ):
            make_toolkit().transcode_low_res(
                "in.mov", output, Dimensions(1920, 1080), 480,
                duration=30.0, progress_callback=reported.append,
            )

        assert reported == [pytest.approx(0.5), pytest.approx(1.0)]

    def test_failing_progress_callback_does_not_affect_result(self, tmp_path) -> None:
        output = str(tmp_path / "out.mp4")

        def broken(_fraction: float) -> None:
            raise RuntimeError("ui gone")

        with patch(
            "vidproxy.modules.transcoding.ffmpeg.subprocess.Popen",
            side_effect=fake_popen(0, stdout_lines=["out_time_us=1000000\n"], output_path=output),
        ):
            dims = make_toolkit().transcode_low_res(
                "in.mov", output, Dimensions(1280, 720), 480,
                duration=10.0, progress_callback=broken,
            )

        assert dims == Dimensions(854, 480)


class TestThumbnail:
    """extract_thumbnail() samples one frame at a fixed size."""

    def test_uses_offset_and_fixed_size(self, tmp_path) -> None:
        output = str(tmp_path / "thumb.jpg")
        captured = {}

        def _popen(cmd, **kwargs):
            captured["cmd"] = cmd
            return fake_popen(0, output_path=output)(cmd, **kwargs)

        with patch("vidproxy.modules.transcoding.ffmpeg.subprocess.Popen", side_effect=_popen):
            size = make_toolkit().extract_thumbnail("in.mov", output, 30.0, 10.0, Dimensions(320, 240))

        assert size == Dimensions(320, 240)
        cmd = captured["cmd"]
        assert cmd[cmd.index("-ss") + 1] == "3.000"

    def test_non_zero_exit_raises(self, tmp_path) -> None:
        output = str(tmp_path / "thumb.jpg")
        with patch(
            "vidproxy.modules.transcoding.ffmpeg.subprocess.Popen",
            side_effect=fake_popen(234, stderr_text="Invalid data"),
        ):
            with pytest.raises(ToolkitFailure) as exc_info:
                make_toolkit().extract_thumbnail("in.mov", output, 30.0)
        assert exc_info.value.returncode == 234
