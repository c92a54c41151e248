"""Tests for the ffmpeg encoder wrapper."""

import subprocess
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from voxport.exceptions import EncoderTimeoutError, EncodingError
from voxport.render.encoder import FFmpegEncoder
from voxport.render.frame_renderer import FrameRenderer, RenderedFrame, RenderTask
from voxport.render.storyboard import build_storyboard, choose_fps
from voxport.render.worker_pool import FrameWorkerPool, render_frames
from voxport.utils.media_info import get_media_duration, get_video_info


@pytest.fixture
def encoder(settings) -> FFmpegEncoder:
    return FFmpegEncoder(settings)


class TestConcatList:
    """ffconcat list generation."""

    def test_format(self, encoder, tmp_path):
        frames = [
            RenderedFrame(index=0, path=tmp_path / "frame_00000.png", duration_ms=400),
            RenderedFrame(index=1, path=tmp_path / "frame_00001.png", duration_ms=1250),
        ]

        path = encoder.write_concat_list(frames, tmp_path / "frames.ffconcat")

        lines = path.read_text().splitlines()
        assert lines == [
            "ffconcat version 1.0",
            f"file '{(tmp_path / 'frame_00000.png').resolve()}'",
            "duration 0.400",
            f"file '{(tmp_path / 'frame_00001.png').resolve()}'",
            "duration 1.250",
            f"file '{(tmp_path / 'frame_00001.png').resolve()}'",
        ]

    def test_quotes_are_escaped(self, encoder, tmp_path):
        frames = [RenderedFrame(index=0, path=tmp_path / "it's.png", duration_ms=100)]

        path = encoder.write_concat_list(frames, tmp_path / "frames.ffconcat")

        assert "it'\\''s.png" in path.read_text()

    def test_empty_frames_rejected(self, encoder, tmp_path):
        with pytest.raises(EncodingError):
            encoder.write_concat_list([], tmp_path / "frames.ffconcat")


class TestProcessHandling:
    """Timeouts and non-zero exits, with ffmpeg mocked out."""

    def test_timeout_raises_and_removes_output(self, encoder, tmp_path):
        source = tmp_path / "in.webm"
        source.write_bytes(b"\x1aE\xdf\xa3")
        output = tmp_path / "out.mp3"

        def fake_run(cmd, **kwargs):
            output.write_bytes(b"partial")
            raise subprocess.TimeoutExpired(cmd, kwargs["timeout"])

        with patch("voxport.render.encoder.subprocess.run", side_effect=fake_run):
            with pytest.raises(EncoderTimeoutError) as exc_info:
                encoder.transcode_audio(source, output)

        assert exc_info.value.timeout_s == encoder.audio_timeout_s
        assert "timed out" in str(exc_info.value)
        assert not output.exists()

    def test_nonzero_exit_reports_stderr_tail(self, encoder, tmp_path):
        source = tmp_path / "in.webm"
        source.write_bytes(b"not audio")
        output = tmp_path / "out.mp3"
        failed = MagicMock(returncode=1, stderr="x" * 2000 + "Invalid data found when processing input")

        with patch("voxport.render.encoder.subprocess.run", return_value=failed):
            with pytest.raises(EncodingError) as exc_info:
                encoder.transcode_audio(source, output)

        message = str(exc_info.value)
        assert "Invalid data found" in message
        assert len(message) < 1000
        assert not isinstance(exc_info.value, EncoderTimeoutError)

    def test_missing_binary(self, settings, tmp_path):
        encoder = FFmpegEncoder(settings.model_copy(update={"ffmpeg_path": str(tmp_path / "no-ffmpeg")}))
        source = tmp_path / "in.webm"
        source.write_bytes(b"data")

        with pytest.raises(EncodingError, match="Could not start ffmpeg"):
            encoder.transcode_audio(source, tmp_path / "out.mp3")

    def test_missing_input(self, encoder, tmp_path):
        with pytest.raises(EncodingError, match="Input file not found"):
            encoder.transcode_audio(tmp_path / "missing.webm", tmp_path / "out.mp3")

    def test_unsupported_format(self, encoder, tmp_path):
        with pytest.raises(EncodingError, match="Unsupported format"):
            encoder.transcode_audio(tmp_path / "in.webm", tmp_path / "out.ogg", fmt="ogg")

    def test_has_audio_uses_ffprobe_streams(self, encoder, tmp_path):
        no_streams = MagicMock(returncode=0, stdout='{"streams": []}', stderr="")

        with patch("voxport.utils.media_info.subprocess.run", return_value=no_streams) as mock_run:
            assert encoder.has_audio(tmp_path / "silent.webm") is False

        cmd = mock_run.call_args[0][0]
        assert cmd[cmd.index("-select_streams") + 1] == "a"
        assert cmd[-1] == str(tmp_path / "silent.webm")

    def test_mux_command_line(self, encoder, tmp_path):
        output = tmp_path / "out.mp4"

        def fake_run(cmd, **kwargs):
            output.write_bytes(b"mp4")
            return MagicMock(returncode=0, stderr="")

        with patch("voxport.render.encoder.subprocess.run", side_effect=fake_run) as mock_run:
            encoder.mux_video(tmp_path / "frames.ffconcat", tmp_path / "a.webm", output, fps=30)

        cmd = mock_run.call_args[0][0]
        assert cmd[cmd.index("-f") + 1] == "concat"
        assert cmd[cmd.index("-c:v") + 1] == "libx264"
        assert cmd[cmd.index("-pix_fmt") + 1] == "yuv420p"
        assert cmd[cmd.index("-r") + 1] == "30"
        assert "-shortest" in cmd
        assert mock_run.call_args[1]["timeout"] == encoder.video_timeout_s


@pytest.mark.requires_ffmpeg
class TestEncodeRoundTrip:
    """Real ffmpeg runs on a generated tone."""

    def test_transcode_mp3(self, encoder, sine_audio, tmp_path):
        output = encoder.transcode_audio(sine_audio, tmp_path / "out.mp3")

        assert output.exists()
        assert abs(get_media_duration(str(output)) - 5000) < 200

    def test_video_duration_matches_storyboard(
        self, encoder, settings, sine_audio, sample_manifest, plain_template, tmp_path
    ):
        frames = build_storyboard(sample_manifest, plain_template, total_duration_ms=5000)
        renderer = FrameRenderer(scale=settings.render_scale)
        frame_dir = tmp_path / "frames"
        frame_dir.mkdir()
        tasks = [RenderTask(f, plain_template, frame_dir / f"frame_{f.index:05d}.png") for f in frames]

        with FrameWorkerPool(renderer.render, size=2) as pool:
            rendered = render_frames(pool, tasks)

        concat = encoder.write_concat_list(rendered, tmp_path / "frames.ffconcat")
        output = encoder.mux_video(concat, sine_audio, tmp_path / "out.mp4", choose_fps(len(frames)))

        info = get_video_info(str(output))
        assert abs(info["duration_ms"] - 5000) < 300
        assert (info["width"], info["height"]) == (270, 480)
        assert info["has_audio"] is True

    def test_probe_duration(self, encoder, sine_audio):
        assert abs(encoder.probe_duration_ms(Path(sine_audio)) - 5000) < 100
