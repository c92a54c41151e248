"""FFmpeg integration: audio transcoding and still-frame video muxing."""

import logging
import subprocess
from pathlib import Path

from voxport.config import Settings, get_settings
from voxport.exceptions import EncoderTimeoutError, EncodingError
from voxport.render.frame_renderer import RenderedFrame
from voxport.utils.media_info import get_media_duration, has_audio_track

logger = logging.getLogger(__name__)

STDERR_TAIL_CHARS = 800


def _escape_concat_path(path: Path) -> str:
    return str(path.resolve()).replace("'", "'\\''")


class FFmpegEncoder:
    """Runs ffmpeg as a child process with a hard timeout per operation."""

    def __init__(self, settings: Settings | None = None):
        settings = settings or get_settings()
        self.ffmpeg_path = settings.ffmpeg_path
        self.audio_timeout_s = settings.encoder_audio_timeout_s
        self.video_timeout_s = settings.encoder_video_timeout_s

    def transcode_audio(self, input_path: Path, output_path: Path, fmt: str = "mp3") -> Path:
        """Re-encode the staged recording into a shareable audio file."""
        if fmt != "mp3":
            raise EncodingError(f"Unsupported format: {fmt}")
        if not input_path.exists():
            raise EncodingError(f"Input file not found: {input_path}")

        cmd = [
            self.ffmpeg_path,
            "-y",
            "-i", str(input_path),
            "-vn",
            "-codec:a", "libmp3lame",
            "-q:a", "5",
            str(output_path),
        ]
        logger.info(f"[ENCODE] Transcoding {fmt}: {input_path.name} -> {output_path.name}")
        self._run(cmd, output_path, self.audio_timeout_s, "audio transcode")
        return output_path

    def write_concat_list(self, frames: list[RenderedFrame], path: Path) -> Path:
        """Write an ffconcat list giving each frame image its display time.

        The last image is listed twice: the concat demuxer ignores the
        duration of the final entry.
        """
        if not frames:
            raise EncodingError("Cannot build a video from zero frames")

        lines = ["ffconcat version 1.0"]
        for frame in frames:
            lines.append(f"file '{_escape_concat_path(frame.path)}'")
            lines.append(f"duration {frame.duration_ms / 1000:.3f}")
        lines.append(f"file '{_escape_concat_path(frames[-1].path)}'")

        path.write_text("\n".join(lines) + "\n")
        return path

    def mux_video(self, concat_path: Path, audio_path: Path, output_path: Path, fps: int) -> Path:
        """Encode the frame sequence with the audio track into an H.264 MP4."""
        cmd = [
            self.ffmpeg_path,
            "-y",
            "-f", "concat",
            "-safe", "0",
            "-i", str(concat_path),
            "-i", str(audio_path),
            "-map", "0:v:0",
            "-map", "1:a:0",
            "-c:v", "libx264",
            "-preset", "fast",
            "-crf", "23",
            "-pix_fmt", "yuv420p",
            "-r", str(fps),
            "-c:a", "aac",
            "-b:a", "192k",
            "-shortest",
            "-movflags", "+faststart",
            str(output_path),
        ]
        logger.info(f"[ENCODE] Muxing video at {fps}fps -> {output_path.name}")
        self._run(cmd, output_path, self.video_timeout_s, "video mux")
        return output_path

    def probe_duration_ms(self, path: Path) -> int:
        return get_media_duration(str(path))

    def has_audio(self, path: Path) -> bool:
        return has_audio_track(str(path))

    def _run(self, cmd: list[str], output_path: Path, timeout_s: float, operation: str) -> None:
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout_s)
        except subprocess.TimeoutExpired as e:
            # subprocess.run kills the child before re-raising
            output_path.unlink(missing_ok=True)
            logger.error(f"[ENCODE] {operation} timed out after {timeout_s}s")
            raise EncoderTimeoutError(timeout_s, operation) from e
        except OSError as e:
            output_path.unlink(missing_ok=True)
            raise EncodingError(f"Could not start ffmpeg: {e}") from e

        if result.returncode != 0:
            output_path.unlink(missing_ok=True)
            tail = (result.stderr or "")[-STDERR_TAIL_CHARS:].strip()
            logger.error(f"[ENCODE] {operation} failed (exit {result.returncode}): {tail}")
            raise EncodingError(f"FFmpeg {operation} failed: {tail}")

        if not output_path.exists():
            raise EncodingError(f"FFmpeg {operation} failed: output file not created")

        logger.info(f"[ENCODE] {operation} complete: {output_path} ({output_path.stat().st_size} bytes)")
