"""Media file information utilities using FFprobe."""

import json
import subprocess

from voxport.config import get_settings


def _run_ffprobe(file_path: str, *args) -> dict:
    """Run ffprobe and return parsed JSON."""
    settings = get_settings()
    cmd = [
        settings.ffprobe_path,
        "-v", "quiet",
        "-print_format", "json",
        *args,
        file_path,
    ]

    try:
        result = subprocess.run(
            cmd, capture_output=True, text=True, timeout=settings.ffprobe_timeout_s
        )
    except subprocess.TimeoutExpired as e:
        raise RuntimeError(f"ffprobe timed out after {e.timeout}s: {file_path}") from e
    except OSError as e:
        raise RuntimeError(f"Could not start ffprobe: {e}") from e

    if result.returncode != 0:
        raise RuntimeError(f"ffprobe failed: {result.stderr}")

    try:
        return json.loads(result.stdout)
    except json.JSONDecodeError as e:
        raise RuntimeError(f"Failed to parse ffprobe output: {e}")


def get_media_duration(file_path: str) -> int:
    """
    Get media file duration in milliseconds.

    Args:
        file_path: Path to media file

    Returns:
        Duration in milliseconds

    Raises:
        RuntimeError: If ffprobe fails or duration not found
    """
    data = _run_ffprobe(file_path, "-show_format")
    format_info = data.get("format", {})

    if "duration" not in format_info:
        raise RuntimeError(f"Duration not found in: {file_path}")

    return int(float(format_info["duration"]) * 1000)


def has_audio_track(file_path: str) -> bool:
    try:
        data = _run_ffprobe(file_path, "-show_streams", "-select_streams", "a")
        return len(data.get("streams", [])) > 0
    except RuntimeError:
        return False


def get_video_info(file_path: str) -> dict:
    """
    Get duration, dimensions and frame rate of an encoded export.

    Returns:
        Dictionary with duration_ms, width, height, fps, has_audio
    """
    data = _run_ffprobe(file_path, "-show_format", "-show_streams")

    result = {
        "duration_ms": None,
        "width": None,
        "height": None,
        "fps": None,
        "has_audio": False,
    }

    format_info = data.get("format", {})
    if "duration" in format_info:
        result["duration_ms"] = int(float(format_info["duration"]) * 1000)

    for stream in data.get("streams", []):
        codec_type = stream.get("codec_type")

        if codec_type == "video":
            result["width"] = stream.get("width")
            result["height"] = stream.get("height")

            r_frame_rate = stream.get("r_frame_rate", "0/1")
            if "/" in r_frame_rate:
                num, den = r_frame_rate.split("/")
                if int(den) > 0:
                    result["fps"] = int(int(num) / int(den))

        elif codec_type == "audio":
            result["has_audio"] = True

    return result
