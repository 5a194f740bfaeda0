"""Shared utilities used by multiple modules."""

import logging
import os
import subprocess
import sys
from typing import List, Tuple

logger = logging.getLogger(__name__)


def ffmpeg_exe() -> str:
    """Return path to the ffmpeg binary.

    ``$FFMPEG_PATH`` wins when set; otherwise the binary bundled via
    imageio-ffmpeg is used.
    """
    override = os.environ.get("FFMPEG_PATH")
    if override:
        return override
    import imageio_ffmpeg
    return imageio_ffmpeg.get_ffmpeg_exe()


def subprocess_kwargs() -> dict:
    """Extra kwargs to hide the console window on Windows."""
    kw: dict = {}
    if sys.platform == "win32":
        si = subprocess.STARTUPINFO()
        si.dwFlags |= subprocess.STARTF_USESHOWWINDOW
        kw["startupinfo"] = si
        kw["creationflags"] = subprocess.CREATE_NO_WINDOW
    return kw


def fmt_time(ms: float) -> str:
    """Format milliseconds as m:ss."""
    s = int(ms / 1000)
    m = s // 60
    return f"{m}:{s % 60:02d}"


def parse_hex_color(color: str) -> Tuple[int, int, int]:
    """Parse ``#rrggbb`` or ``#rgb`` into an (r, g, b) tuple of 0-255 ints."""
    cleaned = color.strip().lstrip("#")
    if len(cleaned) == 3:
        cleaned = "".join(ch * 2 for ch in cleaned)
    if len(cleaned) != 6:
        raise ValueError(f"Invalid hex color: {color!r}")
    try:
        return (
            int(cleaned[0:2], 16),
            int(cleaned[2:4], 16),
            int(cleaned[4:6], 16),
        )
    except ValueError:
        raise ValueError(f"Invalid hex color: {color!r}") from None


# ── Encoding profiles ───────────────────────────────────────────────
#
# One fixed profile per stage: the raw capture is lossless huffyuv AVI
# (fast enough to keep up with live frames), the final artifact is
# H.264 MP4 at CRF 18.

RAW_CAPTURE_EXT = ".avi"


def build_capture_args(out_path: str, w: int, h: int, fps: int) -> List[str]:
    """ffmpeg arguments that read raw BGRA frames on stdin → lossless AVI."""
    return [
        "-y",                        # overwrite
        "-f", "rawvideo",
        "-pix_fmt", "bgra",
        "-s", f"{w}x{h}",
        "-r", str(fps),
        "-i", "pipe:0",
        "-c:v", "huffyuv",           # very fast lossless, ~2:1 compression
        "-an",
        out_path,
    ]


def build_encoder_args() -> List[str]:
    """Return ffmpeg arguments for the final H.264 export.

    Returns ``["-c:v", "libx264", ...quality_args..., "-pix_fmt", "yuv420p"]``.
    """
    return ["-c:v", "libx264", "-preset", "medium", "-crf", "18", "-pix_fmt", "yuv420p"]


def build_audio_encoder_args() -> List[str]:
    return ["-c:a", "aac", "-b:a", "128k"]
