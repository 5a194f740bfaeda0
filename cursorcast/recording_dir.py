"""Recording directory management — the files one capture session leaves behind.

A recording directory contains:
  - raw.avi                 — constant-framerate raw capture
  - cursor-keyframes.json   — the keyframe timeline
  - post-production.json    — user-editable export settings (optional)
  - manifest.json           — status summary (complete / incomplete)
  - output.mp4              — the latest exported video

The raw capture and the timeline are written once per session; the
post-production settings and the output may be rewritten any number of
times.
"""

import logging
import os
from typing import Optional

from .models import KeyframeTimeline, PostProductionConfig, RecordingManifest
from .utils import RAW_CAPTURE_EXT

logger = logging.getLogger(__name__)

RAW_VIDEO_NAME = "raw" + RAW_CAPTURE_EXT
KEYFRAMES_NAME = "cursor-keyframes.json"
POST_PRODUCTION_NAME = "post-production.json"
MANIFEST_NAME = "manifest.json"
OUTPUT_NAME = "output.mp4"


def raw_video_path(recording_dir: str) -> str:
    return os.path.join(recording_dir, RAW_VIDEO_NAME)


def keyframes_path(recording_dir: str) -> str:
    return os.path.join(recording_dir, KEYFRAMES_NAME)


def post_production_path(recording_dir: str) -> str:
    return os.path.join(recording_dir, POST_PRODUCTION_NAME)


def manifest_path(recording_dir: str) -> str:
    return os.path.join(recording_dir, MANIFEST_NAME)


def output_path(recording_dir: str, name: str = OUTPUT_NAME) -> str:
    return os.path.join(recording_dir, name)


def _write_text(path: str, text: str) -> None:
    """Write via a temp file + rename so readers never see a half file."""
    tmp = path + ".tmp"
    with open(tmp, "w", encoding="utf-8") as f:
        f.write(text)
    os.replace(tmp, path)


def _read_text(path: str) -> str:
    with open(path, "r", encoding="utf-8") as f:
        return f.read()


# ── Keyframe timeline ───────────────────────────────────────────────


def save_timeline(recording_dir: str, timeline: KeyframeTimeline) -> str:
    path = keyframes_path(recording_dir)
    _write_text(path, timeline.to_json())
    return path


def load_timeline(recording_dir: str) -> KeyframeTimeline:
    """Load ``cursor-keyframes.json``; raises FileNotFoundError / ValueError."""
    return KeyframeTimeline.from_json(_read_text(keyframes_path(recording_dir)))


# ── Post-production settings ───────────────────────────────────────


def save_post_production(recording_dir: str, config: PostProductionConfig) -> str:
    path = post_production_path(recording_dir)
    _write_text(path, config.to_json())
    return path


def load_post_production(recording_dir: str) -> PostProductionConfig:
    """Load ``post-production.json``, or defaults if the file doesn't exist."""
    path = post_production_path(recording_dir)
    if not os.path.isfile(path):
        return PostProductionConfig()
    return PostProductionConfig.from_json(_read_text(path))


# ── Manifest ────────────────────────────────────────────────────────


def write_manifest(recording_dir: str, manifest: RecordingManifest) -> str:
    path = manifest_path(recording_dir)
    _write_text(path, manifest.to_json())
    return path


def read_manifest(recording_dir: str) -> Optional[RecordingManifest]:
    """Return the manifest, or None if the directory has none yet."""
    path = manifest_path(recording_dir)
    if not os.path.isfile(path):
        return None
    return RecordingManifest.from_json(_read_text(path))
