"""Click-sound audio filter graph.

Each click keyframe gets a copy of the click sound delayed to the click
time; the copies are mixed, scaled by the configured volume and padded
or trimmed to the exact video duration.
"""

import logging
import os
from typing import List, Optional, Sequence

from .frame_pacing import round_half_up
from .models import AudioConfig, CursorKeyframe

logger = logging.getLogger(__name__)

ASSETS_DIR = os.path.join(os.path.dirname(__file__), "assets")
DEFAULT_CLICK_SOUND = os.path.join(ASSETS_DIR, "click.wav")

AUDIO_OUT_LABEL = "aout"


def resolve_click_sound(audio: AudioConfig, default_path: str = DEFAULT_CLICK_SOUND) -> Optional[str]:
    """Path of the click sound to mix, or None when it can't be used.

    The custom file wins over the bundled default; whichever is chosen
    must exist on disk.
    """
    path = os.path.abspath(audio.custom_sound_path) if audio.custom_sound_path else default_path
    if not os.path.isfile(path):
        logger.warning("Click sound not found, exporting without audio: %s", path)
        return None
    return path


def build_audio_filters(
    click_keyframes: Sequence[CursorKeyframe],
    audio_input_index: int,
    volume: float,
    duration_sec: float,
) -> List[str]:
    """Return filter chains producing ``[aout]``; empty when there are no clicks.

    A single click is delayed directly.  Several clicks split the input
    first and mix the delayed copies back together, since a 1-way
    split/mix is rejected by ffmpeg.
    """
    n = len(click_keyframes)
    if n == 0:
        return []

    src = f"[{audio_input_index}:a]"
    dur = f"{duration_sec:.4f}"
    # apad only lengthens; atrim cuts a click that rings past the end.
    tail = f"volume={volume:g},apad=whole_dur={dur},atrim=end={dur}[{AUDIO_OUT_LABEL}]"
    filters: List[str] = []

    if n == 1:
        delay = round_half_up(click_keyframes[0].timestamp)
        filters.append(f"{src}adelay={delay}|{delay}[d0]")
        filters.append(f"[d0]{tail}")
        return filters

    filters.append(f"{src}asplit={n}" + "".join(f"[c{i}]" for i in range(n)))
    for i, kf in enumerate(click_keyframes):
        delay = round_half_up(kf.timestamp)
        filters.append(f"[c{i}]adelay={delay}|{delay}[d{i}]")
    filters.append("".join(f"[d{i}]" for i in range(n)) + f"amix=inputs={n}:normalize=0[clicks]")
    filters.append(f"[clicks]{tail}")
    return filters
