"""Cursor position / click-state lookup over a keyframe timeline.

Shared by the preview and the exporter so both see the same pointer at
the same timestamp.
"""

import bisect
from dataclasses import dataclass
from typing import Optional, Sequence

from .models import CursorKeyframe, DEFAULT_CLICK_WINDOW_MS


@dataclass(frozen=True)
class CursorState:
    x: float
    y: float
    clicking: bool


def _timestamp(kf: CursorKeyframe) -> float:
    return kf.timestamp


def find_keyframe_index(keyframes: Sequence[CursorKeyframe], time_ms: float) -> int:
    """Index of the last keyframe with ``timestamp <= time_ms``.

    Clamps to 0 before the first keyframe; returns -1 for an empty list.
    """
    if not keyframes:
        return -1
    idx = bisect.bisect_right(keyframes, time_ms, key=_timestamp) - 1
    return max(0, idx)


def is_click_active(
    keyframes: Sequence[CursorKeyframe],
    time_ms: float,
    click_window_ms: float = DEFAULT_CLICK_WINDOW_MS,
) -> bool:
    """True if a click keyframe lies in ``[time_ms - window, time_ms]``."""
    i = bisect.bisect_left(keyframes, time_ms - click_window_ms, key=_timestamp)
    while i < len(keyframes) and keyframes[i].timestamp <= time_ms:
        if keyframes[i].is_click:
            return True
        i += 1
    return False


def interpolate_cursor(
    keyframes: Sequence[CursorKeyframe],
    time_ms: float,
    click_window_ms: float = DEFAULT_CLICK_WINDOW_MS,
) -> Optional[CursorState]:
    """Cursor state at *time_ms*, or None while the cursor is hidden.

    The cursor is hidden before the first keyframe, holds the last
    position after the final one, and moves linearly in between.
    """
    if not keyframes:
        return None
    if time_ms < keyframes[0].timestamp:
        return None

    clicking = is_click_active(keyframes, time_ms, click_window_ms)
    last = keyframes[-1]
    if time_ms >= last.timestamp:
        return CursorState(last.x, last.y, clicking)

    idx = find_keyframe_index(keyframes, time_ms)
    cur = keyframes[idx]
    nxt = keyframes[idx + 1]
    dt = nxt.timestamp - cur.timestamp
    frac = (time_ms - cur.timestamp) / dt if dt > 0 else 1.0
    frac = max(0.0, min(1.0, frac))
    return CursorState(
        cur.x + (nxt.x - cur.x) * frac,
        cur.y + (nxt.y - cur.y) * frac,
        clicking,
    )
