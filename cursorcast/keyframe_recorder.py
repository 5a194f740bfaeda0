"""Cursor keyframe recorder — collects pointer moves and clicks during capture.

The step dispatcher reports each pointer move and click as it happens;
timestamps are taken from the same clock as the screen recorder so the
keyframes line up with the captured frames.  Keyframes are append-only:
an event reported with an older time than the previous one is clamped so
the timeline stays sorted.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional

from .models import (
    KEYFRAME_CLICK,
    KEYFRAME_MOVE,
    CursorKeyframe,
    KeyframeTimeline,
)
from .screen_recorder import Clock, monotonic_ms

logger = logging.getLogger(__name__)


class KeyframeRecorder:
    """Accumulates :class:`CursorKeyframe` samples relative to a start time."""

    def __init__(self, clock: Optional[Clock] = None) -> None:
        self._clock = clock or monotonic_ms
        self._start_ms: Optional[float] = None
        self._started_at = ""
        self._keyframes: List[CursorKeyframe] = []

    def start(self, start_ms: Optional[float] = None) -> None:
        """Begin a new timeline.

        *start_ms* — clock value of frame slot 0 (the screen recorder's
        ``start_time_ms``) so both share one time base.
        """
        self._start_ms = start_ms if start_ms is not None else self._clock()
        self._started_at = datetime.now(timezone.utc).isoformat()
        self._keyframes.clear()

    @property
    def started(self) -> bool:
        return self._start_ms is not None

    @property
    def keyframes(self) -> List[CursorKeyframe]:
        return list(self._keyframes)

    @property
    def recording_started_at(self) -> str:
        return self._started_at

    def elapsed_ms(self) -> float:
        if self._start_ms is None:
            raise RuntimeError("KeyframeRecorder.start() has not been called")
        return self._clock() - self._start_ms

    def _append(self, x: float, y: float, kind: str, action_id: str,
                step_index: int, at_ms: Optional[float]) -> CursorKeyframe:
        ts = self.elapsed_ms() if at_ms is None else at_ms
        if self._keyframes and ts < self._keyframes[-1].timestamp:
            ts = self._keyframes[-1].timestamp
        kf = CursorKeyframe(
            x=float(x), y=float(y), timestamp=max(0.0, ts),
            kind=kind, action_id=action_id, step_index=step_index,
        )
        self._keyframes.append(kf)
        return kf

    def record_move(self, x: float, y: float, action_id: str = "",
                    step_index: int = 0, at_ms: Optional[float] = None) -> CursorKeyframe:
        """Record the pointer arriving at (x, y)."""
        return self._append(x, y, KEYFRAME_MOVE, action_id, step_index, at_ms)

    def record_click(self, x: float, y: float, action_id: str = "",
                     step_index: int = 0, at_ms: Optional[float] = None) -> CursorKeyframe:
        """Record a click at (x, y)."""
        kf = self._append(x, y, KEYFRAME_CLICK, action_id, step_index, at_ms)
        logger.debug("Click keyframe at %.0f ms (%s)", kf.timestamp, action_id or "-")
        return kf

    def build_timeline(self, fps: int, width: int, height: int,
                       duration_ms: float) -> KeyframeTimeline:
        """Freeze the collected keyframes into a :class:`KeyframeTimeline`."""
        return KeyframeTimeline(
            fps=fps,
            viewport_width=width,
            viewport_height=height,
            duration_ms=duration_ms,
            keyframes=list(self._keyframes),
            recording_started_at=self._started_at,
        )
