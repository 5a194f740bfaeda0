"""Constant-framerate pacing for irregular frame sources.

Screen sources only push a new image when something on screen changes:
bursts while scrolling, nothing at all on a static page.  The pacer maps
those arrivals onto the fixed output slots of an ``fps`` video so that
the number of written frames always tracks wall-clock time:

* arrivals ahead of schedule only refresh the held frame,
* arrivals after a gap first repeat the held frame to fill the gap,
* stopping pads with the held frame up to the stop time.

The pacer is pure state; the recorder owns the clock and the encoder.
"""

import math
from typing import Generic, List, Optional, TypeVar

from .errors import DegenerateCaptureError

F = TypeVar("F")


def round_half_up(x: float) -> int:
    """Round halves up (2.5 -> 3), unlike the built-in round()."""
    return int(math.floor(x + 0.5))


def expected_frame_count(elapsed_ms: float, fps: int) -> int:
    """Number of output slots that should be filled after *elapsed_ms*."""
    return round_half_up(max(0.0, elapsed_ms) / 1000.0 * fps)


class FramePacer(Generic[F]):
    """Decides which frames to write for each arrival."""

    def __init__(self, fps: int, start_ms: float) -> None:
        if fps < 1:
            raise ValueError("fps must be >= 1")
        self.fps = fps
        self.start_ms = start_ms
        self.frames_written = 0
        self.last_frame: Optional[F] = None
        self.frames_received = 0

    def expected(self, now_ms: float) -> int:
        return expected_frame_count(now_ms - self.start_ms, self.fps)

    def on_frame(self, frame: F, now_ms: float) -> List[F]:
        """Register an arrival; return the frames to write, in order."""
        self.frames_received += 1
        expected = self.expected(now_ms)
        if self.frames_written == 0:
            # The first frame always fills slot 0.
            expected = max(1, expected)

        if expected <= self.frames_written:
            self.last_frame = frame
            return []

        gap = expected - self.frames_written - 1
        filler = self.last_frame if self.last_frame is not None else frame
        out = [filler] * gap
        out.append(frame)
        self.last_frame = frame
        self.frames_written = expected
        return out

    def finish(self, now_ms: float) -> int:
        """Padding count at stop time; the caller writes ``last_frame`` that often.

        Raises :class:`DegenerateCaptureError` if no frame ever arrived.
        """
        if self.last_frame is None:
            raise DegenerateCaptureError(
                "Capture stopped before any frame was received; nothing to encode"
            )
        pad = max(0, self.expected(now_ms) - self.frames_written)
        self.frames_written += pad
        return pad

    def __repr__(self) -> str:
        return (
            f"FramePacer(fps={self.fps}, frames_written={self.frames_written}, "
            f"frames_received={self.frames_received})"
        )
