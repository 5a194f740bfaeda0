"""One recording session: screen recorder + keyframes + persisted files.

Usage::

    async with CaptureSession(recording_dir, source, fps=25, width=1280, height=720) as session:
        session.record_move(100, 200, action_id="a1", step_index=0)
        session.record_click(100, 200, action_id="a1", step_index=0)
    timeline = session.timeline

Leaving the block normally stops the recorder and writes the raw video,
the keyframe timeline and a ``complete`` manifest.  If the block raises
(or the recorder fails) the partial timeline is still written and the
manifest is tagged ``incomplete`` with the error text; the exception
propagates.
"""

import logging
import os
from datetime import datetime, timezone
from typing import Optional

from .capture_sources import FrameSource
from .keyframe_recorder import KeyframeRecorder
from .models import (
    DEFAULT_FPS,
    STATUS_COMPLETE,
    STATUS_INCOMPLETE,
    CursorKeyframe,
    KeyframeTimeline,
    RecordingManifest,
)
from .recording_dir import (
    KEYFRAMES_NAME,
    RAW_VIDEO_NAME,
    raw_video_path,
    save_timeline,
    write_manifest,
)
from .screen_recorder import Clock, EncoderFactory, ScreencastRecorder, monotonic_ms

logger = logging.getLogger(__name__)


class CaptureSession:
    """Drives a :class:`ScreencastRecorder` and a :class:`KeyframeRecorder` together."""

    def __init__(
        self,
        recording_dir: str,
        source: FrameSource,
        fps: int = DEFAULT_FPS,
        width: int = 1280,
        height: int = 720,
        clock: Optional[Clock] = None,
        cancel_event=None,
        encoder_factory: Optional[EncoderFactory] = None,
    ) -> None:
        self.recording_dir = recording_dir
        clock = clock or monotonic_ms
        os.makedirs(recording_dir, exist_ok=True)
        self.recorder = ScreencastRecorder(
            source,
            raw_video_path(recording_dir),
            fps=fps,
            width=width,
            height=height,
            clock=clock,
            cancel_event=cancel_event,
            encoder_factory=encoder_factory,
        )
        self.keyframes = KeyframeRecorder(clock=clock)
        self.timeline: Optional[KeyframeTimeline] = None
        self.manifest: Optional[RecordingManifest] = None

    async def __aenter__(self) -> "CaptureSession":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        if exc is None:
            await self.finish()
        else:
            await self.fail(exc)
        return False

    async def start(self) -> None:
        await self.recorder.start()
        self.keyframes.start(self.recorder.start_time_ms)

    def record_move(self, x: float, y: float, action_id: str = "",
                    step_index: int = 0) -> CursorKeyframe:
        return self.keyframes.record_move(x, y, action_id, step_index)

    def record_click(self, x: float, y: float, action_id: str = "",
                     step_index: int = 0) -> CursorKeyframe:
        return self.keyframes.record_click(x, y, action_id, step_index)

    async def finish(self) -> KeyframeTimeline:
        """Stop recording and persist everything as ``complete``."""
        try:
            await self.recorder.stop()
        except BaseException as exc:
            self._persist(STATUS_INCOMPLETE, str(exc) or type(exc).__name__)
            raise
        return self._persist(STATUS_COMPLETE, None)

    async def fail(self, exc: BaseException) -> KeyframeTimeline:
        """Abort recording and persist what was captured as ``incomplete``."""
        await self.recorder.abort()
        return self._persist(STATUS_INCOMPLETE, str(exc) or type(exc).__name__)

    def _persist(self, status: str, error: Optional[str]) -> KeyframeTimeline:
        rec = self.recorder
        width, height = rec.size
        timeline = self.keyframes.build_timeline(rec.fps, width, height, rec.duration_ms)
        save_timeline(self.recording_dir, timeline)
        manifest = RecordingManifest(
            status=status,
            started_at=timeline.recording_started_at,
            completed_at=datetime.now(timezone.utc).isoformat(),
            duration_ms=rec.duration_ms,
            fps=rec.fps,
            viewport_width=width,
            viewport_height=height,
            raw_video=RAW_VIDEO_NAME,
            keyframes=KEYFRAMES_NAME,
            error=error,
        )
        write_manifest(self.recording_dir, manifest)
        self.timeline = timeline
        self.manifest = manifest
        if status == STATUS_COMPLETE:
            logger.info(
                "Recording saved to %s (%d keyframes, %.0f ms)",
                self.recording_dir, len(timeline.keyframes), rec.duration_ms,
            )
        else:
            logger.warning("Recording in %s is incomplete: %s", self.recording_dir, error)
        return timeline
