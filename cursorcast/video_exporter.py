"""Post-production export — cursor overlay + click sounds → H.264 MP4.

Reads the raw capture and the keyframe timeline of a recording and
composites the synthetic cursor and click audio with one ffmpeg run.
The raw capture and the timeline are never modified, so the export can
be repeated with different settings and produces the same file for the
same inputs.

Two overlay backends exist:

* ``frames`` (default) — every overlay frame is rendered with the same
  renderer the preview uses and streamed into ffmpeg as raw BGRA.
* ``expression`` — the cursor sprite is rendered once and ffmpeg moves it
  with ``overlay`` expressions (see :mod:`cursorcast.filter_builder`).
"""

import asyncio
import logging
import math
import os
import tempfile
import threading
from typing import Callable, List, Optional

import cv2
import numpy as np

from PySide6.QtCore import QObject, Signal

from .audio_filters import AUDIO_OUT_LABEL, build_audio_filters, resolve_click_sound
from .cursor_renderer import CursorRenderConfig, render_cursor_frame, render_cursor_sprite
from .cursor_shapes import resolve_cursor_shape
from .cv_surface import CvSurface, build_cv_path
from .encoder import EncoderProcess
from .errors import EncodeError, ExportAborted, FfmpegError
from .filter_builder import VIDEO_OUT_LABEL, build_overlay_filters
from .models import CLICK_EFFECT_SCALE, KeyframeTimeline, PostProductionConfig
from .recording_dir import (
    OUTPUT_NAME,
    load_post_production,
    load_timeline,
    output_path as recording_output_path,
    raw_video_path,
)
from .utils import build_audio_encoder_args, build_encoder_args

logger = logging.getLogger(__name__)

BACKEND_FRAMES = "frames"
BACKEND_EXPRESSION = "expression"
BACKENDS = (BACKEND_FRAMES, BACKEND_EXPRESSION)

PROGRESS_EVERY = 30

ProgressCallback = Callable[[int, int], None]


def partial_path(output_path: str) -> str:
    """``out.mp4`` → ``out.partial.mp4`` (keeps the extension for the muxer)."""
    root, ext = os.path.splitext(output_path)
    return f"{root}.partial{ext}"


def total_overlay_frames(duration_ms: float, fps: int) -> int:
    return int(math.ceil(duration_ms / 1000.0 * fps))


def _check_cancel(cancel_event) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise ExportAborted("Export cancelled")


def build_passthrough_args(raw_video_path: str, out_path: str, fps: int) -> List[str]:
    """Re-encode the raw capture without overlay or audio."""
    return [
        "-y",
        "-i", raw_video_path,
        *build_encoder_args(),
        "-r", str(fps),
        "-an",
        out_path,
    ]


def build_compose_args(
    raw_video_path: str,
    out_path: str,
    fps: int,
    overlay_input: Optional[List[str]],
    overlay_filters: List[str],
    audio_path: Optional[str],
    audio_filters: List[str],
) -> List[str]:
    """Full ffmpeg command for a composite export.

    Input 0 is the raw capture, input 1 the overlay (when present), and
    the click sound follows as the next input.
    """
    args = ["-y", "-i", raw_video_path]
    if overlay_input:
        args += overlay_input
    if audio_path:
        args += ["-i", audio_path]

    filters = list(overlay_filters) if overlay_filters else [f"[0:v]null[{VIDEO_OUT_LABEL}]"]
    filters += audio_filters
    args += ["-filter_complex", ";".join(filters), "-map", f"[{VIDEO_OUT_LABEL}]"]
    if audio_filters:
        args += ["-map", f"[{AUDIO_OUT_LABEL}]"]

    args += build_encoder_args()
    args += ["-r", str(fps)]
    args += build_audio_encoder_args() if audio_filters else ["-an"]
    args.append(out_path)
    return args


async def _feed_overlay_frames(
    encoder: EncoderProcess,
    timeline: KeyframeTimeline,
    config: PostProductionConfig,
    fps: int,
    cancel_event,
    on_progress: Optional[ProgressCallback],
) -> None:
    """Render one cursor frame per output slot and stream them to ffmpeg."""
    shape = resolve_cursor_shape(config.cursor)
    w, h = timeline.viewport_width, timeline.viewport_height
    render_cfg = CursorRenderConfig(cursor=config.cursor, keyframes=timeline.keyframes)
    surface = CvSurface(w, h)
    total = total_overlay_frames(timeline.duration_ms, fps)

    for i in range(total):
        _check_cancel(cancel_event)
        t_ms = i * 1000.0 / fps
        render_cursor_frame(surface, build_cv_path, render_cfg, shape, t_ms, w, h)
        try:
            await encoder.write(np.ascontiguousarray(surface.image).tobytes())
        except EncodeError:
            # ffmpeg may stop reading once the main input has ended.
            if encoder.returncode == 0:
                logger.debug("ffmpeg finished before overlay frame %d/%d", i, total)
                break
            raise
        if on_progress and ((i + 1) % PROGRESS_EVERY == 0 or i + 1 == total):
            on_progress(i + 1, total)


def _discard(path: str) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        pass


async def post_produce(
    raw_video_path: str,
    timeline: KeyframeTimeline,
    config: PostProductionConfig,
    output_path: str,
    fps: Optional[int] = None,
    cancel_event=None,
    on_progress: Optional[ProgressCallback] = None,
    backend: str = BACKEND_FRAMES,
    click_sound_path: Optional[str] = None,
) -> str:
    """Composite cursor overlay and click sounds onto *raw_video_path*.

    Writes to ``<name>.partial<ext>`` and renames to *output_path* only on
    success, so a failed export leaves any previous output untouched.
    Raises :class:`EncodeError` if ffmpeg fails and
    :class:`ExportAborted` when *cancel_event* is set.
    """
    if backend not in BACKENDS:
        raise ValueError(f"Unknown overlay backend: {backend!r}")
    _check_cancel(cancel_event)
    fps = fps or timeline.fps
    tmp_out = partial_path(output_path)

    cursor_on = config.cursor.enabled and bool(timeline.keyframes)
    clicks = timeline.click_keyframes
    audio_path: Optional[str] = None
    if config.audio.click_sound_enabled and clicks:
        if click_sound_path is not None:
            audio_path = click_sound_path if os.path.isfile(click_sound_path) else None
            if audio_path is None:
                logger.warning("Click sound not found, exporting without audio: %s", click_sound_path)
        else:
            audio_path = resolve_click_sound(config.audio)

    try:
        if not cursor_on and audio_path is None:
            logger.info("Nothing to composite, re-encoding %s", raw_video_path)
            encoder = EncoderProcess(
                build_passthrough_args(raw_video_path, tmp_out, fps),
                feed_stdin=False, error_cls=EncodeError,
            )
            await encoder.start()
            await encoder.finish("ffmpeg export", cancel_event=cancel_event)
            streamed = False
        else:
            streamed = await _encode(
                raw_video_path, timeline, config, tmp_out, fps,
                cursor_on, audio_path, backend, cancel_event, on_progress,
            )
    except ExportAborted:
        _discard(tmp_out)
        raise
    except FfmpegError:
        logger.error("Export failed, partial output kept at %s", tmp_out)
        raise

    os.replace(tmp_out, output_path)
    if on_progress and not streamed:
        on_progress(0, 0)
    logger.info("Export complete: %s", output_path)
    return output_path


async def _encode(
    raw_video_path: str,
    timeline: KeyframeTimeline,
    config: PostProductionConfig,
    out_path: str,
    fps: int,
    cursor_on: bool,
    audio_path: Optional[str],
    backend: str,
    cancel_event,
    on_progress: Optional[ProgressCallback],
) -> bool:
    """Run the composite ffmpeg pass; True if overlay frames were streamed."""
    audio_index = 2 if cursor_on else 1
    audio_filters = (
        build_audio_filters(
            timeline.click_keyframes, audio_index, config.audio.volume,
            timeline.duration_ms / 1000.0,
        )
        if audio_path else []
    )

    with tempfile.TemporaryDirectory(prefix="cursorcast_") as work_dir:
        overlay_input: Optional[List[str]] = None
        overlay_filters: List[str] = []
        feed = False

        if cursor_on and backend == BACKEND_FRAMES:
            w, h = timeline.viewport_width, timeline.viewport_height
            overlay_input = [
                "-f", "rawvideo", "-pix_fmt", "bgra",
                "-s", f"{w}x{h}", "-r", str(fps),
                "-i", "pipe:0",
            ]
            overlay_filters = [
                f"[0:v][1:v]overlay=0:0:format=auto:eof_action=pass[{VIDEO_OUT_LABEL}]"
            ]
            feed = True
        elif cursor_on:
            shape = resolve_cursor_shape(config.cursor)
            sprite, hotspot = render_cursor_sprite(shape, config.cursor)
            sprite_path = os.path.join(work_dir, "cursor.png")
            if not cv2.imwrite(sprite_path, sprite):
                raise EncodeError(f"Could not write cursor sprite to {sprite_path}")
            overlay_input = ["-loop", "1", "-framerate", str(fps), "-i", sprite_path]
            overlay_filters = build_overlay_filters(
                timeline.keyframes,
                (sprite.shape[1], sprite.shape[0]),
                hotspot,
                click_scale=config.cursor.click_effect == CLICK_EFFECT_SCALE,
            ).filters

        args = build_compose_args(
            raw_video_path, out_path, fps,
            overlay_input, overlay_filters, audio_path, audio_filters,
        )
        encoder = EncoderProcess(args, feed_stdin=feed, error_cls=EncodeError)
        await encoder.start()
        try:
            if feed:
                await _feed_overlay_frames(encoder, timeline, config, fps, cancel_event, on_progress)
            await encoder.finish("ffmpeg export", cancel_event=cancel_event)
        except BaseException:
            await encoder.terminate()
            raise
    return feed


async def export_recording(
    recording_dir: str,
    output_name: str = OUTPUT_NAME,
    config: Optional[PostProductionConfig] = None,
    cancel_event=None,
    on_progress: Optional[ProgressCallback] = None,
    backend: str = BACKEND_FRAMES,
) -> str:
    """Export a recording directory with its saved (or the given) settings."""
    timeline = load_timeline(recording_dir)
    if config is None:
        config = load_post_production(recording_dir)
    return await post_produce(
        raw_video_path(recording_dir),
        timeline,
        config,
        recording_output_path(recording_dir, output_name),
        cancel_event=cancel_event,
        on_progress=on_progress,
        backend=backend,
    )


class VideoExporter(QObject):
    """Runs :func:`export_recording` on a background thread for the GUI."""

    progress = Signal(float)  # 0.0–1.0
    finished = Signal(str)    # output path
    error = Signal(str)

    def __init__(self, parent: QObject | None = None) -> None:
        super().__init__(parent)
        self._thread: Optional[threading.Thread] = None
        self._cancel = threading.Event()

    # ── public API ──────────────────────────────────────────────────

    def export(
        self,
        recording_dir: str,
        output_name: str = OUTPUT_NAME,
        config: Optional[PostProductionConfig] = None,
        backend: str = BACKEND_FRAMES,
    ) -> None:
        """Start the export in a background thread."""
        if self.is_running():
            raise RuntimeError("An export is already running")
        self._cancel.clear()
        self._thread = threading.Thread(
            target=self._run,
            args=(recording_dir, output_name, config, backend),
            daemon=True,
        )
        self._thread.start()

    def cancel(self) -> None:
        self._cancel.set()

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Join the worker thread; True if it has finished."""
        if self._thread is None:
            return True
        self._thread.join(timeout)
        return not self._thread.is_alive()

    # ── internal ────────────────────────────────────────────────────

    def _on_progress(self, done: int, total: int) -> None:
        self.progress.emit(done / total if total else 1.0)

    def _run(
        self,
        recording_dir: str,
        output_name: str,
        config: Optional[PostProductionConfig],
        backend: str,
    ) -> None:
        try:
            out = asyncio.run(export_recording(
                recording_dir,
                output_name,
                config=config,
                cancel_event=self._cancel,
                on_progress=self._on_progress,
                backend=backend,
            ))
        except Exception as exc:
            logger.error("Export failed: %s", exc)
            self.error.emit(str(exc))
            return
        self.progress.emit(1.0)
        self.finished.emit(out)
