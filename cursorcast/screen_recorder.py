"""Frame-pacing screen recorder.

Takes frames from a push-based :class:`~cursorcast.capture_sources.FrameSource`,
paces them onto a constant ``fps`` timeline (see
:mod:`cursorcast.frame_pacing`) and pipes raw BGRA frames to ffmpeg for
lossless AVI encoding.

Arrivals go through a bounded queue to a single writer task.  When the
queue is full the encoder is saturated: the source is paused until the
writer makes room, so at most ``queue_size`` frames are ever held in
memory.  Every frame handed to the recorder is acknowledged exactly once,
whether it ends up written, skipped as ahead of schedule or dropped
after stop.
"""

import asyncio
import logging
import time
from typing import Callable, List, Optional, Tuple

import cv2
import numpy as np

from .capture_sources import CapturedFrame, FrameSource
from .encoder import CANCEL_POLL_S, EncoderProcess
from .errors import CaptureError
from .frame_pacing import FramePacer
from .models import DEFAULT_FPS
from .utils import build_capture_args

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_SIZE = 4

Clock = Callable[[], float]
EncoderFactory = Callable[[List[str]], EncoderProcess]


def monotonic_ms() -> float:
    return time.monotonic() * 1000.0


def _default_encoder(args: List[str]) -> EncoderProcess:
    return EncoderProcess(args, feed_stdin=True, error_cls=CaptureError)


class ScreencastRecorder:
    """Records a frame source to a constant-framerate raw video file.

    *clock* returns milliseconds on a monotonic scale; *encoder_factory*
    builds the ffmpeg wrapper from its argument list.  Both exist so the
    pacing can be driven deterministically.
    """

    def __init__(
        self,
        source: FrameSource,
        output_path: str,
        fps: int = DEFAULT_FPS,
        width: int = 1280,
        height: int = 720,
        clock: Optional[Clock] = None,
        cancel_event=None,
        encoder_factory: Optional[EncoderFactory] = None,
        queue_size: int = DEFAULT_QUEUE_SIZE,
    ) -> None:
        if fps < 1:
            raise ValueError("fps must be >= 1")
        if width < 1 or height < 1:
            raise ValueError("width and height must be >= 1")
        self._source = source
        self._output_path = output_path
        self._fps = fps
        self._width = width
        self._height = height
        self._clock = clock or monotonic_ms
        self._cancel_event = cancel_event
        self._encoder_factory = encoder_factory or _default_encoder
        self._queue_size = max(1, queue_size)

        self._queue: Optional[asyncio.Queue] = None
        self._encoder: Optional[EncoderProcess] = None
        self._pacer: Optional[FramePacer] = None
        self._writer_task: Optional[asyncio.Task] = None
        self._cancel_task: Optional[asyncio.Task] = None
        self._error: Optional[BaseException] = None

        self._start_time_ms = 0.0
        self._duration_ms = 0.0
        self._stopped = False
        self._aborted = False
        self._finished = False

        self.frames_received = 0
        self.backpressure_pauses = 0

    # ── properties ──────────────────────────────────────────────────

    @property
    def output_path(self) -> str:
        return self._output_path

    @property
    def fps(self) -> int:
        return self._fps

    @property
    def size(self) -> Tuple[int, int]:
        return self._width, self._height

    @property
    def start_time_ms(self) -> float:
        """Clock value at which frame slot 0 starts."""
        return self._start_time_ms

    @property
    def duration_ms(self) -> float:
        """Recorded wall-clock duration (known after :meth:`stop`)."""
        return self._duration_ms

    @property
    def frames_written(self) -> int:
        return self._pacer.frames_written if self._pacer else 0

    @property
    def is_recording(self) -> bool:
        return self._pacer is not None and not self._stopped

    @property
    def aborted(self) -> bool:
        return self._aborted

    # ── public API ──────────────────────────────────────────────────

    async def start(self) -> None:
        """Launch the encoder, then start pulling frames from the source."""
        if self._pacer is not None:
            raise RuntimeError("Recorder already started")
        self._queue = asyncio.Queue(maxsize=self._queue_size)
        args = build_capture_args(self._output_path, self._width, self._height, self._fps)
        self._encoder = self._encoder_factory(args)
        await self._encoder.start()

        self._start_time_ms = self._clock()
        self._pacer = FramePacer(self._fps, self._start_time_ms)
        self._writer_task = asyncio.create_task(self._writer_loop())
        if self._cancel_event is not None:
            self._cancel_task = asyncio.create_task(self._watch_cancel())
        try:
            await self._source.start(self._on_frame)
        except BaseException:
            await self.abort()
            raise
        logger.info(
            "Recording started: %dx%d @ %d fps → %s",
            self._width, self._height, self._fps, self._output_path,
        )

    async def stop(self) -> str:
        """Finish the recording and return the raw video path.

        Pads with the last frame up to the stop time, closes the encoder
        and waits for it.  Raises :class:`CaptureError` if ffmpeg failed
        and :class:`DegenerateCaptureError` if no frame ever arrived.
        """
        if self._pacer is None:
            raise RuntimeError("Recorder was never started")
        if self._aborted:
            raise CaptureError("Recording was aborted")
        if self._finished:
            return self._output_path

        stop_ms = self._clock()
        self._stopped = True
        self._duration_ms = stop_ms - self._start_time_ms
        await self._source.stop()
        await self._drain_writer()

        if self._error is not None:
            await self._encoder.terminate()
            raise self._error
        try:
            pad = self._pacer.finish(stop_ms)
        except Exception:
            await self._encoder.terminate()
            raise
        last = self._pacer.last_frame
        for _ in range(pad):
            await self._encoder.write(last)
        await self._encoder.finish("ffmpeg capture encoder")
        self._finished = True
        logger.info(
            "Recording finished: %d frames (%d padding, %d received) in %.0f ms → %s",
            self._pacer.frames_written, pad, self.frames_received,
            self._duration_ms, self._output_path,
        )
        return self._output_path

    async def abort(self) -> None:
        """Stop immediately: terminate the encoder and drop pending frames."""
        if self._aborted or self._finished:
            return
        self._aborted = True
        self._stopped = True
        if self._duration_ms == 0 and self._pacer is not None:
            self._duration_ms = self._clock() - self._start_time_ms
        if self._encoder is not None:
            await self._encoder.terminate()
        await self._source.stop()
        await self._drain_writer()
        logger.warning("Recording aborted after %d frames: %s", self.frames_written, self._output_path)

    # ── internal ────────────────────────────────────────────────────

    async def _drain_writer(self) -> None:
        """Flush queued frames through the writer and wait for it to exit."""
        if self._cancel_task is not None and self._cancel_task is not asyncio.current_task():
            self._cancel_task.cancel()
            self._cancel_task = None
        if self._writer_task is None:
            return
        await self._queue.put(None)
        await self._writer_task
        self._writer_task = None

    def _cancelled(self) -> bool:
        return self._cancel_event is not None and self._cancel_event.is_set()

    async def _watch_cancel(self) -> None:
        while not self._stopped:
            if self._cancel_event.is_set():
                logger.info("Cancel requested, aborting recording")
                self._cancel_task = None
                await self.abort()
                return
            await asyncio.sleep(CANCEL_POLL_S)

    async def _on_frame(self, frame: CapturedFrame) -> None:
        """Sink handed to the source: enqueue with the arrival time."""
        if self._stopped or self._error is not None or self._cancelled():
            await frame.acknowledge()
            return
        self.frames_received += 1
        item = (self._clock(), frame)
        if self._queue.full():
            # Encoder saturated: hold the source until the writer catches up.
            self.backpressure_pauses += 1
            await self._source.pause()
            try:
                await self._queue.put(item)
            finally:
                if not self._stopped:
                    await self._source.resume()
        else:
            self._queue.put_nowait(item)

    def _prepare(self, frame: CapturedFrame) -> bytes:
        img = frame.decode()
        h, w = img.shape[:2]
        if (w, h) != (self._width, self._height):
            img = cv2.resize(img, (self._width, self._height), interpolation=cv2.INTER_AREA)
        return np.ascontiguousarray(img).tobytes()

    async def _writer_loop(self) -> None:
        while True:
            item = await self._queue.get()
            if item is None:
                return
            arrival_ms, frame = item
            try:
                if self._aborted or self._error is not None:
                    continue
                data = self._prepare(frame)
                for out in self._pacer.on_frame(data, arrival_ms):
                    await self._encoder.write(out)
            except Exception as exc:
                # Surfaced by stop(); later frames are only acknowledged.
                logger.error("Capture writer failed: %s", exc)
                self._error = exc
            finally:
                await frame.acknowledge()
