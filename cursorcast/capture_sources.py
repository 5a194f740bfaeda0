"""Push-based frame sources for the screen recorder.

A source pushes :class:`CapturedFrame` objects into an async sink
whenever the captured content changes.  Every frame carries an
acknowledgement callback; a source may hold back its next frame until
the previous one is acknowledged, so the recorder must acknowledge each
frame exactly once.

Two sources are provided:

* :class:`CdpScreencastSource` — Chromium page via the DevTools
  ``Page.startScreencast`` protocol (Playwright CDP session).
* :class:`MssCaptureSource` — a desktop monitor via mss, polled on a
  background thread and emitted only when the pixels change.
"""

import asyncio
import base64
import functools
import logging
import threading
import time
from typing import Awaitable, Callable, Optional, Tuple

import cv2
import mss
import numpy as np
from playwright.async_api import Error as PlaywrightError

from .errors import CaptureError

logger = logging.getLogger(__name__)


async def _no_ack() -> None:
    return None


class CapturedFrame:
    """One image pushed by a source: encoded bytes or a decoded array."""

    def __init__(
        self,
        data: Optional[bytes] = None,
        image: Optional[np.ndarray] = None,
        ack: Callable[[], Awaitable[None]] = _no_ack,
    ) -> None:
        if data is None and image is None:
            raise ValueError("CapturedFrame needs either data or image")
        self.data = data
        self.image = image
        self._ack = ack
        self.acked = False

    async def acknowledge(self) -> None:
        """Tell the source this frame is handled.  Later calls are no-ops."""
        if self.acked:
            return
        self.acked = True
        await self._ack()

    def decode(self) -> np.ndarray:
        """Return the frame as a BGRA ``uint8`` array."""
        if self.image is not None:
            img = self.image
        else:
            buf = np.frombuffer(self.data, dtype=np.uint8)
            img = cv2.imdecode(buf, cv2.IMREAD_UNCHANGED)
            if img is None:
                raise CaptureError("Could not decode captured frame")
        if img.ndim == 2:
            return cv2.cvtColor(img, cv2.COLOR_GRAY2BGRA)
        if img.shape[2] == 3:
            return cv2.cvtColor(img, cv2.COLOR_BGR2BGRA)
        return img


FrameSink = Callable[[CapturedFrame], Awaitable[None]]


def _release_on_failure(acked: threading.Event, future) -> None:
    """Log a failed sink call and release the grab thread waiting on *acked*."""
    if future.cancelled():
        acked.set()
        return
    exc = future.exception()
    if exc is not None:
        logger.error("Frame sink failed: %s", exc, exc_info=exc)
        acked.set()


class FrameSource:
    """Base class for capture sources."""

    async def start(self, sink: FrameSink) -> None:
        raise NotImplementedError

    async def pause(self) -> None:
        """Ask the source to stop emitting until :meth:`resume`."""

    async def resume(self) -> None:
        """Undo :meth:`pause`."""

    async def stop(self) -> None:
        """Stop emitting and release the source."""


# ── Chromium CDP screencast ─────────────────────────────────────────


class CdpScreencastSource(FrameSource):
    """Frames from a Playwright Chromium page via ``Page.startScreencast``.

    Chrome only sends the next frame after ``Page.screencastFrameAck``.
    Pausing stops the screencast; resuming starts it again.  The
    screencast also stops on navigation, so it's restarted on ``load``.
    """

    def __init__(
        self,
        page,
        width: int,
        height: int,
        image_format: str = "jpeg",
        quality: int = 100,
    ) -> None:
        self._page = page
        self._width = width
        self._height = height
        self._format = image_format
        self._quality = quality
        self._session = None
        self._sink: Optional[FrameSink] = None
        self._running = False
        self._paused = False

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self, sink: FrameSink) -> None:
        self._sink = sink
        self._session = await self._page.context.new_cdp_session(self._page)
        self._session.on("Page.screencastFrame", self._on_frame)
        self._page.on("load", self._on_page_load)
        self._running = True
        await self._start_screencast()
        logger.info("CDP screencast started (%dx%d, %s)", self._width, self._height, self._format)

    async def _start_screencast(self) -> None:
        await self._session.send("Page.startScreencast", {
            "format": self._format,
            "quality": self._quality,
            "maxWidth": self._width,
            "maxHeight": self._height,
            "everyNthFrame": 1,
        })

    async def _on_frame(self, params: dict) -> None:
        session_id = params["sessionId"]

        async def _ack() -> None:
            await self._send_quietly("Page.screencastFrameAck", {"sessionId": session_id})

        frame = CapturedFrame(data=base64.b64decode(params["data"]), ack=_ack)
        if not self._running or self._sink is None:
            await frame.acknowledge()
            return
        await self._sink(frame)

    def _on_page_load(self, *_args) -> None:
        if self._running and not self._paused:
            asyncio.ensure_future(self._restart())

    async def _restart(self) -> None:
        await self._send_quietly("Page.stopScreencast")
        if self._running and not self._paused:
            await self._start_screencast()
            logger.debug("CDP screencast restarted after navigation")

    async def _send_quietly(self, method: str, params: Optional[dict] = None) -> None:
        """Send a CDP command, ignoring errors from an already-detached session."""
        if self._session is None:
            return
        try:
            await self._session.send(method, params or {})
        except PlaywrightError as exc:
            logger.debug("CDP %s failed: %s", method, exc)

    async def pause(self) -> None:
        self._paused = True
        await self._send_quietly("Page.stopScreencast")

    async def resume(self) -> None:
        self._paused = False
        if self._running:
            await self._start_screencast()

    async def stop(self) -> None:
        if self._session is None:
            return
        self._running = False
        try:
            self._page.remove_listener("load", self._on_page_load)
        except (KeyError, ValueError):
            pass
        await self._send_quietly("Page.stopScreencast")
        try:
            await self._session.detach()
        except PlaywrightError as exc:
            logger.debug("CDP detach failed: %s", exc)
        self._session = None


# ── Desktop capture via mss ─────────────────────────────────────────


class MssCaptureSource(FrameSource):
    """Polls a monitor with mss and emits frames only when pixels change.

    Grabbing happens on a background thread; each frame is handed to the
    event loop and the thread waits for its acknowledgement before
    grabbing again.
    """

    def __init__(self, monitor_index: int = 1, poll_interval: float = 1 / 60) -> None:
        self._monitor_index = monitor_index
        self._poll_interval = poll_interval
        self._thread: Optional[threading.Thread] = None
        self._running = threading.Event()
        self._paused = threading.Event()

    def monitor_size(self) -> Tuple[int, int]:
        with mss.mss() as sct:
            mon = sct.monitors[self._monitor_index]
            return mon["width"], mon["height"]

    async def start(self, sink: FrameSink) -> None:
        loop = asyncio.get_running_loop()
        self._running.set()
        self._thread = threading.Thread(
            target=self._capture_loop, args=(loop, sink), name="mss-capture", daemon=True
        )
        self._thread.start()
        logger.info("mss capture started on monitor %d", self._monitor_index)

    def _capture_loop(self, loop: asyncio.AbstractEventLoop, sink: FrameSink) -> None:
        last: Optional[np.ndarray] = None
        with mss.mss() as sct:
            monitor = sct.monitors[self._monitor_index]
            while self._running.is_set():
                if self._paused.is_set():
                    time.sleep(self._poll_interval)
                    continue
                t0 = time.perf_counter()
                frame = np.array(sct.grab(monitor))  # BGRA, owns its buffer
                if last is None or not np.array_equal(frame, last):
                    last = frame
                    acked = threading.Event()

                    async def _ack(ev: threading.Event = acked) -> None:
                        ev.set()

                    captured = CapturedFrame(image=frame, ack=_ack)
                    future = asyncio.run_coroutine_threadsafe(sink(captured), loop)
                    future.add_done_callback(functools.partial(_release_on_failure, acked))
                    while self._running.is_set() and not acked.wait(0.05):
                        pass
                elapsed = time.perf_counter() - t0
                if elapsed < self._poll_interval:
                    time.sleep(self._poll_interval - elapsed)

    async def pause(self) -> None:
        self._paused.set()

    async def resume(self) -> None:
        self._paused.clear()

    async def stop(self) -> None:
        self._running.clear()
        if self._thread is not None:
            await asyncio.to_thread(self._thread.join)
            self._thread = None
