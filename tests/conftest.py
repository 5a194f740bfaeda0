"""Shared pytest fixtures for cursorcast tests."""

import os
from typing import List, Optional

import numpy as np
import pytest

from cursorcast.capture_sources import CapturedFrame, FrameSource
from cursorcast.cursor_shapes import clear_shape_cache
from cursorcast.models import (
    KEYFRAME_CLICK,
    CursorKeyframe,
    KeyframeTimeline,
)


# ── Keyframes ───────────────────────────────────────────────────────


@pytest.fixture
def linear_keyframes() -> list[CursorKeyframe]:
    """Two moves: (0, 0) at 0ms → (100, 0) at 1000ms."""
    return [
        CursorKeyframe(x=0, y=0, timestamp=0),
        CursorKeyframe(x=100, y=0, timestamp=1000),
    ]


@pytest.fixture
def click_keyframes() -> list[CursorKeyframe]:
    """Move to (200, 150), click there at 500ms, move on, click again at 1500ms."""
    return [
        CursorKeyframe(x=100, y=100, timestamp=0, action_id="a0", step_index=0),
        CursorKeyframe(x=200, y=150, timestamp=400, action_id="a1", step_index=1),
        CursorKeyframe(x=200, y=150, timestamp=500, kind=KEYFRAME_CLICK, action_id="a1", step_index=1),
        CursorKeyframe(x=300, y=200, timestamp=1400, action_id="a2", step_index=2),
        CursorKeyframe(x=300, y=200, timestamp=1500, kind=KEYFRAME_CLICK, action_id="a2", step_index=2),
    ]


@pytest.fixture
def sample_timeline(click_keyframes: list[CursorKeyframe]) -> KeyframeTimeline:
    """Small 320×240 timeline, 2s at 10 fps."""
    return KeyframeTimeline(
        fps=10,
        viewport_width=320,
        viewport_height=240,
        duration_ms=2000.0,
        keyframes=click_keyframes,
        recording_started_at="2026-01-01T00:00:00+00:00",
    )


@pytest.fixture
def empty_timeline() -> KeyframeTimeline:
    return KeyframeTimeline(fps=10, viewport_width=320, viewport_height=240, duration_ms=1000.0)


@pytest.fixture(autouse=True)
def _fresh_shape_cache():
    clear_shape_cache()
    yield
    clear_shape_cache()


# ── Recording fakes ─────────────────────────────────────────────────


class FakeClock:
    """Manually advanced millisecond clock."""

    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms


class FakeEncoder:
    """Stands in for EncoderProcess: records args and written frames."""

    def __init__(self, args: List[str], fail_on_write: Optional[Exception] = None,
                 fail_on_finish: Optional[Exception] = None) -> None:
        self.args = list(args)
        self.writes: List[bytes] = []
        self.started = False
        self.finished = False
        self.terminated = False
        self.fail_on_write = fail_on_write
        self.fail_on_finish = fail_on_finish
        self.returncode: Optional[int] = None

    async def start(self) -> None:
        self.started = True

    async def write(self, data: bytes) -> None:
        if self.fail_on_write is not None:
            raise self.fail_on_write
        self.writes.append(data)

    async def finish(self, what: str = "ffmpeg", cancel_event=None) -> None:
        if self.fail_on_finish is not None:
            self.returncode = 1
            raise self.fail_on_finish
        self.finished = True
        self.returncode = 0

    async def terminate(self) -> None:
        self.terminated = True
        if self.returncode is None:
            self.returncode = -15


class FakeSource(FrameSource):
    """Frame source driven by the test through :meth:`push`."""

    def __init__(self) -> None:
        self.sink = None
        self.started = False
        self.stopped = False
        self.pauses = 0
        self.resumes = 0

    async def start(self, sink) -> None:
        self.sink = sink
        self.started = True

    async def pause(self) -> None:
        self.pauses += 1

    async def resume(self) -> None:
        self.resumes += 1

    async def stop(self) -> None:
        self.stopped = True

    async def push(self, frame: CapturedFrame) -> None:
        await self.sink(frame)


class AckCounter:
    """Counts acknowledgements per frame."""

    def __init__(self) -> None:
        self.count = 0

    async def __call__(self) -> None:
        self.count += 1


def make_frame(width: int = 32, height: int = 24, value: int = 0,
               ack: Optional[AckCounter] = None) -> CapturedFrame:
    img = np.full((height, width, 4), value, dtype=np.uint8)
    img[:, :, 3] = 255
    return CapturedFrame(image=img, ack=ack or AckCounter())


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_source() -> FakeSource:
    return FakeSource()


@pytest.fixture
def encoders() -> list[FakeEncoder]:
    """Encoders created through :func:`encoder_factory`, in order."""
    return []


@pytest.fixture
def encoder_factory(encoders: list[FakeEncoder]):
    def _factory(args: List[str]) -> FakeEncoder:
        enc = FakeEncoder(args)
        encoders.append(enc)
        return enc
    return _factory


# ── Qt ──────────────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def qapp():
    """Offscreen QApplication for QPainter / widget tests."""
    os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")
    QtWidgets = pytest.importorskip("PySide6.QtWidgets")
    app = QtWidgets.QApplication.instance() or QtWidgets.QApplication([])
    yield app
