"""Tests for cursorcast.capture_sources — frame objects, CDP and mss sources."""

import asyncio
import base64
from unittest.mock import AsyncMock, MagicMock, patch

import cv2
import numpy as np
import pytest
from playwright.async_api import Error as PlaywrightError

from cursorcast.capture_sources import CapturedFrame, CdpScreencastSource, MssCaptureSource
from cursorcast.errors import CaptureError


def _png(img: np.ndarray) -> bytes:
    ok, buf = cv2.imencode(".png", img)
    assert ok
    return buf.tobytes()


@pytest.fixture
def cdp_session():
    session = MagicMock()
    session.send = AsyncMock()
    session.detach = AsyncMock()
    return session


@pytest.fixture
def page(cdp_session):
    page = MagicMock()
    page.context.new_cdp_session = AsyncMock(return_value=cdp_session)
    return page


def _sent(session) -> list[str]:
    return [c.args[0] for c in session.send.await_args_list]


# ── CapturedFrame ───────────────────────────────────────────────────


class TestCapturedFrame:
    def test_requires_payload(self) -> None:
        with pytest.raises(ValueError):
            CapturedFrame()

    def test_decode_bgr_png(self) -> None:
        img = np.zeros((4, 6, 3), dtype=np.uint8)
        img[:, :, 2] = 255
        out = CapturedFrame(data=_png(img)).decode()
        assert out.shape == (4, 6, 4)
        assert tuple(out[0, 0]) == (0, 0, 255, 255)

    def test_decode_jpeg(self) -> None:
        img = np.full((8, 8, 3), 128, dtype=np.uint8)
        ok, buf = cv2.imencode(".jpg", img)
        assert ok
        out = CapturedFrame(data=buf.tobytes()).decode()
        assert out.shape == (8, 8, 4)

    def test_decode_grayscale_array(self) -> None:
        out = CapturedFrame(image=np.zeros((2, 3), dtype=np.uint8)).decode()
        assert out.shape == (2, 3, 4)

    def test_decode_bgra_passthrough(self) -> None:
        img = np.zeros((2, 2, 4), dtype=np.uint8)
        assert CapturedFrame(image=img).decode() is img

    def test_decode_garbage(self) -> None:
        with pytest.raises(CaptureError):
            CapturedFrame(data=b"not an image").decode()

    @pytest.mark.asyncio
    async def test_acknowledge_once(self) -> None:
        ack = AsyncMock()
        frame = CapturedFrame(data=b"x", ack=ack)
        await frame.acknowledge()
        await frame.acknowledge()
        assert frame.acked
        ack.assert_awaited_once()


# ── CdpScreencastSource ─────────────────────────────────────────────


class TestCdpScreencastSource:
    @pytest.mark.asyncio
    async def test_start_begins_screencast(self, page, cdp_session) -> None:
        source = CdpScreencastSource(page, 1280, 720)
        await source.start(AsyncMock())

        page.context.new_cdp_session.assert_awaited_once_with(page)
        cdp_session.on.assert_called_once()
        method, params = cdp_session.send.await_args.args
        assert method == "Page.startScreencast"
        assert params["format"] == "jpeg"
        assert (params["maxWidth"], params["maxHeight"]) == (1280, 720)
        assert source.is_running

    @pytest.mark.asyncio
    async def test_frame_reaches_sink_and_ack_uses_session_id(self, page, cdp_session) -> None:
        received = []

        async def sink(frame: CapturedFrame) -> None:
            received.append(frame)

        source = CdpScreencastSource(page, 4, 4)
        await source.start(sink)
        data = _png(np.zeros((4, 4, 3), dtype=np.uint8))
        await source._on_frame({"data": base64.b64encode(data).decode(), "sessionId": 7})

        (frame,) = received
        assert frame.data == data
        assert not frame.acked
        await frame.acknowledge()
        cdp_session.send.assert_awaited_with("Page.screencastFrameAck", {"sessionId": 7})

    @pytest.mark.asyncio
    async def test_frames_after_stop_are_acked_not_delivered(self, page, cdp_session) -> None:
        sink = AsyncMock()
        source = CdpScreencastSource(page, 4, 4)
        await source.start(sink)
        source._running = False
        await source._on_frame({"data": base64.b64encode(b"x").decode(), "sessionId": 3})
        sink.assert_not_awaited()
        assert "Page.screencastFrameAck" in _sent(cdp_session)

    @pytest.mark.asyncio
    async def test_pause_and_resume(self, page, cdp_session) -> None:
        source = CdpScreencastSource(page, 4, 4)
        await source.start(AsyncMock())
        await source.pause()
        await source.resume()
        assert _sent(cdp_session) == [
            "Page.startScreencast", "Page.stopScreencast", "Page.startScreencast",
        ]

    @pytest.mark.asyncio
    async def test_stop_detaches(self, page, cdp_session) -> None:
        source = CdpScreencastSource(page, 4, 4)
        await source.start(AsyncMock())
        await source.stop()
        assert _sent(cdp_session)[-1] == "Page.stopScreencast"
        cdp_session.detach.assert_awaited_once()
        page.remove_listener.assert_called_once()
        assert not source.is_running
        await source.stop()
        cdp_session.detach.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_stop_tolerates_closed_page(self, page, cdp_session) -> None:
        source = CdpScreencastSource(page, 4, 4)
        await source.start(AsyncMock())
        cdp_session.send.side_effect = PlaywrightError("Target closed")
        cdp_session.detach.side_effect = PlaywrightError("Target closed")
        await source.stop()
        assert not source.is_running


# ── MssCaptureSource ────────────────────────────────────────────────


class FakeScreen:
    """Stands in for an ``mss.mss()`` instance; replays a list of grabs."""

    def __init__(self, frames: list[np.ndarray]) -> None:
        self.frames = frames
        self.grabs = 0
        self.monitors = [{}, {"left": 0, "top": 0, "width": 4, "height": 2}]

    def grab(self, monitor: dict) -> np.ndarray:
        frame = self.frames[min(self.grabs, len(self.frames) - 1)]
        self.grabs += 1
        return frame

    def __enter__(self) -> "FakeScreen":
        return self

    def __exit__(self, *exc) -> None:
        return None


def _screen(value: int) -> np.ndarray:
    return np.full((2, 4, 4), value, dtype=np.uint8)


@pytest.fixture
def screen():
    fake = FakeScreen([_screen(1)])
    with patch("cursorcast.capture_sources.mss.mss", return_value=fake):
        yield fake


async def _wait_for(predicate, timeout: float = 2.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        assert asyncio.get_running_loop().time() < deadline, "condition not reached"
        await asyncio.sleep(0.005)


class TestMssCaptureSource:
    def test_monitor_size(self, screen: FakeScreen) -> None:
        assert MssCaptureSource(monitor_index=1).monitor_size() == (4, 2)

    @pytest.mark.asyncio
    async def test_emits_only_changed_frames(self, screen: FakeScreen) -> None:
        screen.frames = [_screen(1), _screen(1), _screen(2), _screen(2), _screen(3)]
        received: list[CapturedFrame] = []

        async def sink(frame: CapturedFrame) -> None:
            received.append(frame)
            await frame.acknowledge()

        source = MssCaptureSource(poll_interval=0.001)
        await source.start(sink)
        await _wait_for(lambda: screen.grabs >= 8)
        await source.stop()

        assert [int(f.image[0, 0, 0]) for f in received] == [1, 2, 3]
        assert all(f.acked for f in received)

    @pytest.mark.asyncio
    async def test_waits_for_ack_before_grabbing_again(self, screen: FakeScreen) -> None:
        screen.frames = [_screen(1), _screen(2)]
        received: list[CapturedFrame] = []

        async def sink(frame: CapturedFrame) -> None:
            received.append(frame)

        source = MssCaptureSource(poll_interval=0.001)
        await source.start(sink)
        await _wait_for(lambda: len(received) == 1)
        await asyncio.sleep(0.1)
        assert screen.grabs == 1

        await received[0].acknowledge()
        await _wait_for(lambda: len(received) == 2)
        await received[1].acknowledge()
        await source.stop()

    @pytest.mark.asyncio
    async def test_failing_sink_releases_thread(self, screen: FakeScreen, caplog) -> None:
        screen.frames = [_screen(1), _screen(2)]
        received: list[CapturedFrame] = []

        async def sink(frame: CapturedFrame) -> None:
            if not received:
                received.append(frame)
                raise RuntimeError("sink exploded")
            received.append(frame)
            await frame.acknowledge()

        source = MssCaptureSource(poll_interval=0.001)
        await source.start(sink)
        await _wait_for(lambda: len(received) == 2)
        await source.stop()
        assert "sink exploded" in caplog.text

    @pytest.mark.asyncio
    async def test_pause_and_resume(self, screen: FakeScreen) -> None:
        async def sink(frame: CapturedFrame) -> None:
            await frame.acknowledge()

        source = MssCaptureSource(poll_interval=0.001)
        await source.start(sink)
        await _wait_for(lambda: screen.grabs >= 2)
        await source.pause()
        await asyncio.sleep(0.05)
        paused_at = screen.grabs
        await asyncio.sleep(0.1)
        assert screen.grabs == paused_at

        await source.resume()
        await _wait_for(lambda: screen.grabs > paused_at)
        await source.stop()

    @pytest.mark.asyncio
    async def test_stop_joins_thread(self, screen: FakeScreen) -> None:
        async def sink(frame: CapturedFrame) -> None:
            await frame.acknowledge()

        source = MssCaptureSource(poll_interval=0.001)
        await source.start(sink)
        thread = source._thread
        await source.stop()
        assert not thread.is_alive()
        stopped_at = screen.grabs
        await asyncio.sleep(0.05)
        assert screen.grabs == stopped_at
