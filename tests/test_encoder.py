"""Tests for cursorcast.encoder — ffmpeg subprocess lifecycle.

A Python interpreter stands in for ffmpeg (via ``$FFMPEG_PATH``) so the
pipe handling can be tested without the real binary.
"""

import sys
import threading
from unittest.mock import patch

import pytest

from cursorcast.encoder import EncoderProcess, run_ffmpeg
from cursorcast.errors import CaptureError, EncodeError, ExportAborted, FfmpegError


@pytest.fixture(autouse=True)
def python_as_ffmpeg():
    with patch.dict("os.environ", {"FFMPEG_PATH": sys.executable}):
        yield


def _script(code: str) -> list[str]:
    return ["-c", code]


# ── EncoderProcess ──────────────────────────────────────────────────


class TestEncoderProcess:
    @pytest.mark.asyncio
    async def test_clean_run(self) -> None:
        proc = EncoderProcess(_script(
            "import sys; data = sys.stdin.buffer.read(); "
            "sys.stderr.write('got %d' % len(data))"
        ))
        await proc.start()
        await proc.write(b"x" * 1000)
        await proc.write(b"y" * 24)
        await proc.finish()
        assert proc.returncode == 0
        assert "got 1024" in proc.stderr

    @pytest.mark.asyncio
    async def test_non_zero_exit_carries_stderr(self) -> None:
        proc = EncoderProcess(
            _script("import sys; sys.stdin.read(); sys.stderr.write('Invalid data'); sys.exit(3)"),
            error_cls=EncodeError,
        )
        await proc.start()
        with pytest.raises(EncodeError) as info:
            await proc.finish("ffmpeg export")
        assert info.value.returncode == 3
        assert "Invalid data" in info.value.stderr
        assert "exited with code 3" in str(info.value)

    @pytest.mark.asyncio
    async def test_broken_pipe_raises_error_cls(self) -> None:
        proc = EncoderProcess(
            _script("import sys; sys.stderr.write('bad args'); sys.exit(2)"),
            error_cls=CaptureError,
        )
        await proc.start()
        chunk = b"\0" * (1 << 20)
        with pytest.raises(CaptureError) as info:
            for _ in range(64):
                await proc.write(chunk)
        assert info.value.returncode == 2
        assert "bad args" in info.value.stderr

    @pytest.mark.asyncio
    async def test_launch_failure(self) -> None:
        with patch.dict("os.environ", {"FFMPEG_PATH": "/nonexistent/ffmpeg"}):
            proc = EncoderProcess([], error_cls=EncodeError)
            with pytest.raises(EncodeError, match="Failed to launch"):
                await proc.start()

    @pytest.mark.asyncio
    async def test_terminate_reaps(self) -> None:
        proc = EncoderProcess(_script("import time; time.sleep(30)"))
        await proc.start()
        await proc.terminate()
        assert proc.returncode is not None

    @pytest.mark.asyncio
    async def test_finish_and_terminate_before_start(self) -> None:
        proc = EncoderProcess([])
        await proc.finish()
        await proc.terminate()
        assert proc.returncode is None


# ── run_ffmpeg ──────────────────────────────────────────────────────


class TestRunFfmpeg:
    @pytest.mark.asyncio
    async def test_returns_stderr(self) -> None:
        out = await run_ffmpeg(_script("import sys; sys.stderr.write('frame=  10')"))
        assert "frame=  10" in out

    @pytest.mark.asyncio
    async def test_stdin_is_closed(self) -> None:
        # Without stdin a read returns EOF immediately instead of blocking.
        out = await run_ffmpeg(_script("import sys; sys.stderr.write(repr(sys.stdin.read()))"))
        assert "''" in out

    @pytest.mark.asyncio
    async def test_failure(self) -> None:
        with pytest.raises(FfmpegError) as info:
            await run_ffmpeg(_script("import sys; sys.exit(1)"), what="ffprobe")
        assert "ffprobe exited with code 1" in str(info.value)

    @pytest.mark.asyncio
    async def test_cancel_terminates(self) -> None:
        cancel = threading.Event()
        timer = threading.Timer(0.2, cancel.set)
        timer.start()
        try:
            with pytest.raises(ExportAborted):
                await run_ffmpeg(_script("import time; time.sleep(30)"), cancel_event=cancel)
        finally:
            timer.cancel()

    @pytest.mark.asyncio
    async def test_cancel_event_unset_waits_for_exit(self) -> None:
        out = await run_ffmpeg(
            _script("import sys; sys.stderr.write('done')"), cancel_event=threading.Event()
        )
        assert "done" in out
