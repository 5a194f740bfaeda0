"""Async wrapper around one ffmpeg subprocess.

ffmpeg is the only thing that runs in parallel with the event loop; we
talk to it through pipes only.  Frames go in on stdin (awaiting
``drain()`` so a saturated encoder suspends the writer), diagnostics
come out on stderr and are collected by a reader task so they can be
attached to errors.
"""

import asyncio
import logging
import subprocess
from typing import List, Optional, Type

from .errors import ExportAborted, FfmpegError
from .utils import ffmpeg_exe, subprocess_kwargs

logger = logging.getLogger(__name__)

# Keep only the tail of stderr; ffmpeg prints progress lines forever.
_STDERR_LIMIT = 64 * 1024
_TERMINATE_TIMEOUT_S = 5.0
CANCEL_POLL_S = 0.05


class EncoderProcess:
    """One ffmpeg run: spawn, feed, finish or terminate.

    *error_cls* is raised (with the captured stderr) when ffmpeg can't be
    launched, its input pipe breaks or it exits non-zero.
    """

    def __init__(
        self,
        args: List[str],
        feed_stdin: bool = True,
        error_cls: Type[FfmpegError] = FfmpegError,
    ) -> None:
        self.args = list(args)
        self.feed_stdin = feed_stdin
        self.error_cls = error_cls
        self._proc: Optional[asyncio.subprocess.Process] = None
        self._stderr_task: Optional[asyncio.Task] = None
        self._stderr = bytearray()

    @property
    def stderr(self) -> str:
        return self._stderr.decode(errors="replace")

    @property
    def returncode(self) -> Optional[int]:
        return self._proc.returncode if self._proc else None

    async def start(self) -> None:
        cmd = [ffmpeg_exe(), *self.args]
        logger.info("ffmpeg command: %s", " ".join(cmd))
        try:
            self._proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=subprocess.PIPE if self.feed_stdin else subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                **subprocess_kwargs(),
            )
        except OSError as exc:
            raise self.error_cls(f"Failed to launch ffmpeg: {exc}") from exc
        self._stderr_task = asyncio.create_task(self._read_stderr())

    async def _read_stderr(self) -> None:
        assert self._proc is not None and self._proc.stderr is not None
        while True:
            chunk = await self._proc.stderr.read(4096)
            if not chunk:
                break
            self._stderr += chunk
            if len(self._stderr) > _STDERR_LIMIT:
                del self._stderr[:-_STDERR_LIMIT]

    async def write(self, data: bytes) -> None:
        """Write *data* to stdin and wait until the pipe has room again."""
        assert self._proc is not None and self._proc.stdin is not None
        try:
            self._proc.stdin.write(data)
            await self._proc.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as exc:
            rc = await self._wait()
            raise self.error_cls(
                f"ffmpeg input pipe closed ({exc})", self.stderr, rc
            ) from exc

    async def _wait(self) -> int:
        assert self._proc is not None
        rc = await self._proc.wait()
        if self._stderr_task is not None:
            await self._stderr_task
        return rc

    async def _close_stdin(self) -> None:
        if self._proc is None or self._proc.stdin is None:
            return
        if not self._proc.stdin.is_closing():
            self._proc.stdin.close()
        try:
            await self._proc.stdin.wait_closed()
        except (BrokenPipeError, ConnectionResetError):
            pass

    async def finish(self, what: str = "ffmpeg", cancel_event=None) -> None:
        """Close stdin and wait for a clean exit.

        With *cancel_event* the wait is polled and the process is
        terminated (raising :class:`ExportAborted`) once the event is set.
        """
        if self._proc is None:
            return
        await self._close_stdin()
        if cancel_event is None:
            rc = await self._wait()
        else:
            rc = await self._wait_or_cancel(cancel_event)
        if rc != 0:
            logger.error("%s exited with code %s: %s", what, rc, self.stderr.strip()[-300:])
            raise self.error_cls(f"{what} exited with code {rc}", self.stderr, rc)

    async def _wait_or_cancel(self, cancel_event) -> int:
        assert self._proc is not None
        waiter = asyncio.ensure_future(self._proc.wait())
        while True:
            done, _pending = await asyncio.wait({waiter}, timeout=CANCEL_POLL_S)
            if done:
                if self._stderr_task is not None:
                    await self._stderr_task
                return waiter.result()
            if cancel_event.is_set():
                await self.terminate()
                raise ExportAborted("Export cancelled")

    async def terminate(self) -> None:
        """Terminate ffmpeg (kill after a timeout) and reap it."""
        if self._proc is None:
            return
        if self._proc.returncode is None:
            try:
                self._proc.terminate()
            except ProcessLookupError:
                pass
            try:
                await asyncio.wait_for(self._proc.wait(), _TERMINATE_TIMEOUT_S)
            except asyncio.TimeoutError:
                logger.warning("ffmpeg did not exit after terminate, killing it")
                self._proc.kill()
        await self._wait()


async def run_ffmpeg(
    args: List[str],
    error_cls: Type[FfmpegError] = FfmpegError,
    cancel_event=None,
    what: str = "ffmpeg",
) -> str:
    """Run ffmpeg without stdin to completion; return its stderr."""
    proc = EncoderProcess(args, feed_stdin=False, error_cls=error_cls)
    await proc.start()
    await proc.finish(what, cancel_event=cancel_event)
    return proc.stderr
