"""Exception hierarchy for cursorcast.

All errors inherit from :class:`CursorcastError` so callers can catch
everything raised by the recorder and the compositor with one clause::

    CursorcastError
    ├── FfmpegError            - ffmpeg failed to start or exited non-zero
    │   ├── CaptureError       - ... while recording the raw capture
    │   └── EncodeError        - ... while exporting the final video
    ├── ParseError             - custom cursor SVG could not be used
    │   ├── UnsupportedSvgElementError
    │   └── EmptySvgError
    ├── DegenerateCaptureError - recording stopped before any frame arrived
    └── ExportAborted          - export cancelled by the caller
"""

from typing import Optional


class CursorcastError(Exception):
    """Base exception for all cursorcast errors."""


class FfmpegError(CursorcastError):
    """ffmpeg could not be launched or exited with a non-zero status.

    *stderr* holds the captured diagnostic output (may be empty when the
    process never started).
    """

    def __init__(
        self,
        message: str,
        stderr: str = "",
        returncode: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.stderr = stderr
        self.returncode = returncode

    def __str__(self) -> str:
        base = super().__str__()
        tail = self.stderr.strip()[-500:] if self.stderr else ""
        return f"{base}: {tail}" if tail else base


class CaptureError(FfmpegError):
    """The capture encoder failed during a live recording."""


class EncodeError(FfmpegError):
    """The export encoder failed during post-production."""


class ParseError(CursorcastError):
    """A custom cursor SVG (or its path data) cannot be rendered."""


class UnsupportedSvgElementError(ParseError):
    """The SVG uses an element outside the supported subset."""

    def __init__(self, element: str) -> None:
        super().__init__(
            f"Unsupported SVG element <{element}>. Custom cursors only support "
            "<path>, <circle>, <rect>, and <line> elements."
        )
        self.element = element


class EmptySvgError(ParseError):
    """The SVG parsed cleanly but contains nothing to draw."""

    def __init__(self) -> None:
        super().__init__(
            "No renderable elements found in SVG. Expected <path>, <circle>, "
            "<rect>, or <line> elements."
        )


class DegenerateCaptureError(CursorcastError):
    """Recording was stopped before the capture source produced a frame."""


class ExportAborted(CursorcastError):
    """The export was cancelled through its cancel event."""
