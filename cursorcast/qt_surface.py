"""QPainter drawing surface + preview widget.

The preview draws through the same :func:`render_cursor_frame` as the
exporter; only the surface and the path builder differ.
"""

import functools
import logging
from typing import Optional, Tuple

from PySide6.QtCore import QRectF, Qt
from PySide6.QtGui import QColor, QImage, QPainter, QPainterPath, QPen
from PySide6.QtWidgets import QWidget

from .cursor_renderer import CursorRenderConfig, render_cursor_frame
from .cursor_shapes import resolve_cursor_shape
from .models import MITER_LIMIT, CursorShape, KeyframeTimeline, PostProductionConfig
from .svg_path import iter_path_commands

logger = logging.getLogger(__name__)

_CAPS = {
    "round": Qt.PenCapStyle.RoundCap,
    "butt": Qt.PenCapStyle.FlatCap,
    "square": Qt.PenCapStyle.SquareCap,
}
_JOINS = {
    "round": Qt.PenJoinStyle.RoundJoin,
    "bevel": Qt.PenJoinStyle.BevelJoin,
    "miter": Qt.PenJoinStyle.SvgMiterJoin,
}


@functools.lru_cache(maxsize=256)
def build_qpainter_path(d: str) -> QPainterPath:
    path = QPainterPath()
    for cmd in iter_path_commands(d):
        op = cmd[0]
        if op == "M":
            path.moveTo(cmd[1], cmd[2])
        elif op == "L":
            path.lineTo(cmd[1], cmd[2])
        elif op == "C":
            path.cubicTo(cmd[1], cmd[2], cmd[3], cmd[4], cmd[5], cmd[6])
        elif op == "Q":
            path.quadTo(cmd[1], cmd[2], cmd[3], cmd[4])
        elif op == "Z":
            path.closeSubpath()
    return path


class QPainterSurface:
    """Adapts an active QPainter to the cursor drawing-surface protocol."""

    def __init__(self, painter: QPainter) -> None:
        self._painter = painter

    def reset(self) -> None:
        p = self._painter
        p.resetTransform()
        p.setOpacity(1.0)
        p.setCompositionMode(QPainter.CompositionMode.CompositionMode_SourceOver)
        p.setRenderHint(QPainter.RenderHint.Antialiasing, True)

    def clear(self, width: int, height: int) -> None:
        p = self._painter
        p.setCompositionMode(QPainter.CompositionMode.CompositionMode_Source)
        p.fillRect(QRectF(0, 0, width, height), Qt.GlobalColor.transparent)
        p.setCompositionMode(QPainter.CompositionMode.CompositionMode_SourceOver)

    def save(self) -> None:
        self._painter.save()

    def restore(self) -> None:
        self._painter.restore()

    def set_opacity(self, opacity: float) -> None:
        self._painter.setOpacity(opacity)

    def translate(self, dx: float, dy: float) -> None:
        self._painter.translate(dx, dy)

    def scale(self, sx: float, sy: float) -> None:
        self._painter.scale(sx, sy)

    def fill_path(self, path: QPainterPath, color: Tuple[int, int, int]) -> None:
        self._painter.fillPath(path, QColor(*color))

    def stroke_path(
        self,
        path: QPainterPath,
        color: Tuple[int, int, int],
        width: float,
        cap: str = "round",
        join: str = "round",
    ) -> None:
        pen = QPen(QColor(*color), width, Qt.PenStyle.SolidLine, _CAPS[cap], _JOINS[join])
        # Qt counts the limit in pen widths from the join point.
        pen.setMiterLimit(MITER_LIMIT / 2.0)
        self._painter.strokePath(path, pen)


def render_cursor_qimage(
    config: CursorRenderConfig,
    shape: CursorShape,
    time_ms: float,
    width: int,
    height: int,
) -> QImage:
    """Render one cursor frame into a transparent ARGB image."""
    img = QImage(width, height, QImage.Format.Format_ARGB32_Premultiplied)
    img.fill(Qt.GlobalColor.transparent)
    painter = QPainter(img)
    try:
        render_cursor_frame(
            QPainterSurface(painter), build_qpainter_path, config, shape, time_ms, width, height
        )
    finally:
        painter.end()
    return img


class CursorPreview(QWidget):
    """Transparent overlay that draws the cursor over a video preview.

    The overlay works in viewport coordinates and scales to the widget
    size, so it can sit on top of a video widget of any size.
    """

    def __init__(self, parent: Optional[QWidget] = None) -> None:
        super().__init__(parent)
        self.setAttribute(Qt.WidgetAttribute.WA_TransparentForMouseEvents, True)
        self.setAttribute(Qt.WidgetAttribute.WA_TranslucentBackground, True)
        self._timeline: Optional[KeyframeTimeline] = None
        self._config = PostProductionConfig()
        self._shape: Optional[CursorShape] = None
        self._time_ms = 0.0

    def set_timeline(self, timeline: KeyframeTimeline) -> None:
        self._timeline = timeline
        self.update()

    def set_config(self, config: PostProductionConfig) -> None:
        """Apply new settings; raises ParseError for a bad custom SVG."""
        self._shape = resolve_cursor_shape(config.cursor)
        self._config = config
        self.update()

    def set_time(self, time_ms: float) -> None:
        self._time_ms = time_ms
        self.update()

    def time_ms(self) -> float:
        return self._time_ms

    def paintEvent(self, event) -> None:
        if self._timeline is None:
            return
        if self._shape is None:
            self._shape = resolve_cursor_shape(self._config.cursor)
        tl = self._timeline
        painter = QPainter(self)
        try:
            # Map viewport coordinates onto the widget.
            sx = self.width() / tl.viewport_width
            sy = self.height() / tl.viewport_height
            surface = _ScaledSurface(painter, sx, sy)
            render_cursor_frame(
                surface,
                build_qpainter_path,
                CursorRenderConfig(cursor=self._config.cursor, keyframes=tl.keyframes),
                self._shape,
                self._time_ms,
                tl.viewport_width,
                tl.viewport_height,
            )
        finally:
            painter.end()


class _ScaledSurface(QPainterSurface):
    """QPainterSurface whose identity is a fixed viewport→widget scale."""

    def __init__(self, painter: QPainter, sx: float, sy: float) -> None:
        super().__init__(painter)
        self._sx = sx
        self._sy = sy

    def reset(self) -> None:
        super().reset()
        self._painter.scale(self._sx, self._sy)
