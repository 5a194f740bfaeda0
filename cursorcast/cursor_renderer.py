"""Mouse cursor renderer — draws the cursor overlay for one frame.

This is the single drawing routine behind both the interactive preview
(QPainter surface) and the export (numpy/OpenCV surface).  The routine
only talks to a small drawing-surface protocol and gets path
construction injected, so the same code produces the same picture on
either backend.  It keeps no state between calls: same config, time and
size in → same pixels out.
"""

import math
from dataclasses import dataclass, field
from typing import Any, Callable, List, Protocol, Sequence, Tuple

import numpy as np

from .cursor_interpolation import interpolate_cursor
from .cv_surface import CvSurface, build_cv_path
from .models import (
    CLICK_EFFECT_SCALE,
    DEFAULT_CLICK_WINDOW_MS,
    MITER_LIMIT,
    CursorConfig,
    CursorKeyframe,
    CursorShape,
)
from .utils import parse_hex_color

# Cursor is drawn at this fraction of its size while a click is active.
CLICK_SCALE = 0.75

RGB = Tuple[int, int, int]
PathBuilder = Callable[[str], Any]


class CursorSurface(Protocol):
    """Minimal 2D drawing contract used by :func:`render_cursor_frame`.

    Paths passed to ``fill_path`` / ``stroke_path`` come from the path
    builder paired with the surface.
    """

    def reset(self) -> None: ...
    def clear(self, width: int, height: int) -> None: ...
    def save(self) -> None: ...
    def restore(self) -> None: ...
    def set_opacity(self, opacity: float) -> None: ...
    def translate(self, dx: float, dy: float) -> None: ...
    def scale(self, sx: float, sy: float) -> None: ...
    def fill_path(self, path: Any, color: RGB) -> None: ...
    def stroke_path(self, path: Any, color: RGB, width: float, cap: str, join: str) -> None: ...


@dataclass
class CursorRenderConfig:
    """Inputs to a frame render besides the shape: settings + timeline."""
    cursor: CursorConfig
    keyframes: Sequence[CursorKeyframe] = field(default_factory=list)
    click_window_ms: float = DEFAULT_CLICK_WINDOW_MS


def draw_cursor_shape(
    surface: CursorSurface,
    path_builder: PathBuilder,
    shape: CursorShape,
    cursor: CursorConfig,
    x: float,
    y: float,
    draw_size: float,
) -> None:
    """Draw *shape* at *draw_size* pixels so its hotspot lands on (x, y)."""
    vx, vy, vw, _vh = shape.view_box
    scale = draw_size / vw
    color = parse_hex_color(cursor.color)

    surface.save()
    surface.set_opacity(cursor.opacity)
    surface.translate(x - draw_size * shape.hotspot[0], y - draw_size * shape.hotspot[1])
    surface.scale(scale, scale)
    surface.translate(-vx, -vy)
    for p in shape.paths:
        path = path_builder(p.d)
        if p.fill:
            surface.fill_path(path, color)
        if p.stroke and shape.stroke_width > 0:
            surface.stroke_path(path, color, shape.stroke_width, shape.stroke_cap, shape.stroke_join)
    surface.restore()


def render_cursor_frame(
    surface: CursorSurface,
    path_builder: PathBuilder,
    config: CursorRenderConfig,
    shape: CursorShape,
    time_ms: float,
    width: int,
    height: int,
) -> None:
    """Clear *surface* and draw the cursor as it appears at *time_ms*."""
    # Full reset so nothing from the previous frame leaks in.
    surface.reset()
    surface.clear(width, height)

    cursor = config.cursor
    if not cursor.enabled or not config.keyframes:
        return
    pos = interpolate_cursor(config.keyframes, time_ms, config.click_window_ms)
    if pos is None:
        return

    clicking = pos.clicking and cursor.click_effect == CLICK_EFFECT_SCALE
    draw_size = cursor.size * CLICK_SCALE if clicking else cursor.size
    draw_cursor_shape(surface, path_builder, shape, cursor, pos.x, pos.y, draw_size)


# ── Sprite rendering (expression backend) ──────────────────────────


def sprite_padding(shape: CursorShape, size: float) -> int:
    """Transparent margin that keeps strokes from being clipped."""
    half = shape.stroke_width * size / shape.view_box[2] / 2.0
    if shape.stroke_join == "miter":
        half *= MITER_LIMIT
    elif shape.stroke_cap == "square":
        half *= math.sqrt(2.0)
    return int(math.ceil(half)) + 1


def render_cursor_sprite(
    shape: CursorShape,
    cursor: CursorConfig,
    path_builder: PathBuilder = build_cv_path,
) -> Tuple[np.ndarray, Tuple[float, float]]:
    """Render the shape alone at ``cursor.size`` onto a tight BGRA image.

    Returns ``(image, (hx, hy))`` where (hx, hy) is the hotspot in sprite
    pixels.
    """
    pad = sprite_padding(shape, cursor.size)
    aspect = shape.view_box[3] / shape.view_box[2]
    w = int(math.ceil(cursor.size)) + 2 * pad
    h = int(math.ceil(cursor.size * aspect)) + 2 * pad
    hx = pad + cursor.size * shape.hotspot[0]
    hy = pad + cursor.size * shape.hotspot[1]

    surface = CvSurface(w, h)
    surface.reset()
    surface.clear(w, h)
    draw_cursor_shape(surface, path_builder, shape, cursor, hx, hy, cursor.size)
    return surface.image.copy(), (hx, hy)


def visible_bounds(image: np.ndarray) -> List[int]:
    """``[x0, y0, x1, y1]`` of non-transparent pixels, or [] if none."""
    alpha = image[:, :, 3]
    rows = np.any(alpha > 0, axis=1)
    cols = np.any(alpha > 0, axis=0)
    if not rows.any():
        return []
    rmin, rmax = np.where(rows)[0][[0, -1]]
    cmin, cmax = np.where(cols)[0][[0, -1]]
    return [int(cmin), int(rmin), int(cmax) + 1, int(rmax) + 1]
