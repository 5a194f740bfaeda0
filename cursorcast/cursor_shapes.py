"""Builtin cursor catalog and shape resolution.

The builtin shapes are derived from Lucide icon paths on a 24×24 viewBox:

    pointer     - mouse-pointer-2 (filled arrow)
    pointer-alt - mouse-pointer (arrow with tail)
    hand        - pointer (finger with motion lines)
    dot         - filled circle
"""

import logging
import os
from typing import Dict, Optional, Tuple

from .models import CursorConfig, CursorShape, ShapePath
from .svg_cursor import parse_svg_cursor

logger = logging.getLogger(__name__)

_VIEW_BOX = (0.0, 0.0, 24.0, 24.0)

CURSOR_SHAPES: Dict[str, CursorShape] = {
    "pointer": CursorShape(
        view_box=_VIEW_BOX,
        paths=(
            ShapePath(
                d="M4.037 4.688a.495.495 0 0 1 .651-.651l16 6.5a.5.5 0 0 1-.063.947"
                  "l-6.124 1.58a2 2 0 0 0-1.438 1.435l-1.579 6.126a.5.5 0 0 1-.947.063z",
                fill=True, stroke=True,
            ),
        ),
        hotspot=(0.17, 0.2),
    ),
    "pointer-alt": CursorShape(
        view_box=_VIEW_BOX,
        paths=(
            ShapePath(d="M3 3l7.07 16.97 2.51-7.39 7.39-2.51L3 3z", fill=True, stroke=True),
            ShapePath(d="M13 13l6 6", fill=False, stroke=True),
        ),
        hotspot=(0.125, 0.125),
    ),
    "hand": CursorShape(
        view_box=_VIEW_BOX,
        paths=(
            ShapePath(d="M14 4.1L12 6", fill=False, stroke=True),
            ShapePath(d="M5.1 8l-2.9-.8", fill=False, stroke=True),
            ShapePath(d="M6 12l-1.9 2", fill=False, stroke=True),
            ShapePath(d="M7.2 2.2L8 5.1", fill=False, stroke=True),
            ShapePath(
                d="M9.037 9.69a.498.498 0 0 1 .653-.653l11 4.5a.5.5 0 0 1-.074.949"
                  "l-4.349 1.041a2 2 0 0 0-1.434 1.434l-1.041 4.349a.5.5 0 0 1-.95.074z",
                fill=True, stroke=True,
            ),
        ),
        hotspot=(0.38, 0.4),
    ),
    "dot": CursorShape(
        view_box=_VIEW_BOX,
        paths=(
            ShapePath(d="M12 4a8 8 0 1 0 0 16a8 8 0 1 0 0-16z", fill=True, stroke=False),
        ),
        hotspot=(0.5, 0.5),
        stroke_width=0.0,
    ),
}

DEFAULT_STYLE = "pointer"


def get_cursor_shape(style: str) -> CursorShape:
    """Return the builtin shape for *style*, falling back to the pointer.

    :class:`CursorConfig` already rejects unknown styles; the fallback only
    serves direct callers passing a raw name.
    """
    shape = CURSOR_SHAPES.get(style)
    if shape is None:
        logger.warning("Unknown cursor style %r, using %r", style, DEFAULT_STYLE)
        return CURSOR_SHAPES[DEFAULT_STYLE]
    return shape


# ── Resolution with caching ─────────────────────────────────────────

_CacheKey = Tuple[str, Optional[str], Optional[float], Optional[Tuple[float, float]]]
_cache: Dict[_CacheKey, CursorShape] = {}


def resolve_cursor_shape(cursor: CursorConfig) -> CursorShape:
    """Resolve the shape for a cursor config.

    A custom SVG file wins over the builtin style.  Results are cached per
    (style, file, file mtime, hotspot) so repeated preview frames and
    re-exports don't re-parse the file; editing the file invalidates it
    and evicts the entries for its older versions.
    Raises :class:`OSError` if the file can't be read and
    :class:`~cursorcast.errors.ParseError` if it can't be parsed.
    """
    svg_path = cursor.custom_svg_path
    mtime = os.path.getmtime(svg_path) if svg_path else None
    key = (cursor.style, svg_path, mtime, cursor.custom_hotspot)
    cached = _cache.get(key)
    if cached is not None:
        return cached

    if svg_path:
        with open(svg_path, "r", encoding="utf-8") as f:
            svg_text = f.read()
        shape = parse_svg_cursor(svg_text, cursor.custom_hotspot)
        logger.info("Loaded custom cursor from %s", svg_path)
        # Older mtimes of this file can never hit again.
        for stale in [k for k in _cache if k[1] == svg_path and k[2] != mtime]:
            del _cache[stale]
    else:
        shape = get_cursor_shape(cursor.style)
    _cache[key] = shape
    return shape


def clear_shape_cache() -> None:
    _cache.clear()
