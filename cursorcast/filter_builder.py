"""ffmpeg expression backend for the cursor overlay.

Instead of rendering every overlay frame, this backend renders the
cursor sprite once and lets ffmpeg move it: the ``overlay`` filter gets
piecewise-linear x/y expressions over ``t`` and a ``scale`` filter
shrinks the sprite while a click is active.

Position expressions are a balanced ``if(lt(t,..),..,..)`` tree over the
keyframe segments, so nesting depth grows with log(n) and long
recordings stay within ffmpeg's expression parser limits.
"""

from dataclasses import dataclass
from typing import List, Sequence, Tuple

from .cursor_renderer import CLICK_SCALE
from .models import DEFAULT_CLICK_WINDOW_MS, CursorKeyframe

# Overlay position that keeps the sprite fully off-frame.
HIDDEN_POS = -10000

VIDEO_OUT_LABEL = "vout"


def _num(v: float) -> str:
    text = f"{v:.4f}".rstrip("0").rstrip(".")
    return "0" if text in ("", "-0") else text


def _sec(ms: float) -> str:
    return f"{ms / 1000.0:.4f}"


def build_click_expr(
    click_keyframes: Sequence[CursorKeyframe],
    window_ms: float = DEFAULT_CLICK_WINDOW_MS,
) -> str:
    """Expression that is 1 while any click window is active, else 0."""
    if not click_keyframes:
        return "0"
    terms = [
        f"between(t,{_sec(kf.timestamp)},{_sec(kf.timestamp + window_ms)})"
        for kf in click_keyframes
    ]
    return f"gt({'+'.join(terms)},0)"


def _lerp(a: CursorKeyframe, b: CursorKeyframe, axis: str) -> str:
    start = getattr(a, axis)
    end = getattr(b, axis)
    dur = b.timestamp - a.timestamp
    if dur <= 0 or start == end:
        return _num(end if dur <= 0 else start)
    return f"{_num(start)}+({_num(end - start)})*(t-{_sec(a.timestamp)})/{_sec(dur)}"


def _tree(keyframes: Sequence[CursorKeyframe], lo: int, hi: int, axis: str) -> str:
    """Expression over segments lo..hi (segment i spans keyframe i → i+1)."""
    if lo == hi:
        return _lerp(keyframes[lo], keyframes[lo + 1], axis)
    mid = (lo + hi) // 2
    split = _sec(keyframes[mid + 1].timestamp)
    return (
        f"if(lt(t,{split}),{_tree(keyframes, lo, mid, axis)},"
        f"{_tree(keyframes, mid + 1, hi, axis)})"
    )


def build_position_expr(keyframes: Sequence[CursorKeyframe], axis: str) -> str:
    """Cursor coordinate (``axis`` is "x" or "y") as a function of ``t``.

    Off-frame before the first keyframe, holds the last value after the
    final one, linear in between.
    """
    if axis not in ("x", "y"):
        raise ValueError(f"axis must be 'x' or 'y', got {axis!r}")
    if not keyframes:
        return str(HIDDEN_POS)
    first, last = keyframes[0], keyframes[-1]
    hold = _num(getattr(last, axis))
    if len(keyframes) == 1:
        body = hold
    else:
        body = (
            f"if(gte(t,{_sec(last.timestamp)}),{hold},"
            f"{_tree(keyframes, 0, len(keyframes) - 2, axis)})"
        )
    return f"if(lt(t,{_sec(first.timestamp)}),{HIDDEN_POS},{body})"


@dataclass
class OverlayFilter:
    """Video filter chains consuming ``[0:v]`` + the sprite at ``[1:v]``."""
    filters: List[str]
    label: str = VIDEO_OUT_LABEL


def build_overlay_filters(
    keyframes: Sequence[CursorKeyframe],
    sprite_size: Tuple[int, int],
    hotspot: Tuple[float, float],
    click_scale: bool,
    window_ms: float = DEFAULT_CLICK_WINDOW_MS,
    sprite_input: int = 1,
) -> OverlayFilter:
    """Overlay the sprite so its *hotspot* (sprite pixels) follows the cursor.

    With *click_scale* the sprite shrinks to 75% during click windows and
    the hotspot offset shrinks with it.
    """
    w, h = sprite_size
    hx, hy = hotspot
    clicks = [kf for kf in keyframes if kf.is_click]
    x_pos = build_position_expr(keyframes, "x")
    y_pos = build_position_expr(keyframes, "y")
    filters: List[str] = []

    if click_scale and clicks:
        click = build_click_expr(clicks, window_ms)
        cw = max(1, int(round(w * CLICK_SCALE)))
        ch = max(1, int(round(h * CLICK_SCALE)))
        fx, fy = cw / w, ch / h
        # Quoted so commas inside the expressions don't split the filter.
        filters.append(
            f"[{sprite_input}:v]scale=w='if({click},{cw},{w})':h='if({click},{ch},{h})'"
            f":flags=lanczos:eval=frame[cursor]"
        )
        x_expr = f"({x_pos})-if({click},{_num(hx * fx)},{_num(hx)})"
        y_expr = f"({y_pos})-if({click},{_num(hy * fy)},{_num(hy)})"
    else:
        filters.append(f"[{sprite_input}:v]null[cursor]")
        x_expr = f"({x_pos})-{_num(hx)}"
        y_expr = f"({y_pos})-{_num(hy)}"

    filters.append(
        f"[0:v][cursor]overlay=x='{x_expr}':y='{y_expr}':eval=frame:shortest=1:format=auto[{VIDEO_OUT_LABEL}]"
    )
    return OverlayFilter(filters=filters)
